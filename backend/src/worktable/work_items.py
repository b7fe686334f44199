"""
Work Item Store.
Catalog of recordings awaiting transcription. Reads only; status changes
happen inside the assignment, submission and review transactions.
"""
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from boto3.dynamodb.conditions import Attr, Key

from . import dynamo
from .auth import Caller
from .config import config
from .errors import Forbidden, ItemNotClaimable, NotFound, ValidationError, returns_result
from .logging import logger
from .models import WorkItem, WorkItemStatus
from .utils import decode_page_token, encode_page_token, new_id, now_ts

MAX_PAGE_SIZE = 100


def find_work_item(work_item_id: str) -> Optional[WorkItem]:
    return WorkItem.from_item(dynamo.get_item(config.WORK_ITEMS_TABLE, {'workItemId': work_item_id}))


def get_work_item(work_item_id: str) -> WorkItem:
    """
    Fetch a work item.

    Raises:
        NotFound: no item with that id
    """
    item = find_work_item(work_item_id)
    if item is None:
        raise NotFound('Work item not found', workItemId=work_item_id)
    return item


def list_available(
    language_id: Optional[str] = None,
    exclude_worker: Optional[str] = None,
    page_token: Optional[str] = None,
    limit: int = 20
) -> Tuple[List[WorkItem], Optional[str]]:
    """
    List claimable work items, oldest first.

    Only items in PENDING_TRANSCRIPTION with no lease and no soft removal are
    returned. Recordings made by `exclude_worker` are skipped.

    Args:
        language_id: Restrict to one language
        exclude_worker: Worker whose own recordings should be hidden
        page_token: Token returned by the previous call
        limit: Page size (1-100)

    Returns:
        (items, next_page_token); the token is None once the listing is exhausted
    """
    limit = min(max(int(limit), 1), MAX_PAGE_SIZE)
    start_key = decode_page_token(page_token)

    filter_expression = Attr('removedAt').not_exists() & Attr('activeAssignmentId').not_exists()
    if language_id:
        filter_expression = filter_expression & Attr('languageId').eq(language_id)
    if exclude_worker:
        filter_expression = filter_expression & Attr('speakerId').ne(exclude_worker)

    items: List[WorkItem] = []
    while True:
        # Evaluate at most what is still missing so LastEvaluatedKey never
        # skips past an item we did not return.
        page, start_key = dynamo.query_page(
            config.WORK_ITEMS_TABLE,
            Key('status').eq(WorkItemStatus.PENDING_TRANSCRIPTION),
            index_name='StatusIndex',
            filter_expression=filter_expression,
            limit=limit - len(items),
            scan_forward=True,
            start_key=start_key,
        )
        items.extend(WorkItem.from_item(i) for i in page)
        if not start_key or len(items) >= limit:
            break

    return items, encode_page_token(start_key)


def _parse_duration(duration_sec) -> Decimal:
    try:
        duration = Decimal(str(duration_sec))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError('durationSec must be a number')
    if not duration.is_finite() or duration <= 0:
        raise ValidationError('durationSec must be positive')
    return duration


@returns_result
def create_work_item(
    caller: Caller,
    prompt_id: str,
    language_id: str,
    speaker_id: str,
    duration_sec,
    storage_ref: str,
    now: Optional[int] = None
) -> WorkItem:
    """Register an accepted recording as a new work item."""
    if not caller.can_administer:
        raise Forbidden('Only admins can create work items')

    missing = [name for name, value in (
        ('promptId', prompt_id),
        ('languageId', language_id),
        ('speakerId', speaker_id),
        ('storageRef', storage_ref),
    ) if not value]
    if missing:
        raise ValidationError(f"Missing {', '.join(missing)}", fields=missing)

    now = now_ts() if now is None else now
    work_item = WorkItem(
        work_item_id=new_id(),
        prompt_id=prompt_id,
        language_id=language_id,
        speaker_id=speaker_id,
        duration_sec=_parse_duration(duration_sec),
        storage_ref=storage_ref,
        status=WorkItemStatus.PENDING_TRANSCRIPTION,
        created_at=now,
        updated_at=now,
    )
    dynamo.put_item(
        config.WORK_ITEMS_TABLE,
        work_item.to_item(),
        condition='attribute_not_exists(workItemId)',
    )
    logger.info(f"Created work item {work_item.work_item_id} ({language_id}, {work_item.duration_sec}s)")
    return work_item


@returns_result
def retire_work_item(caller: Caller, work_item_id: str, now: Optional[int] = None) -> WorkItem:
    """
    Soft-remove a work item from the claim pool.
    Only items that are not leased or under review can be retired.
    """
    if not caller.can_administer:
        raise Forbidden('Only admins can retire work items')

    now = now_ts() if now is None else now
    try:
        attributes = dynamo.update_item(
            config.WORK_ITEMS_TABLE,
            {'workItemId': work_item_id},
            'SET removedAt = :now, updatedAt = :now',
            expression_values={':now': now, ':pending': WorkItemStatus.PENDING_TRANSCRIPTION},
            expression_names={'#status': 'status'},
            condition='#status = :pending AND attribute_not_exists(removedAt)',
        )
    except dynamo.ConditionFailed:
        current = get_work_item(work_item_id)
        if current.removed_at is not None:
            return current
        raise ItemNotClaimable(
            f"Work item is {current.status} and cannot be retired",
            workItemId=work_item_id,
            status=current.status,
        )

    logger.info(f"Retired work item {work_item_id}")
    return WorkItem.from_item(attributes)
