"""
Assignment Manager.

Grants, releases and expires exclusive leases binding one worker to one
work item. Every write is one DynamoDB transaction whose conditions carry
the lease invariants:

- the worker row's activeAssignmentId lock: one live lease per worker
- the work item's status/activeAssignmentId: one live lease per item

Nothing about "the current assignment" is cached; every call re-reads it.
"""
from typing import Any, Dict, Iterator, List, Optional

from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from . import dynamo
from .auth import Caller
from .config import config
from .errors import (
    ActiveAssignmentExists,
    AssignmentAlreadyClosed,
    ConcurrentModification,
    CoordinationError,
    Forbidden,
    IntegrityViolation,
    ItemNoLongerAvailable,
    ItemNotClaimable,
    NoWorkAvailable,
    NotFound,
    returns_result,
)
from .logging import logger
from .models import Assignment, LeaseState, ReleaseReason, WorkItemStatus
from .utils import new_id, now_ts
from .work_items import find_work_item, list_available

NEXT = 'next'

_STATUS = {'#status': 'status'}


def find_assignment(assignment_id: str) -> Optional[Assignment]:
    return Assignment.from_item(dynamo.get_item(config.ASSIGNMENTS_TABLE, {'assignmentId': assignment_id}))


def get_assignment(assignment_id: str) -> Assignment:
    assignment = find_assignment(assignment_id)
    if assignment is None:
        raise NotFound('Assignment not found', assignmentId=assignment_id)
    return assignment


def get_active_assignment(worker_id: str, now: Optional[int] = None) -> Optional[Assignment]:
    """Re-derive the worker's live lease from the datastore."""
    now = now_ts() if now is None else now
    worker = dynamo.get_item(config.WORKERS_TABLE, {'workerId': worker_id})
    if not worker or not worker.get('activeAssignmentId'):
        return None
    assignment = find_assignment(worker['activeAssignmentId'])
    if assignment is not None and assignment.is_active(now):
        return assignment
    return None


# --- transaction building blocks (shared with the submission pipeline) ---

def close_assignment_op(assignment: Assignment, now: int, reason: str) -> Dict[str, Any]:
    """Close a lease that must still be open, unexpired and owned by its worker."""
    return dynamo.update_op(
        config.ASSIGNMENTS_TABLE,
        {'assignmentId': assignment.assignment_id},
        'SET releasedAt = :now, releaseReason = :reason REMOVE leaseState',
        condition='attribute_not_exists(releasedAt) AND expiresAt > :now AND workerId = :worker',
        values={':now': now, ':reason': reason, ':worker': assignment.worker_id},
    )


def clear_worker_lock_op(assignment: Assignment, now: int, counter: Optional[str] = None) -> Dict[str, Any]:
    """Drop the worker's lease lock; optionally bump a worker counter."""
    expression = 'REMOVE activeAssignmentId, leaseExpiresAt SET updatedAt = :now'
    values = {':now': now, ':aid': assignment.assignment_id}
    if counter:
        expression += f' ADD {counter} :one'
        values[':one'] = 1
    return dynamo.update_op(
        config.WORKERS_TABLE,
        {'workerId': assignment.worker_id},
        expression,
        condition='activeAssignmentId = :aid',
        values=values,
    )


def close_failure(assignment: Assignment, now: int, cancelled: dynamo.TransactionCancelled) -> Exception:
    """
    Explain why a transaction closing `assignment` was cancelled.
    Returns the error to raise.
    """
    current = find_assignment(assignment.assignment_id)
    if current is None or not current.is_active(now):
        return AssignmentAlreadyClosed(assignmentId=assignment.assignment_id)
    if cancelled.conflicted:
        return ConcurrentModification(assignmentId=assignment.assignment_id)
    return IntegrityViolation(
        f"Assignment {assignment.assignment_id} is active but work item "
        f"{assignment.work_item_id} or worker {assignment.worker_id} no longer references it "
        f"(reasons={cancelled.reasons})"
    )


def require_owned_active(caller: Caller, assignment_id: str, now: int) -> Assignment:
    """Load an assignment and check the caller holds it and it is still live."""
    if not caller.can_claim:
        raise Forbidden('Transcriber role required')
    assignment = get_assignment(assignment_id)
    if assignment.worker_id != caller.user_id:
        raise Forbidden('Not your assignment', assignmentId=assignment_id)
    if not assignment.is_active(now):
        raise AssignmentAlreadyClosed(
            assignmentId=assignment_id,
            releaseReason=assignment.release_reason or ReleaseReason.EXPIRED,
        )
    return assignment


# --- claim ---

def _claim_failure(worker_id: str, work_item_id: str, now: int,
                   cancelled: dynamo.TransactionCancelled) -> CoordinationError:
    blocking = get_active_assignment(worker_id, now)
    if blocking is not None:
        return ActiveAssignmentExists(blocking.assignment_id, workItemId=blocking.work_item_id)

    item = find_work_item(work_item_id)
    if item is None:
        return NotFound('Work item not found', workItemId=work_item_id)
    if item.removed_at is not None or item.status in WorkItemStatus.TERMINAL:
        return ItemNotClaimable(workItemId=work_item_id, status=item.status)
    if item.status != WorkItemStatus.PENDING_TRANSCRIPTION or cancelled.failed(1):
        return ItemNoLongerAvailable(workItemId=work_item_id)
    return ConcurrentModification(workItemId=work_item_id)


def _claim_item(worker_id: str, work_item_id: str, now: int) -> Assignment:
    assignment = Assignment(
        assignment_id=new_id(),
        work_item_id=work_item_id,
        worker_id=worker_id,
        created_at=now,
        expires_at=now + config.LEASE_DURATION_SECONDS,
        lease_state=LeaseState.ACTIVE,
    )

    operations: List[Dict[str, Any]] = [
        # 1. Worker lock: free, or held by a lease that has already run out
        dynamo.update_op(
            config.WORKERS_TABLE,
            {'workerId': worker_id},
            'SET activeAssignmentId = :aid, leaseExpiresAt = :exp, updatedAt = :now, '
            'qualityScore = if_not_exists(qualityScore, :initial)',
            condition='attribute_not_exists(activeAssignmentId) OR leaseExpiresAt <= :now',
            values={
                ':aid': assignment.assignment_id,
                ':exp': assignment.expires_at,
                ':now': now,
                ':initial': config.QUALITY_SCORE_INITIAL,
            },
        ),
        # 2. Work item: still open and not soft-removed
        dynamo.update_op(
            config.WORK_ITEMS_TABLE,
            {'workItemId': work_item_id},
            'SET #status = :assigned, activeAssignmentId = :aid, updatedAt = :now',
            condition='#status = :pending AND attribute_not_exists(removedAt)',
            names=_STATUS,
            values={
                ':assigned': WorkItemStatus.ASSIGNED,
                ':pending': WorkItemStatus.PENDING_TRANSCRIPTION,
                ':aid': assignment.assignment_id,
                ':now': now,
            },
        ),
        # 3. The lease itself
        dynamo.put_op(
            config.ASSIGNMENTS_TABLE,
            assignment.to_item(),
            condition='attribute_not_exists(assignmentId)',
        ),
    ]

    try:
        dynamo.transact(operations)
    except dynamo.TransactionCancelled as e:
        raise _claim_failure(worker_id, work_item_id, now, e)

    logger.info(
        f"Worker {worker_id} claimed work item {work_item_id} "
        f"(assignment {assignment.assignment_id}, expires {assignment.expires_at})"
    )
    return assignment


def _claim_next(worker_id: str, language_id: Optional[str], now: int) -> Assignment:
    """
    Lease the oldest claimable item. Candidates are tried in order with the
    same conditional transaction; losing a race moves on to the next one.
    """
    attempts = 0
    page_token = None
    while attempts < config.CLAIM_NEXT_ATTEMPTS:
        candidates, page_token = list_available(
            language_id=language_id,
            exclude_worker=worker_id,
            page_token=page_token,
            limit=config.CLAIM_NEXT_ATTEMPTS,
        )
        for candidate in candidates:
            attempts += 1
            try:
                return _claim_item(worker_id, candidate.work_item_id, now)
            except (ItemNoLongerAvailable, ItemNotClaimable, ConcurrentModification, NotFound) as e:
                logger.info(f"Lost work item {candidate.work_item_id} to another claimant: {e.code}")
            if attempts >= config.CLAIM_NEXT_ATTEMPTS:
                break
        if not page_token:
            break
    raise NoWorkAvailable(languageId=language_id) if language_id else NoWorkAvailable()


@returns_result
def claim(
    caller: Caller,
    work_item_id: str,
    language_id: Optional[str] = None,
    now: Optional[int] = None
) -> Assignment:
    """
    Lease a work item to the caller for LEASE_DURATION_SECONDS.

    Args:
        caller: The claiming worker
        work_item_id: Item to lease, or "next" for the oldest claimable item
        language_id: Language filter, only used with "next"
        now: Current epoch seconds (defaults to the wall clock)

    Returns:
        Result wrapping the new Assignment, or one of ActiveAssignmentExists,
        ItemNoLongerAvailable, NoWorkAvailable, ItemNotClaimable, NotFound,
        Forbidden
    """
    if not caller.can_claim:
        raise Forbidden('Transcriber role required')
    if not work_item_id:
        raise NotFound('Work item not found', workItemId=work_item_id)

    now = now_ts() if now is None else now
    worker_id = caller.user_id

    blocking = get_active_assignment(worker_id, now)
    if blocking is not None:
        raise ActiveAssignmentExists(blocking.assignment_id, workItemId=blocking.work_item_id)

    if work_item_id == NEXT:
        return _claim_next(worker_id, language_id, now)
    return _claim_item(worker_id, work_item_id, now)


def claim_next(caller: Caller, language_id: Optional[str] = None, now: Optional[int] = None):
    """Lease the oldest claimable item, optionally in one language."""
    return claim(caller, NEXT, language_id=language_id, now=now)


# --- release ---

@returns_result
def release(caller: Caller, assignment_id: str, now: Optional[int] = None) -> Assignment:
    """
    Give a lease back before it expires. The work item becomes claimable
    immediately. Releasing a closed lease fails with AssignmentAlreadyClosed
    and changes nothing.
    """
    now = now_ts() if now is None else now
    assignment = require_owned_active(caller, assignment_id, now)

    operations = [
        close_assignment_op(assignment, now, ReleaseReason.RELEASED),
        dynamo.update_op(
            config.WORK_ITEMS_TABLE,
            {'workItemId': assignment.work_item_id},
            'SET #status = :pending, updatedAt = :now REMOVE activeAssignmentId',
            condition='activeAssignmentId = :aid AND #status = :assigned',
            names=_STATUS,
            values={
                ':pending': WorkItemStatus.PENDING_TRANSCRIPTION,
                ':assigned': WorkItemStatus.ASSIGNED,
                ':now': now,
                ':aid': assignment.assignment_id,
            },
        ),
        clear_worker_lock_op(assignment, now),
    ]

    try:
        dynamo.transact(operations)
    except dynamo.TransactionCancelled as e:
        raise close_failure(assignment, now, e)

    assignment.released_at = now
    assignment.release_reason = ReleaseReason.RELEASED
    assignment.lease_state = None
    logger.info(f"Worker {caller.user_id} released assignment {assignment_id}")
    return assignment


# --- expiry ---

def stale_assignments(now: int) -> Iterator[Assignment]:
    """Open leases whose window closed at or before `now`."""
    items = dynamo.query_all(
        config.ASSIGNMENTS_TABLE,
        Key('leaseState').eq(LeaseState.ACTIVE) & Key('expiresAt').lte(now),
        index_name='ActiveLeaseIndex',
    )
    for item in items:
        yield Assignment.from_item(item)


def _clear_stale_worker_lock(assignment: Assignment, now: int) -> None:
    try:
        dynamo.update_item(
            config.WORKERS_TABLE,
            {'workerId': assignment.worker_id},
            'REMOVE activeAssignmentId, leaseExpiresAt SET updatedAt = :now',
            expression_values={':now': now, ':aid': assignment.assignment_id},
            condition='activeAssignmentId = :aid',
        )
    except dynamo.ConditionFailed:
        # Worker already holds a newer lease
        pass


def expire_assignment(assignment: Assignment, now: int) -> bool:
    """
    Expire one lease and reopen its work item.

    Returns:
        True if this call expired it, False if it was already closed
        (submitted, released, or expired by an earlier run)
    """
    operations = [
        dynamo.update_op(
            config.ASSIGNMENTS_TABLE,
            {'assignmentId': assignment.assignment_id},
            'SET releasedAt = :now, releaseReason = :reason REMOVE leaseState',
            condition='attribute_not_exists(releasedAt) AND expiresAt <= :now',
            values={':now': now, ':reason': ReleaseReason.EXPIRED},
        ),
        dynamo.update_op(
            config.WORK_ITEMS_TABLE,
            {'workItemId': assignment.work_item_id},
            'SET #status = :pending, updatedAt = :now REMOVE activeAssignmentId',
            condition='activeAssignmentId = :aid',
            names=_STATUS,
            values={
                ':pending': WorkItemStatus.PENDING_TRANSCRIPTION,
                ':now': now,
                ':aid': assignment.assignment_id,
            },
        ),
    ]

    try:
        dynamo.transact(operations)
    except dynamo.TransactionCancelled as e:
        current = find_assignment(assignment.assignment_id)
        if current is None or current.released_at is not None:
            logger.info(f"Assignment {assignment.assignment_id} closed before it could expire")
        elif current.expires_at > now:
            logger.info(f"Assignment {assignment.assignment_id} is not due yet")
        elif e.conflicted:
            logger.info(f"Assignment {assignment.assignment_id} contended, retrying next run")
        else:
            logger.critical(
                f"Assignment {assignment.assignment_id} is due but work item "
                f"{assignment.work_item_id} does not reference it (reasons={e.reasons})"
            )
        return False

    _clear_stale_worker_lock(assignment, now)
    logger.info(
        f"Expired assignment {assignment.assignment_id} "
        f"(work item: {assignment.work_item_id}, worker: {assignment.worker_id})"
    )
    return True


def expire_sweep(now: Optional[int] = None) -> int:
    """
    Expire every lease with expiresAt <= now.

    Each lease is expired in its own transaction. A failure on one lease is
    logged and skipped; it is picked up again by the next run.

    Returns:
        Number of leases this run expired
    """
    now = now_ts() if now is None else now
    expired = 0
    for assignment in stale_assignments(now):
        try:
            if expire_assignment(assignment, now):
                expired += 1
        except ClientError as e:
            logger.error(f"Error expiring assignment {assignment.assignment_id}: {e}")

    logger.info(f"Expiry sweep at {now}: expired {expired} assignment(s)")
    return expired


def run_scheduled_sweep(owner: str, now: Optional[int] = None) -> Optional[int]:
    """
    Single-flight wrapper for the scheduled trigger.

    Returns:
        Number of expired leases, or None if another run holds the lock
    """
    now = now_ts() if now is None else now
    if not config.LOCKS_TABLE:
        return expire_sweep(now)

    if not dynamo.acquire_lock(config.SWEEP_LOCK_NAME, owner, config.SWEEP_LOCK_SECONDS, now):
        logger.info("Another expiry sweep is running, skipping this tick")
        return None
    try:
        return expire_sweep(now)
    finally:
        dynamo.release_lock(config.SWEEP_LOCK_NAME, owner)
