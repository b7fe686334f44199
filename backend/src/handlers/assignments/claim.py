"""
Claim Work Item Handler.
Leases one work item to the calling transcriber (or the oldest claimable
one when workItemId is "next").
"""
from worktable.assignments import claim
from worktable.auth import get_caller
from worktable.logging import logger, log_event
from worktable.storage import audio_url
from worktable.utils import now_ts, parse_body, result_response, server_error, unauthorized
from worktable.work_items import find_work_item


def _render(assignment):
    work_item = find_work_item(assignment.work_item_id)
    return {
        'assignment': assignment.to_item(),
        'secondsRemaining': assignment.seconds_remaining(now_ts()),
        'workItem': work_item.to_item() if work_item else None,
        'audioUrl': audio_url(work_item.storage_ref) if work_item else None,
    }


def handler(event, context):
    """
    POST /transcriber/assignments
    Body: {"workItemId": "<id>" | "next", "languageId": optional}
    """
    log_event(event)

    caller = get_caller(event)
    if caller is None:
        return unauthorized()

    try:
        body = parse_body(event)
        result = claim(
            caller,
            body.get('workItemId') or 'next',
            language_id=body.get('languageId'),
        )
        return result_response(result, _render, status_code=201)

    except Exception as e:
        logger.error(f"Error claiming work item: {e}")
        return server_error()
