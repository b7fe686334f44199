"""
My Work Handler.
The transcriber dashboard: current lease with any saved draft, earnings
position and recent submissions, all derived from the datastore on each request.
"""
from worktable.assignments import get_active_assignment
from worktable.auth import get_caller
from worktable.errors import Forbidden
from worktable.ledger import get_ledger
from worktable.logging import logger, log_event
from worktable.storage import audio_url
from worktable.submissions import list_worker_submissions
from worktable.utils import format_response, get_int_query_param, now_ts, server_error, unauthorized
from worktable.work_items import find_work_item

MAX_RECENT = 50


def _active(worker_id, now):
    assignment = get_active_assignment(worker_id, now)
    if assignment is None:
        return None
    work_item = find_work_item(assignment.work_item_id)
    return {
        'assignment': assignment.to_item(),
        'secondsRemaining': assignment.seconds_remaining(now),
        'draft': assignment.draft_text,
        'workItem': work_item.to_item() if work_item else None,
        'audioUrl': audio_url(work_item.storage_ref) if work_item else None,
    }


def handler(event, context):
    """
    GET /transcriber/me?limit=
    """
    log_event(event)

    caller = get_caller(event)
    if caller is None:
        return unauthorized()
    if not caller.can_claim:
        error = Forbidden('Transcriber role required')
        return format_response(error.status_code, error.to_dict())

    try:
        now = now_ts()
        ledger = get_ledger(caller.user_id)
        recent = list_worker_submissions(
            caller.user_id,
            limit=get_int_query_param(event, 'limit', 20, MAX_RECENT),
        )
        return format_response(200, {
            'workerId': caller.user_id,
            'activeAssignment': _active(caller.user_id, now),
            'ledger': ledger.to_dict(),
            'qualityScore': ledger.quality_score,
            'recentSubmissions': [submission.to_item() for submission in recent],
        })

    except Exception as e:
        logger.error(f"Error loading worker dashboard: {e}")
        return server_error()
