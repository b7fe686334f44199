"""
Submit Work Handler.
Closes the caller's assignment with a transcript, or flags the recording
as untranscribable.
"""
from worktable.auth import get_caller
from worktable.logging import logger, log_event
from worktable.submissions import submit
from worktable.utils import get_path_param, parse_body, result_response, server_error, unauthorized


def handler(event, context):
    """
    POST /transcriber/assignments/{assignmentId}/submit
    Body: {"text": "..."} or {"isFlagged": true, "flagReason": "..."}
    """
    log_event(event)

    caller = get_caller(event)
    if caller is None:
        return unauthorized()

    try:
        body = parse_body(event)
        result = submit(
            caller,
            get_path_param(event, 'assignmentId'),
            text=body.get('text'),
            flag_reason=body.get('flagReason'),
            is_flagged=bool(body.get('isFlagged')),
        )
        return result_response(result, lambda submission: submission.to_item(), status_code=201)

    except Exception as e:
        logger.error(f"Error submitting work: {e}")
        return server_error()
