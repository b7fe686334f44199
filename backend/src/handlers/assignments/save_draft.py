from worktable.auth import get_caller
from worktable.logging import logger, log_event
from worktable.submissions import save_draft
from worktable.utils import get_path_param, parse_body, result_response, server_error, unauthorized


def handler(event, context):
    """
    Save work-in-progress text on the caller's live assignment.
    PUT /transcriber/assignments/{assignmentId}/draft
    Body: {"text": "..."}
    """
    log_event(event)

    caller = get_caller(event)
    if caller is None:
        return unauthorized()

    try:
        result = save_draft(
            caller,
            get_path_param(event, 'assignmentId'),
            parse_body(event).get('text'),
        )
        return result_response(result, lambda assignment: {
            'assignmentId': assignment.assignment_id,
            'draftText': assignment.draft_text,
            'draftSavedAt': assignment.draft_saved_at,
        })

    except Exception as e:
        logger.error(f"Error saving draft: {e}")
        return server_error()
