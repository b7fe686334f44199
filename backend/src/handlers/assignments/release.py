from worktable.assignments import release
from worktable.auth import get_caller
from worktable.logging import logger, log_event
from worktable.utils import get_path_param, result_response, server_error, unauthorized


def handler(event, context):
    """
    Hand an assignment back before it expires.
    POST /transcriber/assignments/{assignmentId}/release
    """
    log_event(event)

    caller = get_caller(event)
    if caller is None:
        return unauthorized()

    try:
        result = release(caller, get_path_param(event, 'assignmentId'))
        return result_response(result, lambda assignment: {
            'message': 'Assignment released',
            'assignment': assignment.to_item(),
        })

    except Exception as e:
        logger.error(f"Error releasing assignment: {e}")
        return server_error()
