from worktable.auth import get_caller
from worktable.logging import logger, log_event
from worktable.utils import get_path_param, result_response, server_error, unauthorized
from worktable.work_items import retire_work_item


def handler(event, context):
    """
    Take a work item out of the claim pool.
    DELETE /admin/work-items/{workItemId}
    """
    log_event(event)

    caller = get_caller(event)
    if caller is None:
        return unauthorized()

    try:
        result = retire_work_item(caller, get_path_param(event, 'workItemId'))
        return result_response(result, lambda item: item.to_item())

    except Exception as e:
        logger.error(f"Error retiring work item: {e}")
        return server_error()
