"""
List Available Work Items Handler.
Returns claimable recordings, oldest first, hiding the worker's own.
"""
from worktable.auth import get_caller
from worktable.logging import logger, log_event
from worktable.utils import format_response, get_int_query_param, get_query_param, server_error, unauthorized
from worktable.errors import Forbidden, ValidationError
from worktable.work_items import MAX_PAGE_SIZE, list_available


def handler(event, context):
    """
    GET /transcriber/work-items?languageId=&pageToken=&limit=
    """
    log_event(event)

    caller = get_caller(event)
    if caller is None:
        return unauthorized()
    if not caller.can_claim:
        error = Forbidden('Transcriber role required')
        return format_response(error.status_code, error.to_dict())

    try:
        items, next_token = list_available(
            language_id=get_query_param(event, 'languageId'),
            exclude_worker=caller.user_id,
            page_token=get_query_param(event, 'pageToken'),
            limit=get_int_query_param(event, 'limit', 20, MAX_PAGE_SIZE),
        )
        return format_response(200, {
            'items': [item.to_item() for item in items],
            'nextPageToken': next_token,
        })

    except ValidationError as e:
        return format_response(e.status_code, e.to_dict())
    except Exception as e:
        logger.error(f"Error listing work items: {e}")
        return server_error()
