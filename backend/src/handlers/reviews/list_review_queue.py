from worktable.auth import get_caller
from worktable.logging import logger, log_event
from worktable.reviews import MAX_PAGE_SIZE, list_review_queue
from worktable.utils import get_int_query_param, get_query_param, result_response, server_error, unauthorized


def _render(page):
    submissions, next_token = page
    return {
        'items': [submission.to_item() for submission in submissions],
        'nextPageToken': next_token,
    }


def handler(event, context):
    """
    Submissions awaiting review, oldest first.
    GET /reviewer/submissions?languageId=&pageToken=&limit=
    """
    log_event(event)

    caller = get_caller(event)
    if caller is None:
        return unauthorized()

    try:
        result = list_review_queue(
            caller,
            language_id=get_query_param(event, 'languageId'),
            page_token=get_query_param(event, 'pageToken'),
            limit=get_int_query_param(event, 'limit', 20, MAX_PAGE_SIZE),
        )
        return result_response(result, _render)

    except Exception as e:
        logger.error(f"Error listing review queue: {e}")
        return server_error()
