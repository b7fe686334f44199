"""
Create Work Item Handler.
Registers an accepted recording so transcribers can claim it.
"""
from worktable.auth import get_caller
from worktable.logging import logger, log_event
from worktable.utils import parse_body, result_response, server_error, unauthorized
from worktable.work_items import create_work_item


def handler(event, context):
    """
    POST /admin/work-items
    Body: {promptId, languageId, speakerId, durationSec, storageRef}
    """
    log_event(event)

    caller = get_caller(event)
    if caller is None:
        return unauthorized()

    try:
        body = parse_body(event)
        result = create_work_item(
            caller,
            prompt_id=body.get('promptId'),
            language_id=body.get('languageId'),
            speaker_id=body.get('speakerId'),
            duration_sec=body.get('durationSec'),
            storage_ref=body.get('storageRef'),
        )
        return result_response(result, lambda item: item.to_item(), status_code=201)

    except Exception as e:
        logger.error(f"Error creating work item: {e}")
        return server_error()
