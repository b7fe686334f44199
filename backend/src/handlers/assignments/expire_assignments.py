"""
Expire Assignments Handler.
Triggered by EventBridge on a fixed schedule to reclaim abandoned leases.
"""
from worktable.assignments import run_scheduled_sweep
from worktable.logging import logger, log_event
from worktable.utils import new_id


def handler(event, context):
    """
    Scheduled handler that expires every lease past its window.

    When an assignment expires:
    1. Assignment gets releasedAt and releaseReason 'expired'
    2. Work item returns to PENDING_TRANSCRIPTION
    3. The worker's lease lock is cleared if it still points at it

    Never raises: a failed run is retried by the next tick.
    """
    log_event(event)
    owner = getattr(context, 'aws_request_id', None) or new_id()
    logger.info(f"Running assignment expiration check ({owner})")

    try:
        expired = run_scheduled_sweep(owner)
    except Exception as e:
        logger.error(f"Assignment expiration run failed: {e}")
        return {'expired': 0, 'skipped': False, 'failed': True}

    if expired is None:
        return {'expired': 0, 'skipped': True}
    return {'expired': expired, 'skipped': False}
