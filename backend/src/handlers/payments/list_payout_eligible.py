"""
Payout Eligibility Handler.
Lists workers whose unpaid balance has reached the payout threshold.
"""
from worktable.auth import get_caller
from worktable.ledger import list_payout_eligible
from worktable.logging import logger, log_event
from worktable.utils import result_response, server_error, unauthorized


def handler(event, context):
    """
    GET /admin/payouts/eligible
    """
    log_event(event)

    caller = get_caller(event)
    if caller is None:
        return unauthorized()

    try:
        result = list_payout_eligible(caller)
        return result_response(result, lambda ledgers: {
            'items': [ledger.to_dict() for ledger in ledgers],
        })

    except Exception as e:
        logger.error(f"Error listing payout eligibility: {e}")
        return server_error()
