"""
Record Payment Handler.
Admins record a payout against a worker's unpaid balance. The payout
starts PENDING until the transfer is settled.
"""
from worktable.auth import get_caller
from worktable.ledger import record_payment
from worktable.logging import logger, log_event
from worktable.utils import parse_body, result_response, server_error, unauthorized


def handler(event, context):
    """
    POST /admin/payments
    Body: {"workerId": "...", "amount": 12.5, "reference": optional, "notes": optional}
    """
    log_event(event)

    caller = get_caller(event)
    if caller is None:
        return unauthorized()

    try:
        body = parse_body(event)
        result = record_payment(
            caller,
            body.get('workerId'),
            body.get('amount'),
            reference=body.get('reference'),
            notes=body.get('notes'),
        )
        return result_response(result, lambda payment: payment.to_item(), status_code=201)

    except Exception as e:
        logger.error(f"Error recording payment: {e}")
        return server_error()
