from worktable.auth import get_caller
from worktable.ledger import settle_payment
from worktable.logging import logger, log_event
from worktable.utils import get_path_param, parse_body, result_response, server_error, unauthorized


def handler(event, context):
    """
    Mark a pending payout COMPLETED or FAILED.
    POST /admin/payments/{paymentId}/settle
    Body: {"outcome": "COMPLETED" | "FAILED"}
    """
    log_event(event)

    caller = get_caller(event)
    if caller is None:
        return unauthorized()

    try:
        outcome = parse_body(event).get('outcome')
        result = settle_payment(
            caller,
            get_path_param(event, 'paymentId'),
            outcome.upper() if isinstance(outcome, str) else outcome,
        )
        return result_response(result, lambda payment: payment.to_item())

    except Exception as e:
        logger.error(f"Error settling payment: {e}")
        return server_error()
