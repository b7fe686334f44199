"""
Review Decision Handler.
Approves, rejects or sends back a pending submission.
"""
from worktable.auth import get_caller
from worktable.logging import logger, log_event
from worktable.reviews import decide
from worktable.utils import get_path_param, parse_body, result_response, server_error, unauthorized


def handler(event, context):
    """
    POST /reviewer/submissions/{submissionId}/decision
    Body: {"decision": "APPROVED" | "REJECTED" | "EDIT_REQUESTED",
           "editedText": optional, "notes": optional}
    """
    log_event(event)

    caller = get_caller(event)
    if caller is None:
        return unauthorized()

    try:
        body = parse_body(event)
        decision = body.get('decision')
        result = decide(
            caller,
            get_path_param(event, 'submissionId'),
            decision.upper() if isinstance(decision, str) else decision,
            edited_text=body.get('editedText'),
            notes=body.get('notes'),
        )
        return result_response(result, lambda review: review.to_item())

    except Exception as e:
        logger.error(f"Error recording review decision: {e}")
        return server_error()
