"""
Notification sink. Publishes worker and admin notifications to SQS;
a downstream consumer renders them in-app or by email.
Delivery is best effort and never undoes a committed write.
"""
import boto3
import json
from typing import Any, Dict, Optional
from .config import config
from .logging import logger
from .models import NotificationType, Review, ReviewDecision, Submission

_sqs = None

REVIEW_TITLES = {
    ReviewDecision.APPROVED: 'Submission approved',
    ReviewDecision.REJECTED: 'Submission rejected',
    ReviewDecision.EDIT_REQUESTED: 'Edits requested',
}


def get_sqs_client():
    global _sqs
    if _sqs is None:
        _sqs = boto3.client('sqs', region_name=config.AWS_REGION)
    return _sqs


def reset_client() -> None:
    global _sqs
    _sqs = None


def send_message(queue_url: str, message_body: Dict[str, Any]) -> bool:
    """
    Send a single message to SQS queue.

    Args:
        queue_url: SQS queue URL
        message_body: Message body as dict (will be JSON serialized)

    Returns:
        True if sent successfully, False otherwise
    """
    if not queue_url:
        logger.debug("No notifications queue configured, dropping message")
        return False
    try:
        get_sqs_client().send_message(
            QueueUrl=queue_url,
            MessageBody=json.dumps(message_body, default=str)
        )
        logger.info(f"Message sent to {queue_url}")
        return True
    except Exception as e:
        logger.error(f"Error sending message to SQS: {e}")
        return False


def notify_review(submission: Submission, review: Review, queue_url: Optional[str] = None) -> bool:
    """Tell the worker how their submission was decided."""
    return send_message(queue_url or config.NOTIFICATIONS_QUEUE_URL, {
        'type': NotificationType.REVIEW,
        'userId': submission.worker_id,
        'title': REVIEW_TITLES.get(review.decision, review.decision),
        'body': review.notes,
        'submissionId': submission.submission_id,
        'workItemId': submission.work_item_id,
        'decision': review.decision,
    })


def notify_flagged(submission: Submission, queue_url: Optional[str] = None) -> bool:
    """Put a flagged recording in front of the admin triage queue."""
    return send_message(queue_url or config.NOTIFICATIONS_QUEUE_URL, {
        'type': NotificationType.FLAGGED,
        'submissionId': submission.submission_id,
        'workItemId': submission.work_item_id,
        'workerId': submission.worker_id,
        'flagReason': submission.flag_reason,
    })
