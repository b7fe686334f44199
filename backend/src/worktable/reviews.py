"""
Review Engine.
Records reviewer decisions on pending submissions. The review row, the
submission and work item transitions, and the worker's score and earnings
counters move together in one transaction.
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Tuple

from boto3.dynamodb.conditions import Attr, Key

from . import dynamo
from .auth import Caller
from .config import config
from .errors import (
    ConcurrentModification,
    Forbidden,
    IntegrityViolation,
    PreconditionError,
    SubmissionNotPending,
    ValidationError,
    returns_result,
)
from .ledger import accrued_amount, language_rate, to_cents
from .logging import logger
from .models import Review, ReviewDecision, Submission, SubmissionStatus, WorkItemStatus
from .notifications import notify_review
from .submissions import get_submission
from .utils import decode_page_token, encode_page_token, new_id, now_ts

MAX_PAGE_SIZE = 100

_ITEM_STATUS = {
    ReviewDecision.APPROVED: WorkItemStatus.APPROVED,
    ReviewDecision.REJECTED: WorkItemStatus.REJECTED,
    ReviewDecision.EDIT_REQUESTED: WorkItemStatus.PENDING_TRANSCRIPTION,
}

_WORKER_OP = 3


class _WorkerContended(Exception):
    """The worker row changed between read and commit."""


def nudge_quality(score: Optional[Decimal], approved: bool) -> Decimal:
    """
    Move a quality score one step toward the ceiling (approval) or the
    floor (rejection). Result is clamped and rounded to two decimals.
    """
    current = config.QUALITY_SCORE_INITIAL if score is None else Decimal(score)
    target = config.QUALITY_SCORE_CEILING if approved else config.QUALITY_SCORE_FLOOR
    updated = current + (target - current) * config.QUALITY_SCORE_STEP
    updated = min(max(updated, config.QUALITY_SCORE_FLOOR), config.QUALITY_SCORE_CEILING)
    return updated.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def _worker_op(submission: Submission, decision: str, previous: Optional[Decimal],
               cents: int, now: int) -> Dict[str, Any]:
    approved = decision == ReviewDecision.APPROVED
    values = {
        ':score': nudge_quality(previous, approved),
        ':now': now,
        ':one': 1,
    }
    expression = 'SET qualityScore = :score, updatedAt = :now'
    if approved:
        expression += ' ADD tasksApproved :one, totalEarningsCents :cents'
        values[':cents'] = cents
    else:
        expression += ' ADD tasksRejected :one'

    if previous is None:
        condition = 'attribute_not_exists(qualityScore)'
    else:
        condition = 'qualityScore = :prev'
        values[':prev'] = previous

    return dynamo.update_op(
        config.WORKERS_TABLE,
        {'workerId': submission.worker_id},
        expression,
        condition=condition,
        values=values,
    )


def _commit(caller: Caller, submission: Submission, decision: str, edited_text: Optional[str],
            notes: Optional[str], now: int) -> Tuple[Review, Submission]:
    review = Review(
        review_id=new_id(),
        submission_id=submission.submission_id,
        reviewer_id=caller.user_id,
        decision=decision,
        created_at=now,
        notes=notes,
        edited_text=edited_text,
    )

    submission_set = 'SET #status = :decision, reviewId = :rid, reviewerId = :reviewer, reviewedAt = :now'
    submission_values = {
        ':decision': decision,
        ':rid': review.review_id,
        ':reviewer': caller.user_id,
        ':now': now,
        ':pending': SubmissionStatus.PENDING_REVIEW,
    }
    cents = 0
    if decision == ReviewDecision.APPROVED:
        rate = language_rate(submission.language_id)
        earned = accrued_amount(submission.duration_sec, rate)
        cents = to_cents(earned)
        submission.text_of_record = edited_text or submission.text
        submission.rate_per_minute = rate
        submission.earned_amount = earned
        submission_set += ', textOfRecord = :tor, ratePerMinute = :rate, earnedAmount = :earned'
        submission_values.update({
            ':tor': submission.text_of_record,
            ':rate': rate,
            ':earned': earned,
        })

    operations = [
        dynamo.put_op(config.REVIEWS_TABLE, review.to_item(), condition='attribute_not_exists(reviewId)'),
        dynamo.update_op(
            config.SUBMISSIONS_TABLE,
            {'submissionId': submission.submission_id},
            submission_set,
            condition='#status = :pending',
            names={'#status': 'status'},
            values=submission_values,
        ),
        dynamo.update_op(
            config.WORK_ITEMS_TABLE,
            {'workItemId': submission.work_item_id},
            'SET #status = :next, updatedAt = :now',
            condition='#status = :in_review AND latestSubmissionId = :sid',
            names={'#status': 'status'},
            values={
                ':next': _ITEM_STATUS[decision],
                ':now': now,
                ':in_review': WorkItemStatus.PENDING_REVIEW,
                ':sid': submission.submission_id,
            },
        ),
    ]
    if decision != ReviewDecision.EDIT_REQUESTED:
        worker = dynamo.get_item(config.WORKERS_TABLE, {'workerId': submission.worker_id}) or {}
        operations.append(_worker_op(submission, decision, worker.get('qualityScore'), cents, now))

    try:
        dynamo.transact(operations)
    except dynamo.TransactionCancelled as e:
        current = get_submission(submission.submission_id)
        if current.status != SubmissionStatus.PENDING_REVIEW:
            raise SubmissionNotPending(submissionId=submission.submission_id, status=current.status)
        if e.failed(_WORKER_OP) or e.conflicted:
            raise _WorkerContended()
        raise IntegrityViolation(
            f"Submission {submission.submission_id} is pending review but work item "
            f"{submission.work_item_id} is not (reasons={e.reasons})"
        )

    submission.status = decision
    submission.review_id = review.review_id
    submission.reviewer_id = caller.user_id
    submission.reviewed_at = now
    return review, submission


@returns_result
def decide(
    caller: Caller,
    submission_id: str,
    decision: str,
    edited_text: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[int] = None
) -> Review:
    """
    Record a reviewer decision on a pending submission.

    Args:
        caller: Reviewer or admin
        submission_id: Submission being decided
        decision: APPROVED, REJECTED or EDIT_REQUESTED
        edited_text: Corrected transcript; becomes the text of record on approval
        notes: Feedback for the worker
        now: Current epoch seconds (defaults to the wall clock)

    Returns:
        Result wrapping the Review
    """
    if not caller.can_review:
        raise Forbidden('Reviewer role required')
    if decision not in ReviewDecision.ALL:
        raise ValidationError(f"Unknown decision {decision!r}", allowed=list(ReviewDecision.ALL))
    if isinstance(edited_text, str):
        edited_text = edited_text.strip() or None
    if edited_text and decision != ReviewDecision.APPROVED:
        raise ValidationError('editedText only applies to approvals')
    if edited_text and len(edited_text) > config.MAX_TRANSCRIPT_CHARS:
        raise ValidationError(f"editedText exceeds {config.MAX_TRANSCRIPT_CHARS} characters")

    now = now_ts() if now is None else now

    for attempt in range(config.DECIDE_ATTEMPTS):
        submission = get_submission(submission_id)
        if submission.worker_id == caller.user_id:
            raise Forbidden('You cannot review your own submission', submissionId=submission_id)
        if submission.is_flagged:
            raise PreconditionError(
                'Flagged submissions await admin triage',
                submissionId=submission_id,
            )
        if submission.status != SubmissionStatus.PENDING_REVIEW:
            raise SubmissionNotPending(submissionId=submission_id, status=submission.status)

        try:
            review, submission = _commit(caller, submission, decision, edited_text, notes, now)
        except _WorkerContended:
            logger.info(f"Worker row for submission {submission_id} changed, retry {attempt + 1}")
            continue

        logger.info(f"Reviewer {caller.user_id} marked submission {submission_id} {decision}")
        notify_review(submission, review)
        return review

    raise ConcurrentModification(submissionId=submission_id)


@returns_result
def list_review_queue(
    caller: Caller,
    language_id: Optional[str] = None,
    page_token: Optional[str] = None,
    limit: int = 20
) -> Tuple[List[Submission], Optional[str]]:
    """Non-flagged submissions awaiting review, oldest first."""
    if not caller.can_review:
        raise Forbidden('Reviewer role required')

    limit = min(max(int(limit), 1), MAX_PAGE_SIZE)
    start_key = decode_page_token(page_token)

    filter_expression = Attr('isFlagged').ne(True)
    if language_id:
        filter_expression = filter_expression & Attr('languageId').eq(language_id)

    submissions: List[Submission] = []
    while True:
        page, start_key = dynamo.query_page(
            config.SUBMISSIONS_TABLE,
            Key('status').eq(SubmissionStatus.PENDING_REVIEW),
            index_name='StatusIndex',
            filter_expression=filter_expression,
            limit=limit - len(submissions),
            scan_forward=True,
            start_key=start_key,
        )
        submissions.extend(Submission.from_item(i) for i in page)
        if not start_key or len(submissions) >= limit:
            break

    return submissions, encode_page_token(start_key)
