"""
Submission Pipeline.
Accepts a transcript or a flag for a leased item, and keeps drafts while
the lease is live. Closing the assignment, recording the submission and
moving the item into review (or triage) happen in one transaction.
"""
from typing import List, Optional

from boto3.dynamodb.conditions import Key

from . import dynamo
from .assignments import clear_worker_lock_op, close_assignment_op, close_failure, require_owned_active
from .auth import Caller
from .config import config
from .errors import AssignmentAlreadyClosed, IntegrityViolation, NotFound, ValidationError, returns_result
from .logging import logger
from .models import Assignment, ReleaseReason, Submission, SubmissionStatus, WorkItemStatus
from .notifications import notify_flagged
from .utils import new_id, now_ts
from .work_items import find_work_item


def find_submission(submission_id: str) -> Optional[Submission]:
    return Submission.from_item(dynamo.get_item(config.SUBMISSIONS_TABLE, {'submissionId': submission_id}))


def get_submission(submission_id: str) -> Submission:
    submission = find_submission(submission_id)
    if submission is None:
        raise NotFound('Submission not found', submissionId=submission_id)
    return submission


def _clean_payload(text: Optional[str], flag_reason: Optional[str], is_flagged: bool):
    """Normalise the submission body to (text, flag_reason)."""
    if text is not None and not isinstance(text, str):
        raise ValidationError('text must be a string')
    if flag_reason is not None and not isinstance(flag_reason, str):
        raise ValidationError('flagReason must be a string')
    if isinstance(text, str):
        text = text.strip()
    if isinstance(flag_reason, str):
        flag_reason = flag_reason.strip()
    flagged = bool(is_flagged or flag_reason)

    if flagged and text:
        raise ValidationError('Submit either a transcript or a flag, not both')
    if flagged:
        return None, flag_reason or config.DEFAULT_FLAG_REASON
    if not text:
        raise ValidationError('Transcript text is required')
    if len(text) > config.MAX_TRANSCRIPT_CHARS:
        raise ValidationError(
            f"Transcript exceeds {config.MAX_TRANSCRIPT_CHARS} characters",
            maxLength=config.MAX_TRANSCRIPT_CHARS,
        )
    return text, None


@returns_result
def submit(
    caller: Caller,
    assignment_id: str,
    text: Optional[str] = None,
    flag_reason: Optional[str] = None,
    is_flagged: bool = False,
    now: Optional[int] = None
) -> Submission:
    """
    Close an active assignment with a transcript or a flag.

    Args:
        caller: The worker holding the assignment
        assignment_id: Assignment being submitted
        text: Transcript text (omit when flagging)
        flag_reason: Why the recording cannot be transcribed
        is_flagged: Flag without a specific reason
        now: Current epoch seconds (defaults to the wall clock)

    Returns:
        Result wrapping the new Submission. Fails with AssignmentAlreadyClosed
        when the lease was released, submitted or expired first.
    """
    now = now_ts() if now is None else now
    assignment = require_owned_active(caller, assignment_id, now)
    text, flag_reason = _clean_payload(text, flag_reason, is_flagged)

    work_item = find_work_item(assignment.work_item_id)
    if work_item is None:
        raise IntegrityViolation(
            f"Assignment {assignment_id} references missing work item {assignment.work_item_id}"
        )

    flagged = flag_reason is not None
    submission = Submission(
        submission_id=new_id(),
        work_item_id=work_item.work_item_id,
        worker_id=assignment.worker_id,
        assignment_id=assignment_id,
        language_id=work_item.language_id,
        duration_sec=work_item.duration_sec,
        submitted_at=now,
        status=SubmissionStatus.PENDING_REVIEW,
        text=text,
        is_flagged=flagged,
        flag_reason=flag_reason,
    )
    next_status = WorkItemStatus.FLAGGED if flagged else WorkItemStatus.PENDING_REVIEW

    operations = [
        close_assignment_op(assignment, now, ReleaseReason.SUBMITTED),
        dynamo.update_op(
            config.WORK_ITEMS_TABLE,
            {'workItemId': work_item.work_item_id},
            'SET #status = :next, latestSubmissionId = :sid, updatedAt = :now REMOVE activeAssignmentId',
            condition='activeAssignmentId = :aid AND #status = :assigned',
            names={'#status': 'status'},
            values={
                ':next': next_status,
                ':sid': submission.submission_id,
                ':now': now,
                ':aid': assignment_id,
                ':assigned': WorkItemStatus.ASSIGNED,
            },
        ),
        clear_worker_lock_op(assignment, now, counter='tasksSubmitted'),
        dynamo.put_op(
            config.SUBMISSIONS_TABLE,
            submission.to_item(),
            condition='attribute_not_exists(submissionId)',
        ),
    ]

    try:
        dynamo.transact(operations)
    except dynamo.TransactionCancelled as e:
        raise close_failure(assignment, now, e)

    if flagged:
        logger.info(f"Worker {caller.user_id} flagged work item {work_item.work_item_id}: {flag_reason}")
        notify_flagged(submission)
    else:
        logger.info(f"Worker {caller.user_id} submitted work item {work_item.work_item_id}")
    return submission


@returns_result
def save_draft(caller: Caller, assignment_id: str, text, now: Optional[int] = None) -> Assignment:
    """
    Keep work-in-progress text on a live assignment. Each save replaces the
    previous draft; the draft stays on the assignment row after it closes.
    """
    now = now_ts() if now is None else now
    assignment = require_owned_active(caller, assignment_id, now)

    if not isinstance(text, str) or not text.strip():
        raise ValidationError('Draft text is required')
    if len(text) > config.MAX_TRANSCRIPT_CHARS:
        raise ValidationError(
            f"Draft exceeds {config.MAX_TRANSCRIPT_CHARS} characters",
            maxLength=config.MAX_TRANSCRIPT_CHARS,
        )

    try:
        attributes = dynamo.update_item(
            config.ASSIGNMENTS_TABLE,
            {'assignmentId': assignment_id},
            'SET draftText = :text, draftSavedAt = :now',
            expression_values={':text': text, ':now': now, ':worker': assignment.worker_id},
            condition='attribute_not_exists(releasedAt) AND expiresAt > :now AND workerId = :worker',
        )
    except dynamo.ConditionFailed:
        raise AssignmentAlreadyClosed(assignmentId=assignment_id)

    logger.info(f"Worker {caller.user_id} saved a draft for assignment {assignment_id}")
    return Assignment.from_item(attributes)


def list_worker_submissions(worker_id: str, limit: int = 20) -> List[Submission]:
    """The worker's most recent submissions, newest first."""
    items, _ = dynamo.query_page(
        config.SUBMISSIONS_TABLE,
        Key('workerId').eq(worker_id),
        index_name='WorkerIndex',
        limit=limit,
        scan_forward=False,
    )
    return [Submission.from_item(item) for item in items]
