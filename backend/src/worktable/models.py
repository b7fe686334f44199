"""
Data models and status constants for the transcription work table.
Based on the work item lifecycle:
Pending transcription → Assigned → Pending review | Flagged → Approved | Rejected
(edit requests send the item back to Pending transcription).
"""
from dataclasses import dataclass, field, fields
from decimal import Decimal
from typing import Any, Dict, Optional


class WorkItemStatus:
    """Work item lifecycle statuses."""
    PENDING_TRANSCRIPTION = 'PENDING_TRANSCRIPTION'
    ASSIGNED = 'ASSIGNED'
    PENDING_REVIEW = 'PENDING_REVIEW'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    FLAGGED = 'FLAGGED'

    TERMINAL = (APPROVED, REJECTED, FLAGGED)


class SubmissionStatus:
    """Submission review statuses."""
    PENDING_REVIEW = 'PENDING_REVIEW'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    EDIT_REQUESTED = 'EDIT_REQUESTED'


class ReviewDecision:
    """Decisions a reviewer can record against a submission."""
    APPROVED = SubmissionStatus.APPROVED
    REJECTED = SubmissionStatus.REJECTED
    EDIT_REQUESTED = SubmissionStatus.EDIT_REQUESTED

    ALL = (APPROVED, REJECTED, EDIT_REQUESTED)


class ReleaseReason:
    """Why an assignment stopped being active."""
    RELEASED = 'released'
    SUBMITTED = 'submitted'
    EXPIRED = 'expired'


class LeaseState:
    """Marker stored on open assignments (sparse index key)."""
    ACTIVE = 'ACTIVE'


class PaymentStatus:
    """Payout record statuses."""
    PENDING = 'PENDING'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'


class NotificationType:
    """Message types published to the notifications queue."""
    REVIEW = 'REVIEW'
    FLAGGED = 'FLAGGED'


class _Record:
    """
    Maps a dataclass onto a DynamoDB item.
    Attribute names are camelCase in the table; None values are never written
    so sparse index keys stay absent.
    """

    @classmethod
    def _names(cls) -> Dict[str, str]:
        return {f.name: _camel(f.name) for f in fields(cls)}

    def to_item(self) -> Dict[str, Any]:
        item = {}
        for name, attr in self._names().items():
            value = getattr(self, name)
            if value is not None:
                item[attr] = value
        return item

    @classmethod
    def from_item(cls, item: Optional[Dict[str, Any]]):
        if not item:
            return None
        kwargs = {}
        for name, attr in cls._names().items():
            if attr in item:
                kwargs[name] = item[attr]
        return cls(**kwargs)


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.capitalize() for part in rest)


@dataclass
class WorkItem(_Record):
    """One recording awaiting transcription."""
    work_item_id: str
    prompt_id: str
    language_id: str
    speaker_id: str
    duration_sec: Decimal
    storage_ref: str
    status: str = WorkItemStatus.PENDING_TRANSCRIPTION
    created_at: int = 0
    updated_at: Optional[int] = None
    active_assignment_id: Optional[str] = None
    latest_submission_id: Optional[str] = None
    removed_at: Optional[int] = None


@dataclass
class Assignment(_Record):
    """An exclusive, time-bounded lease of one work item by one worker."""
    assignment_id: str
    work_item_id: str
    worker_id: str
    created_at: int
    expires_at: int
    released_at: Optional[int] = None
    release_reason: Optional[str] = None
    lease_state: Optional[str] = None
    draft_text: Optional[str] = None
    draft_saved_at: Optional[int] = None

    def is_active(self, now: int) -> bool:
        return self.released_at is None and self.expires_at > now

    def seconds_remaining(self, now: int) -> int:
        return max(0, int(self.expires_at) - now)


@dataclass
class Submission(_Record):
    """A worker's transcript (or flag) closing out an assignment."""
    submission_id: str
    work_item_id: str
    worker_id: str
    assignment_id: str
    language_id: str
    duration_sec: Decimal
    submitted_at: int
    status: str = SubmissionStatus.PENDING_REVIEW
    text: Optional[str] = None
    is_flagged: bool = False
    flag_reason: Optional[str] = None
    text_of_record: Optional[str] = None
    review_id: Optional[str] = None
    reviewer_id: Optional[str] = None
    reviewed_at: Optional[int] = None
    rate_per_minute: Optional[Decimal] = None
    earned_amount: Optional[Decimal] = None


@dataclass
class Review(_Record):
    """Append-only audit record of a reviewer's decision."""
    review_id: str
    submission_id: str
    reviewer_id: str
    decision: str
    created_at: int
    notes: Optional[str] = None
    edited_text: Optional[str] = None


@dataclass
class Payment(_Record):
    """A payout recorded by an operator."""
    payment_id: str
    worker_id: str
    amount: Decimal
    created_at: int
    recorded_by: str
    status: str = PaymentStatus.PENDING
    currency: str = 'USD'
    reference: Optional[str] = None
    notes: Optional[str] = None
    settled_at: Optional[int] = None


@dataclass
class LedgerSnapshot:
    """Earnings figures derived on read for one worker."""
    worker_id: str
    estimated: Decimal
    paid: Decimal
    pending: Decimal
    approved_seconds: Decimal
    approved_count: int
    payout_threshold: Decimal
    currency: str = 'USD'
    quality_score: Optional[Decimal] = None
    total_earnings_cents: int = 0
    approved_by_language: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def balance(self) -> Decimal:
        return self.estimated - self.paid

    @property
    def payout_eligible(self) -> bool:
        return self.balance >= self.payout_threshold

    @property
    def approved_minutes(self) -> Decimal:
        return self.approved_seconds / Decimal(60)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'workerId': self.worker_id,
            'estimated': self.estimated,
            'paid': self.paid,
            'pending': self.pending,
            'balance': self.balance,
            'approvedMinutes': self.approved_minutes,
            'approvedCount': self.approved_count,
            'approvedByLanguage': self.approved_by_language,
            'payoutThreshold': self.payout_threshold,
            'payoutEligible': self.payout_eligible,
            'qualityScore': self.quality_score,
            'totalEarningsCents': self.total_earnings_cents,
            'currency': self.currency,
        }
