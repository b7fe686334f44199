"""
Earnings Ledger.

Balances are derived on read from approved submissions and recorded
payments. Approved earnings use the rate snapshotted on the submission at
approval time. The only stored total is committedPayoutCents on the worker
row: the sum of PENDING and COMPLETED payouts, which guards new payouts
inside the same transaction that records them.
"""
from collections import defaultdict
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Attr, Key

from . import dynamo
from .auth import Caller
from .config import config
from .errors import (
    ConcurrentModification,
    Forbidden,
    IntegrityViolation,
    NotFound,
    PaymentNotPending,
    ValidationError,
    returns_result,
)
from .logging import logger
from .models import LedgerSnapshot, Payment, PaymentStatus, SubmissionStatus
from .utils import new_id, now_ts

SECONDS_PER_MINUTE = Decimal(60)
CENT = Decimal('0.01')

_RESERVE_OP = 1


def language_rate(language_id: str) -> Decimal:
    """Transcriber rate per audio minute for a language."""
    language = dynamo.get_item(config.LANGUAGES_TABLE, {'languageId': language_id}) if language_id else None
    rate = (language or {}).get('transcriberRatePerMin')
    if rate is None:
        return config.DEFAULT_RATE_PER_MINUTE
    return Decimal(str(rate))


def accrued_amount(duration_sec: Decimal, rate_per_minute: Decimal) -> Decimal:
    # Multiply first so 10s at 0.03/min is exactly 0.005
    return Decimal(duration_sec) * Decimal(rate_per_minute) / SECONDS_PER_MINUTE


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def _approved_submissions(worker_id: str):
    return dynamo.query_all(
        config.SUBMISSIONS_TABLE,
        Key('workerId').eq(worker_id),
        index_name='WorkerIndex',
        filter_expression=Attr('status').eq(SubmissionStatus.APPROVED),
    )


def list_payments(worker_id: str) -> List[Payment]:
    """All payments recorded for a worker, newest first."""
    items = dynamo.query_all(
        config.PAYMENTS_TABLE,
        Key('workerId').eq(worker_id),
        index_name='WorkerIndex',
        scan_forward=False,
    )
    return [Payment.from_item(item) for item in items]


def get_ledger(worker_id: str) -> LedgerSnapshot:
    """
    Compute a worker's earnings position.

    estimated = sum of durationSec / 60 * rate over APPROVED submissions
    paid      = sum of COMPLETED payments
    pending   = sum of PENDING payments
    """
    estimated = Decimal(0)
    approved_seconds = Decimal(0)
    approved_count = 0
    by_language: Dict[str, Decimal] = defaultdict(Decimal)

    for item in _approved_submissions(worker_id):
        duration = Decimal(item.get('durationSec', 0))
        rate = item.get('ratePerMinute')
        if rate is None:
            rate = language_rate(item.get('languageId'))
        estimated += accrued_amount(duration, rate)
        approved_seconds += duration
        approved_count += 1
        by_language[item.get('languageId', 'unknown')] += duration / SECONDS_PER_MINUTE

    paid = Decimal(0)
    pending = Decimal(0)
    for payment in list_payments(worker_id):
        if payment.status == PaymentStatus.COMPLETED:
            paid += Decimal(payment.amount)
        elif payment.status == PaymentStatus.PENDING:
            pending += Decimal(payment.amount)

    worker = dynamo.get_item(config.WORKERS_TABLE, {'workerId': worker_id}) or {}

    return LedgerSnapshot(
        worker_id=worker_id,
        estimated=estimated,
        paid=paid,
        pending=pending,
        approved_seconds=approved_seconds,
        approved_count=approved_count,
        payout_threshold=config.PAYOUT_THRESHOLD,
        currency=config.CURRENCY,
        quality_score=worker.get('qualityScore'),
        total_earnings_cents=int(worker.get('totalEarningsCents', 0)),
        approved_by_language=dict(by_language),
    )


def _parse_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError('amount must be a number')
    if not value.is_finite() or value <= 0:
        raise ValidationError('amount must be positive')
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _committed_cents(worker_id: str) -> Optional[int]:
    """Cents reserved by PENDING and COMPLETED payouts, None before the first payout."""
    worker = dynamo.get_item(config.WORKERS_TABLE, {'workerId': worker_id}) or {}
    committed = worker.get('committedPayoutCents')
    return None if committed is None else int(committed)


def _reserve_op(worker_id: str, previous: Optional[int], cents: int, now: int) -> Dict[str, Any]:
    values = {':next': (previous or 0) + cents, ':now': now}
    if previous is None:
        condition = 'attribute_not_exists(committedPayoutCents)'
    else:
        condition = 'committedPayoutCents = :prev'
        values[':prev'] = previous
    return dynamo.update_op(
        config.WORKERS_TABLE,
        {'workerId': worker_id},
        'SET committedPayoutCents = :next, updatedAt = :now',
        condition=condition,
        values=values,
    )


@returns_result
def record_payment(
    caller: Caller,
    worker_id: str,
    amount,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[int] = None
) -> Payment:
    """
    Record a payout to a worker as PENDING.

    The amount cannot exceed what is still owed: balance minus payouts
    already in flight. The payment is written together with a reservation
    on the worker row, conditional on the reservation total it was checked
    against, so concurrent payouts cannot overdraw.
    """
    if not caller.can_administer:
        raise Forbidden('Only admins can record payments')
    if not worker_id:
        raise ValidationError('workerId is required')

    value = _parse_amount(amount)
    cents = to_cents(value)
    now = now_ts() if now is None else now

    # Approved earnings only grow, so an older read is never too generous
    earned_cents = int((get_ledger(worker_id).estimated * 100).to_integral_value(rounding=ROUND_FLOOR))

    payment = Payment(
        payment_id=new_id(),
        worker_id=worker_id,
        amount=value,
        created_at=now,
        recorded_by=caller.user_id,
        status=PaymentStatus.PENDING,
        currency=config.CURRENCY,
        reference=reference,
        notes=notes,
    )

    for attempt in range(config.PAYOUT_ATTEMPTS):
        committed = _committed_cents(worker_id)
        available_cents = earned_cents - (committed or 0)
        if cents > available_cents:
            raise ValidationError(
                'Payment exceeds unpaid balance',
                available=(Decimal(max(available_cents, 0)) / 100).quantize(CENT),
            )

        try:
            dynamo.transact([
                dynamo.put_op(
                    config.PAYMENTS_TABLE,
                    payment.to_item(),
                    condition='attribute_not_exists(paymentId)',
                ),
                _reserve_op(worker_id, committed, cents, now),
            ])
        except dynamo.TransactionCancelled as e:
            if e.failed(_RESERVE_OP) or e.conflicted:
                logger.info(f"Payout total for worker {worker_id} changed, retry {attempt + 1}")
                continue
            raise IntegrityViolation(f"Payment {payment.payment_id} could not be written (reasons={e.reasons})")

        logger.info(f"Recorded payment {payment.payment_id}: {value} {payment.currency} to worker {worker_id}")
        return payment

    raise ConcurrentModification(workerId=worker_id)


@returns_result
def settle_payment(caller: Caller, payment_id: str, outcome: str, now: Optional[int] = None) -> Payment:
    """Move a PENDING payment to COMPLETED or FAILED. FAILED returns the reservation."""
    if not caller.can_administer:
        raise Forbidden('Only admins can settle payments')
    if outcome not in (PaymentStatus.COMPLETED, PaymentStatus.FAILED):
        raise ValidationError(
            f"outcome must be {PaymentStatus.COMPLETED} or {PaymentStatus.FAILED}",
            outcome=outcome,
        )

    now = now_ts() if now is None else now
    payment = Payment.from_item(dynamo.get_item(config.PAYMENTS_TABLE, {'paymentId': payment_id}))
    if payment is None:
        raise NotFound('Payment not found', paymentId=payment_id)
    if payment.status != PaymentStatus.PENDING:
        raise PaymentNotPending(f"Payment is already {payment.status}", paymentId=payment_id, status=payment.status)

    operations = [
        dynamo.update_op(
            config.PAYMENTS_TABLE,
            {'paymentId': payment_id},
            'SET #status = :outcome, settledAt = :now',
            condition='#status = :pending',
            names={'#status': 'status'},
            values={':outcome': outcome, ':now': now, ':pending': PaymentStatus.PENDING},
        ),
    ]
    if outcome == PaymentStatus.FAILED:
        cents = to_cents(Decimal(payment.amount))
        operations.append(dynamo.update_op(
            config.WORKERS_TABLE,
            {'workerId': payment.worker_id},
            'ADD committedPayoutCents :refund SET updatedAt = :now',
            condition='committedPayoutCents >= :cents',
            values={':refund': -cents, ':cents': cents, ':now': now},
        ))

    try:
        dynamo.transact(operations)
    except dynamo.TransactionCancelled as e:
        current = Payment.from_item(dynamo.get_item(config.PAYMENTS_TABLE, {'paymentId': payment_id}))
        if current.status != PaymentStatus.PENDING:
            raise PaymentNotPending(
                f"Payment is already {current.status}",
                paymentId=payment_id,
                status=current.status,
            )
        if e.failed(1):
            raise IntegrityViolation(
                f"Worker {payment.worker_id} has less reserved than pending payment {payment_id}"
            )
        raise ConcurrentModification(paymentId=payment_id)

    payment.status = outcome
    payment.settled_at = now
    logger.info(f"Payment {payment_id} settled as {outcome}")
    return payment


@returns_result
def list_payout_eligible(caller: Caller) -> List[LedgerSnapshot]:
    """Workers whose unpaid balance has reached the payout threshold, largest first."""
    if not caller.can_administer:
        raise Forbidden('Only admins can list payouts')

    eligible = []
    for worker in dynamo.scan_all(config.WORKERS_TABLE, Attr('totalEarningsCents').gt(0)):
        ledger = get_ledger(worker['workerId'])
        if ledger.payout_eligible:
            eligible.append(ledger)

    eligible.sort(key=lambda ledger: ledger.balance, reverse=True)
    return eligible
