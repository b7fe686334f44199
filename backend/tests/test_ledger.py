"""
Tests for the Earnings Ledger and payout recording.
"""
from decimal import Decimal

import pytest

from conftest import NOW, load
from worktable import dynamo, ledger as ledger_module
from worktable.assignments import claim
from worktable.config import config
from worktable.ledger import (
    accrued_amount,
    get_ledger,
    list_payments,
    list_payout_eligible,
    record_payment,
    settle_payment,
    to_cents,
)
from worktable.models import PaymentStatus
from worktable.reviews import decide
from worktable.submissions import submit


@pytest.fixture
def approve(make_item, worker_a, reviewer):
    """Factory: run one item through claim, submit and approval for worker A."""
    clock = {'t': NOW}

    def _approve(duration_sec, language_id='fr', decision='APPROVED'):
        clock['t'] += 100
        item = make_item(duration_sec=duration_sec, language_id=language_id)
        assignment = claim(worker_a, item.work_item_id, now=clock['t']).value
        submission = submit(worker_a, assignment.assignment_id, text='ok', now=clock['t'] + 1).value
        assert decide(reviewer, submission.submission_id, decision, now=clock['t'] + 2).ok
        return submission

    return _approve


class TestArithmetic:
    """Accrual and cent rounding."""

    def test_accrual_is_exact(self):
        """10 seconds at 0.03/min accrues exactly 0.005."""
        assert accrued_amount(Decimal('10'), Decimal('0.03')) == Decimal('0.005')

    def test_cents_round_half_up(self):
        """Cents round half up."""
        assert to_cents(Decimal('0.005')) == 1
        assert to_cents(Decimal('0.0049')) == 0
        assert to_cents(Decimal('1.235')) == 124


class TestGetLedger:
    """Ledger figures derived on read."""

    def test_empty(self, aws):
        """A worker with no history has a zero ledger."""
        ledger = get_ledger('nobody')

        assert ledger.estimated == 0
        assert ledger.balance == 0
        assert not ledger.payout_eligible
        assert ledger.payout_threshold == config.PAYOUT_THRESHOLD

    def test_only_approved_work_counts(self, approve, set_rate):
        """Only approved submissions count toward estimated."""
        set_rate('fr', '0.03')
        set_rate('sw', '0.06')
        approve(600)
        approve(1200, language_id='sw')
        approve(6000, decision='REJECTED')

        ledger = get_ledger('worker-a')

        # 10 min at 0.03 + 20 min at 0.06
        assert ledger.estimated == Decimal('1.5')
        assert ledger.approved_count == 2
        assert ledger.approved_minutes == Decimal('30')
        assert ledger.approved_by_language == {'fr': Decimal('10'), 'sw': Decimal('20')}
        assert ledger.total_earnings_cents == 150

    def test_rate_change_does_not_rewrite_history(self, approve, set_rate):
        """Later rate changes leave earned amounts alone."""
        set_rate('fr', '0.03')
        approve(600)
        set_rate('fr', '0.10')

        assert get_ledger('worker-a').estimated == Decimal('0.3')

    def test_payout_eligibility(self, approve, set_rate, admin):
        """Eligibility follows the balance across the threshold."""
        set_rate('fr', '1')
        approve(1800)

        ledger = get_ledger('worker-a')
        assert ledger.balance == Decimal('30')
        assert ledger.payout_eligible

        payment = record_payment(admin, 'worker-a', '10', now=NOW + 10_000).value
        settle_payment(admin, payment.payment_id, PaymentStatus.COMPLETED, now=NOW + 10_001)

        ledger = get_ledger('worker-a')
        assert ledger.paid == Decimal('10')
        assert ledger.balance == Decimal('20')
        assert not ledger.payout_eligible
        assert ledger.to_dict()['payoutEligible'] is False
        assert ledger.total_earnings_cents == 3000


class TestPayments:
    """Recording and settling payouts."""

    @pytest.fixture
    def earned(self, approve, set_rate):
        set_rate('fr', '1')
        approve(600)  # 10.00 owed

    def test_record_pending_payment(self, earned, admin):
        """A recorded payout is PENDING and counted as pending."""
        result = record_payment(admin, 'worker-a', '4.5', reference='tx-1', now=NOW + 5000)

        assert result.ok
        payment = result.value
        assert payment.status == PaymentStatus.PENDING
        assert payment.amount == Decimal('4.50')
        assert payment.recorded_by == 'admin-1'

        ledger = get_ledger('worker-a')
        assert ledger.pending == Decimal('4.50')
        assert ledger.paid == 0

    def test_cannot_overpay(self, earned, admin):
        """Payouts cannot exceed the balance less pending payouts."""
        record_payment(admin, 'worker-a', '6', now=NOW + 5000)

        result = record_payment(admin, 'worker-a', '5', now=NOW + 5001)

        assert result.error.code == 'ValidationError'
        assert result.error.details['available'] == Decimal('4.00')

    @pytest.mark.parametrize('amount', ['0', '-1', 'lots'])
    def test_amount_must_be_positive(self, earned, admin, amount):
        """Zero, negative and non-numeric amounts are rejected."""
        assert record_payment(admin, 'worker-a', amount).error.code == 'ValidationError'

    def test_requires_admin(self, earned, reviewer):
        """Only admins record payouts."""
        assert record_payment(reviewer, 'worker-a', '1').error.code == 'Forbidden'

    def test_failed_payment_frees_balance(self, earned, admin):
        """A FAILED payout frees its amount again."""
        payment = record_payment(admin, 'worker-a', '10', now=NOW + 5000).value

        settled = settle_payment(admin, payment.payment_id, PaymentStatus.FAILED, now=NOW + 5001)

        assert settled.value.status == PaymentStatus.FAILED
        assert settled.value.settled_at == NOW + 5001
        assert record_payment(admin, 'worker-a', '10', now=NOW + 5002).ok

    def test_settle_twice(self, earned, admin):
        """A settled payout cannot be settled again."""
        payment = record_payment(admin, 'worker-a', '1', now=NOW + 5000).value
        settle_payment(admin, payment.payment_id, PaymentStatus.COMPLETED)

        again = settle_payment(admin, payment.payment_id, PaymentStatus.FAILED)

        assert again.error.code == 'PaymentNotPending'
        assert get_ledger('worker-a').paid == Decimal('1')

    def test_settle_unknown(self, aws, admin):
        """Settling an unknown payout is NotFound."""
        assert settle_payment(admin, 'missing', PaymentStatus.COMPLETED).error.code == 'NotFound'

    def test_bad_outcome(self, aws, admin):
        """Only COMPLETED or FAILED are valid outcomes."""
        assert settle_payment(admin, 'p', 'PENDING').error.code == 'ValidationError'


def committed_cents(worker_id='worker-a'):
    return load(config.WORKERS_TABLE, {'workerId': worker_id}).get('committedPayoutCents')


class TestPayoutRaces:
    """Payouts recorded by two admins against the same balance."""

    @pytest.fixture
    def earned(self, approve, set_rate):
        set_rate('fr', '1')
        approve(600)  # 10.00 owed

    @staticmethod
    def read_before_other_payout(monkeypatch, count):
        """The next `count` reservation reads see the row as it was before any payout."""
        real = ledger_module._committed_cents
        stale = [None] * count

        def read(worker_id):
            return stale.pop() if stale else real(worker_id)

        monkeypatch.setattr(ledger_module, '_committed_cents', read)

    def test_second_full_payout_is_refused(self, earned, admin, monkeypatch):
        """Both admins saw 10.00 owed; only one payout of 10.00 is recorded."""
        assert record_payment(admin, 'worker-a', '10', now=NOW + 5000).ok
        self.read_before_other_payout(monkeypatch, 1)

        second = record_payment(admin, 'worker-a', '10', now=NOW + 5001)

        assert second.error.code == 'ValidationError'
        assert second.error.details['available'] == Decimal('0.00')
        assert len(list_payments('worker-a')) == 1
        snapshot = get_ledger('worker-a')
        assert snapshot.pending == Decimal('10')
        assert snapshot.balance - snapshot.pending == 0
        assert committed_cents() == 1000

    def test_payouts_that_fit_both_commit(self, earned, admin, monkeypatch):
        """A retry against the fresh total still records a payout that fits."""
        assert record_payment(admin, 'worker-a', '6', now=NOW + 5000).ok
        self.read_before_other_payout(monkeypatch, 1)

        assert record_payment(admin, 'worker-a', '4', now=NOW + 5001).ok

        assert get_ledger('worker-a').pending == Decimal('10')
        assert committed_cents() == 1000

    def test_constant_contention(self, earned, admin, monkeypatch):
        """Every attempt losing the race ends in ConcurrentModification."""
        assert record_payment(admin, 'worker-a', '1', now=NOW + 5000).ok
        self.read_before_other_payout(monkeypatch, config.PAYOUT_ATTEMPTS)

        result = record_payment(admin, 'worker-a', '1', now=NOW + 5001)

        assert result.error.code == 'ConcurrentModification'
        assert len(list_payments('worker-a')) == 1

    def test_settlement_and_reservation(self, earned, admin):
        """FAILED returns the reservation; COMPLETED keeps it."""
        failed = record_payment(admin, 'worker-a', '3', now=NOW + 5000).value
        completed = record_payment(admin, 'worker-a', '2', now=NOW + 5001).value
        assert committed_cents() == 500

        settle_payment(admin, failed.payment_id, PaymentStatus.FAILED, now=NOW + 5002)
        settle_payment(admin, completed.payment_id, PaymentStatus.COMPLETED, now=NOW + 5003)

        assert committed_cents() == 200
        assert get_ledger('worker-a').balance == Decimal('8')


class TestPayoutEligible:
    """Admin list of workers owed at least the payout threshold."""

    def test_lists_workers_over_threshold(self, approve, set_rate, admin):
        """Only workers whose balance reaches the threshold are listed."""
        set_rate('fr', '1')
        approve(1800)
        dynamo.table(config.WORKERS_TABLE).put_item(Item={'workerId': 'worker-z', 'totalEarningsCents': 500})

        result = list_payout_eligible(admin)

        assert [snapshot.worker_id for snapshot in result.value] == ['worker-a']
        assert result.value[0].balance == Decimal('30')

    def test_paid_down_worker_drops_off(self, approve, set_rate, admin):
        """A completed payout below the threshold removes the worker."""
        set_rate('fr', '1')
        approve(1800)
        payment = record_payment(admin, 'worker-a', '5', now=NOW + 10_000).value
        settle_payment(admin, payment.payment_id, PaymentStatus.COMPLETED, now=NOW + 10_001)

        assert list_payout_eligible(admin).value == []

    def test_requires_admin(self, aws, reviewer):
        """Reviewers cannot list payouts."""
        assert list_payout_eligible(reviewer).error.code == 'Forbidden'
