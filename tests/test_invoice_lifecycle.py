"""
Unit tests for the invoice status lifecycle and payment recording.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from elderflow.exceptions import InvalidTransitionError
from elderflow.models import InvoiceStatus, Payment


# ============================================================
# Tests for status transitions
# ============================================================


class TestTransitions:
    """Tests for the draft -> sent -> (overdue) -> paid state machine."""

    @pytest.mark.parametrize("current,target", [
        ("draft", "sent"),
        ("sent", "paid"),
        ("sent", "overdue"),
        ("overdue", "paid")
    ])
    def test_allowed(self, lifecycle, current, target):
        assert lifecycle.can_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        ("draft", "paid"),
        ("draft", "overdue"),
        ("paid", "sent"),
        ("paid", "overdue"),
        ("overdue", "sent"),
        ("sent", "draft"),
        ("void", "paid")
    ])
    def test_disallowed(self, lifecycle, current, target):
        assert not lifecycle.can_transition(current, target)

    def test_full_path_through_overdue(self, lifecycle, sent_invoice):
        draft = sent_invoice.model_copy(update={"status": "draft"})

        sent = lifecycle.approve(draft)
        overdue = lifecycle.mark_overdue(sent)
        paid = lifecycle.mark_paid(overdue)

        assert [sent.status, overdue.status, paid.status] == ["sent", "overdue", "paid"]

    def test_transition_returns_new_invoice(self, lifecycle, sent_invoice):
        """Test the input snapshot is left untouched."""
        paid = lifecycle.mark_paid(sent_invoice)

        assert paid.status == "paid"
        assert sent_invoice.status == "sent"

    def test_paid_is_terminal(self, lifecycle, sent_invoice):
        paid = lifecycle.mark_paid(sent_invoice)

        with pytest.raises(InvalidTransitionError) as exc_info:
            lifecycle.mark_overdue(paid)

        assert exc_info.value.extra == {"current": "paid", "target": "overdue"}

    def test_cannot_approve_sent_invoice(self, lifecycle, sent_invoice):
        with pytest.raises(InvalidTransitionError):
            lifecycle.approve(sent_invoice)

    def test_accepts_enum_target(self, lifecycle, sent_invoice):
        assert lifecycle.transition(sent_invoice, InvoiceStatus.OVERDUE).status == "overdue"

    def test_unknown_target_rejected(self, lifecycle, sent_invoice):
        with pytest.raises(InvalidTransitionError):
            lifecycle.transition(sent_invoice, "cancelled")

    def test_unknown_current_status_is_stuck(self, lifecycle, sent_invoice):
        void = sent_invoice.model_copy(update={"status": "void"})

        with pytest.raises(InvalidTransitionError):
            lifecycle.mark_paid(void)

    def test_mark_paid_with_balance_remaining(self, lifecycle, sent_invoice):
        """Test marking paid is explicit and does not require a zero balance."""
        paid = lifecycle.mark_paid(sent_invoice)

        assert paid.balance_remaining == Decimal("100")


# ============================================================
# Tests for payment recording
# ============================================================


class TestRecordPayment:
    """Tests for append-only payment bookkeeping."""

    def test_partial_payment_keeps_status(self, lifecycle, sent_invoice, settled_payment):
        """Test a partial payment leaves the invoice sent."""
        updated = lifecycle.record_payment(sent_invoice, settled_payment(40))

        assert updated.status == "sent"
        assert updated.paid_amount == Decimal("40")
        assert updated.balance_remaining == Decimal("60")

    def test_full_payment_keeps_status(self, lifecycle, sent_invoice, settled_payment):
        updated = lifecycle.record_payment(sent_invoice, settled_payment(100))

        assert updated.status == "sent"
        assert lifecycle.is_settled(updated)

    def test_overpayment_is_negative_balance(self, lifecycle, sent_invoice, settled_payment):
        """Test $120 against $100 leaves -20, neither clamped nor rejected."""
        updated = lifecycle.record_payment(sent_invoice, settled_payment(120))

        assert updated.balance_remaining == Decimal("-20")
        assert updated.to_api_data()["balanceRemaining"] == -20.0

    def test_payments_accumulate(self, lifecycle, sent_invoice, settled_payment):
        updated = lifecycle.record_payment(sent_invoice, settled_payment(30))
        updated = lifecycle.record_payment(updated, settled_payment(25.5))

        assert len(updated.payments) == 2
        assert updated.balance_remaining == Decimal("44.5")
        assert sent_invoice.payments == []

    def test_pending_payment_not_counted(self, lifecycle, sent_invoice):
        updated = lifecycle.record_payment(sent_invoice, Payment(amount=Decimal("100"), paid_at=None))

        assert updated.paid_amount == Decimal("0")
        assert not lifecycle.is_settled(updated)

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_non_positive_payment_rejected(self, lifecycle, sent_invoice, amount):
        with pytest.raises(ValueError):
            lifecycle.record_payment(sent_invoice, Payment(amount=Decimal(amount)))


# ============================================================
# Tests for gateway settlement
# ============================================================


class TestSettleFromGateway:
    """Tests for payments reported by a payment gateway."""

    def test_successful_payment_marks_paid(self, lifecycle, sent_invoice, settled_payment):
        updated = lifecycle.settle_from_gateway(sent_invoice, settled_payment(100, method="Stripe"))

        assert updated.status == "paid"
        assert updated.paid_amount == Decimal("100")

    def test_failed_payment_recorded_without_status_change(self, lifecycle, sent_invoice, settled_payment):
        updated = lifecycle.settle_from_gateway(sent_invoice, settled_payment(100, status="failed"))

        assert updated.status == "sent"
        assert len(updated.payments) == 1

    def test_unsettled_payment_does_not_mark_paid(self, lifecycle, sent_invoice):
        payment = Payment(amount=Decimal("100"), status="succeeded", paid_at=None)

        assert lifecycle.settle_from_gateway(sent_invoice, payment).status == "sent"

    def test_draft_invoice_not_marked_paid(self, lifecycle, sent_invoice, settled_payment):
        draft = sent_invoice.model_copy(update={"status": "draft"})

        assert lifecycle.settle_from_gateway(draft, settled_payment(100)).status == "draft"


# ============================================================
# Tests for due dates
# ============================================================


class TestPastDue:
    """Tests for the overdue scheduler's due-date check."""

    @pytest.fixture
    def due_invoice(self, sent_invoice):
        return sent_invoice.model_copy(update={"due_date": datetime(2024, 6, 30, tzinfo=timezone.utc)})

    def test_sent_past_due(self, lifecycle, due_invoice):
        assert lifecycle.is_past_due(due_invoice, as_of=datetime(2024, 7, 1, tzinfo=timezone.utc))

    def test_not_yet_due(self, lifecycle, due_invoice):
        assert not lifecycle.is_past_due(due_invoice, as_of=datetime(2024, 6, 30, tzinfo=timezone.utc))

    def test_naive_as_of_treated_as_utc(self, lifecycle, due_invoice):
        assert lifecycle.is_past_due(due_invoice, as_of=datetime(2024, 6, 30, 0, 1))

    def test_without_due_date(self, lifecycle, sent_invoice):
        assert not lifecycle.is_past_due(sent_invoice, as_of=datetime(2030, 1, 1, tzinfo=timezone.utc))

    @pytest.mark.parametrize("status", ["draft", "overdue", "paid"])
    def test_only_sent_invoices(self, lifecycle, due_invoice, status):
        invoice = due_invoice.model_copy(update={"status": status})

        assert not lifecycle.is_past_due(invoice, as_of=datetime(2024, 8, 1, tzinfo=timezone.utc))

    def test_scheduler_marks_overdue(self, lifecycle, due_invoice):
        if lifecycle.is_past_due(due_invoice, as_of=datetime(2024, 7, 15, tzinfo=timezone.utc)):
            due_invoice = lifecycle.mark_overdue(due_invoice)

        assert due_invoice.status == "overdue"
