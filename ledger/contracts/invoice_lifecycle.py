"""Invoice status lifecycle and payment recording."""

import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional

from elderflow.exceptions import InvalidTransitionError
from elderflow.models import Invoice, InvoiceStatus, Payment

from ..core import as_utc

logger = logging.getLogger(__name__)

DRAFT = InvoiceStatus.DRAFT.value
SENT = InvoiceStatus.SENT.value
PAID = InvoiceStatus.PAID.value
OVERDUE = InvoiceStatus.OVERDUE.value

# draft -> sent -> paid, with sent -> overdue -> paid; paid is terminal
TRANSITIONS: Dict[str, FrozenSet[str]] = {
    DRAFT: frozenset({SENT}),
    SENT: frozenset({PAID, OVERDUE}),
    OVERDUE: frozenset({PAID}),
    PAID: frozenset()
}

GATEWAY_SUCCESS_STATUS = "succeeded"


class InvoiceLifecycle:
    """Named status transitions and append-only payment bookkeeping.

    Every operation returns a new Invoice; the input snapshot is left
    untouched. Recording a payment never changes status: marking an
    invoice paid is a separate, explicit step, so a partially paid
    invoice stays ``sent`` until someone decides otherwise.
    """

    def can_transition(self, current: str, target: str) -> bool:
        """Check whether the lifecycle allows current -> target."""
        return target in TRANSITIONS.get(current, frozenset())

    def transition(self, invoice: Invoice, target: str) -> Invoice:
        """Move an invoice to a new status or raise InvalidTransitionError."""
        if isinstance(target, InvoiceStatus):
            target = target.value

        if not self.can_transition(invoice.status, target):
            raise InvalidTransitionError(invoice.status, target)

        logger.info(f"Invoice {invoice.id}: {invoice.status} -> {target}")
        return invoice.model_copy(update={"status": target})

    def approve(self, invoice: Invoice) -> Invoice:
        """Approve a draft invoice, marking it sent."""
        return self.transition(invoice, SENT)

    def mark_overdue(self, invoice: Invoice) -> Invoice:
        """Flag a sent invoice as overdue (decided by the caller's scheduler)."""
        return self.transition(invoice, OVERDUE)

    def mark_paid(self, invoice: Invoice) -> Invoice:
        """Mark a sent or overdue invoice paid, whatever its balance."""
        if invoice.balance_remaining > 0:
            logger.info(
                f"Invoice {invoice.id} marked paid with balance {invoice.balance_remaining} remaining"
            )
        return self.transition(invoice, PAID)

    def record_payment(self, invoice: Invoice, payment: Payment) -> Invoice:
        """Append a payment; status is not changed."""
        if payment.amount <= 0:
            raise ValueError("Payment amount must be positive")

        updated = invoice.model_copy(update={"payments": [*invoice.payments, payment]})

        logger.info(
            f"Recorded {payment.method} payment of {payment.amount} on invoice {invoice.id}; "
            f"balance remaining {updated.balance_remaining}"
        )
        if updated.balance_remaining < 0:
            logger.warning(f"Invoice {invoice.id} is overpaid by {-updated.balance_remaining}")

        return updated

    def settle_from_gateway(self, invoice: Invoice, payment: Payment) -> Invoice:
        """Apply a payment reported complete by a payment gateway webhook.

        The payment is recorded; the invoice is marked paid only when the
        gateway reports success and the invoice is awaiting payment.
        """
        updated = self.record_payment(invoice, payment)

        if (payment.status == GATEWAY_SUCCESS_STATUS and
                payment.is_settled and
                self.can_transition(updated.status, PAID)):
            return self.mark_paid(updated)

        return updated

    def is_settled(self, invoice: Invoice) -> bool:
        """Whether recorded payments cover the total (informational only)."""
        return invoice.balance_remaining <= 0

    def is_past_due(self, invoice: Invoice, as_of: Optional[datetime] = None) -> bool:
        """Whether a sent invoice has passed its due date.

        For the overdue scheduler, which decides whether to call
        :meth:`mark_overdue`; invoices without a due date are never past due.
        """
        if invoice.status != SENT or invoice.due_date is None:
            return False
        as_of = as_utc(as_of or datetime.now(timezone.utc))
        return as_utc(invoice.due_date) < as_of
