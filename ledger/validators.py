"""Structural validators for billing records."""

from typing import Any, Optional
from decimal import Decimal

from elderflow.exceptions import MalformedInvoiceError
from elderflow.models import Activity, Invoice, InvoiceLineItem, Payment, RateType, ServiceType

# Allowed drift between a stored amount and the amount it derives from
AMOUNT_TOLERANCE = Decimal("0.01")

# Line quantities are stored to this many hours
QUANTITY_QUANTUM = Decimal("0.0001")


class InvoiceValidator:
    """Validates invoices and their parts according to billing rules.

    Overpayment is not a validation failure: it is a real-world event and
    is surfaced through a negative balance instead.
    """

    def __init__(self, tolerance: Decimal = AMOUNT_TOLERANCE):
        self.tolerance = tolerance
        self.validation_rules = {
            "invoice": self.validate_invoice,
            "line_item": self.validate_line_item,
            "payment": self.validate_payment,
            "activity": self.validate_activity,
            "service": self.validate_service_type
        }

    def validate_record(self, record_type: str, record: Any) -> tuple[bool, Optional[str]]:
        """Validate a record based on its type."""
        if record_type not in self.validation_rules:
            return False, f"Unknown record type: {record_type}"

        return self.validation_rules[record_type](record)

    def validate_invoice(self, invoice: Invoice) -> tuple[bool, Optional[str]]:
        """Validate invoice amounts, line items and payments."""
        if invoice.total_amount < 0:
            return False, f"Invoice total cannot be negative ({invoice.total_amount})"

        for item in invoice.items:
            valid, error = self.validate_line_item(item)
            if not valid:
                return False, error

        # Total is fixed at generation time and must agree with the lines
        if invoice.items and abs(invoice.items_total - invoice.total_amount) > self.tolerance:
            return False, (
                f"Line items total ({invoice.items_total}) doesn't match "
                f"invoice amount ({invoice.total_amount})"
            )

        for payment in invoice.payments:
            valid, error = self.validate_payment(payment)
            if not valid:
                return False, error

        return True, None

    def validate_line_item(self, item: InvoiceLineItem) -> tuple[bool, Optional[str]]:
        """Validate line item quantity, price and amount.

        The amount is priced from exact minutes while the quantity is rounded
        for display, so the allowed drift grows with the unit price.
        """
        if item.quantity < 0 or item.unit_price < 0:
            return False, "Line item quantity and unit price cannot be negative"

        if item.amount is not None:
            if item.amount < 0:
                return False, "Line item amount cannot be negative"
            expected = item.calculate_amount()
            allowed = self.tolerance + item.unit_price * QUANTITY_QUANTUM
            if abs(expected - item.amount) > allowed:
                return False, (
                    f"Line item '{item.description}' amount ({item.amount}) "
                    f"doesn't match quantity x unit price ({expected})"
                )

        return True, None

    def validate_payment(self, payment: Payment) -> tuple[bool, Optional[str]]:
        """Validate payment amount."""
        if payment.amount <= 0:
            return False, f"Payment amount must be positive ({payment.amount})"

        return True, None

    def validate_activity(self, activity: Activity) -> tuple[bool, Optional[str]]:
        """Validate activity duration."""
        if activity.duration < 0:
            return False, f"Activity duration cannot be negative ({activity.duration})"

        return True, None

    def validate_service_type(self, service: ServiceType) -> tuple[bool, Optional[str]]:
        """Validate a service type's rate."""
        if service.rate_amount < 0:
            return False, f"Service rate cannot be negative ({service.rate_amount})"

        if service.rate_type is RateType.FLAT and service.rate_amount == 0:
            return False, f"Flat-rate service '{service.name}' has no amount"

        return True, None

    def check_invoice(self, invoice: Invoice) -> Invoice:
        """Raise MalformedInvoiceError unless the invoice is valid."""
        valid, error = self.validate_record("invoice", invoice)
        if not valid:
            raise MalformedInvoiceError(error, extra={"invoice_id": invoice.id})
        return invoice
