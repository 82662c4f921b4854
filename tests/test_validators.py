"""
Unit tests for InvoiceValidator.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from elderflow.exceptions import MalformedInvoiceError
from elderflow.models import Activity, InvoiceLineItem, Payment, RateType, ServiceType
from ledger.validators import InvoiceValidator


@pytest.fixture
def validator():
    return InvoiceValidator()


def item(quantity, price, amount=None):
    return InvoiceLineItem(
        description="Visit",
        quantity=Decimal(str(quantity)),
        unit_price=Decimal(str(price)),
        amount=Decimal(str(amount)) if amount is not None else None
    )


class TestInvoiceValidation:
    """Tests for whole-invoice checks."""

    def test_valid_invoice(self, validator, sent_invoice):
        assert validator.validate_invoice(sent_invoice) == (True, None)

    def test_negative_total(self, validator, sent_invoice):
        invoice = sent_invoice.model_copy(update={"total_amount": Decimal("-1")})

        valid, error = validator.validate_invoice(invoice)

        assert not valid
        assert "negative" in error

    def test_items_must_match_total(self, validator, sent_invoice):
        invoice = sent_invoice.model_copy(update={"items": [item(1, 90, 90)]})

        valid, error = validator.validate_invoice(invoice)

        assert not valid
        assert "doesn't match invoice amount" in error

    def test_items_within_tolerance(self, validator, sent_invoice):
        invoice = sent_invoice.model_copy(update={"items": [item("0.3333", 150, "50.00"), item(1, "49.99", "49.99")]})

        assert validator.validate_invoice(invoice) == (True, None)

    def test_overpayment_is_valid(self, validator, sent_invoice):
        payment = Payment(amount=Decimal("500"), paid_at=datetime(2024, 6, 1))
        invoice = sent_invoice.model_copy(update={"payments": [payment]})

        assert validator.validate_invoice(invoice) == (True, None)

    def test_check_invoice_raises(self, validator, sent_invoice):
        invoice = sent_invoice.model_copy(update={"payments": [Payment(amount=Decimal("0"))]})

        with pytest.raises(MalformedInvoiceError) as exc_info:
            validator.check_invoice(invoice)

        assert exc_info.value.extra == {"invoice_id": "inv-100"}


class TestPartValidation:
    """Tests for line items, activities and service types."""

    def test_line_item_amount_mismatch(self, validator):
        valid, error = validator.validate_line_item(item(2, 50, 120))

        assert not valid
        assert "quantity x unit price" in error

    def test_line_item_without_amount(self, validator):
        assert validator.validate_line_item(item(2, 50)) == (True, None)

    def test_negative_quantity(self, validator):
        assert validator.validate_line_item(item(-1, 50))[0] is False

    def test_negative_activity(self, validator):
        activity = Activity(started_at=datetime(2024, 5, 1), duration=-5)

        assert validator.validate_record("activity", activity)[0] is False

    def test_high_rate_line_within_tolerance(self, validator):
        """Test the four-decimal quantity drift grows with the unit price."""
        assert validator.validate_line_item(item("0.1167", 350, "40.83")) == (True, None)

    def test_flat_service_needs_amount(self, validator):
        service = ServiceType(name="Initial Assessment", rate_type=RateType.FLAT)

        assert validator.validate_record("service", service) == (
            False, "Flat-rate service 'Initial Assessment' has no amount"
        )

    def test_negative_service_rate(self, validator):
        service = ServiceType(name="Crisis Visit", rate_amount=Decimal("-1"))

        assert validator.validate_record("service", service)[0] is False

    def test_hourly_service_without_rate(self, validator):
        assert validator.validate_record("service", ServiceType(name="Phone call")) == (True, None)

    def test_unknown_record_type(self, validator):
        assert validator.validate_record("expense", object()) == (False, "Unknown record type: expense")
