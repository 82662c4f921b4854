"""
Pytest configuration and fixtures for the billing core tests.

Invoices are built as wire dicts (the shape /api/invoices returns) so the
parsing path is exercised together with the computation.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from elderflow.models import BillingRuleSet, Client, Invoice, Payment
from ledger.core import LedgerAggregator
from ledger.contracts.billing_rules import RateResolver
from ledger.contracts.invoice_generation import InvoiceGenerator
from ledger.contracts.invoice_lifecycle import InvoiceLifecycle


AS_OF = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)


# ============================================================
# Fixtures per wire records
# ============================================================


@pytest.fixture
def as_of():
    """Fixed reference time for aging."""
    return AS_OF


@pytest.fixture
def make_invoice():
    """Factory for wire invoice dicts with sensible defaults."""
    counter = {"n": 0}

    def _make(total=100, status="sent", client_id="client-1", client_name="Ada Lovelace",
              period_end=None, payments=None, **extra):
        counter["n"] += 1
        data = {
            "id": extra.pop("id", f"inv-{counter['n']}"),
            "clientId": client_id,
            "client": {"id": client_id, "name": client_name},
            "periodStart": "2024-05-01T00:00:00Z",
            "periodEnd": period_end if period_end is not None else "2024-05-31T00:00:00Z",
            "items": [],
            "payments": payments or [],
            "totalAmount": total,
            "status": status
        }
        data.update(extra)
        return data

    return _make


@pytest.fixture
def days_ago():
    """ISO timestamp a number of days before AS_OF."""
    def _days_ago(days):
        return (AS_OF - timedelta(days=days)).isoformat()
    return _days_ago


# ============================================================
# Fixtures per domain objects
# ============================================================


@pytest.fixture
def client():
    return Client(id="client-1", first_name="Ada", last_name="Lovelace")


@pytest.fixture
def sent_invoice():
    """A $100 invoice awaiting payment."""
    return Invoice(
        id="inv-100",
        client_id="client-1",
        client_name="Ada Lovelace",
        period_start=datetime(2024, 5, 1),
        period_end=datetime(2024, 5, 31),
        total_amount=Decimal("100"),
        status="sent"
    )


@pytest.fixture
def settled_payment():
    def _payment(amount, **kwargs):
        kwargs.setdefault("paid_at", AS_OF)
        return Payment(amount=Decimal(str(amount)), **kwargs)
    return _payment


@pytest.fixture
def org_rules():
    return BillingRuleSet(hourly_rate=Decimal("150"))


# ============================================================
# Fixtures per services
# ============================================================


@pytest.fixture
def resolver():
    return RateResolver()


@pytest.fixture
def aggregator():
    return LedgerAggregator()


@pytest.fixture
def lifecycle():
    return InvoiceLifecycle()


@pytest.fixture
def generator(resolver):
    return InvoiceGenerator(resolver)
