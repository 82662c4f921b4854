"""ElderFlow billing data model."""

from .models import (
    Client,
    Activity,
    BillingRuleSet,
    EffectiveRuleSet,
    InvoiceLineItem,
    Payment,
    Invoice,
    ServiceType,
    OrganizationSettings,
    ClientStatus,
    InvoiceStatus,
    RoundingMode,
    RateType,
    suggest_billing_code,
)
from .exceptions import (
    BillingError,
    InvalidRateError,
    MalformedInvoiceError,
    InvalidTransitionError,
    NoBillableActivityError,
)

__all__ = [
    "Client",
    "Activity",
    "BillingRuleSet",
    "EffectiveRuleSet",
    "InvoiceLineItem",
    "Payment",
    "Invoice",
    "ServiceType",
    "OrganizationSettings",
    "ClientStatus",
    "InvoiceStatus",
    "RoundingMode",
    "RateType",
    "suggest_billing_code",
    "BillingError",
    "InvalidRateError",
    "MalformedInvoiceError",
    "InvalidTransitionError",
    "NoBillableActivityError",
]
