"""Billing rules, invoice lifecycle and invoice generation."""

from .billing_rules import RateResolver, SYSTEM_DEFAULT_RULES
from .invoice_lifecycle import InvoiceLifecycle
from .invoice_generation import InvoiceGenerator

__all__ = [
    "RateResolver",
    "SYSTEM_DEFAULT_RULES",
    "InvoiceLifecycle",
    "InvoiceGenerator",
]
