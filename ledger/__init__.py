"""Billing computation core for ElderFlow."""

from .core import LedgerAggregator, Summary, AgingBuckets, TopClient, ClientBalance, DashboardOverview
from .validators import InvoiceValidator

__all__ = [
    "LedgerAggregator",
    "Summary",
    "AgingBuckets",
    "TopClient",
    "ClientBalance",
    "DashboardOverview",
    "InvoiceValidator",
]
