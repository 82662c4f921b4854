"""Ledger aggregation over invoice snapshots."""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Dict, Any, Iterable, Optional, Tuple, Union
from dataclasses import dataclass, field

from elderflow.exceptions import MalformedInvoiceError
from elderflow.models import Activity, Client, Invoice, InvoiceStatus, money

from .validators import InvoiceValidator

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
SECONDS_PER_DAY = 86400
TOP_CLIENTS_LIMIT = 5
UNKNOWN_CLIENT = "Unknown client"
OUTSTANDING_STATUSES = (InvoiceStatus.SENT.value, InvoiceStatus.OVERDUE.value)

InvoiceInput = Union[Invoice, Dict[str, Any]]


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def collection_rate(total_paid: Decimal, total_billed: Decimal) -> int:
    """Whole percentage of billed amount in paid invoices, rounded half up."""
    if total_billed <= 0:
        return 0
    rate = total_paid / total_billed * 100
    return int(rate.quantize(Decimal("1"), ROUND_HALF_UP))


@dataclass
class AgingBuckets:
    """Overdue amounts by days since the billing period ended."""

    over30: Decimal = ZERO
    over60: Decimal = ZERO
    over90: Decimal = ZERO

    def add(self, age_days: float, amount: Decimal) -> None:
        """Place an amount in exactly one bucket; 30 days or less is no bucket."""
        if age_days > 90:
            self.over90 += amount
        elif age_days > 60:
            self.over60 += amount
        elif age_days > 30:
            self.over30 += amount

    def to_dict(self) -> Dict[str, float]:
        return {
            "over30": money(self.over30),
            "over60": money(self.over60),
            "over90": money(self.over90)
        }


@dataclass
class TopClient:
    """Outstanding total for one client grouping key."""

    name: str
    amount: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "amount": money(self.amount)}


@dataclass
class SkippedInvoice:
    """An invoice left out of a computation, and why."""

    invoice_id: Optional[str]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"invoiceId": self.invoice_id, "reason": self.reason}


@dataclass
class Summary:
    """Financial summary of an invoice collection."""

    as_of: datetime
    total_billed: Decimal = ZERO
    outstanding: Decimal = ZERO
    total_paid: Decimal = ZERO
    collection_rate: int = 0
    status_counts: Dict[str, int] = field(default_factory=dict)
    aging: AgingBuckets = field(default_factory=AgingBuckets)
    top_clients: List[TopClient] = field(default_factory=list)
    skipped: List[SkippedInvoice] = field(default_factory=list)

    @property
    def overdue_count(self) -> int:
        return self.status_counts.get(InvoiceStatus.OVERDUE.value, 0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert summary to its wire form, rounding amounts to cents."""
        return {
            "asOf": self.as_of.isoformat(),
            "totalBilled": money(self.total_billed),
            "outstanding": money(self.outstanding),
            "totalPaid": money(self.total_paid),
            "collectionRate": self.collection_rate,
            "overdueCount": self.overdue_count,
            "statusCounts": dict(self.status_counts),
            "aging": self.aging.to_dict(),
            "topClients": [client.to_dict() for client in self.top_clients],
            "skipped": [skip.to_dict() for skip in self.skipped]
        }


@dataclass
class ClientBalance:
    """Invoiced, paid and still-owed amounts for one client."""

    client_id: str
    total_invoiced: Decimal = ZERO
    total_paid: Decimal = ZERO
    outstanding: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clientId": self.client_id,
            "totalInvoiced": money(self.total_invoiced),
            "totalPaid": money(self.total_paid),
            "outstanding": money(self.outstanding)
        }


@dataclass
class DashboardOverview:
    """At-a-glance figures across clients, activities and invoices."""

    total_clients: int = 0
    active_clients: int = 0
    inactive_clients: int = 0
    recent_hours: Decimal = ZERO
    outstanding: Decimal = ZERO
    status_counts: Dict[str, int] = field(default_factory=dict)
    clients_needing_attention: List[Client] = field(default_factory=list)
    skipped_records: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalClients": self.total_clients,
            "activeClients": self.active_clients,
            "inactiveClients": self.inactive_clients,
            "recentHours": float(self.recent_hours),
            "outstanding": money(self.outstanding),
            "statusCounts": dict(self.status_counts),
            "clientsNeedingAttention": [
                {"id": client.id, "name": client.display_name}
                for client in self.clients_needing_attention
            ],
            "skippedRecords": self.skipped_records
        }


class LedgerAggregator:
    """Computes summaries from a snapshot of invoices.

    Every call recomputes from scratch; the aggregator keeps no state
    between calls. Invoice status is taken as given and never re-derived
    from the balance. A malformed record is logged and skipped so one bad
    invoice cannot blank the whole summary.
    """

    def __init__(self, validator: Optional[InvoiceValidator] = None):
        self.validator = validator or InvoiceValidator()

    def load_invoices(self, invoices: Iterable[InvoiceInput]) -> Tuple[List[Invoice], List[SkippedInvoice]]:
        """Parse and validate invoices, separating out malformed ones."""
        valid: List[Invoice] = []
        skipped: List[SkippedInvoice] = []

        for record in invoices:
            try:
                if isinstance(record, Invoice):
                    invoice = record
                elif isinstance(record, dict):
                    invoice = Invoice.from_api_data(record)
                else:
                    raise MalformedInvoiceError(f"Unsupported invoice record: {type(record).__name__}")

                valid.append(self.validator.check_invoice(invoice))
            except MalformedInvoiceError as e:
                invoice_id = e.extra.get("invoice_id")
                logger.warning(f"Skipping invoice {invoice_id or '<unknown>'}: {e.detail}")
                skipped.append(SkippedInvoice(invoice_id=invoice_id, reason=e.detail))

        return valid, skipped

    def load_clients(self, clients: Iterable[Union[Client, Dict[str, Any]]]) -> Tuple[List[Client], int]:
        """Parse client records, skipping ones that cannot be read."""
        valid: List[Client] = []
        skipped = 0

        for record in clients:
            try:
                valid.append(record if isinstance(record, Client) else Client.from_api_data(record))
            except (KeyError, TypeError, AttributeError, ValueError) as e:
                logger.warning(f"Skipping client record: {e}")
                skipped += 1

        return valid, skipped

    def load_activities(self, activities: Iterable[Union[Activity, Dict[str, Any]]]) -> Tuple[List[Activity], int]:
        """Parse and validate activity records, skipping bad ones."""
        valid: List[Activity] = []
        skipped = 0

        for record in activities:
            try:
                activity = record if isinstance(record, Activity) else Activity.from_api_data(record)
            except (KeyError, TypeError, AttributeError, ValueError) as e:
                logger.warning(f"Skipping activity record: {e!r}")
                skipped += 1
                continue

            ok, error = self.validator.validate_record("activity", activity)
            if not ok:
                logger.warning(f"Skipping activity {activity.id or '<unknown>'}: {error}")
                skipped += 1
                continue
            valid.append(activity)

        return valid, skipped

    def summarize(self, invoices: Iterable[InvoiceInput], as_of: Optional[datetime] = None) -> Summary:
        """Calculate totals, status counts, aging and top debtors."""
        as_of = as_utc(as_of or datetime.now(timezone.utc))
        valid, skipped = self.load_invoices(invoices)

        summary = Summary(
            as_of=as_of,
            status_counts={status.value: 0 for status in InvoiceStatus},
            skipped=skipped
        )
        outstanding_by_client: Dict[str, TopClient] = {}

        for invoice in valid:
            amount = invoice.total_amount
            summary.total_billed += amount
            summary.status_counts[invoice.status] = summary.status_counts.get(invoice.status, 0) + 1

            if invoice.status in OUTSTANDING_STATUSES:
                summary.outstanding += amount

                # Two clients sharing only a display name merge here when ids are missing
                key = invoice.client_id or invoice.client_name or UNKNOWN_CLIENT
                if key not in outstanding_by_client:
                    outstanding_by_client[key] = TopClient(name=invoice.client_name or UNKNOWN_CLIENT)
                outstanding_by_client[key].amount += amount

            elif invoice.status == InvoiceStatus.PAID.value:
                summary.total_paid += amount

            if invoice.status == InvoiceStatus.OVERDUE.value:
                self._age_invoice(invoice, as_of, summary.aging)

        summary.collection_rate = collection_rate(summary.total_paid, summary.total_billed)
        summary.top_clients = sorted(
            outstanding_by_client.values(),
            key=lambda client: client.amount,
            reverse=True
        )[:TOP_CLIENTS_LIMIT]

        return summary

    def _age_invoice(self, invoice: Invoice, as_of: datetime, aging: AgingBuckets) -> None:
        if invoice.period_end is None:
            logger.debug(f"Invoice {invoice.id} has no period end; excluded from aging")
            return

        age_days = (as_of - as_utc(invoice.period_end)).total_seconds() / SECONDS_PER_DAY
        aging.add(age_days, invoice.total_amount)

    def client_balance(self, invoices: Iterable[InvoiceInput], client_id: str) -> ClientBalance:
        """Get a client's invoiced, paid and outstanding amounts."""
        valid, _ = self.load_invoices(invoices)
        balance = ClientBalance(client_id=client_id)

        for invoice in valid:
            if invoice.client_id != client_id:
                continue

            balance.total_invoiced += invoice.total_amount
            balance.total_paid += invoice.paid_amount
            if invoice.status in OUTSTANDING_STATUSES:
                balance.outstanding += invoice.balance_remaining

        return balance

    def dashboard_overview(self,
                           clients: Iterable[Union[Client, Dict[str, Any]]],
                           activities: Iterable[Union[Activity, Dict[str, Any]]],
                           invoices: Iterable[InvoiceInput],
                           as_of: Optional[datetime] = None,
                           window_days: int = 30) -> DashboardOverview:
        """Client counts, recent hours and clients needing attention.

        An active client needs attention when it has an overdue invoice or
        no activity within the window. Unreadable client, activity and
        invoice records are logged, counted and left out.
        """
        as_of = as_utc(as_of or datetime.now(timezone.utc))
        window_start = as_of - timedelta(days=window_days)

        client_list, skipped_clients = self.load_clients(clients)
        activity_list, skipped_activities = self.load_activities(activities)
        valid, skipped_invoices = self.load_invoices(invoices)
        summary = self.summarize(valid, as_of=as_of)

        recent = [
            activity for activity in activity_list
            if window_start <= as_utc(activity.started_at) <= as_of
        ]
        recent_minutes = sum(activity.duration for activity in recent)
        recently_active = {activity.client_id for activity in recent if activity.client_id}
        overdue_clients = {
            invoice.client_id for invoice in valid
            if invoice.status == InvoiceStatus.OVERDUE.value and invoice.client_id
        }

        return DashboardOverview(
            total_clients=len(client_list),
            active_clients=sum(1 for client in client_list if client.is_active),
            inactive_clients=sum(1 for client in client_list if not client.is_active),
            recent_hours=(Decimal(recent_minutes) / Decimal(60)).quantize(Decimal("0.01"), ROUND_HALF_UP),
            outstanding=summary.outstanding,
            status_counts=summary.status_counts,
            skipped_records=skipped_clients + skipped_activities + len(skipped_invoices),
            clients_needing_attention=[
                client for client in client_list
                if client.is_active and (client.id in overdue_clients or client.id not in recently_active)
            ]
        )

    def export_rows(self, invoices: Iterable[InvoiceInput]) -> List[Dict[str, Any]]:
        """Flatten invoices to one row each for CSV export."""
        valid, _ = self.load_invoices(invoices)
        rows = []

        for invoice in valid:
            rows.append({
                "invoiceId": invoice.id,
                "clientName": invoice.client_name or "Unknown",
                "amount": money(invoice.total_amount),
                "paid": money(invoice.paid_amount),
                "balance": money(invoice.balance_remaining),
                "status": invoice.status,
                "periodEnd": invoice.period_end.date().isoformat() if invoice.period_end else ""
            })

        return rows
