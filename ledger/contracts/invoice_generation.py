"""Draft invoice generation from billable activities."""

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Union

from elderflow.exceptions import InvalidRateError, NoBillableActivityError
from elderflow.models import (
    Activity, Client, Invoice, InvoiceLineItem, InvoiceStatus, OrganizationSettings, ServiceType
)

from ..core import as_utc
from ..validators import InvoiceValidator
from .billing_rules import RateResolver, RulesInput

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "Care management"


def _as_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


def _as_datetime(value: Union[date, datetime]) -> datetime:
    # A bare date means midnight UTC at the start of that day; naive times are UTC
    if isinstance(value, datetime):
        return as_utc(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


class InvoiceGenerator:
    """Builds draft invoices for a client and billing period."""

    def __init__(self,
                 resolver: Optional[RateResolver] = None,
                 validator: Optional[InvoiceValidator] = None):
        self.resolver = resolver or RateResolver()
        self.validator = validator or InvoiceValidator()

    def _service_catalog(self, services: Optional[Iterable[ServiceType]]) -> Dict[str, ServiceType]:
        catalog = {}
        for service in services or []:
            valid, error = self.validator.validate_record("service", service)
            if not valid:
                raise InvalidRateError(error, extra={"serviceTypeId": service.id})
            if service.id is not None:
                catalog[service.id] = service
        return catalog

    def generate(self,
                 client: Client,
                 activities: Iterable[Activity],
                 period_start: Union[date, datetime],
                 period_end: Union[date, datetime],
                 org_rules: RulesInput,
                 client_rules: RulesInput = None,
                 invoice_id: Optional[str] = None,
                 services: Optional[Iterable[ServiceType]] = None,
                 settings: Optional[OrganizationSettings] = None,
                 issue_date: Optional[Union[date, datetime]] = None) -> Invoice:
        """Generate a draft invoice from the client's activities in the period.

        Rules and service rates are checked before anything is built, so an
        invalid rate aborts generation. Each billable activity becomes one
        line item, priced by its service type when the catalog knows it and
        at the client's effective hourly rate otherwise. Activities failing
        validation or flagged non-billable are logged and left out.

        The invoice is issued on ``issue_date`` (default: the period end)
        and falls due ``payment_terms_days`` later when the organization
        sets terms.

        Period, issue and due dates are stored as aware UTC datetimes. A
        bare ``period_end`` date is midnight UTC at the start of that day,
        the same instant the web app stores, so overdue aging counts from
        the start of the period's last day.
        """
        start, end = _as_date(period_start), _as_date(period_end)
        if end < start:
            raise ValueError(f"Period end {end} is before period start {start}")

        settings = settings or OrganizationSettings()
        rules = self.resolver.resolve(org_rules, client_rules)
        catalog = self._service_catalog(services)

        items: List[InvoiceLineItem] = []
        for activity in sorted(activities, key=lambda a: as_utc(a.started_at)):
            if activity.client_id is not None and activity.client_id != client.id:
                continue
            if not start <= activity.started_at.date() <= end:
                continue

            valid, error = self.validator.validate_record("activity", activity)
            if not valid:
                logger.warning(f"Skipping activity {activity.id or '<unknown>'}: {error}")
                continue
            if not activity.is_billable:
                logger.debug(f"Activity {activity.id} is not billable")
                continue

            service = catalog.get(activity.service_type_id) if activity.service_type_id else None
            line_rules = rules
            if service is not None and service.hourly_override is not None:
                line_rules = self.resolver.rules_for_service(org_rules, client_rules, service)

            priced = self.resolver.price_activity(activity.duration, line_rules, service)
            if priced.amount == 0 and priced.minutes == 0:
                continue

            label = (service.name if service else "") or activity.description or DEFAULT_SERVICE_NAME
            detail = f"{activity.started_at:%Y-%m-%d}"
            if priced.minutes:
                detail += f", {priced.minutes} min"

            items.append(InvoiceLineItem(
                description=f"{label} ({detail})",
                quantity=priced.quantity,
                unit_price=priced.unit_price,
                amount=priced.amount,
                billing_code=service.billing_code if service and service.billing_code else None
            ))

        if not items:
            raise NoBillableActivityError(
                f"No billable activities for {client.display_name} between {start} and {end}",
                extra={"client_id": client.id}
            )

        issued = _as_datetime(issue_date if issue_date is not None else end)
        due = None
        if settings.payment_terms_days is not None:
            due = issued + timedelta(days=settings.payment_terms_days)

        total = sum((item.amount for item in items), Decimal("0"))
        invoice = Invoice(
            id=invoice_id or f"{settings.invoice_prefix}-{end:%Y%m%d}-{(client.id or 'client')[-6:]}",
            client_id=client.id,
            client_name=client.display_name,
            period_start=_as_datetime(period_start),
            period_end=_as_datetime(period_end),
            issue_date=issued,
            due_date=due,
            items=items,
            payments=[],
            total_amount=total,
            status=InvoiceStatus.DRAFT.value
        )

        logger.info(
            f"Generated draft invoice {invoice.id} for {client.display_name}: "
            f"{len(items)} line items, total {total}"
        )
        return invoice
