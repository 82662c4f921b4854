"""Data models for ElderFlow billing entities."""

import re
import unicodedata
from typing import Dict, Any, List, Optional
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from pydantic import BaseModel, ConfigDict, field_validator

from .exceptions import InvalidRateError, MalformedInvoiceError

CENT = Decimal("0.01")
BILLING_CODE_MAX_LENGTH = 24
DEFAULT_INVOICE_PREFIX = "INV"


def to_decimal(value: Any) -> Decimal:
    """Convert a wire number to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise InvalidOperation(f"Not a number: {value!r}")
    return Decimal(str(value))


def money(value: Decimal) -> float:
    """Round an amount to cents for display/wire output."""
    return float(value.quantize(CENT, ROUND_HALF_UP))


def ident(value: Any) -> Optional[str]:
    """Normalize a wire identifier (ids may arrive as numbers)."""
    if value is None or value == "":
        return None
    return str(value)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp or date; empty values become None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def suggest_billing_code(name: str) -> str:
    """Suggest a billing code from a service name.

    "Care Management – Standard" becomes "CARE-MANAGEMENT-STANDARD":
    accents are stripped, runs of anything but A-Z/0-9 collapse to one
    dash, and the result is cut to 24 characters.
    """
    if not name or not name.strip():
        return ""
    decomposed = unicodedata.normalize("NFKD", name)
    ascii_name = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    code = re.sub(r"[^A-Z0-9]+", "-", ascii_name.upper()).strip("-")
    return code[:BILLING_CODE_MAX_LENGTH]


def _rate_amount(raw: Any) -> Decimal:
    try:
        amount = to_decimal(raw)
    except InvalidOperation:
        raise InvalidRateError(f"Rate is not numeric: {raw!r}", extra={"rateAmount": raw})
    if not amount.is_finite():
        raise InvalidRateError(f"Rate is not finite: {raw!r}", extra={"rateAmount": raw})
    return amount


class ClientStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"


class RoundingMode(str, Enum):
    """Duration rounding policy; values are the wire codes."""
    NONE = "none"
    SIX_MINUTES = "6m"
    FIFTEEN_MINUTES = "15m"

    @property
    def increment(self) -> int:
        """Rounding step in minutes (0 = no rounding)."""
        return {"none": 0, "6m": 6, "15m": 15}[self.value]


class RateType(str, Enum):
    HOURLY = "hourly"
    FLAT = "flat"


class Client(BaseModel):
    """Client model."""
    id: Optional[str] = None
    name: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    status: str = ClientStatus.ACTIVE.value

    @property
    def display_name(self) -> str:
        """Get display name for client."""
        if self.name:
            return self.name
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or "Unnamed client"

    @property
    def is_active(self) -> bool:
        return self.status == ClientStatus.ACTIVE.value

    @classmethod
    def from_api_data(cls, data: Dict[str, Any]) -> "Client":
        """Create client from API response data."""
        return cls(
            id=ident(data.get("id")),
            name=data.get("name") or "",
            first_name=data.get("firstName") or "",
            last_name=data.get("lastName") or "",
            email=data.get("email") or "",
            phone=data.get("phone") or "",
            status=data.get("status") or ClientStatus.ACTIVE.value
        )


class Activity(BaseModel):
    """A unit of billable work, duration in minutes."""
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    client_id: Optional[str] = None
    started_at: datetime
    duration: int
    description: str = ""
    service_type_id: Optional[str] = None
    is_billable: bool = True

    @classmethod
    def from_api_data(cls, data: Dict[str, Any]) -> "Activity":
        """Create activity from API response data."""
        service = data.get("serviceType") or {}
        is_billable = data.get("isBillable")
        return cls(
            id=ident(data.get("id")),
            client_id=ident(data.get("clientId") or (data.get("client") or {}).get("id")),
            started_at=parse_datetime(data["startTime"]),
            duration=int(data.get("duration") or 0),
            description=data.get("description") or data.get("notes") or "",
            service_type_id=ident(data.get("serviceTypeId") or service.get("id")),
            is_billable=True if is_billable is None else bool(is_billable)
        )


class ServiceType(BaseModel):
    """A billable service with its own rate.

    Hourly services price billable time at ``rate_amount`` per hour (a zero
    amount means "use the client's rate"); flat services bill
    ``rate_amount`` once per activity whatever its duration.
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: str
    billing_code: str = ""
    rate_type: RateType = RateType.HOURLY
    rate_amount: Decimal = Decimal("0")

    @property
    def hourly_override(self) -> Optional[Decimal]:
        """Hourly rate this service imposes, if any."""
        if self.rate_type is RateType.HOURLY and self.rate_amount > 0:
            return self.rate_amount
        return None

    @classmethod
    def from_api_data(cls, data: Dict[str, Any]) -> "ServiceType":
        """Create service type from API data; a blank code is suggested from the name."""
        name = data.get("name") or ""
        return cls(
            id=ident(data.get("id")),
            name=name,
            billing_code=data.get("billingCode") or suggest_billing_code(name),
            rate_type=RateType.FLAT if data.get("rateType") == RateType.FLAT.value else RateType.HOURLY,
            rate_amount=_rate_amount(data.get("rateAmount") or 0)
        )

    def to_api_data(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "billingCode": self.billing_code,
            "rateType": self.rate_type.value,
            "rateAmount": money(self.rate_amount)
        }


class OrganizationSettings(BaseModel):
    """Organization-wide invoicing settings."""
    model_config = ConfigDict(frozen=True)

    invoice_prefix: str = DEFAULT_INVOICE_PREFIX
    payment_terms_days: Optional[int] = None

    @classmethod
    def from_api_data(cls, data: Optional[Dict[str, Any]]) -> "OrganizationSettings":
        """Create settings from API data; blank fields take the defaults."""
        data = data or {}

        terms = data.get("paymentTermsDays")
        payment_terms_days = None
        if terms is not None and terms != "":
            payment_terms_days = int(terms)
            if payment_terms_days < 0:
                raise ValueError("Payment terms cannot be negative")

        return cls(
            invoice_prefix=(data.get("invoicePrefix") or "").strip() or DEFAULT_INVOICE_PREFIX,
            payment_terms_days=payment_terms_days
        )


class BillingRuleSet(BaseModel):
    """Billing rules where any field may be left unset to inherit."""
    model_config = ConfigDict(frozen=True)

    hourly_rate: Optional[Decimal] = None
    min_duration: Optional[int] = None
    rounding: Optional[RoundingMode] = None

    @classmethod
    def from_api_data(cls, data: Optional[Dict[str, Any]]) -> "BillingRuleSet":
        """Create rule set from API data; blank fields inherit."""
        data = data or {}

        hourly_rate = None
        raw_rate = data.get("hourlyRate")
        if raw_rate is not None and raw_rate != "":
            try:
                hourly_rate = to_decimal(raw_rate)
            except InvalidOperation:
                raise InvalidRateError(
                    f"Hourly rate is not numeric: {raw_rate!r}",
                    extra={"hourlyRate": raw_rate}
                )
            if not hourly_rate.is_finite():
                raise InvalidRateError(
                    f"Hourly rate is not finite: {raw_rate!r}",
                    extra={"hourlyRate": raw_rate}
                )

        min_duration = None
        raw_min = data.get("minDuration")
        if raw_min is not None and raw_min != "":
            min_duration = int(raw_min)
            if min_duration < 0:
                raise ValueError("Minimum billable duration cannot be negative")

        raw_rounding = data.get("rounding")
        rounding = RoundingMode(raw_rounding) if raw_rounding else None

        return cls(hourly_rate=hourly_rate, min_duration=min_duration, rounding=rounding)

    def to_api_data(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.hourly_rate is not None:
            data["hourlyRate"] = float(self.hourly_rate)
        if self.min_duration is not None:
            data["minDuration"] = self.min_duration
        if self.rounding is not None:
            data["rounding"] = self.rounding.value
        return data


class EffectiveRuleSet(BaseModel):
    """Fully resolved billing rules for one client."""
    model_config = ConfigDict(frozen=True)

    hourly_rate: Decimal
    min_duration: int = 0
    rounding: RoundingMode = RoundingMode.NONE

    def to_api_data(self) -> Dict[str, Any]:
        return {
            "hourlyRate": float(self.hourly_rate),
            "minDuration": self.min_duration,
            "rounding": self.rounding.value
        }


class InvoiceLineItem(BaseModel):
    """Invoice line item; quantity is in hours."""
    description: str = ""
    quantity: Decimal
    unit_price: Decimal
    amount: Optional[Decimal] = None
    billing_code: Optional[str] = None

    def calculate_amount(self) -> Decimal:
        """Calculate line item amount."""
        return self.quantity * self.unit_price

    @property
    def effective_amount(self) -> Decimal:
        """Stored amount, falling back to quantity x unit price."""
        if self.amount is not None:
            return self.amount
        return self.calculate_amount()

    @classmethod
    def from_api_data(cls, data: Dict[str, Any]) -> "InvoiceLineItem":
        """Create line item from API response data."""
        amount = data.get("amount")
        return cls(
            description=data.get("description") or "",
            quantity=to_decimal(data["quantity"]),
            unit_price=to_decimal(data["unitPrice"]),
            amount=to_decimal(amount) if amount is not None else None,
            billing_code=data.get("billingCode") or None
        )


class Payment(BaseModel):
    """Payment model. A null paid_at means the payment is still pending."""
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    amount: Decimal
    method: str = "other"  # check, cash, ACH, bank transfer, Zelle, Stripe, other
    status: str = "succeeded"
    paid_at: Optional[datetime] = None
    reference: Optional[str] = None

    @property
    def is_settled(self) -> bool:
        return self.paid_at is not None

    @classmethod
    def from_api_data(cls, data: Dict[str, Any]) -> "Payment":
        """Create payment from API response data."""
        return cls(
            id=ident(data.get("id")),
            amount=to_decimal(data["amount"]),
            method=data.get("method") or "other",
            status=data.get("status") or "succeeded",
            paid_at=parse_datetime(data.get("paidAt")),
            reference=data.get("reference") or None
        )

    def to_api_data(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "amount": money(self.amount),
            "method": self.method,
            "status": self.status,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
            "reference": self.reference
        }


class Invoice(BaseModel):
    """Invoice model.

    ``status`` is authoritative and is never re-derived from the balance:
    a partially paid invoice can still be ``sent``. Statuses outside
    :class:`InvoiceStatus` are kept as their literal string.
    """
    id: str
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    issue_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    items: List[InvoiceLineItem] = []
    payments: List[Payment] = []
    total_amount: Decimal
    status: str = InvoiceStatus.DRAFT.value

    @field_validator("status", mode="before")
    @classmethod
    def _status_literal(cls, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        return value

    @property
    def paid_amount(self) -> Decimal:
        """Sum of settled payments (pending payments are excluded)."""
        return sum(
            (payment.amount for payment in self.payments if payment.is_settled),
            Decimal("0")
        )

    @property
    def balance_remaining(self) -> Decimal:
        """Total minus settled payments; negative on overpayment."""
        return self.total_amount - self.paid_amount

    @property
    def items_total(self) -> Decimal:
        return sum((item.effective_amount for item in self.items), Decimal("0"))

    @classmethod
    def from_api_data(cls, data: Dict[str, Any]) -> "Invoice":
        """Create invoice from API response data.

        Raises MalformedInvoiceError when required fields are missing or
        not parseable.
        """
        invoice_id = data.get("id") if isinstance(data, dict) else None
        try:
            client = data.get("client") or {}
            client_name = client.get("name") or " ".join(
                part for part in (client.get("firstName"), client.get("lastName")) if part
            )

            return cls(
                id=str(data["id"]),
                client_id=ident(data.get("clientId") or client.get("id")),
                client_name=client_name or None,
                period_start=parse_datetime(data.get("periodStart")),
                period_end=parse_datetime(data.get("periodEnd")),
                issue_date=parse_datetime(data.get("issueDate")),
                due_date=parse_datetime(data.get("dueDate")),
                items=[InvoiceLineItem.from_api_data(item) for item in data.get("items") or []],
                payments=[Payment.from_api_data(payment) for payment in data.get("payments") or []],
                total_amount=to_decimal(data["totalAmount"]),
                status=data["status"]
            )
        except (KeyError, TypeError, AttributeError, InvalidOperation, ValueError) as e:
            raise MalformedInvoiceError(
                f"Invoice {invoice_id or '<unknown>'} could not be parsed: {e}",
                extra={"invoice_id": invoice_id}
            ) from e

    def to_api_data(self) -> Dict[str, Any]:
        """Serialize invoice including the derived payment figures."""
        return {
            "id": self.id,
            "clientId": self.client_id,
            "client": {"id": self.client_id, "name": self.client_name},
            "periodStart": self.period_start.isoformat() if self.period_start else None,
            "periodEnd": self.period_end.isoformat() if self.period_end else None,
            "issueDate": self.issue_date.isoformat() if self.issue_date else None,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "items": [
                {
                    "description": item.description,
                    "billingCode": item.billing_code,
                    "quantity": float(item.quantity),
                    "unitPrice": money(item.unit_price),
                    "amount": money(item.effective_amount)
                }
                for item in self.items
            ],
            "payments": [payment.to_api_data() for payment in self.payments],
            "totalAmount": money(self.total_amount),
            "status": self.status,
            "paidAmount": money(self.paid_amount),
            "balanceRemaining": money(self.balance_remaining)
        }
