"""Tools configuration for MCP server."""

from typing import List, Dict, Any, Optional
from mcp.types import Tool
from pydantic import BaseModel, Field


class SummaryParams(BaseModel):
    """Parameters for summarizing invoices."""
    invoices: List[Dict[str, Any]] = Field(description="Invoice records as returned by /api/invoices")
    as_of: Optional[str] = Field(default=None, description="ISO timestamp to age invoices against (default: now)")


class RuleResolutionParams(BaseModel):
    """Parameters for resolving a client's billing rules."""
    org_rules: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Organization defaults {hourlyRate, minDuration, rounding}; server defaults if omitted"
    )
    client_rules: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Client overrides; blank fields inherit from the organization"
    )


class BillableParams(RuleResolutionParams):
    """Parameters for pricing one activity."""
    duration_minutes: int = Field(ge=0, description="Minutes worked")


class InvoiceActionParams(BaseModel):
    """Parameters for a status change on one invoice."""
    invoice: Dict[str, Any] = Field(description="Current invoice record")


class PaymentRecordParams(BaseModel):
    """Parameters for recording a payment."""
    invoice: Dict[str, Any] = Field(description="Current invoice record")
    amount: float = Field(gt=0, description="Payment amount")
    method: str = Field(
        default="Check",
        description="Payment method: Check, Cash, ACH, Bank transfer, Zelle, Stripe, Other"
    )
    reference: Optional[str] = Field(default=None, description="Check number or wire reference")
    paid_at: Optional[str] = Field(default=None, description="ISO timestamp the payment cleared (default: now)")
    pending: bool = Field(default=False, description="Record as pending (not yet cleared)")


class InvoiceGenerationParams(RuleResolutionParams):
    """Parameters for generating a draft invoice."""
    client: Dict[str, Any] = Field(description="Client record")
    activities: List[Dict[str, Any]] = Field(description="Activity records {id, clientId, startTime, duration, serviceTypeId, isBillable}")
    period_start: str = Field(description="Period start date (YYYY-MM-DD)")
    period_end: str = Field(description="Period end date (YYYY-MM-DD)")
    invoice_id: Optional[str] = Field(default=None, description="Invoice id to assign")
    services: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Service types {id, name, billingCode, rateType: hourly|flat, rateAmount}"
    )
    org_settings: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Organization settings {invoicePrefix, paymentTermsDays}; server defaults if omitted"
    )
    issue_date: Optional[str] = Field(default=None, description="Issue date (default: period end)")


class ClientBalanceParams(BaseModel):
    """Parameters for a client's balance."""
    invoices: List[Dict[str, Any]] = Field(description="Invoice records")
    client_id: str = Field(description="Client ID to check balance for")


class ExportParams(BaseModel):
    """Parameters for exporting invoice rows."""
    invoices: List[Dict[str, Any]] = Field(description="Invoice records")


# Tool definitions for MCP
TOOLS = [
    Tool(
        name="summarize_invoices",
        description="Summarize invoices: total billed, outstanding, collection rate, status counts, aging and top clients by outstanding balance",
        inputSchema=SummaryParams.model_json_schema()
    ),
    Tool(
        name="resolve_billing_rules",
        description="Resolve a client's effective hourly rate, minimum duration and rounding from organization defaults and client overrides",
        inputSchema=RuleResolutionParams.model_json_schema()
    ),
    Tool(
        name="calculate_billable",
        description="Convert an activity duration into billable minutes, hours and amount under a client's rules",
        inputSchema=BillableParams.model_json_schema()
    ),
    Tool(
        name="approve_invoice",
        description="Approve a draft invoice and mark it as sent",
        inputSchema=InvoiceActionParams.model_json_schema()
    ),
    Tool(
        name="record_payment",
        description="Record a payment on an invoice and report the remaining balance. Does not change the invoice status",
        inputSchema=PaymentRecordParams.model_json_schema()
    ),
    Tool(
        name="mark_invoice_paid",
        description="Mark a sent or overdue invoice as paid",
        inputSchema=InvoiceActionParams.model_json_schema()
    ),
    Tool(
        name="generate_invoice",
        description="Generate a draft invoice for a client from their activities in a billing period",
        inputSchema=InvoiceGenerationParams.model_json_schema()
    ),
    Tool(
        name="get_client_balance",
        description="Get a client's invoiced, paid and outstanding amounts",
        inputSchema=ClientBalanceParams.model_json_schema()
    ),
    Tool(
        name="export_invoice_rows",
        description="Flatten invoices into one row each (client, amount, status, period end) for CSV export",
        inputSchema=ExportParams.model_json_schema()
    )
]
