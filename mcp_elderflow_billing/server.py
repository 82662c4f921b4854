"""MCP server exposing the ElderFlow billing core."""

import os
import json
import asyncio
import logging
from typing import Dict, Any, List, Callable
from datetime import datetime, timezone

from mcp.server import Server
from mcp.types import TextContent
from pydantic import ValidationError

from elderflow.exceptions import BillingError
from elderflow.models import (
    Activity, BillingRuleSet, Client, Invoice, OrganizationSettings, Payment, ServiceType,
    parse_datetime, to_decimal
)
from ledger.core import LedgerAggregator, Summary
from ledger.contracts.billing_rules import RateResolver
from ledger.contracts.invoice_generation import InvoiceGenerator
from ledger.contracts.invoice_lifecycle import InvoiceLifecycle

from .tools import (
    TOOLS,
    SummaryParams,
    RuleResolutionParams,
    BillableParams,
    InvoiceActionParams,
    PaymentRecordParams,
    InvoiceGenerationParams,
    ClientBalanceParams,
    ExportParams,
)

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

TRUE_VALUES = ("1", "true", "yes", "on")


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in TRUE_VALUES


def _env_org_rules() -> BillingRuleSet:
    """Organization default rules from the environment; unset fields fall back to the system default."""
    return BillingRuleSet.from_api_data({
        "hourlyRate": os.getenv("ELDERFLOW_DEFAULT_HOURLY_RATE"),
        "minDuration": os.getenv("ELDERFLOW_DEFAULT_MIN_DURATION"),
        "rounding": os.getenv("ELDERFLOW_DEFAULT_ROUNDING")
    })


def _env_org_settings() -> OrganizationSettings:
    return OrganizationSettings.from_api_data({
        "invoicePrefix": os.getenv("ELDERFLOW_INVOICE_PREFIX"),
        "paymentTermsDays": os.getenv("ELDERFLOW_PAYMENT_TERMS_DAYS")
    })


def _text(text: str) -> List[TextContent]:
    return [TextContent(type="text", text=text)]


def format_summary(summary: Summary) -> str:
    """Render a summary the way the billing page presents it."""
    result = f"Billing Summary (as of {summary.as_of.isoformat()}):\n"
    result += f"Total Billed: ${summary.total_billed:.2f}\n"
    result += f"Outstanding: ${summary.outstanding:.2f}\n"
    result += f"Total Paid: ${summary.total_paid:.2f}\n"
    result += f"Collection Rate: {summary.collection_rate}%\n"
    result += f"Overdue Invoices: {summary.overdue_count}\n\n"

    result += "Status breakdown:\n"
    for status, count in summary.status_counts.items():
        result += f"  {status}: {count}\n"

    result += "\nOverdue aging (by period end):\n"
    result += f"  Over 30 days: ${summary.aging.over30:.2f}\n"
    result += f"  Over 60 days: ${summary.aging.over60:.2f}\n"
    result += f"  Over 90 days: ${summary.aging.over90:.2f}\n"

    if summary.top_clients:
        result += "\nTop clients by outstanding balance:\n"
        for client in summary.top_clients:
            result += f"  {client.name}: ${client.amount:.2f}\n"

    if summary.skipped:
        result += f"\nSkipped {len(summary.skipped)} malformed invoice(s):\n"
        for skip in summary.skipped:
            result += f"  {skip.invoice_id or '<unknown>'}: {skip.reason}\n"

    return result


def format_invoice(invoice: Invoice) -> str:
    result = f"Invoice {invoice.id} - {invoice.client_name or 'Unknown client'}\n"
    result += f"Status: {invoice.status}\n"
    if invoice.due_date:
        result += f"Due: {invoice.due_date.date().isoformat()}\n"
    result += f"Total: ${invoice.total_amount:.2f}\n"
    result += f"Paid: ${invoice.paid_amount:.2f}\n"
    result += f"Balance remaining: ${invoice.balance_remaining:.2f}\n"
    result += f"\n{json.dumps(invoice.to_api_data(), indent=2)}\n"
    return result


class ElderflowBillingServer:
    """MCP server for the ElderFlow billing computation layer.

    Tools work on snapshots passed in the call arguments; the server holds
    no invoice state of its own.
    """

    def __init__(self):
        self.server = Server("elderflow-billing")
        self.instance_id = os.getenv("INSTANCE_ID", "Default-001")
        self.org_rules = _env_org_rules()
        self.org_settings = _env_org_settings()
        self.resolver = RateResolver(bill_minimum_on_zero=_env_flag("ELDERFLOW_BILL_MINIMUM_ON_ZERO"))
        self.aggregator = LedgerAggregator()
        self.lifecycle = InvoiceLifecycle()
        self.generator = InvoiceGenerator(self.resolver)

        self.handlers: Dict[str, Callable[[Dict[str, Any]], List[TextContent]]] = {
            "summarize_invoices": self.summarize_invoices,
            "resolve_billing_rules": self.resolve_billing_rules,
            "calculate_billable": self.calculate_billable,
            "approve_invoice": self.approve_invoice,
            "record_payment": self.record_payment,
            "mark_invoice_paid": self.mark_invoice_paid,
            "generate_invoice": self.generate_invoice,
            "get_client_balance": self.get_client_balance,
            "export_invoice_rows": self.export_invoice_rows
        }

        # Register tools
        self._register_tools()
        logger.info(f"ElderFlow billing MCP initialized - Instance: {self.instance_id}")

    def _register_tools(self):
        """Register all MCP tools."""

        @self.server.list_tools()
        async def list_tools() -> List[Any]:
            return TOOLS

        @self.server.call_tool()
        async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
            return self.call(name, arguments)

    def call(self, name: str, arguments: Dict[str, Any]) -> List[TextContent]:
        """Dispatch a tool call, reporting failures as text."""
        handler = self.handlers.get(name)
        if handler is None:
            return _text(f"Unknown tool: {name}")

        try:
            return handler(arguments or {})
        except BillingError as e:
            logger.warning(f"{name} failed: {e.detail}")
            return _text(f"Error in {name}: {e.detail}")
        except (ValidationError, ValueError) as e:
            logger.warning(f"{name} rejected arguments: {e}")
            return _text(f"Invalid arguments for {name}: {e}")

    def _org_rules(self, params: RuleResolutionParams):
        return params.org_rules if params.org_rules is not None else self.org_rules

    # Aggregation tools
    def summarize_invoices(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """Summarize an invoice snapshot."""
        params = SummaryParams.model_validate(arguments)
        as_of = parse_datetime(params.as_of) if params.as_of else None

        summary = self.aggregator.summarize(params.invoices, as_of=as_of)
        return _text(format_summary(summary))

    def get_client_balance(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """Get client's current balance."""
        params = ClientBalanceParams.model_validate(arguments)
        balance = self.aggregator.client_balance(params.invoices, params.client_id)

        result = f"Client Balance (ID: {params.client_id}):\n"
        result += f"Total Invoiced: ${balance.total_invoiced:.2f}\n"
        result += f"Total Paid: ${balance.total_paid:.2f}\n"
        result += f"Outstanding: ${balance.outstanding:.2f}\n"
        return _text(result)

    def export_invoice_rows(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """Flat invoice rows as JSON."""
        params = ExportParams.model_validate(arguments)
        rows = self.aggregator.export_rows(params.invoices)
        return _text(json.dumps(rows, indent=2))

    # Rate tools
    def resolve_billing_rules(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """Resolve effective billing rules."""
        params = RuleResolutionParams.model_validate(arguments)
        rules = self.resolver.resolve(self._org_rules(params), params.client_rules)

        result = "Effective billing rules:\n"
        result += f"Hourly rate: ${rules.hourly_rate:.2f}\n"
        result += f"Minimum billable duration: {rules.min_duration} min\n"
        result += f"Rounding: {rules.rounding.value}\n"
        return _text(result)

    def calculate_billable(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """Price one activity duration."""
        params = BillableParams.model_validate(arguments)
        rules = self.resolver.resolve(self._org_rules(params), params.client_rules)

        minutes = self.resolver.apply_rounding(params.duration_minutes, rules)
        hours = self.resolver.billable_hours(params.duration_minutes, rules)
        amount = self.resolver.billable_amount(params.duration_minutes, rules)

        result = f"Worked: {params.duration_minutes} min\n"
        result += f"Billable: {minutes} min ({hours} h)\n"
        result += f"Rate: ${rules.hourly_rate:.2f}/h\n"
        result += f"Amount: ${amount:.2f}\n"
        return _text(result)

    # Invoice lifecycle tools
    def approve_invoice(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """Approve a draft invoice."""
        params = InvoiceActionParams.model_validate(arguments)
        invoice = self.lifecycle.approve(Invoice.from_api_data(params.invoice))
        return _text("Invoice approved and marked as sent.\n" + format_invoice(invoice))

    def mark_invoice_paid(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """Mark an invoice paid."""
        params = InvoiceActionParams.model_validate(arguments)
        invoice = self.lifecycle.mark_paid(Invoice.from_api_data(params.invoice))
        return _text("Invoice marked as paid.\n" + format_invoice(invoice))

    def record_payment(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """Record a payment against an invoice."""
        params = PaymentRecordParams.model_validate(arguments)
        invoice = Invoice.from_api_data(params.invoice)

        paid_at = None
        if not params.pending:
            paid_at = parse_datetime(params.paid_at) or datetime.now(timezone.utc)

        payment = Payment(
            id=f"payment_{self.instance_id}_{int(datetime.now().timestamp() * 1_000_000)}",
            amount=to_decimal(params.amount),
            method=params.method,
            status="pending" if params.pending else "succeeded",
            paid_at=paid_at,
            reference=(params.reference or "").strip() or None
        )
        invoice = self.lifecycle.record_payment(invoice, payment)

        result = "Payment recorded successfully!\n"
        result += f"Amount: ${payment.amount:.2f}\n"
        result += f"Method: {payment.method}\n"
        if payment.reference:
            result += f"Reference: {payment.reference}\n"
        if invoice.balance_remaining < 0:
            result += f"Warning: invoice is overpaid by ${-invoice.balance_remaining:.2f}\n"
        result += "\n" + format_invoice(invoice)
        return _text(result)

    def generate_invoice(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """Generate a draft invoice from activities."""
        params = InvoiceGenerationParams.model_validate(arguments)
        settings = (
            OrganizationSettings.from_api_data(params.org_settings)
            if params.org_settings is not None else self.org_settings
        )

        invoice = self.generator.generate(
            client=Client.from_api_data(params.client),
            activities=[Activity.from_api_data(activity) for activity in params.activities],
            period_start=parse_datetime(params.period_start),
            period_end=parse_datetime(params.period_end),
            org_rules=self._org_rules(params),
            client_rules=params.client_rules,
            invoice_id=params.invoice_id,
            services=[ServiceType.from_api_data(service) for service in params.services],
            settings=settings,
            issue_date=parse_datetime(params.issue_date)
        )
        return _text("Draft invoice generated.\n" + format_invoice(invoice))


async def serve():
    """Run the MCP server over stdio."""
    from mcp.server.stdio import stdio_server

    billing_server = ElderflowBillingServer()

    async with stdio_server() as (read_stream, write_stream):
        await billing_server.server.run(
            read_stream,
            write_stream,
            billing_server.server.create_initialization_options()
        )


def main():
    """Main entry point."""
    # Load environment variables
    from dotenv import load_dotenv
    load_dotenv()

    logging.getLogger().setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    asyncio.run(serve())


if __name__ == "__main__":
    main()
