from mcp.types import Tool
from src.servers.fne.schemas.invoice import (
    compute_totals_schema,
    validate_invoice_schema,
    submit_invoice_schema,
    get_invoice_schema,
    list_invoices_schema,
    cancel_invoice_schema,
    credit_note_schema,
)

totals_tools = [
    Tool(
        name="compute_invoice_totals",
        description="Compute subtotal, VAT, discount and total for a list of invoice lines. VAT applies to the discounted line amount",
        inputSchema=compute_totals_schema,
    ),
    Tool(
        name="validate_invoice",
        description="Check an invoice locally and list every offending field, without contacting the FNE service",
        inputSchema=validate_invoice_schema,
    ),
]


invoice_tools = [
    Tool(
        name="submit_invoice",
        description="Submit an invoice to the FNE certification service. Retrying with the same idempotency key returns the original result",
        inputSchema=submit_invoice_schema,
    ),
    Tool(
        name="get_invoice",
        description="Fetch a certified invoice by its FNE reference",
        inputSchema=get_invoice_schema,
    ),
    Tool(
        name="list_invoices",
        description="List invoices with optional status and date filters, paginated",
        inputSchema=list_invoices_schema,
    ),
    Tool(
        name="cancel_invoice",
        description="Cancel an accepted or signed invoice",
        inputSchema=cancel_invoice_schema,
    ),
    Tool(
        name="create_credit_note",
        description="Issue a credit note (refund) against a signed invoice",
        inputSchema=credit_note_schema,
    ),
]
