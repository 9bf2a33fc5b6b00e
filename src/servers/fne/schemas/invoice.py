from src.servers.fne.schemas.common import party_schema, lines_schema, totals_schema


invoice_schema = {
    "type": "object",
    "properties": {
        "invoiceNumber": {
            "type": "string",
            "minLength": 1,
            "description": "Caller-assigned invoice number, unique per tenant",
        },
        "issueDate": {
            "type": "string",
            "format": "date-time",
            "description": "Invoice issue date in ISO format",
        },
        "currency": {
            "type": "string",
            "pattern": "^[A-Z]{3}$",
            "description": "ISO 4217 currency code (e.g., XOF, EUR, USD)",
        },
        "invoiceType": {
            "type": "string",
            "enum": ["STANDARD", "PROFORMA", "CREDIT_NOTE"],
            "description": "Invoice type",
        },
        "template": {
            "type": "string",
            "enum": ["B2B", "B2C", "B2F", "B2G"],
            "description": "Invoice template. B2B requires the buyer tax ID",
        },
        "paymentMode": {
            "type": "string",
            "enum": ["CASH", "CARD", "TRANSFER", "MOBILE", "CHECK", "DEFERRED"],
            "description": "Payment mode",
        },
        "seller": party_schema,
        "buyer": party_schema,
        "lines": lines_schema,
        "totals": totals_schema,
        "foreignCurrency": {
            "type": "string",
            "description": "Foreign currency code, required for B2F invoices",
        },
        "foreignCurrencyRate": {
            "type": "number",
            "description": "Exchange rate to the invoice currency, required for B2F invoices",
        },
        "notes": {
            "type": "string",
            "description": "Additional notes for the invoice",
        },
        "notify": {
            "type": "object",
            "properties": {
                "webhookUrl": {
                    "type": "string",
                    "description": "URL notified when certification completes",
                },
            },
        },
        "metadata": {
            "type": "object",
            "description": "Free-form metadata stored with the invoice",
        },
    },
    "required": [
        "invoiceNumber",
        "issueDate",
        "currency",
        "seller",
        "buyer",
        "lines",
        "paymentMode",
    ],
}


idempotency_key_property = {
    "type": "string",
    "minLength": 1,
    "description": "Caller-generated key (e.g. a UUID). Reuse the same key when retrying the same submission",
}

reference_property = {
    "type": "string",
    "minLength": 1,
    "description": "FNE invoice reference assigned by the certification service",
}


compute_totals_schema = {
    "type": "object",
    "properties": {
        "lines": lines_schema,
    },
    "required": ["lines"],
}

validate_invoice_schema = {
    "type": "object",
    "properties": {
        "invoice": invoice_schema,
    },
    "required": ["invoice"],
}

submit_invoice_schema = {
    "type": "object",
    "properties": {
        "invoice": invoice_schema,
        "idempotencyKey": idempotency_key_property,
    },
    "required": ["invoice", "idempotencyKey"],
}

get_invoice_schema = {
    "type": "object",
    "properties": {
        "reference": reference_property,
    },
    "required": ["reference"],
}

list_invoices_schema = {
    "type": "object",
    "properties": {
        "status": {
            "type": "string",
            "enum": [
                "RECEIVED",
                "VALIDATING",
                "ACCEPTED",
                "REJECTED",
                "SIGNED",
                "CANCELLED",
                "CREDITED",
            ],
            "description": "Only return invoices in this status",
        },
        "from": {
            "type": "string",
            "description": "Start of the issue date range (ISO 8601 format)",
        },
        "to": {
            "type": "string",
            "description": "End of the issue date range (ISO 8601 format)",
        },
        "page": {
            "type": "integer",
            "minimum": 0,
            "description": "Page number for pagination",
        },
        "size": {
            "type": "integer",
            "minimum": 1,
            "description": "Number of results per page",
        },
        "sort": {
            "type": "string",
            "description": "Sort expression, e.g. issueDate,desc",
        },
    },
    "required": ["page", "size"],
}

cancel_invoice_schema = {
    "type": "object",
    "properties": {
        "reference": reference_property,
        "reason": {
            "type": "string",
            "description": "Human readable reason for the cancellation",
        },
        "reasonCode": {
            "type": "string",
            "description": "Cancellation reason code",
        },
        "idempotencyKey": idempotency_key_property,
    },
    "required": ["reference", "idempotencyKey"],
}

credit_note_schema = {
    "type": "object",
    "properties": {
        "reference": reference_property,
        "invoice": invoice_schema,
        "idempotencyKey": idempotency_key_property,
    },
    "required": ["reference", "invoice", "idempotencyKey"],
}
