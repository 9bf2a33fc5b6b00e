party_schema = {
    "type": "object",
    "properties": {
        "taxId": {
            "type": "string",
            "description": "Taxpayer account number (NCC)",
        },
        "companyName": {
            "type": "string",
            "minLength": 1,
            "description": "Registered company name",
        },
        "name": {
            "type": "string",
            "minLength": 1,
            "description": "Person or trading name, used when there is no company name",
        },
        "address": {
            "type": "string",
            "description": "Postal address",
        },
        "email": {
            "type": "string",
            "description": "Contact email address",
        },
        "phone": {
            "type": "string",
            "description": "Contact phone number",
        },
    },
    "anyOf": [
        {"required": ["companyName"]},
        {"required": ["name"]},
    ],
}


line_item_schema = {
    "type": "object",
    "properties": {
        "description": {
            "type": "string",
            "minLength": 1,
            "description": "Item description",
        },
        "quantity": {
            "type": "number",
            "exclusiveMinimum": 0,
            "description": "Quantity of the item",
        },
        "unitPrice": {
            "type": "number",
            "minimum": 0,
            "description": "Unit price before tax",
        },
        "vatRatePercent": {
            "type": "number",
            "minimum": 0,
            "maximum": 100,
            "description": "VAT rate in percent (e.g. 18 or 9)",
        },
        "discountAmount": {
            "type": "number",
            "minimum": 0,
            "description": "Discount amount for the whole line, at most quantity * unitPrice",
        },
        "reference": {
            "type": "string",
            "description": "Item reference identifier",
        },
        "productCode": {
            "type": "string",
            "description": "Product code",
        },
        "measurementUnit": {
            "type": "string",
            "description": "Unit of measure",
        },
    },
    "required": ["description", "quantity", "unitPrice", "vatRatePercent"],
}


lines_schema = {
    "type": "array",
    "description": "Array of line items for the invoice",
    "items": line_item_schema,
}


totals_schema = {
    "type": "object",
    "description": "Invoice totals. Computed from the lines when omitted",
    "properties": {
        "subtotal": {"type": "number", "minimum": 0},
        "totalVat": {"type": "number", "minimum": 0},
        "totalDiscount": {"type": "number", "minimum": 0},
        "totalAmount": {"type": "number", "minimum": 0},
    },
    "required": ["subtotal", "totalVat", "totalDiscount", "totalAmount"],
}
