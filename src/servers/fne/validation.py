import logging
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator

from src.servers.fne.errors import ValidationError
from src.servers.fne.models import InvoiceTemplate
from src.servers.fne.schemas.invoice import invoice_schema
from src.servers.fne.totals import validate_line

logger = logging.getLogger("fne-validation")

invoice_validator = Draft7Validator(invoice_schema)


def _field_path(path) -> str:
    """Render a jsonschema path as buyer.taxId / lines[0].quantity"""
    field = ""
    for part in path:
        if isinstance(part, int):
            field += f"[{part}]"
        else:
            field += f".{part}" if field else str(part)
    return field


def schema_issues(payload: Dict[str, Any]) -> List[Dict[str, str]]:
    issues = []
    errors = sorted(
        invoice_validator.iter_errors(payload),
        key=lambda e: _field_path(e.absolute_path),
    )
    for error in errors:
        field = _field_path(error.absolute_path)
        if error.validator == "required":
            # message is "'taxId' is a required property"
            missing = error.message.split("'")[1]
            field = f"{field}.{missing}" if field else missing
            issue = "is required"
        elif error.validator == "anyOf" and all(
            "required" in option for option in error.validator_value
        ):
            names = " or ".join(option["required"][0] for option in error.validator_value)
            issue = f"one of {names} is required"
        else:
            issue = error.message
        issues.append({"field": field or "invoice", "issue": issue})
    return issues


def business_issues(
    payload: Dict[str, Any], require_buyer_tax_id: bool = False
) -> List[Dict[str, str]]:
    issues = []

    lines = payload.get("lines")
    if isinstance(lines, list):
        if not lines:
            issues.append({"field": "lines", "issue": "at least one line is required"})
        for index, line in enumerate(lines):
            issues.extend(validate_line(line, f"lines[{index}]."))

    for party_name in ("seller", "buyer"):
        party = payload.get(party_name)
        if isinstance(party, dict) and not any(
            isinstance(party.get(key), str) and party[key].strip()
            for key in ("companyName", "name")
        ):
            issues.append(
                {"field": party_name, "issue": "one of companyName or name is required"}
            )

    buyer = payload.get("buyer")
    template = payload.get("template")
    if isinstance(buyer, dict):
        if require_buyer_tax_id or template == InvoiceTemplate.B2B.value:
            tax_id = buyer.get("taxId")
            if not isinstance(tax_id, str) or not tax_id.strip():
                issues.append(
                    {"field": "buyer.taxId", "issue": "is required for this invoice"}
                )

    if template == InvoiceTemplate.B2F.value:
        if not payload.get("foreignCurrency"):
            issues.append(
                {"field": "foreignCurrency", "issue": "is required for B2F invoices"}
            )
        rate = payload.get("foreignCurrencyRate")
        if isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate <= 0:
            issues.append(
                {
                    "field": "foreignCurrencyRate",
                    "issue": "must be a positive number for B2F invoices",
                }
            )

    return issues


def collect_issues(
    payload: Any, require_buyer_tax_id: bool = False
) -> List[Dict[str, str]]:
    if not isinstance(payload, dict):
        return [{"field": "invoice", "issue": "must be an object"}]

    issues = []
    seen = set()
    for issue in schema_issues(payload) + business_issues(
        payload, require_buyer_tax_id
    ):
        key = issue["field"]
        if key not in seen:
            seen.add(key)
            issues.append(issue)
    return issues


def validate_submission(
    payload: Any, require_buyer_tax_id: bool = False, operation: Optional[str] = None
) -> None:
    """
    Validate an invoice before anything is sent.

    Raises:
        ValidationError: listing every offending field at once
    """
    issues = collect_issues(payload, require_buyer_tax_id)
    if issues:
        logger.info(
            f"[{operation or 'validate_submission'}] rejected locally: "
            f"{[issue['field'] for issue in issues]}"
        )
        raise ValidationError(issues)


def validate_idempotency_key(idempotency_key: Any) -> None:
    if not isinstance(idempotency_key, str) or not idempotency_key.strip():
        raise ValidationError(
            [{"field": "idempotencyKey", "issue": "must be a non-empty string"}]
        )
