from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.servers.fne.config import FneConfig, get_fne_config
from src.servers.fne.errors import ValidationError
from src.servers.fne.models import InvoiceLine, InvoiceSubmission, Party
from src.servers.fne.totals import invoice_totals, line_total, line_vat

LINE_KEYS = ("reference", "productCode", "measurementUnit")

# Forms send the FNE rates either as percents (18, 9) or as these fractions
VAT_RATE_FRACTIONS = {0.18: 18, 0.09: 9}


def _vat_rate_percent(line: Dict[str, Any], prefix: str = "") -> Any:
    if "vatRatePercent" in line:
        return line["vatRatePercent"]
    rate = line.get("vatRate", 0)
    if isinstance(rate, (int, float)) and not isinstance(rate, bool) and 0 < rate < 1:
        if rate not in VAT_RATE_FRACTIONS:
            raise ValidationError(
                [
                    {
                        "field": f"{prefix}vatRate",
                        "issue": "ambiguous rate, send vatRatePercent instead",
                    }
                ]
            )
        return VAT_RATE_FRACTIONS[rate]
    return rate


def map_form_line(line: Dict[str, Any], prefix: str = "") -> InvoiceLine:
    mapped: InvoiceLine = {
        "description": line.get("description", ""),
        "quantity": line.get("quantity"),
        "unitPrice": line.get("unitPrice"),
        "vatRatePercent": _vat_rate_percent(line, prefix),
        "discountAmount": line.get("discountAmount", line.get("discount", 0)) or 0,
    }
    for key in LINE_KEYS:
        if line.get(key):
            mapped[key] = line[key]
    return mapped


def default_seller(config: Optional[FneConfig] = None) -> Party:
    seller = (config or get_fne_config())["seller"]
    return {key: value for key, value in seller.items() if value}


def build_submission(
    form: Dict[str, Any],
    seller: Optional[Party] = None,
    config: Optional[FneConfig] = None,
) -> InvoiceSubmission:
    """
    Turn a flat invoice form into an FNE submission.

    Args:
        form: form fields (buyerTaxId, buyerName, ..., lines)
        seller: seller party; defaults to the configured seller
        config: FNE configuration, read from the environment when omitted

    Returns:
        The submission with totals computed from the lines. Raises
        ValidationError when a line is invalid.
    """
    lines: List[InvoiceLine] = [
        map_form_line(line, f"lines[{index}].")
        for index, line in enumerate(form.get("lines", []))
    ]

    # Empty form fields are left out so validation reports them as missing
    buyer: Party = {}
    for form_key, party_key in (
        ("buyerTaxId", "taxId"),
        ("buyerName", "name"),
        ("buyerAddress", "address"),
        ("buyerEmail", "email"),
        ("buyerPhone", "phone"),
    ):
        if form.get(form_key):
            buyer[party_key] = form[form_key]

    submission: InvoiceSubmission = {
        "invoiceNumber": form.get("invoiceNumber", ""),
        "issueDate": form.get("issueDate")
        or datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "currency": form.get("currency", "XOF"),
        "invoiceType": form.get("invoiceType", "STANDARD"),
        "paymentMode": form.get("paymentMode", "CASH"),
        "seller": seller or default_seller(config),
        "buyer": buyer,
        "lines": lines,
        "totals": invoice_totals(lines),
    }
    for key in ("template", "notes", "foreignCurrency", "foreignCurrencyRate", "metadata"):
        if form.get(key) is not None:
            submission[key] = form[key]
    return submission


def line_display(lines: List[InvoiceLine]) -> List[Dict[str, Any]]:
    """Lines with their VAT amount and total attached, for rendering"""
    return [
        {**line, "vatAmount": line_vat(line), "lineTotal": line_total(line)}
        for line in lines
    ]
