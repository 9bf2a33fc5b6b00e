"""
Invoice totals.

Pure functions turning invoice lines into the subtotal / VAT / discount / total
figures embedded in every FNE submission. VAT is charged on the discounted
line amount. Sums are kept exact in Decimal and rounded half-up to two
decimals once per aggregate.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

from src.servers.fne.errors import ValidationError
from src.servers.fne.models import InvoiceLine, InvoiceTotals

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a JSON number to Decimal, None if it is not a finite number"""
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return None
    return result if result.is_finite() else None


def validate_line(line: Dict[str, Any], prefix: str = "") -> List[Dict[str, str]]:
    """
    Collect every problem on a single line.

    Args:
        line: the invoice line
        prefix: field path prefix, e.g. "lines[2]."

    Returns:
        A list of {"field", "issue"} dicts, empty when the line is valid
    """
    if not isinstance(line, dict):
        return [{"field": prefix.rstrip(".") or "line", "issue": "must be an object"}]

    issues = []

    def add(field: str, issue: str) -> None:
        issues.append({"field": f"{prefix}{field}", "issue": issue})

    description = line.get("description")
    if not isinstance(description, str) or not description.strip():
        add("description", "must be a non-empty string")

    quantity = to_decimal(line.get("quantity"))
    if quantity is None:
        add("quantity", "must be a number")
    elif quantity <= ZERO:
        add("quantity", "must be greater than 0")

    unit_price = to_decimal(line.get("unitPrice"))
    if unit_price is None:
        add("unitPrice", "must be a number")
    elif unit_price < ZERO:
        add("unitPrice", "must be greater than or equal to 0")

    vat_rate = to_decimal(line.get("vatRatePercent", 0))
    if vat_rate is None:
        add("vatRatePercent", "must be a number")
    elif not ZERO <= vat_rate <= HUNDRED:
        add("vatRatePercent", "must be between 0 and 100")

    discount = to_decimal(line.get("discountAmount", 0))
    if discount is None:
        add("discountAmount", "must be a number")
    elif discount < ZERO:
        add("discountAmount", "must be greater than or equal to 0")
    elif quantity is not None and unit_price is not None:
        # The cap only means something once quantity and price are valid
        if quantity > ZERO and unit_price >= ZERO and discount > quantity * unit_price:
            add("discountAmount", "must not exceed quantity * unitPrice")

    return issues


def _amounts(line: InvoiceLine, prefix: str = ""):
    issues = validate_line(line, prefix)
    if issues:
        raise ValidationError(issues)

    gross = Decimal(str(line["quantity"])) * Decimal(str(line["unitPrice"]))
    discount = Decimal(str(line.get("discountAmount", 0)))
    vat_rate = Decimal(str(line.get("vatRatePercent", 0)))
    vat = (gross - discount) * vat_rate / HUNDRED
    return gross, discount, vat


def line_subtotal(line: InvoiceLine) -> float:
    gross, _, _ = _amounts(line)
    return float(round_money(gross))


def line_vat(line: InvoiceLine) -> float:
    _, _, vat = _amounts(line)
    return float(round_money(vat))


def line_total(line: InvoiceLine) -> float:
    """quantity * unitPrice - discountAmount + line VAT"""
    gross, discount, vat = _amounts(line)
    return float(round_money(gross) - round_money(discount) + round_money(vat))


def invoice_totals(lines: Iterable[InvoiceLine]) -> InvoiceTotals:
    """
    Compute the invoice-level totals.

    An empty list gives all-zero totals; requiring at least one line is a
    submission rule, not a totals rule. Raises ValidationError listing the
    problems of every invalid line.
    """
    lines = list(lines)

    issues = []
    for index, line in enumerate(lines):
        issues.extend(validate_line(line, f"lines[{index}]."))
    if issues:
        raise ValidationError(issues)

    subtotal = ZERO
    total_discount = ZERO
    total_vat = ZERO
    for line in lines:
        gross, discount, vat = _amounts(line)
        subtotal += gross
        total_discount += discount
        total_vat += vat

    subtotal = round_money(subtotal)
    total_discount = round_money(total_discount)
    total_vat = round_money(total_vat)

    return {
        "subtotal": float(subtotal),
        "totalVat": float(total_vat),
        "totalDiscount": float(total_discount),
        "totalAmount": float(subtotal - total_discount + total_vat),
    }


def line_breakdown(line: InvoiceLine) -> Dict[str, float]:
    """Per-line figures for display next to the line"""
    return {
        "subtotal": line_subtotal(line),
        "discountAmount": float(round_money(Decimal(str(line.get("discountAmount", 0))))),
        "vatAmount": line_vat(line),
        "lineTotal": line_total(line),
    }
