from enum import Enum
from typing import Any, Dict, List, Optional, TypedDict, Union

from src.servers.fne.errors import ValidationError


Number = Union[int, float]


class InvoiceStatus(str, Enum):
    """Certification status, owned by the FNE service"""

    RECEIVED = "RECEIVED"
    VALIDATING = "VALIDATING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    SIGNED = "SIGNED"
    CANCELLED = "CANCELLED"
    CREDITED = "CREDITED"


class PaymentMode(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    TRANSFER = "TRANSFER"
    MOBILE = "MOBILE"
    CHECK = "CHECK"
    DEFERRED = "DEFERRED"


class InvoiceType(str, Enum):
    STANDARD = "STANDARD"
    PROFORMA = "PROFORMA"
    CREDIT_NOTE = "CREDIT_NOTE"


class InvoiceTemplate(str, Enum):
    B2B = "B2B"
    B2C = "B2C"
    B2F = "B2F"
    B2G = "B2G"


# ACCEPTED -> CANCELLED is allowed because cancel is legal before signing
TRANSITIONS = {
    InvoiceStatus.RECEIVED: {InvoiceStatus.VALIDATING},
    InvoiceStatus.VALIDATING: {InvoiceStatus.ACCEPTED, InvoiceStatus.REJECTED},
    InvoiceStatus.ACCEPTED: {InvoiceStatus.SIGNED, InvoiceStatus.CANCELLED},
    InvoiceStatus.SIGNED: {InvoiceStatus.CANCELLED, InvoiceStatus.CREDITED},
    InvoiceStatus.REJECTED: set(),
    InvoiceStatus.CANCELLED: set(),
    InvoiceStatus.CREDITED: set(),
}

TERMINAL_STATUSES = {InvoiceStatus.REJECTED, InvoiceStatus.CANCELLED}


class InvoiceLine(TypedDict, total=False):
    description: str
    quantity: Number
    unitPrice: Number
    vatRatePercent: Number
    discountAmount: Number
    reference: str
    productCode: str
    measurementUnit: str


class InvoiceTotals(TypedDict):
    subtotal: float
    totalVat: float
    totalDiscount: float
    totalAmount: float


class Party(TypedDict, total=False):
    taxId: str
    companyName: str
    name: str
    address: str
    email: str
    phone: str


class InvoiceSubmission(TypedDict, total=False):
    invoiceNumber: str
    issueDate: str
    currency: str
    invoiceType: str
    template: str
    paymentMode: str
    seller: Party
    buyer: Party
    lines: List[InvoiceLine]
    totals: InvoiceTotals
    foreignCurrency: str
    foreignCurrencyRate: Number
    notes: str
    notify: Dict[str, str]
    metadata: Dict[str, Any]


class SignedInvoice(InvoiceSubmission, total=False):
    reference: str
    status: str
    signature: str
    qrCode: str
    hash: str
    processedAt: str
    parentReference: str
    subtype: str


class InvoiceSummary(TypedDict):
    reference: str
    invoiceNumber: str
    status: str
    totalAmount: float
    currency: str
    issueDate: str


class Page(TypedDict):
    page: int
    size: int
    totalElements: int
    content: List[InvoiceSummary]


class CancelResult(TypedDict):
    reference: str
    status: str
    cancelledAt: str


class InvoiceFilter(TypedDict, total=False):
    status: str
    dateRange: tuple
    page: int
    size: int
    sort: str


def parse_status(value: Any) -> Optional[InvoiceStatus]:
    """Read a status off a service response, ignoring values we do not know"""
    if isinstance(value, InvoiceStatus):
        return value
    try:
        return InvoiceStatus(str(value).upper())
    except ValueError:
        return None


def can_transition(current: InvoiceStatus, target: InvoiceStatus) -> bool:
    return target in TRANSITIONS.get(current, set())


def ensure_transition(
    current: InvoiceStatus, target: InvoiceStatus, field: str = "status"
) -> None:
    """Raise a local ValidationError for a move outside the transition table"""
    if not can_transition(current, target):
        raise ValidationError(
            [
                {
                    "field": field,
                    "issue": f"cannot move from {current.value} to {target.value}",
                }
            ]
        )
