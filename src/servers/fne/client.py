"""
FNE certification API client.

Async httpx client for submitting, reading, listing, cancelling and crediting
invoices. Mutating calls carry the caller's Idempotency-Key unchanged; the
client never generates one on its own and never retries by itself.
"""

import copy
import logging
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple, Union
from urllib.parse import quote
from uuid import uuid4

import httpx

from src.servers.fne.errors import (
    AuthError,
    ConflictError,
    FneTimeoutError,
    NetworkError,
    ServiceError,
    ValidationError,
)
from src.servers.fne.models import (
    CancelResult,
    InvoiceFilter,
    InvoiceStatus,
    InvoiceSubmission,
    InvoiceType,
    Page,
    SignedInvoice,
    ensure_transition,
    parse_status,
)
from src.servers.fne.session import FneSession
from src.servers.fne.totals import invoice_totals
from src.servers.fne.validation import validate_idempotency_key, validate_submission

logger = logging.getLogger("fne-client")

DEFAULT_TIMEOUT = 15.0
DEFAULT_CACHE_SIZE = 10_000
TOTAL_FIELDS = ("subtotal", "totalVat", "totalDiscount", "totalAmount")


def _cache_put(cache: "OrderedDict[Any, Any]", key: Any, value: Any, limit: int) -> None:
    """Insert into a least-recently-used cache holding at most `limit` entries"""
    cache[key] = value
    cache.move_to_end(key)
    while len(cache) > limit:
        cache.popitem(last=False)


def new_idempotency_key() -> str:
    """Generate a key once per logical submission, then reuse it on every retry"""
    return str(uuid4())


class FneClient:
    """FNE certification API client"""

    def __init__(
        self,
        base_url: str,
        session: FneSession,
        timeout: float = DEFAULT_TIMEOUT,
        require_buyer_tax_id: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.timeout = timeout
        self.require_buyer_tax_id = require_buyer_tax_id
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
        )
        # Bounded: the service owns status, these only short-circuit obvious mistakes
        self.cache_size = cache_size
        self._statuses: "OrderedDict[str, InvoiceStatus]" = OrderedDict()
        self._keys_by_number: "OrderedDict[str, str]" = OrderedDict()
        self._keys_by_operation: "OrderedDict[Tuple[str, str], str]" = OrderedDict()

    async def __aenter__(self) -> "FneClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def known_status(self, reference: str) -> Optional[InvoiceStatus]:
        """Last status seen for a reference, None if never seen"""
        return self._statuses.get(reference)

    def remember_status(self, reference: str, status: Union[str, InvoiceStatus]) -> None:
        parsed = parse_status(status)
        if reference and parsed is not None:
            _cache_put(self._statuses, reference, parsed, self.cache_size)

    def _remember(self, body: Any) -> None:
        if isinstance(body, dict) and body.get("reference"):
            self.remember_status(body["reference"], body.get("status"))

    def _record_key(self, operation: str, reference: str, idempotency_key: str) -> None:
        _cache_put(
            self._keys_by_operation, (operation, reference), idempotency_key, self.cache_size
        )

    def _check_transition(
        self,
        operation: str,
        reference: str,
        target: InvoiceStatus,
        idempotency_key: str,
    ) -> None:
        """
        Reject a move the last known status forbids.

        A retry of an operation that already succeeded under the same key is
        let through, so the service can replay its original answer.
        """
        if self._keys_by_operation.get((operation, reference)) == idempotency_key:
            return
        current = self.known_status(reference)
        if current is not None:
            ensure_transition(current, target)

    async def request(
        self,
        method: str,
        endpoint: str,
        operation: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Perform one exchange with the FNE service

        Raises:
            AuthError: the session is not active (no request sent) or the service answered 401/403
            FneTimeoutError: the request exceeded its deadline
            NetworkError: no response was received
            ServiceError: the service answered with an error body
        """
        headers = self.session.authorization_header()
        if idempotency_key is not None:
            headers["Idempotency-Key"] = idempotency_key

        logger.info(
            f"[{operation}] method: {method}, endpoint: {endpoint}, "
            f"idempotency_key: {idempotency_key}"
        )
        try:
            response = await self._http.request(
                method,
                endpoint,
                json=json,
                params=params,
                headers=headers,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"[{operation}] timed out after {timeout or self.timeout}s: {e}")
            raise FneTimeoutError(
                f"FNE request timed out during {operation}. The outcome is unknown: "
                "retry with the same idempotency key or look the invoice up.",
                code="TIMEOUT",
            ) from e
        except httpx.TransportError as e:
            logger.error(f"[{operation}] transport error: {str(e)}")
            raise NetworkError(
                f"Error communicating with the FNE service: {str(e)}",
                code="NETWORK_ERROR",
            ) from e

        logger.info(f"[{operation}] status_code: {response.status_code}")

        if response.status_code >= 400:
            error = ServiceError.from_response(response)
            logger.error(
                f"[{operation}] FNE error {response.status_code} {error.code}: "
                f"{error.message} (correlation id: {error.correlation_id})"
            )
            if response.status_code == 401:
                self.session.invalidate("service answered 401")
            raise error

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ServiceError(
                f"FNE service returned a non-JSON response for {operation}",
                code="INVALID_RESPONSE",
                http_status=response.status_code,
                correlation_id=response.headers.get("X-Correlation-Id"),
            ) from e

    def _prepare(self, payload: InvoiceSubmission, operation: str) -> InvoiceSubmission:
        """Validate a payload and return a copy with computed totals"""
        validate_submission(
            payload,
            require_buyer_tax_id=self.require_buyer_tax_id,
            operation=operation,
        )
        body = copy.deepcopy(payload)
        computed = invoice_totals(body["lines"])

        supplied = body.get("totals")
        if supplied:
            mismatches = [
                {
                    "field": f"totals.{name}",
                    "issue": f"does not match the lines (expected {computed[name]})",
                }
                for name in TOTAL_FIELDS
                if round(float(supplied.get(name, 0)), 2) != computed[name]
            ]
            if mismatches:
                raise ValidationError(mismatches)

        body["totals"] = computed
        return body

    async def submit_invoice(
        self,
        payload: InvoiceSubmission,
        idempotency_key: str,
        timeout: Optional[float] = None,
    ) -> SignedInvoice:
        """
        Submit an invoice for certification

        Args:
            payload: the invoice; totals are computed from its lines
            idempotency_key: caller key, reused unchanged on every retry of this submission

        Returns:
            The signed invoice, or {reference, status, message, links} while certification runs
        """
        validate_idempotency_key(idempotency_key)
        body = self._prepare(payload, "submit_invoice")

        number = body["invoiceNumber"]
        previous_key = self._keys_by_number.get(number)
        if previous_key is not None and previous_key != idempotency_key:
            raise ConflictError(
                f"Invoice {number} was already submitted under another idempotency key",
                code="DUPLICATE_INVOICE_NUMBER",
                http_status=409,
            )

        result = await self.request(
            "POST",
            "/invoices",
            "submit_invoice",
            json=body,
            idempotency_key=idempotency_key,
            timeout=timeout,
        )
        _cache_put(self._keys_by_number, number, idempotency_key, self.cache_size)
        self._remember(result)
        return result

    async def get_invoice(
        self, reference: str, timeout: Optional[float] = None
    ) -> SignedInvoice:
        """Fetch a signed invoice; NotFoundError for an unknown reference"""
        result = await self.request(
            "GET",
            f"/invoices/{quote(reference, safe='')}",
            "get_invoice",
            timeout=timeout,
        )
        self._remember(result)
        return result

    async def list_invoices(
        self, filters: InvoiceFilter, timeout: Optional[float] = None
    ) -> Page:
        """List invoices; page and size are passed through unmodified"""
        missing = [
            {"field": name, "issue": "is required"}
            for name in ("page", "size")
            if filters.get(name) is None
        ]
        if missing:
            raise ValidationError(missing)

        params = {"page": filters["page"], "size": filters["size"]}
        status = filters.get("status")
        if status:
            params["status"] = status.value if isinstance(status, InvoiceStatus) else status
        date_range = filters.get("dateRange")
        if date_range:
            date_from, date_to = date_range
            if date_from:
                params["from"] = date_from
            if date_to:
                params["to"] = date_to
        if filters.get("sort"):
            params["sort"] = filters["sort"]

        return await self.request(
            "GET", "/invoices", "list_invoices", params=params, timeout=timeout
        )

    async def cancel(
        self,
        reference: str,
        reason: Optional[str],
        idempotency_key: str,
        reason_code: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CancelResult:
        """Cancel an ACCEPTED or SIGNED invoice; idempotent under the same key"""
        validate_idempotency_key(idempotency_key)
        self._check_transition("cancel", reference, InvoiceStatus.CANCELLED, idempotency_key)

        body = {}
        if reason_code:
            body["reasonCode"] = reason_code
        if reason:
            body["reason"] = reason

        result = await self.request(
            "POST",
            f"/invoices/{quote(reference, safe='')}/cancel",
            "cancel",
            json=body,
            idempotency_key=idempotency_key,
            timeout=timeout,
        )
        self.remember_status(reference, result.get("status") or InvoiceStatus.CANCELLED)
        self._record_key("cancel", reference, idempotency_key)
        return result

    async def credit_note(
        self,
        reference: str,
        payload: InvoiceSubmission,
        idempotency_key: str,
        timeout: Optional[float] = None,
    ) -> SignedInvoice:
        """Issue a credit note against a SIGNED invoice; idempotent under the same key"""
        validate_idempotency_key(idempotency_key)
        self._check_transition("credit_note", reference, InvoiceStatus.CREDITED, idempotency_key)

        body = self._prepare(payload, "credit_note")
        body["invoiceType"] = InvoiceType.CREDIT_NOTE.value

        result = await self.request(
            "POST",
            f"/invoices/{quote(reference, safe='')}/credit-note",
            "credit_note",
            json=body,
            idempotency_key=idempotency_key,
            timeout=timeout,
        )
        self.remember_status(reference, InvoiceStatus.CREDITED)
        self._record_key("credit_note", reference, idempotency_key)
        self._remember(result)
        return result

    async def health_check(self) -> bool:
        """True when the service answers its health endpoint"""
        try:
            await self.request("GET", "/health", "health_check")
            return True
        except AuthError:
            raise
        except (NetworkError, FneTimeoutError, ServiceError) as e:
            logger.warning(f"[health_check] FNE service unavailable: {str(e)}")
            return False
