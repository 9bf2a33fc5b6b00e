import asyncio
import copy
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.servers.fne.client import FneClient, new_idempotency_key
from src.servers.fne.errors import (
    AuthError,
    ConflictError,
    FneTimeoutError,
    NetworkError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from src.servers.fne.models import InvoiceStatus
from src.servers.fne.session import FneSession
from src.servers.fne.totals import invoice_totals
from tests.fixtures.fne_mock import BASE_URL


def credit_payload(invoice):
    credit = copy.deepcopy(invoice)
    credit["invoiceNumber"] = "AV-2026-0001"
    credit["lines"] = credit["lines"][:1]
    return credit


class TestSubmitInvoice:
    @pytest.mark.asyncio
    async def test_submit_sends_computed_totals_and_key(
        self, client, fne_server, sample_invoice
    ):
        key = new_idempotency_key()
        result = await client.submit_invoice(sample_invoice, key)

        assert result["reference"] == "FNE-000001"
        assert result["status"] == "SIGNED"
        assert result["signature"].startswith("SIG_")

        [request] = fne_server.requests_to("POST", "/invoices")
        assert request.headers["Idempotency-Key"] == key
        assert request.headers["Authorization"] == "Bearer test-token"
        sent = json.loads(request.content)
        assert sent["totals"] == {
            "subtotal": 20000.0,
            "totalVat": 2610.0,
            "totalDiscount": 1000.0,
            "totalAmount": 21610.0,
        }
        assert client.known_status("FNE-000001") == InvoiceStatus.SIGNED

    @pytest.mark.asyncio
    async def test_payload_is_not_mutated(self, client, fne_server, sample_invoice):
        original = copy.deepcopy(sample_invoice)
        await client.submit_invoice(sample_invoice, "key-1")
        assert sample_invoice == original

    @pytest.mark.asyncio
    async def test_resubmission_with_same_key_returns_same_invoice(
        self, client, fne_server, sample_invoice
    ):
        first = await client.submit_invoice(sample_invoice, "key-1")
        second = await client.submit_invoice(sample_invoice, "key-1")

        assert second["reference"] == first["reference"]
        assert len(fne_server.invoices) == 1

    @pytest.mark.asyncio
    async def test_retry_after_timeout_keeps_one_invoice(
        self, client, fne_server, sample_invoice
    ):
        fne_server.fail_next(httpx.ReadTimeout("read timed out"))
        with pytest.raises(FneTimeoutError) as exc_info:
            await client.submit_invoice(sample_invoice, "key-1")
        assert exc_info.value.code == "TIMEOUT"

        result = await client.submit_invoice(sample_invoice, "key-1")

        assert result["reference"] == "FNE-000001"
        assert len(fne_server.invoices) == 1
        keys = {r.headers["Idempotency-Key"] for r in fne_server.requests_to("POST", "/invoices")}
        assert keys == {"key-1"}

    @pytest.mark.asyncio
    async def test_connection_failure_is_network_error(
        self, client, fne_server, sample_invoice
    ):
        fne_server.fail_next(httpx.ConnectError("connection refused"))
        with pytest.raises(NetworkError):
            await client.submit_invoice(sample_invoice, "key-1")

    @pytest.mark.asyncio
    async def test_empty_lines_rejected_without_request(
        self, client, fne_server, sample_invoice
    ):
        sample_invoice["lines"] = []
        with pytest.raises(ValidationError) as exc_info:
            await client.submit_invoice(sample_invoice, "key-1")
        assert exc_info.value.fields == ["lines"]
        assert fne_server.requests == []

    @pytest.mark.asyncio
    async def test_b2b_without_buyer_tax_id_rejected_without_request(
        self, client, fne_server, sample_invoice
    ):
        sample_invoice["buyer"]["taxId"] = ""
        with pytest.raises(ValidationError) as exc_info:
            await client.submit_invoice(sample_invoice, "key-1")
        assert "buyer.taxId" in exc_info.value.fields
        assert fne_server.requests == []

    @pytest.mark.asyncio
    async def test_configured_buyer_tax_id_requirement(
        self, fne_server, session, sample_invoice
    ):
        sample_invoice["template"] = "B2C"
        del sample_invoice["buyer"]["taxId"]
        async with FneClient(BASE_URL, session, require_buyer_tax_id=True) as strict:
            with pytest.raises(ValidationError) as exc_info:
                await strict.submit_invoice(sample_invoice, "key-1")
        assert exc_info.value.fields == ["buyer.taxId"]
        assert fne_server.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["", "   ", None])
    async def test_missing_idempotency_key(self, client, fne_server, sample_invoice, key):
        with pytest.raises(ValidationError) as exc_info:
            await client.submit_invoice(sample_invoice, key)
        assert exc_info.value.fields == ["idempotencyKey"]
        assert fne_server.requests == []

    @pytest.mark.asyncio
    async def test_supplied_totals_must_match_lines(
        self, client, fne_server, sample_invoice, sample_lines
    ):
        sample_invoice["totals"] = {**invoice_totals(sample_lines), "totalVat": 9999}
        with pytest.raises(ValidationError) as exc_info:
            await client.submit_invoice(sample_invoice, "key-1")
        assert exc_info.value.fields == ["totals.totalVat"]
        assert fne_server.requests == []

    @pytest.mark.asyncio
    async def test_matching_totals_are_accepted(
        self, client, fne_server, sample_invoice, sample_lines
    ):
        sample_invoice["totals"] = invoice_totals(sample_lines)
        result = await client.submit_invoice(sample_invoice, "key-1")
        assert result["totals"]["totalAmount"] == 21610.0

    @pytest.mark.asyncio
    async def test_same_number_under_new_key_conflicts_locally(
        self, client, fne_server, sample_invoice
    ):
        await client.submit_invoice(sample_invoice, "key-1")
        with pytest.raises(ConflictError) as exc_info:
            await client.submit_invoice(sample_invoice, "key-2")
        assert exc_info.value.code == "DUPLICATE_INVOICE_NUMBER"
        assert len(fne_server.requests_to("POST", "/invoices")) == 1

    @pytest.mark.asyncio
    async def test_service_conflict(self, client, fne_server, sample_invoice):
        fne_server.numbers["INV-2026-0001"] = "someone-elses-key"
        with pytest.raises(ConflictError) as exc_info:
            await client.submit_invoice(sample_invoice, "key-1")
        assert exc_info.value.http_status == 409
        assert exc_info.value.code == "DUPLICATE_INVOICE"

    @pytest.mark.asyncio
    async def test_service_rejection_keeps_correlation_id(
        self, client, fne_server, sample_invoice
    ):
        sample_invoice["buyer"]["taxId"] = "INVALID"
        with pytest.raises(ServiceError) as exc_info:
            await client.submit_invoice(sample_invoice, "key-1")

        error = exc_info.value
        assert type(error) is ServiceError
        assert error.http_status == 422
        assert error.code == "INVALID_TAX_ID"
        assert error.correlation_id.startswith("corr-")
        assert error.details == [{"field": "buyer.taxId", "issue": "invalid format"}]
        assert error.correlation_id in str(error)

    @pytest.mark.asyncio
    async def test_correlation_id_header_fallback(self, client, fne_server, sample_invoice):
        fne_server.fail_next(
            httpx.Response(
                503, text="Service Unavailable", headers={"X-Correlation-Id": "hdr-42"}
            )
        )
        with pytest.raises(ServiceError) as exc_info:
            await client.submit_invoice(sample_invoice, "key-1")
        assert exc_info.value.http_status == 503
        assert exc_info.value.correlation_id == "hdr-42"


class TestSession:
    @pytest.mark.asyncio
    async def test_401_invalidates_session(self, fne_server, sample_invoice):
        session = FneSession("stale-token", "user-1")
        async with FneClient(BASE_URL, session) as stale:
            with pytest.raises(AuthError):
                await stale.get_invoice("FNE-000001")
            assert not session.is_active

            with pytest.raises(AuthError) as exc_info:
                await stale.submit_invoice(sample_invoice, "key-1")
            assert exc_info.value.code == "SESSION_INVALID"

        assert len(fne_server.requests) == 1

    @pytest.mark.asyncio
    async def test_logged_out_session_sends_nothing(self, client, fne_server, session):
        session.invalidate()
        with pytest.raises(AuthError):
            await client.list_invoices({"page": 0, "size": 10})
        assert fne_server.requests == []


class TestReadOperations:
    @pytest.mark.asyncio
    async def test_get_invoice_totals_match_computed(
        self, client, fne_server, sample_invoice, sample_lines
    ):
        submitted = await client.submit_invoice(sample_invoice, "key-1")
        fetched = await client.get_invoice(submitted["reference"])

        assert fetched["totals"] == invoice_totals(sample_lines)
        assert fetched["signature"] == submitted["signature"]

    @pytest.mark.asyncio
    async def test_unknown_reference(self, client, fne_server):
        with pytest.raises(NotFoundError) as exc_info:
            await client.get_invoice("FNE-999999")
        assert exc_info.value.code == "INVOICE_NOT_FOUND"
        assert exc_info.value.http_status == 404

    @pytest.mark.asyncio
    async def test_list_passes_filters_through(self, client, fne_server):
        for number in range(1, 4):
            fne_server.seed_invoice(f"FNE-00000{number}", "SIGNED", invoiceNumber=f"INV-{number}")
        fne_server.seed_invoice("FNE-000004", "CANCELLED", invoiceNumber="INV-4")

        page = await client.list_invoices(
            {
                "page": 1,
                "size": 2,
                "status": InvoiceStatus.SIGNED,
                "dateRange": ("2026-01-01", None),
                "sort": "issueDate,desc",
            }
        )

        assert page["page"] == 1
        assert page["size"] == 2
        assert page["totalElements"] == 3
        assert [item["reference"] for item in page["content"]] == ["FNE-000003"]

        [request] = fne_server.requests_to("GET", "/invoices")
        assert dict(request.url.params) == {
            "page": "1",
            "size": "2",
            "status": "SIGNED",
            "from": "2026-01-01",
            "sort": "issueDate,desc",
        }

    @pytest.mark.asyncio
    async def test_list_requires_page_and_size(self, client, fne_server):
        with pytest.raises(ValidationError) as exc_info:
            await client.list_invoices({"size": 10})
        assert exc_info.value.fields == ["page"]
        assert fne_server.requests == []

    @pytest.mark.asyncio
    async def test_health_check(self, client, fne_server):
        assert await client.health_check() is True

        fne_server.fail_next(httpx.ConnectError("connection refused"))
        assert await client.health_check() is False

    @pytest.mark.asyncio
    async def test_health_check_raises_on_auth_failure(self, fne_server):
        async with FneClient(BASE_URL, FneSession("stale-token", "user-1")) as stale:
            with pytest.raises(AuthError):
                await stale.health_check()


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_signed_invoice(self, client, fne_server, sample_invoice):
        submitted = await client.submit_invoice(sample_invoice, "key-1")
        reference = submitted["reference"]

        result = await client.cancel(reference, "Wrong buyer", "cancel-1", reason_code="ERROR")

        assert result["status"] == "CANCELLED"
        assert result["cancelledAt"]
        assert client.known_status(reference) == InvoiceStatus.CANCELLED
        [request] = fne_server.requests_to("POST", f"/invoices/{reference}/cancel")
        assert request.headers["Idempotency-Key"] == "cancel-1"
        assert json.loads(request.content) == {"reasonCode": "ERROR", "reason": "Wrong buyer"}

    @pytest.mark.asyncio
    async def test_second_cancel_under_new_key_rejected_locally(
        self, client, fne_server, sample_invoice
    ):
        submitted = await client.submit_invoice(sample_invoice, "key-1")
        reference = submitted["reference"]
        await client.cancel(reference, "Wrong buyer", "cancel-1")
        request_count = len(fne_server.requests)

        with pytest.raises(ValidationError) as exc_info:
            await client.cancel(reference, "Again", "cancel-2")

        assert exc_info.value.issues == [
            {"field": "status", "issue": "cannot move from CANCELLED to CANCELLED"}
        ]
        assert len(fne_server.requests) == request_count

    @pytest.mark.asyncio
    async def test_cancel_retry_with_same_key_replays(self, client, fne_server, sample_invoice):
        submitted = await client.submit_invoice(sample_invoice, "key-1")
        reference = submitted["reference"]

        first = await client.cancel(reference, "Wrong buyer", "cancel-1")
        second = await client.cancel(reference, "Wrong buyer", "cancel-1")

        assert second == first
        assert len(fne_server.requests_to("POST", f"/invoices/{reference}/cancel")) == 2

    @pytest.mark.asyncio
    async def test_cancel_accepted_invoice(self, client, fne_server):
        fne_server.seed_invoice("FNE-000010", "ACCEPTED")
        client.remember_status("FNE-000010", "ACCEPTED")

        result = await client.cancel("FNE-000010", None, "cancel-1")

        assert result["status"] == "CANCELLED"

    @pytest.mark.asyncio
    async def test_unknown_status_defers_to_service(self, client, fne_server):
        fne_server.seed_invoice("FNE-000020", "REJECTED")

        with pytest.raises(ServiceError) as exc_info:
            await client.cancel("FNE-000020", "Duplicate", "cancel-1")

        assert exc_info.value.code == "ILLEGAL_TRANSITION"
        assert exc_info.value.http_status == 422


class TestCreditNote:
    @pytest.mark.asyncio
    async def test_credit_note_on_signed_invoice(self, client, fne_server, sample_invoice):
        submitted = await client.submit_invoice(sample_invoice, "key-1")
        reference = submitted["reference"]

        credit = await client.credit_note(reference, credit_payload(sample_invoice), "credit-1")

        assert credit["parentReference"] == reference
        assert credit["invoiceType"] == "CREDIT_NOTE"
        assert credit["totals"]["totalAmount"] == 11800.0
        assert client.known_status(reference) == InvoiceStatus.CREDITED
        assert fne_server.invoices[reference]["status"] == "CREDITED"

    @pytest.mark.asyncio
    async def test_credit_note_retry_with_same_key_replays(
        self, client, fne_server, sample_invoice
    ):
        submitted = await client.submit_invoice(sample_invoice, "key-1")
        reference = submitted["reference"]
        payload = credit_payload(sample_invoice)

        first = await client.credit_note(reference, payload, "credit-1")
        second = await client.credit_note(reference, payload, "credit-1")

        assert second["reference"] == first["reference"]
        assert len(fne_server.invoices) == 2

    @pytest.mark.asyncio
    async def test_second_credit_note_under_new_key_rejected_locally(
        self, client, fne_server, sample_invoice
    ):
        submitted = await client.submit_invoice(sample_invoice, "key-1")
        reference = submitted["reference"]
        await client.credit_note(reference, credit_payload(sample_invoice), "credit-1")
        request_count = len(fne_server.requests)

        with pytest.raises(ValidationError) as exc_info:
            await client.credit_note(reference, credit_payload(sample_invoice), "credit-2")

        assert exc_info.value.issues == [
            {"field": "status", "issue": "cannot move from CREDITED to CREDITED"}
        ]
        assert len(fne_server.requests) == request_count

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["CANCELLED", "REJECTED", "CREDITED", "ACCEPTED"])
    async def test_credit_note_needs_signed_invoice(
        self, client, fne_server, sample_invoice, status
    ):
        client.remember_status("FNE-000030", status)

        with pytest.raises(ValidationError) as exc_info:
            await client.credit_note("FNE-000030", credit_payload(sample_invoice), "credit-1")

        assert exc_info.value.fields == ["status"]
        assert fne_server.requests == []

    @pytest.mark.asyncio
    async def test_credit_note_payload_is_validated(self, client, fne_server, sample_invoice):
        client.remember_status("FNE-000001", "SIGNED")
        payload = credit_payload(sample_invoice)
        payload["lines"][0]["quantity"] = 0

        with pytest.raises(ValidationError) as exc_info:
            await client.credit_note("FNE-000001", payload, "credit-1")

        assert "lines[0].quantity" in exc_info.value.fields
        assert fne_server.requests == []


class TestClientBehaviour:
    @pytest.mark.asyncio
    async def test_independent_submissions_run_concurrently(
        self, client, fne_server, sample_invoice
    ):
        invoices = []
        for number in range(3):
            invoice = copy.deepcopy(sample_invoice)
            invoice["invoiceNumber"] = f"INV-2026-01{number:02d}"
            invoices.append(invoice)

        results = await asyncio.gather(
            *(
                client.submit_invoice(invoice, f"key-{index}")
                for index, invoice in enumerate(invoices)
            )
        )

        assert len({result["reference"] for result in results}) == 3
        assert len(fne_server.invoices) == 3
        for result in results:
            assert client.known_status(result["reference"]) == InvoiceStatus.SIGNED

    @pytest.mark.asyncio
    async def test_per_call_timeout_reaches_httpx(self, client, fne_server):
        fne_server.seed_invoice("FNE-000001", "SIGNED")
        spy = AsyncMock(wraps=client._http.request)

        with patch.object(client._http, "request", spy):
            await client.get_invoice("FNE-000001", timeout=2.0)
            await client.get_invoice("FNE-000001")

        assert [call.kwargs["timeout"] for call in spy.call_args_list] == [2.0, 5.0]

    @pytest.mark.asyncio
    async def test_caches_are_bounded(self, fne_server, session):
        async with FneClient(BASE_URL, session, cache_size=2) as small:
            for reference in ("FNE-1", "FNE-2", "FNE-3"):
                small.remember_status(reference, "SIGNED")

            assert small.known_status("FNE-1") is None
            assert small.known_status("FNE-3") == InvoiceStatus.SIGNED
