import pytest
import pytest_asyncio

from src.servers.fne.client import FneClient
from src.servers.fne.session import FneSession
from tests.fixtures.fne_mock import BASE_URL, TOKEN, MockFneServer


@pytest.fixture
def fne_server():
    """Mock FNE service, active for the duration of the test"""
    mock = MockFneServer()
    with mock.activate():
        yield mock


@pytest.fixture
def session():
    return FneSession(TOKEN, "user-1")


@pytest_asyncio.fixture
async def client(fne_server, session):
    fne_client = FneClient(BASE_URL, session, timeout=5.0)
    yield fne_client
    await fne_client.aclose()


@pytest.fixture
def sample_lines():
    return [
        {
            "description": "Consulting day",
            "quantity": 2,
            "unitPrice": 5000,
            "vatRatePercent": 18,
            "discountAmount": 0,
        },
        {
            "description": "Training kit",
            "quantity": 1,
            "unitPrice": 10000,
            "vatRatePercent": 9,
            "discountAmount": 1000,
        },
    ]


@pytest.fixture
def sample_invoice(sample_lines):
    return {
        "invoiceNumber": "INV-2026-0001",
        "issueDate": "2026-10-19T09:30:00+00:00",
        "currency": "XOF",
        "invoiceType": "STANDARD",
        "template": "B2B",
        "paymentMode": "TRANSFER",
        "seller": {
            "taxId": "CI1234567A",
            "companyName": "Oxalio SARL",
            "address": "Abidjan, Plateau",
        },
        "buyer": {
            "taxId": "CI7654321B",
            "name": "Koffi & Fils",
            "address": "Bouake",
            "email": "compta@koffi.ci",
        },
        "lines": sample_lines,
    }
