# Unit tests for the document generation client
import pytest
from unittest.mock import AsyncMock, MagicMock
import httpx

from rental_request_service.app import config as app_config
from rental_request_service.app.models import RequestDB, UnitDB, BuildingDB, UserDB, DocumentType, InitialPayment
from rental_request_service.app.service.exceptions import DependencyFailureError
from rental_request_service.infrastructure.document_service_client import HttpDocumentGenerationClient

REQUEST = RequestDB(
    title="Lease request for unit A-101", description="Flat", type="lease", status="accepted",
    unit_id="unit-1", requester_id="user-1", initial_payment=InitialPayment(amount=1200.0),
)
UNIT = UnitDB(id="unit-1", unit_number="A-101", owner_id="owner-1", rent_price=1200.0)
BUILDING = BuildingDB(id="building-1", name="Les Tilleuls")
REQUESTER = UserDB(id="user-1", first_name="Chloe", last_name="Petit")
OWNER = UserDB(id="owner-1", first_name="Emma", last_name="Bernard", role="owner")

@pytest.fixture(autouse=True)
def manage_document_service_url():
    original_url = app_config.settings.DOCUMENT_SERVICE_URL
    app_config.settings.DOCUMENT_SERVICE_URL = "http://fake-documents.com/api/v1"
    yield
    app_config.settings.DOCUMENT_SERVICE_URL = original_url

def _client_returning(response=None, side_effect=None) -> AsyncMock:
    http_client = AsyncMock(spec=httpx.AsyncClient)
    http_client.post = AsyncMock(return_value=response, side_effect=side_effect)
    return http_client

def _response(payload) -> MagicMock:
    response = MagicMock(spec=httpx.Response)
    response.status_code = 200
    response.json.return_value = payload
    return response

async def _generate(http_client):
    client = HttpDocumentGenerationClient(http_client)
    return await client.generate_agreement(REQUEST, UNIT, BUILDING, REQUESTER, OWNER, DocumentType.LEASE)

@pytest.mark.asyncio
async def test_generate_agreement_success():
    http_client = _client_returning(_response({"filename": "lease.pdf", "storage_locator": "s3://agreements/lease.pdf", "kind": "lease"}))

    agreement = await _generate(http_client)

    assert agreement.filename == "lease.pdf"
    assert agreement.kind == DocumentType.LEASE
    args, kwargs = http_client.post.call_args
    assert args[0] == "http://fake-documents.com/api/v1/agreements"
    assert kwargs["json"]["kind"] == "lease"
    assert kwargs["json"]["initial_payment"] == 1200.0
    assert kwargs["json"]["owner"]["full_name"] == "Emma Bernard"

@pytest.mark.asyncio
async def test_generate_agreement_without_url_fails():
    app_config.settings.DOCUMENT_SERVICE_URL = None
    http_client = _client_returning()

    with pytest.raises(DependencyFailureError):
        await _generate(http_client)
    http_client.post.assert_not_called()

@pytest.mark.asyncio
async def test_generate_agreement_http_error():
    response = _response({})
    response.status_code = 503
    response.text = "unavailable"
    response.raise_for_status.side_effect = httpx.HTTPStatusError("503", request=MagicMock(), response=response)

    with pytest.raises(DependencyFailureError, match="HTTP 503"):
        await _generate(_client_returning(response))

@pytest.mark.asyncio
async def test_generate_agreement_unreachable():
    with pytest.raises(DependencyFailureError, match="unreachable"):
        await _generate(_client_returning(side_effect=httpx.ConnectError("connection refused")))

@pytest.mark.asyncio
async def test_generate_agreement_malformed_response():
    with pytest.raises(DependencyFailureError, match="invalid response"):
        await _generate(_client_returning(_response({"filename": "lease.pdf"})))
