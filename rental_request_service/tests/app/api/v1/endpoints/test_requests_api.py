import pytest
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from rental_request_service.app.main import app
from rental_request_service.app.dependencies.lifecycle import get_lifecycle_engine
from rental_request_service.app.models import RequestDB, PaymentHandle, PaymentStatus, GeneratedDocument, InitialPayment
from rental_request_service.app.service.commands.handlers import RequestLifecycleEngine
from rental_request_service.app.service.exceptions import (
    ValidationError, PermissionDeniedError, RequestNotFoundError, DocumentNotFoundError, ConflictError,
    ConcurrencyConflictError, PreconditionFailedError, DependencyFailureError,
)

USER_HEADERS = {"X-User-Id": "visitor-1"}
STAFF_HEADERS = {"X-User-Id": "admin-1"}
SAMPLE_REQUEST_ID = "req-123"


def create_sample_request(status: str = "pending", **overrides) -> RequestDB:
    data = dict(
        id=SAMPLE_REQUEST_ID,
        title="Lease request for unit A-101",
        description="Looking for a two-room flat",
        type="lease",
        status=status,
        unit_id="unit-lease",
        requester_id="visitor-1",
    )
    data.update(overrides)
    return RequestDB(**data)

@pytest.fixture
def mock_engine():
    engine = AsyncMock(spec=RequestLifecycleEngine)
    app.dependency_overrides[get_lifecycle_engine] = lambda: engine
    yield engine
    app.dependency_overrides.pop(get_lifecycle_engine, None)

@pytest.fixture
def client():
    return TestClient(app)

# --- Submission ---

def test_submit_request_returns_201(client, mock_engine):
    mock_engine.submit_request.return_value = create_sample_request()

    response = client.post(
        "/api/v1/requests",
        json={"type": "lease", "description": "Looking for a two-room flat", "unit_id": "unit-lease"},
        headers=USER_HEADERS,
    )

    assert response.status_code == 201
    assert response.json()["id"] == SAMPLE_REQUEST_ID
    cmd = mock_engine.submit_request.call_args[0][0]
    assert cmd.requester_id == "visitor-1"
    assert cmd.type == "lease"
    assert cmd.unit_id == "unit-lease"

def test_submit_request_without_identity_is_401(client, mock_engine):
    response = client.post("/api/v1/requests", json={"type": "lease", "description": "flat"})

    assert response.status_code == 401
    mock_engine.submit_request.assert_not_called()

def test_submit_request_with_unknown_type_is_422(client, mock_engine):
    response = client.post("/api/v1/requests", json={"type": "barter", "description": "flat"}, headers=USER_HEADERS)
    assert response.status_code == 422

def test_submit_for_unavailable_unit_is_400(client, mock_engine):
    mock_engine.submit_request.side_effect = ValidationError("Unit 'unit-lease' is not available for lease.")

    response = client.post("/api/v1/requests", json={"type": "lease", "description": "flat", "unit_id": "unit-lease"}, headers=USER_HEADERS)

    assert response.status_code == 400
    assert "not available" in response.json()["detail"]

# --- Error mapping ---

@pytest.mark.parametrize("error, status_code", [
    (ValidationError("Unit 'unit-lease' is not available."), 400),
    (PermissionDeniedError("visitor-1", "accept request"), 403),
    (RequestNotFoundError(SAMPLE_REQUEST_ID), 404),
    (ConflictError(SAMPLE_REQUEST_ID, "rejected", "accept"), 409),
    (ConcurrencyConflictError(SAMPLE_REQUEST_ID, 2, 3), 409),
    (DependencyFailureError("Document generation service unreachable."), 502),
    (RuntimeError("db is down"), 500),
])
def test_accept_request_error_mapping(client, mock_engine, error, status_code):
    mock_engine.accept_request.side_effect = error

    response = client.put(f"/api/v1/requests/{SAMPLE_REQUEST_ID}/accept", headers=STAFF_HEADERS)

    assert response.status_code == status_code

def test_accept_request_success(client, mock_engine):
    accepted = create_sample_request(
        "accepted",
        generated_documents=[GeneratedDocument(doc_type="lease", filename="lease.pdf", storage_locator="s3://a/lease.pdf")],
        initial_payment=InitialPayment(amount=1200.0),
    )
    mock_engine.accept_request.return_value = accepted

    response = client.put(f"/api/v1/requests/{SAMPLE_REQUEST_ID}/accept", headers=STAFF_HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "accepted"
    assert body["initial_payment"]["amount"] == 1200.0
    assert mock_engine.accept_request.call_args[0][0].staff_id == "admin-1"

# --- Reject / cancel ---

def test_reject_request_passes_reason(client, mock_engine):
    mock_engine.reject_request.return_value = create_sample_request("rejected", rejection_reason="Incomplete file")

    response = client.put(f"/api/v1/requests/{SAMPLE_REQUEST_ID}/reject", json={"reason": "Incomplete file"}, headers=STAFF_HEADERS)

    assert response.status_code == 200
    assert mock_engine.reject_request.call_args[0][0].reason == "Incomplete file"

def test_reject_request_with_empty_reason_is_400(client, mock_engine):
    mock_engine.reject_request.side_effect = ValidationError("'reason' is required and cannot be empty.")

    response = client.put(f"/api/v1/requests/{SAMPLE_REQUEST_ID}/reject", json={"reason": " "}, headers=STAFF_HEADERS)

    assert response.status_code == 400

def test_cancel_request_without_body(client, mock_engine):
    mock_engine.cancel_request.return_value = create_sample_request("cancelled")

    response = client.put(f"/api/v1/requests/{SAMPLE_REQUEST_ID}/cancel", headers=USER_HEADERS)

    assert response.status_code == 200
    cmd = mock_engine.cancel_request.call_args[0][0]
    assert cmd.user_id == "visitor-1"
    assert cmd.reason is None

# --- Signatures ---

def test_sign_document(client, mock_engine):
    mock_engine.sign_document.return_value = create_sample_request("accepted")

    response = client.put(f"/api/v1/requests/{SAMPLE_REQUEST_ID}/documents/doc-1/sign", headers=USER_HEADERS)

    assert response.status_code == 200
    cmd = mock_engine.sign_document.call_args[0][0]
    assert (cmd.document_id, cmd.signer_id) == ("doc-1", "visitor-1")

def test_sign_unknown_document_is_404(client, mock_engine):
    mock_engine.sign_document.side_effect = DocumentNotFoundError(SAMPLE_REQUEST_ID, "doc-x")

    response = client.put(f"/api/v1/requests/{SAMPLE_REQUEST_ID}/documents/doc-x/sign", headers=USER_HEADERS)

    assert response.status_code == 404

def test_unsign_document_by_non_staff_is_403(client, mock_engine):
    mock_engine.unsign_document.side_effect = PermissionDeniedError("visitor-1", "withdraw a signature")

    response = client.put(f"/api/v1/requests/{SAMPLE_REQUEST_ID}/documents/doc-1/unsign", headers=USER_HEADERS)

    assert response.status_code == 403

# --- Payment ---

def test_initiate_payment_returns_handle(client, mock_engine):
    mock_engine.initiate_initial_payment.return_value = PaymentHandle(
        payment_id="pay-1", request_id=SAMPLE_REQUEST_ID, amount=1200.0, status="pending", payer_id="visitor-1", recipient_id="owner-1",
    )

    response = client.post(f"/api/v1/requests/{SAMPLE_REQUEST_ID}/payment/initiate", headers=USER_HEADERS)

    assert response.status_code == 200
    assert response.json()["payment_id"] == "pay-1"

def test_validate_payment_with_body(client, mock_engine):
    mock_engine.validate_initial_payment.return_value = create_sample_request("accepted")

    response = client.put(
        f"/api/v1/requests/{SAMPLE_REQUEST_ID}/payment/validate",
        json={"method": "transfer", "transaction_id": "txn-42"},
        headers=STAFF_HEADERS,
    )

    assert response.status_code == 200
    cmd = mock_engine.validate_initial_payment.call_args[0][0]
    assert (cmd.method, cmd.transaction_id, cmd.staff_id) == ("transfer", "txn-42", "admin-1")

def test_validate_payment_without_body(client, mock_engine):
    mock_engine.validate_initial_payment.return_value = create_sample_request("accepted")

    response = client.put(f"/api/v1/requests/{SAMPLE_REQUEST_ID}/payment/validate", headers=STAFF_HEADERS)

    assert response.status_code == 200
    assert mock_engine.validate_initial_payment.call_args[0][0].transaction_id is None

def test_payment_status(client, mock_engine):
    mock_engine.get_payment_status.return_value = PaymentStatus(
        request_id=SAMPLE_REQUEST_ID, status="paid", amount=1200.0, request_status="accepted", request_type="lease",
    )

    response = client.get(f"/api/v1/requests/{SAMPLE_REQUEST_ID}/payment-status", headers=USER_HEADERS)

    assert response.status_code == 200
    assert response.json()["status"] == "paid"
    mock_engine.get_payment_status.assert_awaited_once_with(SAMPLE_REQUEST_ID, "visitor-1")

# --- Unit assignment ---

def test_assign_unit_before_gates_is_412(client, mock_engine):
    mock_engine.assign_unit.side_effect = PreconditionFailedError(SAMPLE_REQUEST_ID, ["initial payment not confirmed"])

    response = client.put(f"/api/v1/requests/{SAMPLE_REQUEST_ID}/assign-unit", headers=STAFF_HEADERS)

    assert response.status_code == 412
    assert "initial payment not confirmed" in response.json()["detail"]

def test_assign_unit_success(client, mock_engine):
    mock_engine.assign_unit.return_value = create_sample_request("completed")

    response = client.put(f"/api/v1/requests/{SAMPLE_REQUEST_ID}/assign-unit", headers=STAFF_HEADERS)

    assert response.status_code == 200
    assert response.json()["status"] == "completed"

# --- Staff workflow and queries ---

def test_assign_and_note(client, mock_engine):
    mock_engine.assign_request.return_value = create_sample_request("in_progress", assigned_to="admin-2")
    mock_engine.add_admin_note.return_value = create_sample_request("in_progress")

    assigned = client.put(f"/api/v1/requests/{SAMPLE_REQUEST_ID}/assign", json={"assignee_id": "admin-2"}, headers=STAFF_HEADERS)
    noted = client.put(f"/api/v1/requests/{SAMPLE_REQUEST_ID}/notes", json={"note": "Called the applicant"}, headers=STAFF_HEADERS)

    assert assigned.status_code == 200
    assert assigned.json()["assigned_to"] == "admin-2"
    assert noted.status_code == 200
    assert mock_engine.add_admin_note.call_args[0][0].note == "Called the applicant"

def test_get_and_list_requests(client, mock_engine):
    mock_engine.get_request.return_value = create_sample_request()
    mock_engine.list_requests.return_value = [create_sample_request()]

    single = client.get(f"/api/v1/requests/{SAMPLE_REQUEST_ID}", headers=USER_HEADERS)
    listing = client.get("/api/v1/requests?status=pending&limit=10", headers=USER_HEADERS)

    assert single.status_code == 200
    assert listing.status_code == 200
    assert len(listing.json()) == 1
    mock_engine.list_requests.assert_awaited_once_with(
        "visitor-1", status="pending", request_type=None, unit_id=None, limit=10, skip=0,
    )

@pytest.mark.parametrize("engine_method, http_method, path, body", [
    ("list_requests", "GET", "/api/v1/requests", None),
    ("get_request", "GET", f"/api/v1/requests/{SAMPLE_REQUEST_ID}", None),
    ("reject_request", "PUT", f"/api/v1/requests/{SAMPLE_REQUEST_ID}/reject", {"reason": "Incomplete file"}),
    ("cancel_request", "PUT", f"/api/v1/requests/{SAMPLE_REQUEST_ID}/cancel", None),
    ("assign_request", "PUT", f"/api/v1/requests/{SAMPLE_REQUEST_ID}/assign", {"assignee_id": "admin-2"}),
    ("add_admin_note", "PUT", f"/api/v1/requests/{SAMPLE_REQUEST_ID}/notes", {"note": "Called the applicant"}),
    ("sign_document", "PUT", f"/api/v1/requests/{SAMPLE_REQUEST_ID}/documents/doc-1/sign", None),
    ("unsign_document", "PUT", f"/api/v1/requests/{SAMPLE_REQUEST_ID}/documents/doc-1/unsign", None),
    ("get_payment_status", "GET", f"/api/v1/requests/{SAMPLE_REQUEST_ID}/payment-status", None),
])
def test_unexpected_engine_error_is_500_on_every_route(client, mock_engine, engine_method, http_method, path, body):
    getattr(mock_engine, engine_method).side_effect = RuntimeError("db is down")

    response = client.request(http_method, path, json=body, headers=STAFF_HEADERS)

    assert response.status_code == 500
    assert response.json()["detail"].startswith("Failed while")
