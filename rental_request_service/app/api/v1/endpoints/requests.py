# API Router for Rental/Purchase Requests
import logging
from fastapi import APIRouter, Depends, HTTPException, Body, Query
from typing import List, Optional
from pydantic import BaseModel

from rental_request_service.app.dependencies.lifecycle import get_current_user_id, get_lifecycle_engine
from rental_request_service.app.models import RequestDB, RequestType, RequestPriority, PaymentHandle, PaymentStatus
from rental_request_service.app.service.commands import models as command_models
from rental_request_service.app.service.commands.handlers import RequestLifecycleEngine
from rental_request_service.app.service.exceptions import BaseRequestLifecycleError
from .errors import to_http_exception

logger = logging.getLogger(__name__)
router = APIRouter()

# --- API request bodies ---
class SubmitRequestBody(BaseModel):
    type: RequestType
    description: str
    title: Optional[str] = None
    unit_id: Optional[str] = None
    building_id: Optional[str] = None
    priority: RequestPriority = RequestPriority.MEDIUM

class RejectRequestBody(BaseModel):
    reason: str

class CancelRequestBody(BaseModel):
    reason: Optional[str] = None

class AssignRequestBody(BaseModel):
    assignee_id: str

class AdminNoteBody(BaseModel):
    note: str

class ValidatePaymentBody(BaseModel):
    method: Optional[str] = None
    transaction_id: Optional[str] = None


def _unexpected(e: Exception, action: str) -> HTTPException:
    logger.error(f"Unexpected error while {action}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Failed while {action}.")


# --- API Endpoints ---

@router.post("/requests", response_model=RequestDB, status_code=201, summary="Submit a new request.")
async def submit_request_api(
    body: SubmitRequestBody = Body(...),
    user_id: str = Depends(get_current_user_id),
    engine: RequestLifecycleEngine = Depends(get_lifecycle_engine),
):
    try:
        cmd = command_models.SubmitRequestCommand(requester_id=user_id, **body.model_dump())
        return await engine.submit_request(cmd)
    except BaseRequestLifecycleError as e:
        raise to_http_exception(e, "submitting request")
    except Exception as e:
        raise _unexpected(e, "submitting request")

@router.get("/requests", response_model=List[RequestDB], summary="List requests visible to the caller.")
async def list_requests_api(
    status: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    unit_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    engine: RequestLifecycleEngine = Depends(get_lifecycle_engine),
):
    try:
        return await engine.list_requests(user_id, status=status, request_type=type, unit_id=unit_id, limit=limit, skip=skip)
    except BaseRequestLifecycleError as e:
        raise to_http_exception(e, "listing requests")
    except Exception as e:
        raise _unexpected(e, "listing requests")

@router.get("/requests/{request_id}", response_model=RequestDB, summary="Get a request by ID.")
async def get_request_api(
    request_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: RequestLifecycleEngine = Depends(get_lifecycle_engine),
):
    try:
        return await engine.get_request(request_id, user_id)
    except BaseRequestLifecycleError as e:
        raise to_http_exception(e, f"reading request {request_id}")
    except Exception as e:
        raise _unexpected(e, f"reading request {request_id}")

@router.put("/requests/{request_id}/accept", response_model=RequestDB, summary="Accept a request and generate its agreements.")
async def accept_request_api(
    request_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: RequestLifecycleEngine = Depends(get_lifecycle_engine),
):
    try:
        return await engine.accept_request(command_models.AcceptRequestCommand(request_id=request_id, staff_id=user_id))
    except BaseRequestLifecycleError as e:
        raise to_http_exception(e, f"accepting request {request_id}")
    except Exception as e:
        raise _unexpected(e, f"accepting request {request_id}")

@router.put("/requests/{request_id}/reject", response_model=RequestDB, summary="Reject a request with a reason.")
async def reject_request_api(
    request_id: str,
    body: RejectRequestBody = Body(...),
    user_id: str = Depends(get_current_user_id),
    engine: RequestLifecycleEngine = Depends(get_lifecycle_engine),
):
    try:
        cmd = command_models.RejectRequestCommand(request_id=request_id, staff_id=user_id, reason=body.reason)
        return await engine.reject_request(cmd)
    except BaseRequestLifecycleError as e:
        raise to_http_exception(e, f"rejecting request {request_id}")
    except Exception as e:
        raise _unexpected(e, f"rejecting request {request_id}")

@router.put("/requests/{request_id}/cancel", response_model=RequestDB, summary="Withdraw a request.")
async def cancel_request_api(
    request_id: str,
    body: Optional[CancelRequestBody] = Body(None),
    user_id: str = Depends(get_current_user_id),
    engine: RequestLifecycleEngine = Depends(get_lifecycle_engine),
):
    try:
        cmd = command_models.CancelRequestCommand(request_id=request_id, user_id=user_id, reason=body.reason if body else None)
        return await engine.cancel_request(cmd)
    except BaseRequestLifecycleError as e:
        raise to_http_exception(e, f"cancelling request {request_id}")
    except Exception as e:
        raise _unexpected(e, f"cancelling request {request_id}")

@router.put("/requests/{request_id}/assign", response_model=RequestDB, summary="Assign a request to a staff member.")
async def assign_request_api(
    request_id: str,
    body: AssignRequestBody = Body(...),
    user_id: str = Depends(get_current_user_id),
    engine: RequestLifecycleEngine = Depends(get_lifecycle_engine),
):
    try:
        cmd = command_models.AssignRequestCommand(request_id=request_id, staff_id=user_id, assignee_id=body.assignee_id)
        return await engine.assign_request(cmd)
    except BaseRequestLifecycleError as e:
        raise to_http_exception(e, f"assigning request {request_id}")
    except Exception as e:
        raise _unexpected(e, f"assigning request {request_id}")

@router.put("/requests/{request_id}/notes", response_model=RequestDB, summary="Add an internal admin note.")
async def add_admin_note_api(
    request_id: str,
    body: AdminNoteBody = Body(...),
    user_id: str = Depends(get_current_user_id),
    engine: RequestLifecycleEngine = Depends(get_lifecycle_engine),
):
    try:
        cmd = command_models.AddAdminNoteCommand(request_id=request_id, staff_id=user_id, note=body.note)
        return await engine.add_admin_note(cmd)
    except BaseRequestLifecycleError as e:
        raise to_http_exception(e, f"adding a note to request {request_id}")
    except Exception as e:
        raise _unexpected(e, f"adding a note to request {request_id}")

@router.put("/requests/{request_id}/documents/{document_id}/sign", response_model=RequestDB, summary="Sign an agreement document.")
async def sign_document_api(
    request_id: str,
    document_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: RequestLifecycleEngine = Depends(get_lifecycle_engine),
):
    try:
        cmd = command_models.SignDocumentCommand(request_id=request_id, document_id=document_id, signer_id=user_id)
        return await engine.sign_document(cmd)
    except BaseRequestLifecycleError as e:
        raise to_http_exception(e, f"signing document {document_id}")
    except Exception as e:
        raise _unexpected(e, f"signing document {document_id}")

@router.put("/requests/{request_id}/documents/{document_id}/unsign", response_model=RequestDB, summary="Withdraw a signature (staff only).")
async def unsign_document_api(
    request_id: str,
    document_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: RequestLifecycleEngine = Depends(get_lifecycle_engine),
):
    try:
        cmd = command_models.UnsignDocumentCommand(request_id=request_id, document_id=document_id, staff_id=user_id)
        return await engine.unsign_document(cmd)
    except BaseRequestLifecycleError as e:
        raise to_http_exception(e, f"unsigning document {document_id}")
    except Exception as e:
        raise _unexpected(e, f"unsigning document {document_id}")

@router.post("/requests/{request_id}/payment/initiate", response_model=PaymentHandle, summary="Open the initial payment.")
async def initiate_initial_payment_api(
    request_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: RequestLifecycleEngine = Depends(get_lifecycle_engine),
):
    try:
        cmd = command_models.InitiateInitialPaymentCommand(request_id=request_id, payer_id=user_id)
        return await engine.initiate_initial_payment(cmd)
    except BaseRequestLifecycleError as e:
        raise to_http_exception(e, f"initiating payment of request {request_id}")
    except Exception as e:
        raise _unexpected(e, f"initiating payment of request {request_id}")

@router.put("/requests/{request_id}/payment/validate", response_model=RequestDB, summary="Confirm the initial payment (staff only).")
async def validate_initial_payment_api(
    request_id: str,
    body: Optional[ValidatePaymentBody] = Body(None),
    user_id: str = Depends(get_current_user_id),
    engine: RequestLifecycleEngine = Depends(get_lifecycle_engine),
):
    body = body or ValidatePaymentBody()
    try:
        cmd = command_models.ValidateInitialPaymentCommand(
            request_id=request_id, staff_id=user_id, method=body.method, transaction_id=body.transaction_id,
        )
        return await engine.validate_initial_payment(cmd)
    except BaseRequestLifecycleError as e:
        raise to_http_exception(e, f"validating payment of request {request_id}")
    except Exception as e:
        raise _unexpected(e, f"validating payment of request {request_id}")

@router.get("/requests/{request_id}/payment-status", response_model=PaymentStatus, summary="Initial payment status.")
async def get_payment_status_api(
    request_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: RequestLifecycleEngine = Depends(get_lifecycle_engine),
):
    try:
        return await engine.get_payment_status(request_id, user_id)
    except BaseRequestLifecycleError as e:
        raise to_http_exception(e, f"reading payment status of request {request_id}")
    except Exception as e:
        raise _unexpected(e, f"reading payment status of request {request_id}")

@router.put("/requests/{request_id}/assign-unit", response_model=RequestDB, summary="Hand the unit over and complete the request.")
async def assign_unit_api(
    request_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: RequestLifecycleEngine = Depends(get_lifecycle_engine),
):
    try:
        return await engine.assign_unit(command_models.AssignUnitCommand(request_id=request_id, staff_id=user_id))
    except BaseRequestLifecycleError as e:
        raise to_http_exception(e, f"assigning the unit of request {request_id}")
    except Exception as e:
        raise _unexpected(e, f"assigning the unit of request {request_id}")
