# Ids of the seeded parties and shortcuts that drive a request through its lifecycle
from rental_request_service.app.models import RequestType
from rental_request_service.app.service.commands import models as command_models

ADMIN_ID = "admin-1"
SECOND_ADMIN_ID = "admin-2"
VISITOR_ID = "visitor-1"
OTHER_VISITOR_ID = "visitor-2"
OWNER_ID = "owner-1"
STRANGER_ID = "stranger-1"
BUILDING_ID = "building-1"

LEASE_UNIT_ID = "unit-lease"          # rent 1200, owned by OWNER_ID
SALE_UNIT_ID = "unit-sale"            # sale price 250000
RENT_ONLY_UNIT_ID = "unit-rent-only"  # no sale price, rent 1200
BARE_UNIT_ID = "unit-bare"            # neither sale price nor rent


async def submit(engine, request_type=RequestType.LEASE, unit_id=LEASE_UNIT_ID, requester_id=VISITOR_ID, **kwargs):
    cmd = command_models.SubmitRequestCommand(
        requester_id=requester_id,
        type=request_type,
        unit_id=unit_id,
        description=kwargs.pop("description", "I would like to rent this apartment."),
        **kwargs,
    )
    return await engine.submit_request(cmd)


async def accept(engine, request_id, staff_id=ADMIN_ID):
    return await engine.accept_request(command_models.AcceptRequestCommand(request_id=request_id, staff_id=staff_id))


async def sign_all(engine, request, signer_id=VISITOR_ID):
    for document in request.generated_documents:
        request = await engine.sign_document(
            command_models.SignDocumentCommand(request_id=request.id, document_id=document.id, signer_id=signer_id)
        )
    return request


async def validate_payment(engine, request_id, transaction_id="txn-001", staff_id=ADMIN_ID):
    return await engine.validate_initial_payment(command_models.ValidateInitialPaymentCommand(
        request_id=request_id, staff_id=staff_id, method="bank_transfer", transaction_id=transaction_id,
    ))


