# Client for the external Document Generation Service
import logging
import httpx
from fastapi import Depends

from rental_request_service.app.config import settings
from rental_request_service.app.models import RequestDB, UnitDB, BuildingDB, UserDB, DocumentType
from rental_request_service.app.service.interfaces.document_generator import AbstractDocumentGenerator, GeneratedAgreement
from rental_request_service.app.service.exceptions import DependencyFailureError
from rental_request_service.app.dependencies.http_client import get_http_client

logger = logging.getLogger(__name__)


def _party_payload(user: UserDB) -> dict:
    return {"id": user.id, "full_name": user.full_name, "email": user.email}


class HttpDocumentGenerationClient(AbstractDocumentGenerator):
    def __init__(self, http_client: httpx.AsyncClient):
        self.http_client = http_client

    async def generate_agreement(
        self,
        request: RequestDB,
        unit: UnitDB,
        building: BuildingDB,
        requester: UserDB,
        owner: UserDB,
        kind: DocumentType,
    ) -> GeneratedAgreement:
        if not settings.DOCUMENT_SERVICE_URL:
            logger.error("DOCUMENT_SERVICE_URL not set. Cannot generate agreement documents.")
            raise DependencyFailureError("Document generation service is not configured.")

        kind_value = kind.value if isinstance(kind, DocumentType) else kind
        request_url = f"{settings.DOCUMENT_SERVICE_URL}/agreements"
        payload = {
            "kind": kind_value,
            "request_id": request.id,
            "request_type": request.type,
            "unit": {
                "id": unit.id,
                "unit_number": unit.unit_number,
                "rent_price": unit.rent_price,
                "sale_price": unit.sale_price,
            },
            "building": {"id": building.id, "name": building.name, "address": building.address},
            "requester": _party_payload(requester),
            "owner": _party_payload(owner),
            "initial_payment": request.initial_payment.amount if request.initial_payment else None,
        }
        logger.debug(f"Requesting {kind_value} agreement for request {request.id} from {request_url}")

        try:
            response = await self.http_client.post(request_url, json=payload, timeout=settings.DEFAULT_HTTP_TIMEOUT)
            response.raise_for_status()
            body = response.json()
            agreement = GeneratedAgreement(
                filename=body["filename"],
                storage_locator=body["storage_locator"],
                kind=body.get("kind", kind_value),
            )
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error calling document service: {e.response.status_code} - {e.response.text}", exc_info=True)
            raise DependencyFailureError(f"Document generation failed for request '{request.id}': HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Request error calling document service: {e}", exc_info=True)
            raise DependencyFailureError(f"Document generation service unreachable for request '{request.id}'.") from e
        except (KeyError, ValueError) as e:
            logger.error(f"Malformed response from document service: {e}", exc_info=True)
            raise DependencyFailureError(f"Document generation returned an invalid response for request '{request.id}'.") from e

        logger.info(f"Agreement {agreement.filename} generated for request {request.id}.")
        return agreement


# DI provider for HttpDocumentGenerationClient
def get_document_generator(
    http_client: httpx.AsyncClient = Depends(get_http_client)
) -> AbstractDocumentGenerator:
    return HttpDocumentGenerationClient(http_client=http_client)
