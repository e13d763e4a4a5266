from abc import ABC, abstractmethod

from pydantic import BaseModel

from rental_request_service.app.models import RequestDB, UnitDB, BuildingDB, UserDB, DocumentType


class GeneratedAgreement(BaseModel):
    filename: str
    storage_locator: str
    kind: DocumentType


class AbstractDocumentGenerator(ABC):
    @abstractmethod
    async def generate_agreement(
        self,
        request: RequestDB,
        unit: UnitDB,
        building: BuildingDB,
        requester: UserDB,
        owner: UserDB,
        kind: DocumentType,
    ) -> GeneratedAgreement:
        """
        Produces a lease or sale agreement artifact for the request.

        Returns:
            The stored artifact's filename, storage locator and kind.

        Raises:
            DependencyFailureError: if the artifact could not be produced.
        """
        pass
