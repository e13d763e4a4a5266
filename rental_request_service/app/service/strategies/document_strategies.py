from abc import ABC, abstractmethod
from typing import List

from rental_request_service.app.models import DocumentType, RequestType


class AgreementDocumentStrategy(ABC):
    @abstractmethod
    def required_agreements(self) -> List[DocumentType]:
        """
        Agreement documents to generate on acceptance. Each one needs
        signatures before the unit can be assigned.
        """
        pass


class LeaseAgreementStrategy(AgreementDocumentStrategy):
    def required_agreements(self) -> List[DocumentType]:
        return [DocumentType.LEASE]


class SaleAgreementStrategy(AgreementDocumentStrategy):
    def required_agreements(self) -> List[DocumentType]:
        return [DocumentType.SALE_CONTRACT]


class NoAgreementStrategy(AgreementDocumentStrategy):
    def required_agreements(self) -> List[DocumentType]:
        return []


def get_document_strategy(request_type: str) -> AgreementDocumentStrategy:
    if request_type == RequestType.LEASE.value:
        return LeaseAgreementStrategy()
    if request_type == RequestType.PURCHASE.value:
        return SaleAgreementStrategy()
    return NoAgreementStrategy()
