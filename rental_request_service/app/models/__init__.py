from .request_db import (
    RequestDB,
    RequestType,
    RequestStatus,
    RequestPriority,
    DocumentType,
    InitialPaymentStatus,
    StatusHistoryEntry,
    GeneratedDocument,
    InitialPayment,
    AdminNote,
    AGREEMENT_REQUEST_TYPES,
    TERMINAL_STATUSES,
)
from .party_db import UserDB, UserRole, UnitDB, UnitStatus, UnitRequestStats, BuildingDB
from .payment_db import PaymentDB, PaymentHandle, PaymentStatus
from .notification_db import NotificationDB
from .conversation_db import ConversationDB, MessageDB
from .stats_db import RequestStatsDB

__all__ = [
    "RequestDB",
    "RequestType",
    "RequestStatus",
    "RequestPriority",
    "DocumentType",
    "InitialPaymentStatus",
    "StatusHistoryEntry",
    "GeneratedDocument",
    "InitialPayment",
    "AdminNote",
    "AGREEMENT_REQUEST_TYPES",
    "TERMINAL_STATUSES",
    "UserDB",
    "UserRole",
    "UnitDB",
    "UnitStatus",
    "UnitRequestStats",
    "BuildingDB",
    "PaymentDB",
    "PaymentHandle",
    "PaymentStatus",
    "NotificationDB",
    "ConversationDB",
    "MessageDB",
    "RequestStatsDB",
]
