import datetime
import uuid
from typing import Optional

from pydantic import BaseModel, Field


class NotificationDB(BaseModel): # Per-user notification feed entry
    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    dedupe_key: str # One feed entry per (request, event, version, recipient)
    user_id: str
    category: str # request, contract, payment, system
    title: str
    body: str
    request_id: Optional[str] = None
    is_read: bool = False
    counted: bool = False # Set once the unread counter has been bumped for this entry
    created_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
