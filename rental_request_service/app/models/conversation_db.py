import datetime
import uuid
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ConversationDB(BaseModel): # Messaging thread tied to a unit
    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    unit_id: str
    building_id: Optional[str] = None
    type: str = "unit"
    participants: List[str] = Field(default_factory=list)
    unread_count: Dict[str, int] = Field(default_factory=dict)
    last_message_id: Optional[str] = None
    last_message_at: Optional[datetime.datetime] = None


class MessageDB(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    dedupe_key: str
    conversation_id: str
    unit_id: str
    request_id: Optional[str] = None
    content: str
    is_system_message: bool = True
    system_message_type: Optional[str] = None
    counted: bool = False # Set once participants' unread counts include this message
    created_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
