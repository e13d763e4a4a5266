import datetime
import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UserRole(str, Enum):
    VISITOR = "visitor"
    TENANT = "tenant"
    OWNER = "owner"
    ADMIN = "admin"


class UnitStatus(str, Enum):
    AVAILABLE = "available"
    RENTED = "rented"
    SOLD = "sold"


class UserDB(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    first_name: str
    last_name: str
    email: Optional[str] = None
    role: UserRole = UserRole.VISITOR
    is_active: bool = True
    monthly_income: Optional[float] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_staff(self) -> bool:
        return self.role == UserRole.ADMIN.value


class UnitRequestStats(BaseModel):
    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    urgent: int = 0
    last_request_at: Optional[datetime.datetime] = None


class UnitDB(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    unit_number: str
    building_id: Optional[str] = None
    owner_id: Optional[str] = None
    tenant_id: Optional[str] = None
    status: UnitStatus = UnitStatus.AVAILABLE
    rent_price: Optional[float] = None # Monthly rent
    sale_price: Optional[float] = None
    request_stats: UnitRequestStats = Field(default_factory=UnitRequestStats)
    updated_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))


class BuildingDB(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    name: str
    address: Optional[str] = None
    admin_id: Optional[str] = None
