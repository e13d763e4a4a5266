import datetime

from pydantic import BaseModel, Field


class RequestStatsDB(BaseModel): # Global aggregate read model, recomputed from source
    id: str = "global"
    total: int = 0
    pending: int = 0
    in_progress: int = 0
    accepted: int = 0
    rejected: int = 0
    completed: int = 0
    cancelled: int = 0
    revenue: float = 0.0 # Sum of paid initial payments
    updated_at: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.UTC))
