from datetime import datetime

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str
    version: str
    environment: str
    user_data_store: str
    integrations: dict[str, bool] = Field(default_factory=dict)
    timestamp: datetime
