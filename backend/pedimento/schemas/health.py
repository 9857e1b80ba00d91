from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    transcription: str
    compliance_policy: str
    timestamp: datetime
    environment: str
    version: str
