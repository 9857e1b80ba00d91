from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from pedimento import __version__
from pedimento.compliance.engine import ComplianceEngine
from pedimento.config import settings
from pedimento.dependencies import get_compliance_engine
from pedimento.schemas.health import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(engine: ComplianceEngine = Depends(get_compliance_engine)) -> HealthResponse:
    # Structured extraction needs an API key; without one only the deterministic path runs
    transcription = "configured" if settings.anthropic_api_key else "disabled"

    return HealthResponse(
        status="healthy",
        transcription=transcription,
        compliance_policy=engine.policy.version,
        timestamp=datetime.now(timezone.utc),
        environment=settings.environment,
        version=__version__,
    )
