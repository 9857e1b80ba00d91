import enum

from pydantic import BaseModel, Field

from pedimento.schemas.pedimento import PedimentoRecord


class ExtractionStrategy(str, enum.Enum):
    """Which extraction path produced (or should produce) the raw fragment."""

    DETERMINISTIC = "deterministic"
    STRUCTURED = "structured"
    AUTO = "auto"


class ChunkSummary(BaseModel):
    index: int
    ok: bool
    attempts: int
    error: str | None = None
    duration_ms: int = 0


class FindingCounts(BaseModel):
    ERROR: int = 0
    WARNING: int = 0
    INFO: int = 0


class ExtractionSummary(BaseModel):
    strategy: ExtractionStrategy
    fallback_used: bool = False
    page_count: int = 0
    item_count: int = 0
    findings: FindingCounts = Field(default_factory=FindingCounts)
    chunks: list[ChunkSummary] = Field(default_factory=list)
    processing_time_ms: int | None = None


class PedimentoResponse(BaseModel):
    filename: str | None = None
    record: PedimentoRecord
    summary: ExtractionSummary
