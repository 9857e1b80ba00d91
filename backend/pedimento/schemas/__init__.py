from pedimento.schemas.audit import AuditReport, AuditRequest, InvoiceLine
from pedimento.schemas.extraction import ExtractionStrategy, ExtractionSummary, PedimentoResponse
from pedimento.schemas.health import HealthResponse
from pedimento.schemas.pedimento import (
    Header,
    LineItem,
    Partida,
    PedimentoRecord,
    RawFragment,
    Severity,
    ValidationFinding,
)

__all__ = [
    "AuditReport",
    "AuditRequest",
    "ExtractionStrategy",
    "ExtractionSummary",
    "Header",
    "HealthResponse",
    "InvoiceLine",
    "LineItem",
    "Partida",
    "PedimentoRecord",
    "PedimentoResponse",
    "RawFragment",
    "Severity",
    "ValidationFinding",
]
