import enum

from pydantic import BaseModel, Field

from pedimento.schemas.pedimento import PedimentoRecord


class DiscrepancyType(str, enum.Enum):
    MISSING_IN_INVOICE = "MISSING_IN_INVOICE"
    PART_NUMBER = "PART_NUMBER"
    QUANTITY = "QUANTITY"
    VALUE_USD = "VALUE_USD"


class DiscrepancySeverity(str, enum.Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class InvoiceLine(BaseModel):
    """One commercial-invoice line to audit a pedimento against."""

    invoice_no: str
    part_no: str = ""
    description: str | None = None
    qty: float = 0.0
    total_amount: float = Field(0.0, description="Line total in USD")


class AuditDiscrepancy(BaseModel):
    type: DiscrepancyType
    severity: DiscrepancySeverity
    item_secuencia: int
    invoice_no: str
    part_no: str
    description: str
    pedimento_value: str | float | None = None
    invoice_value: str | float | None = None
    difference: float = 0.0


class AuditTotals(BaseModel):
    pedimento_total: float = 0.0
    invoice_total: float = 0.0
    difference: float = 0.0


class AuditReport(BaseModel):
    pedimento_no: str = ""
    total_discrepancies: int = 0
    totals: AuditTotals = Field(default_factory=AuditTotals)
    discrepancies: list[AuditDiscrepancy] = Field(default_factory=list)


class AuditRequest(BaseModel):
    record: PedimentoRecord
    invoice_lines: list[InvoiceLine]
    value_tolerance: float = Field(1.0, ge=0)
