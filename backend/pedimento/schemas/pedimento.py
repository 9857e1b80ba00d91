import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class Severity(str, enum.Enum):
    """Severity of a compliance finding."""

    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"


# --- Shared Sub-Models ---


class Tax(BaseModel):
    """Contribution line (IGI, IVA, DTA, PRV...) at item or document level."""

    clave: str = Field(..., description="Contribution code, e.g. IGI, IVA, DTA")
    tasa: float | None = Field(None, description="Rate as printed (percent)")
    tipo_tasa: str | None = Field(None, description="Rate type code")
    forma_pago: str | None = Field(None, description="Payment form code, e.g. 0 cash, 21 credit")
    importe: float | None = Field(None, description="Amount; None when unknown, 0 is a valid paid amount")


class Identifier(BaseModel):
    """Identifier (clave) with up to three complements."""

    clave: str
    compl1: str | None = None
    compl2: str | None = None
    compl3: str | None = None


class Regulation(BaseModel):
    """Non-tariff regulation / permit entry."""

    clave: str
    permiso: str | None = None
    valor_comercial: float | None = None
    cantidad: float | None = None


class PedimentoDate(BaseModel):
    tipo: str = Field("Other", description="Entrada, Pago, Presentacion, Extraccion or Other")
    fecha: str


class Transport(BaseModel):
    medios: list[str] = Field(default_factory=list)
    candados: list[str] = Field(default_factory=list)
    identificacion: str | None = None
    pais: str | None = None


class Guide(BaseModel):
    numero: str
    tipo: str = "Other"


class Container(BaseModel):
    numero: str
    tipo: str | None = None


class Invoice(BaseModel):
    numero: str
    fecha: str | None = None
    incoterm: str | None = None
    moneda: str | None = None
    valor_dolares: float | None = None
    proveedor: str | None = None


class Supplier(BaseModel):
    id: str | None = None
    nombre: str | None = None
    domicilio: str | None = None


class HeaderValues(BaseModel):
    """Canonical declared values. The flattened header fields derive from these."""

    dolares: float | None = None
    aduana: float | None = None
    comercial: float | None = None
    seguros: float | None = None
    fletes: float | None = None
    embalajes: float | None = None
    otros: float | None = None


class HeaderImportes(BaseModel):
    """Global totals from the liquidation table."""

    dta: float | None = None
    iva: float | None = None
    igi: float | None = None
    prv: float | None = None
    total_efectivo: float | None = None


# --- Header ---


class Header(BaseModel):
    """Document-level data. Exactly one per record."""

    pedimento_no: str = Field("", description="15-digit pedimento number; write-once")
    rfc: str | None = Field(None, description="Importer/exporter RFC")
    curp: str | None = None
    nombre: str | None = None
    domicilio: str | None = None
    clave_documento: str | None = Field(None, description="Document key, e.g. A1, IN, V1")
    tipo_operacion: str | None = Field(None, description="IMP, EXP or TRA")
    regimen: str | None = None
    aduana: str | None = None
    patente: str | None = None

    fechas: list[PedimentoDate] = Field(default_factory=list)
    fecha_pago: str | None = None
    fecha_entrada: str | None = None

    peso_bruto: float | None = None
    bultos: float | None = None
    tipo_cambio: float | None = None

    valores: HeaderValues = Field(default_factory=HeaderValues)
    tasas_globales: list[Tax] = Field(default_factory=list)
    importes: HeaderImportes = Field(default_factory=HeaderImportes)

    transporte: Transport = Field(default_factory=Transport)
    guias: list[Guide] = Field(default_factory=list)
    contenedores: list[Container] = Field(default_factory=list)
    identificadores: list[Identifier] = Field(default_factory=list)
    facturas: list[Invoice] = Field(default_factory=list)
    proveedores: list[Supplier] = Field(default_factory=list)

    observaciones: str | None = None
    is_simplified: bool = False

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "pedimento_no" and self.pedimento_no and value != self.pedimento_no:
            raise ValueError(f"pedimento_no already set to {self.pedimento_no!r}")
        super().__setattr__(name, value)

    def assign_pedimento_no(self, value: str | None) -> bool:
        """Set the pedimento number if it is still empty. Returns True if assigned."""
        if self.pedimento_no or not value:
            return False
        self.pedimento_no = value
        return True

    @computed_field  # type: ignore[prop-decorator]
    @property
    def valor_dolares(self) -> float | None:
        return self.valores.dolares

    @computed_field  # type: ignore[prop-decorator]
    @property
    def valor_aduana(self) -> float | None:
        return self.valores.aduana

    @computed_field  # type: ignore[prop-decorator]
    @property
    def valor_comercial(self) -> float | None:
        return self.valores.comercial


# --- Line Item (Partida) ---


class LineItem(BaseModel):
    """One declared merchandise line. ``secuencia`` is unique within a record."""

    secuencia: int
    fraccion: str | None = Field(None, description="Tariff fraction, digits only")
    nico: str | None = Field(None, description="Statistical sub-classification (2 digits)")
    part_no: str | None = None
    invoice_no: str | None = None
    description: str | None = None

    qty: float | None = Field(None, description="Quantity in commercial unit (UMC)")
    umc: str | None = None
    qty_umt: float | None = Field(None, description="Quantity in tariff unit (UMT)")
    umt: str | None = None

    vinculacion: str | None = None
    metodo_valoracion: str | None = None
    pais_vendedor: str | None = None
    pais_origen: str | None = None

    unit_price: float | None = None
    valor_comercial: float | None = Field(None, description="Price paid / commercial value")
    valor_aduana: float | None = None
    valor_dolares: float | None = None
    valor_agregado: float | None = None

    identifiers: list[Identifier] = Field(default_factory=list)
    contribuciones: list[Tax] = Field(default_factory=list)
    regulaciones: list[Regulation] = Field(default_factory=list)
    observaciones: str | None = None

    page: int | None = None

    def has_identifier(self, clave: str) -> bool:
        return any(i.clave == clave for i in self.identifiers)

    def find_identifier(self, clave: str) -> Identifier | None:
        return next((i for i in self.identifiers if i.clave == clave), None)

    def find_tax(self, clave: str) -> Tax | None:
        return next((t for t in self.contribuciones if t.clave == clave), None)

    @property
    def chapter(self) -> int | None:
        """Tariff chapter (first two digits of the fraction)."""
        digits = (self.fraccion or "").replace(".", "")
        if len(digits) < 2 or not digits[:2].isdigit():
            return None
        return int(digits[:2])


Partida = LineItem


# --- Findings & Record ---


class ValidationFinding(BaseModel):
    severity: Severity
    field: str
    expected: str | float | None = None
    actual: str | float | None = None
    message: str


class PedimentoRecord(BaseModel):
    """Root aggregate produced by one pipeline run."""

    header: Header = Field(default_factory=Header)
    partidas: list[LineItem] = Field(default_factory=list)
    raw_text: str = ""
    validation_results: list[ValidationFinding] = Field(default_factory=list)

    def replace_findings(self, findings: list[ValidationFinding]) -> None:
        """Swap in a complete findings list from a full validation pass."""
        self.validation_results = list(findings)

    def all_identifiers(self) -> list[Identifier]:
        """Document-level identifiers followed by every item-level identifier."""
        found = list(self.header.identificadores)
        for item in self.partidas:
            found.extend(item.identifiers)
        return found

    def has_identifier(self, clave: str) -> bool:
        return any(i.clave == clave for i in self.all_identifiers())

    def findings_by_severity(self) -> dict[str, int]:
        counts = {s.value: 0 for s in Severity}
        for finding in self.validation_results:
            counts[finding.severity.value] += 1
        return counts


# --- Raw extraction output ---

_RAW_LIST_ALIASES = {
    "partidas": ("partidas", "items"),
    "facturas": ("facturas", "invoices"),
    "contenedores": ("contenedores", "containers"),
    "identificadores": ("identificadores", "identifiers"),
}


class RawFragment(BaseModel):
    """Loosely-typed extraction output (one chunk, or a merged document).

    Every field is optional; shapes are normalized only by the canonical mapper.
    """

    model_config = ConfigDict(extra="allow")

    header: dict[str, Any] | None = None
    partidas: list[dict[str, Any]] = Field(default_factory=list)
    facturas: list[dict[str, Any]] = Field(default_factory=list)
    contenedores: list[dict[str, Any]] = Field(default_factory=list)
    identificadores: list[dict[str, Any]] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize_lists(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not isinstance(data.get("header"), dict):
            data["header"] = None
        for canonical, aliases in _RAW_LIST_ALIASES.items():
            merged: list[dict[str, Any]] = []
            for key in aliases:
                value = data.pop(key, None)
                if isinstance(value, list):
                    merged.extend(v for v in value if isinstance(v, dict))
            data[canonical] = merged
        return data

    @property
    def has_header(self) -> bool:
        return bool(self.header) and any(v not in (None, "", [], {}) for v in self.header.values())
