"""
Versioned compliance policy data.

Every jurisdiction-specific list or threshold the rules consult lives
here, so a regulation change is a new policy file, not a code change.
DEFAULT_POLICY reflects the rules as currently applied; an override is a
JSON document with the same shape (unspecified keys keep their defaults).
"""

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger("pedimento.compliance.policy")


class ChapterRange(BaseModel):
    """Inclusive tariff chapter range."""

    first: int
    last: int

    def contains(self, chapter: int | None) -> bool:
        return chapter is not None and self.first <= chapter <= self.last


class CompliancePolicy(BaseModel):
    version: str = "2024.1"
    description: str = "Anexo 22 / RGCE checks as applied by the back office"

    # Reconciliation
    commercial_value_tolerance: float = 5.0
    tax_total_tolerance: float = 5.0

    # Structural
    simplified_form_item_severity: str = Field("INFO", description="Severity for zero items on a simplified form")

    # IVA credit (Anexo 31)
    iva_credit_payment_forms: list[str] = ["21"]
    iva_certification_identifiers: list[str] = ["CI"]

    # IMMEX
    immex_document_keys: list[str] = ["IN"]
    immex_identifiers: list[str] = ["IM"]

    # Treaties
    treaty_identifier: str = "TL"
    treaty_countries: list[str] = [
        "USA", "CAN", "JPN", "DEU", "FRA", "ITA", "ESP", "GBR", "CHL", "COL",
        "PER", "ISR", "CHE", "NOR", "ISL", "LIE", "URY", "PAN", "CRI",
    ]

    # Regla 8a
    permit_required_identifiers: list[str] = ["98"]

    # Sensitive sectors
    sensitive_chapters: list[ChapterRange] = [
        ChapterRange(first=72, last=73),
        ChapterRange(first=50, last=63),
    ]
    sensitive_exempting_identifiers: list[str] = ["PC", "NS"]

    # NOM
    mutually_exclusive_identifiers: list[tuple[str, str]] = [("EN", "PA")]
    non_commercial_pattern: str = r"NO\s*COMERCIALI|USO\s*PROPIO|9\s*BIS"
    non_commercial_identifiers: list[str] = ["EN", "XP"]

    # Regimes
    fixed_asset_key: str = "AF"
    consumable_chapters: ChapterRange = ChapterRange(first=1, last=24)
    regularization_key: str = "A3"
    bonded_warehouse_key: str = "A4"
    rfe_keys: list[str] = ["M3", "M4", "J3", "J4"]
    warehouse_extraction_key: str = "G1"
    transit_keys: list[str] = ["T3", "T6", "T7", "T9"]

    # DTA (Ley Federal de Derechos art. 49)
    dta_rate: float = 0.008
    dta_fixed_threshold: float = 1000.0
    dta_full_tolerance: float = 100.0
    dta_definitive_key: str = "A1"
    dta_reduction_identifier: str = "T1"

    # IVA rate plausibility
    iva_standard_rate: float = 0.16
    iva_alternate_rate: float = 0.08
    iva_standard_tolerance_pct: float = 0.10
    iva_alternate_tolerance_pct: float = 0.05

    # Item IGI plausibility
    igi_tolerance_pct: float = 0.10

    # Tariff format
    fraccion_digits: int = 8
    nico_digits: int = 2


DEFAULT_POLICY = CompliancePolicy()


def load_policy(path: str | Path | None) -> CompliancePolicy:
    """Load a policy override file, or the default policy when path is empty.

    Raises:
        FileNotFoundError: The override file does not exist.
        ValueError: The file is not valid JSON or does not match the policy shape.
    """
    if not path:
        return DEFAULT_POLICY

    policy_path = Path(path)
    if not policy_path.exists():
        raise FileNotFoundError(f"Compliance policy not found: {path}")

    try:
        data = json.loads(policy_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Compliance policy {path} is not valid JSON: {e}") from e

    policy = CompliancePolicy.model_validate(data)
    logger.info("Loaded compliance policy %s from %s", policy.version, policy_path)
    return policy
