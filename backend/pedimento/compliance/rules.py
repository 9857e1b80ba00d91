"""Pure compliance rules. No I/O, no Claude dependency, easy to unit test.

Every rule takes the canonical record and the active policy and returns
zero or more findings. Rules never read each other's output, so the order
they run in does not change the finding set.
"""

import re
from collections.abc import Callable

from pedimento.compliance.policy import CompliancePolicy
from pedimento.schemas.pedimento import LineItem, PedimentoRecord, Severity, ValidationFinding

Rule = Callable[[PedimentoRecord, CompliancePolicy], list[ValidationFinding]]


def _finding(
    severity: Severity,
    field: str,
    message: str,
    expected: str | float | None = None,
    actual: str | float | None = None,
) -> ValidationFinding:
    return ValidationFinding(severity=severity, field=field, expected=expected, actual=actual, message=message)


def _item_label(item: LineItem) -> str:
    if item.part_no:
        return f"Item {item.secuencia} ({item.part_no})"
    return f"Item {item.secuencia}"


def _tax_sum(record: PedimentoRecord, clave: str) -> float:
    total = 0.0
    for item in record.partidas:
        tax = item.find_tax(clave)
        if tax and tax.importe is not None:
            total += tax.importe
    return total


# ── Structural ──


def check_items_present(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    if record.partidas:
        return []
    if record.header.is_simplified:
        return [_finding(
            Severity(policy.simplified_form_item_severity),
            "Items",
            "No items extracted (simplified form does not list partidas)",
            expected=">0",
            actual=0,
        )]
    return [_finding(Severity.ERROR, "Items", "No items extracted", expected=">0", actual=0)]


def check_importer_rfc(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    if record.header.rfc:
        return []
    return [_finding(Severity.ERROR, "RFC", "Importer RFC not found", expected="Defined", actual="Missing")]


def check_pedimento_number(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    if record.header.pedimento_no:
        return []
    return [_finding(Severity.ERROR, "Pedimento", "Pedimento number not found", expected="Defined", actual="Missing")]


# ── Reconciliation ──


def check_commercial_value(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    """Header commercial value vs. the sum of item commercial values."""
    declared = record.header.valor_comercial
    if not declared:
        return []

    items_total = sum(item.valor_comercial or 0.0 for item in record.partidas)
    if abs(declared - items_total) <= policy.commercial_value_tolerance:
        return []

    return [_finding(
        Severity.WARNING,
        "Commercial Value",
        f"Sum of items ({items_total:,.2f}) does not match header ({declared:,.2f})",
        expected=declared,
        actual=round(items_total, 2),
    )]


def check_igi_total(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    declared = record.header.importes.igi
    if declared is None:
        return []
    items_total = _tax_sum(record, "IGI")
    if abs(declared - items_total) <= policy.tax_total_tolerance:
        return []
    return [_finding(
        Severity.ERROR,
        "IGI Total",
        f"Global IGI ({declared:,.2f}) does not match sum of items ({items_total:,.2f})",
        expected=declared,
        actual=round(items_total, 2),
    )]


def check_dta_total(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    # DTA is usually settled once per pedimento; only compare when items carry it
    items_total = _tax_sum(record, "DTA")
    declared = record.header.importes.dta
    if items_total <= 0 or declared is None:
        return []
    if abs(declared - items_total) <= policy.tax_total_tolerance:
        return []
    return [_finding(
        Severity.ERROR,
        "DTA Total",
        f"Global DTA ({declared:,.2f}) does not match sum of items ({items_total:,.2f})",
        expected=declared,
        actual=round(items_total, 2),
    )]


def check_iva_total(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    items_total = _tax_sum(record, "IVA")
    declared = record.header.importes.iva
    if items_total <= 0 or declared is None:
        return []
    if abs(declared - items_total) <= policy.tax_total_tolerance:
        return []
    return [_finding(
        Severity.WARNING,
        "IVA Total",
        f"Global IVA ({declared:,.2f}) does not match sum of items ({items_total:,.2f})",
        expected=declared,
        actual=round(items_total, 2),
    )]


# ── Regime ──


def check_iva_credit_certification(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    """IVA paid by credit requires the IVA/IEPS certification identifier somewhere in the document."""
    uses_credit = any(
        tax.clave == "IVA" and tax.forma_pago in policy.iva_credit_payment_forms
        for item in record.partidas
        for tax in item.contribuciones
    ) or any(
        tax.clave == "IVA" and tax.forma_pago in policy.iva_credit_payment_forms
        for tax in record.header.tasas_globales
    )
    if not uses_credit:
        return []
    if any(record.has_identifier(code) for code in policy.iva_certification_identifiers):
        return []

    forms = "/".join(policy.iva_credit_payment_forms)
    codes = "/".join(policy.iva_certification_identifiers)
    return [_finding(
        Severity.ERROR,
        "Certificacion IVA (Anexo 31)",
        f"IVA credit (FP {forms}) used but certification identifier {codes} is missing",
        expected=f"Identifier {codes}",
        actual="Missing",
    )]


def check_immex_identifier(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    clave = record.header.clave_documento
    if clave not in policy.immex_document_keys:
        return []
    if any(record.has_identifier(code) for code in policy.immex_identifiers):
        return []
    codes = "/".join(policy.immex_identifiers)
    return [_finding(
        Severity.WARNING,
        "IMMEX",
        f"Document key {clave} (IMMEX temporary import) without program identifier {codes}",
        expected=f"Identifier {codes}",
        actual="Missing",
    )]


def check_treaty_origin(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    findings = []
    for item in record.partidas:
        treaty = item.find_identifier(policy.treaty_identifier)
        if not treaty or not item.pais_origen:
            continue
        if item.pais_origen in policy.treaty_countries:
            continue
        findings.append(_finding(
            Severity.WARNING,
            f"{_item_label(item)} Treaty",
            f"Treaty preference ({policy.treaty_identifier}) claimed for goods of origin {item.pais_origen}",
            expected="Origin covered by a treaty",
            actual=f"Origin: {item.pais_origen}, Treaty: {treaty.compl1 or '-'}",
        ))
    return findings


def check_treaty_opportunity(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    findings = []
    for item in record.partidas:
        if item.pais_origen not in policy.treaty_countries or item.has_identifier(policy.treaty_identifier):
            continue
        igi = item.find_tax("IGI")
        if igi is None or not igi.importe or igi.importe <= 0:
            continue
        findings.append(_finding(
            Severity.WARNING,
            f"{_item_label(item)} Opportunity",
            f"Origin {item.pais_origen} with IGI paid. Check whether a treaty preference ({policy.treaty_identifier}) applies.",
            expected="Consider treaty preference",
            actual=igi.importe,
        ))
    return findings


def check_permit_identifiers(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    """Regla 8a (identifier 98) usage needs a permit in the item's regulations."""
    findings = []
    for item in record.partidas:
        for code in policy.permit_required_identifiers:
            if item.has_identifier(code) and not item.regulaciones:
                findings.append(_finding(
                    Severity.ERROR,
                    f"{_item_label(item)} Regla 8va",
                    f"Identifier {code} requires a permit in the item's regulations",
                    expected="Permit",
                    actual="No regulations found",
                ))
    return findings


def check_sensitive_sectors(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    findings = []
    for item in record.partidas:
        chapter = item.chapter
        if not any(r.contains(chapter) for r in policy.sensitive_chapters):
            continue
        if item.regulaciones or any(item.has_identifier(c) for c in policy.sensitive_exempting_identifiers):
            continue
        findings.append(_finding(
            Severity.WARNING,
            f"{_item_label(item)} Sensitive Sector",
            f"Goods in sensitive chapter {chapter} usually require a permit or sector registry",
            expected="Permit / automatic notice",
            actual=f"Chapter {chapter}",
        ))
    return findings


def check_exclusive_identifiers(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    findings = []
    for item in record.partidas:
        for first, second in policy.mutually_exclusive_identifiers:
            if item.has_identifier(first) and item.has_identifier(second):
                findings.append(_finding(
                    Severity.ERROR,
                    f"{_item_label(item)} NOM",
                    f"Contradictory identifiers: {first} and {second} declared on the same item",
                    expected="One of them",
                    actual=f"{first} + {second}",
                ))
    return findings


def check_non_commercial_claim(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    pattern = re.compile(policy.non_commercial_pattern, re.IGNORECASE)
    findings = []
    for item in record.partidas:
        if not item.observaciones or not pattern.search(item.observaciones):
            continue
        if any(item.has_identifier(c) for c in policy.non_commercial_identifiers):
            continue
        codes = "/".join(policy.non_commercial_identifiers)
        findings.append(_finding(
            Severity.WARNING,
            f"{_item_label(item)} NOM Exception",
            f"Observations claim non-commercialisation but identifier {codes} is missing",
            expected=f"Identifier {codes}",
            actual="Text only",
        ))
    return findings


def check_fixed_asset_consumables(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    if record.header.clave_documento != policy.fixed_asset_key:
        return []
    consumables = [i for i in record.partidas if policy.consumable_chapters.contains(i.chapter)]
    if not consumables:
        return []
    return [_finding(
        Severity.WARNING,
        f"Regime {policy.fixed_asset_key}",
        f"Fixed-asset key {policy.fixed_asset_key} used but {len(consumables)} item(s) fall in chapters "
        f"{policy.consumable_chapters.first:02d}-{policy.consumable_chapters.last:02d}",
        expected="Capital goods",
        actual="Consumables detected",
    )]


def check_regularization(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    if record.header.clave_documento != policy.regularization_key:
        return []
    return [_finding(
        Severity.WARNING,
        f"Regime {policy.regularization_key}",
        "Regularization pedimento. Verify payment of fines and surcharges if applicable.",
        expected="Regularization",
        actual=f"{policy.regularization_key} detected",
    )]


def check_bonded_warehouse(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    if record.header.clave_documento != policy.bonded_warehouse_key:
        return []
    return [_finding(
        Severity.INFO,
        f"Regime {policy.bonded_warehouse_key}",
        "Merchandise entering a bonded warehouse. Verify the warehouse is authorized.",
        expected="Bonded warehouse",
        actual=f"{policy.bonded_warehouse_key} detected",
    )]


def check_strategic_zone(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    clave = record.header.clave_documento
    if clave not in policy.rfe_keys:
        return []
    return [_finding(
        Severity.INFO,
        "Regime RFE",
        f"Strategic bonded zone operation ({clave}). Ensure the RFE authorization identifier is declared.",
        expected="Strategic bonded zone",
        actual=f"{clave} detected",
    )]


def check_warehouse_extraction(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    if record.header.clave_documento != policy.warehouse_extraction_key:
        return []
    has_taxes = any(
        tax.clave in ("IGI", "IVA") and (tax.importe or 0) > 0
        for item in record.partidas
        for tax in item.contribuciones
    )
    return [_finding(
        Severity.INFO if has_taxes else Severity.WARNING,
        f"Regime {policy.warehouse_extraction_key}",
        "Extraction from bonded warehouse. Taxes deferred on entry must now be paid or exempted with justification.",
        expected="Extraction with tax payment",
        actual="Taxes detected" if has_taxes else "No taxes paid",
    )]


def check_transit_seals(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    clave = record.header.clave_documento
    if clave not in policy.transit_keys:
        return []
    findings = []
    if not record.header.transporte.candados:
        findings.append(_finding(
            Severity.ERROR,
            "Transit Regime",
            f"Transit regime ({clave}) requires declaring seals (candados)",
            expected="Candados",
            actual="None declared",
        ))
    findings.append(_finding(
        Severity.INFO,
        "Regime Transit",
        "Transit operation. Taxes are determined provisionally. Verify the destination customs office.",
        expected="Provisional taxes",
        actual=f"{clave} detected",
    ))
    return findings


def check_dta_reduction(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    """Certified-company identifier present while full ad-valorem DTA was paid."""
    if not record.has_identifier(policy.dta_reduction_identifier):
        return []
    dta = record.header.importes.dta or 0.0
    full_rate = (record.header.valor_aduana or 0.0) * policy.dta_rate
    if dta > policy.dta_fixed_threshold and abs(dta - full_rate) < policy.dta_full_tolerance:
        return [_finding(
            Severity.INFO,
            f"Identifier {policy.dta_reduction_identifier}",
            f"Identifier {policy.dta_reduction_identifier} present but full DTA appears paid. Verify if the benefit was intended.",
            expected="Reduced DTA",
            actual=dta,
        )]
    return []


def check_prevalidation(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    if record.header.is_simplified:
        return []
    prv = record.header.importes.prv
    if prv is not None and prv > 0:
        return []
    return [_finding(
        Severity.WARNING,
        "[RGCE] Prevalidacion",
        "Verify payment of prevalidation (RGCE 1.8.3): PRV/CNT not found in global taxes",
        expected="Paid (PRV/CNT)",
        actual="Missing",
    )]


def check_dta_rate(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    """Definitive imports without preference should pay DTA at the ad-valorem rate."""
    header = record.header
    dta = header.importes.dta
    customs_value = header.valor_aduana
    if not dta or not customs_value or header.clave_documento != policy.dta_definitive_key:
        return []
    if record.has_identifier(policy.dta_reduction_identifier) or record.has_identifier(policy.treaty_identifier):
        return []

    expected = customs_value * policy.dta_rate
    if abs(dta - expected) <= policy.dta_full_tolerance:
        return []
    return [_finding(
        Severity.INFO,
        "[LFD] DTA",
        f"DTA ({dta:,.2f}) differs from {policy.dta_rate * 1000:g} per thousand of customs value ({expected:,.2f})",
        expected=round(expected, 2),
        actual=dta,
    )]


# ── Format ──


def check_fraccion_format(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    pattern = re.compile(rf"\d{{{policy.fraccion_digits}}}")
    findings = []
    for item in record.partidas:
        if item.fraccion is None:
            continue
        if pattern.fullmatch(item.fraccion.replace(".", "")):
            continue
        findings.append(_finding(
            Severity.ERROR,
            f"[LIGIE] {_item_label(item)}",
            "Fraccion format invalid.",
            expected=f"{policy.fraccion_digits} digits",
            actual=item.fraccion,
        ))
    return findings


def check_nico_format(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    pattern = re.compile(rf"\d{{{policy.nico_digits}}}")
    findings = []
    for item in record.partidas:
        if item.nico is None or pattern.fullmatch(item.nico):
            continue
        findings.append(_finding(
            Severity.WARNING,
            f"[LIGIE] {_item_label(item)}",
            "NICO format invalid.",
            expected=f"{policy.nico_digits} digits",
            actual=item.nico,
        ))
    return findings


# ── Rate plausibility ──


def check_global_iva_rate(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    """Global IVA vs. the standard and border rates applied to (customs value + IGI + DTA)."""
    importes = record.header.importes
    if not importes.iva or importes.iva <= 0:
        return []

    base = (record.header.valor_aduana or 0.0) + (importes.igi or 0.0) + (importes.dta or 0.0)
    standard = base * policy.iva_standard_rate
    alternate = base * policy.iva_alternate_rate
    off_standard = abs(importes.iva - standard) > standard * policy.iva_standard_tolerance_pct
    off_alternate = abs(importes.iva - alternate) > base * policy.iva_alternate_tolerance_pct
    if not (off_standard and off_alternate):
        return []

    return [_finding(
        Severity.INFO,
        "[Ley IVA] Global Tax",
        f"Global IVA does not match {policy.iva_standard_rate:.0%} (or {policy.iva_alternate_rate:.0%}) of the base. "
        "Verify mixed rates or exemptions.",
        expected=round(standard, 2),
        actual=importes.iva,
    )]


def check_item_igi_rate(record: PedimentoRecord, policy: CompliancePolicy) -> list[ValidationFinding]:
    findings = []
    for item in record.partidas:
        igi = item.find_tax("IGI")
        if igi is None or igi.tasa is None or igi.importe is None or not item.valor_aduana:
            continue
        expected = item.valor_aduana * igi.tasa / 100
        if abs(igi.importe - expected) <= max(expected * policy.igi_tolerance_pct, 1.0):
            continue
        findings.append(_finding(
            Severity.INFO,
            f"{_item_label(item)} IGI",
            f"IGI amount does not match declared rate {igi.tasa:g}% of customs value",
            expected=round(expected, 2),
            actual=igi.importe,
        ))
    return findings


DEFAULT_RULES: tuple[Rule, ...] = (
    check_items_present,
    check_importer_rfc,
    check_pedimento_number,
    check_commercial_value,
    check_igi_total,
    check_dta_total,
    check_iva_total,
    check_iva_credit_certification,
    check_immex_identifier,
    check_treaty_origin,
    check_treaty_opportunity,
    check_permit_identifiers,
    check_sensitive_sectors,
    check_exclusive_identifiers,
    check_non_commercial_claim,
    check_fixed_asset_consumables,
    check_regularization,
    check_bonded_warehouse,
    check_strategic_zone,
    check_warehouse_extraction,
    check_transit_seals,
    check_dta_reduction,
    check_prevalidation,
    check_dta_rate,
    check_fraccion_format,
    check_nico_format,
    check_global_iva_rate,
    check_item_igi_rate,
)
