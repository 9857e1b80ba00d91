"""
Ordered pattern tables for deterministic pedimento extraction.

Each field maps to a list of FieldRule entries, most specific first. The
first rule whose pattern matches and whose extractor returns a value wins;
later rules are never consulted. Page text uses " | " between word runs,
so patterns tolerate pipes between a label and its value via ``(?:\\|\\s*)*``.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pedimento.document_extractor.numbers import parse_amount

_SEP = r"\s*[:\.]?\s*(?:\|\s*)*"
_AMOUNT = r"(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)"
_DATE = r"(\d{2}[-/]\d{2}[-/]\d{4})"


@dataclass(frozen=True)
class FieldRule:
    """One (pattern, extractor) pair. ``extract`` returns None to decline."""

    pattern: re.Pattern
    extract: Callable[[re.Match], Any]
    name: str = ""

    def apply(self, text: str) -> Any:
        match = self.pattern.search(text)
        if match is None:
            return None
        return self.extract(match)


def _rule(
    pattern: str,
    extract: Callable[[re.Match], Any],
    name: str = "",
    flags: int = re.IGNORECASE | re.MULTILINE,
) -> FieldRule:
    return FieldRule(re.compile(pattern, flags), extract, name)


def _group(match: re.Match) -> str | None:
    value = match.group(1).strip()
    return value or None


def _upper(match: re.Match) -> str | None:
    value = _group(match)
    return value.upper() if value else None


def _amount(match: re.Match) -> float | None:
    return parse_amount(match.group(1))


def _digits_only(match: re.Match) -> str | None:
    digits = re.sub(r"\D", "", match.group(1))
    return digits if len(digits) == 15 else None


def _joined_groups(match: re.Match) -> str:
    return "".join(match.groups())


def resolve_first(rules: list[FieldRule], text: str) -> Any:
    """Try each rule in order; the first non-None value wins."""
    for rule in rules:
        value = rule.apply(text)
        if value is not None:
            return value
    return None


# ── Header fields ──

HEADER_RULES: dict[str, list[FieldRule]] = {
    "pedimento_no": [
        _rule(r"NUM.*?PEDIMENTO.*?(\d{2}.{0,5}?\d{2}.{0,5}?\d{4}.{0,5}?\d{7})", _digits_only, "labelled"),
        _rule(r"(?<!\d)(\d{2})[\s|]+(\d{2})[\s|]+(\d{4})[\s|]+(\d{7})(?!\d)", _joined_groups, "grouped-digits"),
    ],
    "rfc": [
        _rule(r"IMPORTADOR.*?RFC" + _SEP + r"([A-Z&Ñ]{3,4}\d{6}[A-Z0-9]{3})", _upper, "importer-rfc"),
        _rule(r"EXPORTADOR.*?RFC" + _SEP + r"([A-Z&Ñ]{3,4}\d{6}[A-Z0-9]{3})", _upper, "exporter-rfc"),
        _rule(r"\bRFC" + _SEP + r"([A-Z&Ñ]{3,4}\d{6}[A-Z0-9]{3})", _upper, "any-rfc"),
    ],
    "curp": [
        _rule(r"\bCURP" + _SEP + r"([A-Z]{4}\d{6}[HM][A-Z]{5}[A-Z0-9]\d)", _upper),
    ],
    "nombre": [
        _rule(r"NOMBRE,?\s*DENOMINACI[OÓ]N\s*O\s*RAZ[OÓ]N\s*SOCIAL" + _SEP + r"([^|]{3,120}?)\s*(?:\||$)", _group),
    ],
    "domicilio": [
        _rule(r"DOMICILIO" + _SEP + r"([^|]{5,200}?)\s*(?:\||$)", _group),
    ],
    "clave_documento": [
        _rule(r"CVE\.?\s*(?:DE\s*)?PEDIM(?:\.|ENTO)?" + _SEP + r"([A-Z0-9]{2})\b", _upper, "cve-label"),
        _rule(r"CLAVE\s*(?:DE\s*)?PEDIMENTO" + _SEP + r"([A-Z0-9]{2})\b", _upper, "clave-label"),
    ],
    "tipo_operacion": [
        _rule(r"T(?:IPO)?\.?\s*(?:DE\s*)?OPER(?:ACI[OÓ]N)?\.?" + _SEP + r"(IMP|EXP|TRA)\b", _upper),
    ],
    "regimen": [
        _rule(r"R[EÉ]GIMEN" + _SEP + r"([A-Z0-9]{2,3})\b", _upper),
    ],
    "aduana": [
        _rule(r"ADUANA\s*(?:E/S|ENTRADA/SALIDA)" + _SEP + r"(\d{2,3})\b", _group),
    ],
    "patente": [
        _rule(r"PATENTE" + _SEP + r"(\d{4})\b", _group),
    ],
    "tipo_cambio": [
        _rule(r"TIPO\s*(?:DE\s*)?CAMBIO" + _SEP + r"(\d+(?:\.\d+)?)", _amount),
    ],
    "peso_bruto": [
        _rule(r"PESO\s*BRUTO" + _SEP + _AMOUNT, _amount),
    ],
    "bultos": [
        _rule(r"(?:MARCAS,?\s*N[UÚ]MEROS\s*Y\s*)?TOTAL\s*DE\s*BULTOS" + _SEP + r"(\d+)", _amount),
    ],
    "fecha_pago": [
        _rule(r"FECHA\s*DE\s*PAGO[\s:|.]+" + _DATE, _group, "labelled"),
        _rule(r"PAGO\s*ELECTR[OÓ]NICO[\s:|.]+" + _DATE, _group, "electronic"),
        _rule(r"\bPAGO[\s:|.]+" + _DATE, _group, "short"),
        _rule(_DATE + r"[\s|]+PAGO\b", _group, "date-before-label"),
    ],
    "fecha_entrada": [
        _rule(r"FECHA\s*DE\s*ENTRADA[\s:|.]+" + _DATE, _group, "labelled"),
        _rule(r"\bENTRADA[\s:|.]+" + _DATE, _group, "short"),
    ],
    "fecha_presentacion": [
        _rule(r"PRESENTACI[OÓ]N[\s:|.]+" + _DATE, _group),
    ],
    "fecha_extraccion": [
        _rule(r"EXTRACCI[OÓ]N[\s:|.]+" + _DATE, _group),
    ],
    "observaciones": [
        _rule(r"OBSERVACIONES(?!\s*A\s*NIVEL)" + _SEP + r"(.+?)\s*$", _group, flags=re.IGNORECASE | re.DOTALL),
    ],
}

# Declared values. Keys are the nested HeaderValues fields.
VALUE_RULES: dict[str, list[FieldRule]] = {
    "dolares": [_rule(r"VAL\.?\s*DOLARES[^0-9]*?" + _AMOUNT, _amount)],
    "aduana": [_rule(r"VAL\.?\s*ADUANA[^0-9]*?" + _AMOUNT, _amount)],
    "comercial": [
        _rule(r"PRECIO\s*PAGADO\s*/\s*VALOR\s*COMERCIAL[^0-9]*?" + _AMOUNT, _amount, "precio-pagado"),
        _rule(r"VAL\.?\s*COMERCIAL[^0-9]*?" + _AMOUNT, _amount, "val-comercial"),
    ],
    "seguros": [_rule(r"VAL\.?\s*SEGUROS(?:[^|]*\|)?\s*" + _AMOUNT, _amount)],
    "fletes": [_rule(r"\bFLETES(?:[^|]*\|)?\s*" + _AMOUNT, _amount)],
    "embalajes": [_rule(r"EMBALAJES(?:[^|]*\|)?\s*" + _AMOUNT, _amount)],
    "otros": [_rule(r"OTROS\s*INCREMENTABLES(?:[^|]*\|)?\s*" + _AMOUNT, _amount)],
}

# Rows of the CUADRO DE LIQUIDACION: "<KEY> | <F.P.> | <IMPORTE>"
LIQUIDATION_KEYS = ("DTA", "IVA", "IGI", "PRV", "CNT")
LIQUIDATION_ROWS = {
    key: re.compile(rf"\b{key}\b[\s|]+(\d+)[\s|]+" + _AMOUNT, re.IGNORECASE) for key in LIQUIDATION_KEYS
}
TOTAL_EFECTIVO = _rule(r"\bEFECTIVO[\s|:]+" + _AMOUNT, _amount)

FECHAS_BLOCK = re.compile(
    r"FECHAS.*?ENTRADA.*?(\d{2}/\d{2}/\d{4}).*?PAGO.*?(\d{2}/\d{2}/\d{4})",
    re.IGNORECASE | re.DOTALL,
)

TRANSPORT_MODE = re.compile(r"MEDIOS\s*DE\s*TRANSPORTE.*?(?:ENTRADA|SALIDA)[^:]*:\s*(?:\|\s*)*(\d{1,2})", re.IGNORECASE)
TRANSPORT_ID = _rule(r"IDENTIFICACI[OÓ]N\s*(?:DEL\s*)?TRANSPORTE" + _SEP + r"([A-Z0-9-]{3,})", _upper)

# Scanned over the whole document, not just the header region
CONTAINER_NUMBER = re.compile(r"\b([A-Z]{4})\s*(\d{7})\b")
CONTAINER_TYPE = re.compile(r"[\s|]*(\d{1,2})\b")
SEAL_NUMBER = re.compile(r"\bCANDADOS?" + _SEP + r"((?=[A-Z-]*\d)[A-Z0-9][A-Z0-9-]{3,})", re.IGNORECASE)

INVOICE_NUMBER = re.compile(r"NUM\.?\s*(?:DE\s*)?(?:CFDI\s*O\s*DOC\.?\s*EQUIVALENTE|FACTURA)" + _SEP + r"([A-Z0-9][A-Z0-9/-]{2,})", re.IGNORECASE)
INCOTERM = re.compile(r"\b(EXW|FCA|FAS|FOB|CFR|CIF|CPT|CIP|DAP|DPU|DDP|DAT)\b")
CURRENCY = re.compile(r"\b(USD|EUR|MXN|JPY|CNY|CAD|GBP|KRW)\b")
DATE_VALUE = re.compile(r"(\d{2}[-/]\d{2}[-/]\d{4})")
INVOICE_WINDOW = 200

SIMPLIFIED_MARKERS = ("FORMA SIMPLIFICADA", "SimpDec")


# ── Line items ──

# Each item begins at its part-number label; a pipe may split label and value.
ITEM_ANCHOR = re.compile(r"No\.?\s*De\s*parte\s*[:\.]?\s*(?:\|\s*)*([A-Z0-9][A-Z0-9-]*)", re.IGNORECASE)

ITEM_RULES: dict[str, list[FieldRule]] = {
    "secuencia": [
        _rule(r"\bSEC(?:UENCIA)?\.?" + _SEP + r"(\d{1,4})\b", _group),
    ],
    "fraccion": [
        _rule(r"FRACCI[OÓ]N(?:\s*ARANCELARIA)?" + _SEP + r"(\d[\d.]{3,11})", lambda m: m.group(1).replace(".", "").strip() or None, "labelled"),
        _rule(r"(?:^|\|)\s*(\d{4}\.\d{2}\.\d{2}|\d{8})\s*(?=\||$)", lambda m: m.group(1).replace(".", ""), "bare-token"),
    ],
    "nico": [
        _rule(r"\bNICO" + _SEP + r"(\d{1,3})\b", _group),
    ],
    "description": [
        _rule(r"DESCRIPCI[OÓ]N" + _SEP + r"(.{6,}?)\s*(?:\|\s*VAL\.|\|\s*CANTIDAD|\|\s*PRECIO|$)", _group),
    ],
    "qty": [
        _rule(r"CANTIDAD\s*U\.?M\.?C\.?" + _SEP + _AMOUNT, _amount, "labelled"),
        _rule(r"\|\s*(\d{1,3}(?:,\d{3})*\.\d{3}|\d+\.\d{3})\s*\|", _amount, "three-decimals"),
    ],
    "umc": [
        _rule(r"(?:^|\|)\s*U\.?M\.?C\.?\s*\|\s*([A-Z0-9]{1,3})\s*(?=\||$)", _upper),
    ],
    "qty_umt": [
        _rule(r"CANTIDAD\s*U\.?M\.?T\.?" + _SEP + _AMOUNT, _amount),
    ],
    "umt": [
        _rule(r"(?:^|\|)\s*U\.?M\.?T\.?\s*\|\s*([A-Z0-9]{1,3})\s*(?=\||$)", _upper),
    ],
    "vinculacion": [
        _rule(r"\bVINC(?:ULACI[OÓ]N)?\.?" + _SEP + r"(\d)\b", _group),
    ],
    "metodo_valoracion": [
        _rule(r"M[EÉ]T(?:ODO)?\.?\s*(?:DE\s*)?VAL(?:ORACI[OÓ]N)?\.?" + _SEP + r"(\d)\b", _group),
    ],
    "pais_vendedor": [
        _rule(r"PA[IÍ]S\s*(?:VENDEDOR|V/C)" + _SEP + r"([A-Z]{3})\b", _upper),
    ],
    "pais_origen": [
        _rule(r"PA[IÍ]S\s*(?:ORIGEN|O/D)" + _SEP + r"([A-Z]{3})\b", _upper),
    ],
    "unit_price": [
        _rule(r"PRECIO\s*UNIT(?:ARIO|\.)?" + _SEP + _AMOUNT, _amount),
    ],
    "valor_comercial": [
        _rule(r"PRECIO\s*PAGADO" + _SEP + _AMOUNT, _amount, "precio-pagado"),
        _rule(r"VAL\.?\s*COM(?:\.|ERCIAL)?(?!\s*DLS)" + _SEP + _AMOUNT, _amount, "val-com"),
    ],
    "valor_aduana": [
        _rule(r"VAL\.?\s*ADU(?:ANA|\.)?" + _SEP + _AMOUNT, _amount),
    ],
    "valor_dolares": [
        _rule(r"VAL\.?\s*(?:DLS|DOLARES)\.?" + _SEP + _AMOUNT, _amount),
    ],
    "valor_agregado": [
        _rule(r"VAL\.?\s*AGREG(?:ADO|\.)?" + _SEP + _AMOUNT, _amount),
    ],
}

ITEM_OBSERVATIONS = re.compile(r"OBSERVACIONES(?:\s*A\s*NIVEL\s*PARTIDA)?" + _SEP + r"(.*)$", re.IGNORECASE | re.DOTALL)

# Tokens that open and close an identifier block
IDENTIFIER_START = re.compile(r"\bIDENTIF(?:ICADORES?)?\b", re.IGNORECASE)
IDENTIFIER_END = re.compile(r"OBSERVACIONES", re.IGNORECASE)
IDENTIFIER_BLOCK_LIMIT = 400
IDENTIFIER_CODE = re.compile(r"^(?=[A-Z0-9]*[A-Z])[A-Z0-9]{2}$")
IDENTIFIER_LABELS = re.compile(r"^(IDENTIF|COMPLEMENTO|CLAVE|OBSERV|NIVEL|PARTIDA|PEDIMENTO)", re.IGNORECASE)
NUMERIC_IDENTIFIER_CODES = frozenset({"98"})

TAX_KEYS = ("IGI", "IVA", "DTA", "PRV", "CNT", "CC", "IEPS", "ISAN")
REGULATION_KEYS = ("C1", "A1", "T1")
MIN_PERMIT_LENGTH = 6
