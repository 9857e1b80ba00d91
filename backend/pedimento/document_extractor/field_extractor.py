"""
Deterministic pedimento field extraction.

Pure text processing over the joined page text, no Claude dependency.
Header fields are resolved with the ordered tables in ``patterns`` against
the header region (everything before the first item anchor). Each item's
scope runs from its anchor to the next one, so values never leak between
items. The result is a RawFragment, the same shape the structured path
produces, and goes through the canonical mapper like any other fragment.
"""

import logging
import re
from bisect import bisect_right
from collections.abc import Sequence
from dataclasses import dataclass

from pedimento.document_extractor import patterns
from pedimento.document_extractor.chunker import PAGE_SEPARATOR
from pedimento.document_extractor.numbers import is_numeric_token, parse_amount, parse_int
from pedimento.document_extractor.parser import PageContent
from pedimento.schemas.pedimento import RawFragment

logger = logging.getLogger("pedimento.field_extractor")


@dataclass(frozen=True)
class ItemScope:
    """Text span belonging to one line item."""

    part_no: str
    start: int
    end: int
    text: str


def tokenize(text: str) -> list[str]:
    """Split on the page token delimiter, dropping empty tokens."""
    return [t.strip() for t in re.split(r"[|\n]", text) if t.strip()]


def find_item_scopes(text: str) -> list[ItemScope]:
    """Locate every item anchor and bound its scope at the next anchor."""
    anchors = list(patterns.ITEM_ANCHOR.finditer(text))
    scopes = []
    for i, match in enumerate(anchors):
        end = anchors[i + 1].start() if i + 1 < len(anchors) else len(text)
        scopes.append(ItemScope(part_no=match.group(1).upper(), start=match.start(), end=end, text=text[match.start():end]))
    return scopes


def extract_taxes(tokens: Sequence[str], lookahead: int = 4) -> list[dict]:
    """Find contribution rows in a token stream.

    A full row ``KEY | tasa | tipo_tasa | forma_pago | importe`` is taken as
    is. Otherwise the first purely numeric token within ``lookahead`` tokens
    of the key is the amount. First row per key wins.
    """
    taxes: list[dict] = []
    seen: set[str] = set()
    for t, token in enumerate(tokens):
        key = token.upper()
        if key not in patterns.TAX_KEYS or key in seen:
            continue

        window = list(tokens[t + 1 : t + 1 + lookahead])
        if len(window) >= 4 and all(is_numeric_token(v) for v in window[:4]):
            tasa, tipo_tasa, forma_pago, importe = window[:4]
            taxes.append({
                "clave": key,
                "tasa": parse_amount(tasa),
                "tipo_tasa": tipo_tasa,
                "forma_pago": forma_pago,
                "importe": parse_amount(importe),
            })
            seen.add(key)
            continue

        for value in window:
            if value.upper() in patterns.TAX_KEYS:
                break
            if is_numeric_token(value):
                taxes.append({"clave": key, "importe": parse_amount(value)})
                seen.add(key)
                break
    return taxes


def extract_regulations(tokens: Sequence[str]) -> list[dict]:
    """Permit rows: ``KEY | permit | [valor_comercial] | [cantidad]``."""
    regulations = []
    for t, token in enumerate(tokens):
        if token.upper() not in patterns.REGULATION_KEYS or t + 1 >= len(tokens):
            continue
        permit = tokens[t + 1]
        if len(permit) < patterns.MIN_PERMIT_LENGTH:
            continue
        entry = {"clave": token.upper(), "permiso": permit}
        trailing = [parse_amount(v) for v in tokens[t + 2 : t + 4] if is_numeric_token(v)]
        if trailing:
            entry["valor_comercial"] = trailing[0]
        if len(trailing) > 1:
            entry["cantidad"] = trailing[1]
        regulations.append(entry)
    return regulations


def identifier_span(text: str) -> tuple[int, int] | None:
    """Character span of the identifier block, from IDENTIF to OBSERVACIONES."""
    match = patterns.IDENTIFIER_START.search(text)
    if match is None:
        return None
    start = match.start()
    end_match = patterns.IDENTIFIER_END.search(text, match.end())
    end = end_match.start() if end_match else min(len(text), start + patterns.IDENTIFIER_BLOCK_LIMIT)
    return start, end


def is_identifier_code(token: str, numeric_codes: frozenset[str] = patterns.NUMERIC_IDENTIFIER_CODES) -> bool:
    return bool(patterns.IDENTIFIER_CODE.match(token)) or token in numeric_codes


def extract_identifiers(
    block: str,
    numeric_codes: frozenset[str] = patterns.NUMERIC_IDENTIFIER_CODES,
) -> list[dict]:
    """Parse ``CODE | compl1 | compl2 | compl3`` groups from an identifier block."""
    identifiers: list[dict] = []
    current: dict | None = None
    for token in tokenize(block):
        if patterns.IDENTIFIER_LABELS.match(token):
            continue
        if is_identifier_code(token, numeric_codes):
            current = {"clave": token}
            identifiers.append(current)
            continue
        if current is None:
            continue
        for slot in ("compl1", "compl2", "compl3"):
            if slot not in current:
                current[slot] = token
                break

    unique: list[dict] = []
    seen: set[tuple] = set()
    for ident in identifiers:
        key = (ident["clave"], ident.get("compl1"), ident.get("compl2"), ident.get("compl3"))
        if key not in seen:
            seen.add(key)
            unique.append(ident)
    return unique


class FieldExtractor:
    """Single pass over a document's full text."""

    def __init__(
        self,
        tax_lookahead: int = 4,
        numeric_identifier_codes: frozenset[str] = patterns.NUMERIC_IDENTIFIER_CODES,
    ):
        if tax_lookahead < 1:
            raise ValueError(f"tax_lookahead must be >= 1, got {tax_lookahead}")
        self.tax_lookahead = tax_lookahead
        self.numeric_identifier_codes = numeric_identifier_codes

    def extract_pages(self, pages: Sequence[PageContent]) -> RawFragment:
        """Join pages with the stable separator and extract."""
        text = PAGE_SEPARATOR.join(p.text for p in pages)
        first_page = pages[0].text if pages else ""
        page_starts = []
        offset = 0
        for page in pages:
            page_starts.append(offset)
            offset += len(page.text) + len(PAGE_SEPARATOR)
        return self.extract(text, first_page=first_page, page_starts=page_starts or None)

    def extract(
        self,
        text: str,
        first_page: str | None = None,
        page_starts: list[int] | None = None,
    ) -> RawFragment:
        """Extract header and items from joined document text.

        Args:
            text: Full document text, pages joined by PAGE_SEPARATOR.
            first_page: Text of page 1, where the simplified-form marker lives.
                Defaults to the text before the first page separator.
            page_starts: Offset of each page in ``text``. Defaults to splitting
                on PAGE_SEPARATOR.

        Returns:
            RawFragment with a header dict and zero or more item dicts.
        """
        if first_page is None:
            first_page = text.split(PAGE_SEPARATOR, 1)[0]

        scopes = find_item_scopes(text)
        header_region = text[: scopes[0].start] if scopes else text

        header = self._extract_header(header_region, text)
        header["is_simplified"] = any(marker in first_page for marker in patterns.SIMPLIFIED_MARKERS)

        items: list[dict] = []
        if header["is_simplified"]:
            logger.info("Simplified form detected, skipping item extraction")
        else:
            items = self._extract_items(scopes, page_starts or _page_offsets(text))

        logger.info(
            "Deterministic extraction: pedimento=%s, %d items, %d containers",
            header.get("pedimento_no") or "-",
            len(items),
            len(header["contenedores"]),
        )
        return RawFragment(header=header, partidas=items)

    # ── Header ──

    def _extract_header(self, region: str, full_text: str) -> dict:
        header: dict = {}
        for field_name, rules in patterns.HEADER_RULES.items():
            if field_name == "observaciones":
                continue
            value = patterns.resolve_first(rules, region)
            if value is not None:
                header[field_name] = value

        header["valores"] = {
            key: patterns.resolve_first(rules, region) for key, rules in patterns.VALUE_RULES.items()
        }
        header["importes"] = self._extract_liquidation(region)
        header["fechas"] = self._extract_dates(region, header)
        header["transporte"] = self._extract_transport(region, full_text)
        header["contenedores"] = self._extract_containers(full_text)
        header["facturas"] = self._extract_invoices(region)

        span = identifier_span(region)
        identifiers = []
        if span:
            identifiers = extract_identifiers(region[span[0]:span[1]], self.numeric_identifier_codes)
            observations = patterns.resolve_first(patterns.HEADER_RULES["observaciones"], region[span[1]:])
        else:
            observations = patterns.resolve_first(patterns.HEADER_RULES["observaciones"], region)
        header["identificadores"] = identifiers
        if observations:
            header["observaciones"] = observations

        return header

    def _extract_liquidation(self, region: str) -> dict:
        """Global totals from the liquidation table. CNT counts toward PRV."""
        importes: dict = {}
        for key, row in patterns.LIQUIDATION_ROWS.items():
            match = row.search(region)
            if not match:
                continue
            amount = parse_amount(match.group(2))
            if amount is None:
                continue
            target = "prv" if key == "CNT" else key.lower()
            importes[target] = (importes.get(target) or 0.0) + amount
        importes["total_efectivo"] = patterns.TOTAL_EFECTIVO.apply(region)
        return importes

    def _extract_dates(self, region: str, header: dict) -> list[dict]:
        fechas = []
        block = patterns.FECHAS_BLOCK.search(region)
        if block:
            header.setdefault("fecha_entrada", block.group(1))
            header.setdefault("fecha_pago", block.group(2))

        for tipo, key in (
            ("Entrada", "fecha_entrada"),
            ("Pago", "fecha_pago"),
            ("Presentacion", "fecha_presentacion"),
            ("Extraccion", "fecha_extraccion"),
        ):
            value = header.pop(key, None) if key in ("fecha_presentacion", "fecha_extraccion") else header.get(key)
            if value:
                fechas.append({"tipo": tipo, "fecha": value})
        return fechas

    def _extract_transport(self, region: str, full_text: str) -> dict:
        medios = []
        for match in patterns.TRANSPORT_MODE.finditer(region):
            if match.group(1) not in medios:
                medios.append(match.group(1))

        candados = []
        for match in patterns.SEAL_NUMBER.finditer(full_text):
            seal = match.group(1).upper()
            if seal not in candados:
                candados.append(seal)

        return {
            "medios": medios,
            "candados": candados,
            "identificacion": patterns.TRANSPORT_ID.apply(region),
        }

    def _extract_containers(self, full_text: str) -> list[dict]:
        containers: list[dict] = []
        seen: set[str] = set()
        for match in patterns.CONTAINER_NUMBER.finditer(full_text):
            numero = match.group(1) + match.group(2)
            if numero in seen:
                continue
            seen.add(numero)
            tipo = patterns.CONTAINER_TYPE.match(full_text, match.end())
            containers.append({"numero": numero, "tipo": tipo.group(1) if tipo else None})
        return containers

    def _extract_invoices(self, region: str) -> list[dict]:
        invoices: list[dict] = []
        seen: set[str] = set()
        for match in patterns.INVOICE_NUMBER.finditer(region):
            numero = match.group(1).upper()
            if numero in seen:
                continue
            seen.add(numero)
            window = region[match.end() : match.end() + patterns.INVOICE_WINDOW]
            invoice: dict = {"numero": numero}
            if date := patterns.DATE_VALUE.search(window):
                invoice["fecha"] = date.group(1)
            if incoterm := patterns.INCOTERM.search(window):
                invoice["incoterm"] = incoterm.group(1)
            if currency := patterns.CURRENCY.search(window):
                invoice["moneda"] = currency.group(1)
            invoices.append(invoice)
        return invoices

    # ── Items ──

    def _extract_items(self, scopes: list[ItemScope], page_starts: list[int]) -> list[dict]:
        items: list[dict] = []
        used: set[int] = set()
        for scope in scopes:
            item = self._extract_item(scope)

            secuencia = parse_int(item.pop("secuencia", None))
            if secuencia is None or secuencia in used:
                secuencia = max(used, default=0) + 1
            used.add(secuencia)
            item["secuencia"] = secuencia
            item["page"] = bisect_right(page_starts, scope.start)
            items.append(item)
        return items

    def _extract_item(self, scope: ItemScope) -> dict:
        text = scope.text
        item: dict = {"part_no": scope.part_no}
        for field_name, rules in patterns.ITEM_RULES.items():
            value = patterns.resolve_first(rules, text)
            if value is not None:
                item[field_name] = value

        span = identifier_span(text)
        if span:
            item["identifiers"] = extract_identifiers(text[span[0]:span[1]], self.numeric_identifier_codes)
            outside = text[: span[0]] + " | " + text[span[1]:]
        else:
            item["identifiers"] = []
            outside = text

        tokens = tokenize(outside)
        item["contribuciones"] = extract_taxes(tokens, self.tax_lookahead)
        item["regulaciones"] = extract_regulations(tokens)

        observations = patterns.ITEM_OBSERVATIONS.search(text)
        if observations and observations.group(1).strip(" |\n"):
            item["observaciones"] = observations.group(1).strip(" |\n")
        return item


def _page_offsets(text: str) -> list[int]:
    """Start offset of every page in the joined text."""
    offsets = [0]
    for match in re.finditer(re.escape(PAGE_SEPARATOR), text):
        offsets.append(match.end())
    return offsets
