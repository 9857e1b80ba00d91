"""Pure pedimento vs. commercial-invoice audit. No I/O.

Invoice lines are indexed by invoice number and normalised part number.
Each pedimento item is then checked, in order, for: invoice present, part
number present on that invoice, quantity equal, USD value within tolerance.
A missing invoice or part stops the checks for that item.
"""

import logging
import re
from collections import defaultdict

from pedimento.schemas.audit import (
    AuditDiscrepancy,
    AuditReport,
    AuditTotals,
    DiscrepancySeverity,
    DiscrepancyType,
    InvoiceLine,
)
from pedimento.schemas.pedimento import LineItem, PedimentoRecord

logger = logging.getLogger("pedimento.audit")


def normalize_part_number(part_no: str | None) -> str:
    """Drop dashes, spaces and slashes; uppercase."""
    if not part_no:
        return ""
    return re.sub(r"[-\s/]", "", part_no).upper()


def _item_value(item: LineItem) -> float:
    if item.valor_dolares is not None:
        return item.valor_dolares
    return item.valor_comercial or 0.0


def _discrepancy(
    item: LineItem,
    kind: DiscrepancyType,
    severity: DiscrepancySeverity,
    description: str,
    pedimento_value: str | float | None,
    invoice_value: str | float | None,
) -> AuditDiscrepancy:
    difference = 0.0
    if isinstance(pedimento_value, (int, float)) and isinstance(invoice_value, (int, float)):
        difference = round(pedimento_value - invoice_value, 2)
    return AuditDiscrepancy(
        type=kind,
        severity=severity,
        item_secuencia=item.secuencia,
        invoice_no=item.invoice_no or "N/A",
        part_no=item.part_no or "N/A",
        description=description,
        pedimento_value=pedimento_value,
        invoice_value=invoice_value,
        difference=difference,
    )


def run_audit(
    record: PedimentoRecord,
    invoice_lines: list[InvoiceLine],
    value_tolerance: float = 1.0,
) -> AuditReport:
    """Compare every pedimento item against the commercial invoices.

    Args:
        record: Canonical pedimento record.
        invoice_lines: Lines from the commercial invoices.
        value_tolerance: Allowed absolute USD difference per item.

    Returns:
        AuditReport with one discrepancy per failed check.
    """
    index: dict[str, dict[str, list[InvoiceLine]]] = defaultdict(lambda: defaultdict(list))
    invoice_total = 0.0
    for line in invoice_lines:
        index[line.invoice_no.strip().upper()][normalize_part_number(line.part_no)].append(line)
        invoice_total += line.total_amount

    discrepancies: list[AuditDiscrepancy] = []
    pedimento_total = 0.0

    for item in record.partidas:
        value = _item_value(item)
        pedimento_total += value
        invoice_no = (item.invoice_no or "").strip().upper()

        if invoice_no not in index:
            discrepancies.append(_discrepancy(
                item,
                DiscrepancyType.MISSING_IN_INVOICE,
                DiscrepancySeverity.CRITICAL,
                f"Invoice {invoice_no or 'N/A'} not found in imported invoices.",
                value,
                0.0,
            ))
            continue

        matched = index[invoice_no].get(normalize_part_number(item.part_no))
        if not matched:
            discrepancies.append(_discrepancy(
                item,
                DiscrepancyType.PART_NUMBER,
                DiscrepancySeverity.HIGH,
                f"Part number {item.part_no or 'N/A'} not found in invoice {invoice_no}.",
                item.part_no or "N/A",
                "N/A",
            ))
            continue

        invoice_qty = sum(line.qty for line in matched)
        invoice_value = sum(line.total_amount for line in matched)

        if (item.qty or 0.0) != invoice_qty:
            discrepancies.append(_discrepancy(
                item,
                DiscrepancyType.QUANTITY,
                DiscrepancySeverity.CRITICAL,
                f"Quantity mismatch: pedimento={item.qty}, invoice={invoice_qty}",
                item.qty,
                invoice_qty,
            ))

        if abs(value - invoice_value) > value_tolerance:
            discrepancies.append(_discrepancy(
                item,
                DiscrepancyType.VALUE_USD,
                DiscrepancySeverity.HIGH,
                f"Value mismatch: pedimento=${value:,.2f}, invoice=${invoice_value:,.2f}",
                value,
                invoice_value,
            ))

    logger.info(
        "Audit of pedimento %s: %d items, %d invoice lines, %d discrepancies",
        record.header.pedimento_no or "-",
        len(record.partidas),
        len(invoice_lines),
        len(discrepancies),
    )
    return AuditReport(
        pedimento_no=record.header.pedimento_no,
        total_discrepancies=len(discrepancies),
        totals=AuditTotals(
            pedimento_total=round(pedimento_total, 2),
            invoice_total=round(invoice_total, 2),
            difference=round(pedimento_total - invoice_total, 2),
        ),
        discrepancies=discrepancies,
    )
