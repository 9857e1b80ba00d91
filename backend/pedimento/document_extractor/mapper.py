"""
Canonical mapping from raw extraction output to PedimentoRecord.

Both extraction paths end here. The mapper is total: any structurally
plausible RawFragment yields a record, and anything it cannot interpret
becomes None (unknown) for that one field. Keys are accepted in the
snake_case, camelCase and English spellings seen in transcription output.
"""

import logging
import re
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from pedimento.document_extractor.numbers import parse_amount, parse_int
from pedimento.schemas.pedimento import (
    Container,
    Guide,
    Header,
    HeaderImportes,
    HeaderValues,
    Identifier,
    Invoice,
    LineItem,
    PedimentoDate,
    PedimentoRecord,
    RawFragment,
    Regulation,
    Supplier,
    Tax,
    Transport,
)

logger = logging.getLogger("pedimento.mapper")

_DATE_TYPES = {
    "entrada": "Entrada",
    "pago": "Pago",
    "presentacion": "Presentacion",
    "presentación": "Presentacion",
    "extraccion": "Extraccion",
    "extracción": "Extraccion",
}

# nested valores key -> flattened spellings
_VALUE_FLAT_KEYS = {
    "dolares": ("valor_dolares", "valorDolares", "dollar_value"),
    "aduana": ("valor_aduana", "valorAduana", "customs_value"),
    "comercial": ("valor_comercial", "valorComercial", "precio_pagado", "precioPagado", "commercial_value"),
    "seguros": ("valor_seguros", "valorSeguros", "seguros"),
    "fletes": ("valor_fletes", "valorFletes", "fletes"),
    "embalajes": ("embalajes",),
    "otros": ("otros", "otros_incrementables", "otrosIncrementables"),
}

_IMPORTE_KEYS = ("dta", "iva", "igi", "prv")


# ── Coercion helpers ──


def _pick(data: dict, *keys: str) -> Any:
    """First key present with a non-empty value."""
    for key in keys:
        value = data.get(key)
        if value not in (None, "", [], {}):
            return value
    return None


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _upper(value: Any) -> str | None:
    text = _text(value)
    return text.upper() if text else None


def _list_of_dicts(value: Any) -> list[dict]:
    if isinstance(value, dict):
        return [value]
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def _str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [v for v in re.split(r"[,;]", value)]
    if not isinstance(value, list):
        return []
    return [t for t in (_text(v) for v in value) if t]


def _fraccion(value: Any) -> str | None:
    text = _text(value)
    if not text:
        return None
    return re.sub(r"[\s.]", "", text) or None


def _pedimento_no(value: Any) -> str | None:
    text = _text(value)
    if not text:
        return None
    return re.sub(r"[\s|-]", "", text) or None


# ── Sub-records ──


def map_tax(raw: dict) -> Tax | None:
    clave = _upper(_pick(raw, "clave", "code", "codigo", "key"))
    if not clave:
        return None
    return Tax(
        clave=clave,
        tasa=parse_amount(_pick(raw, "tasa", "rate")),
        tipo_tasa=_text(_pick(raw, "tipo_tasa", "tipoTasa", "rate_type")),
        forma_pago=_text(_pick(raw, "forma_pago", "formaPago", "fp", "payment_form")),
        importe=parse_amount(_pick(raw, "importe", "amount", "monto")),
    )


def map_identifier(raw: dict) -> Identifier | None:
    clave = _upper(_pick(raw, "clave", "code", "codigo"))
    if not clave:
        return None
    return Identifier(
        clave=clave,
        compl1=_text(_pick(raw, "compl1", "complement1", "complemento1")),
        compl2=_text(_pick(raw, "compl2", "complement2", "complemento2")),
        compl3=_text(_pick(raw, "compl3", "complement3", "complemento3")),
    )


def map_regulation(raw: dict) -> Regulation | None:
    clave = _upper(_pick(raw, "clave", "code", "codigo"))
    if not clave:
        return None
    return Regulation(
        clave=clave,
        permiso=_text(_pick(raw, "permiso", "permit", "numero")),
        valor_comercial=parse_amount(_pick(raw, "valor_comercial", "valorComercial")),
        cantidad=parse_amount(_pick(raw, "cantidad", "quantity")),
    )


def _map_all(entries: Iterable[dict], mapper) -> list:
    return [m for m in (mapper(e) for e in entries) if m is not None]


def _unique_identifiers(identifiers: list[Identifier]) -> list[Identifier]:
    seen: set[tuple] = set()
    unique = []
    for ident in identifiers:
        key = (ident.clave, ident.compl1, ident.compl2, ident.compl3)
        if key not in seen:
            seen.add(key)
            unique.append(ident)
    return unique


def _unique_by_numero(entries: list) -> list:
    seen: set[str] = set()
    unique = []
    for entry in entries:
        if entry.numero in seen:
            continue
        seen.add(entry.numero)
        unique.append(entry)
    return unique


# ── Header ──


def _map_values(raw: dict) -> HeaderValues:
    nested = raw.get("valores") or raw.get("values")
    nested = nested if isinstance(nested, dict) else {}
    values: dict[str, float | None] = {}
    for key, flat_keys in _VALUE_FLAT_KEYS.items():
        value = parse_amount(nested.get(key))
        if value is None:
            # flattened input only fills a missing nested value
            value = parse_amount(_pick(raw, *flat_keys))
        values[key] = value
    return HeaderValues(**values)


def _map_importes(raw: dict, tasas: list[Tax]) -> HeaderImportes:
    nested = raw.get("importes") or raw.get("totales") or raw.get("totals")
    nested = nested if isinstance(nested, dict) else {}
    importes: dict[str, float | None] = {key: parse_amount(nested.get(key)) for key in _IMPORTE_KEYS}
    importes["total_efectivo"] = parse_amount(_pick(nested, "total_efectivo", "totalEfectivo", "efectivo"))

    for tax in tasas:
        key = "prv" if tax.clave == "CNT" else tax.clave.lower()
        if key in _IMPORTE_KEYS and importes[key] is None and tax.importe is not None:
            importes[key] = tax.importe
    return HeaderImportes(**importes)


def _map_dates(raw: dict) -> list[PedimentoDate]:
    fechas: list[PedimentoDate] = []
    for entry in _list_of_dicts(raw.get("fechas") or raw.get("dates")):
        fecha = _text(_pick(entry, "fecha", "date", "valor"))
        if not fecha:
            continue
        tipo = _text(_pick(entry, "tipo", "type")) or "Other"
        fechas.append(PedimentoDate(tipo=_DATE_TYPES.get(tipo.lower(), tipo), fecha=fecha))

    for tipo, keys in (
        ("Entrada", ("fecha_entrada", "fechaEntrada")),
        ("Pago", ("fecha_pago", "fechaPago")),
    ):
        fecha = _text(_pick(raw, *keys))
        if fecha and not any(f.tipo == tipo for f in fechas):
            fechas.append(PedimentoDate(tipo=tipo, fecha=fecha))
    return fechas


def _map_transport(raw: dict) -> Transport:
    data = raw.get("transporte") or raw.get("transport")
    data = data if isinstance(data, dict) else {}
    return Transport(
        medios=_str_list(_pick(data, "medios", "modes")),
        candados=_str_list(_pick(data, "candados", "seals")),
        identificacion=_text(_pick(data, "identificacion", "id")),
        pais=_upper(_pick(data, "pais", "country")),
    )


def map_header(raw: dict, fragment: RawFragment) -> Header:
    header = Header()
    header.assign_pedimento_no(
        _pedimento_no(_pick(raw, "pedimento_no", "pedimentoNo", "numero_pedimento", "pedimento", "num_pedimento"))
    )

    header.rfc = _upper(_pick(raw, "rfc", "RFC", "rfc_importador", "rfcImportador"))
    header.curp = _upper(_pick(raw, "curp", "CURP"))
    header.nombre = _text(_pick(raw, "nombre", "razon_social", "importador", "name"))
    header.domicilio = _text(_pick(raw, "domicilio", "address"))
    header.clave_documento = _upper(_pick(raw, "clave_documento", "claveDocumento", "cve_pedimento", "clave_pedimento"))
    header.tipo_operacion = _upper(_pick(raw, "tipo_operacion", "tipoOperacion", "operacion"))
    header.regimen = _upper(_pick(raw, "regimen"))
    header.aduana = _text(_pick(raw, "aduana", "aduana_es", "customs_office"))
    header.patente = _text(_pick(raw, "patente"))

    header.fechas = _map_dates(raw)
    header.fecha_entrada = next((f.fecha for f in header.fechas if f.tipo == "Entrada"), None)
    header.fecha_pago = next((f.fecha for f in header.fechas if f.tipo == "Pago"), None)

    header.peso_bruto = parse_amount(_pick(raw, "peso_bruto", "pesoBruto", "gross_weight"))
    header.bultos = parse_amount(_pick(raw, "bultos", "packages"))
    header.tipo_cambio = parse_amount(_pick(raw, "tipo_cambio", "tipoCambio", "exchange_rate"))

    header.valores = _map_values(raw)
    header.tasas_globales = _map_all(
        _list_of_dicts(_pick(raw, "tasas_globales", "tasasGlobales", "contribuciones", "taxes")), map_tax
    )
    header.importes = _map_importes(raw, header.tasas_globales)
    header.transporte = _map_transport(raw)

    header.guias = [
        Guide(numero=numero, tipo=_text(g.get("tipo")) or "Other")
        for g in _list_of_dicts(_pick(raw, "guias", "guides"))
        if (numero := _text(_pick(g, "numero", "number")))
    ]
    header.contenedores = _unique_by_numero([
        Container(numero=numero.replace(" ", ""), tipo=_text(c.get("tipo")))
        for c in _list_of_dicts(raw.get("contenedores")) + fragment.contenedores
        if (numero := _upper(_pick(c, "numero", "number")))
    ])
    header.facturas = _unique_by_numero([
        Invoice(
            numero=numero,
            fecha=_text(f.get("fecha")),
            incoterm=_upper(f.get("incoterm")),
            moneda=_upper(_pick(f, "moneda", "currency")),
            valor_dolares=parse_amount(_pick(f, "valor_dolares", "valorDolares", "value_usd")),
            proveedor=_text(_pick(f, "proveedor", "supplier")),
        )
        for f in _list_of_dicts(raw.get("facturas")) + fragment.facturas
        if (numero := _upper(_pick(f, "numero", "number")))
    ])
    header.proveedores = [
        Supplier(id=_text(p.get("id")), nombre=_text(p.get("nombre")), domicilio=_text(p.get("domicilio")))
        for p in _list_of_dicts(_pick(raw, "proveedores", "suppliers"))
    ]
    header.identificadores = _unique_identifiers(
        _map_all(_list_of_dicts(raw.get("identificadores")) + fragment.identificadores, map_identifier)
    )

    header.observaciones = _text(_pick(raw, "observaciones", "observations"))
    header.is_simplified = bool(_pick(raw, "is_simplified", "isSimplified"))
    return header


# ── Items ──


def map_item(raw: dict, secuencia: int) -> LineItem:
    return LineItem(
        secuencia=secuencia,
        fraccion=_fraccion(_pick(raw, "fraccion", "fraccionArancelaria", "fraction", "hts")),
        nico=_text(_pick(raw, "nico", "NICO")),
        part_no=_upper(_pick(raw, "part_no", "partNo", "numero_parte", "no_parte")),
        invoice_no=_upper(_pick(raw, "invoice_no", "invoiceNo", "factura")),
        description=_text(_pick(raw, "description", "descripcion")),
        qty=parse_amount(_pick(raw, "qty", "cantidad", "cantidad_umc", "qtyUmc")),
        umc=_upper(_pick(raw, "umc", "UMC")),
        qty_umt=parse_amount(_pick(raw, "qty_umt", "qtyUmt", "cantidad_umt")),
        umt=_upper(_pick(raw, "umt", "UMT")),
        vinculacion=_text(_pick(raw, "vinculacion")),
        metodo_valoracion=_text(_pick(raw, "metodo_valoracion", "metodoValoracion")),
        pais_vendedor=_upper(_pick(raw, "pais_vendedor", "paisVendedor", "seller_country")),
        pais_origen=_upper(_pick(raw, "pais_origen", "paisOrigen", "origin", "origen")),
        unit_price=parse_amount(_pick(raw, "unit_price", "unitPrice", "precio_unitario")),
        valor_comercial=parse_amount(
            _pick(raw, "valor_comercial", "valorComercial", "precio_pagado", "precioPagado", "totalAmount")
        ),
        valor_aduana=parse_amount(_pick(raw, "valor_aduana", "valorAduana")),
        valor_dolares=parse_amount(_pick(raw, "valor_dolares", "valorDolares")),
        valor_agregado=parse_amount(_pick(raw, "valor_agregado", "valorAgregado")),
        identifiers=_unique_identifiers(
            _map_all(_list_of_dicts(_pick(raw, "identifiers", "identificadores")), map_identifier)
        ),
        contribuciones=_map_all(_list_of_dicts(_pick(raw, "contribuciones", "taxes", "impuestos")), map_tax),
        regulaciones=_map_all(_list_of_dicts(_pick(raw, "regulaciones", "regulations", "permisos")), map_regulation),
        observaciones=_text(_pick(raw, "observaciones", "observations")),
        page=parse_int(raw.get("page")),
    )


def map_items(raw_items: list[dict]) -> list[LineItem]:
    """Map items, keeping the first occurrence of each sequence number.

    Items with no usable sequence get the lowest numbers not claimed by
    any explicit sequence, in input order.
    """
    explicit = {s for s in (parse_int(_pick(r, "secuencia", "sec", "sequence")) for r in raw_items) if s is not None}
    next_free = 1
    used: set[int] = set()
    items: list[LineItem] = []

    for position, raw in enumerate(raw_items):
        secuencia = parse_int(_pick(raw, "secuencia", "sec", "sequence"))
        if secuencia is None:
            while next_free in explicit or next_free in used:
                next_free += 1
            secuencia = next_free
        if secuencia in used:
            logger.debug("Dropping duplicate item sequence %d", secuencia)
            continue

        try:
            item = map_item(raw, secuencia)
        except (ValidationError, ValueError, TypeError) as e:
            logger.warning("Skipping unmappable item at position %d: %s", position, e)
            continue
        used.add(secuencia)
        items.append(item)
    return items


# ── Record ──


def map_to_record(raw: RawFragment | dict | None, raw_text: str = "") -> PedimentoRecord:
    """Normalize a raw fragment into a PedimentoRecord.

    Args:
        raw: Merged fragment from either extraction path (or its dict form).
        raw_text: Source document text, kept on the record.

    Returns:
        A fully populated record. Findings are left empty.
    """
    if raw is None:
        fragment = RawFragment()
    elif isinstance(raw, RawFragment):
        fragment = raw
    else:
        try:
            fragment = RawFragment.model_validate(raw)
        except ValidationError as e:
            logger.warning("Raw fragment rejected, mapping an empty record: %s", e)
            fragment = RawFragment()

    header_raw = fragment.header or {}
    items_raw = list(fragment.partidas) + _list_of_dicts(header_raw.get("partidas"))

    record = PedimentoRecord(
        header=map_header(header_raw, fragment),
        partidas=map_items(items_raw),
        raw_text=raw_text,
    )
    logger.debug(
        "Mapped record %s: %d items, %d identifiers",
        record.header.pedimento_no or "-",
        len(record.partidas),
        len(record.header.identificadores),
    )
    return record
