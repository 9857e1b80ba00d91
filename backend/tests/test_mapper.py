"""Tests for the canonical mapper (raw fragment -> PedimentoRecord)."""

import pytest

from pedimento.document_extractor.field_extractor import FieldExtractor
from pedimento.document_extractor.mapper import map_items, map_tax, map_to_record
from pedimento.schemas.pedimento import PedimentoRecord, RawFragment


class TestMapToRecord:
    def test_nested_values_and_flattened_view_agree(self):
        record = map_to_record({
            "header": {
                "pedimento_no": "24 47 3456 4001234",
                "valores": {"dolares": "10,000.00", "aduana": 172500, "comercial": "10000"},
            }
        })
        assert record.header.pedimento_no == "244734564001234"
        assert record.header.valores.dolares == 10000.0
        assert record.header.valor_dolares == 10000.0
        assert record.header.valor_aduana == 172500.0
        assert record.header.valor_comercial == 10000.0

    def test_flattened_input_fills_missing_nested_value(self):
        record = map_to_record({
            "header": {"valores": {"dolares": 10.0}, "valor_dolares": 99.0, "valor_aduana": "1,234.50"}
        })
        assert record.header.valores.dolares == 10.0
        assert record.header.valores.aduana == 1234.5

    def test_thousands_separators_everywhere(self):
        record = map_to_record({
            "header": {"peso_bruto": "1,250.500", "importes": {"iva": "28,000.00"}},
            "partidas": [{"secuencia": "1", "qty": "1,000.000", "valor_comercial": "12,345.67"}],
        })
        assert record.header.peso_bruto == 1250.5
        assert record.header.importes.iva == 28000.0
        assert record.partidas[0].qty == 1000.0
        assert record.partidas[0].valor_comercial == 12345.67

    def test_unparseable_number_is_unknown_not_zero(self):
        record = map_to_record({"partidas": [{"secuencia": 1, "valor_comercial": "N/A", "qty": ""}]})
        item = record.partidas[0]
        assert item.valor_comercial is None
        assert item.qty is None

    def test_camel_case_and_english_keys(self):
        record = map_to_record({
            "header": {"pedimentoNo": "244734564001234", "claveDocumento": "a1", "tipoCambio": 17.1},
            "items": [{"sequence": 4, "partNo": "pn-9", "paisOrigen": "usa", "fraccion": "8504.31.01"}],
        })
        assert record.header.pedimento_no == "244734564001234"
        assert record.header.clave_documento == "A1"
        assert record.header.tipo_cambio == 17.1
        item = record.partidas[0]
        assert item.secuencia == 4
        assert item.part_no == "PN-9"
        assert item.pais_origen == "USA"
        assert item.fraccion == "85043101"

    def test_global_taxes_fill_importes(self):
        record = map_to_record({
            "header": {
                "tasas_globales": [
                    {"clave": "DTA", "importe": "1,380"},
                    {"clave": "CNT", "importe": 50},
                ]
            }
        })
        assert record.header.importes.dta == 1380.0
        assert record.header.importes.prv == 50.0
        assert record.header.importes.igi is None

    def test_dates_from_list_and_flat_keys(self):
        record = map_to_record({
            "header": {"fechas": [{"tipo": "entrada", "fecha": "01/02/2024"}], "fecha_pago": "05/02/2024"}
        })
        assert record.header.fecha_entrada == "01/02/2024"
        assert record.header.fecha_pago == "05/02/2024"
        assert [f.tipo for f in record.header.fechas] == ["Entrada", "Pago"]

    def test_top_level_lists_merge_into_header(self):
        record = map_to_record({
            "header": {"contenedores": [{"numero": "MSCU 1234567"}]},
            "contenedores": [{"numero": "MSCU1234567"}, {"numero": "TGHU7654321"}],
            "identificadores": [{"clave": "ci", "compl1": "X"}],
        })
        assert [c.numero for c in record.header.contenedores] == ["MSCU1234567", "TGHU7654321"]
        assert record.header.identificadores[0].clave == "CI"

    @pytest.mark.parametrize(
        "raw",
        [None, {}, {"header": "garbage"}, {"partidas": "nope"}, {"partidas": [1, "x", None]}, RawFragment()],
    )
    def test_never_raises_on_odd_shapes(self, raw):
        record = map_to_record(raw)
        assert isinstance(record, PedimentoRecord)
        assert record.partidas == []

    def test_idempotent(self, sample_pages):
        fragment = FieldExtractor().extract_pages(sample_pages)
        first = map_to_record(fragment, raw_text="x")
        second = map_to_record(fragment, raw_text="x")
        assert first.model_dump() == second.model_dump()
        # fragment is not consumed
        assert map_to_record(fragment).partidas == first.partidas

    def test_findings_start_empty(self):
        assert map_to_record({"partidas": [{"secuencia": 1}]}).validation_results == []


class TestMapItems:
    def test_sequences_unique_first_wins(self):
        items = map_items([
            {"secuencia": 1, "part_no": "A"},
            {"secuencia": 1, "part_no": "B"},
            {"secuencia": 2, "part_no": "C"},
        ])
        assert [(i.secuencia, i.part_no) for i in items] == [(1, "A"), (2, "C")]

    def test_missing_sequences_take_free_numbers(self):
        items = map_items([{"part_no": "A"}, {"secuencia": 1, "part_no": "B"}, {"part_no": "C"}])
        assert sorted(i.secuencia for i in items) == [1, 2, 3]
        by_part = {i.part_no: i.secuencia for i in items}
        assert by_part["B"] == 1
        assert by_part["A"] == 2
        assert by_part["C"] == 3

    def test_nested_lists_skip_entries_without_clave(self):
        items = map_items([{
            "secuencia": 1,
            "contribuciones": [{"clave": "igi", "importe": "10"}, {"importe": 5}],
            "identifiers": [{"clave": "TL"}, {"clave": "TL"}, "junk"],
        }])
        assert [t.clave for t in items[0].contribuciones] == ["IGI"]
        assert [i.clave for i in items[0].identifiers] == ["TL"]


def test_map_tax_keeps_zero_amount():
    tax = map_tax({"clave": "IGI", "importe": 0, "forma_pago": 21})
    assert tax.importe == 0.0
    assert tax.forma_pago == "21"


class TestHeaderPedimentoNumber:
    def test_write_once(self):
        record = map_to_record({"header": {"pedimento_no": "244734564001234"}})
        assert record.header.assign_pedimento_no("999999999999999") is False
        with pytest.raises(ValueError):
            record.header.pedimento_no = "999999999999999"
        assert record.header.pedimento_no == "244734564001234"
