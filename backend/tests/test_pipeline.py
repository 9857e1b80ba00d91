"""Tests for the end-to-end pedimento pipeline (no real Claude calls)."""

import json

import pytest

from pedimento.config import Settings
from pedimento.document_extractor.errors import TranscriptionRateLimited
from pedimento.document_extractor.parser import PageContent
from pedimento.document_extractor.pipeline import PedimentoPipeline
from pedimento.schemas.extraction import ExtractionStrategy
from pedimento.schemas.pedimento import Severity


def make_settings(**overrides) -> Settings:
    values = {
        "anthropic_api_key": "",
        "chunk_size_pages": 1,
        "retry_base_delay_seconds": 0.0,
        "retry_max_delay_seconds": 0.0,
        "retry_jitter_ratio": 0.0,
    }
    values.update(overrides)
    return Settings(**values)


def item(secuencia: int, **kwargs) -> dict:
    return {"secuencia": secuencia, "fraccion": "85043101", "nico": "00", **kwargs}


HEADER = {
    "pedimento_no": "244734564001234",
    "rfc": "ABC010101AB1",
    "clave_documento": "A1",
    "valores": {"comercial": 300.0},
    "importes": {"prv": 290.0},
}


def three_pages() -> list[PageContent]:
    return [PageContent(number=i, text=f"page {i}") for i in range(1, 4)]


class TestDeterministicPipeline:
    async def test_sample_document_is_clean(self, sample_pages):
        pipeline = PedimentoPipeline(make_settings())
        result = await pipeline.run_pages(sample_pages, ExtractionStrategy.DETERMINISTIC)

        record = result.record
        assert result.strategy == ExtractionStrategy.DETERMINISTIC
        assert record.header.pedimento_no == "244734564001234"
        assert record.header.valor_comercial == 10000.0
        assert [i.secuencia for i in record.partidas] == [1, 2]
        assert record.validation_results == []
        assert "PN-100" in record.raw_text

    async def test_run_from_text_file(self, sample_text_file):
        pipeline = PedimentoPipeline(make_settings())
        result = await pipeline.run(sample_text_file, "txt", "text/plain", ExtractionStrategy.DETERMINISTIC)

        assert result.page_count == 2
        assert len(result.record.partidas) == 2
        assert result.metadata["parser"] == "text"
        assert result.summary().findings.ERROR == 0

    async def test_empty_document_is_rejected(self, tmp_path):
        path = tmp_path / "blank.txt"
        path.write_text("   ")
        with pytest.raises(ValueError):
            await PedimentoPipeline(make_settings()).run(str(path), "txt", "text/plain")

    async def test_no_items_returns_record_with_error(self):
        pages = [PageContent(number=1, text="PEDIMENTO | RFC: | ABC010101AB1 | sin partidas")]
        result = await PedimentoPipeline(make_settings()).run_pages(pages, ExtractionStrategy.DETERMINISTIC)

        assert result.record.partidas == []
        errors = [f for f in result.record.validation_results if f.severity == Severity.ERROR]
        assert any(f.message == "No items extracted" for f in errors)

    async def test_simplified_marker_on_first_page(self):
        pages = [PageContent(number=1, text="FORMA SIMPLIFICADA DE PEDIMENTO | RFC: | ABC010101AB1")]
        result = await PedimentoPipeline(make_settings()).run_pages(pages, ExtractionStrategy.DETERMINISTIC)

        assert result.record.header.is_simplified
        items_findings = [f for f in result.record.validation_results if f.field == "Items"]
        assert items_findings[0].severity == Severity.INFO

    async def test_auto_without_client_is_deterministic(self, sample_pages):
        result = await PedimentoPipeline(make_settings()).run_pages(sample_pages, ExtractionStrategy.AUTO)
        assert result.strategy == ExtractionStrategy.DETERMINISTIC
        assert result.fallback_used is False

    async def test_structured_without_client_is_rejected(self, sample_pages):
        with pytest.raises(ValueError):
            await PedimentoPipeline(make_settings()).run_pages(sample_pages, ExtractionStrategy.STRUCTURED)


class TestStructuredPipeline:
    async def test_rate_limited_chunk_recovers(self, fake_client):
        client = fake_client({
            0: json.dumps({"header": HEADER, "partidas": [item(1, valor_comercial=100.0)]}),
            1: [
                TranscriptionRateLimited(),
                TranscriptionRateLimited(),
                json.dumps({"header": None, "partidas": [item(2, valor_comercial=100.0)]}),
            ],
            2: json.dumps({"header": None, "partidas": [item(3, valor_comercial=100.0)]}),
        })
        pipeline = PedimentoPipeline(make_settings(), transcription_client=client)

        result = await pipeline.run_pages(three_pages(), ExtractionStrategy.STRUCTURED)

        assert [i.secuencia for i in result.record.partidas] == [1, 2, 3]
        assert result.chunk_results[1].attempts == 3
        assert all(r.ok for r in result.chunk_results)
        assert result.record.validation_results == []

    async def test_duplicate_sequence_across_chunks(self, fake_client):
        client = fake_client({
            0: json.dumps({"header": HEADER, "partidas": [item(5, part_no="FIRST")]}),
            1: json.dumps({"header": None, "partidas": [item(5, part_no="SECOND")]}),
        })
        pipeline = PedimentoPipeline(make_settings(), transcription_client=client)

        result = await pipeline.run_pages(three_pages()[:2], ExtractionStrategy.STRUCTURED)

        assert len(result.record.partidas) == 1
        assert result.record.partidas[0].part_no == "FIRST"
        assert result.merge_stats.items_before_dedup == 2

    async def test_failed_chunk_degrades_to_partial_record(self, fake_client):
        client = fake_client({
            0: json.dumps({"header": HEADER, "partidas": [item(1)]}),
            1: TranscriptionRateLimited(),
            2: json.dumps({"header": None, "partidas": [item(3)]}),
        })
        pipeline = PedimentoPipeline(make_settings(retry_max_attempts=2), transcription_client=client)

        result = await pipeline.run_pages(three_pages(), ExtractionStrategy.STRUCTURED)

        assert [i.secuencia for i in result.record.partidas] == [1, 3]
        summary = result.summary()
        assert [c.ok for c in summary.chunks] == [True, False, True]
        assert summary.chunks[1].attempts == 2

    async def test_auto_falls_back_when_nothing_parses(self, fake_client, sample_pages):
        client = fake_client({0: "not json", 1: "still not json"})
        pipeline = PedimentoPipeline(make_settings(), transcription_client=client)

        result = await pipeline.run_pages(sample_pages, ExtractionStrategy.AUTO)

        assert result.fallback_used is True
        assert result.strategy == ExtractionStrategy.DETERMINISTIC
        assert len(result.record.partidas) == 2

    async def test_structured_does_not_fall_back(self, fake_client, sample_pages):
        client = fake_client({0: "not json", 1: "still not json"})
        pipeline = PedimentoPipeline(make_settings(), transcription_client=client)

        result = await pipeline.run_pages(sample_pages, ExtractionStrategy.STRUCTURED)

        assert result.fallback_used is False
        assert result.record.partidas == []
        assert any(f.message == "No items extracted" for f in result.record.validation_results)
