"""
Pedimento extraction pipeline.

Flow:
  1. Parse document → ordered pages (text and/or rendered images)
  2. Extract a raw fragment:
     - deterministic: pattern tables over the joined page text
     - structured: chunk pages → concurrent Claude transcription → merge
     - auto: structured when a client is configured, deterministic when
       every chunk came back empty
  3. Map the fragment to a canonical PedimentoRecord
  4. Run the compliance engine (replaces the record's findings)
"""

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

from pedimento.compliance.engine import ComplianceEngine
from pedimento.compliance.policy import load_policy
from pedimento.config import Settings
from pedimento.document_extractor import patterns
from pedimento.document_extractor.chunker import chunk_pages, join_pages
from pedimento.document_extractor.field_extractor import FieldExtractor
from pedimento.document_extractor.mapper import map_to_record
from pedimento.document_extractor.merger import MergeStats, merge_fragments
from pedimento.document_extractor.orchestrator import ChunkResult, StructuredExtractionOrchestrator
from pedimento.document_extractor.parser import DocumentParser, PageContent
from pedimento.schemas.extraction import ChunkSummary, ExtractionStrategy, ExtractionSummary, FindingCounts
from pedimento.schemas.pedimento import PedimentoRecord, RawFragment
from pedimento.services.claude_service import ClaudeService, TranscriptionClient

logger = logging.getLogger("pedimento.pipeline")


@dataclass
class PipelineResult:
    """Complete result of one pipeline run."""

    record: PedimentoRecord
    strategy: ExtractionStrategy
    fallback_used: bool = False
    chunk_results: list[ChunkResult] = field(default_factory=list)
    merge_stats: MergeStats | None = None
    page_count: int = 0
    processing_time_ms: int = 0
    metadata: dict = field(default_factory=dict)

    def summary(self) -> ExtractionSummary:
        return ExtractionSummary(
            strategy=self.strategy,
            fallback_used=self.fallback_used,
            page_count=self.page_count,
            item_count=len(self.record.partidas),
            findings=FindingCounts(**self.record.findings_by_severity()),
            chunks=[
                ChunkSummary(index=r.index, ok=r.ok, attempts=r.attempts, error=r.error, duration_ms=r.duration_ms)
                for r in self.chunk_results
            ],
            processing_time_ms=self.processing_time_ms,
        )


class PedimentoPipeline:
    """Orchestrates parsing, extraction, mapping and validation for one document."""

    def __init__(
        self,
        settings: Settings,
        transcription_client: TranscriptionClient | None = None,
        engine: ComplianceEngine | None = None,
        parser: DocumentParser | None = None,
    ):
        self.settings = settings
        self.parser = parser or DocumentParser()
        if transcription_client is None and settings.anthropic_api_key:
            transcription_client = ClaudeService(settings)
        self.transcription_client = transcription_client
        self.engine = engine or ComplianceEngine(policy=load_policy(settings.compliance_policy_path))
        self.field_extractor = FieldExtractor(tax_lookahead=settings.tax_lookahead_tokens)

    async def run(
        self,
        file_path: str,
        file_type: str,
        mime_type: str,
        strategy: ExtractionStrategy | None = None,
    ) -> PipelineResult:
        """Run the full pipeline on a document file.

        Args:
            file_path: Path to document file on disk.
            file_type: File extension (e.g., "pdf", "png", "txt").
            mime_type: MIME type of the file.
            strategy: Extraction path; defaults to settings.default_strategy.

        Returns:
            PipelineResult with the validated record.
        """
        logger.info("Parsing document: %s (type=%s)", file_path, file_type)
        parsed = await self.parser.parse(file_path, file_type, mime_type)

        if not parsed.has_text and not parsed.has_images:
            raise ValueError("Document has no extractable content (no text or images)")

        result = await self.run_pages(parsed.pages, strategy)
        result.metadata.update(parsed.metadata)
        return result

    async def run_pages(
        self,
        pages: Sequence[PageContent],
        strategy: ExtractionStrategy | None = None,
    ) -> PipelineResult:
        """Extract, map and validate already-parsed pages."""
        start_time = time.monotonic()
        requested = ExtractionStrategy(strategy or self.settings.default_strategy)

        if requested == ExtractionStrategy.STRUCTURED and self.transcription_client is None:
            raise ValueError("Structured extraction requires a transcription client (set ANTHROPIC_API_KEY)")

        use_structured = requested == ExtractionStrategy.STRUCTURED or (
            requested == ExtractionStrategy.AUTO and self.transcription_client is not None
        )

        chunk_results: list[ChunkResult] = []
        merge_stats: MergeStats | None = None
        fallback_used = False

        if use_structured:
            fragment, chunk_results, merge_stats = await self._extract_structured(pages)
            used = ExtractionStrategy.STRUCTURED
            if requested == ExtractionStrategy.AUTO and merge_stats.chunks_parsed == 0:
                logger.warning("All %d chunks came back empty, falling back to deterministic extraction", len(chunk_results))
                fragment = self.field_extractor.extract_pages(pages)
                used = ExtractionStrategy.DETERMINISTIC
                fallback_used = True
        else:
            fragment = self.field_extractor.extract_pages(pages)
            used = ExtractionStrategy.DETERMINISTIC

        record = map_to_record(fragment, raw_text=join_pages(pages))
        if pages and any(marker in pages[0].text for marker in patterns.SIMPLIFIED_MARKERS):
            record.header.is_simplified = True

        self.engine.validate(record)

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "Pipeline complete: strategy=%s, %d pages, %d items, %d findings in %dms",
            used.value,
            len(pages),
            len(record.partidas),
            len(record.validation_results),
            elapsed_ms,
        )

        return PipelineResult(
            record=record,
            strategy=used,
            fallback_used=fallback_used,
            chunk_results=chunk_results,
            merge_stats=merge_stats,
            page_count=len(pages),
            processing_time_ms=elapsed_ms,
            metadata={"requested_strategy": requested.value},
        )

    async def _extract_structured(
        self, pages: Sequence[PageContent]
    ) -> tuple[RawFragment, list[ChunkResult], MergeStats]:
        chunks = chunk_pages(pages, self.settings.chunk_size_pages)
        orchestrator = StructuredExtractionOrchestrator.from_settings(self.transcription_client, self.settings)
        results = await orchestrator.run(chunks)
        fragment, stats = merge_fragments(results)
        return fragment, results, stats
