"""
Concurrent structured extraction over page chunks.

Every chunk is dispatched to the transcription client at once, capped by a
semaphore. Each dispatch has its own backoff budget for rate limiting.
A chunk that still fails degrades to an empty ChunkResult; it never stops
the other chunks. Results land in a slot per chunk index, so the returned
list is in chunk order no matter which call finished first.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from pedimento.config import Settings
from pedimento.document_extractor.chunker import PageChunk
from pedimento.document_extractor.errors import RetryExhausted
from pedimento.document_extractor.retry import BackoffPolicy, call_with_backoff
from pedimento.services.claude_service import PEDIMENTO_SCHEMA, TranscriptionClient

logger = logging.getLogger("pedimento.orchestrator")


@dataclass
class ChunkResult:
    """Outcome of one chunk dispatch. ``text`` is None when the chunk degraded."""

    index: int
    text: str | None = None
    error: str | None = None
    attempts: int = 0
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.text is not None


class StructuredExtractionOrchestrator:
    def __init__(
        self,
        client: TranscriptionClient,
        *,
        max_concurrency: int = 3,
        policy: BackoffPolicy | None = None,
        schema: str = PEDIMENTO_SCHEMA,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.client = client
        self.max_concurrency = max_concurrency
        self.policy = policy or BackoffPolicy()
        self.schema = schema
        self._sleep = sleep
        self._rng = rng

    @classmethod
    def from_settings(cls, client: TranscriptionClient, settings: Settings) -> "StructuredExtractionOrchestrator":
        return cls(
            client,
            max_concurrency=settings.max_concurrent_chunks,
            policy=BackoffPolicy(
                max_attempts=settings.retry_max_attempts,
                base_delay=settings.retry_base_delay_seconds,
                max_delay=settings.retry_max_delay_seconds,
                jitter_ratio=settings.retry_jitter_ratio,
            ),
        )

    async def run(self, chunks: Sequence[PageChunk]) -> list[ChunkResult]:
        """Transcribe all chunks concurrently.

        Args:
            chunks: Chunks from chunk_pages, in page order.

        Returns:
            One ChunkResult per chunk, ordered by chunk index.
        """
        if not chunks:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)
        ordered = sorted(chunks, key=lambda c: c.index)
        slots: list[ChunkResult | None] = [None] * len(ordered)

        async def dispatch(slot: int, chunk: PageChunk) -> None:
            async with semaphore:
                slots[slot] = await self._run_chunk(chunk)

        logger.info("Dispatching %d chunks (concurrency %d)", len(ordered), self.max_concurrency)
        await asyncio.gather(*(dispatch(i, chunk) for i, chunk in enumerate(ordered)))

        results = [r for r in slots if r is not None]
        failed = sum(1 for r in results if not r.ok)
        if failed:
            logger.warning("%d of %d chunks degraded to empty", failed, len(results))
        return results

    async def _run_chunk(self, chunk: PageChunk) -> ChunkResult:
        start = time.monotonic()
        label = f"chunk {chunk.index}"
        attempts = 0

        async def transcribe() -> str:
            nonlocal attempts
            attempts += 1
            return await self.client.transcribe(chunk, self.schema)

        try:
            text, _ = await call_with_backoff(
                transcribe,
                self.policy,
                sleep=self._sleep,
                rng=self._rng,
                label=label,
            )
        except RetryExhausted as e:
            logger.warning("%s degraded: rate limited on all %d attempts", label, e.attempts)
            return ChunkResult(
                index=chunk.index,
                error=f"rate limited after {e.attempts} attempts",
                attempts=attempts,
                duration_ms=_elapsed_ms(start),
            )
        except Exception as e:
            logger.warning("%s degraded after %d attempts: %s: %s", label, attempts, type(e).__name__, e)
            return ChunkResult(
                index=chunk.index,
                error=f"{type(e).__name__}: {e}",
                attempts=attempts,
                duration_ms=_elapsed_ms(start),
            )

        return ChunkResult(index=chunk.index, text=text, attempts=attempts, duration_ms=_elapsed_ms(start))


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
