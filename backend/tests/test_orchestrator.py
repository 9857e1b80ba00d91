"""Tests for the concurrent chunk orchestrator."""

import asyncio

import pytest

from pedimento.document_extractor.chunker import chunk_pages
from pedimento.document_extractor.errors import TranscriptionError, TranscriptionRateLimited
from pedimento.document_extractor.orchestrator import StructuredExtractionOrchestrator
from pedimento.document_extractor.parser import PageContent
from pedimento.document_extractor.retry import BackoffPolicy


async def no_sleep(delay: float) -> None:
    return None


def make_chunks(pages: int, size: int):
    return chunk_pages([PageContent(number=i, text=f"page {i}") for i in range(1, pages + 1)], size)


def make_orchestrator(client, **kwargs) -> StructuredExtractionOrchestrator:
    kwargs.setdefault("policy", BackoffPolicy(max_attempts=5, base_delay=0.01, jitter_ratio=0))
    return StructuredExtractionOrchestrator(client, sleep=no_sleep, **kwargs)


class TestOrchestrator:
    async def test_all_chunks_succeed_in_order(self, fake_client):
        client = fake_client({0: '{"n": 0}', 1: '{"n": 1}', 2: '{"n": 2}'})
        results = await make_orchestrator(client).run(make_chunks(10, 4))

        assert [r.index for r in results] == [0, 1, 2]
        assert [r.text for r in results] == ['{"n": 0}', '{"n": 1}', '{"n": 2}']
        assert all(r.ok and r.attempts == 1 for r in results)

    async def test_rate_limited_chunk_retried_until_success(self, fake_client):
        client = fake_client({
            0: '{"n": 0}',
            1: [TranscriptionRateLimited(), TranscriptionRateLimited(), '{"n": 1}'],
            2: '{"n": 2}',
        })
        results = await make_orchestrator(client).run(make_chunks(10, 4))

        assert all(r.ok for r in results)
        assert results[1].attempts == 3
        assert results[1].text == '{"n": 1}'
        assert client.calls.count(1) == 3

    async def test_exhausted_chunk_degrades_without_stopping_others(self, fake_client):
        client = fake_client({0: '{"n": 0}', 1: TranscriptionRateLimited(), 2: '{"n": 2}'})
        orchestrator = make_orchestrator(client, policy=BackoffPolicy(max_attempts=3, base_delay=0, jitter_ratio=0))

        results = await orchestrator.run(make_chunks(10, 4))

        assert [r.ok for r in results] == [True, False, True]
        assert results[1].text is None
        assert results[1].attempts == 3
        assert "rate limited" in results[1].error

    async def test_non_retryable_failure_is_one_attempt(self, fake_client):
        client = fake_client({0: TranscriptionError("boom"), 1: '{"n": 1}'})
        results = await make_orchestrator(client).run(make_chunks(8, 4))

        assert results[0].ok is False
        assert results[0].attempts == 1
        assert results[0].error == "TranscriptionError: boom"
        assert client.calls.count(0) == 1
        assert results[1].ok

    async def test_failure_after_rate_limits_counts_every_attempt(self, fake_client):
        client = fake_client({
            0: [TranscriptionRateLimited(), TranscriptionRateLimited(), TranscriptionError("boom")],
        })
        results = await make_orchestrator(client).run(make_chunks(4, 4))

        assert results[0].ok is False
        assert results[0].attempts == 3
        assert results[0].error == "TranscriptionError: boom"
        assert client.calls.count(0) == 3

    async def test_results_ordered_regardless_of_completion_order(self):
        class SlowFirstClient:
            async def transcribe(self, chunk, schema):
                await asyncio.sleep(0.03 if chunk.index == 0 else 0)
                return f'{{"n": {chunk.index}}}'

        results = await make_orchestrator(SlowFirstClient()).run(make_chunks(12, 4))
        assert [r.index for r in results] == [0, 1, 2]
        assert results[0].text == '{"n": 0}'

    async def test_concurrency_is_bounded(self):
        state = {"active": 0, "peak": 0}

        class CountingClient:
            async def transcribe(self, chunk, schema):
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
                await asyncio.sleep(0.01)
                state["active"] -= 1
                return "{}"

        await make_orchestrator(CountingClient(), max_concurrency=2).run(make_chunks(12, 2))
        assert state["peak"] == 2

    async def test_no_chunks(self, fake_client):
        assert await make_orchestrator(fake_client({})).run([]) == []

    def test_rejects_zero_concurrency(self, fake_client):
        with pytest.raises(ValueError):
            StructuredExtractionOrchestrator(fake_client({}), max_concurrency=0)
