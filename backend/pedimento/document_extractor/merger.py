"""
Combine per-chunk fragments into one raw document.

The header comes from the first chunk (in chunk order) that parsed and has
a non-empty header. List fields are concatenated in chunk order and then
deduplicated; the first occurrence of a key wins. Fragments that fail to
parse contribute nothing.
"""

import json
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from pedimento.document_extractor.numbers import parse_int
from pedimento.document_extractor.orchestrator import ChunkResult
from pedimento.schemas.pedimento import RawFragment
from pedimento.services.claude_service import strip_json_fences

logger = logging.getLogger("pedimento.merger")


@dataclass
class MergeStats:
    chunks_total: int = 0
    chunks_parsed: int = 0
    header_chunk: int | None = None
    items_before_dedup: int = 0
    items_after_dedup: int = 0
    unparsed_chunks: list[int] = field(default_factory=list)


def parse_fragment(text: str | None) -> RawFragment | None:
    """Parse one chunk's response text. Returns None when it is not usable JSON."""
    if not text or not text.strip():
        return None
    try:
        data = json.loads(strip_json_fences(text))
    except (json.JSONDecodeError, IndexError):
        return None

    if isinstance(data, list) and len(data) == 1:
        data = data[0]
    if not isinstance(data, dict):
        return None

    try:
        return RawFragment.model_validate(data)
    except ValidationError:
        return None


def _identifier_key(entry: dict) -> tuple:
    return (entry.get("clave"), entry.get("compl1"), entry.get("compl2"), entry.get("compl3"))


def _numero_key(entry: dict) -> Any:
    numero = entry.get("numero")
    return str(numero).strip().upper() if numero not in (None, "") else None


def _item_key(entry: dict) -> Any:
    return parse_int(entry.get("secuencia"))


def dedupe(entries: Iterable[dict], key: Callable[[dict], Any]) -> list[dict]:
    """Keep the first entry per key. Entries with a None key are all kept."""
    seen: set = set()
    unique = []
    for entry in entries:
        k = key(entry)
        if k is None:
            unique.append(entry)
            continue
        if k in seen:
            continue
        seen.add(k)
        unique.append(entry)
    return unique


def merge_fragments(results: Sequence[ChunkResult]) -> tuple[RawFragment, MergeStats]:
    """Merge chunk results into one fragment, independent of their input order."""
    stats = MergeStats(chunks_total=len(results))
    merged: dict[str, Any] = {"header": None, "partidas": [], "facturas": [], "contenedores": [], "identificadores": []}

    for result in sorted(results, key=lambda r: r.index):
        fragment = parse_fragment(result.text)
        if fragment is None:
            if result.text is not None:
                stats.unparsed_chunks.append(result.index)
                logger.warning("Chunk %d returned unparseable JSON, skipped", result.index)
            continue
        stats.chunks_parsed += 1

        if fragment.has_header:
            if merged["header"] is None:
                merged["header"] = dict(fragment.header)
                stats.header_chunk = result.index
            else:
                logger.debug("Chunk %d header discarded (chunk %d already won)", result.index, stats.header_chunk)

        merged["partidas"].extend(fragment.partidas)
        merged["facturas"].extend(fragment.facturas)
        merged["contenedores"].extend(fragment.contenedores)
        merged["identificadores"].extend(fragment.identificadores)

    stats.items_before_dedup = len(merged["partidas"])
    merged["partidas"] = dedupe(merged["partidas"], _item_key)
    merged["facturas"] = dedupe(merged["facturas"], _numero_key)
    merged["contenedores"] = dedupe(merged["contenedores"], _numero_key)
    merged["identificadores"] = dedupe(merged["identificadores"], _identifier_key)
    stats.items_after_dedup = len(merged["partidas"])

    logger.info(
        "Merged %d/%d chunks: header from chunk %s, items %d -> %d after dedup",
        stats.chunks_parsed,
        stats.chunks_total,
        stats.header_chunk,
        stats.items_before_dedup,
        stats.items_after_dedup,
    )
    return RawFragment.model_validate(merged), stats
