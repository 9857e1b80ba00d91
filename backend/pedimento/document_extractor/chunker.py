"""
Page chunking for large pedimentos.

Splits an ordered page sequence into fixed-size groups that can be
transcribed independently. A chunk never splits a page, and its index is
the sort key used when per-chunk results are merged back together.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field

from pedimento.document_extractor.parser import PageContent

# Separator between pages when a document's text is joined. The form feed never
# occurs inside page text, so it marks page boundaries on its own.
PAGE_SEPARATOR = "\n\f\n"


@dataclass(frozen=True)
class PageChunk:
    """A bounded group of consecutive pages."""

    index: int
    start: int  # 0-based page index, inclusive
    end: int  # 0-based page index, exclusive
    total_pages: int
    pages: tuple[PageContent, ...] = field(default_factory=tuple)

    @property
    def first_page(self) -> int:
        return self.start + 1

    @property
    def last_page(self) -> int:
        return self.end

    @property
    def text(self) -> str:
        return PAGE_SEPARATOR.join(p.text for p in self.pages)

    @property
    def images(self) -> list[dict]:
        return [p.image for p in self.pages if p.image]


def chunk_pages(pages: Sequence[PageContent], chunk_size: int) -> list[PageChunk]:
    """Group pages into ceil(N / chunk_size) chunks, in page order."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")

    total = len(pages)
    chunks = []
    for index, start in enumerate(range(0, total, chunk_size)):
        end = min(start + chunk_size, total)
        chunks.append(
            PageChunk(
                index=index,
                start=start,
                end=end,
                total_pages=total,
                pages=tuple(pages[start:end]),
            )
        )
    return chunks


def join_pages(pages: Sequence[PageContent]) -> str:
    """Full document text with a stable page separator."""
    return PAGE_SEPARATOR.join(p.text for p in pages)
