"""
PDF text-layer reader for pedimento documents.

Supports:
- PDF: per-page word runs via pdfplumber, joined with " | "; scanned pages
  (little or no text layer) are also rendered to PNG for vision transcription
- Images (PNG/JPG/TIFF): a single page carried as a base64 image
- Plain text: pre-extracted text dumps, pages separated by form feeds
"""

import base64
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path

import aiofiles
import pdfplumber
from PIL import Image

logger = logging.getLogger("pedimento.parser")

# Token delimiter used when joining the text runs of one page
TOKEN_SEPARATOR = " | "

# Minimum chars per page to consider a page "text-based" vs "scanned"
SCANNED_THRESHOLD = 50

# Max image dimension before resizing (Claude vision has limits)
MAX_IMAGE_DIMENSION = 2048


@dataclass
class PageContent:
    """One extracted page."""

    number: int  # 1-based
    text: str = ""
    image: dict | None = None  # {"base64": str, "media_type": str}

    @property
    def is_scanned(self) -> bool:
        return len(self.text.strip()) < SCANNED_THRESHOLD


@dataclass
class ParsedDocument:
    """Result of parsing a document file."""

    pages: list[PageContent] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def has_text(self) -> bool:
        return any(p.text.strip() for p in self.pages)

    @property
    def has_images(self) -> bool:
        return any(p.image for p in self.pages)


def _encode_png(img: Image.Image) -> dict:
    if max(img.size) > MAX_IMAGE_DIMENSION:
        ratio = MAX_IMAGE_DIMENSION / max(img.size)
        new_size = (int(img.size[0] * ratio), int(img.size[1] * ratio))
        img = img.resize(new_size, Image.Resampling.LANCZOS)

    img_bytes = io.BytesIO()
    img.save(img_bytes, format="PNG")
    img_bytes.seek(0)
    return {
        "base64": base64.standard_b64encode(img_bytes.read()).decode("utf-8"),
        "media_type": "image/png",
    }


class DocumentParser:
    """Routes documents to the appropriate page-extraction strategy."""

    async def parse(self, file_path: str, file_type: str, mime_type: str) -> ParsedDocument:
        """Parse a document file into ordered pages.

        Args:
            file_path: Path to the document file on disk.
            file_type: File extension (e.g., "pdf", "png", "txt").
            mime_type: MIME type of the file.

        Returns:
            ParsedDocument with one PageContent per page.
        """
        file_type = file_type.lower()

        if file_type == "pdf":
            return await self._parse_pdf(file_path)
        elif file_type in ("png", "jpg", "jpeg", "tiff", "tif"):
            return await self._parse_image(file_path, mime_type)
        else:
            return await self._parse_text(file_path)

    async def _parse_pdf(self, file_path: str) -> ParsedDocument:
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"PDF not found: {file_path}")

        pages: list[PageContent] = []
        scanned_pages = 0

        with pdfplumber.open(path) as pdf:
            for i, page in enumerate(pdf.pages, start=1):
                words = page.extract_words(keep_blank_chars=True, use_text_flow=True)
                page_text = TOKEN_SEPARATOR.join(w["text"].strip() for w in words if w["text"].strip())
                content = PageContent(number=i, text=page_text)

                if content.is_scanned:
                    scanned_pages += 1
                    page_image = page.to_image(resolution=200)
                    content.image = _encode_png(page_image.original)
                    logger.warning("Page %d has little text (%d chars), rendered for vision", i, len(page_text))

                pages.append(content)

        logger.info(
            "Parsed PDF: %d pages, %d scanned, %d chars text",
            len(pages),
            scanned_pages,
            sum(len(p.text) for p in pages),
        )

        return ParsedDocument(
            pages=pages,
            metadata={"scanned_pages": scanned_pages, "parser": "pdfplumber"},
        )

    async def _parse_image(self, file_path: str, mime_type: str) -> ParsedDocument:
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Image not found: {file_path}")

        with Image.open(path) as img:
            encoded = _encode_png(img)

        return ParsedDocument(
            pages=[PageContent(number=1, image=encoded)],
            metadata={"original_mime_type": mime_type, "scanned_pages": 1},
        )

    async def _parse_text(self, file_path: str) -> ParsedDocument:
        """Pre-extracted text: one page per form-feed separated block."""
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        async with aiofiles.open(path, mode="r", errors="replace") as f:
            content = await f.read()

        blocks = content.split("\f")
        pages = [PageContent(number=i, text=block.strip()) for i, block in enumerate(blocks, start=1)]
        # A trailing form feed leaves an empty last block
        while len(pages) > 1 and not pages[-1].text:
            pages.pop()

        return ParsedDocument(pages=pages, metadata={"parser": "text"})
