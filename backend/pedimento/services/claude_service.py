"""
Claude API service for pedimento transcription.

One call per page chunk: page images (scanned pages) and page text go in,
JSON matching PEDIMENTO_SCHEMA comes out. Rate limiting is surfaced as
TranscriptionRateLimited so the orchestrator can back off and retry;
every other API failure is a TranscriptionError.
"""

import json
import logging
from typing import Protocol

import anthropic

from pedimento.config import Settings
from pedimento.document_extractor.chunker import PageChunk
from pedimento.document_extractor.errors import TranscriptionError, TranscriptionRateLimited

logger = logging.getLogger("pedimento.claude")

TRANSCRIPTION_SYSTEM_PROMPT = """You are a Mexican customs (pedimento, Anexo 22) transcription specialist. You will receive a contiguous range of pages from a single pedimento.

Transcribe only what is printed on these pages. The document header (pedimento number, RFC, declared values, liquidation table) normally appears on the first page only: if these pages do not show it, return "header": null. Never invent line items: if these pages contain no partidas, return an empty "partidas" list.

Use numeric values without currency symbols or thousands separators. Keep tariff fractions as printed digits. Dates as DD/MM/YYYY.

Respond with valid JSON only, no additional text."""

PEDIMENTO_SCHEMA = """{
  "header": {
    "pedimento_no": "15 digits, no spaces",
    "rfc": "string or null",
    "curp": "string or null",
    "nombre": "string or null",
    "domicilio": "string or null",
    "clave_documento": "2 chars, e.g. A1, IN, V1",
    "tipo_operacion": "IMP, EXP or TRA",
    "regimen": "string or null",
    "aduana": "string or null",
    "patente": "string or null",
    "fechas": [{"tipo": "Entrada|Pago|Presentacion|Extraccion", "fecha": "DD/MM/YYYY"}],
    "tipo_cambio": 0,
    "peso_bruto": 0,
    "valores": {"dolares": 0, "aduana": 0, "comercial": 0, "seguros": 0, "fletes": 0, "embalajes": 0, "otros": 0},
    "tasas_globales": [{"clave": "DTA", "tasa": 0, "tipo_tasa": "string", "forma_pago": "string", "importe": 0}],
    "importes": {"dta": 0, "iva": 0, "igi": 0, "prv": 0, "total_efectivo": 0},
    "transporte": {"medios": ["string"], "candados": ["string"], "identificacion": "string or null", "pais": "string or null"},
    "guias": [{"numero": "string", "tipo": "Master|House"}],
    "observaciones": "string or null"
  },
  "facturas": [{"numero": "string", "fecha": "DD/MM/YYYY", "incoterm": "string", "moneda": "string", "valor_dolares": 0, "proveedor": "string"}],
  "contenedores": [{"numero": "string", "tipo": "string"}],
  "identificadores": [{"clave": "string", "compl1": "string", "compl2": "string", "compl3": "string"}],
  "partidas": [{
    "secuencia": 1,
    "fraccion": "8 digits",
    "nico": "2 digits",
    "part_no": "string or null",
    "description": "string",
    "qty": 0, "umc": "string", "qty_umt": 0, "umt": "string",
    "vinculacion": "string", "metodo_valoracion": "string",
    "pais_vendedor": "3 letters", "pais_origen": "3 letters",
    "unit_price": 0, "valor_comercial": 0, "valor_aduana": 0, "valor_dolares": 0,
    "identifiers": [{"clave": "string", "compl1": "string", "compl2": "string", "compl3": "string"}],
    "contribuciones": [{"clave": "IGI|IVA|DTA|IEPS|...", "tasa": 0, "tipo_tasa": "string", "forma_pago": "string", "importe": 0}],
    "regulaciones": [{"clave": "string", "permiso": "string"}],
    "observaciones": "string or null"
  }]
}"""


class TranscriptionClient(Protocol):
    """Anything that can turn a page chunk into schema-conforming JSON text."""

    async def transcribe(self, chunk: PageChunk, schema: str) -> str: ...


def strip_json_fences(response_text: str) -> str:
    """Remove markdown code fences around a JSON payload."""
    text = response_text.strip()
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0].strip()
    elif "```" in text:
        text = text.split("```")[1].split("```")[0].strip()
    return text


def parse_json_response(response_text: str) -> dict | list:
    """Parse JSON from Claude response, handling markdown code blocks."""
    try:
        return json.loads(strip_json_fences(response_text))
    except (json.JSONDecodeError, IndexError) as e:
        raise ValueError(f"Claude response was not valid JSON: {e}") from e


def _build_content(
    text: str = "", images: list[dict] | None = None, extra_text: str = ""
) -> list[dict]:
    """Build Claude message content array supporting text and vision."""
    content: list[dict] = []

    if images:
        for img in images:
            content.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": img["media_type"],
                    "data": img["base64"],
                },
            })

    text_parts = []
    if extra_text.strip():
        text_parts.append(extra_text)
    if text.strip():
        text_parts.append(text)

    if text_parts:
        content.append({"type": "text", "text": "\n\n".join(text_parts)})

    return content


def _retry_after(error: anthropic.RateLimitError) -> float | None:
    response = getattr(error, "response", None)
    if response is None:
        return None
    value = response.headers.get("retry-after")
    try:
        return float(value) if value else None
    except ValueError:
        return None


class ClaudeService:
    def __init__(self, settings: Settings, client: anthropic.AsyncAnthropic | None = None):
        self.client = client or anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        self.model = settings.claude_model
        self.max_tokens = settings.claude_max_tokens

    async def transcribe(self, chunk: PageChunk, schema: str = PEDIMENTO_SCHEMA) -> str:
        """Transcribe one page chunk to JSON text.

        Args:
            chunk: Consecutive pages (text and/or rendered images).
            schema: JSON structure the response must follow.

        Returns:
            Raw response text (JSON, possibly fenced).

        Raises:
            TranscriptionRateLimited: The API returned 429.
            TranscriptionError: Any other API failure or an empty response.
        """
        prompt = (
            f"Pages {chunk.first_page}-{chunk.last_page} of {chunk.total_pages}.\n"
            f"Transcribe these pages into the following JSON structure:\n\n{schema}\n\n"
            "Page content:"
        )
        content = _build_content(text=chunk.text, images=chunk.images, extra_text=prompt)

        try:
            message = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=TRANSCRIPTION_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": content}],
            )
        except anthropic.RateLimitError as e:
            raise TranscriptionRateLimited(str(e), retry_after=_retry_after(e)) from e
        except anthropic.APIError as e:
            raise TranscriptionError(f"Claude API error on chunk {chunk.index}: {e}") from e

        text_blocks = [b.text for b in message.content if getattr(b, "type", "text") == "text"]
        if not text_blocks:
            raise TranscriptionError(f"Empty Claude response for chunk {chunk.index}")

        logger.debug(
            "Chunk %d transcribed (pages %d-%d, %d chars)",
            chunk.index,
            chunk.first_page,
            chunk.last_page,
            sum(len(t) for t in text_blocks),
        )
        return "".join(text_blocks)

    async def ping(self) -> bool:
        """Minimal call to check the API key and model are usable."""
        try:
            await self.client.messages.create(
                model=self.model,
                max_tokens=5,
                messages=[{"role": "user", "content": "ping"}],
            )
            return True
        except anthropic.APIError as e:
            logger.warning("Claude ping failed: %s", e)
            return False
