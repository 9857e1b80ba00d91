import json

import pytest
from httpx import ASGITransport, AsyncClient

from pedimento.document_extractor.parser import PageContent

# Page 1: header, liquidation table, invoice, container, document identifiers
HEADER_PAGE = (
    "PEDIMENTO | NUM. PEDIMENTO: | 24 | 47 | 3456 | 4001234 | T. OPER: | IMP | "
    "CVE. PEDIMENTO: | A1 | REGIMEN: | IMD | TIPO CAMBIO: | 17.2500 | "
    "PESO BRUTO: | 1,250.500 | ADUANA E/S: | 240 | "
    "MEDIOS DE TRANSPORTE | ENTRADA/SALIDA: | 7 | "
    "VAL. DOLARES: | 10,000.00 | VAL. ADUANA: | 172,500.00 | "
    "PRECIO PAGADO/VALOR COMERCIAL: | 10,000.00 | "
    "DATOS DEL IMPORTADOR | RFC: | ABC010101AB1 | "
    "FECHAS | ENTRADA | 01/02/2024 | PAGO | 05/02/2024 | "
    "CUADRO DE LIQUIDACION | CONCEPTO | F.P. | IMPORTE | "
    "DTA | 0 | 1,380.00 | IVA | 0 | 28,000.00 | IGI | 0 | 8,625.00 | "
    "PRV | 0 | 290.00 | CNT | 0 | 50.00 | EFECTIVO | 38,345.00 | "
    "NUM. FACTURA: | INV-1001 | 15/01/2024 | FOB | USD | "
    "CONTENEDOR | MSCU1234567 | 22 | CANDADOS: | SL123456 | "
    "IDENTIFICADORES | CI | 2024-001 | IM | 1234-2006 | "
    "OBSERVACIONES | MERCANCIA NUEVA"
)

# Page 2: two partidas
ITEMS_PAGE = (
    "No. De parte: | PN-100 | SEC | 1 | FRACCION | 85043101 | NICO | 00 | "
    "VINC. | 0 | MET. VAL. | 1 | UMC | 6 | CANTIDAD UMC | 100.000 | "
    "UMT | 6 | CANTIDAD UMT | 100.000 | PAIS V/C | USA | PAIS O/D | USA | "
    "DESCRIPCION: | TRANSFORMADORES ELECTRICOS | VAL. ADU. | 86,250.00 | "
    "PRECIO PAGADO | 5,000.00 | PRECIO UNIT. | 50.00 | "
    "IGI | 5 | 1 | 0 | 4,312.50 | IVA | 16 | 1 | 0 | 14,000.00 | "
    "IDENTIF. | TL | USA | OBSERVACIONES A NIVEL PARTIDA | SIN OBSERVACIONES | "
    "No. De parte: | PN-200 | SEC | 2 | FRACCION | 7308.90.99 | NICO | 99 | "
    "UMC | 1 | CANTIDAD UMC | 50.000 | PAIS O/D | CHN | "
    "DESCRIPCION: | ESTRUCTURAS DE ACERO | VAL. ADU. | 86,250.00 | "
    "PRECIO PAGADO | 5,000.00 | "
    "IGI | 5 | 1 | 0 | 4,312.50 | IVA | 16 | 1 | 0 | 14,000.00 | "
    "C1 | PERMISO123456 | 5,000.00 | 50.000"
)


@pytest.fixture
def sample_pages() -> list[PageContent]:
    """Two-page pedimento as the PDF parser would emit it."""
    return [PageContent(number=1, text=HEADER_PAGE), PageContent(number=2, text=ITEMS_PAGE)]


@pytest.fixture
def sample_text_file(tmp_path) -> str:
    """The sample pedimento as a form-feed separated text dump."""
    path = tmp_path / "pedimento.txt"
    path.write_text(HEADER_PAGE + "\f" + ITEMS_PAGE + "\f")
    return str(path)


@pytest.fixture
def chunk_fragment():
    """JSON text for one structured-extraction chunk."""

    def _make(header: dict | None = None, partidas: list[dict] | None = None, **extra) -> str:
        return json.dumps({"header": header, "partidas": partidas or [], **extra})

    return _make


class FakeTranscriptionClient:
    """Returns canned responses per chunk index; a response may be an exception or a list of them."""

    def __init__(self, responses: dict):
        self.responses = {k: list(v) if isinstance(v, list) else [v] for k, v in responses.items()}
        self.calls: list[int] = []

    async def transcribe(self, chunk, schema: str) -> str:
        self.calls.append(chunk.index)
        queue = self.responses.get(chunk.index) or ['{"header": null, "partidas": []}']
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def fake_client():
    return FakeTranscriptionClient


@pytest.fixture
async def client(tmp_path):
    from pedimento.config import settings
    from pedimento.dependencies import get_pipeline
    from pedimento.document_extractor.pipeline import PedimentoPipeline
    from pedimento.main import app

    # Override upload dir to temp
    original_upload_dir = settings.upload_dir
    settings.upload_dir = str(tmp_path)

    # Never reach the real API from tests
    original_key = settings.anthropic_api_key
    settings.anthropic_api_key = ""

    app.dependency_overrides[get_pipeline] = lambda: PedimentoPipeline(settings)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    settings.upload_dir = original_upload_dir
    settings.anthropic_api_key = original_key
