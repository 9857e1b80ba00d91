import logging

from fastapi import APIRouter, Depends, HTTPException, UploadFile

from pedimento.audit.invoice_audit import run_audit
from pedimento.compliance.engine import ComplianceEngine
from pedimento.config import settings
from pedimento.dependencies import get_compliance_engine, get_pipeline
from pedimento.document_extractor.pipeline import PedimentoPipeline
from pedimento.schemas.audit import AuditReport, AuditRequest
from pedimento.schemas.extraction import ExtractionStrategy, PedimentoResponse
from pedimento.schemas.pedimento import PedimentoRecord
from pedimento.services.document_service import (
    get_file_extension,
    get_mime_type,
    remove_upload,
    save_upload,
)

logger = logging.getLogger("pedimento.api")

router = APIRouter()


@router.post("/extract", response_model=PedimentoResponse)
async def extract_pedimento(
    file: UploadFile,
    strategy: ExtractionStrategy | None = None,
    pipeline: PedimentoPipeline = Depends(get_pipeline),
) -> PedimentoResponse:
    """Extract and validate an uploaded pedimento (PDF, image or text dump)."""
    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")

    file_ext = get_file_extension(file.filename)
    if file_ext not in settings.allowed_file_types:
        raise HTTPException(
            status_code=400,
            detail=f"File type '{file_ext}' not allowed. Allowed: {', '.join(sorted(settings.allowed_file_types))}",
        )

    content = await file.read()
    if len(content) > settings.max_upload_size_mb * 1024 * 1024:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size: {settings.max_upload_size_mb}MB",
        )
    await file.seek(0)

    _, file_path = await save_upload(file, settings)
    try:
        result = await pipeline.run(
            file_path=file_path,
            file_type=file_ext,
            mime_type=get_mime_type(file.filename),
            strategy=strategy,
        )
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    finally:
        try:
            await remove_upload(file_path)
        except OSError as e:
            logger.warning("Could not remove upload %s: %s", file_path, e)

    return PedimentoResponse(filename=file.filename, record=result.record, summary=result.summary())


@router.post("/validate", response_model=PedimentoRecord)
async def validate_pedimento(
    record: PedimentoRecord,
    engine: ComplianceEngine = Depends(get_compliance_engine),
) -> PedimentoRecord:
    """Re-run the full compliance pass; the returned findings replace any sent in."""
    engine.validate(record)
    return record


@router.post("/audit", response_model=AuditReport)
async def audit_pedimento(request: AuditRequest) -> AuditReport:
    """Audit pedimento items against commercial-invoice lines."""
    if not request.invoice_lines:
        raise HTTPException(status_code=400, detail="No invoice lines provided")
    return run_audit(request.record, request.invoice_lines, value_tolerance=request.value_tolerance)
