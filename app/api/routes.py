import logging
from collections.abc import Callable
from functools import wraps
from typing import Any
from uuid import uuid4

from fastapi import APIRouter
from fastapi import HTTPException
from fastapi import Request
from fastapi.responses import Response
from fastapi.responses import StreamingResponse

from app.core.config import settings
from app.core.exceptions import EnhancementServiceError
from app.core.exceptions import EnhancementTimeout
from app.core.exceptions import PipelineError
from app.core.security import Depends
from app.core.security import verify_api_key
from app.generation_logic.report_finalization import _build_report_response
from app.generation_logic.report_pipeline import run_report_pipeline

# Generation-logic helpers -------------------------------------------------
from app.generation_logic.stream_orchestrator import _stream_progress_events
from app.models.report_models import EnhanceTextRequest
from app.models.report_models import GenerateReportRequest
from app.services import llm
from app.services.template_store import inspect_template

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# --- Error Handling Decorator for report generation ---
def handle_report_generation_errors(func: Callable) -> Callable:
    """Decorator that tags the request with an id and logs failures of generation endpoints.

    Typed pipeline errors are re-raised unchanged so the application's exception
    handlers can answer with their specific kind. Anything else becomes a 500
    carrying the request id as trace.
    """

    @wraps(func)
    async def wrapper(request: Request, *args: Any, **kwargs: Any) -> Response:
        request_id = str(uuid4())
        request.state.request_id = request_id

        try:
            return await func(request, *args, **kwargs)
        except (PipelineError, HTTPException):
            raise
        except Exception as e:
            final_request_id = getattr(request.state, "request_id", "unknown")
            logger.error(
                "[%s] Unexpected error during report generation: %s",
                final_request_id,
                str(e),
                exc_info=True,
            )
            raise HTTPException(
                status_code=500,
                detail=f"An unexpected server error occurred during report generation (trace: {final_request_id}).",
            ) from e

    return wrapper


@router.get("/reports/{report_id}/progress", dependencies=[Depends(verify_api_key)])
async def report_progress(report_id: str) -> StreamingResponse:
    """Streams the progress of the report's generation run as NDJSON.

    Each line is ``{"progress", "message", "completed", "error", "details"}``.
    A client connecting mid-run first receives the latest state. The stream
    ends after the run's terminal event.
    """
    request_id = str(uuid4())
    logger.info("[%s] Progress subscription for report %s", request_id, report_id)
    return StreamingResponse(
        _stream_progress_events(report_id, request_id),
        media_type="application/x-ndjson",
    )


@router.post("/reports/{report_id}/generate", dependencies=[Depends(verify_api_key)])
@handle_report_generation_errors
async def generate_report(
    request: Request,
    report_id: str,
    payload: GenerateReportRequest,
) -> Response:
    """Generates the finished report for *report_id*.

    Returns the DOCX as an attachment, or ``{documentId, documentUrl, title}``
    when ``outputMode`` is ``google_docs``. Progress is published on
    ``/api/reports/{report_id}/progress`` while the run is in flight.

    Raises:
        HTTPException:
            - 403: Invalid API Key.
            - 409: A run for this report is already in progress.
            - 413: More photos than the template has slots.
            - 500: Template or assembly failure.
            - 502: The Google Docs hand-off failed.
    """
    request_id = request.state.request_id
    logger.info(
        "[%s] Generate report %s: %d photos, enhance=%s",
        request_id,
        report_id,
        len(payload.photos),
        payload.options.ai_enhance_text,
    )

    artifact = await run_report_pipeline(report_id, payload, request_id=request_id)
    return _build_report_response(artifact, request_id)


@router.post("/ai/generate-text", dependencies=[Depends(verify_api_key)])
async def generate_text(payload: EnhanceTextRequest) -> dict[str, str]:
    """Enhances the bullet points of a single field into a professional paragraph."""
    request_id = str(uuid4())
    if not llm.is_configured():
        raise HTTPException(status_code=503, detail="AI text enhancement is not configured on the server.")

    logger.info("[%s] Single-field enhancement for '%s'", request_id, payload.field_type)
    context = payload.context or settings.enhancement_context
    try:
        generated = await llm.enhance_text(payload.bullet_points, payload.field_type, context)
    except EnhancementTimeout as e:
        logger.error("[%s] Enhancement timed out: %s", request_id, str(e))
        raise HTTPException(status_code=504, detail="AI text enhancement timed out.") from e
    except EnhancementServiceError as e:
        logger.error("[%s] Enhancement failed: %s", request_id, str(e))
        raise HTTPException(status_code=502, detail=f"AI text enhancement failed: {str(e)}") from e
    return {"generatedText": generated}


@router.get("/template/inspect", dependencies=[Depends(verify_api_key)])
async def template_inspect() -> dict[str, Any]:
    """Diagnostics of the configured report template after normalization."""
    profile = await inspect_template()
    return {"template": str(settings.template_path), **profile.to_dict()}
