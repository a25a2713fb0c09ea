"""Turns a finished report artifact into the HTTP response sent to the client."""

import logging

from fastapi.responses import JSONResponse
from fastapi.responses import Response
from fastapi.responses import StreamingResponse

from app.models.report_models import AssembledDocument
from app.models.report_models import DocumentReference
from app.services.doc_builder import DOCX_MEDIA_TYPE

__all__ = [
    "_build_report_response",
    "DOCX_MEDIA_TYPE",
]

logger = logging.getLogger(__name__)


def _build_report_response(artifact: AssembledDocument | DocumentReference, request_id: str) -> Response:
    """Stream DOCX bytes back as an attachment, or return the Google Docs link as JSON."""
    if isinstance(artifact, DocumentReference):
        logger.info("[%s] Returning Google Docs reference %s", request_id, artifact.document_id)
        return JSONResponse(
            {
                "documentId": artifact.document_id,
                "documentUrl": artifact.document_url,
                "title": artifact.title,
                "unresolvedPlaceholders": artifact.unresolved_placeholders,
                "truncatedPhotos": artifact.truncated_photos,
            }
        )

    headers = {"Content-Disposition": f"attachment; filename={artifact.filename}"}
    if artifact.truncated_photos:
        headers["X-Photos-Truncated"] = str(artifact.truncated_photos)
    if artifact.unresolved_placeholders:
        headers["X-Unresolved-Placeholders"] = ",".join(artifact.unresolved_placeholders)
    logger.info("[%s] Streaming %s (%d bytes)", request_id, artifact.filename, len(artifact.content))
    return StreamingResponse(
        iter([artifact.content]),
        media_type=artifact.media_type,
        headers=headers,
    )
