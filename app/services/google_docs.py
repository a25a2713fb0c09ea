"""Hand-off of a finished DOCX report to Google Docs.

The rendered DOCX is uploaded to Google Drive with conversion to a native
Google Doc, shared as "anyone with link can view", and the edit URL is
returned. Uses raw httpx calls with an OAuth2 refresh token.

The hand-off is all-or-nothing: when a step fails after the Drive file was
created, the file is deleted again before the error is raised.
"""

import json
import logging
import time
from uuid import uuid4

import httpx

from app.core.config import settings
from app.core.exceptions import ConfigurationError
from app.core.exceptions import DocumentUploadError
from app.models.report_models import DocumentReference

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
DRIVE_FILE_URL = "https://www.googleapis.com/drive/v3/files/{file_id}"
DRIVE_PERMISSIONS_URL = "https://www.googleapis.com/drive/v3/files/{file_id}/permissions"
DOCUMENT_URL = "https://docs.google.com/document/d/{document_id}/edit"

GOOGLE_DOC_MIME_TYPE = "application/vnd.google-apps.document"
DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# Access tokens are cached in memory and refreshed a minute before expiry.
_cached_token: str = ""
_token_expiry: float = 0.0


def is_configured() -> bool:
    return all([settings.google_client_id, settings.google_client_secret, settings.google_refresh_token])


async def _get_access_token() -> str:
    global _cached_token, _token_expiry

    if _cached_token and time.time() < _token_expiry - 60:
        return _cached_token

    if not is_configured():
        raise ConfigurationError(
            "Google Docs output is not configured. "
            "Set GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET and GOOGLE_REFRESH_TOKEN."
        )

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.post(
                TOKEN_URL,
                data={
                    "client_id": settings.google_client_id,
                    "client_secret": settings.google_client_secret,
                    "refresh_token": settings.google_refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            resp.raise_for_status()
            data = resp.json()
    except httpx.HTTPError as e:
        raise DocumentUploadError(f"Could not obtain a Google access token: {e}") from e

    _cached_token = data["access_token"]
    _token_expiry = time.time() + data.get("expires_in", 3600)
    logger.info("Refreshed Google access token (expires in %ds)", data.get("expires_in", 3600))
    return _cached_token


def reset_token_cache() -> None:
    global _cached_token, _token_expiry
    _cached_token = ""
    _token_expiry = 0.0


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _multipart_related(metadata: dict, content: bytes, content_type: str) -> tuple[bytes, str]:
    boundary = f"report-{uuid4().hex}"
    body = b"".join(
        [
            f"--{boundary}\r\n".encode(),
            b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
            json.dumps(metadata).encode("utf-8"),
            f"\r\n--{boundary}\r\n".encode(),
            f"Content-Type: {content_type}\r\n\r\n".encode(),
            content,
            f"\r\n--{boundary}--\r\n".encode(),
        ]
    )
    return body, f"multipart/related; boundary={boundary}"


async def _upload_converted(client: httpx.AsyncClient, token: str, content: bytes, title: str) -> str:
    metadata: dict = {"name": title, "mimeType": GOOGLE_DOC_MIME_TYPE}
    if settings.google_drive_folder_id:
        metadata["parents"] = [settings.google_drive_folder_id]
    body, content_type = _multipart_related(metadata, content, DOCX_MIME_TYPE)
    resp = await client.post(
        DRIVE_UPLOAD_URL,
        params={"uploadType": "multipart", "fields": "id,name"},
        headers={**_auth_headers(token), "Content-Type": content_type},
        content=body,
    )
    resp.raise_for_status()
    return resp.json()["id"]


async def _share_file(client: httpx.AsyncClient, token: str, file_id: str) -> None:
    """Share a file as 'anyone with link can view'."""
    resp = await client.post(
        DRIVE_PERMISSIONS_URL.format(file_id=file_id),
        headers=_auth_headers(token),
        json={"type": "anyone", "role": "reader"},
    )
    resp.raise_for_status()
    logger.info("Shared file %s with 'anyone with link'", file_id)


async def _delete_file(client: httpx.AsyncClient, token: str, file_id: str, rid: str) -> None:
    try:
        resp = await client.delete(DRIVE_FILE_URL.format(file_id=file_id), headers=_auth_headers(token))
        resp.raise_for_status()
        logger.info("[%s] Deleted partially created Google Doc %s", rid, file_id)
    except httpx.HTTPError as e:
        # The original failure is what the caller reports; this one is only logged.
        logger.error("[%s] Could not delete partially created Google Doc %s: %s", rid, file_id, str(e))


async def upload_as_google_doc(content: bytes, title: str, request_id: str | None = None) -> DocumentReference:
    """Upload DOCX *content* as a shared Google Doc named *title*.

    Raises:
        ConfigurationError: Google credentials are not set.
        DocumentUploadError: any Google API call failed. A file created before
            the failure has been deleted.
    """
    rid = request_id or str(uuid4())
    token = await _get_access_token()

    file_id: str | None = None
    async with httpx.AsyncClient(timeout=30.0) as client:
        try:
            file_id = await _upload_converted(client, token, content, title)
            logger.info("[%s] Uploaded report '%s' to Google Drive as %s", rid, title, file_id)
            await _share_file(client, token, file_id)
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("[%s] Google Docs hand-off failed: %s", rid, str(e))
            if file_id is not None:
                await _delete_file(client, token, file_id, rid)
            raise DocumentUploadError(f"Google Docs upload failed: {e}") from e

    document_url = DOCUMENT_URL.format(document_id=file_id)
    logger.info("[%s] Google Doc ready: %s", rid, document_url)
    return DocumentReference(document_id=file_id, document_url=document_url, title=title)
