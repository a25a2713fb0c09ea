"""Retrieves photo bytes for inline embedding and shrinks them to document size."""

import asyncio
import io
import logging
from collections.abc import Sequence

import httpx
from PIL import Image
from PIL import ImageOps
from PIL import UnidentifiedImageError

from app.core.config import settings
from app.core.exceptions import AttachmentFetchFailure
from app.models.report_models import PhotoAttachment
from app.services.storage import s3_service

logger = logging.getLogger(__name__)


def resize_image(data: bytes, max_width: int, max_height: int, quality: int) -> bytes:
    """Fit *data* inside ``max_width x max_height`` (never enlarging) and re-encode as JPEG."""
    with Image.open(io.BytesIO(data)) as img:
        img = ImageOps.exif_transpose(img)
        img.thumbnail((max_width, max_height))
        if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
            rgba = img.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[-1])
            img = background
        elif img.mode != "RGB":
            img = img.convert("RGB")
        out = io.BytesIO()
        img.save(out, format="JPEG", quality=quality, optimize=True)
        return out.getvalue()


async def _download_url(client: httpx.AsyncClient, url: str) -> bytes:
    resp = await client.get(url, follow_redirects=True)
    resp.raise_for_status()
    return resp.content


async def _raw_bytes(client: httpx.AsyncClient, photo: PhotoAttachment) -> bytes:
    if photo.content:
        return photo.content
    if photo.url:
        try:
            return await _download_url(client, photo.url)
        except httpx.HTTPError as e:
            raise AttachmentFetchFailure(f"Could not download {photo.original_filename}: {e}") from e
    if photo.s3_key:
        data = await s3_service.download_bytes(photo.s3_key)
        if data is None:
            raise AttachmentFetchFailure(f"Could not download {photo.original_filename} from S3")
        return data
    raise AttachmentFetchFailure(f"Photo {photo.original_filename} has no content, URL or storage key")


async def fetch_photo_contents(
    photos: Sequence[PhotoAttachment], request_id: str = "-"
) -> list[PhotoAttachment]:
    """Return *photos* with ``content`` holding resized JPEG bytes, in the same order.

    Raises:
        AttachmentFetchFailure: any photo could not be retrieved or decoded.
    """
    if not photos:
        return []

    fetched: list[PhotoAttachment] = []
    async with httpx.AsyncClient(timeout=settings.photo_download_timeout) as client:
        for photo in photos:
            data = await _raw_bytes(client, photo)
            if len(data) > settings.max_photo_bytes:
                raise AttachmentFetchFailure(
                    f"Photo {photo.original_filename} is {len(data)} bytes, "
                    f"more than the {settings.max_photo_bytes} byte limit"
                )
            try:
                resized = await asyncio.to_thread(
                    resize_image,
                    data,
                    settings.image_max_width,
                    settings.image_max_height,
                    settings.image_jpeg_quality,
                )
            except (UnidentifiedImageError, OSError, ValueError) as e:
                raise AttachmentFetchFailure(f"Photo {photo.original_filename} is not a readable image") from e
            logger.debug(
                "[%s] Prepared photo %s (%d -> %d bytes)", request_id, photo.original_filename, len(data), len(resized)
            )
            fetched.append(photo.model_copy(update={"content": resized, "file_size": len(resized)}))

    logger.info("[%s] Prepared %d photos for inline embedding", request_id, len(fetched))
    return fetched
