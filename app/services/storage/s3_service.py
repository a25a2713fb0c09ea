# app/services/storage/s3_service.py
import asyncio
import io
import logging

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError
from botocore.exceptions import ClientError

from app.core.config import settings

logger = logging.getLogger(__name__)

_S3 = None
_BUCKET: str | None = None


def _init_client() -> None:
    global _S3, _BUCKET
    if not all([settings.aws_access_key_id, settings.aws_secret_access_key, settings.s3_bucket_name]):
        logger.info("AWS S3 not configured; photos referenced by S3 key cannot be fetched.")
        return
    try:
        session = boto3.session.Session(
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )
        _S3 = session.client("s3", config=Config(signature_version="s3v4"))
        _BUCKET = settings.s3_bucket_name
        logger.info("S3 photo store initialized for bucket %s in region %s", _BUCKET, settings.aws_region)
    except (BotoCoreError, ValueError) as e:
        logger.error("Failed to initialize S3 session: %s", str(e), exc_info=True)
        _S3 = None
        _BUCKET = None


_init_client()


def is_configured() -> bool:
    return _S3 is not None and bool(_BUCKET)


def _download_sync(key: str) -> bytes | None:
    buf = io.BytesIO()
    try:
        _S3.download_fileobj(_BUCKET, key, buf)
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") in {"NoSuchKey", "404"}:
            logger.warning("Photo not found in S3: %s/%s", _BUCKET, key)
        else:
            logger.exception("ClientError downloading S3 object %s", key)
        return None
    except BotoCoreError:
        logger.exception("Unexpected error downloading S3 object %s", key)
        return None
    logger.info("Downloaded S3 object %s (%d bytes)", key, buf.tell())
    return buf.getvalue()


async def download_bytes(key: str) -> bytes | None:
    """Download an S3 object as bytes. Returns None when it cannot be retrieved."""
    if not is_configured():
        logger.error("S3 client not initialized. Cannot download %s.", key)
        return None
    return await asyncio.to_thread(_download_sync, key)
