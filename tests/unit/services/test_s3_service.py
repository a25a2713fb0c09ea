from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from app.services.storage import s3_service


@pytest.fixture
def fake_s3(monkeypatch):
    client = Mock()
    monkeypatch.setattr(s3_service, "_S3", client)
    monkeypatch.setattr(s3_service, "_BUCKET", "photos-bucket")
    return client


@pytest.mark.asyncio
async def test_download_bytes_returns_object_content(fake_s3):
    fake_s3.download_fileobj.side_effect = lambda bucket, key, buf: buf.write(b"jpeg-bytes")

    data = await s3_service.download_bytes("uploads/a.jpg")

    assert data == b"jpeg-bytes"
    assert fake_s3.download_fileobj.call_args.args[:2] == ("photos-bucket", "uploads/a.jpg")


@pytest.mark.asyncio
async def test_download_bytes_missing_object_returns_none(fake_s3):
    fake_s3.download_fileobj.side_effect = ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")

    assert await s3_service.download_bytes("uploads/missing.jpg") is None


@pytest.mark.asyncio
async def test_download_bytes_without_client_returns_none(monkeypatch):
    monkeypatch.setattr(s3_service, "_S3", None)

    assert s3_service.is_configured() is False
    assert await s3_service.download_bytes("uploads/a.jpg") is None
