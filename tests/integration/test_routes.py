import json
from unittest.mock import AsyncMock

import pytest
from fastapi import status
from fastapi.testclient import TestClient

# Router under test
from app.api import routes as routes_module
from app.core.config import settings

# Domain exceptions
from app.core.exceptions import DocumentUploadError
from app.core.exceptions import EnhancementServiceError
from app.core.exceptions import EnhancementTimeout
from app.core.exceptions import RunAlreadyActive
from app.main import app
from app.models.report_models import DocumentReference
from app.services import doc_builder
from app.services import llm
from tests.helpers import document_text

REPORT_DATA = {
    "projectInformation": {"fileNumber": "F-77", "insuredName": "Jane Doe"},
    "buildingAndSite": {"exteriorObservations": "- Cracked siding"},
    "conclusions": {"conclusions": "- Hail damage"},
}

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def client(monkeypatch, template_path):
    """TestClient over the real application with API-key verification disabled."""
    monkeypatch.setattr(settings, "template_path", template_path)
    app.dependency_overrides[routes_module.verify_api_key] = lambda: True
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.pop(routes_module.verify_api_key, None)


# ---------------------------------------------------------------------------
# /api/reports/{report_id}/generate
# ---------------------------------------------------------------------------


def test_generate_returns_docx_attachment(client):
    payload = {"reportData": REPORT_DATA, "photos": [{"originalFilename": "roof.jpg", "caption": "North slope"}]}

    resp = client.post("/api/reports/int-docx/generate", json=payload)

    assert resp.status_code == status.HTTP_200_OK
    assert resp.headers["content-type"].startswith("application/vnd.openxmlformats-officedocument")
    assert resp.headers["content-disposition"].startswith("attachment; filename=Report_")
    text = document_text(resp.content)
    assert "insured_name: Jane Doe" in text
    assert "Photo 1: roof.jpg" in text
    assert "weather_data_summary: Not provided" in text


def test_progress_after_run_replays_terminal_event(client):
    client.post("/api/reports/int-progress/generate", json={"reportData": REPORT_DATA})

    resp = client.get("/api/reports/int-progress/progress")

    assert resp.status_code == status.HTTP_200_OK
    assert resp.headers["content-type"].startswith("application/x-ndjson")
    lines = [json.loads(line) for line in resp.text.splitlines() if line]
    assert len(lines) == 1
    assert lines[0]["completed"] is True
    assert lines[0]["progress"] == 100
    assert lines[0]["error"] is None


def test_generate_google_docs_returns_document_reference(client, monkeypatch):
    upload = AsyncMock(
        return_value=DocumentReference(
            document_id="doc1", document_url="https://docs.google.com/document/d/doc1/edit", title="Claim F-77"
        )
    )
    monkeypatch.setattr(doc_builder.google_docs, "upload_as_google_doc", upload)

    resp = client.post(
        "/api/reports/int-gdocs/generate",
        json={"reportData": REPORT_DATA, "outputMode": "google_docs", "title": "Claim F-77"},
    )

    assert resp.status_code == status.HTTP_200_OK
    assert resp.json()["documentUrl"] == "https://docs.google.com/document/d/doc1/edit"
    assert upload.await_args.args[1] == "Claim F-77"


def test_generate_too_many_photos_is_413(client):
    photos = [{"originalFilename": f"p{i}.jpg"} for i in range(21)]

    resp = client.post("/api/reports/int-overflow/generate", json={"reportData": REPORT_DATA, "photos": photos})

    assert resp.status_code == 413
    assert resp.json()["kind"] == "too_many_photos"


@pytest.mark.parametrize(
    "raised_exc, expected_status, expected_kind",
    [
        (RunAlreadyActive("busy"), 409, "run_already_active"),
        (DocumentUploadError("drive down"), 502, "document_upload_error"),
    ],
)
def test_generate_error_paths(client, monkeypatch, raised_exc, expected_status, expected_kind):
    monkeypatch.setattr(routes_module, "run_report_pipeline", AsyncMock(side_effect=raised_exc))

    resp = client.post("/api/reports/int-errors/generate", json={"reportData": REPORT_DATA})

    assert resp.status_code == expected_status
    assert resp.json()["kind"] == expected_kind


def test_generate_unexpected_error_is_500_with_trace(client, monkeypatch):
    monkeypatch.setattr(routes_module, "run_report_pipeline", AsyncMock(side_effect=RuntimeError("kaboom")))

    resp = client.post("/api/reports/int-crash/generate", json={"reportData": REPORT_DATA})

    assert resp.status_code == 500
    assert "trace:" in resp.json()["detail"]


def test_generate_requires_api_key(monkeypatch):
    monkeypatch.setattr(settings, "api_key", "secret")
    with TestClient(app) as c:
        resp = c.post(
            "/api/reports/int-auth/generate", json={"reportData": REPORT_DATA}, headers={"X-API-Key": "wrong"}
        )
    assert resp.status_code == 403


# ---------------------------------------------------------------------------
# /api/ai/generate-text
# ---------------------------------------------------------------------------


def test_generate_text_success(client, monkeypatch):
    monkeypatch.setattr(llm, "is_configured", lambda: True)
    enhance = AsyncMock(return_value="The siding exhibited cracking.")
    monkeypatch.setattr(llm, "enhance_text", enhance)

    resp = client.post("/api/ai/generate-text", json={"bulletPoints": "- cracked siding", "fieldType": "exteriorObservations"})

    assert resp.status_code == status.HTTP_200_OK
    assert resp.json() == {"generatedText": "The siding exhibited cracking."}
    assert enhance.await_args.args == ("- cracked siding", "exteriorObservations", settings.enhancement_context)


@pytest.mark.parametrize(
    "raised_exc, expected_status",
    [
        (EnhancementTimeout("slow"), 504),
        (EnhancementServiceError("bad gateway"), 502),
    ],
)
def test_generate_text_error_paths(client, monkeypatch, raised_exc, expected_status):
    monkeypatch.setattr(llm, "is_configured", lambda: True)
    monkeypatch.setattr(llm, "enhance_text", AsyncMock(side_effect=raised_exc))

    resp = client.post("/api/ai/generate-text", json={"bulletPoints": "- a", "fieldType": "conclusions"})

    assert resp.status_code == expected_status


def test_generate_text_without_provider_is_503(client, monkeypatch):
    monkeypatch.setattr(llm, "is_configured", lambda: False)

    resp = client.post("/api/ai/generate-text", json={"bulletPoints": "- a", "fieldType": "conclusions"})

    assert resp.status_code == 503


def test_generate_text_validation_error(client):
    resp = client.post("/api/ai/generate-text", json={"fieldType": "conclusions"})

    assert resp.status_code == 422
    assert resp.json()["error"] == "Input validation failed"


# ---------------------------------------------------------------------------
# /api/template/inspect
# ---------------------------------------------------------------------------


def test_template_inspect_reports_profile(client):
    resp = client.get("/api/template/inspect")

    assert resp.status_code == status.HTTP_200_OK
    body = resp.json()
    assert body["slot_count"] == 20
    assert "insured_name" in body["placeholders"]
    assert body["malformed_tokens"] == []
