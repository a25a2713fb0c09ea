import io

import pytest
from PIL import Image

from app.models.report_models import PhotoAttachment
from app.models.report_models import ReportData
from app.services.template_store import clear_template_cache
from tests.helpers import write_template


@pytest.fixture(autouse=True)
def _fresh_template_cache():
    # Each test gets its own event loop, so cached coroutine results must not leak between tests.
    clear_template_cache()
    yield
    clear_template_cache()


@pytest.fixture
def template_path(tmp_path):
    return write_template(tmp_path / "report_template.docx")


@pytest.fixture
def make_template(tmp_path):
    counter = {"n": 0}

    def _make(**kwargs):
        counter["n"] += 1
        return write_template(tmp_path / f"template_{counter['n']}.docx", **kwargs)

    return _make


@pytest.fixture
def report_data() -> ReportData:
    return ReportData.model_validate(
        {
            "projectInformation": {
                "fileNumber": "F-2024-001",
                "insuredName": "Jane Doe",
                "insuredAddress": "12 Oak Street",
                "engineerName": "Sam Lee, P.E.",
            },
            "assignmentScope": {
                "intervieweesNames": "- Homeowner\n- Roofer",
            },
            "buildingAndSite": {
                "structureAge": "25 years",
                "exteriorObservations": "- Missing shingles on the north slope",
            },
            "research": {},
            "discussionAndAnalysis": {
                "siteDiscussionAnalysis": "- Damage consistent with wind",
            },
            "conclusions": {"conclusions": "- Wind damage confirmed"},
        }
    )


@pytest.fixture
def png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (1600, 1200), (200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def make_photos(png_bytes):
    def _make(count: int, with_content: bool = True):
        return [
            PhotoAttachment(
                original_filename=f"photo_{i}.png",
                caption=f"Caption {i}",
                content=png_bytes if with_content else None,
                url=None if with_content else f"https://photos.example.com/photo_{i}.png",
            )
            for i in range(1, count + 1)
        ]

    return _make
