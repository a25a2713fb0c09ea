import tomllib
from pathlib import Path

PYPROJECT = Path(__file__).resolve().parents[2] / "pyproject.toml"


def test_project_metadata_ships_no_design_documents():
    project = tomllib.loads(PYPROJECT.read_text())["project"]

    assert "readme" not in project
    assert project["name"] == "inspection-report-builder"


def test_report_template_and_prompts_are_package_data():
    package_data = tomllib.loads(PYPROJECT.read_text())["tool"]["setuptools"]["package-data"]

    assert package_data["app.templates"] == ["*.docx"]
    assert package_data["app.services"] == ["prompt_templates/*.jinja2"]
