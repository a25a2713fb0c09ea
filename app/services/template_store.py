"""Loading, normalization and inspection of the report DOCX template.

Templates are loaded in two phases. The first phase repairs placeholder
tokens of known names that Word has split across runs or that carry the
wrong number of braces (``{file_number}}``). The second phase inspects the
normalized document and records what it contains. Loaded templates are
cached per path and shared read-only by every run.
"""

import asyncio
import io
import logging
import re
import zipfile
from collections.abc import Iterator
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

from async_lru import alru_cache
from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from docx.table import Table
from docx.text.paragraph import Paragraph

from app.core.config import settings
from app.core.exceptions import TemplateLoadError
from app.models.field_schema import SCALAR_PLACEHOLDERS
from app.models.field_schema import known_placeholders

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")
_STATEMENT_RE = re.compile(r"\{%.*?%\}")
_SLOT_GATE_RE = re.compile(r"\bslot_(\d+)_exists\b")


@dataclass(frozen=True)
class TemplateProfile:
    placeholders: frozenset[str] = frozenset()
    slot_count: int = 0
    repaired_tokens: tuple[str, ...] = ()
    malformed_tokens: tuple[str, ...] = ()
    missing_placeholders: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "placeholders": sorted(self.placeholders),
            "slot_count": self.slot_count,
            "repaired_tokens": list(self.repaired_tokens),
            "malformed_tokens": list(self.malformed_tokens),
            "missing_placeholders": list(self.missing_placeholders),
        }


@dataclass(frozen=True)
class LoadedTemplate:
    path: str
    content: bytes = field(repr=False)
    profile: TemplateProfile


def _names_pattern(names: frozenset[str]) -> str:
    # Longest first so slot_1 never shadows slot_10.
    return "|".join(re.escape(n) for n in sorted(names, key=len, reverse=True))


def _iter_table_paragraphs(table: Table) -> Iterator[Paragraph]:
    for row in table.rows:
        for cell in row.cells:
            yield from cell.paragraphs
            for nested in cell.tables:
                yield from _iter_table_paragraphs(nested)


def _iter_container_paragraphs(container) -> Iterator[Paragraph]:
    yield from container.paragraphs
    for table in container.tables:
        yield from _iter_table_paragraphs(table)


def iter_paragraphs(doc) -> Iterator[Paragraph]:
    """Every paragraph of *doc*: body, tables (nested included), headers and footers."""
    yield from _iter_container_paragraphs(doc)
    seen: set[int] = set()
    for section in doc.sections:
        for part in (
            section.header,
            section.footer,
            section.first_page_header,
            section.first_page_footer,
            section.even_page_header,
            section.even_page_footer,
        ):
            # Linked parts have no definition of their own; touching them would add one.
            if part.is_linked_to_previous:
                continue
            key = id(part._element)
            if key in seen:
                continue
            seen.add(key)
            yield from _iter_container_paragraphs(part)


def _replace_span(runs, start: int, end: int, new_text: str) -> None:
    """Replace characters ``start:end`` of the runs' joined text with *new_text*.

    The replacement lands in the first run touched by the span, so it takes
    that run's formatting. The rest of the span is removed from the later runs.
    """
    pos = 0
    first = True
    for run in runs:
        text = run.text
        run_start, run_end = pos, pos + len(text)
        pos = run_end
        if run_end <= start:
            continue
        if run_start >= end:
            break
        local_start = max(start, run_start) - run_start
        local_end = min(end, run_end) - run_start
        if first:
            run.text = text[:local_start] + new_text + text[local_end:]
            first = False
        else:
            run.text = text[:local_start] + text[local_end:]


def _run_index_at(runs, offset: int) -> int:
    pos = 0
    for index, run in enumerate(runs):
        pos += len(run.text)
        if offset < pos:
            return index
    return len(runs) - 1


def repair_paragraph(paragraph: Paragraph, repair_re: re.Pattern) -> list[str]:
    """Rewrite known tokens of *paragraph* into a single ``{{name}}`` run.

    Returns the original text of every token that was rewritten.
    """
    runs = paragraph.runs
    if not runs:
        return []
    text = "".join(r.text for r in runs)
    if "{" not in text and "}" not in text:
        return []

    repaired: list[str] = []
    for match in reversed(list(repair_re.finditer(text))):
        original = match.group(0)
        opening, closing = match.group(1), match.group(3)
        split = _run_index_at(runs, match.start()) != _run_index_at(runs, match.end() - 1)
        if len(opening) == 2 and len(closing) == 2 and not split:
            continue
        _replace_span(runs, match.start(), match.end(), "{{" + match.group(2) + "}}")
        repaired.append(original)
    repaired.reverse()
    return repaired


def find_malformed(text: str, malformed_re: re.Pattern) -> list[str]:
    """Fragments of known tokens in *text* that still are not valid ``{{name}}`` tokens."""
    remainder = _STATEMENT_RE.sub(" ", text)
    remainder = _TOKEN_RE.sub(" ", remainder)
    return [m.group(0).strip() for m in malformed_re.finditer(remainder)]


def _normalize_sync(path: str, max_slots: int) -> LoadedTemplate:
    try:
        raw = Path(path).read_bytes()
    except OSError as e:
        raise TemplateLoadError(f"Template file could not be read: {path}") from e

    try:
        doc = Document(io.BytesIO(raw))
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as e:
        raise TemplateLoadError(f"Template is not a valid DOCX document: {path}") from e

    known = known_placeholders(max_slots)
    names = _names_pattern(known)
    repair_re = re.compile(r"(?<!\{)(\{{1,3})\s*(" + names + r")\s*(\}{1,3})(?!\})")
    malformed_re = re.compile(r"\{+\s*(?:" + names + r")\b|\b(?:" + names + r")\s*\}+")

    repaired: list[str] = []
    malformed: list[str] = []
    placeholders: set[str] = set()
    slot_count = 0
    for paragraph in iter_paragraphs(doc):
        repaired.extend(repair_paragraph(paragraph, repair_re))
        text = paragraph.text
        placeholders.update(_TOKEN_RE.findall(text))
        malformed.extend(find_malformed(text, malformed_re))
        for gate in _SLOT_GATE_RE.findall(text):
            slot_count = max(slot_count, int(gate))

    if repaired:
        out = io.BytesIO()
        doc.save(out)
        content = out.getvalue()
    else:
        content = raw

    missing = tuple(name for name in SCALAR_PLACEHOLDERS if name not in placeholders)
    profile = TemplateProfile(
        placeholders=frozenset(placeholders),
        slot_count=slot_count,
        repaired_tokens=tuple(repaired),
        malformed_tokens=tuple(malformed),
        missing_placeholders=missing,
    )
    return LoadedTemplate(path=path, content=content, profile=profile)


@alru_cache(maxsize=8)
async def _load_cached(path: str, max_slots: int) -> LoadedTemplate:
    template = await asyncio.to_thread(_normalize_sync, path, max_slots)
    profile = template.profile
    logger.info(
        "Loaded template %s: %d placeholders, %d photo slots, %d tokens repaired",
        path,
        len(profile.placeholders),
        profile.slot_count,
        len(profile.repaired_tokens),
    )
    if profile.repaired_tokens:
        logger.info("Repaired template tokens in %s: %s", path, ", ".join(profile.repaired_tokens))
    if profile.malformed_tokens:
        logger.warning("Malformed template tokens in %s: %s", path, ", ".join(profile.malformed_tokens))
    if profile.missing_placeholders:
        logger.warning(
            "Template %s does not reference known placeholders: %s", path, ", ".join(profile.missing_placeholders)
        )
    return template


async def load_template(path: str | Path | None = None, max_slots: int | None = None) -> LoadedTemplate:
    """Load and normalize the template at *path* (defaults to the configured template).

    Raises:
        TemplateLoadError: the file is missing, unreadable or not a DOCX document.
    """
    resolved = str(path if path is not None else settings.template_path)
    slots = settings.max_photo_slots if max_slots is None else max_slots
    return await _load_cached(resolved, slots)


async def inspect_template(path: str | Path | None = None) -> TemplateProfile:
    template = await load_template(path)
    return template.profile


def clear_template_cache() -> None:
    _load_cached.cache_clear()
