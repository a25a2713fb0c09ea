"""Builds the ordered enhancement queue for one report."""

import logging
import re

from app.models.field_schema import REPORT_FIELDS
from app.models.report_models import EnhancementTask
from app.models.report_models import ReportData

__all__ = ["build_enhancement_tasks", "looks_like_bullets"]

logger = logging.getLogger(__name__)

_BULLET_LINE_RE = re.compile(r"^\s*(?:[-*•▪◦‣]|\d+[.)])\s+\S", re.MULTILINE)


def looks_like_bullets(text: str) -> bool:
    """True when at least one line of *text* starts like a list item."""
    return bool(_BULLET_LINE_RE.search(text))


def build_enhancement_tasks(
    report_data: ReportData,
    context: str | None = None,
    bullets_only: bool = False,
) -> list[EnhancementTask]:
    """One task per enhanceable field with non-blank text, in the wizard's display order.

    With *bullets_only*, fields already written as prose are left out of the
    queue and keep their text as entered.
    """
    tasks: list[EnhancementTask] = []
    for spec in REPORT_FIELDS:
        if not spec.enhanceable:
            continue
        raw = report_data.raw_value(spec)
        if raw is None:
            continue
        if bullets_only and not looks_like_bullets(raw):
            logger.debug("Skipping enhancement of '%s': text is not a bullet list", spec.placeholder)
            continue
        tasks.append(
            EnhancementTask(
                field_name=spec.placeholder,
                field_type=spec.key,
                raw_text=raw,
                context=context,
                label=spec.label,
            )
        )
    return tasks
