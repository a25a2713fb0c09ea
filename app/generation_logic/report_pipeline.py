"""Run orchestration for one report generation request.

A run opens the report's progress channel, optionally drives the
enhancement worker, resolves the photo slots, assembles the document and
publishes exactly one terminal progress event. Typed failures are re-raised
for the HTTP layer after the terminal error event went out.
"""

import logging
from pathlib import Path
from uuid import uuid4

from app.core.config import settings
from app.core.exceptions import AttachmentFetchFailure
from app.core.exceptions import TooManyPhotos
from app.generation_logic.task_queue import build_enhancement_tasks
from app.models.report_models import AssembledDocument
from app.models.report_models import DocumentReference
from app.models.report_models import EnhancementResult
from app.models.report_models import GenerateReportRequest
from app.models.report_models import ProgressEvent
from app.services.doc_builder import assemble
from app.services.enhancement_worker import EnhancementWorker
from app.services.photo_fetcher import fetch_photo_contents
from app.services.photo_slots import resolve_photo_slots
from app.services.photo_slots import truncate_photos
from app.services.progress_broadcaster import ProgressBroadcaster
from app.services.progress_broadcaster import broadcaster
from app.services.template_store import load_template

__all__ = ["run_report_pipeline", "ENHANCEMENT_SHARE"]

logger = logging.getLogger(__name__)

# Share of the run's progress bar taken by the enhancement batch.
ENHANCEMENT_SHARE = 90.0


class _RunReporter:
    """Publishes the run-level view of progress for one report."""

    def __init__(self, run_id: str, progress: ProgressBroadcaster):
        self.run_id = run_id
        self.progress = progress
        self.details: list[str] = []
        self.percent = 0.0
        self._batch_base = 0

    async def _publish(self, label: str, terminal: bool = False, error: str | None = None) -> None:
        event = ProgressEvent(
            percent_complete=self.percent,
            current_task_label=label,
            detail_log=tuple(self.details),
            terminal=terminal,
            error=error,
        )
        published = await self.progress.publish(self.run_id, event)
        self.percent = published.percent_complete

    async def step(self, percent: float, label: str, detail: str | None = None) -> None:
        self.percent = max(self.percent, percent)
        if detail:
            self.details.append(detail)
        await self._publish(label)

    def begin_batch(self) -> None:
        self._batch_base = len(self.details)

    async def forward_enhancement(self, event: ProgressEvent) -> None:
        """Re-publish a worker event on the run's scale. The worker's own terminal event never ends the run."""
        self.details = self.details[: self._batch_base] + list(event.detail_log)
        if event.terminal and event.error:
            return
        self.percent = max(self.percent, event.percent_complete * ENHANCEMENT_SHARE / 100.0)
        await self._publish(event.current_task_label)

    async def finish(self, label: str) -> None:
        self.percent = 100.0
        self.details.append(label)
        await self._publish(label, terminal=True)

    async def fail(self, error: Exception) -> None:
        message = str(error) or error.__class__.__name__
        self.details.append(f"Report generation failed: {message}")
        await self._publish("Report generation failed", terminal=True, error=message)


async def run_report_pipeline(
    run_id: str,
    request: GenerateReportRequest,
    progress: ProgressBroadcaster | None = None,
    worker: EnhancementWorker | None = None,
    template_path: str | Path | None = None,
    request_id: str | None = None,
) -> AssembledDocument | DocumentReference:
    """Generate the report for *run_id* and return the finished artifact.

    Raises:
        RunAlreadyActive: a run for *run_id* is still in flight. Nothing is published.
        EnhancementBatchFailure: the enhancement batch aborted.
        AssemblyError: any assembly-stage failure, with its specific kind.
    """
    progress = progress or broadcaster
    rid = request_id or str(uuid4())
    options = request.options

    await progress.open_channel(run_id)
    run = _RunReporter(run_id, progress)
    logger.info(
        "[%s] Report run %s started (enhance=%s, inline_photos=%s, output=%s, photos=%d)",
        rid,
        run_id,
        options.ai_enhance_text,
        options.include_photos_inline,
        options.output_mode,
        len(request.photos),
    )

    try:
        await run.step(0.0, "Preparing report generation...", "Report generation started")
        template = await load_template(template_path)
        slot_count = template.profile.slot_count

        photos = list(request.photos)
        truncated = 0
        if len(photos) > slot_count:
            if options.photo_overflow != "truncate":
                raise TooManyPhotos(len(photos), slot_count)
            photos, truncated = truncate_photos(photos, slot_count)
            await run.step(
                run.percent,
                "Preparing report generation...",
                f"⚠ {truncated} photos exceed the template's {slot_count} photo slots and were left out",
            )

        results: list[EnhancementResult] | None = None
        if options.ai_enhance_text:
            tasks = build_enhancement_tasks(request.report_data, bullets_only=settings.enhance_bullets_only)
            run.begin_batch()
            results = await (worker or EnhancementWorker()).run_batch(
                tasks, on_progress=run.forward_enhancement, request_id=rid
            )

        if options.include_photos_inline and photos:
            await run.step(ENHANCEMENT_SHARE, f"Preparing {len(photos)} photos...")
            try:
                photos = await fetch_photo_contents(photos, request_id=rid)
            except AttachmentFetchFailure as e:
                logger.warning("[%s] Continuing without photos: %s", rid, str(e))
                photos = []
                await run.step(
                    ENHANCEMENT_SHARE,
                    "Preparing photos...",
                    "⚠ Photos could not be retrieved, report generated without photos",
                )

        bindings = resolve_photo_slots(photos, slot_count)
        await run.step(ENHANCEMENT_SHARE, "Assembling document...")
        artifact = await assemble(request.report_data, results, bindings, template, options, request_id=rid)
        artifact = artifact.model_copy(update={"truncated_photos": truncated})

        if isinstance(artifact, DocumentReference):
            await run.finish(f"Report uploaded to Google Docs: {artifact.document_url}")
        else:
            await run.finish(f"Report generated: {artifact.filename}")
        logger.info("[%s] Report run %s finished", rid, run_id)
        return artifact

    except Exception as e:
        logger.error("[%s] Report run %s failed: %s", rid, run_id, str(e))
        await run.fail(e)
        raise
    finally:
        await progress.close_channel(run_id)
