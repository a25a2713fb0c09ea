from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Sequence

from app.core.config import settings
from app.core.exceptions import EnhancementBatchFailure
from app.core.exceptions import EnhancementServiceError
from app.core.exceptions import EnhancementTaskFailure
from app.core.exceptions import EnhancementTimeout
from app.models.report_models import EnhancementResult
from app.models.report_models import EnhancementTask
from app.models.report_models import ProgressEvent
from app.services.llm import enhance_text

logger = logging.getLogger(__name__)

Enhancer = Callable[[str, str, str], Awaitable[str]]
ProgressCallback = Callable[[ProgressEvent], Awaitable[None] | None]


class EnhancementWorker:
    """Runs a batch of field enhancements one after the other.

    Any error raised by the enhancement call is a task failure: the raw text
    is kept and the next task starts. Only a corrupted queue or a failing
    progress callback aborts the batch, as EnhancementBatchFailure.
    """

    def __init__(
        self,
        enhancer: Enhancer | None = None,
        timeout: float | None = None,
        default_context: str | None = None,
    ):
        self.enhancer = enhancer or enhance_text
        self.timeout = settings.enhancement_timeout if timeout is None else timeout
        self.default_context = settings.enhancement_context if default_context is None else default_context

    async def run_batch(
        self,
        tasks: Sequence[EnhancementTask],
        on_progress: ProgressCallback | None = None,
        request_id: str = "-",
    ) -> list[EnhancementResult]:
        total = len(tasks)
        details: list[str] = []
        completed = 0

        async def emit(percent: float, label: str, terminal: bool = False, error: str | None = None) -> None:
            if on_progress is None:
                return
            event = ProgressEvent(
                percent_complete=min(max(percent, 0.0), 100.0),
                current_task_label=label,
                detail_log=tuple(details),
                terminal=terminal,
                error=error,
            )
            outcome = on_progress(event)
            if inspect.isawaitable(outcome):
                await outcome

        async def report_failure(error: Exception) -> None:
            percent = completed / total * 100.0 if total else 0.0
            try:
                await emit(percent, "AI enhancement failed", terminal=True, error=str(error))
            except Exception:
                logger.exception("[%s] Progress callback failed while reporting the aborted batch", request_id)

        try:
            self._validate_queue(tasks)

            start_message = f"Starting AI enhancement for {total} fields..."
            details.append(start_message)
            logger.info("[%s] %s", request_id, start_message)
            await emit(0.0, start_message)

            results: list[EnhancementResult] = []
            for task in tasks:
                result = await self._run_task(task, request_id)
                results.append(result)
                completed += 1
                details.append(result.detail_message)
                await emit(completed / total * 100.0, f"{task.display_label} ({completed}/{total})")

            succeeded = sum(1 for r in results if r.succeeded)
            done_message = f"AI enhancement completed: {succeeded}/{total} fields enhanced"
            details.append(done_message)
            logger.info("[%s] %s", request_id, done_message)
            await emit(100.0, done_message, terminal=True)
            return results

        except EnhancementBatchFailure as e:
            logger.error("[%s] Enhancement batch aborted: %s", request_id, str(e))
            details.append(f"AI enhancement failed: {e}")
            await report_failure(e)
            raise
        except Exception as e:
            logger.exception("[%s] Unexpected error while running enhancement batch", request_id)
            details.append(f"AI enhancement failed: {e}")
            await report_failure(e)
            raise EnhancementBatchFailure(f"Unexpected error during AI enhancement: {e}") from e

    async def _run_task(self, task: EnhancementTask, request_id: str) -> EnhancementResult:
        label = task.display_label
        context = task.context or self.default_context
        logger.info("[%s] Enhancing field '%s' (%d chars)", request_id, task.field_name, len(task.raw_text))
        try:
            try:
                enhanced = await asyncio.wait_for(
                    self.enhancer(task.raw_text, task.field_type, context),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError as e:
                raise EnhancementTimeout(f"Enhancement of '{task.field_name}' exceeded {self.timeout:.0f}s") from e
            except EnhancementTaskFailure:
                raise
            except Exception as e:
                raise EnhancementServiceError(f"Enhancement call for '{task.field_name}' failed: {e}") from e
            if not isinstance(enhanced, str) or not enhanced.strip():
                raise EnhancementServiceError(f"Empty enhancement returned for '{task.field_name}'")
        except EnhancementTaskFailure as e:
            logger.warning(
                "[%s] Enhancement failed for '%s', keeping original text: %s",
                request_id,
                task.field_name,
                str(e),
            )
            return EnhancementResult(
                field_name=task.field_name,
                final_text=task.raw_text,
                succeeded=False,
                detail_message=f"⚠ Failed to enhance {label}, kept original text",
            )

        enhanced = enhanced.strip()
        return EnhancementResult(
            field_name=task.field_name,
            final_text=enhanced,
            succeeded=True,
            detail_message=f"✓ Enhanced {label} ({len(enhanced)} characters)",
        )

    @staticmethod
    def _validate_queue(tasks: Sequence[EnhancementTask]) -> None:
        seen: set[str] = set()
        for index, task in enumerate(tasks):
            if not isinstance(task, EnhancementTask):
                raise EnhancementBatchFailure(f"Queue entry {index} is not an enhancement task")
            if task.field_name in seen:
                raise EnhancementBatchFailure(f"Duplicate enhancement task for field '{task.field_name}'")
            seen.add(task.field_name)

