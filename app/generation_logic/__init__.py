"""Generation logic package.

This package groups the helpers that orchestrate a report generation run
(enhancement queue, run pipeline, progress stream, response building).
Keeping them here allows `app/api/routes.py` to stay minimal and focused on
HTTP routing while core business logic lives in composable modules.
"""

# Re-export most commonly-used helpers for convenience
from .report_finalization import _build_report_response  # noqa: F401
from .report_pipeline import run_report_pipeline  # noqa: F401
from .stream_orchestrator import _stream_progress_events  # noqa: F401
from .task_queue import build_enhancement_tasks  # noqa: F401
