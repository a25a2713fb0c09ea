import json
import logging
from collections.abc import AsyncIterator

from app.models.report_models import ProgressEvent
from app.services.progress_broadcaster import ProgressBroadcaster
from app.services.progress_broadcaster import broadcaster

__all__ = [
    "_create_stream_event",
    "_stream_progress_events",
]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# NDJSON event helper
# ---------------------------------------------------------------------------


def _create_stream_event(event: ProgressEvent) -> str:
    """Serialize a progress event to one NDJSON line."""
    return json.dumps(event.to_wire(), ensure_ascii=False) + "\n"


# ---------------------------------------------------------------------------
# Progress tail for one report
# ---------------------------------------------------------------------------


async def _stream_progress_events(
    report_id: str,
    request_id: str,
    progress: ProgressBroadcaster | None = None,
) -> AsyncIterator[str]:
    """Yield the report's progress as NDJSON until the run's terminal event or channel closure.

    A client that disconnects only ends its own subscription.
    """
    progress = progress or broadcaster
    logger.info("[%s] Progress stream opened for report %s", request_id, report_id)
    sent = 0
    try:
        async for event in progress.subscribe(report_id):
            sent += 1
            yield _create_stream_event(event)
    finally:
        logger.info("[%s] Progress stream for report %s ended after %d events", request_id, report_id, sent)
