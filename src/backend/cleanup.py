import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from errors import CleanupFailure
from storage import ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    deleted: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def cleanup_content_artifacts(store: ObjectStore, content_id: int, segment_uris: Sequence[str] = ()) -> CleanupReport:
    """Delete segment videos and reference frames of a content. Never raises."""
    report = CleanupReport()
    segment_prefix = store.segment_prefix(content_id)
    frame_prefix = store.frame_prefix(content_id)

    for prefix in (segment_prefix, frame_prefix):
        try:
            report.deleted += store.delete_by_prefix(prefix)
        except Exception as e:
            _record(report, CleanupFailure(f"Could not delete objects under {prefix}: {e}"))

    # Segments the model wrote outside the content prefixes
    scoped = (store.uri(segment_prefix), store.uri(frame_prefix))
    for uri in segment_uris:
        if not uri or uri.startswith(scoped):
            continue
        try:
            store.delete(uri)
            report.deleted += 1
        except Exception as e:
            _record(report, CleanupFailure(f"Could not delete {uri}: {e}"))

    logger.info("Cleaned up %d artifacts for content %d", report.deleted, content_id)
    return report


def _record(report: CleanupReport, failure: CleanupFailure):
    logger.warning(str(failure))
    report.errors.append(str(failure))
