"""Sequential segment generation for one content.

Segments run strictly in order. Segment ``i > 1`` is only submitted once
segment ``i - 1`` is COMPLETED, and it is seeded with that segment's last
frame and the content's shared seed. A failure marks the segment FAILED and
stops the run; later segments stay PENDING and are never submitted.
"""

import logging
import threading
import time
from typing import Callable, List, Optional, Sequence

from sqlalchemy.orm import Session

from config import settings
from duration_planner import compute_seed
from errors import SafetyRejection, SegmentGenerationError, SegmentTimeout
from models import SegmentStatus, VideoSegment
from polling import BoundedWait, WaitTimeout
from prompt_sanitizer import simplify_prompt
from script_composer import SegmentScript
from storage import ObjectStore
from video_client import PollResult, VideoClient

logger = logging.getLogger(__name__)


class SegmentOrchestrator:
    def __init__(
        self,
        session: Session,
        video_client: VideoClient,
        frame_extractor,
        store: ObjectStore,
        simplify: Callable[[str], str] = simplify_prompt,
        poll_interval: Optional[float] = None,
        poll_max_attempts: Optional[int] = None,
        wait_interval: Optional[float] = None,
        wait_timeout: Optional[float] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.session = session
        self.video_client = video_client
        self.frame_extractor = frame_extractor
        self.store = store
        self.simplify = simplify
        self.poll_interval = settings.operation_poll_interval if poll_interval is None else poll_interval
        self.poll_max_attempts = settings.operation_poll_max_attempts if poll_max_attempts is None else poll_max_attempts
        if self.poll_max_attempts < 1:
            raise ValueError("poll_max_attempts must be >= 1")
        self.wait_interval = settings.previous_segment_wait_interval if wait_interval is None else wait_interval
        self.wait_timeout = settings.previous_segment_wait_timeout if wait_timeout is None else wait_timeout
        self.sleep = sleep
        self.clock = clock
        self.cancel_event = cancel_event

    def run(self, content_id: int, scripts: Sequence[SegmentScript], aspect_ratio: str) -> List[VideoSegment]:
        """Generate every segment in order and return them COMPLETED, ordered by number."""
        seed = compute_seed(content_id)
        segments = self.create_segments(content_id, scripts)
        logger.info("Generating %d segments for content %d with seed %d", len(segments), content_id, seed)

        for segment in segments:
            self.generate_segment(segment, seed, aspect_ratio)

        return segments

    def create_segments(self, content_id: int, scripts: Sequence[SegmentScript]) -> List[VideoSegment]:
        # Previous runs are replaced as a whole so numbering stays 1..N.
        self.session.query(VideoSegment).filter(VideoSegment.content_id == content_id).delete()
        segments = [
            VideoSegment(
                content_id=content_id,
                segment_number=script.segment_number,
                prompt=script.prompt,
                duration=script.duration,
                status=SegmentStatus.PENDING,
            )
            for script in sorted(scripts, key=lambda s: s.segment_number)
        ]
        self.session.add_all(segments)
        self.session.commit()
        return segments

    def generate_segment(self, segment: VideoSegment, seed: int, aspect_ratio: str) -> VideoSegment:
        try:
            self._mark_generating(segment)

            reference_image_uri = None
            if segment.segment_number > 1:
                previous = self._wait_for_previous(segment)
                reference_image_uri = self.frame_extractor.extract_last_frame(
                    previous.remote_uri, segment.content_id, previous.segment_number
                )

            remote_uri = self._generate_with_safety_retry(segment, seed, aspect_ratio, reference_image_uri)
        except Exception as e:
            self._mark_failed(segment, e)
            raise

        self._mark_completed(segment, remote_uri)
        return segment

    def _mark_generating(self, segment: VideoSegment):
        busy = (
            self.session.query(VideoSegment)
            .filter(
                VideoSegment.content_id == segment.content_id,
                VideoSegment.status == SegmentStatus.GENERATING,
                VideoSegment.id != segment.id,
            )
            .first()
        )
        if busy:
            raise SegmentGenerationError(
                f"Segment {busy.segment_number} of content {segment.content_id} is already generating"
            )
        segment.status = SegmentStatus.GENERATING
        self.session.commit()

    def _mark_completed(self, segment: VideoSegment, remote_uri: str):
        segment.remote_uri = remote_uri
        segment.operation_handle = None
        segment.error_message = None
        segment.status = SegmentStatus.COMPLETED
        self.session.commit()
        logger.info("Segment %d of content %d completed: %s", segment.segment_number, segment.content_id, remote_uri)

    def _mark_failed(self, segment: VideoSegment, error: Exception):
        self.session.rollback()
        segment.status = SegmentStatus.FAILED
        segment.operation_handle = None
        segment.remote_uri = None
        segment.error_message = str(error)
        self.session.commit()
        logger.error("Segment %d of content %d failed: %s", segment.segment_number, segment.content_id, error)

    def _bounded_wait(self, **kwargs) -> BoundedWait:
        return BoundedWait(sleep=self.sleep, clock=self.clock, cancel_event=self.cancel_event, **kwargs)

    def _wait_for_previous(self, segment: VideoSegment) -> VideoSegment:
        previous = (
            self.session.query(VideoSegment)
            .filter(
                VideoSegment.content_id == segment.content_id,
                VideoSegment.segment_number == segment.segment_number - 1,
            )
            .first()
        )
        if previous is None:
            raise SegmentGenerationError(f"Segment {segment.segment_number - 1} does not exist")

        def probe():
            self.session.refresh(previous)
            if previous.status == SegmentStatus.COMPLETED:
                return previous
            if previous.status == SegmentStatus.FAILED:
                raise SegmentGenerationError(
                    f"Previous segment {previous.segment_number} failed: {previous.error_message}"
                )
            return None

        wait = self._bounded_wait(interval=self.wait_interval, timeout=self.wait_timeout)
        try:
            return wait.run(probe, f"segment {previous.segment_number} to complete")
        except WaitTimeout as e:
            raise SegmentTimeout(
                f"Timed out after {self.wait_timeout:.0f}s waiting for segment {previous.segment_number} to complete"
            ) from e

    def _generate_with_safety_retry(self, segment, seed, aspect_ratio, reference_image_uri) -> str:
        try:
            return self._attempt(segment, segment.prompt, seed, aspect_ratio, reference_image_uri)
        except SafetyRejection as rejection:
            simplified = self.simplify(segment.prompt)
            logger.warning(
                "Segment %d rejected by safety filters (%s); retrying once with a simplified prompt (%d -> %d chars)",
                segment.segment_number, "; ".join(rejection.reasons) or "no reason", len(segment.prompt), len(simplified),
            )
            return self._attempt(segment, simplified, seed, aspect_ratio, reference_image_uri)

    def _attempt(self, segment, prompt, seed, aspect_ratio, reference_image_uri) -> str:
        result = self.video_client.submit(
            prompt,
            segment.duration,
            aspect_ratio,
            seed,
            reference_image_uri=reference_image_uri,
            output_prefix=f"{self.store.segment_prefix(segment.content_id)}segment_{segment.segment_number}/",
        )
        if result.operation_handle and not result.rejected:
            segment.operation_handle = result.operation_handle
            self.session.commit()
            result = self._poll(segment, result.operation_handle)
        return self._resolve(segment, result)

    def _poll(self, segment: VideoSegment, handle: str) -> PollResult:
        def probe():
            result = self.video_client.poll(handle)
            if result.error:
                raise SegmentGenerationError(f"Segment {segment.segment_number} generation failed: {result.error}")
            return result if result.done else None

        wait = self._bounded_wait(interval=self.poll_interval, max_attempts=self.poll_max_attempts, delay_first=True)
        try:
            return wait.run(probe, f"segment {segment.segment_number} operation")
        except WaitTimeout as e:
            raise SegmentTimeout(
                f"Segment {segment.segment_number} did not finish after {self.poll_max_attempts} polls"
            ) from e

    def _resolve(self, segment: VideoSegment, result) -> str:
        if result.rejected:
            raise SafetyRejection(result.reasons)
        if result.remote_uri:
            return result.remote_uri
        if result.payload:
            path = self.store.segment_path(segment.content_id, segment.segment_number)
            return self.store.put(path, result.payload, "video/mp4")
        raise SegmentGenerationError(f"Segment {segment.segment_number} finished without a video")
