"""Pipeline entry point: one content idea in, one persisted Media out.

plan -> compose -> generate segments -> download -> concatenate -> store -> cleanup
"""

import logging
import os
import threading
import time
from typing import List, Optional

from sqlalchemy.orm import Session

from cleanup import cleanup_content_artifacts
from config import settings
from duration_planner import SEGMENT_DURATION_SECONDS, plan_segments
from errors import ContentNotFoundError, SegmentGenerationError
from frame_extractor import FrameExtractor
from llm import GeminiTextGenerator
from models import Content, Media, VideoSegment
from schemas import ContentIdea, TimeSlotContext
from script_composer import ScriptComposer
from segment_orchestrator import SegmentOrchestrator
from storage import GcsObjectStore, ObjectStore
from video_client import VeoVideoClient
from video_concatenator import VideoConcatenator

logger = logging.getLogger(__name__)


class ExtendedVideoPipeline:
    def __init__(
        self,
        session: Session,
        composer: ScriptComposer,
        orchestrator: SegmentOrchestrator,
        store: ObjectStore,
        concatenator: VideoConcatenator,
        output_dir: Optional[str] = None,
    ):
        self.session = session
        self.composer = composer
        self.orchestrator = orchestrator
        self.store = store
        self.concatenator = concatenator
        self.output_dir = output_dir or settings.output_dir

    def generate_extended_video(
        self,
        content_id: int,
        content_idea: ContentIdea,
        desired_duration_seconds: int,
        aspect_ratio: Optional[str] = None,
        content_type: str = "reel",
        time_slot_context: Optional[TimeSlotContext] = None,
    ) -> Media:
        """Run the whole pipeline. Raises on any unrecoverable failure, never returns a partial result."""
        content = self.session.query(Content).filter(Content.id == content_id).first()
        if not content:
            raise ContentNotFoundError(f"Content {content_id} not found")

        aspect_ratio = aspect_ratio or settings.default_aspect_ratio
        plan = plan_segments(desired_duration_seconds)
        logger.info(
            "Content %d: %ss requested -> %d segments of %ds (%s, %s)",
            content_id, desired_duration_seconds, len(plan), SEGMENT_DURATION_SECONDS, content_type, aspect_ratio,
        )

        script = self.composer.compose(content_idea, plan, time_slot_context, content_type, aspect_ratio)
        content.video_script = [segment.to_dict() for segment in script.segments]
        content.desired_duration_seconds = desired_duration_seconds
        content.is_extended_video = desired_duration_seconds > SEGMENT_DURATION_SECONDS
        self.session.commit()

        segments = self.orchestrator.run(content_id, script.segments, aspect_ratio)
        buffers = self._download(segments)
        final_video = self.concatenator.concatenate(buffers, content_id, content_type=content_type)

        media = self._store_media(content_id, content_idea, final_video, desired_duration_seconds, len(segments))

        report = cleanup_content_artifacts(self.store, content_id, [s.remote_uri for s in segments])
        if not report.ok:
            logger.warning("Content %d finished with %d cleanup errors", content_id, len(report.errors))
        return media

    def _download(self, segments: List[VideoSegment]) -> List[bytes]:
        buffers = []
        for segment in segments:
            data = self.store.get(segment.remote_uri)
            if not data:
                raise SegmentGenerationError(f"Segment {segment.segment_number} video at {segment.remote_uri} is empty")
            logger.info("Downloaded segment %d (%d bytes)", segment.segment_number, len(data))
            buffers.append(data)
        return buffers

    def _store_media(
        self,
        content_id: int,
        content_idea: ContentIdea,
        video: bytes,
        desired_duration_seconds: int,
        segment_count: int,
    ) -> Media:
        os.makedirs(self.output_dir, exist_ok=True)
        file_name = f"content_{content_id}_{desired_duration_seconds}s_{int(time.time() * 1000)}.mp4"
        file_path = os.path.join(self.output_dir, file_name)
        with open(file_path, "wb") as f:
            f.write(video)

        previous = self.session.query(Media).filter(Media.content_id == content_id).all()
        media = Media(
            content_id=content_id,
            file_name=file_name,
            file_path=file_path,
            file_size=len(video),
            mime_type="video/mp4",
            media_type="video",
            prompt=content_idea.description,
            is_segmented=segment_count > 1,
            segment_count=segment_count,
        )
        try:
            self.session.add(media)
            for old in previous:
                self.session.delete(old)
            self.session.commit()
        except Exception:
            self.session.rollback()
            os.remove(file_path)
            raise
        self.session.refresh(media)

        for old in previous:
            if old.file_path != file_path and os.path.exists(old.file_path):
                try:
                    os.remove(old.file_path)
                except OSError as e:
                    logger.warning("Could not remove old video %s: %s", old.file_path, e)

        logger.info("Stored final video for content %d as media %d (%d bytes)", content_id, media.id, len(video))
        return media


def build_pipeline(session: Session, cancel_event: Optional[threading.Event] = None) -> ExtendedVideoPipeline:
    """Wire the production collaborators from settings."""
    store = GcsObjectStore()
    orchestrator = SegmentOrchestrator(
        session,
        VeoVideoClient(),
        FrameExtractor(store),
        store,
        cancel_event=cancel_event,
    )
    return ExtendedVideoPipeline(
        session,
        composer=ScriptComposer(GeminiTextGenerator()),
        orchestrator=orchestrator,
        store=store,
        concatenator=VideoConcatenator(),
    )
