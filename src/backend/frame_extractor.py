import logging
import os
import subprocess
import tempfile
from typing import Optional

from config import settings
from errors import FrameExtractionFailure
from storage import ObjectStore

logger = logging.getLogger(__name__)


class FrameExtractor:
    """Pulls the last frame of a finished segment to seed the next one."""

    def __init__(
        self,
        store: ObjectStore,
        ffmpeg_binary: Optional[str] = None,
        ffprobe_binary: Optional[str] = None,
        end_offset: Optional[float] = None,
        timeout: int = 120,
    ):
        self.store = store
        self.ffmpeg_binary = ffmpeg_binary or settings.ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary or settings.ffprobe_binary
        self.end_offset = settings.frame_end_offset if end_offset is None else end_offset
        self.timeout = timeout

    def probe_duration(self, video_path: str) -> Optional[float]:
        cmd = [
            self.ffprobe_binary, "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            video_path,
        ]
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        if result.returncode != 0:
            logger.warning("ffprobe failed for %s: %s", video_path, result.stderr.strip())
            return None
        try:
            duration = float(result.stdout.strip())
        except ValueError:
            return None
        return duration if duration > 0 else None

    def _extract_command(self, video_path: str, frame_path: str, duration: Optional[float]):
        if duration is not None:
            seek = ["-ss", f"{max(duration - self.end_offset, 0):.3f}", "-i", video_path]
        else:
            seek = ["-sseof", f"-{self.end_offset}", "-i", video_path]
        return [self.ffmpeg_binary, "-y", *seek, "-frames:v", "1", "-f", "image2", frame_path]

    def extract_last_frame(self, video_uri: str, content_id: int, segment_number: int) -> str:
        """Return the object-store URI of the last frame of ``video_uri``."""
        try:
            video_bytes = self.store.get(video_uri)
            if not video_bytes:
                raise FrameExtractionFailure(f"Segment {segment_number} video at {video_uri} is empty")

            with tempfile.TemporaryDirectory(prefix=f"frame_{content_id}_{segment_number}_") as workdir:
                video_path = os.path.join(workdir, f"segment_{segment_number}.mp4")
                frame_path = os.path.join(workdir, f"segment_{segment_number}_last_frame.png")
                with open(video_path, "wb") as f:
                    f.write(video_bytes)

                duration = self.probe_duration(video_path)
                result = subprocess.run(
                    self._extract_command(video_path, frame_path, duration),
                    capture_output=True, text=True, timeout=self.timeout,
                )
                if result.returncode != 0 or not os.path.exists(frame_path):
                    raise FrameExtractionFailure(
                        f"FFmpeg could not extract the last frame of segment {segment_number}: {result.stderr.strip()}"
                    )

                with open(frame_path, "rb") as f:
                    frame_bytes = f.read()

            uri = self.store.put(self.store.frame_path(content_id, segment_number), frame_bytes, "image/png")
            logger.info("Extracted last frame of segment %d for content %d: %s", segment_number, content_id, uri)
            return uri
        except FrameExtractionFailure:
            raise
        except subprocess.TimeoutExpired as e:
            raise FrameExtractionFailure(f"Frame extraction timed out for segment {segment_number}") from e
        except Exception as e:
            raise FrameExtractionFailure(f"Frame extraction failed for segment {segment_number}: {e}") from e
