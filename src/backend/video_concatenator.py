import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from typing import List, Optional, Sequence

from config import settings
from errors import ConcatenationFailure

logger = logging.getLogger(__name__)

STRATEGIES = ("auto", "stream", "filter")


@dataclass(frozen=True)
class EncodingProfile:
    name: str
    preset: str
    crf: int
    audio_bitrate: str
    b_frames: int
    audio_filter: str
    seam_fade_seconds: float = 0.0
    frame_rate: int = 30
    gop: int = 30
    audio_sample_rate: int = 48000
    audio_channels: int = 2
    h264_level: str = "4.0"


REEL_PROFILE = EncodingProfile(
    name="reel",
    preset="medium",
    crf=18,
    audio_bitrate="192k",
    b_frames=2,
    audio_filter=(
        "aresample=async=1:first_pts=0,volume=1.0,highpass=f=80,lowpass=f=15000,"
        "compand=.3|.3:1|1:-90/-60|-60/-40|-40/-30|-30/-20|0/-20:6:0:-90:0.2"
    ),
)

STORY_PROFILE = EncodingProfile(
    name="story",
    preset="slow",
    crf=15,
    audio_bitrate="320k",
    b_frames=3,
    audio_filter=(
        "aresample=async=1:first_pts=0,volume=1.0,highpass=f=80,lowpass=f=15000,"
        "compand=.1|.1:.5|.5:-90/-70|-70/-45|-45/-30|-30/-20|0/-18:6:0:-90:0.3"
    ),
    seam_fade_seconds=0.3,
)


def profile_for(content_type: str) -> EncodingProfile:
    return STORY_PROFILE if content_type == "story" else REEL_PROFILE


def encode_options(profile: EncodingProfile) -> List[str]:
    """Encoder settings shared by both strategies so segment seams stay invisible."""
    return [
        "-c:v", "libx264",
        "-preset", profile.preset,
        "-crf", str(profile.crf),
        "-profile:v", "high",
        "-level", profile.h264_level,
        "-pix_fmt", "yuv420p",
        "-r", str(profile.frame_rate),
        "-g", str(profile.gop),
        "-keyint_min", str(profile.gop),
        "-sc_threshold", "0",
        "-bf", str(profile.b_frames),
        "-c:a", "aac",
        "-b:a", profile.audio_bitrate,
        "-ar", str(profile.audio_sample_rate),
        "-ac", str(profile.audio_channels),
    ]


OUTPUT_OPTIONS = ["-fps_mode", "cfr", "-avoid_negative_ts", "make_zero", "-movflags", "+faststart"]


def _seam_fades(index: int, count: int, seconds: float) -> List[str]:
    """Fade in after the previous seam and out before the next one, in place."""
    half = seconds / 2
    fades = []
    if index > 0:
        fades.append(f"afade=t=in:d={half}")
    if index < count - 1:
        # afade=t=out needs the start time, so fade the reversed stream in instead
        fades.append(f"areverse,afade=t=in:d={half},areverse")
    return fades


def build_filter_graph(count: int, profile: EncodingProfile) -> str:
    videos = "".join(f"[{i}:v]" for i in range(count))
    parts = [f"{videos}concat=n={count}:v=1:a=0[outv]"]

    # Audio segments are joined end to end like the video so lip sync holds at every seam.
    audios = ""
    for i in range(count):
        fades = _seam_fades(i, count, profile.seam_fade_seconds) if profile.seam_fade_seconds > 0 else []
        if fades:
            parts.append(f"[{i}:a]{','.join(fades)}[f{i}]")
            audios += f"[f{i}]"
        else:
            audios += f"[{i}:a]"
    parts.append(f"{audios}concat=n={count}:v=0:a=1[ajoined]")

    parts.append(f"[ajoined]{profile.audio_filter}[outa]")
    return ";".join(parts)


class VideoConcatenator:
    def __init__(self, temp_dir: Optional[str] = None, ffmpeg_binary: Optional[str] = None, timeout: Optional[int] = None):
        self.temp_dir = temp_dir or settings.temp_dir
        self.ffmpeg_binary = ffmpeg_binary or settings.ffmpeg_binary
        self.timeout = timeout or settings.ffmpeg_timeout

    def stream_join_command(self, manifest_path: str, output_path: str, profile: EncodingProfile) -> List[str]:
        return [
            self.ffmpeg_binary, "-y",
            "-f", "concat", "-safe", "0", "-fflags", "+genpts",
            "-i", manifest_path,
            *encode_options(profile),
            "-af", profile.audio_filter,
            *OUTPUT_OPTIONS,
            output_path,
        ]

    def filter_graph_command(self, input_paths: Sequence[str], output_path: str, profile: EncodingProfile) -> List[str]:
        cmd = [self.ffmpeg_binary, "-y"]
        for path in input_paths:
            cmd += ["-i", path]
        cmd += [
            "-filter_complex", build_filter_graph(len(input_paths), profile),
            "-map", "[outv]", "-map", "[outa]",
            *encode_options(profile),
            *OUTPUT_OPTIONS,
            output_path,
        ]
        return cmd

    def concatenate(
        self,
        buffers: Sequence[bytes],
        content_id: int,
        content_type: str = "reel",
        strategy: str = "auto",
    ) -> bytes:
        """Join ordered segment videos into one seamless video."""
        if not buffers:
            raise ValueError("No video segments to concatenate")
        for index, buffer in enumerate(buffers, start=1):
            if not buffer:
                raise ValueError(f"Video segment {index} is empty")
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown concatenation strategy: {strategy}")

        if len(buffers) == 1:
            return bytes(buffers[0])

        profile = profile_for(content_type)
        os.makedirs(self.temp_dir, exist_ok=True)
        workdir = tempfile.mkdtemp(prefix=f"content_{content_id}_", dir=self.temp_dir)
        try:
            input_paths = []
            for number, buffer in enumerate(buffers, start=1):
                path = os.path.join(workdir, f"segment_{number}.mp4")
                with open(path, "wb") as f:
                    f.write(buffer)
                input_paths.append(path)

            output_path = os.path.join(workdir, f"content_{content_id}_final.mp4")
            logger.info(
                "Concatenating %d segments for content %d (%s profile, %s strategy)",
                len(buffers), content_id, profile.name, strategy,
            )

            if strategy in ("auto", "stream"):
                try:
                    return self._stream_join(workdir, input_paths, output_path, profile)
                except ConcatenationFailure as e:
                    if strategy == "stream":
                        raise
                    logger.warning("Stream join failed for content %d, using filter graph: %s", content_id, e)
            return self._filter_graph(input_paths, output_path, profile)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    def _stream_join(self, workdir: str, input_paths: Sequence[str], output_path: str, profile: EncodingProfile) -> bytes:
        manifest_path = os.path.join(workdir, "concat_list.txt")
        with open(manifest_path, "w") as f:
            for path in input_paths:
                escaped = os.path.abspath(path).replace("'", "'\\''")
                f.write(f"file '{escaped}'\n")
        return self._run(self.stream_join_command(manifest_path, output_path, profile), output_path)

    def _filter_graph(self, input_paths: Sequence[str], output_path: str, profile: EncodingProfile) -> bytes:
        return self._run(self.filter_graph_command(input_paths, output_path, profile), output_path)

    def _run(self, cmd: List[str], output_path: str) -> bytes:
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise ConcatenationFailure(f"FFmpeg timed out after {self.timeout}s") from e
        except OSError as e:
            raise ConcatenationFailure(f"Could not run FFmpeg: {e}") from e

        if result.returncode != 0:
            raise ConcatenationFailure(f"FFmpeg error: {result.stderr[-2000:]}")
        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            raise ConcatenationFailure("FFmpeg produced no output")

        with open(output_path, "rb") as f:
            return f.read()
