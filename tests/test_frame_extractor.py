import os
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from conftest import FakeObjectStore
from errors import FrameExtractionFailure
from frame_extractor import FrameExtractor

VIDEO_URI = "gs://test-bucket/reels/content_5/segment_1/sample_0.mp4"


@pytest.fixture
def store():
    store = FakeObjectStore()
    store.objects["reels/content_5/segment_1/sample_0.mp4"] = b"mp4-bytes"
    return store


def _tools(duration="8.000000", ffmpeg_code=0):
    calls = []

    def run(cmd, **kwargs):
        calls.append(list(cmd))
        if cmd[0] == "ffprobe":
            return MagicMock(returncode=0, stdout=duration, stderr="")
        if ffmpeg_code == 0:
            with open(cmd[-1], "wb") as f:
                f.write(b"\x89PNG frame")
        return MagicMock(returncode=ffmpeg_code, stdout="", stderr="" if ffmpeg_code == 0 else "decode error")

    run.calls = calls
    return run


def test_extracts_frame_just_before_end(store):
    run = _tools()
    with patch("frame_extractor.subprocess.run", side_effect=run):
        uri = FrameExtractor(store, "ffmpeg", "ffprobe").extract_last_frame(VIDEO_URI, 5, 1)

    assert uri == "gs://test-bucket/reels/frames/content_5/segment_1_last_frame.png"
    assert store.objects["reels/frames/content_5/segment_1_last_frame.png"] == b"\x89PNG frame"

    ffmpeg = run.calls[1]
    assert ffmpeg[ffmpeg.index("-ss") + 1] == "7.900"
    assert ffmpeg[ffmpeg.index("-frames:v") + 1] == "1"
    assert ffmpeg[-1].endswith(".png")
    assert "-vf" not in ffmpeg


def test_falls_back_to_sseof_without_duration(store):
    run = _tools(duration="N/A")
    with patch("frame_extractor.subprocess.run", side_effect=run):
        FrameExtractor(store, "ffmpeg", "ffprobe").extract_last_frame(VIDEO_URI, 5, 1)

    ffmpeg = run.calls[1]
    assert "-sseof" in ffmpeg
    assert "-ss" not in ffmpeg


def test_temp_files_removed(store):
    run = _tools()
    with patch("frame_extractor.subprocess.run", side_effect=run):
        FrameExtractor(store, "ffmpeg", "ffprobe").extract_last_frame(VIDEO_URI, 5, 1)

    assert not os.path.exists(os.path.dirname(run.calls[1][-1]))


def test_ffmpeg_error_raises(store):
    run = _tools(ffmpeg_code=1)
    with patch("frame_extractor.subprocess.run", side_effect=run):
        with pytest.raises(FrameExtractionFailure, match="decode error"):
            FrameExtractor(store, "ffmpeg", "ffprobe").extract_last_frame(VIDEO_URI, 5, 1)

    assert not os.path.exists(os.path.dirname(run.calls[1][-1]))


def test_missing_video_raises(store):
    with pytest.raises(FrameExtractionFailure):
        FrameExtractor(store, "ffmpeg", "ffprobe").extract_last_frame("gs://test-bucket/reels/nope.mp4", 5, 1)


def test_timeout_raises(store):
    with patch("frame_extractor.subprocess.run", side_effect=subprocess.TimeoutExpired("ffprobe", 120)):
        with pytest.raises(FrameExtractionFailure, match="timed out"):
            FrameExtractor(store, "ffmpeg", "ffprobe").extract_last_frame(VIDEO_URI, 5, 1)
