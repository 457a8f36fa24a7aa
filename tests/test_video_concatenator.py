import os
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from errors import ConcatenationFailure
from video_concatenator import REEL_PROFILE, STORY_PROFILE, VideoConcatenator, build_filter_graph


def _ffmpeg(outputs=(b"final-video",), returncodes=(0,)):
    """Fake subprocess.run that writes ``outputs`` to the command's output path in turn."""
    calls = []

    def run(cmd, **kwargs):
        index = len(calls)
        calls.append(list(cmd))
        code = returncodes[min(index, len(returncodes) - 1)]
        if code == 0:
            with open(cmd[-1], "wb") as f:
                f.write(outputs[min(index, len(outputs) - 1)])
        return MagicMock(returncode=code, stderr="" if code == 0 else "Invalid data found")

    run.calls = calls
    return run


@pytest.fixture
def concatenator(tmp_path):
    return VideoConcatenator(temp_dir=str(tmp_path / "concat"), ffmpeg_binary="ffmpeg", timeout=60)


def test_rejects_empty_input(concatenator):
    with pytest.raises(ValueError):
        concatenator.concatenate([], 1)
    with pytest.raises(ValueError):
        concatenator.concatenate([b"a", b""], 1)


def test_single_buffer_returned_unchanged(concatenator):
    with patch("video_concatenator.subprocess.run") as run:
        assert concatenator.concatenate([b"only"], 1) == b"only"
    run.assert_not_called()


def test_stream_join_uses_seamless_encode_settings(concatenator, tmp_path):
    run = _ffmpeg()
    with patch("video_concatenator.subprocess.run", side_effect=run):
        result = concatenator.concatenate([b"one", b"two", b"three"], 7)

    assert result == b"final-video"
    cmd = run.calls[0]
    assert cmd[cmd.index("-f") + 1] == "concat"
    assert cmd[cmd.index("-safe") + 1] == "0"
    assert cmd[cmd.index("-r") + 1] == "30"
    assert cmd[cmd.index("-g") + 1] == "30"
    assert cmd[cmd.index("-sc_threshold") + 1] == "0"
    assert cmd[cmd.index("-crf") + 1] == str(REEL_PROFILE.crf)
    assert "compand" in cmd[cmd.index("-af") + 1]


def test_temp_directory_removed_after_success(concatenator, tmp_path):
    with patch("video_concatenator.subprocess.run", side_effect=_ffmpeg()):
        concatenator.concatenate([b"one", b"two"], 7)
    assert os.listdir(tmp_path / "concat") == []


def test_story_profile(concatenator):
    run = _ffmpeg()
    with patch("video_concatenator.subprocess.run", side_effect=run):
        concatenator.concatenate([b"one", b"two"], 7, content_type="story")

    cmd = run.calls[0]
    assert cmd[cmd.index("-preset") + 1] == "slow"
    assert cmd[cmd.index("-b:a") + 1] == "320k"


def test_auto_falls_back_to_filter_graph(concatenator, tmp_path):
    run = _ffmpeg(outputs=(b"filtered",), returncodes=(1, 0))
    with patch("video_concatenator.subprocess.run", side_effect=run):
        result = concatenator.concatenate([b"one", b"two"], 7)

    assert result == b"filtered"
    assert len(run.calls) == 2
    fallback = run.calls[1]
    assert "-filter_complex" in fallback
    assert fallback.count("-i") == 2
    assert os.listdir(tmp_path / "concat") == []


def test_failure_cleans_up_and_raises(concatenator, tmp_path):
    run = _ffmpeg(returncodes=(1,))
    with patch("video_concatenator.subprocess.run", side_effect=run):
        with pytest.raises(ConcatenationFailure):
            concatenator.concatenate([b"one", b"two"], 7)

    assert len(run.calls) == 2
    assert os.listdir(tmp_path / "concat") == []


def test_stream_strategy_does_not_fall_back(concatenator):
    run = _ffmpeg(returncodes=(1,))
    with patch("video_concatenator.subprocess.run", side_effect=run):
        with pytest.raises(ConcatenationFailure):
            concatenator.concatenate([b"one", b"two"], 7, strategy="stream")
    assert len(run.calls) == 1


def test_timeout_is_a_concatenation_failure(concatenator, tmp_path):
    with patch("video_concatenator.subprocess.run", side_effect=subprocess.TimeoutExpired("ffmpeg", 60)):
        with pytest.raises(ConcatenationFailure, match="timed out"):
            concatenator.concatenate([b"one", b"two"], 7, strategy="filter")
    assert os.listdir(tmp_path / "concat") == []


def test_filter_graph_joins_audio_like_video():
    assert build_filter_graph(3, REEL_PROFILE).startswith("[0:v][1:v][2:v]concat=n=3:v=1:a=0[outv]")
    assert "[0:a][1:a][2:a]concat=n=3:v=0:a=1[ajoined]" in build_filter_graph(3, REEL_PROFILE)

    story = build_filter_graph(4, STORY_PROFILE)
    assert "acrossfade" not in story
    assert "[0:v][1:v][2:v][3:v]concat=n=4:v=1:a=0[outv]" in story
    assert "[f0][f1][f2][f3]concat=n=4:v=0:a=1[ajoined]" in story
    assert "[0:a]areverse,afade=t=in:d=0.15,areverse[f0]" in story
    assert "[1:a]afade=t=in:d=0.15,areverse,afade=t=in:d=0.15,areverse[f1]" in story
    assert "[3:a]afade=t=in:d=0.15[f3]" in story
    assert story.endswith("[outa]")
