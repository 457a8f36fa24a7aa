from unittest.mock import MagicMock

import pytest

from storage import GcsObjectStore, parse_gs_uri


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def store(client):
    return GcsObjectStore("videos", "reels", client=client)


def test_parse_gs_uri():
    assert parse_gs_uri("gs://videos/reels/content_1/segment_1.mp4") == ("videos", "reels/content_1/segment_1.mp4")
    with pytest.raises(ValueError):
        parse_gs_uri("https://example.com/video.mp4")
    with pytest.raises(ValueError):
        parse_gs_uri("gs://videos")


def test_paths(store):
    assert store.segment_path(3, 2) == "reels/content_3/segment_2.mp4"
    assert store.frame_path(3, 1) == "reels/frames/content_3/segment_1_last_frame.png"
    assert store.segment_prefix(3) == "reels/content_3/"
    assert store.frame_prefix(3) == "reels/frames/content_3/"


def test_prefixes_do_not_collide_across_contents(store):
    assert not store.segment_path(10, 1).startswith(store.segment_prefix(1))


def test_put_uploads_and_returns_uri(store, client):
    uri = store.put("reels/content_3/segment_2.mp4", b"data", "video/mp4")

    assert uri == "gs://videos/reels/content_3/segment_2.mp4"
    client.bucket.assert_called_with("videos")
    client.bucket.return_value.blob.assert_called_with("reels/content_3/segment_2.mp4")
    client.bucket.return_value.blob.return_value.upload_from_string.assert_called_once_with(b"data", content_type="video/mp4")


def test_get_reads_from_uri_bucket(store, client):
    client.bucket.return_value.blob.return_value.download_as_bytes.return_value = b"bytes"

    assert store.get("gs://other/path/video.mp4") == b"bytes"
    client.bucket.assert_called_with("other")


def test_delete_by_prefix(store, client):
    blobs = [MagicMock(), MagicMock()]
    client.bucket.return_value.list_blobs.return_value = blobs

    assert store.delete_by_prefix("reels/content_3/") == 2
    client.bucket.return_value.list_blobs.assert_called_once_with(prefix="reels/content_3/")
    for blob in blobs:
        blob.delete.assert_called_once()
