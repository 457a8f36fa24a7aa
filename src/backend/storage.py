import logging
from typing import Optional, Protocol, Tuple

from google.cloud import storage

from config import settings

logger = logging.getLogger(__name__)


def parse_gs_uri(uri: str) -> Tuple[str, str]:
    """Split ``gs://bucket/path`` into ``(bucket, path)``."""
    if not uri.startswith("gs://"):
        raise ValueError(f"Not a gs:// URI: {uri}")
    bucket, _, path = uri[len("gs://"):].partition("/")
    if not bucket or not path:
        raise ValueError(f"Incomplete gs:// URI: {uri}")
    return bucket, path


class ObjectStore(Protocol):
    bucket_name: str
    base_folder: str

    def put(self, path: str, data: bytes, content_type: str) -> str: ...
    def get(self, uri: str) -> bytes: ...
    def delete(self, uri: str) -> None: ...
    def delete_by_prefix(self, prefix: str) -> int: ...
    def uri(self, path: str) -> str: ...
    def segment_prefix(self, content_id: int) -> str: ...
    def frame_prefix(self, content_id: int) -> str: ...
    def segment_path(self, content_id: int, segment_number: int) -> str: ...
    def frame_path(self, content_id: int, segment_number: int) -> str: ...


class StoragePaths:
    """Object layout shared by every store implementation."""

    bucket_name: str
    base_folder: str

    def uri(self, path: str) -> str:
        return f"gs://{self.bucket_name}/{path}"

    def segment_prefix(self, content_id: int) -> str:
        return f"{self.base_folder}/content_{content_id}/"

    def frame_prefix(self, content_id: int) -> str:
        return f"{self.base_folder}/frames/content_{content_id}/"

    def segment_path(self, content_id: int, segment_number: int) -> str:
        return f"{self.segment_prefix(content_id)}segment_{segment_number}.mp4"

    def frame_path(self, content_id: int, segment_number: int) -> str:
        return f"{self.frame_prefix(content_id)}segment_{segment_number}_last_frame.png"


class GcsObjectStore(StoragePaths):
    def __init__(self, bucket_name: Optional[str] = None, base_folder: Optional[str] = None, client=None):
        self.bucket_name = bucket_name or settings.gcs_bucket_name
        self.base_folder = (base_folder or settings.gcs_base_folder).strip("/")
        self._client = client

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client(project=settings.google_project_id)
        return self._client

    def put(self, path: str, data: bytes, content_type: str) -> str:
        blob = self.client.bucket(self.bucket_name).blob(path)
        blob.upload_from_string(data, content_type=content_type)
        uri = self.uri(path)
        logger.info("Uploaded %d bytes to %s", len(data), uri)
        return uri

    def get(self, uri: str) -> bytes:
        bucket, path = parse_gs_uri(uri)
        return self.client.bucket(bucket).blob(path).download_as_bytes()

    def delete(self, uri: str) -> None:
        bucket, path = parse_gs_uri(uri)
        self.client.bucket(bucket).blob(path).delete()
        logger.info("Deleted %s", uri)

    def delete_by_prefix(self, prefix: str) -> int:
        deleted = 0
        for blob in self.client.bucket(self.bucket_name).list_blobs(prefix=prefix):
            blob.delete()
            deleted += 1
        logger.info("Deleted %d objects under gs://%s/%s", deleted, self.bucket_name, prefix)
        return deleted
