"""Veo video generation through the google-genai SDK.

Submission and polling RPCs are retried on transient errors (429, 5xx).
Content-policy rejections are never retried here; they come back as a
``rejected`` result so the caller can simplify the prompt and resubmit.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from google.genai import types
from google.genai.errors import ClientError, ServerError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_sleep_log,
)

from config import settings
from llm import get_genai_client

logger = logging.getLogger(__name__)

_POLICY_KEYWORDS = ("violat", "usage guidelines", "safety", "content polic", "responsible ai")


@dataclass
class SubmitResult:
    operation_handle: Optional[str] = None
    remote_uri: Optional[str] = None
    payload: Optional[bytes] = None
    rejected: bool = False
    reasons: List[str] = field(default_factory=list)


@dataclass
class PollResult:
    done: bool
    remote_uri: Optional[str] = None
    payload: Optional[bytes] = None
    rejected: bool = False
    reasons: List[str] = field(default_factory=list)
    error: Optional[str] = None


class VideoClient(Protocol):
    def submit(
        self,
        prompt: str,
        duration_seconds: int,
        aspect_ratio: str,
        seed: int,
        reference_image_uri: Optional[str] = None,
        output_prefix: Optional[str] = None,
    ) -> SubmitResult: ...

    def poll(self, operation_handle: str) -> PollResult: ...


def _is_retriable(exc: BaseException) -> bool:
    if isinstance(exc, ServerError):
        return True
    if isinstance(exc, ClientError):
        return getattr(exc, "code", 0) == 429
    return isinstance(exc, (ConnectionError, TimeoutError))


def _mentions_policy(text: str) -> bool:
    text = text.lower()
    return any(keyword in text for keyword in _POLICY_KEYWORDS)


def is_content_policy_error(exc: BaseException) -> bool:
    return isinstance(exc, ClientError) and _mentions_policy(str(exc))


@retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=2, min=4, max=60),
    retry=retry_if_exception(_is_retriable),
    before_sleep=before_sleep_log(logger, logging.WARNING),
)
def _generate_videos(client, model: str, prompt: str, image: Optional[types.Image], config: types.GenerateVideosConfig):
    return client.models.generate_videos(model=model, prompt=prompt, image=image, config=config)


@retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=2, min=4, max=60),
    retry=retry_if_exception(_is_retriable),
    before_sleep=before_sleep_log(logger, logging.WARNING),
)
def _get_operation(client, operation_name: str):
    return client.operations.get(operation=types.GenerateVideosOperation(name=operation_name))


def _rai_reasons(response) -> List[str]:
    return [str(reason) for reason in (getattr(response, "rai_media_filtered_reasons", None) or [])]


def operation_result(operation) -> PollResult:
    """Translate a finished (or unfinished) Veo operation into a ``PollResult``."""
    if not getattr(operation, "done", False):
        return PollResult(done=False)

    error = getattr(operation, "error", None)
    if error:
        message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
        if _mentions_policy(message):
            return PollResult(done=True, rejected=True, reasons=[message])
        return PollResult(done=True, error=message)

    response = getattr(operation, "response", None) or getattr(operation, "result", None)
    videos = getattr(response, "generated_videos", None) or []
    if not videos:
        if response is not None and getattr(response, "rai_media_filtered_count", 0):
            return PollResult(done=True, rejected=True, reasons=_rai_reasons(response))
        return PollResult(done=True, error="Operation completed without a generated video")

    video = videos[0].video
    if getattr(video, "uri", None):
        return PollResult(done=True, remote_uri=video.uri)
    if getattr(video, "video_bytes", None):
        return PollResult(done=True, payload=video.video_bytes)
    return PollResult(done=True, error="Generated video carries neither a URI nor bytes")


class VeoVideoClient:
    def __init__(self, client=None, model: Optional[str] = None, bucket_name: Optional[str] = None):
        self._client = client
        self.model = model or settings.veo_model
        self.bucket_name = bucket_name or settings.gcs_bucket_name

    @property
    def client(self):
        if self._client is None:
            self._client = get_genai_client()
        return self._client

    def _config(self, duration_seconds, aspect_ratio, seed, output_prefix) -> types.GenerateVideosConfig:
        config = types.GenerateVideosConfig(
            aspect_ratio=aspect_ratio,
            duration_seconds=duration_seconds,
            number_of_videos=1,
            seed=seed,
        )
        if output_prefix:
            config.output_gcs_uri = f"gs://{self.bucket_name}/{output_prefix}"
        if not self.model.startswith("veo-2"):
            config.generate_audio = True
        return config

    def submit(
        self,
        prompt: str,
        duration_seconds: int,
        aspect_ratio: str,
        seed: int,
        reference_image_uri: Optional[str] = None,
        output_prefix: Optional[str] = None,
    ) -> SubmitResult:
        image = types.Image(gcs_uri=reference_image_uri, mime_type="image/png") if reference_image_uri else None
        config = self._config(duration_seconds, aspect_ratio, seed, output_prefix)

        try:
            operation = _generate_videos(self.client, self.model, prompt, image, config)
        except ClientError as exc:
            if is_content_policy_error(exc):
                logger.warning("Veo rejected the prompt at submission: %s", exc)
                return SubmitResult(rejected=True, reasons=[str(exc)])
            raise

        if getattr(operation, "done", False):
            result = operation_result(operation)
            if result.error:
                return SubmitResult(operation_handle=operation.name)
            return SubmitResult(
                remote_uri=result.remote_uri,
                payload=result.payload,
                rejected=result.rejected,
                reasons=result.reasons,
            )

        logger.info("Submitted Veo operation %s", operation.name)
        return SubmitResult(operation_handle=operation.name)

    def poll(self, operation_handle: str) -> PollResult:
        return operation_result(_get_operation(self.client, operation_handle))
