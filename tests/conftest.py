import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("GCS_BUCKET_NAME", "test-bucket")
os.environ.setdefault("GCS_BASE_FOLDER", "reels")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import Base, Content
from storage import StoragePaths, parse_gs_uri
from video_client import PollResult, SubmitResult


@pytest.fixture
def db():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def content(db):
    row = Content(title="Morning coffee ritual")
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


class FakeObjectStore(StoragePaths):
    def __init__(self, bucket_name="test-bucket", base_folder="reels"):
        self.bucket_name = bucket_name
        self.base_folder = base_folder
        self.objects = {}
        self.fail_deletes = False

    def put(self, path, data, content_type):
        self.objects[path] = data
        return self.uri(path)

    def get(self, uri):
        _, path = parse_gs_uri(uri)
        return self.objects[path]

    def delete(self, uri):
        if self.fail_deletes:
            raise RuntimeError("permission denied")
        _, path = parse_gs_uri(uri)
        self.objects.pop(path, None)

    def delete_by_prefix(self, prefix):
        if self.fail_deletes:
            raise RuntimeError("permission denied")
        doomed = [path for path in self.objects if path.startswith(prefix)]
        for path in doomed:
            del self.objects[path]
        return len(doomed)


def _segment_number(output_prefix):
    return int(output_prefix.rstrip("/").rsplit("segment_", 1)[1])


class FakeVideoClient:
    """Scripted video model. Writes output under the requested prefix like Veo does."""

    def __init__(self, store, events=None, reject=None, fail=None, pending_polls=0, inline_payload=False, never_done=False,
                 reject_on_poll=None):
        self.store = store
        self.events = events if events is not None else []
        self.reject = dict(reject or {})  # segment -> remaining rejections
        self.reject_on_poll = dict(reject_on_poll or {})  # same, reported by the finished operation
        self.fail = set(fail or ())
        self.pending_polls = pending_polls
        self.inline_payload = inline_payload
        self.never_done = never_done
        self.submissions = []
        self.poll_count = 0
        self._operations = {}

    def submit(self, prompt, duration_seconds, aspect_ratio, seed, reference_image_uri=None, output_prefix=None):
        number = _segment_number(output_prefix)
        self.submissions.append({
            "segment_number": number,
            "prompt": prompt,
            "duration": duration_seconds,
            "aspect_ratio": aspect_ratio,
            "seed": seed,
            "reference_image_uri": reference_image_uri,
        })
        self.events.append(("submit", number))

        if self.reject.get(number, 0) > 0:
            self.reject[number] -= 1
            return SubmitResult(rejected=True, reasons=["Responsible AI filter"])
        if self.inline_payload:
            return SubmitResult(payload=f"video-{number}".encode())

        handle = f"operations/segment-{number}-{len(self.submissions)}"
        self._operations[handle] = (number, output_prefix, self.pending_polls)
        return SubmitResult(operation_handle=handle)

    def poll(self, operation_handle):
        self.poll_count += 1
        number, output_prefix, remaining = self._operations[operation_handle]
        if self.never_done or remaining > 0:
            self._operations[operation_handle] = (number, output_prefix, remaining - 1)
            return PollResult(done=False)
        if self.reject_on_poll.get(number, 0) > 0:
            self.reject_on_poll[number] -= 1
            return PollResult(done=True, rejected=True, reasons=["Filtered by Responsible AI: 1 video"])
        if number in self.fail:
            return PollResult(done=True, error="internal model error")
        uri = self.store.put(f"{output_prefix}sample_0.mp4", f"video-{number}".encode(), "video/mp4")
        self.events.append(("complete", number))
        return PollResult(done=True, remote_uri=uri)


class FakeFrameExtractor:
    def __init__(self, store, events=None, fail=False):
        self.store = store
        self.events = events if events is not None else []
        self.fail = fail
        self.calls = []

    def extract_last_frame(self, video_uri, content_id, segment_number):
        from errors import FrameExtractionFailure

        self.calls.append((video_uri, content_id, segment_number))
        self.events.append(("frame", segment_number))
        if self.fail:
            raise FrameExtractionFailure(f"could not decode segment {segment_number}")
        return self.store.put(self.store.frame_path(content_id, segment_number), b"png", "image/png")


class FakeConcatenator:
    def __init__(self):
        self.calls = []

    def concatenate(self, buffers, content_id, content_type="reel", strategy="auto"):
        self.calls.append((list(buffers), content_id, content_type))
        return b"|".join(buffers)


class FakeTextGenerator:
    def __init__(self, structured=None, texts=()):
        self.structured = structured
        self.texts = list(texts)
        self.structured_prompts = []
        self.text_prompts = []

    def generate_structured(self, prompt, schema):
        self.structured_prompts.append(prompt)
        if isinstance(self.structured, Exception):
            raise self.structured
        if self.structured is None:
            raise ValueError("structured output unavailable")
        return self.structured

    def generate_text(self, prompt):
        self.text_prompts.append(prompt)
        if not self.texts:
            raise ValueError("no more responses")
        response = self.texts.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def events():
    return []
