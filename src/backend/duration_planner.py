import math
from dataclasses import dataclass
from typing import List

SEGMENT_DURATION_SECONDS = 8
SUPPORTED_CLIP_DURATIONS = (4, 6, 8)
SEED_MODULUS = 4294967295

# Requested duration upper bound -> segment count
_DURATION_BUCKETS = ((8, 1), (16, 2), (24, 3), (32, 4))


@dataclass(frozen=True)
class SegmentPlan:
    segment_number: int
    duration: int = SEGMENT_DURATION_SECONDS


def segment_count(desired_duration_seconds: float) -> int:
    if desired_duration_seconds < 1:
        raise ValueError(f"Desired duration must be at least 1 second, got {desired_duration_seconds}")

    for upper, count in _DURATION_BUCKETS:
        if desired_duration_seconds <= upper:
            return count

    # The model cuts off the trailing frame, so one second is shaved before bucketing.
    adjusted = max(desired_duration_seconds - 1, SEGMENT_DURATION_SECONDS)
    return math.ceil(adjusted / SEGMENT_DURATION_SECONDS)


def plan_segments(desired_duration_seconds: float) -> List[SegmentPlan]:
    """Map a requested total duration to ordered 8-second segments."""
    return [SegmentPlan(segment_number=n) for n in range(1, segment_count(desired_duration_seconds) + 1)]


def compute_seed(content_id: int) -> int:
    """Deterministic seed shared by every segment of one content."""
    return abs(content_id * 1_000_000) % SEED_MODULUS
