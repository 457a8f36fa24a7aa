import pytest

from duration_planner import compute_seed, plan_segments, segment_count


@pytest.mark.parametrize("desired,expected", [
    (1, 1), (5, 1), (8, 1),
    (9, 2), (16, 2),
    (17, 3), (24, 3),
    (25, 4), (32, 4),
    (33, 4), (34, 5), (40, 5), (41, 5), (42, 6), (60, 8), (120, 15),
])
def test_segment_count(desired, expected):
    assert segment_count(desired) == expected


def test_every_segment_is_eight_seconds():
    plan = plan_segments(30)
    assert [p.segment_number for p in plan] == [1, 2, 3, 4]
    assert all(p.duration == 8 for p in plan)


def test_rejects_durations_below_one_second():
    with pytest.raises(ValueError):
        plan_segments(0)
    with pytest.raises(ValueError):
        segment_count(-5)


def test_seed_is_deterministic():
    assert compute_seed(42) == 42_000_000
    assert compute_seed(7) == compute_seed(7)
    assert compute_seed(1) != compute_seed(2)


def test_seed_wraps_into_uint32_range():
    seed = compute_seed(10_000)
    assert seed == (10_000 * 1_000_000) % 4294967295
    assert 0 <= seed < 4294967295
