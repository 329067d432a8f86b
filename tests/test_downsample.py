from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from takaro_map.downsample import DEFAULT_BRACKETS
from takaro_map.downsample import downsample
from takaro_map.downsample import interval_for
from takaro_map.models import MovementPoint

START = datetime(2025, 1, 1, tzinfo=timezone.utc)


def track(count: int, step: timedelta) -> list[MovementPoint]:
    return [
        MovementPoint(x=float(i), y=0, z=float(i), timestamp=START + step * i)
        for i in range(count)
    ]


@pytest.mark.parametrize(
    ("window", "expected"),
    [
        (timedelta(minutes=10), None),
        (timedelta(minutes=30), timedelta(seconds=5)),
        (timedelta(hours=2), timedelta(seconds=15)),
        (timedelta(hours=6), timedelta(seconds=30)),
        (timedelta(hours=24), timedelta(minutes=1)),
        (timedelta(days=5), timedelta(minutes=2)),
        (timedelta(days=30), timedelta(minutes=5)),
    ],
)
def test_interval_grows_with_window(window, expected):
    assert interval_for(window) == expected


def test_bracket_bounds_are_exclusive():
    assert interval_for(timedelta(minutes=15)) == timedelta(seconds=5)
    assert interval_for(timedelta(days=7)) == timedelta(minutes=5)


def test_short_window_keeps_everything():
    points = track(50, timedelta(seconds=1))
    assert downsample(points, timedelta(minutes=10)) == points


def test_fewer_than_three_points_unchanged():
    points = track(2, timedelta(seconds=1))
    assert downsample(points, timedelta(days=30)) == points
    assert downsample([], timedelta(days=30)) == []


@pytest.mark.parametrize(("window", "interval"), [(u, i) for u, i in DEFAULT_BRACKETS if i])
def test_spacing_and_endpoints(window, interval):
    points = track(600, timedelta(seconds=1))

    result = downsample(points, window - timedelta(seconds=1))

    assert result[0] == points[0]
    assert result[-1] == points[-1]
    interior = result[:-1]
    for earlier, later in zip(interior, interior[1:]):
        assert later.timestamp - earlier.timestamp >= interval
    assert len(result) < len(points)


def test_keeps_point_exactly_one_interval_later():
    points = track(7, timedelta(seconds=5))

    result = downsample(points, timedelta(minutes=30))

    assert result == points


def test_day_window_thins_one_second_samples():
    points = track(3600, timedelta(seconds=1))

    result = downsample(points, timedelta(hours=24))

    # One point per minute for an hour, plus the final sample.
    assert len(result) == 61
    assert result[-1].timestamp == START + timedelta(seconds=3599)
