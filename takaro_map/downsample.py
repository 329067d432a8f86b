"""Window-dependent thinning of movement paths.

The spacing between kept points grows with the span being viewed: a short
window is shown at full resolution, a week-long one at a few points per
player per five minutes.
"""

from collections.abc import Sequence
from datetime import timedelta
from typing import TypeVar

from .models import MovementPoint

P = TypeVar("P", bound=MovementPoint)

# (window shorter than, minimum spacing); None means keep every point.
Bracket = tuple[timedelta, timedelta | None]

DEFAULT_BRACKETS: tuple[Bracket, ...] = (
    (timedelta(minutes=15), None),
    (timedelta(hours=1), timedelta(seconds=5)),
    (timedelta(hours=3), timedelta(seconds=15)),
    (timedelta(hours=12), timedelta(seconds=30)),
    (timedelta(days=2), timedelta(minutes=1)),
    (timedelta(days=7), timedelta(minutes=2)),
)
DEFAULT_COARSEST = timedelta(minutes=5)


def interval_for(
    window: timedelta,
    brackets: Sequence[Bracket] = DEFAULT_BRACKETS,
    coarsest: timedelta = DEFAULT_COARSEST,
) -> timedelta | None:
    """Minimum spacing for a window, or None for full resolution."""
    for upper, interval in brackets:
        if window < upper:
            return interval
    return coarsest


def downsample(
    points: list[P],
    window: timedelta,
    brackets: Sequence[Bracket] = DEFAULT_BRACKETS,
    coarsest: timedelta = DEFAULT_COARSEST,
) -> list[P]:
    """Drop points closer than the window's interval to the last kept one.

    ``points`` must already be sorted by timestamp. The first and last
    points are always kept.
    """
    if len(points) < 3:
        return points

    interval = interval_for(window, brackets, coarsest)
    if interval is None:
        return points

    last_index = len(points) - 1
    result = [points[0]]
    last_kept = points[0].timestamp

    for point in points[1:last_index]:
        if point.timestamp - last_kept >= interval:
            result.append(point)
            last_kept = point.timestamp

    result.append(points[last_index])
    return result
