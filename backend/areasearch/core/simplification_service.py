"""
Simplification Service - Douglas-Peucker reduction of search rings

Polygon filters have a hard length limit, so detailed boundaries (coastlines,
river borders) have to be thinned before they can be sent to the index.

Key Design:
1. `douglas_peucker` works on an open polyline
2. Rings are opened (closing duplicate removed) before simplifying and
   re-closed afterwards
3. A simplified ring always keeps at least 3 distinct points: once a
   tolerance would go below that, the previous (larger) ring is kept
4. Two driving policies grow the tolerance until a target is met:
   - `simplify_to_fit`: serialized filter length <= max_chars
   - `simplify_to_max_points`: point count <= max_points
"""

import logging
import math
from typing import Callable, Iterator, List, Optional, Sequence

from areasearch.core.geometry_service import LatLng, SearchRing

logger = logging.getLogger(__name__)

INITIAL_TOLERANCE = 0.0001
MAX_TOLERANCE = 0.05
TOLERANCE_GROWTH = 2.0


def perpendicular_distance(point: LatLng, start: LatLng, end: LatLng) -> float:
    """Distance from `point` to the line through `start` and `end`."""
    dx = end[0] - start[0]
    dy = end[1] - start[1]
    base = math.hypot(dx, dy)
    if base == 0:
        return math.hypot(point[0] - start[0], point[1] - start[1])
    # 2 * triangle area / base
    cross = dx * (point[1] - start[1]) - dy * (point[0] - start[0])
    return abs(cross) / base


def _farthest(points: Sequence[LatLng], first: int, last: int):
    max_distance = -1.0
    index = first
    for i in range(first + 1, last):
        distance = perpendicular_distance(points[i], points[first], points[last])
        if distance > max_distance:
            max_distance = distance
            index = i
    return index, max_distance


def douglas_peucker(points: Sequence[LatLng], tolerance: float) -> List[LatLng]:
    """
    Simplify an open polyline.

    Equivalent to the recursive split at the farthest point, but uses an
    explicit stack so very detailed boundaries do not hit the recursion limit.
    """
    if len(points) <= 2:
        return list(points)

    keep = [False] * len(points)
    keep[0] = keep[-1] = True
    stack = [(0, len(points) - 1)]

    while stack:
        first, last = stack.pop()
        if last - first < 2:
            continue
        index, max_distance = _farthest(points, first, last)
        if max_distance > tolerance:
            keep[index] = True
            stack.append((first, index))
            stack.append((index, last))

    return [point for point, kept in zip(points, keep) if kept]


def simplify_ring(ring: SearchRing, tolerance: float) -> Optional[SearchRing]:
    """
    Simplify a ring at a fixed tolerance.

    Returns None when fewer than 3 distinct points would remain.
    """
    was_closed = ring.is_closed
    simplified = douglas_peucker(list(ring.open_points), tolerance)

    if len(set(simplified)) < 3:
        return None

    if was_closed:
        simplified.append(simplified[0])
    return SearchRing(tuple(simplified))


def _tolerances(initial: float, maximum: float, growth: float) -> Iterator[float]:
    if initial <= 0 or growth <= 1:
        raise ValueError("Tolerance must be positive and growth greater than 1")
    tolerance = initial
    while tolerance < maximum:
        yield tolerance
        tolerance *= growth
    yield maximum


def _simplify_until(
    ring: SearchRing,
    satisfied: Callable[[SearchRing], bool],
    initial_tolerance: float,
    max_tolerance: float,
    growth: float,
) -> SearchRing:
    if satisfied(ring):
        return ring

    best = ring
    for tolerance in _tolerances(initial_tolerance, max_tolerance, growth):
        candidate = simplify_ring(ring, tolerance)
        if candidate is None:
            logger.debug(f"Ring would collapse at tolerance {tolerance:g}, keeping {len(best)} points")
            break
        best = candidate
        if satisfied(candidate):
            logger.debug(
                f"Simplified ring {len(ring)} -> {len(candidate)} points at tolerance {tolerance:g}"
            )
            return candidate

    logger.debug(f"Ring still over target: {len(ring)} -> {len(best)} points")
    return best


def simplify_to_fit(
    ring: SearchRing,
    serialize: Callable[[SearchRing], str],
    max_chars: int,
    initial_tolerance: float = INITIAL_TOLERANCE,
    max_tolerance: float = MAX_TOLERANCE,
    growth: float = TOLERANCE_GROWTH,
) -> SearchRing:
    """
    Grow the tolerance until `serialize(ring)` fits in `max_chars`.

    Returns the most simplified ring reached when the budget cannot be met;
    callers must check the length again before using it.
    """
    return _simplify_until(
        ring,
        lambda candidate: len(serialize(candidate)) <= max_chars,
        initial_tolerance,
        max_tolerance,
        growth,
    )


def simplify_to_max_points(
    ring: SearchRing,
    max_points: int,
    initial_tolerance: float = INITIAL_TOLERANCE,
    max_tolerance: float = MAX_TOLERANCE,
    growth: float = TOLERANCE_GROWTH,
) -> SearchRing:
    """Grow the tolerance until the ring has at most `max_points` points."""
    return _simplify_until(
        ring,
        lambda candidate: len(candidate) <= max_points,
        initial_tolerance,
        max_tolerance,
        growth,
    )
