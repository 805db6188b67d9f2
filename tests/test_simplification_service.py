import math

import pytest

from areasearch.core.filter_service import build_polygon_filter
from areasearch.core.geometry_service import SearchRing, close_ring
from areasearch.core.simplification_service import (
    douglas_peucker,
    perpendicular_distance,
    simplify_ring,
    simplify_to_fit,
    simplify_to_max_points,
)


def wavy_ring(points: int = 500, radius: float = 0.5) -> SearchRing:
    """Closed ring around Lisbon with a small high-frequency wobble."""
    coords = []
    for i in range(points):
        theta = 2 * math.pi * i / points
        r = radius + 0.01 * math.sin(37 * theta)
        coords.append((38.7 + r * math.sin(theta), -9.1 + r * math.cos(theta)))
    return close_ring(coords)


def serialize(ring: SearchRing) -> str:
    return build_polygon_filter(ring).text


def test_perpendicular_distance():
    assert perpendicular_distance((1.0, 1.0), (0.0, 0.0), (2.0, 0.0)) == pytest.approx(1.0)
    # Degenerate segment falls back to distance from the start point
    assert perpendicular_distance((3.0, 4.0), (0.0, 0.0), (0.0, 0.0)) == pytest.approx(5.0)


def test_douglas_peucker_drops_collinear_points():
    points = [(0.0, 0.0), (1.0, 0.0), (2.0, 0.0), (3.0, 0.0)]
    assert douglas_peucker(points, 0.1) == [(0.0, 0.0), (3.0, 0.0)]


def test_douglas_peucker_keeps_spikes():
    points = [(0.0, 0.0), (1.0, 0.0), (2.0, 0.0), (3.0, 1.0), (4.0, 0.0), (5.0, 0.0), (6.0, 0.0)]
    assert douglas_peucker(points, 0.1) == [(0.0, 0.0), (2.0, 0.0), (3.0, 1.0), (4.0, 0.0), (6.0, 0.0)]


def test_douglas_peucker_short_input_unchanged():
    assert douglas_peucker([(0.0, 0.0), (1.0, 1.0)], 10) == [(0.0, 0.0), (1.0, 1.0)]
    assert douglas_peucker([], 10) == []


def test_douglas_peucker_zero_tolerance_keeps_non_collinear_points():
    ring = wavy_ring(100)
    points = list(ring.open_points)
    assert douglas_peucker(points, 0) == points


def thin_ring() -> SearchRing:
    """Keeps all 5 points up to tolerance 2e-4 and collapses at 4e-4."""
    return close_ring([(0.0, 0.0), (1.0, 2.5e-4), (2.0, -2.5e-4), (3.0, 2.5e-4), (4.0, 0.0)])


def test_simplify_ring_stays_closed():
    simplified = simplify_ring(wavy_ring(), 0.01)

    assert simplified.is_closed
    assert simplified.distinct_count >= 3


def test_simplify_ring_collapse_returns_none():
    assert simplify_ring(wavy_ring(), 10.0) is None
    assert simplify_ring(thin_ring(), 4e-4) is None


def test_simplify_ring_does_not_duplicate_interior_points():
    simplified = simplify_ring(wavy_ring(), 0.001)
    assert len(simplified.open_points) == len(set(simplified.open_points))


def test_simplify_triangle():
    triangle = close_ring([(39.0, -8.0), (39.1, -8.1), (39.0, -8.2)])
    assert simplify_ring(triangle, 0.0001) == triangle
    assert simplify_ring(triangle, 5.0) is None


def test_simplification_is_monotonic():
    ring = wavy_ring()
    tolerances = [0.00001, 0.0001, 0.001, 0.005, 0.01, 0.05, 0.2]
    counts = [len(simplify_ring(ring, t)) for t in tolerances]
    assert counts == sorted(counts, reverse=True)


def test_simplify_to_max_points_keeps_previous_ring_instead_of_collapsing():
    ring = thin_ring()

    simplified = simplify_to_max_points(ring, 3)

    assert simplified.points == ring.points
    assert simplified.distinct_count == 5


def test_simplify_to_fit_keeps_previous_ring_instead_of_collapsing():
    ring = thin_ring()

    simplified = simplify_to_fit(ring, serialize, 30)

    assert simplified.points == ring.points
    assert len(serialize(simplified)) > 30


def test_simplify_to_fit_meets_budget():
    ring = wavy_ring()
    assert len(serialize(ring)) > 4200

    simplified = simplify_to_fit(ring, serialize, 3900)

    assert len(serialize(simplified)) <= 3900
    assert simplified.is_closed
    assert simplified.distinct_count >= 3


def test_simplify_to_fit_returns_input_when_it_already_fits():
    ring = wavy_ring(20)
    assert simplify_to_fit(ring, serialize, 3900) is ring


def test_simplify_to_fit_reports_best_effort_when_budget_is_impossible():
    simplified = simplify_to_fit(wavy_ring(), serialize, 20)

    assert len(serialize(simplified)) > 20
    assert simplified.distinct_count >= 3


def test_simplify_to_max_points():
    simplified = simplify_to_max_points(wavy_ring(), 60)

    assert len(simplified) <= 60
    assert simplified.is_closed


def test_invalid_growth_is_rejected():
    with pytest.raises(ValueError):
        simplify_to_max_points(wavy_ring(), 10, growth=1.0)
