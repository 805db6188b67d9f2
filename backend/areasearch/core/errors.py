"""
Error taxonomy for area search.

Geometry errors are raised by the geometry/simplification layers and handled
by QueryOrchestrator. Index errors are raised by SearchIndexClient and
translated into a result status at the orchestrator boundary.
"""

from typing import Optional


class AreaSearchError(Exception):
    """Base class for area search failures."""


class GeometryParseError(AreaSearchError):
    """Stored geometry is not valid JSON or not the expected shape."""


class NoRingAvailable(AreaSearchError):
    """Geometry does not yield a usable search ring."""


class InsufficientPoints(NoRingAvailable):
    """Extracted ring has fewer than 3 distinct points."""

    def __init__(self, distinct_points: int):
        self.distinct_points = distinct_points
        super().__init__(f"Ring has {distinct_points} distinct points, need at least 3")


class OversizeGeometry(AreaSearchError):
    """Filter text still exceeds the length budget after maximum simplification."""

    def __init__(self, length: int, max_chars: int, points: int):
        self.length = length
        self.max_chars = max_chars
        self.points = points
        super().__init__(
            f"Polygon filter is {length} chars with {points} points, budget is {max_chars}"
        )


class IndexConnectivityError(AreaSearchError):
    """Search index unreachable or transport-level failure."""


class IndexQueryError(AreaSearchError):
    """Search index reachable but rejected the query."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        filter_by: Optional[str] = None,
        search_id: Optional[str] = None,
    ):
        self.status_code = status_code
        self.filter_by = filter_by
        self.search_id = search_id
        super().__init__(message)
