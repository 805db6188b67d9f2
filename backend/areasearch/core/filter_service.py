"""
Filter Service - Build Typesense geo filter expressions

Syntax:
- Polygon: _geoloc:(lat1, lng1, lat2, lng2, ..., latN, lngN)
- Radius:  _geoloc:(lat, lng, R km)
- Sort:    _geoloc(lat, lng):asc

Typesense rejects `filter_by` strings over 4000 characters, so polygon filters
are simplified until they fit. A filter that cannot be made to fit raises
OversizeGeometry; it is never sent.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from areasearch.core.errors import OversizeGeometry
from areasearch.core.geometry_service import LatLng, SearchRing, Bounds
from areasearch.core.simplification_service import simplify_to_fit

logger = logging.getLogger(__name__)

GEO_FIELD = "_geoloc"


class GeoFilterKind(str, Enum):
    POLYGON = "polygon"
    RADIUS = "radius"


@dataclass(frozen=True)
class GeoFilter:
    kind: GeoFilterKind
    text: str
    points: Optional[int] = None

    def __len__(self) -> int:
        return len(self.text)

    @classmethod
    def from_text(cls, text: str) -> "GeoFilter":
        """Wrap a precomputed filter expression."""
        text = text.strip()
        kind = GeoFilterKind.RADIUS if text.endswith(" km)") else GeoFilterKind.POLYGON
        return cls(kind=kind, text=text)


def format_number(value: float) -> str:
    """Shortest round-trip form, integral values without a trailing .0"""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def build_polygon_filter(ring: SearchRing) -> GeoFilter:
    values = ", ".join(format_number(v) for v in ring.flatten())
    return GeoFilter(
        kind=GeoFilterKind.POLYGON,
        text=f"{GEO_FIELD}:({values})",
        points=len(ring),
    )


def build_radius_filter(center: LatLng, radius_meters: float) -> GeoFilter:
    lat, lng = center
    radius_km = radius_meters / 1000
    return GeoFilter(
        kind=GeoFilterKind.RADIUS,
        text=f"{GEO_FIELD}:({format_number(lat)}, {format_number(lng)}, {format_number(radius_km)} km)",
    )


def build_bounds_filter(bounds: Bounds) -> GeoFilter:
    return build_polygon_filter(bounds.as_ring())


def build_distance_sort(center: LatLng) -> str:
    lat, lng = center
    return f"{GEO_FIELD}({format_number(lat)}, {format_number(lng)}):asc"


def fits_budget(filter_text: str, max_chars: int) -> bool:
    return len(filter_text) <= max_chars


def build_fitted_polygon_filter(ring: SearchRing, max_chars: int) -> GeoFilter:
    """
    Polygon filter simplified until it fits `max_chars`.

    Raises:
        OversizeGeometry: still too long at the maximum tolerance
    """
    simplified = simplify_to_fit(
        ring,
        lambda candidate: build_polygon_filter(candidate).text,
        max_chars,
    )
    geo_filter = build_polygon_filter(simplified)

    if not fits_budget(geo_filter.text, max_chars):
        logger.warning(
            f"⚠️ Polygon filter over budget after simplification: "
            f"{len(geo_filter)} chars, {len(simplified)} points (max {max_chars})"
        )
        raise OversizeGeometry(len(geo_filter), max_chars, len(simplified))

    if len(simplified) != len(ring):
        logger.info(
            f"Simplified polygon {len(ring)} -> {len(simplified)} points, "
            f"filter is {len(geo_filter)} chars"
        )
    return geo_filter
