"""
Geometry Service - Normalize stored location geometry into search rings

Location documents keep their boundary in `coordinates_json`, either as a bare
GeoJSON coordinates array (shape given by `geometry_type`) or as a full GeoJSON
geometry object. Storage order is GeoJSON [lng, lat]; the search index wants
(lat, lng) in its `_geoloc` filters.

Key Design:
1. Parsing never raises: it returns a ParseOutcome (geometry or error)
2. Polygon: the outer ring (first ring) is used
3. MultiPolygon: the outer ring with the most points wins. This is a proxy for
   the main landmass, not true multi-part containment. An archipelago loses
   coverage of its smaller islands.
4. Every SearchRing is closed: first point == last point
"""

import json
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, List, Tuple, Any, Dict, Sequence

from shapely.errors import ShapelyError
from shapely.geometry import shape, Polygon

from areasearch.core.errors import GeometryParseError, NoRingAvailable, InsufficientPoints
from areasearch.schemas.location import LocationDocument

logger = logging.getLogger(__name__)

LatLng = Tuple[float, float]
LngLat = Tuple[float, float]

# Default view of Portugal
DEFAULT_MAP_CENTER: LatLng = (39.6, -8.0)
DEFAULT_MAP_ZOOM = 6
POINT_MAP_ZOOM = 14
MAX_FIT_ZOOM = 13


class GeometryKind(str, Enum):
    POLYGON = "Polygon"
    MULTI_POLYGON = "MultiPolygon"
    POINT = "Point"


# Nesting depth of a GeoJSON coordinates array for each supported type
_KIND_BY_DEPTH = {
    1: GeometryKind.POINT,
    3: GeometryKind.POLYGON,
    4: GeometryKind.MULTI_POLYGON,
}


@dataclass(frozen=True)
class LocationGeometry:
    """Shape of a selected location, as stored (rings in [lng, lat] order)."""
    kind: GeometryKind
    rings: Tuple[Tuple[LngLat, ...], ...] = ()
    center: Optional[LatLng] = None  # (lat, lng), Point only
    radius_meters: Optional[float] = None


@dataclass(frozen=True)
class SearchRing:
    """Closed ring of (lat, lng) points used to build polygon filters."""
    points: Tuple[LatLng, ...]

    def __len__(self) -> int:
        return len(self.points)

    @property
    def is_closed(self) -> bool:
        return len(self.points) > 1 and self.points[0] == self.points[-1]

    @property
    def open_points(self) -> Tuple[LatLng, ...]:
        """Points without the closing duplicate."""
        if self.is_closed:
            return self.points[:-1]
        return self.points

    @property
    def distinct_count(self) -> int:
        return len(set(self.points))

    def flatten(self) -> List[float]:
        """[lat1, lng1, lat2, lng2, ...]"""
        return [value for point in self.points for value in point]


@dataclass(frozen=True)
class ParseOutcome:
    geometry: Optional[LocationGeometry] = None
    error: Optional[GeometryParseError] = None

    @property
    def ok(self) -> bool:
        return self.geometry is not None


@dataclass(frozen=True)
class Bounds:
    south: float
    west: float
    north: float
    east: float

    def as_ring(self) -> SearchRing:
        """Rectangle ring for bounding-box searches."""
        return SearchRing((
            (self.south, self.west),
            (self.north, self.west),
            (self.north, self.east),
            (self.south, self.east),
            (self.south, self.west),
        ))


@dataclass(frozen=True)
class MapView:
    """What the map renderer should show for a location."""
    center: LatLng
    zoom: int
    bounds: Optional[Bounds] = None
    max_zoom: Optional[int] = None


# ============================================================
# Axis order
# ============================================================

def to_search_order(point: Sequence[float]) -> LatLng:
    """[lng, lat] -> (lat, lng)"""
    return (point[1], point[0])


def to_storage_order(point: Sequence[float]) -> LngLat:
    """(lat, lng) -> (lng, lat)"""
    return (point[1], point[0])


# ============================================================
# Parsing
# ============================================================

def parse_location_geometry(
    coordinates_json: Optional[str],
    geometry_type: Optional[str] = None,
    radius_meters: Optional[float] = None,
) -> ParseOutcome:
    """Parse a stored `coordinates_json` field into a LocationGeometry."""
    if not coordinates_json:
        return ParseOutcome(error=GeometryParseError("coordinates_json is empty"))

    try:
        raw = json.loads(coordinates_json)
    except (TypeError, ValueError) as e:
        return ParseOutcome(error=GeometryParseError(f"Invalid coordinates_json: {e}"))

    try:
        geometry = _geometry_from_raw(raw, geometry_type, radius_meters)
    except GeometryParseError as e:
        return ParseOutcome(error=e)

    return ParseOutcome(geometry=geometry)


def location_geometry(document: LocationDocument) -> ParseOutcome:
    """
    Resolve the geometry of a location document.

    Point locations with direct `point_lat`/`point_lng` use those; everything
    else goes through `coordinates_json`.
    """
    if document.is_point and document.point_lat is not None and document.point_lng is not None:
        return ParseOutcome(geometry=LocationGeometry(
            kind=GeometryKind.POINT,
            center=(document.point_lat, document.point_lng),
            radius_meters=document.radius,
        ))

    outcome = parse_location_geometry(
        document.coordinates_json,
        geometry_type=document.geometry_type,
        radius_meters=document.radius,
    )
    if not outcome.ok:
        logger.warning(f"Could not parse geometry for location {document.id}: {outcome.error}")
    return outcome


def _geometry_from_raw(
    raw: Any,
    declared_type: Optional[str],
    radius_meters: Optional[float],
) -> LocationGeometry:
    if isinstance(raw, dict):
        if raw.get("type") == "Feature":
            return _geometry_from_raw(raw.get("geometry"), declared_type, radius_meters)
        declared_type = raw.get("type") or declared_type
        coordinates = raw.get("coordinates")
    else:
        coordinates = raw

    if not isinstance(coordinates, list) or not coordinates:
        raise GeometryParseError("Geometry has no coordinates array")

    kind = _resolve_kind(coordinates, declared_type)

    if kind == GeometryKind.POINT:
        lng, lat = _position(coordinates)
        return LocationGeometry(kind=kind, center=(lat, lng), radius_meters=radius_meters)

    if kind == GeometryKind.POLYGON:
        rings = tuple(_ring(ring) for ring in coordinates)
    else:
        # Holes cannot be expressed in a polygon filter, keep outer rings only
        rings = tuple(_outer_ring(polygon) for polygon in coordinates)

    return LocationGeometry(kind=kind, rings=rings)


def _nesting_depth(value: Any) -> int:
    depth = 0
    while isinstance(value, list) and value:
        depth += 1
        value = value[0]
    return depth


def _resolve_kind(coordinates: List[Any], declared_type: Optional[str]) -> GeometryKind:
    depth = _nesting_depth(coordinates)
    inferred = _KIND_BY_DEPTH.get(depth)
    if inferred is None:
        raise GeometryParseError(
            f"Unsupported coordinates nesting depth {depth} (declared type {declared_type!r})"
        )
    if declared_type and declared_type != inferred.value:
        logger.debug(f"Declared geometry type {declared_type} but coordinates look like {inferred.value}")
    return inferred


def _coordinate(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise GeometryParseError(f"Coordinate is not a number: {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise GeometryParseError(f"Coordinate is not finite: {value!r}")
    return number


def _position(raw: Any) -> LngLat:
    if not isinstance(raw, list) or len(raw) < 2:
        raise GeometryParseError(f"Position must have at least 2 values: {raw!r}")
    # Altitude, when present, is dropped
    return (_coordinate(raw[0]), _coordinate(raw[1]))


def _ring(raw: Any) -> Tuple[LngLat, ...]:
    if not isinstance(raw, list):
        raise GeometryParseError(f"Ring must be an array: {raw!r}")
    return tuple(_position(point) for point in raw)


def _outer_ring(raw: Any) -> Tuple[LngLat, ...]:
    if not isinstance(raw, list) or not raw:
        raise GeometryParseError(f"Polygon must be a non-empty array of rings: {raw!r}")
    return _ring(raw[0])


# ============================================================
# Extraction
# ============================================================

def largest_ring_index(rings: Sequence[Sequence[Any]]) -> int:
    """Index of the ring with the most points, first one on ties."""
    if not rings:
        raise NoRingAvailable("Geometry has no rings")
    return max(range(len(rings)), key=lambda i: len(rings[i]))


def extract_ring(geometry: LocationGeometry) -> SearchRing:
    """
    Turn a Polygon/MultiPolygon geometry into a closed search-order ring.

    Raises:
        NoRingAvailable: geometry is a Point or has no rings
        InsufficientPoints: fewer than 3 distinct points
    """
    if geometry.kind == GeometryKind.POINT or not geometry.rings:
        raise NoRingAvailable(f"{geometry.kind.value} geometry has no ring")

    if geometry.kind == GeometryKind.POLYGON:
        source = geometry.rings[0]
    else:
        index = largest_ring_index(geometry.rings)
        source = geometry.rings[index]
        if len(geometry.rings) > 1:
            logger.debug(
                f"MultiPolygon: using ring {index} ({len(source)} points) of {len(geometry.rings)}"
            )

    return close_ring([to_search_order(point) for point in source])


def close_ring(points: Sequence[LatLng]) -> SearchRing:
    """Validate a (lat, lng) point list and close it if needed."""
    points = list(points)
    distinct = len(set(points))
    if distinct < 3:
        raise InsufficientPoints(distinct)
    if points[0] != points[-1]:
        points.append(points[0])
    return SearchRing(tuple(points))


def ring_from_flat(values: Sequence[float]) -> SearchRing:
    """Build a ring from a flat [lat1, lng1, lat2, lng2, ...] list."""
    if len(values) % 2:
        raise GeometryParseError(f"Flat coordinate list has odd length {len(values)}")
    numbers = [_coordinate(value) for value in values]
    return close_ring(list(zip(numbers[0::2], numbers[1::2])))


def extract_point_radius(
    geometry: LocationGeometry,
    default_radius_meters: float,
) -> Tuple[LatLng, float]:
    """Center and radius of a Point geometry, substituting the default radius."""
    if geometry.kind != GeometryKind.POINT or geometry.center is None:
        raise NoRingAvailable(f"{geometry.kind.value} geometry has no center")

    radius = geometry.radius_meters
    if radius is None or radius <= 0:
        radius = default_radius_meters
    return geometry.center, radius


# ============================================================
# Map support
# ============================================================

def ring_bounds(ring: SearchRing) -> Bounds:
    west, south, east, north = Polygon([to_storage_order(p) for p in ring.points]).bounds
    return Bounds(south=south, west=west, north=north, east=east)


def geometry_to_geojson(geometry: LocationGeometry) -> Dict[str, Any]:
    """GeoJSON geometry for the map renderer (storage order)."""
    if geometry.kind == GeometryKind.POINT:
        lat, lng = geometry.center
        return {"type": "Point", "coordinates": [lng, lat]}
    if geometry.kind == GeometryKind.POLYGON:
        return {"type": "Polygon", "coordinates": [[list(p) for p in ring] for ring in geometry.rings]}
    return {
        "type": "MultiPolygon",
        "coordinates": [[[list(p) for p in ring]] for ring in geometry.rings],
    }


def location_feature(document: LocationDocument) -> Optional[Dict[str, Any]]:
    """GeoJSON Feature for a location, or None when it has no usable geometry."""
    outcome = location_geometry(document)
    if not outcome.ok:
        return None
    return {
        "type": "Feature",
        "properties": {
            "name": document.display_name,
            "level": document.level,
            "type": document.type_label,
        },
        "geometry": geometry_to_geojson(outcome.geometry),
    }


def map_view(document: Optional[LocationDocument]) -> MapView:
    """Viewport for a selected location, falling back to the default view."""
    if document is None:
        return MapView(center=DEFAULT_MAP_CENTER, zoom=DEFAULT_MAP_ZOOM)

    outcome = location_geometry(document)
    if not outcome.ok:
        return MapView(center=DEFAULT_MAP_CENTER, zoom=DEFAULT_MAP_ZOOM)

    geometry = outcome.geometry
    if geometry.kind == GeometryKind.POINT:
        return MapView(center=geometry.center, zoom=POINT_MAP_ZOOM)

    try:
        geom = shape(geometry_to_geojson(geometry))
    except (ValueError, TypeError, ShapelyError) as e:
        logger.warning(f"Invalid geometry for map bounds of {document.id}: {e}")
        return MapView(center=DEFAULT_MAP_CENTER, zoom=DEFAULT_MAP_ZOOM)

    if geom.is_empty:
        return MapView(center=DEFAULT_MAP_CENTER, zoom=DEFAULT_MAP_ZOOM)

    west, south, east, north = geom.bounds
    centroid = geom.centroid
    return MapView(
        center=(centroid.y, centroid.x),
        zoom=DEFAULT_MAP_ZOOM,
        bounds=Bounds(south=south, west=west, north=north, east=east),
        max_zoom=MAX_FIT_ZOOM,
    )


def property_markers(documents: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Map pins for property documents with a [lat, lng] `_geoloc`."""
    markers = []
    for document in documents:
        geoloc = document.get("_geoloc")
        if not isinstance(geoloc, (list, tuple)) or len(geoloc) != 2:
            continue
        try:
            lat, lng = _coordinate(geoloc[0]), _coordinate(geoloc[1])
        except GeometryParseError:
            continue
        key = document.get("id") or document.get("ref")
        markers.append({
            "id": str(key) if key is not None else None,
            "lat": lat,
            "lng": lng,
            "title": document.get("title"),
        })
    return markers
