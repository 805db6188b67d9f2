from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

from areasearch.schemas.location import LocationDocument


class BoundsModel(BaseModel):
    south: float
    west: float
    north: float
    east: float


# ============ Free-text search ============

class PropertySearchRequest(BaseModel):
    q: Optional[str] = None
    filters: Optional[str] = None
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=20, ge=0, le=250)


class PropertySearchResponse(BaseModel):
    properties: List[Dict[str, Any]]
    count: int
    source: str = "typesense"
    using_sample_data: bool = False
    error: Optional[str] = None


# ============ Polygon search ============

class PolygonSearchRequest(BaseModel):
    coordinates: Optional[List[float]] = Field(
        default=None, description="Flat [lat1, lng1, lat2, lng2, ...], at least 3 points"
    )
    coordinates_json: Optional[str] = Field(
        default=None, description="coordinates_json field of a location document"
    )
    use_sample_data: bool = False


class PolygonSearchResponse(BaseModel):
    properties: List[Dict[str, Any]]
    count: int
    total_count: int
    points: int
    simplified_points: int
    filter_length: int
    using_sample_data: bool = False


# ============ Count only ============

class CountRequest(BaseModel):
    filter_by: str = Field(..., min_length=1)
    search_id: Optional[str] = None


class CountResponse(BaseModel):
    success: bool
    count: int
    search_id: Optional[str] = None
    message: Optional[str] = None


# ============ Orchestrated location search ============

class LocationPropertiesRequest(BaseModel):
    location: Optional[LocationDocument] = None
    geo_filter: Optional[str] = None
    query: Optional[str] = None
    bounds: Optional[BoundsModel] = None
    count_only: bool = False


class PropertyMarker(BaseModel):
    id: Optional[str]
    lat: float
    lng: float
    title: Optional[str] = None


class LocationPropertiesResponse(BaseModel):
    search_id: Optional[str]
    state: str
    outcome: Optional[str]
    mode: Optional[str] = None
    properties: List[Dict[str, Any]]
    markers: List[PropertyMarker]
    total_count: Optional[int]
    current_page: int
    filter_by: Optional[str] = None
    approximate: bool = False
    using_sample_data: bool = False
    error: Optional[str] = None
    error_kind: Optional[str] = None


class MapViewResponse(BaseModel):
    center: List[float]
    zoom: int
    bounds: Optional[BoundsModel] = None
    max_zoom: Optional[int] = None
    feature: Optional[Dict[str, Any]] = None
