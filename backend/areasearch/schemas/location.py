from pydantic import BaseModel
from typing import Optional, List, Dict, Any


LEVEL_LABELS = ["Country", "Region", "District", "Municipality", "Place"]

POINT_LEVEL = 4


class LocationDocument(BaseModel):
    """A document from the locations collection (GADM regions and points of interest)."""
    id: Optional[str] = None
    ref: Optional[str] = None
    level: int = 0
    gid_0: Optional[str] = None
    gid_1: Optional[str] = None
    gid_2: Optional[str] = None
    gid_3: Optional[str] = None
    country: Optional[str] = None
    name_1: Optional[str] = None
    name_2: Optional[str] = None
    name_3: Optional[str] = None
    name_4: Optional[str] = None
    type_1: Optional[str] = None
    type_2: Optional[str] = None
    type_3: Optional[str] = None
    type_4: Optional[str] = None
    engtype_1: Optional[str] = None
    engtype_2: Optional[str] = None
    engtype_3: Optional[str] = None
    geometry_type: Optional[str] = None
    coordinates_json: Optional[str] = None

    # Point locations (level 4)
    point_lat: Optional[float] = None
    point_lng: Optional[float] = None
    radius: Optional[float] = None

    # Number of properties in this location
    count: Optional[int] = None

    class Config:
        extra = "allow"

    @property
    def display_name(self) -> str:
        return (
            self.name_4
            or self.name_3
            or self.name_2
            or self.name_1
            or self.country
            or "Unnamed Location"
        )

    @property
    def type_label(self) -> str:
        return self.type_4 or self.type_3 or self.type_2 or self.type_1 or ""

    @property
    def level_label(self) -> str:
        if 0 <= self.level < len(LEVEL_LABELS):
            return LEVEL_LABELS[self.level]
        return f"Level {self.level}"

    @property
    def is_point(self) -> bool:
        return self.level == POINT_LEVEL or self.geometry_type == "Point"


class LocationHit(BaseModel):
    """Location autocomplete result."""
    id: Optional[str]
    name: str
    level: int
    level_label: str
    type: str
    geometry_type: Optional[str] = None
    count: Optional[int] = None
    document: Dict[str, Any]


class LocationSearchResponse(BaseModel):
    results: List[LocationHit]
    count: int
