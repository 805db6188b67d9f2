"""
API endpoints for location lookup (regions and points of interest)
"""

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from areasearch.core.dependencies import get_search_client
from areasearch.core.errors import IndexConnectivityError, IndexQueryError
from areasearch.core.geometry_service import location_feature, map_view
from areasearch.core.search_index_client import (
    LOCATION_QUERY_BY,
    SearchIndexClient,
    SearchParams,
)
from areasearch.schemas.location import LocationDocument, LocationHit, LocationSearchResponse
from areasearch.schemas.search import BoundsModel, MapViewResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/search", response_model=LocationSearchResponse)
async def search_locations(
    q: str = Query(..., min_length=1, description="Place name"),
    level: Optional[int] = Query(None, ge=0, le=4, description="Administrative level"),
    per_page: int = Query(10, ge=1, le=50),
    client: SearchIndexClient = Depends(get_search_client),
):
    """Typo-tolerant autocomplete over the locations collection."""
    params = SearchParams(
        q=q,
        query_by=LOCATION_QUERY_BY,
        filter_by=f"level:={level}" if level is not None else None,
        per_page=per_page,
    )

    try:
        result = await client.search_locations(params)
    except IndexConnectivityError as e:
        raise HTTPException(status_code=503, detail=f"Search index unavailable: {e}")
    except IndexQueryError as e:
        raise HTTPException(status_code=400, detail=str(e))

    hits = []
    for raw in result.documents:
        document = LocationDocument.model_validate(raw)
        hits.append(LocationHit(
            id=document.id,
            name=document.display_name,
            level=document.level,
            level_label=document.level_label,
            type=document.type_label,
            geometry_type=document.geometry_type,
            count=document.count,
            document=raw,
        ))

    return LocationSearchResponse(results=hits, count=result.total_count)


@router.post("/view", response_model=MapViewResponse)
async def location_view(location: LocationDocument):
    """Map viewport and GeoJSON outline for a selected location."""
    view = map_view(location)
    return MapViewResponse(
        center=list(view.center),
        zoom=view.zoom,
        bounds=BoundsModel(**asdict(view.bounds)) if view.bounds else None,
        max_zoom=view.max_zoom,
        feature=location_feature(location),
    )
