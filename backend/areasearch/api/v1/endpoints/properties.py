"""
Property search endpoints

- Free-text search (relevance ranked)
- Polygon search from raw coordinates or a location's coordinates_json
- Count-only search for a precomputed filter
- Full orchestrated search for a selected location
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from areasearch.core.dependencies import get_orchestrator, get_search_client
from areasearch.core.errors import (
    GeometryParseError,
    IndexConnectivityError,
    IndexQueryError,
    NoRingAvailable,
    OversizeGeometry,
)
from areasearch.core.filter_service import build_fitted_polygon_filter
from areasearch.core.geometry_service import (
    Bounds,
    SearchRing,
    extract_ring,
    parse_location_geometry,
    property_markers,
    ring_from_flat,
)
from areasearch.core.query_orchestrator import LocationSelection, QueryOrchestrator
from areasearch.core.config import settings
from areasearch.core.sample_data import sample_properties
from areasearch.core.search_index_client import SearchIndexClient, SearchParams
from areasearch.schemas.search import (
    CountRequest,
    CountResponse,
    LocationPropertiesRequest,
    LocationPropertiesResponse,
    PolygonSearchRequest,
    PolygonSearchResponse,
    PropertyMarker,
    PropertySearchRequest,
    PropertySearchResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/search", response_model=PropertySearchResponse)
async def search_properties(
    request: PropertySearchRequest,
    client: SearchIndexClient = Depends(get_search_client),
):
    """Search properties by free text and/or a filter expression."""
    if not request.q and not request.filters:
        raise HTTPException(status_code=400, detail="Search query or filters are required")

    params = SearchParams(
        q=request.q or "*",
        filter_by=request.filters,
        page=request.page,
        per_page=request.per_page,
    )

    try:
        result = await client.search_properties(params)
    except IndexConnectivityError as e:
        samples = sample_properties()
        return PropertySearchResponse(
            properties=samples,
            count=len(samples),
            source="sample",
            using_sample_data=True,
            error=str(e),
        )
    except IndexQueryError as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "Search rejected by index", "details": str(e), "filter": request.filters},
        )

    return PropertySearchResponse(properties=result.documents, count=result.total_count)


def _polygon_ring(request: PolygonSearchRequest) -> SearchRing:
    if request.coordinates and len(request.coordinates) >= 6:
        return ring_from_flat(request.coordinates)

    if request.coordinates_json:
        outcome = parse_location_geometry(request.coordinates_json)
        if not outcome.ok:
            raise outcome.error
        return extract_ring(outcome.geometry)

    raise NoRingAvailable("No coordinates provided")


@router.post("/search-in-polygon", response_model=PolygonSearchResponse)
async def search_in_polygon(
    request: PolygonSearchRequest,
    client: SearchIndexClient = Depends(get_search_client),
):
    """
    Search properties inside a polygon.

    Accepts `coordinates` already in [lat, lng] order or a location's
    `coordinates_json`. The ring is closed and simplified to fit the filter
    length limit.
    """
    if request.use_sample_data:
        samples = sample_properties()
        return PolygonSearchResponse(
            properties=samples,
            count=len(samples),
            total_count=len(samples),
            points=0,
            simplified_points=0,
            filter_length=0,
            using_sample_data=True,
        )

    try:
        ring = _polygon_ring(request)
    except (GeometryParseError, NoRingAvailable) as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Invalid coordinates. Provide at least 3 points",
                "details": str(e),
            },
        )

    try:
        geo_filter = build_fitted_polygon_filter(ring, settings.FILTER_TARGET_CHARS)
    except OversizeGeometry as e:
        return JSONResponse(
            status_code=422,
            content={
                "error": "oversize_geometry",
                "details": str(e),
                "filter_length": e.length,
                "max_chars": e.max_chars,
            },
        )

    params = SearchParams(
        filter_by=geo_filter.text,
        per_page=settings.GEOMETRY_PAGE_SIZE,
        search_cutoff_ms=settings.SEARCH_CUTOFF_MS,
    )

    try:
        result = await client.search_properties(params)
    except IndexConnectivityError as e:
        return JSONResponse(
            status_code=503,
            content={
                "error": "Error connecting to search index",
                "details": str(e),
                "properties": sample_properties(),
                "using_sample_data": True,
            },
        )
    except IndexQueryError as e:
        return JSONResponse(
            status_code=400,
            content={
                "error": "Search rejected by index",
                "details": str(e),
                "filter": geo_filter.text,
            },
        )

    logger.info(f"Found {result.total_count} properties inside polygon ({geo_filter.points} points)")
    return PolygonSearchResponse(
        properties=result.documents,
        count=len(result.documents),
        total_count=result.total_count,
        points=len(ring),
        simplified_points=geo_filter.points or 0,
        filter_length=len(geo_filter),
    )


@router.post("/count", response_model=CountResponse)
async def count_properties(
    request: CountRequest,
    client: SearchIndexClient = Depends(get_search_client),
):
    """Number of properties matching a precomputed filter, without documents."""
    logger.info(f"Count request {request.search_id}: filter {len(request.filter_by)} chars")

    if len(request.filter_by) > settings.FILTER_MAX_CHARS:
        return JSONResponse(
            status_code=422,
            content={
                "error": "oversize_geometry",
                "details": f"Filter is {len(request.filter_by)} chars, limit is {settings.FILTER_MAX_CHARS}",
                "search_id": request.search_id,
            },
        )

    params = SearchParams(
        query_by="title,address",
        filter_by=request.filter_by,
        per_page=0,
        exhaustive_search=True,
    )

    try:
        result = await client.search_properties(params)
    except (IndexConnectivityError, IndexQueryError) as e:
        logger.error(f"Count {request.search_id} failed: {e}")
        return JSONResponse(
            status_code=503 if isinstance(e, IndexConnectivityError) else 400,
            content={
                "error": "Search failed",
                "details": str(e),
                "filter": request.filter_by,
                "search_id": request.search_id,
            },
        )

    return CountResponse(
        success=True,
        count=result.total_count,
        search_id=request.search_id,
        message="Count successful",
    )


@router.post("/in-location", response_model=LocationPropertiesResponse)
async def properties_in_location(
    request: LocationPropertiesRequest,
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
):
    """
    All properties for a selected location.

    Pages through the index until every match is loaded (or only counts them
    with `count_only`). The `outcome` field tells genuine zero results apart
    from approximate, sample and failed searches.
    """
    bounds: Optional[Bounds] = None
    if request.bounds:
        bounds = Bounds(**request.bounds.model_dump())

    if request.location is not None:
        selection = LocationSelection.from_document(request.location, query=request.query, bounds=bounds)
    else:
        selection = LocationSelection(query=request.query, bounds=bounds)
    selection.geo_filter = request.geo_filter

    snapshot = await orchestrator.run(selection, count_only=request.count_only)

    return LocationPropertiesResponse(
        search_id=snapshot.search_id,
        state=snapshot.state.value,
        outcome=snapshot.outcome.value if snapshot.outcome else None,
        mode=snapshot.mode.value if snapshot.mode else None,
        properties=snapshot.documents,
        markers=[PropertyMarker(**marker) for marker in property_markers(snapshot.documents)],
        total_count=snapshot.total_count,
        current_page=snapshot.current_page,
        filter_by=snapshot.filter_by,
        approximate=snapshot.approximate,
        using_sample_data=snapshot.using_sample_data,
        error=snapshot.error,
        error_kind=snapshot.error_kind.value if snapshot.error_kind else None,
    )
