from fastapi import APIRouter
from areasearch.api.v1.endpoints import locations, properties

api_router = APIRouter()

api_router.include_router(locations.router, prefix="/locations", tags=["locations"])
api_router.include_router(properties.router, prefix="/properties", tags=["properties"])
