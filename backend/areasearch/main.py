import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from areasearch.core.config import settings, search_index_config
from areasearch.core.search_index_client import SearchIndexClient
from areasearch.api.v1.router import api_router

logging.basicConfig(level=logging.INFO, format='%(message)s')
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = SearchIndexClient(search_index_config(settings))
    if not client.is_configured:
        logger.warning("⚠️  TYPESENSE_API_KEY not set, searches will fall back to sample data")
    app.state.search_client = client
    yield
    await client.close()


app = FastAPI(
    title="Area Search API",
    description="Property search inside administrative regions and points of interest",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=3600,
)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc) if settings.ENVIRONMENT == "development" else "Internal server error"},
    )


@app.get("/")
def root():
    return {"message": "Area Search API", "version": "1.0.0"}


@app.get("/health")
async def health_check(request: Request):
    index_ok = await request.app.state.search_client.health()
    return {"status": "healthy", "search_index": "ok" if index_ok else "unavailable"}


app.include_router(api_router, prefix=settings.API_V1_PREFIX)
