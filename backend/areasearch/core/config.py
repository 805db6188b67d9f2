from dataclasses import dataclass
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Typesense
    TYPESENSE_HOST: str = "localhost"
    TYPESENSE_PORT: int = 443
    TYPESENSE_PROTOCOL: str = "https"
    TYPESENSE_API_KEY: Optional[str] = None
    TYPESENSE_COLLECTION_PROPERTIES: str = "properties"
    TYPESENSE_COLLECTION_LOCATIONS: str = "portugal_gadm"
    TYPESENSE_CONNECTION_TIMEOUT_SECONDS: float = 10.0

    # Geo filter budget (Typesense rejects filter_by longer than 4000 chars)
    FILTER_MAX_CHARS: int = 4000
    FILTER_TARGET_CHARS: int = 3900

    # Pagination
    GEOMETRY_PAGE_SIZE: int = 250
    TEXT_PAGE_SIZE: int = 20
    PAGE_DELAY_SECONDS: float = 0.8

    # Server-side search budget
    SEARCH_CUTOFF_MS: int = 3000
    MAX_CANDIDATES: int = 1000

    DEFAULT_POINT_RADIUS_METERS: float = 500.0

    # App
    ENVIRONMENT: str = "development"
    API_V1_PREFIX: str = "/api/v1"

    class Config:
        env_file = ".env"
        case_sensitive = True


@dataclass(frozen=True)
class SearchIndexConfig:
    """Connection settings handed to SearchIndexClient."""
    base_url: str
    api_key: Optional[str]
    timeout_seconds: float = 10.0
    properties_collection: str = "properties"
    locations_collection: str = "portugal_gadm"


def search_index_config(source: Optional[Settings] = None) -> SearchIndexConfig:
    """Build the search index config from settings."""
    source = source or settings
    return SearchIndexConfig(
        base_url=f"{source.TYPESENSE_PROTOCOL}://{source.TYPESENSE_HOST}:{source.TYPESENSE_PORT}",
        api_key=source.TYPESENSE_API_KEY,
        timeout_seconds=source.TYPESENSE_CONNECTION_TIMEOUT_SECONDS,
        properties_collection=source.TYPESENSE_COLLECTION_PROPERTIES,
        locations_collection=source.TYPESENSE_COLLECTION_LOCATIONS,
    )


settings = Settings()
