"""
Search Index Client - Typesense documents search over HTTP

One client per process, built from SearchIndexConfig and handed to whoever
needs it (FastAPI dependencies, QueryOrchestrator). Tests pass an
httpx.MockTransport instead of a live server.

Errors:
- Transport failures, timeouts and 5xx responses -> IndexConnectivityError
- 4xx responses (malformed filter, unknown collection) -> IndexQueryError
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List

import httpx

from areasearch.core.config import SearchIndexConfig
from areasearch.core.errors import IndexConnectivityError, IndexQueryError

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-TYPESENSE-API-KEY"
PROPERTY_QUERY_BY = "title,address,description"
LOCATION_QUERY_BY = "name_1,name_2,name_3,name_4,country"


@dataclass
class SearchParams:
    """Parameters of a single documents search."""
    q: str = "*"
    query_by: str = PROPERTY_QUERY_BY
    filter_by: Optional[str] = None
    sort_by: Optional[str] = None
    page: int = 1
    per_page: int = 250

    # Performance hints, they trade latency for accuracy but not correctness
    exhaustive_search: Optional[bool] = None
    search_cutoff_ms: Optional[int] = None
    use_cache: Optional[bool] = None
    max_candidates: Optional[int] = None

    def to_query_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        for key, value in self.__dict__.items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = "true" if value else "false"
            params[key] = value
        return params


@dataclass
class SearchResultPage:
    """One page of documents plus the total reported by the index."""
    documents: List[Dict[str, Any]]
    total_count: int
    page: int = 1
    per_page: int = 0
    out_of: Optional[int] = None
    search_time_ms: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_response(cls, data: Dict[str, Any], page: int, per_page: int) -> "SearchResultPage":
        """
        Build a page from a Typesense response.

        `found` is the authoritative total; `count` is only read when `found`
        is absent. Without either, the number of hits is used.
        """
        hits = data.get("hits") or []
        documents = [hit.get("document", {}) for hit in hits if isinstance(hit, dict)]

        total = data.get("found")
        if total is None:
            total = data.get("count")
        if total is None:
            total = len(documents)

        return cls(
            documents=documents,
            total_count=int(total),
            page=int(data.get("page") or page),
            per_page=per_page,
            out_of=data.get("out_of"),
            search_time_ms=data.get("search_time_ms"),
            raw=data,
        )


class SearchIndexClient:
    """Async Typesense client for the properties and locations collections."""

    def __init__(
        self,
        config: SearchIndexConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {}
            if self.config.api_key:
                headers[API_KEY_HEADER] = self.config.api_key
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers=headers,
                timeout=self.config.timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.get(path, params=params)
        except httpx.TransportError as e:
            logger.error(f"❌ Search index unreachable ({path}): {e}")
            raise IndexConnectivityError(f"Search index unreachable: {e}") from e

        if response.status_code >= 500:
            logger.error(f"❌ Search index error {response.status_code} on {path}")
            raise IndexConnectivityError(f"Search index returned {response.status_code}")

        if response.status_code >= 400:
            message = _error_message(response)
            raise IndexQueryError(
                message,
                status_code=response.status_code,
                filter_by=(params or {}).get("filter_by"),
            )

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"❌ Invalid JSON from search index on {path}: {e}")
            raise IndexConnectivityError(f"Invalid JSON from search index: {e}") from e

    async def search(self, collection: str, params: SearchParams) -> SearchResultPage:
        data = await self._get(
            f"/collections/{collection}/documents/search",
            params=params.to_query_params(),
        )
        page = SearchResultPage.from_response(data, params.page, params.per_page)
        logger.debug(
            f"Search {collection} page {params.page}: {len(page.documents)} hits, {page.total_count} found"
        )
        return page

    async def search_properties(self, params: SearchParams) -> SearchResultPage:
        return await self.search(self.config.properties_collection, params)

    async def search_locations(self, params: SearchParams) -> SearchResultPage:
        return await self.search(self.config.locations_collection, params)

    async def health(self) -> bool:
        """True when the index answers its health endpoint."""
        try:
            data = await self._get("/health")
        except (IndexConnectivityError, IndexQueryError) as e:
            logger.warning(f"Search index health check failed: {e}")
            return False
        return bool(data.get("ok"))


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return f"HTTP {response.status_code}"
