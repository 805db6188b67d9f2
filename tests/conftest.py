import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from areasearch.core.config import SearchIndexConfig
from areasearch.core.dependencies import get_orchestrator_config
from areasearch.core.query_orchestrator import OrchestratorConfig
from areasearch.core.search_index_client import SearchIndexClient
from areasearch.main import app


def make_properties(count: int, prefix: str = "p") -> List[Dict[str, Any]]:
    return [
        {"id": f"{prefix}{i}", "title": f"Property {i}", "_geoloc": [39.0 + i / 1000, -8.0]}
        for i in range(count)
    ]


class FakeTypesense:
    """In-memory stand-in for the Typesense HTTP API, served through httpx.MockTransport."""

    def __init__(self, documents: Optional[List[Dict[str, Any]]] = None):
        self.documents = documents or []
        self.locations: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        self.status_code: Optional[int] = None
        self.connect_error = False
        self.raw_body: Optional[bytes] = None

    @property
    def search_params(self) -> List[Dict[str, str]]:
        return [dict(r.url.params) for r in self.requests if r.url.path.endswith("/search")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.connect_error:
            raise httpx.ConnectError("Connection refused", request=request)
        if self.status_code is not None:
            return httpx.Response(self.status_code, json={"message": "Could not parse the filter query."})
        if self.raw_body is not None:
            return httpx.Response(200, content=self.raw_body)
        if request.url.path == "/health":
            return httpx.Response(200, json={"ok": True})

        documents = self.locations if "/collections/portugal_gadm/" in request.url.path else self.documents
        page = int(request.url.params.get("page", 1))
        per_page = int(request.url.params.get("per_page", 10))
        start = (page - 1) * per_page
        hits = documents[start:start + per_page]
        return httpx.Response(200, content=json.dumps({
            "found": len(documents),
            "out_of": len(documents),
            "page": page,
            "search_time_ms": 1,
            "hits": [{"document": d} for d in hits],
        }))

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def index_config() -> SearchIndexConfig:
    return SearchIndexConfig(base_url="http://typesense.test:8108", api_key="test-key")


@pytest.fixture
def fake_index() -> FakeTypesense:
    return FakeTypesense()


@pytest_asyncio.fixture
async def search_client(index_config, fake_index):
    client = SearchIndexClient(index_config, transport=fake_index.transport())
    yield client
    await client.close()


async def instant_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


@pytest_asyncio.fixture
async def client(search_client):
    app.state.search_client = search_client
    app.dependency_overrides[get_orchestrator_config] = lambda: OrchestratorConfig(
        page_size=10,
        page_delay_seconds=0,
        sample_fallback=True,
    )
    async with AsyncClient(base_url="http://127.0.0.1:8000", transport=ASGITransport(app)) as http:
        yield http
    app.dependency_overrides.clear()
