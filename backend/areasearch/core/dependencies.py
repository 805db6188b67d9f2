from typing import AsyncIterator

from fastapi import Depends, Request

from areasearch.core.config import settings
from areasearch.core.query_orchestrator import OrchestratorConfig, QueryOrchestrator
from areasearch.core.search_index_client import SearchIndexClient


def get_search_client(request: Request) -> SearchIndexClient:
    """Process-wide search index client, created in the app lifespan."""
    return request.app.state.search_client


def get_orchestrator_config() -> OrchestratorConfig:
    return OrchestratorConfig.from_settings(settings, sample_fallback=True)


async def get_orchestrator(
    client: SearchIndexClient = Depends(get_search_client),
    config: OrchestratorConfig = Depends(get_orchestrator_config),
) -> AsyncIterator[QueryOrchestrator]:
    """One orchestrator per request; its tasks are cancelled when the request ends."""
    orchestrator = QueryOrchestrator(client, config)
    try:
        yield orchestrator
    finally:
        await orchestrator.close()
