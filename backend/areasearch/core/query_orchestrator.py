"""
Query Orchestrator - Property search for a selected location

Turns a location selection into a geo filter, pages through the properties
collection and accumulates deduplicated results, while making sure results of
a superseded selection never leak into the current one.

Key Design:
1. One SearchSession per selection, identified by a monotonically minted
   search id. Selecting again supersedes the current session.
2. Superseding cancels every in-flight task of the old session (asyncio task
   cancellation, which aborts the HTTP request) and late responses are
   dropped after checking the captured search id.
3. Pages are fetched one at a time, in order, with a short delay between
   them. A (search_id, page) pair is never fetched twice.
4. Failures end up in the snapshot status, so "no matches" (EMPTY), degraded
   data (APPROXIMATE / FALLBACK) and hard failures (ERROR) stay distinct.

Query modes, in priority order:
- DIRECT_FILTER: precomputed filter expression, used as-is
- POINT_RADIUS:  point location, radius filter sorted by distance
- TEXT:          free text without geometry, smaller pages, no auto-load
- POLYGON:       polygon / multipolygon, simplified ring filter
- BOUNDS:        no usable geometry but a viewport, bounding-box filter
"""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, List, Dict, Any, Set, Callable, Awaitable

from areasearch.core.config import Settings, settings as default_settings
from areasearch.core.errors import (
    AreaSearchError,
    GeometryParseError,
    NoRingAvailable,
    InsufficientPoints,
    OversizeGeometry,
    IndexConnectivityError,
    IndexQueryError,
)
from areasearch.core.filter_service import (
    GeoFilter,
    build_bounds_filter,
    build_distance_sort,
    build_fitted_polygon_filter,
    build_radius_filter,
    fits_budget,
)
from areasearch.core.geometry_service import (
    Bounds,
    GeometryKind,
    LocationGeometry,
    extract_point_radius,
    extract_ring,
    location_geometry,
    ring_bounds,
)
from areasearch.core.sample_data import sample_properties
from areasearch.core.search_index_client import (
    PROPERTY_QUERY_BY,
    SearchIndexClient,
    SearchParams,
    SearchResultPage,
)
from areasearch.schemas.location import LocationDocument

logger = logging.getLogger(__name__)


class QueryMode(str, Enum):
    DIRECT_FILTER = "direct_filter"
    POINT_RADIUS = "point_radius"
    TEXT = "text"
    POLYGON = "polygon"
    BOUNDS = "bounds"


class SessionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"  # more pages available, auto-load off
    COMPLETE = "complete"
    FAILED = "failed"
    SUPERSEDED = "superseded"


class SearchOutcome(str, Enum):
    OK = "ok"
    EMPTY = "empty"  # genuine zero matches
    APPROXIMATE = "approximate"
    FALLBACK = "fallback"  # sample data
    ERROR = "error"
    NO_GEOMETRY = "no_geometry"


class ErrorKind(str, Enum):
    GEOMETRY_PARSE = "geometry_parse"
    INSUFFICIENT_POINTS = "insufficient_points"
    OVERSIZE_GEOMETRY = "oversize_geometry"
    INDEX_CONNECTIVITY = "index_connectivity"
    INDEX_QUERY = "index_query"


class OversizePolicy(str, Enum):
    BOUNDS = "bounds"  # search the ring's bounding box, flagged approximate
    FAIL = "fail"


@dataclass
class OrchestratorConfig:
    page_size: int = 250
    text_page_size: int = 20
    auto_load: bool = True
    count_only: bool = False
    page_delay_seconds: float = 0.8
    max_filter_chars: int = 3900
    filter_hard_limit: int = 4000
    default_radius_meters: float = 500.0
    search_cutoff_ms: Optional[int] = 3000
    max_candidates: Optional[int] = None
    query_by: str = PROPERTY_QUERY_BY
    oversize_policy: OversizePolicy = OversizePolicy.BOUNDS
    sample_fallback: bool = False

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None, **overrides: Any) -> "OrchestratorConfig":
        source = source or default_settings
        config = cls(
            page_size=source.GEOMETRY_PAGE_SIZE,
            text_page_size=source.TEXT_PAGE_SIZE,
            page_delay_seconds=source.PAGE_DELAY_SECONDS,
            max_filter_chars=min(source.FILTER_TARGET_CHARS, source.FILTER_MAX_CHARS),
            filter_hard_limit=source.FILTER_MAX_CHARS,
            default_radius_meters=source.DEFAULT_POINT_RADIUS_METERS,
            search_cutoff_ms=source.SEARCH_CUTOFF_MS,
            max_candidates=source.MAX_CANDIDATES,
        )
        return replace(config, **overrides)


@dataclass
class LocationSelection:
    """What the user picked: a geometry, a precomputed filter, free text, or a viewport."""
    geometry: Optional[LocationGeometry] = None
    geo_filter: Optional[str] = None
    query: Optional[str] = None
    bounds: Optional[Bounds] = None
    parse_error: Optional[GeometryParseError] = None

    @classmethod
    def from_document(
        cls,
        document: LocationDocument,
        query: Optional[str] = None,
        bounds: Optional[Bounds] = None,
    ) -> "LocationSelection":
        outcome = location_geometry(document)
        return cls(
            geometry=outcome.geometry,
            query=query,
            bounds=bounds,
            parse_error=outcome.error,
        )


@dataclass(frozen=True)
class QueryPlan:
    mode: QueryMode
    page_size: int
    query: str = "*"
    geo_filter: Optional[GeoFilter] = None
    sort_by: Optional[str] = None
    auto_load: bool = True
    approximate: bool = False


def select_query_mode(selection: LocationSelection, config: OrchestratorConfig) -> QueryPlan:
    """
    Decide how to query for a selection.

    A location whose geometry could not be parsed is never widened into a
    plain text search: it falls back to the viewport bounds or fails.

    Raises:
        OversizeGeometry: polygon cannot fit the filter budget and the
            oversize policy is FAIL (or a precomputed filter is too long)
        NoRingAvailable / InsufficientPoints / GeometryParseError: nothing
            to search with
    """
    query = (selection.query or "").strip() or "*"

    if selection.geo_filter:
        geo_filter = GeoFilter.from_text(selection.geo_filter)
        if not fits_budget(geo_filter.text, config.filter_hard_limit):
            raise OversizeGeometry(len(geo_filter), config.filter_hard_limit, 0)
        return QueryPlan(
            mode=QueryMode.DIRECT_FILTER,
            page_size=config.page_size,
            query=query,
            geo_filter=geo_filter,
        )

    geometry = selection.geometry

    if geometry is not None and geometry.kind == GeometryKind.POINT:
        center, radius = extract_point_radius(geometry, config.default_radius_meters)
        return QueryPlan(
            mode=QueryMode.POINT_RADIUS,
            page_size=config.page_size,
            query=query,
            geo_filter=build_radius_filter(center, radius),
            sort_by=build_distance_sort(center),
        )

    if geometry is None and query != "*" and selection.parse_error is None:
        return QueryPlan(
            mode=QueryMode.TEXT,
            page_size=config.text_page_size,
            query=query,
            auto_load=False,
        )

    if geometry is not None:
        ring = extract_ring(geometry)
        try:
            geo_filter = build_fitted_polygon_filter(ring, config.max_filter_chars)
        except OversizeGeometry:
            if config.oversize_policy != OversizePolicy.BOUNDS:
                raise
            logger.warning("⚠️ Falling back to bounding box search for oversize polygon")
            return QueryPlan(
                mode=QueryMode.BOUNDS,
                page_size=config.page_size,
                query=query,
                geo_filter=build_bounds_filter(ring_bounds(ring)),
                approximate=True,
            )
        return QueryPlan(
            mode=QueryMode.POLYGON,
            page_size=config.page_size,
            query=query,
            geo_filter=geo_filter,
        )

    if selection.bounds is not None:
        return QueryPlan(
            mode=QueryMode.BOUNDS,
            page_size=config.page_size,
            query=query,
            geo_filter=build_bounds_filter(selection.bounds),
            approximate=selection.parse_error is not None,
        )

    if selection.parse_error is not None:
        raise selection.parse_error
    raise NoRingAvailable("Selection has no geometry, filter or query")


def _document_key(document: Dict[str, Any]) -> str:
    key = document.get("id") or document.get("ref")
    if key is not None:
        return str(key)
    return json.dumps(document, sort_keys=True, default=str)


@dataclass(frozen=True)
class SearchSnapshot:
    """Immutable view of a session handed to listeners and API responses."""
    search_id: Optional[str]
    state: SessionState
    outcome: Optional[SearchOutcome]
    documents: List[Dict[str, Any]]
    total_count: Optional[int]
    current_page: int
    mode: Optional[QueryMode] = None
    filter_by: Optional[str] = None
    approximate: bool = False
    using_sample_data: bool = False
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def is_loading(self) -> bool:
        return self.state == SessionState.LOADING


@dataclass
class SearchSession:
    """Mutable state of one logical search. Owned by QueryOrchestrator."""
    search_id: str
    plan: Optional[QueryPlan] = None
    count_only: bool = False
    state: SessionState = SessionState.IDLE
    outcome: Optional[SearchOutcome] = None
    documents: List[Dict[str, Any]] = field(default_factory=list)
    total_count: Optional[int] = None
    current_page: int = 0
    fetched_pages: Set[int] = field(default_factory=set)
    approximate: bool = False
    using_sample_data: bool = False
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    _keys: Set[str] = field(default_factory=set, repr=False)

    @property
    def page_size(self) -> int:
        if self.count_only or self.plan is None:
            return 0
        return self.plan.page_size

    def append_documents(self, documents: List[Dict[str, Any]]) -> int:
        """Append documents not already present by id. Returns how many were added."""
        added = 0
        for document in documents:
            key = _document_key(document)
            if key in self._keys:
                continue
            self._keys.add(key)
            self.documents.append(document)
            added += 1
        return added

    def has_more(self, page: SearchResultPage) -> bool:
        if self.page_size == 0 or self.total_count is None:
            return False
        if len(page.documents) < self.page_size:
            return False
        return self.current_page * self.page_size < self.total_count

    def fail(self, kind: ErrorKind, error: AreaSearchError, outcome: SearchOutcome = SearchOutcome.ERROR) -> None:
        self.state = SessionState.FAILED
        self.outcome = outcome
        self.error_kind = kind
        self.error = str(error)

    def snapshot(self) -> SearchSnapshot:
        return SearchSnapshot(
            search_id=self.search_id,
            state=self.state,
            outcome=self.outcome,
            documents=list(self.documents),
            total_count=self.total_count,
            current_page=self.current_page,
            mode=self.plan.mode if self.plan else None,
            filter_by=self.plan.geo_filter.text if self.plan and self.plan.geo_filter else None,
            approximate=self.approximate,
            using_sample_data=self.using_sample_data,
            error=self.error,
            error_kind=self.error_kind,
        )


Listener = Callable[[SearchSnapshot], None]

_GEOMETRY_ERROR_KINDS = (
    (InsufficientPoints, ErrorKind.INSUFFICIENT_POINTS),
    (NoRingAvailable, ErrorKind.GEOMETRY_PARSE),
    (GeometryParseError, ErrorKind.GEOMETRY_PARSE),
)


class QueryOrchestrator:
    """Runs property searches for location selections, latest selection wins."""

    def __init__(
        self,
        client: SearchIndexClient,
        config: Optional[OrchestratorConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = client
        self._config = config or OrchestratorConfig.from_settings()
        self._sleep = sleep
        self._session: Optional[SearchSession] = None
        self._tasks: Dict[str, Set[asyncio.Task]] = {}
        self._listeners: List[Listener] = []
        self._ids = itertools.count(1)

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def current_search_id(self) -> Optional[str]:
        return self._session.search_id if self._session else None

    # ============================================================
    # Public API
    # ============================================================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for snapshots of the current session."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> SearchSnapshot:
        if self._session is None:
            return SearchSnapshot(
                search_id=None,
                state=SessionState.IDLE,
                outcome=None,
                documents=[],
                total_count=None,
                current_page=0,
            )
        return self._session.snapshot()

    def select_location(self, selection: LocationSelection, count_only: Optional[bool] = None) -> str:
        """
        Start a search for `selection`, superseding the current one.

        Must be called from a running event loop. Returns the new search id.
        """
        if count_only is None:
            count_only = self._config.count_only
        session = self._start_session(count_only)

        try:
            session.plan = select_query_mode(selection, self._config)
        except OversizeGeometry as e:
            logger.warning(f"Search {session.search_id}: {e}")
            session.fail(ErrorKind.OVERSIZE_GEOMETRY, e)
            self._notify(session)
            return session.search_id
        except (GeometryParseError, NoRingAvailable) as e:
            logger.warning(f"Search {session.search_id}: no usable geometry ({e})")
            kind = next(k for error_type, k in _GEOMETRY_ERROR_KINDS if isinstance(e, error_type))
            session.fail(kind, e, outcome=SearchOutcome.NO_GEOMETRY)
            self._notify(session)
            return session.search_id

        session.approximate = session.plan.approximate
        logger.info(
            f"🔍 Search {session.search_id}: mode={session.plan.mode.value} "
            f"page_size={session.page_size} filter={len(session.plan.geo_filter or '')} chars"
        )
        self._spawn(session, self._load_pages(session, 1))
        return session.search_id

    def search_text(self, query: str) -> str:
        return self.select_location(LocationSelection(query=query))

    def count(self, selection: LocationSelection) -> str:
        """Count-only search: same filter and staleness handling, no documents."""
        return self.select_location(selection, count_only=True)

    def load_more(self) -> bool:
        """Fetch the next page of the current session when auto-load is off."""
        session = self._session
        if session is None or session.state != SessionState.READY:
            return False
        self._spawn(session, self._load_pages(session, session.current_page + 1, follow=False))
        return True

    def cancel(self) -> None:
        """Supersede the current session without starting a new one."""
        if self._session is not None:
            self._supersede(self._session)
            self._session = None

    async def wait(self) -> SearchSnapshot:
        """Wait until the current session has no tasks left, then snapshot it."""
        while True:
            session = self._session
            if session is None:
                return self.snapshot()
            tasks = self._tasks.get(session.search_id)
            if not tasks:
                return session.snapshot()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def run(self, selection: LocationSelection, count_only: Optional[bool] = None) -> SearchSnapshot:
        """Select and wait for the search to settle."""
        self.select_location(selection, count_only=count_only)
        return await self.wait()

    async def close(self) -> None:
        self.cancel()
        pending = [task for tasks in self._tasks.values() for task in tasks]
        self._tasks.clear()
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ============================================================
    # Sessions
    # ============================================================

    def _start_session(self, count_only: bool) -> SearchSession:
        if self._session is not None:
            self._supersede(self._session)
        session = SearchSession(search_id=f"S{next(self._ids)}", count_only=count_only)
        self._session = session
        return session

    def _supersede(self, session: SearchSession) -> None:
        session.state = SessionState.SUPERSEDED
        tasks = self._tasks.pop(session.search_id, set())
        for task in tasks:
            task.cancel()
        if tasks:
            logger.debug(f"Search {session.search_id} superseded, cancelled {len(tasks)} request(s)")

    def _is_current(self, session: SearchSession) -> bool:
        return self._session is not None and self._session.search_id == session.search_id

    def _spawn(self, session: SearchSession, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.setdefault(session.search_id, set()).add(task)

        def done(finished: asyncio.Task) -> None:
            tasks = self._tasks.get(session.search_id)
            if tasks is not None:
                tasks.discard(finished)
                if not tasks:
                    self._tasks.pop(session.search_id, None)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error(
                    f"Search {session.search_id} task failed: {finished.exception()}",
                    exc_info=finished.exception(),
                )

        task.add_done_callback(done)
        return task

    def _notify(self, session: SearchSession) -> None:
        if not self._is_current(session):
            return
        snapshot = session.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)

    # ============================================================
    # Pagination
    # ============================================================

    def _params(self, session: SearchSession, page: int) -> SearchParams:
        plan = session.plan
        return SearchParams(
            q=plan.query,
            query_by=self._config.query_by,
            filter_by=plan.geo_filter.text if plan.geo_filter else None,
            sort_by=plan.sort_by,
            page=page,
            per_page=session.page_size,
            exhaustive_search=session.count_only or None,
            search_cutoff_ms=self._config.search_cutoff_ms,
            use_cache=True,
            max_candidates=self._config.max_candidates,
        )

    async def _load_pages(self, session: SearchSession, first_page: int, follow: Optional[bool] = None) -> None:
        if follow is None:
            follow = self._config.auto_load and session.plan.auto_load
        page = first_page
        try:
            while await self._load_page(session, page):
                if not follow:
                    session.state = SessionState.READY
                    self._notify(session)
                    return
                await self._sleep(self._config.page_delay_seconds)
                if not self._is_current(session):
                    return
                page += 1
        except asyncio.CancelledError:
            logger.debug(f"Search {session.search_id} page {page} cancelled")
            raise

    async def _load_page(self, session: SearchSession, page: int) -> bool:
        """Fetch and merge one page. Returns True when another page should follow."""
        if page in session.fetched_pages:
            logger.debug(f"Search {session.search_id} page {page} already fetched")
            return False
        session.fetched_pages.add(page)
        session.state = SessionState.LOADING
        self._notify(session)

        try:
            result = await self._client.search_properties(self._params(session, page))
        except IndexConnectivityError as e:
            if self._is_current(session):
                self._handle_connectivity_error(session, page, e)
            return False
        except IndexQueryError as e:
            if self._is_current(session):
                e.search_id = session.search_id
                e.filter_by = e.filter_by or (session.plan.geo_filter.text if session.plan.geo_filter else None)
                logger.error(
                    f"❌ Search {session.search_id} rejected by index: {e} (filter: {e.filter_by})"
                )
                session.fail(ErrorKind.INDEX_QUERY, e)
                self._notify(session)
            return False

        if not self._is_current(session):
            logger.debug(f"Dropping late response for superseded search {session.search_id}")
            return False

        session.total_count = result.total_count
        session.current_page = page
        if session.page_size:
            session.append_documents(result.documents)

        more = session.has_more(result)
        if not more:
            session.state = SessionState.COMPLETE
            if session.approximate:
                session.outcome = SearchOutcome.APPROXIMATE
            elif session.total_count == 0 and not session.documents:
                session.outcome = SearchOutcome.EMPTY
            else:
                session.outcome = SearchOutcome.OK
            logger.info(
                f"✅ Search {session.search_id} complete: {len(session.documents)} documents, "
                f"{session.total_count} found"
            )
        self._notify(session)
        return more

    def _handle_connectivity_error(self, session: SearchSession, page: int, error: IndexConnectivityError) -> None:
        logger.error(f"❌ Search {session.search_id} page {page}: {error}")
        if self._config.sample_fallback and page == 1:
            documents = [] if session.count_only else sample_properties()
            session.append_documents(documents)
            session.total_count = len(sample_properties())
            session.current_page = page
            session.using_sample_data = True
            session.fail(ErrorKind.INDEX_CONNECTIVITY, error, outcome=SearchOutcome.FALLBACK)
        else:
            session.fail(ErrorKind.INDEX_CONNECTIVITY, error)
        self._notify(session)
