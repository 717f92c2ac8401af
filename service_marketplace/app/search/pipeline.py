"""
Search and create orchestration for the listing API.
"""

from contextlib import nullcontext
from typing import Any, Iterable, Optional, Tuple, TYPE_CHECKING

from shared.logging import get_logger
from service_marketplace.app.adapters.listing_store import ListingStore
from service_marketplace.app.caching.cache_keys import derive_cache_key
from service_marketplace.app.caching.response_cache import ResponseCache
from service_marketplace.app.domain.listings import build_listing_document
from service_marketplace.app.ratelimit.window_limiter import (
    AdmissionController,
    AdmissionDecision,
    CallerContext,
)
from service_marketplace.app.search.models import SearchRequest, SearchResult
from service_marketplace.app.search.query_composer import QueryComposer

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


RESPONSE_TTL_SECONDS = 300


class SearchPipeline:
    """Admission → cache → store → cache write, strictly in that order.

    The pipeline adds no logic of its own beyond sequencing its collaborators,
    each of which is injected so tests can substitute fakes.
    """

    def __init__(
        self,
        *,
        admission: AdmissionController,
        cache: ResponseCache,
        composer: QueryComposer,
        store: ListingStore,
        cache_ttl_seconds: int = RESPONSE_TTL_SECONDS,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.admission = admission
        self.cache = cache
        self.composer = composer
        self.store = store
        self.cache_ttl_seconds = cache_ttl_seconds
        self.metrics = metrics
        self.logger = get_logger("marketplace.search_pipeline")

    async def search(
        self,
        params: Iterable[Tuple[str, Any]],
        caller: CallerContext,
    ) -> Tuple[SearchResult, AdmissionDecision]:
        """Run a listing search for ``params`` on behalf of ``caller``.

        ``params`` are the raw query pairs in arrival order; repeated names
        are allowed. Raises ``AdmissionDenied`` or ``StoreError``.
        """
        decision = await self.admission.admit(caller)

        pairs = list(params)
        cache_key = derive_cache_key(pairs)
        cached = await self.cache.get(cache_key)
        if cached is not None:
            self.logger.debug("Search served from cache", cache_key=cache_key)
            return cached, decision

        request = SearchRequest.from_query(dict(pairs))
        query = self.composer.compose(request)

        with self._timed("find"):
            results = await self.store.find(query.filters, query.sort, query.page)
        with self._timed("count"):
            total = await self.store.count(query.filters)

        result = SearchResult(
            total=total,
            page=query.page.page,
            limit=query.page.limit,
            results=results,
        )

        await self.cache.put(cache_key, result, self.cache_ttl_seconds)

        self.logger.info(
            "Search executed",
            cache_key=cache_key,
            total=total,
            returned=len(results),
            page=query.page.page,
        )
        return result, decision

    async def create_listing(self, payload: Any, caller: CallerContext) -> Tuple[str, AdmissionDecision]:
        """Validate and insert a listing, returning its id."""
        decision = await self.admission.admit(caller)

        document = build_listing_document(payload)
        listing_id = await self.store.insert(document)
        return listing_id, decision

    def _timed(self, operation: str):
        if self.metrics:
            return self.metrics.time_operation("store_query_duration_seconds", operation=operation)
        return nullcontext()
