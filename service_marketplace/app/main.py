"""
Service Marketplace listing API.
"""

import time
from typing import Callable, Dict, Optional

import redis.asyncio as redis
from fastapi import Request
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.logging import set_caller_context
from service_marketplace.app.adapters.listing_store import ListingStore, PostgresListingStore
from service_marketplace.app.auth.service_token import ServiceTokenVerifier
from service_marketplace.app.caching.response_cache import ResponseCache
from service_marketplace.app.ratelimit.window_limiter import AdmissionController
from service_marketplace.app.search.pipeline import SearchPipeline
from service_marketplace.app.search.query_composer import QueryComposer


SERVICE_NAME = "marketplace"
DEFAULT_PORT = 3000


class MarketplaceService(BaseService):
    """Listing create/search API with response caching and admission control."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        redis_client: Optional[redis.Redis] = None,
        listing_store: Optional[ListingStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(SERVICE_NAME, DEFAULT_PORT, config=config)

        self.redis = redis_client or redis.from_url(
            self.config.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        self.listing_store = listing_store or PostgresListingStore(
            self.config.postgres_dsn,
            min_size=self.config.postgres_min_pool,
            max_size=self.config.postgres_max_pool,
            command_timeout=self.config.postgres_command_timeout,
        )

        self.token_verifier = ServiceTokenVerifier(
            self.config.internal_service_secret,
            audience=self.config.internal_service_audience,
        )
        self.admission = AdmissionController(
            self.redis,
            max_requests=self.config.rate_limit_max_requests,
            window_seconds=self.config.rate_limit_window_seconds,
            strategy=self.config.rate_limit_strategy,
            token_verifier=self.token_verifier,
            allow_legacy_header=self.config.allow_legacy_internal_header,
            metrics=self.metrics,
            clock=clock,
        )
        self.response_cache = ResponseCache(
            self.redis,
            default_ttl=self.config.cache_ttl_seconds,
            metrics=self.metrics,
        )
        self.composer = QueryComposer(
            default_radius_meters=self.config.default_radius_meters,
            max_limit=self.config.max_page_limit,
        )
        self.pipeline = SearchPipeline(
            admission=self.admission,
            cache=self.response_cache,
            composer=self.composer,
            store=self.listing_store,
            cache_ttl_seconds=self.config.cache_ttl_seconds,
            metrics=self.metrics,
        )

        if not self.token_verifier.enabled:
            self.logger.warning("Internal service secret not set; trusted callers are rate limited")

        self._setup_listing_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.marketplace_service = self

    async def _on_startup(self):
        await self.listing_store.start()

    async def _on_shutdown(self):
        await self.listing_store.stop()
        try:
            await self.redis.aclose()
        except Exception as exc:
            self.logger.warning("Redis close failed", error=str(exc))

    async def _check_dependencies(self) -> Dict[str, str]:
        dependencies = {}
        try:
            await self.redis.ping()
            dependencies["redis"] = "ok"
        except Exception as exc:
            self.logger.warning("Redis health check failed", error=str(exc))
            dependencies["redis"] = "error"

        dependencies["postgres"] = "ok" if await self.listing_store.health_check() else "error"
        return dependencies

    def _setup_listing_routes(self):
        """Set up listing create/search routes."""

        @self.app.post("/api/services", status_code=201)
        async def create_service(request: Request):
            """Create a new service listing."""
            caller = self.admission.resolve_caller(request)
            set_caller_context(caller.identity)

            try:
                payload = await request.json()
            except ValueError:
                payload = None

            listing_id, decision = await self.pipeline.create_listing(payload, caller)
            return JSONResponse(
                status_code=201,
                content={"message": "Service created", "id": listing_id},
                headers=decision.headers(),
            )

        @self.app.get("/api/services")
        async def search_services(request: Request):
            """List or search service listings."""
            caller = self.admission.resolve_caller(request)
            set_caller_context(caller.identity)

            result, decision = await self.pipeline.search(request.query_params.multi_items(), caller)
            return JSONResponse(
                content=result.model_dump(mode="json"),
                headers=decision.headers(),
            )


def create_app():
    """Create FastAPI application."""
    service = MarketplaceService()
    return service.app


if __name__ == "__main__":
    service = MarketplaceService()
    service.run()
