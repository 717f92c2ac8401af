"""
Redis-backed cache for serialized search responses.
"""

from typing import Optional, TYPE_CHECKING

import redis.asyncio as redis
from pydantic import ValidationError as PayloadError

from shared.logging import get_logger
from service_marketplace.app.search.models import SearchResult

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_RESPONSE_TTL = 300
CACHE_TYPE = "search_response"


class ResponseCache:
    """Best-effort get/put of ``SearchResult`` payloads.

    Cache store failures never reach the caller: a failed read is a miss and
    a failed write is skipped. Both are logged and counted.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        *,
        default_ttl: int = DEFAULT_RESPONSE_TTL,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self._redis = redis_client
        self.default_ttl = default_ttl
        self.metrics = metrics
        self.logger = get_logger("marketplace.response_cache")

    async def get(self, key: str) -> Optional[SearchResult]:
        """Return the cached result for ``key`` or ``None``."""
        try:
            cached = await self._redis.get(key)
        except Exception as exc:
            self.logger.error("Cache fetch error", key=key, error=str(exc))
            self._count("cache_errors_total", operation="get")
            return None

        if cached is None:
            self._count("cache_misses_total")
            return None

        if isinstance(cached, bytes):
            cached = cached.decode("utf-8")

        try:
            result = SearchResult.model_validate_json(cached)
        except PayloadError as exc:
            self.logger.warning("Discarding undecodable cache entry", key=key, error=str(exc))
            self._count("cache_errors_total", operation="decode")
            return None

        self._count("cache_hits_total")
        return result

    async def put(self, key: str, result: SearchResult, ttl_seconds: Optional[int] = None) -> bool:
        """Store ``result`` under ``key``, replacing any previous value."""
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        try:
            await self._redis.setex(key, ttl, result.model_dump_json())
        except Exception as exc:
            self.logger.error("Cache write error", key=key, error=str(exc))
            self._count("cache_errors_total", operation="put")
            return False

        self.logger.debug("Cached search response", key=key, ttl=ttl, total=result.total)
        return True

    def _count(self, metric_name: str, **labels) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, cache_type=CACHE_TYPE, **labels)
