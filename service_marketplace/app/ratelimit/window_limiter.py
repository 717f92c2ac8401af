"""
Window-based admission control for the listing API.
"""

import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple, TYPE_CHECKING

import redis.asyncio as redis
from fastapi import Request

from shared.errors import RateLimitError
from shared.logging import get_logger
from service_marketplace.app.auth.service_token import SERVICE_TOKEN_HEADER, ServiceTokenVerifier

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_MAX_REQUESTS = 100
DEFAULT_WINDOW_SECONDS = 15 * 60
FALLBACK_IDENTITY = "internal-service"
LEGACY_INTERNAL_HEADER = "X-Internal-Service"

STRATEGY_FIXED = "fixed"
STRATEGY_SLIDING = "sliding"


@dataclass(frozen=True)
class CallerContext:
    """Who is calling, and whether they skip admission control."""

    identity: str
    trusted: bool = False
    service: Optional[str] = None


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    identity: str
    limit: int
    current_count: int
    remaining: int
    reset_in_seconds: int
    bypassed: bool = False
    error: Optional[str] = None

    def headers(self) -> Dict[str, str]:
        """Standard ``RateLimit-*`` headers for the response."""
        if self.bypassed:
            return {}
        headers = {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.reset_in_seconds),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.reset_in_seconds)
        return headers


class AdmissionDenied(RateLimitError):
    """Caller exceeded its request budget for the current window."""

    def __init__(self, decision: AdmissionDecision):
        super().__init__(details={
            "identity": decision.identity,
            "limit": decision.limit,
            "current_count": decision.current_count,
            "reset_in_seconds": decision.reset_in_seconds,
        })
        self.decision = decision
        self.headers = decision.headers()


class AdmissionController:
    """Per-identity request budget backed by Redis.

    Every counted request is recorded and read back in a single ``MULTI``
    transaction, so concurrent requests from one identity cannot both slip
    under the limit. The fixed window counts denied requests too; the sliding
    log drops a denied request's entry again so it stays bounded by the limit.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        *,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        strategy: str = STRATEGY_SLIDING,
        token_verifier: Optional[ServiceTokenVerifier] = None,
        allow_legacy_header: bool = False,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], float] = time.time,
    ):
        if strategy not in (STRATEGY_FIXED, STRATEGY_SLIDING):
            raise ValueError(f"Unknown rate limit strategy: {strategy}")

        self._redis = redis_client
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.strategy = strategy
        self.token_verifier = token_verifier
        self.allow_legacy_header = allow_legacy_header
        self.metrics = metrics
        self._clock = clock
        self.logger = get_logger("marketplace.admission")

    def _make_key(self, identity: str) -> str:
        """Generate rate limit key."""
        return f"rate_limit:{identity}"

    def resolve_identity(self, request: Request) -> str:
        """Client IP, then forwarded headers, then the fallback identity."""
        if request.client and request.client.host:
            return request.client.host

        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            first_hop = forwarded_for.split(",")[0].strip()
            if first_hop:
                return first_hop

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()

        return FALLBACK_IDENTITY

    def resolve_caller(self, request: Request) -> CallerContext:
        """Identify the caller and check for a trusted service credential."""
        identity = self.resolve_identity(request)

        if self.token_verifier is not None:
            service = self.token_verifier.verify(request.headers.get(SERVICE_TOKEN_HEADER))
            if service is not None:
                return CallerContext(identity=identity, trusted=True, service=service.service)

        if self.allow_legacy_header and request.headers.get(LEGACY_INTERNAL_HEADER) == "true":
            self.logger.warning("Legacy internal header accepted", identity=identity)
            return CallerContext(identity=identity, trusted=True, service="legacy-header")

        return CallerContext(identity=identity)

    async def admit(self, caller: CallerContext) -> AdmissionDecision:
        """Return the decision for an admitted caller or raise ``AdmissionDenied``."""
        decision = await self.check(caller)
        if not decision.allowed:
            raise AdmissionDenied(decision)
        return decision

    async def check(self, caller: CallerContext) -> AdmissionDecision:
        """Count the request against the caller's window and decide."""
        if caller.trusted:
            self._count_decision("bypassed")
            self.logger.debug("Admission bypassed for trusted caller", service=caller.service)
            return AdmissionDecision(
                allowed=True,
                identity=caller.identity,
                limit=self.max_requests,
                current_count=0,
                remaining=self.max_requests,
                reset_in_seconds=self.window_seconds,
                bypassed=True,
            )

        key = self._make_key(caller.identity)
        try:
            if self.strategy == STRATEGY_FIXED:
                count, reset = await self._record_fixed(key)
            else:
                count, reset = await self._record_sliding(key)
        except Exception as exc:
            self.logger.error("Admission store error, allowing request", identity=caller.identity, error=str(exc))
            if self.metrics:
                self.metrics.increment_counter("admission_errors_total")
            return AdmissionDecision(
                allowed=True,
                identity=caller.identity,
                limit=self.max_requests,
                current_count=0,
                remaining=self.max_requests,
                reset_in_seconds=self.window_seconds,
                error=str(exc),
            )

        allowed = count <= self.max_requests
        decision = AdmissionDecision(
            allowed=allowed,
            identity=caller.identity,
            limit=self.max_requests,
            current_count=count,
            remaining=max(0, self.max_requests - count),
            reset_in_seconds=reset,
        )

        if allowed:
            self._count_decision("allowed")
        else:
            self._count_decision("denied")
            self.logger.warning(
                "Rate limit exceeded",
                identity=caller.identity,
                current_count=count,
                limit=self.max_requests,
            )
        return decision

    async def _record_fixed(self, key: str) -> Tuple[int, int]:
        """Fixed window: the counter expires one window after its first request."""
        async with self._redis.pipeline(transaction=True) as pipeline:
            pipeline.set(key, 0, ex=self.window_seconds, nx=True)
            pipeline.incr(key)
            pipeline.ttl(key)
            _, count, ttl = await pipeline.execute()

        reset = int(ttl) if ttl is not None and int(ttl) >= 0 else self.window_seconds
        return int(count), reset

    async def _record_sliding(self, key: str) -> Tuple[int, int]:
        """Sliding log: count requests seen in the trailing window."""
        now = self._clock()
        member = f"{now:.6f}:{uuid.uuid4().hex}"

        async with self._redis.pipeline(transaction=True) as pipeline:
            pipeline.zremrangebyscore(key, "-inf", now - self.window_seconds)
            pipeline.zadd(key, {member: now})
            pipeline.zcard(key)
            pipeline.zrange(key, 0, 0, withscores=True)
            pipeline.expire(key, self.window_seconds)
            _, _, count, oldest, _ = await pipeline.execute()

        if int(count) > self.max_requests:
            # Denied requests leave no entry, so the log never outgrows the limit.
            try:
                await self._redis.zrem(key, member)
            except Exception as exc:
                self.logger.warning("Failed to drop denied request from window", key=key, error=str(exc))

        reset = self.window_seconds
        if oldest:
            reset = max(0, int(round(oldest[0][1] + self.window_seconds - now)))
        return int(count), reset

    async def reset(self, identity: str) -> bool:
        """Drop the window for ``identity``."""
        try:
            await self._redis.delete(self._make_key(identity))
        except Exception as exc:
            self.logger.error("Rate limit reset error", identity=identity, error=str(exc))
            return False

        self.logger.info("Rate limit reset", identity=identity)
        return True

    def _count_decision(self, decision: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("admission_decisions_total", decision=decision)
