"""
Shared fixtures and in-memory fakes for Marketplace Service tests.
"""

import math
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from shared.config import get_config
from shared.errors import StoreError
from service_marketplace.app.main import MarketplaceService
from service_marketplace.app.search.models import FilterDescriptor, PageSpec, SortSpec


TEST_SECRET = "test-internal-secret"


class FakeClock:
    """Manually advanced clock shared by the fake Redis and the limiter."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for the cache and the limiter."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self._clock = clock or FakeClock()
        self._values: Dict[str, Any] = {}
        self._expiry: Dict[str, float] = {}
        self.fail = False
        self.commands: List[str] = []

    # Async command surface

    async def get(self, key):
        return self._run("get", key)

    async def set(self, key, value, ex=None, nx=False):
        return self._run("set", key, value, ex=ex, nx=nx)

    async def setex(self, key, ttl, value):
        return self._run("setex", key, ttl, value)

    async def incr(self, key):
        return self._run("incr", key)

    async def ttl(self, key):
        return self._run("ttl", key)

    async def expire(self, key, seconds):
        return self._run("expire", key, seconds)

    async def delete(self, *keys):
        return self._run("delete", *keys)

    async def ping(self):
        return self._run("ping")

    async def zcard(self, key):
        return self._run("zcard", key)

    async def zrem(self, key, *members):
        return self._run("zrem", key, *members)

    async def aclose(self):
        return None

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)

    # Command implementations

    def _run(self, name: str, *args, **kwargs):
        if self.fail:
            raise RedisConnectionError("Connection refused")
        self.commands.append(name)
        return getattr(self, f"_{name}")(*args, **kwargs)

    def _purge(self, key):
        expires_at = self._expiry.get(key)
        if expires_at is not None and self._clock() >= expires_at:
            self._values.pop(key, None)
            self._expiry.pop(key, None)

    def _get(self, key):
        self._purge(key)
        return self._values.get(key)

    def _set(self, key, value, ex=None, nx=False):
        self._purge(key)
        if nx and key in self._values:
            return None
        self._values[key] = str(value)
        if ex is not None:
            self._expiry[key] = self._clock() + ex
        else:
            self._expiry.pop(key, None)
        return True

    def _setex(self, key, ttl, value):
        return self._set(key, value, ex=ttl)

    def _incr(self, key):
        self._purge(key)
        value = int(self._values.get(key, 0)) + 1
        self._values[key] = str(value)
        return value

    def _ttl(self, key):
        self._purge(key)
        if key not in self._values:
            return -2
        if key not in self._expiry:
            return -1
        return int(math.ceil(self._expiry[key] - self._clock()))

    def _expire(self, key, seconds):
        self._purge(key)
        if key not in self._values:
            return False
        self._expiry[key] = self._clock() + seconds
        return True

    def _delete(self, *keys):
        removed = 0
        for key in keys:
            if self._values.pop(key, None) is not None:
                removed += 1
            self._expiry.pop(key, None)
        return removed

    def _ping(self):
        return True

    def _zset(self, key) -> Dict[str, float]:
        self._purge(key)
        return self._values.setdefault(key, {})

    def _zadd(self, key, mapping):
        zset = self._zset(key)
        added = len([member for member in mapping if member not in zset])
        zset.update({member: float(score) for member, score in mapping.items()})
        return added

    def _zremrangebyscore(self, key, minimum, maximum):
        zset = self._zset(key)
        low = float("-inf") if minimum == "-inf" else float(minimum)
        high = float("inf") if maximum == "+inf" else float(maximum)
        doomed = [member for member, score in zset.items() if low <= score <= high]
        for member in doomed:
            del zset[member]
        return len(doomed)

    def _zcard(self, key):
        return len(self._zset(key))

    def _zrem(self, key, *members):
        zset = self._zset(key)
        return len([member for member in members if zset.pop(member, None) is not None])

    def _zrange(self, key, start, end, withscores=False):
        ordered = sorted(self._zset(key).items(), key=lambda item: item[1])
        stop = None if end == -1 else end + 1
        selected = ordered[start:stop]
        if withscores:
            return [(member, score) for member, score in selected]
        return [member for member, _ in selected]


class FakePipeline:
    """Queues commands and replays them in order on ``execute``."""

    def __init__(self, redis_client: FakeRedis):
        self._redis = redis_client
        self._queue: List[Any] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self._queue.clear()
        return False

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self._queue.append((name, args, kwargs))
            return self
        return queue

    async def execute(self):
        queued, self._queue = self._queue, []
        return [self._redis._run(name, *args, **kwargs) for name, args, kwargs in queued]


def _lookup(document: Dict[str, Any], dotted: str) -> Any:
    value: Any = document
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    radius = 6371008.8
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return 2 * radius * math.asin(math.sqrt(a))


class InMemoryListingStore:
    """Evaluates filter descriptors over a list of documents."""

    def __init__(self, documents: Optional[List[Dict[str, Any]]] = None):
        self.documents: List[Dict[str, Any]] = list(documents or [])
        self.find_calls = 0
        self.count_calls = 0
        self.fail = False
        self.started = False

    async def start(self):
        self.started = True

    async def stop(self):
        self.started = False

    def _check(self, operation: str):
        if self.fail:
            raise StoreError(details={"operation": operation, "cause": "connection refused"})

    @staticmethod
    def _terms(text: str) -> List[str]:
        return [term for term in text.lower().split() if term]

    def _relevance(self, document: Dict[str, Any], filters: FilterDescriptor) -> float:
        haystack = self._terms(f"{document.get('title', '')} {document.get('description', '')}")
        return float(sum(haystack.count(term) for term in self._terms(filters.text.query)))

    def _matches(self, document: Dict[str, Any], filters: FilterDescriptor) -> bool:
        if filters.text is not None and self._relevance(document, filters) == 0:
            return False
        for clause in (filters.category, filters.state):
            if clause is not None and _lookup(document, clause.field) != clause.value:
                return False
        if filters.price is not None:
            price = _lookup(document, filters.price.field)
            if not _is_number(price):
                return False
            if filters.price.gte is not None and price < filters.price.gte:
                return False
            if filters.price.lte is not None and price > filters.price.lte:
                return False
        if filters.geo is not None:
            point = _lookup(document, filters.geo.field)
            if not isinstance(point, list) or len(point) < 2 or not all(_is_number(v) for v in point[:2]):
                return False
            distance = _distance_meters(filters.geo.latitude, filters.geo.longitude, point[1], point[0])
            if not filters.geo.min_distance <= distance <= filters.geo.max_distance:
                return False
        return True

    async def find(self, filters: FilterDescriptor, sort: SortSpec, page: PageSpec) -> List[Dict[str, Any]]:
        self.find_calls += 1
        self._check("find")
        matches = [dict(doc) for doc in self.documents if self._matches(doc, filters)]

        if sort.relevance and filters.text is not None:
            for doc in matches:
                doc["score"] = self._relevance(doc, filters)
            matches.sort(key=lambda doc: doc["score"], reverse=True)
        else:
            matches.sort(
                key=lambda doc: (_lookup(doc, sort.field) is not None, _lookup(doc, sort.field)),
                reverse=sort.direction == "desc",
            )
        return matches[page.skip:page.skip + page.limit]

    async def count(self, filters: FilterDescriptor) -> int:
        self.count_calls += 1
        self._check("count")
        return len([doc for doc in self.documents if self._matches(doc, filters)])

    async def insert(self, document: Dict[str, Any]) -> str:
        self._check("insert")
        listing_id = uuid.uuid4().hex
        stored = dict(document, id=listing_id)
        if isinstance(stored.get("createdAt"), datetime):
            stored["createdAt"] = stored["createdAt"].isoformat()
        self.documents.append(stored)
        return listing_id

    async def health_check(self) -> bool:
        return not self.fail


def make_listing(title: str, category: str, price: float, state: str, lng: float, lat: float, day: int, **extra):
    listing = {
        "id": uuid.uuid4().hex,
        "title": title,
        "description": extra.pop("description", ""),
        "category": category,
        "price": price,
        "location": {"state": state, "coordinates": [lng, lat]},
        "sellerId": extra.pop("sellerId", "seller-1"),
        "createdAt": datetime(2024, 1, day, tzinfo=timezone.utc).isoformat(),
    }
    listing.update(extra)
    return listing


@pytest.fixture
def sample_listings():
    """A small catalogue spread over categories, prices and places."""
    return [
        make_listing("Fix leaking sink", "plumbing", 40, "NY", -73.0, 40.0, 1,
                     description="Same day sink and faucet repair"),
        make_listing("Drain unclogging", "plumbing", 25, "NY", -73.01, 40.01, 2),
        make_listing("Water heater install", "plumbing", 400, "NJ", -74.2, 40.7, 3),
        make_listing("Sink cabinet assembly", "carpentry", 45, "NY", -73.5, 40.5, 4),
        make_listing("Electrical panel upgrade", "electrical", 900, "CA", -118.2, 34.0, 5),
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def listing_store(sample_listings):
    return InMemoryListingStore(sample_listings)


@pytest.fixture
def service_config():
    return get_config(
        "marketplace",
        3000,
        internal_service_secret=TEST_SECRET,
        rate_limit_max_requests=100,
        rate_limit_window_seconds=900,
    )


@pytest.fixture
def marketplace_service(service_config, fake_redis, listing_store, clock):
    return MarketplaceService(
        service_config,
        redis_client=fake_redis,
        listing_store=listing_store,
        clock=clock,
    )


@pytest.fixture
def client(marketplace_service):
    return TestClient(marketplace_service.app)


@pytest.fixture
def internal_secret():
    return TEST_SECRET
