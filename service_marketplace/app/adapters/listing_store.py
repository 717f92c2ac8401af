"""
PostgreSQL document store for service listings.

Listings are kept as JSONB documents; the search descriptor produced by
``QueryComposer`` is compiled into a parameterised WHERE/ORDER BY clause.
"""

import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

import asyncpg

from shared.errors import StoreError
from shared.logging import get_logger
from service_marketplace.app.search.models import FilterDescriptor, PageSpec, SortSpec


EARTH_RADIUS_METERS = 6371008.8
TEXT_SEARCH_CONFIG = "english"

# JSON paths for the dotted field names used by the composer.
FIELD_PATHS = {
    "category": "{category}",
    "location.state": "{location,state}",
    "price": "{price}",
}
COORDINATE_PATHS = {
    "location.coordinates": ("{location,coordinates,0}", "{location,coordinates,1}"),
}


class ListingStore(Protocol):
    """Document store interface consumed by the search pipeline."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def find(self, filters: FilterDescriptor, sort: SortSpec, page: PageSpec) -> List[Dict[str, Any]]: ...

    async def count(self, filters: FilterDescriptor) -> int: ...

    async def insert(self, document: Dict[str, Any]) -> str: ...

    async def health_check(self) -> bool: ...


class QueryBuilder:
    """Accumulates SQL fragments and their positional arguments."""

    def __init__(self):
        self.args: List[Any] = []

    def param(self, value: Any, cast: str) -> str:
        self.args.append(value)
        return f"${len(self.args)}::{cast}"


def compile_filters(filters: FilterDescriptor, builder: QueryBuilder) -> Tuple[str, Optional[str]]:
    """Return ``(where_sql, tsquery_sql)`` for a descriptor.

    ``tsquery_sql`` is the bound text query, reused for relevance ranking.
    """
    predicates: List[str] = []
    tsquery = None

    if filters.text is not None:
        tsquery = any_term_tsquery_sql(builder.param(filters.text.query, "text"))
        predicates.append(f"search_vector @@ {tsquery}")

    for clause in (filters.category, filters.state):
        if clause is not None:
            path = FIELD_PATHS[clause.field]
            predicates.append(f"document #>> '{path}' = {builder.param(clause.value, 'text')}")

    if filters.price is not None:
        value_sql = numeric_sql(FIELD_PATHS[filters.price.field])
        if filters.price.gte is not None:
            predicates.append(f"{value_sql} >= {builder.param(filters.price.gte, 'double precision')}")
        if filters.price.lte is not None:
            predicates.append(f"{value_sql} <= {builder.param(filters.price.lte, 'double precision')}")

    if filters.geo is not None:
        geo = filters.geo
        lng_path, lat_path = COORDINATE_PATHS[geo.field]
        distance_sql = haversine_sql(
            lat_sql=numeric_sql(lat_path),
            lng_sql=numeric_sql(lng_path),
            center_lat_sql=builder.param(geo.latitude, "double precision"),
            center_lng_sql=builder.param(geo.longitude, "double precision"),
        )
        predicates.append(
            f"{distance_sql} BETWEEN {builder.param(geo.min_distance, 'double precision')} "
            f"AND {builder.param(geo.max_distance, 'double precision')}"
        )

    where_sql = " AND ".join(predicates) if predicates else "TRUE"
    return where_sql, tsquery


def any_term_tsquery_sql(query_sql: str) -> str:
    """tsquery matching documents that contain any of the query's terms."""
    return f"replace(plainto_tsquery('{TEXT_SEARCH_CONFIG}', {query_sql})::text, '&', '|')::tsquery"


def numeric_sql(path: str) -> str:
    """Number at ``path``, or NULL when the stored value is not a JSON number."""
    return (
        f"(CASE WHEN jsonb_typeof(document #> '{path}') = 'number' "
        f"THEN (document #>> '{path}')::double precision END)"
    )


def haversine_sql(lat_sql: str, lng_sql: str, center_lat_sql: str, center_lng_sql: str) -> str:
    """Great-circle distance in metres between a document point and the centre."""
    return (
        f"(2 * {EARTH_RADIUS_METERS} * asin(sqrt("
        f"power(sin(radians({lat_sql} - {center_lat_sql}) / 2), 2) + "
        f"cos(radians({center_lat_sql})) * cos(radians({lat_sql})) * "
        f"power(sin(radians({lng_sql} - {center_lng_sql}) / 2), 2)"
        f")))"
    )


def compile_order(sort: SortSpec, tsquery: Optional[str], builder: QueryBuilder) -> str:
    """ORDER BY clause; relevance wins whenever a text query is bound."""
    if sort.relevance and tsquery is not None:
        return f"ts_rank(search_vector, {tsquery}) DESC, id"

    direction = "ASC" if sort.direction == "asc" else "DESC"
    if not sort.field or sort.field == "createdAt":
        return f"created_at {direction}, id"

    # Listings without the field sort as the smallest value.
    nulls = "NULLS FIRST" if direction == "ASC" else "NULLS LAST"
    return f"document #> {builder.param(sort.field.split('.'), 'text[]')} {direction} {nulls}, id"


class PostgresListingStore:
    """asyncpg-backed listing store."""

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: float = 30,
        table: str = "services",
    ):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.table = table
        self.logger = get_logger("marketplace.listing_store")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the pool and create the schema if needed."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout,
                init=self._init_connection,
            )
            await self._create_tables()
        except Exception as e:
            self.logger.error("Failed to start listing store", error=str(e))
            raise StoreError(details={"cause": str(e)}) from e

        self.logger.info("Listing store started", table=self.table)

    async def stop(self):
        """Close the pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("Listing store stopped")

    @staticmethod
    async def _init_connection(conn: asyncpg.Connection):
        await conn.set_type_codec(
            "jsonb",
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )

    async def _create_tables(self):
        """Create the listings table and its indexes."""
        async with self.pool.acquire() as conn:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    id UUID PRIMARY KEY,
                    document JSONB NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    search_vector TSVECTOR GENERATED ALWAYS AS (
                        to_tsvector('{TEXT_SEARCH_CONFIG}',
                            coalesce(document ->> 'title', '') || ' ' ||
                            coalesce(document ->> 'description', '') || ' ' ||
                            coalesce(document ->> 'category', ''))
                    ) STORED
                );
            """)

            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table}_search ON {self.table} USING GIN (search_vector);
            """)
            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table}_category ON {self.table} ((document ->> 'category'));
            """)
            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table}_state ON {self.table} ((document #>> '{{location,state}}'));
            """)
            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table}_created ON {self.table} (created_at DESC);
            """)

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise StoreError(details={"cause": "listing store not started"})
        return self.pool

    async def find(self, filters: FilterDescriptor, sort: SortSpec, page: PageSpec) -> List[Dict[str, Any]]:
        """Fetch one page of matching listings."""
        builder = QueryBuilder()
        where_sql, tsquery = compile_filters(filters, builder)
        order_sql = compile_order(sort, tsquery, builder)

        score_sql = f", ts_rank(search_vector, {tsquery}) AS score" if tsquery else ""
        offset_sql = builder.param(page.skip, "bigint")
        limit_sql = builder.param(page.limit, "bigint")
        query = (
            f"SELECT id, document{score_sql} FROM {self.table} "
            f"WHERE {where_sql} ORDER BY {order_sql} "
            f"OFFSET {offset_sql} LIMIT {limit_sql}"
        )

        try:
            async with self._require_pool().acquire() as conn:
                rows = await conn.fetch(query, *builder.args)
        except StoreError:
            raise
        except Exception as e:
            self.logger.error("Listing search failed", error=str(e))
            raise StoreError(details={"operation": "find", "cause": str(e)}) from e

        return [self._row_to_listing(row, with_score=bool(tsquery)) for row in rows]

    async def count(self, filters: FilterDescriptor) -> int:
        """Count all matching listings, ignoring pagination."""
        builder = QueryBuilder()
        where_sql, _ = compile_filters(filters, builder)
        query = f"SELECT COUNT(*) FROM {self.table} WHERE {where_sql}"

        try:
            async with self._require_pool().acquire() as conn:
                total = await conn.fetchval(query, *builder.args)
        except StoreError:
            raise
        except Exception as e:
            self.logger.error("Listing count failed", error=str(e))
            raise StoreError(details={"operation": "count", "cause": str(e)}) from e

        return int(total or 0)

    async def insert(self, document: Dict[str, Any]) -> str:
        """Insert a listing and return its generated id."""
        listing_id = uuid.uuid4()
        created_at = document.get("createdAt")
        stored = dict(document)
        if isinstance(created_at, datetime):
            stored["createdAt"] = created_at.isoformat()

        try:
            async with self._require_pool().acquire() as conn:
                await conn.execute(
                    f"INSERT INTO {self.table} (id, document, created_at) VALUES ($1, $2, $3)",
                    listing_id,
                    stored,
                    created_at if isinstance(created_at, datetime) else datetime.now().astimezone(),
                )
        except StoreError:
            raise
        except Exception as e:
            self.logger.error("Error inserting listing", error=str(e))
            raise StoreError(details={"operation": "insert", "cause": str(e)}) from e

        self.logger.info("Listing created", listing_id=str(listing_id))
        return str(listing_id)

    def _row_to_listing(self, row, *, with_score: bool) -> Dict[str, Any]:
        listing = dict(row["document"])
        listing["id"] = str(row["id"])
        if with_score:
            listing["score"] = float(row["score"])
        return listing

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self._require_pool().acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception:
            return False
