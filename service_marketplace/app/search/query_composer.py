"""
Translate search parameters into a store-agnostic query descriptor.
"""

from __future__ import annotations

import math
from typing import Any, Optional

from shared.logging import get_logger

from .models import (
    ComposedQuery,
    EqualityClause,
    FilterDescriptor,
    GeoNearClause,
    PageSpec,
    RangeClause,
    SearchRequest,
    SortSpec,
    TextClause,
)


DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_OFFSET = 2 ** 63 - 1
DEFAULT_RADIUS_METERS = 10000
DEFAULT_SORT_FIELD = "createdAt"

CATEGORY_FIELD = "category"
STATE_FIELD = "location.state"
PRICE_FIELD = "price"
COORDINATES_FIELD = "location.coordinates"


class QueryComposer:
    """Builds filter, sort and page specs from a ``SearchRequest``.

    Every dimension is evaluated on its own; a missing parameter removes the
    constraint on that dimension. Malformed numbers fall back to defaults
    (pagination, radius) or drop the bound (price, coordinates).
    """

    def __init__(
        self,
        *,
        default_radius_meters: float = DEFAULT_RADIUS_METERS,
        max_limit: Optional[int] = None,
    ) -> None:
        self.default_radius_meters = default_radius_meters
        self.max_limit = max_limit
        self.logger = get_logger("marketplace.query_composer")

    def compose(self, request: SearchRequest) -> ComposedQuery:
        text = self._text_clause(request)
        filters = FilterDescriptor(
            text=text,
            category=self._equality(CATEGORY_FIELD, request.category),
            state=self._equality(STATE_FIELD, request.state),
            price=self._price_clause(request),
            geo=self._geo_clause(request),
        )

        if text is not None:
            sort = SortSpec.by_relevance()
        else:
            sort = SortSpec(
                field=str(request.sortBy) if request.sortBy is not None else DEFAULT_SORT_FIELD,
                direction="asc" if request.sortOrder == "asc" else "desc",
            )

        limit = min(_positive_int(request.limit, DEFAULT_LIMIT), MAX_OFFSET)
        if self.max_limit is not None:
            limit = min(limit, self.max_limit)
        # (page - 1) * limit is bound as a bigint offset.
        page_number = min(_positive_int(request.page, DEFAULT_PAGE), MAX_OFFSET // limit + 1)
        page = PageSpec(page=page_number, limit=limit)

        self.logger.debug(
            "Composed search query",
            clauses=[type(clause).__name__ for clause in filters.clauses()],
            sort_field=sort.field,
            relevance=sort.relevance,
            skip=page.skip,
            limit=page.limit,
        )
        return ComposedQuery(filters=filters, sort=sort, page=page)

    @staticmethod
    def _text_clause(request: SearchRequest) -> Optional[TextClause]:
        if request.textQuery is None:
            return None
        return TextClause(query=str(request.textQuery))

    @staticmethod
    def _equality(field_name: str, value: Any) -> Optional[EqualityClause]:
        if value is None:
            return None
        return EqualityClause(field=field_name, value=str(value))

    @staticmethod
    def _price_clause(request: SearchRequest) -> Optional[RangeClause]:
        gte = _finite_float(request.minPrice)
        lte = _finite_float(request.maxPrice)
        if gte is None and lte is None:
            return None
        return RangeClause(field=PRICE_FIELD, gte=gte, lte=lte)

    def _geo_clause(self, request: SearchRequest) -> Optional[GeoNearClause]:
        latitude = _finite_float(request.latitude)
        longitude = _finite_float(request.longitude)
        if latitude is None or longitude is None:
            return None

        radius = _finite_float(request.radiusMeters)
        if radius is None or radius <= 0:
            radius = float(self.default_radius_meters)

        return GeoNearClause(
            field=COORDINATES_FIELD,
            latitude=latitude,
            longitude=longitude,
            max_distance=radius,
            min_distance=0.0,
        )


def _finite_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _positive_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return number if number >= 1 else default
