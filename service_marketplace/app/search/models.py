"""
Request, descriptor and result types for listing search.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from pydantic import BaseModel, Field


Scalar = Union[str, int, float]

# Legacy query names still accepted by the listing API.
PARAMETER_ALIASES: Dict[str, str] = {
    "q": "textQuery",
    "location": "state",
    "lat": "latitude",
    "lng": "longitude",
    "radius": "radiusMeters",
}


@dataclass(frozen=True)
class SearchRequest:
    """Recognised search parameters, raw as received.

    Values stay uncoerced here; ``QueryComposer`` owns the best-effort
    conversion so that malformed input never becomes a request error.
    """

    textQuery: Optional[Scalar] = None
    category: Optional[Scalar] = None
    state: Optional[Scalar] = None
    minPrice: Optional[Scalar] = None
    maxPrice: Optional[Scalar] = None
    sortBy: Optional[Scalar] = None
    sortOrder: Optional[Scalar] = None
    page: Optional[Scalar] = None
    limit: Optional[Scalar] = None
    latitude: Optional[Scalar] = None
    longitude: Optional[Scalar] = None
    radiusMeters: Optional[Scalar] = None

    @classmethod
    def from_query(cls, params: Mapping[str, Any]) -> "SearchRequest":
        """Build a request from query parameters, resolving legacy aliases."""
        names = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}

        for alias, canonical in PARAMETER_ALIASES.items():
            value = params.get(alias)
            if not _is_blank(value):
                values[canonical] = value

        for name in names:
            value = params.get(name)
            if not _is_blank(value):
                values[name] = value

        return cls(**values)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


@dataclass(frozen=True)
class TextClause:
    query: str


@dataclass(frozen=True)
class EqualityClause:
    field: str
    value: str


@dataclass(frozen=True)
class RangeClause:
    """Inclusive range; a ``None`` bound leaves that side open."""

    field: str
    gte: Optional[float] = None
    lte: Optional[float] = None


@dataclass(frozen=True)
class GeoNearClause:
    """Points within ``[min_distance, max_distance]`` metres of the centre."""

    field: str
    latitude: float
    longitude: float
    max_distance: float
    min_distance: float = 0.0


@dataclass(frozen=True)
class FilterDescriptor:
    """Store-agnostic conjunction of optional predicate clauses."""

    text: Optional[TextClause] = None
    category: Optional[EqualityClause] = None
    state: Optional[EqualityClause] = None
    price: Optional[RangeClause] = None
    geo: Optional[GeoNearClause] = None

    def clauses(self) -> Iterator[Any]:
        """Yield the clauses that are present."""
        for clause in (self.text, self.category, self.state, self.price, self.geo):
            if clause is not None:
                yield clause

    def is_empty(self) -> bool:
        return next(self.clauses(), None) is None


@dataclass(frozen=True)
class SortSpec:
    field: Optional[str] = "createdAt"
    direction: str = "desc"
    relevance: bool = False

    @classmethod
    def by_relevance(cls) -> "SortSpec":
        return cls(field=None, direction="desc", relevance=True)


@dataclass(frozen=True)
class PageSpec:
    page: int = 1
    limit: int = 10

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class ComposedQuery:
    filters: FilterDescriptor = field(default_factory=FilterDescriptor)
    sort: SortSpec = field(default_factory=SortSpec)
    page: PageSpec = field(default_factory=PageSpec)


class SearchResult(BaseModel):
    """Paginated search response, cached verbatim."""

    total: int
    page: int
    limit: int
    results: List[Dict[str, Any]] = Field(default_factory=list)
