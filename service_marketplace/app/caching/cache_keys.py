"""
Deterministic cache keys for search requests.
"""

import hashlib
import json
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union

CACHE_KEY_PREFIX = "services:search"

Params = Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]


def canonicalize_params(params: Params) -> str:
    """Serialize parameters with names sorted lexicographically.

    Accepts a mapping or a sequence of ``(name, value)`` pairs such as
    ``request.query_params.multi_items()``. Repeated names collapse into a
    list that keeps the values in arrival order.
    """
    items = params.items() if isinstance(params, Mapping) else params

    grouped: Dict[str, List[str]] = {}
    for name, value in items:
        grouped.setdefault(str(name), []).append(str(value))

    normalized = {
        name: values[0] if len(values) == 1 else values
        for name, values in grouped.items()
    }
    return json.dumps(normalized, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def derive_cache_key(params: Params, prefix: str = CACHE_KEY_PREFIX) -> str:
    """Return the cache key for a parameter set."""
    digest = hashlib.sha256(canonicalize_params(params).encode("utf-8")).hexdigest()
    return f"{prefix}:{digest}"
