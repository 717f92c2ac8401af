"""
Caching package for the Marketplace Service.
"""

from .cache_keys import derive_cache_key
from .response_cache import ResponseCache

__all__ = ["derive_cache_key", "ResponseCache"]
