"""
Adapters package for the Marketplace Service.

Wraps external stores behind the narrow interfaces the search pipeline
consumes. Driver failures are mapped to ``shared.errors.StoreError``.
"""

from .listing_store import ListingStore, PostgresListingStore

__all__ = [
    "ListingStore",
    "PostgresListingStore",
]
