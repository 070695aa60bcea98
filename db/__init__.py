"""Persistence for the catalog sync engine."""

from db.catalog_store import CatalogStore, StoreError
from db.local_cache import LocalCache, cache_aside

__all__ = ["CatalogStore", "LocalCache", "StoreError", "cache_aside"]
