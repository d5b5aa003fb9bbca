"""Catalog module for promptshelf.

Lists category folders of configured repositories through the GitHub
contents API:
- Transport: blocking HTTP wrapped for asyncio
- CatalogFetcher: authentication, listings and recursive folder walks
- CatalogCache: TTL cache and cross-source merging
"""

from .cache import CatalogCache, MergedListing, disambiguate
from .fetcher import CatalogFetcher
from .models import CatalogEntry, Category
from .transport import Transport

__all__ = [
    "CatalogCache",
    "CatalogEntry",
    "CatalogFetcher",
    "Category",
    "MergedListing",
    "Transport",
    "disambiguate",
]
