"""Listing cache keyed by (source, category).

Reads never see a half-written record: every write builds a new mapping and
swaps it in with a single assignment. Concurrent misses on one key may fetch
twice; the last completed fetch wins.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..config import DEFAULT_CACHE_TTL_S
from ..errors import CategoryAbsent, TransportError
from ..log import get_logger
from ..sources import Source
from .fetcher import CatalogFetcher
from .models import CacheRecord, CatalogEntry, Category

logger = get_logger(__name__)

CacheKey = Tuple[str, Category]
RefreshListener = Callable[[Source, Category, List[CatalogEntry]], None]


@dataclass
class CacheStatus:
    source_id: str
    category: Category
    count: int
    age_s: float


@dataclass
class MergedListing:
    """Entries from several sources plus the sources that failed."""
    entries: List[CatalogEntry] = field(default_factory=list)
    errors: Dict[str, TransportError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def source_label(source: Source) -> str:
    """Short label for collision suffixes; enterprise sources keep their host."""
    return source.id if source.is_enterprise else source.identifier


def disambiguate(entries: Sequence[CatalogEntry], labels: Dict[str, str]) -> List[CatalogEntry]:
    """Give colliding names a ``display_name`` naming their source.

    Only names that appear under more than one source are touched; the
    ``name`` itself is left alone so download paths stay intact.
    """
    sources_per_name: Dict[str, set] = {}
    for entry in entries:
        sources_per_name.setdefault(entry.name, set()).add(entry.source_id)

    result = []
    for entry in entries:
        if len(sources_per_name[entry.name]) > 1:
            label = labels.get(entry.source_id, entry.source_id)
            entry = entry.with_display_name(f"{entry.name} ({label})")
        result.append(entry)
    return result


class CatalogCache:
    """TTL cache in front of :class:`CatalogFetcher`."""

    def __init__(
        self,
        fetcher: CatalogFetcher,
        ttl_s: float = DEFAULT_CACHE_TTL_S,
        clock: Callable[[], float] = time.time,
    ):
        self.fetcher = fetcher
        self.ttl_s = ttl_s
        self._clock = clock
        self._records: Dict[CacheKey, CacheRecord] = {}
        self._listeners: List[RefreshListener] = []

    def add_refresh_listener(self, listener: RefreshListener) -> None:
        self._listeners = self._listeners + [listener]

    def peek(self, source: Source, category: Category) -> Optional[CacheRecord]:
        return self._records.get((source.id, category))

    def _store(self, key: CacheKey, entries: List[CatalogEntry]) -> CacheRecord:
        record = CacheRecord(entries=tuple(entries), fetched_at=self._clock())
        self._records = {**self._records, key: record}
        return record

    async def get(
        self,
        source: Source,
        category: Category,
        force_refresh: bool = False,
        allow_stale: bool = False,
    ) -> List[CatalogEntry]:
        """Entries for one source and category.

        TransportError propagates and leaves any previous record in place;
        falling back to stale data is the caller's decision.
        """
        key = (source.id, category)
        record = self._records.get(key)
        if record is not None and not force_refresh:
            if allow_stale or record.is_fresh(self._clock(), self.ttl_s):
                return list(record.entries)

        try:
            entries = await self.fetcher.list_category(source, category)
        except CategoryAbsent:
            entries = []
        except TransportError as e:
            logger.warning(
                "listing failed",
                source=source.id,
                category=category.value,
                status=e.status_code,
                error=e.message,
            )
            raise

        self._store(key, entries)
        for listener in self._listeners:
            try:
                listener(source, category, list(entries))
            except Exception as e:
                logger.warning("refresh listener failed", source=source.id, category=category.value, error=str(e))
        return list(entries)

    async def get_all(
        self,
        sources: Sequence[Source],
        category: Category,
        force_refresh: bool = False,
    ) -> MergedListing:
        """Merge one category across sources, disambiguating colliding names.

        Sources are fetched concurrently; a failing source is reported in
        ``errors`` and does not hide the others.
        """
        results = await asyncio.gather(
            *(self.get(source, category, force_refresh=force_refresh) for source in sources),
            return_exceptions=True,
        )

        merged = MergedListing()
        collected: List[CatalogEntry] = []
        for source, result in zip(sources, results):
            if isinstance(result, TransportError):
                merged.errors[source.id] = result
            elif isinstance(result, BaseException):
                raise result
            else:
                collected.extend(result)

        labels = {source.id: source_label(source) for source in sources}
        merged.entries = disambiguate(collected, labels)
        return merged

    def invalidate(self, source: Source) -> int:
        """Drop every record belonging to ``source``; returns how many."""
        kept = {key: rec for key, rec in self._records.items() if key[0] != source.id}
        dropped = len(self._records) - len(kept)
        self._records = kept
        logger.debug("cache invalidated", source=source.id, dropped=dropped)
        return dropped

    def invalidate_all(self) -> None:
        self._records = {}

    def status(self) -> List[CacheStatus]:
        now = self._clock()
        return [
            CacheStatus(source_id=key[0], category=key[1], count=len(rec.entries), age_s=now - rec.fetched_at)
            for key, rec in self._records.items()
        ]

    def __len__(self) -> int:
        return len(self._records)

