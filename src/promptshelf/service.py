"""CatalogService: one object that owns and wires every component.

Build one per session and pass it to whatever needs the catalog::

    service = CatalogService.from_settings(Settings.load())
    listing = await service.list_all(Category.PROMPTS)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .catalog.cache import CatalogCache, MergedListing
from .catalog.fetcher import AuthRefresher, CatalogFetcher
from .catalog.models import CatalogEntry, Category
from .catalog.transport import Transport
from .config import Settings, ledger_path, sources_path
from .download import (
    BundleDownloader,
    CancellationToken,
    DownloadedItem,
    DownloadSummary,
    OverwritePolicy,
    ProgressSink,
    always_overwrite,
)
from .drift import find_updated
from .errors import CatalogError, EntryNotFound, TransportError
from .ledger import DownloadLedger, DownloadRecord
from .log import get_logger
from .manifest import CollectionManifest, ManifestResolver, ResolvedDownloadPlan
from .sources import Source, SourceRegistry, parse_source

logger = get_logger(__name__)

ConfirmationSink = Callable[[str], bool]
UpdateSink = Callable[[List[DownloadRecord]], None]


def _always_confirm(message: str) -> bool:
    return True


@dataclass
class SourceRefresh:
    source: Source
    counts: Dict[Category, int] = field(default_factory=dict)
    errors: Dict[Category, TransportError] = field(default_factory=dict)


class CatalogService:
    """Registry, cache, fetcher, resolver, downloader and ledger in one place."""

    def __init__(
        self,
        settings: Settings,
        registry: SourceRegistry,
        fetcher: CatalogFetcher,
        ledger: DownloadLedger,
        *,
        cache: Optional[CatalogCache] = None,
        downloader: Optional[BundleDownloader] = None,
        update_sink: Optional[UpdateSink] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.fetcher = fetcher
        self.ledger = ledger
        self.cache = cache or CatalogCache(fetcher, ttl_s=settings.cache_ttl_s)
        self.resolver = ManifestResolver(self.cache, fetcher)
        self.downloader = downloader or BundleDownloader(fetcher, ledger, pacing_s=settings.pacing_s)
        self.update_sink = update_sink
        self.pending_updates: List[DownloadRecord] = []
        self.cache.add_refresh_listener(self._on_refresh)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        registry_path: Optional[Path] = None,
        ledger_file: Optional[Path] = None,
        auth_refresher: Optional[AuthRefresher] = None,
        update_sink: Optional[UpdateSink] = None,
    ) -> "CatalogService":
        fetcher = CatalogFetcher(
            Transport(timeout_s=settings.timeout_s),
            tokens=settings.tokens,
            enterprise_token=settings.enterprise_token,
            auth_refresher=auth_refresher,
            max_depth=settings.max_depth,
        )
        return cls(
            settings,
            SourceRegistry.load(registry_path or sources_path()),
            fetcher,
            DownloadLedger.load(ledger_file or ledger_path()),
            update_sink=update_sink,
        )

    # --- Drift hook ---

    def _on_refresh(self, source: Source, category: Category, entries: List[CatalogEntry]) -> None:
        if not self.settings.check_for_updates:
            return
        records = [r for r in self.ledger.records() if r.source_id == source.id and r.category == category.value]
        if not records:
            return
        updated = find_updated(records, entries)
        refreshed_ids = {r.item_id for r in records}
        self.pending_updates = [r for r in self.pending_updates if r.item_id not in refreshed_ids] + updated
        if updated:
            logger.info("updates available", source=source.id, category=category.value, count=len(updated))
            if self.update_sink is not None:
                self.update_sink(updated)

    # --- Sources ---

    def sources(self) -> List[Source]:
        return self.registry.list()

    def find_source(self, text: Optional[str]) -> Source:
        """Registered source for ``text``, or the first source when empty."""
        if not text:
            return self.registry.list()[0]
        return self.registry.get(text)

    def add_source(self, text: str, label: Optional[str] = None) -> Source:
        return self.registry.add(parse_source(text, label))

    def remove_source(self, text: str, confirm: ConfirmationSink = _always_confirm) -> Optional[Source]:
        """Remove a source and drop its cache entries. Returns None if not confirmed."""
        source = self.registry.get(text)
        if not confirm(f"Remove repository {source.identifier}?"):
            return None
        removed = self.registry.remove(source.identity)
        self.cache.invalidate(removed)
        return removed

    def reset_sources(self) -> List[Source]:
        self.cache.invalidate_all()
        return self.registry.reset()

    async def refresh_source(self, text: str) -> SourceRefresh:
        """Drop a source's cached listings and refetch every category."""
        source = self.registry.get(text)
        self.cache.invalidate(source)
        result = SourceRefresh(source=source)
        for category in Category:
            try:
                entries = await self.cache.get(source, category, force_refresh=True)
            except TransportError as e:
                result.errors[category] = e
            else:
                result.counts[category] = len(entries)
        return result

    # --- Listing ---

    async def list_category(self, source: Source, category: Category, force_refresh: bool = False) -> List[CatalogEntry]:
        return await self.cache.get(source, category, force_refresh=force_refresh)

    async def list_all(self, category: Category, force_refresh: bool = False) -> MergedListing:
        return await self.cache.get_all(self.registry.list(), category, force_refresh=force_refresh)

    async def find_entry(self, category: Category, name: str, source_text: Optional[str] = None) -> tuple:
        """Locate an entry by name (or display name). Returns ``(source, entry)``."""
        sources: Sequence[Source] = [self.find_source(source_text)] if source_text else self.registry.list()
        listing = await self.cache.get_all(sources, category)
        for entry in listing.entries:
            if name in (entry.name, entry.display_name):
                for source in sources:
                    if source.id == entry.source_id:
                        return source, entry
        if listing.errors:
            raise next(iter(listing.errors.values()))
        raise EntryNotFound(category.value, name)

    async def preview(self, source: Source, entry: CatalogEntry) -> str:
        if entry.is_dir:
            files = await self.fetcher.list_recursive(source, entry.path)
            return "\n".join(item.relative_to(entry.path) for item in files)
        if not entry.fetch_locator:
            raise CatalogError(f"No download location for {entry.path}")
        return await self.fetcher.fetch_text(entry.fetch_locator, source)

    # --- Downloads ---

    def target_root(self) -> Path:
        return self.settings.target_root()

    async def download(
        self,
        source: Source,
        entry: CatalogEntry,
        category: Category,
        overwrite: OverwritePolicy = always_overwrite,
    ) -> Optional[DownloadedItem]:
        return await self.downloader.download_entry(entry, category, source, self.target_root(), overwrite)

    async def load_collection(self, source: Source, entry: CatalogEntry) -> CollectionManifest:
        return await self.resolver.load_collection(source, entry)

    async def resolve_collection(self, manifest: CollectionManifest, source: Source) -> ResolvedDownloadPlan:
        return await self.resolver.resolve(manifest, source)

    async def install_collection(
        self,
        manifest: CollectionManifest,
        source: Source,
        overwrite: OverwritePolicy = always_overwrite,
        progress: Optional[ProgressSink] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> DownloadSummary:
        plan = await self.resolver.resolve(manifest, source)
        kwargs = {"overwrite": overwrite, "cancel": cancel}
        if progress is not None:
            kwargs["progress"] = progress
        return await self.downloader.download_plan(plan, self.target_root(), **kwargs)

    async def check_updates(self, force_refresh: bool = False) -> List[DownloadRecord]:
        """Refresh every category that has downloads and return changed records."""
        records = self.ledger.records()
        wanted = {(r.source_id, r.category) for r in records}
        live: List[CatalogEntry] = []
        for source in self.registry.list():
            for category in Category:
                if (source.id, category.value) not in wanted:
                    continue
                try:
                    live.extend(await self.cache.get(source, category, force_refresh=force_refresh))
                except CatalogError as e:
                    logger.warning("update check skipped", source=source.id, category=category.value, error=str(e))
        return find_updated(records, live)
