"""Materialize catalog entries and resolved collections on disk.

Layout under the download root::

    <root>/instructions/<file>
    <root>/prompts/<file>
    <root>/agents/<file>
    <root>/collections/<file>
    <root>/skills/<skill>/<files keeping their folder structure>

Decisions that need a human (overwrite an existing file, progress display,
cancellation) are passed in as callables so this module never prompts.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Awaitable, Callable, List, Optional, Union

from .catalog.fetcher import CatalogFetcher
from .catalog.models import CatalogEntry, Category
from .config import DEFAULT_PACING_S
from .errors import CatalogError, FilesystemError, HttpError, NetworkError, TooDeep, TransportError
from .ledger import DownloadLedger, DownloadRecord, content_hash, utc_now
from .log import get_logger
from .manifest import CollectionItemRef, ResolvedDownloadPlan, ResolvedItem, UnresolvedItem
from .sources import Source

logger = get_logger(__name__)


class OverwriteDecision(str, Enum):
    OVERWRITE = "overwrite"
    SKIP = "skip"
    ABORT = "abort"


OverwritePolicy = Callable[[Path], OverwriteDecision]


def always_overwrite(path: Path) -> OverwriteDecision:
    return OverwriteDecision.OVERWRITE


def never_overwrite(path: Path) -> OverwriteDecision:
    return OverwriteDecision.SKIP


class FailureKind(str, Enum):
    NOT_FOUND = "NotFound"
    NETWORK_ERROR = "NetworkError"
    HTTP_ERROR = "HttpError"
    FILESYSTEM_ERROR = "FilesystemError"
    TOO_DEEP = "TooDeep"


class CancellationToken:
    """Cooperative cancel flag checked before each bundle item."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class DownloadAborted(CatalogError):
    """The overwrite policy answered ``abort``."""

    def __init__(self, path: Path):
        super().__init__(f"Download aborted at {path}")
        self.path = path


@dataclass
class DownloadedItem:
    entry: CatalogEntry
    category: Category
    paths: List[Path] = field(default_factory=list)
    ref: Optional[CollectionItemRef] = None


@dataclass
class SkippedItem:
    entry: CatalogEntry
    path: Path
    ref: Optional[CollectionItemRef] = None


@dataclass
class FailedItem:
    label: str
    kind: FailureKind
    reason: str
    status_code: Optional[int] = None
    ref: Optional[CollectionItemRef] = None
    entry: Optional[CatalogEntry] = None


@dataclass
class DownloadSummary:
    succeeded: List[DownloadedItem] = field(default_factory=list)
    failed: List[FailedItem] = field(default_factory=list)
    skipped: List[SkippedItem] = field(default_factory=list)
    not_started: List[Union[ResolvedItem, UnresolvedItem]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled


@dataclass
class DownloadProgress:
    index: int
    total: int
    label: str
    stage: str   # "start" | "done" | "skipped" | "failed"
    detail: str = ""


ProgressSink = Callable[[DownloadProgress], None]


def _no_progress(event: DownloadProgress) -> None:
    return None


def classify_failure(error: Exception) -> tuple:
    """Map an exception onto ``(FailureKind, status_code)``."""
    if isinstance(error, HttpError):
        if error.status_code == 404:
            return FailureKind.NOT_FOUND, 404
        return FailureKind.HTTP_ERROR, error.status_code
    if isinstance(error, NetworkError):
        return FailureKind.NETWORK_ERROR, None
    if isinstance(error, TransportError):
        return FailureKind.NETWORK_ERROR, error.status_code
    if isinstance(error, TooDeep):
        return FailureKind.TOO_DEEP, None
    return FailureKind.FILESYSTEM_ERROR, None


def safe_join(root: Path, relative: str) -> Path:
    """Join ``relative`` under ``root``, refusing anything that escapes it.

    The check is lexical: the normalized result must stay inside ``root``.
    """
    rel = relative.replace("\\", "/")
    parts = PurePosixPath(rel).parts
    if not parts or rel.startswith("/") or PurePosixPath(rel).is_absolute() or ":" in parts[0]:
        raise FilesystemError(f"Refusing unsafe path '{relative}'", path=relative)

    base = os.path.normpath(str(root))
    target = os.path.normpath(os.path.join(base, *parts))
    if os.path.commonpath([base, target]) != base or target == base:
        raise FilesystemError(f"Refusing path '{relative}' outside {root}", path=relative)
    return Path(target)


def _write(path: Path, content: bytes) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
    except OSError as e:
        raise FilesystemError(f"Cannot write {path}: {e}", path=str(path))


class BundleDownloader:
    """Downloads single entries, skill folders and whole plans."""

    def __init__(
        self,
        fetcher: CatalogFetcher,
        ledger: Optional[DownloadLedger] = None,
        pacing_s: float = DEFAULT_PACING_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.ledger = ledger
        self.pacing_s = pacing_s
        self._sleep = sleep

    def target_for(self, entry: CatalogEntry, category: Category, target_root: Path) -> Path:
        return safe_join(target_root / category.folder, entry.name)

    async def download_entry(
        self,
        entry: CatalogEntry,
        category: Category,
        source: Source,
        target_root: Path,
        overwrite: OverwritePolicy = always_overwrite,
    ) -> Optional[DownloadedItem]:
        """Download one listing entry. Returns None when the policy skipped it.

        Raises DownloadAborted, TransportError, TooDeep or FilesystemError.
        """
        target = self.target_for(entry, category, target_root)
        if target.exists():
            decision = overwrite(target)
            if decision is OverwriteDecision.ABORT:
                raise DownloadAborted(target)
            if decision is OverwriteDecision.SKIP:
                logger.info("skipped existing", path=str(target))
                return None

        if entry.is_dir:
            return await self._download_folder(entry, category, source, target)
        return await self._download_file(entry, category, source, target)

    async def _download_file(
        self, entry: CatalogEntry, category: Category, source: Source, target: Path
    ) -> DownloadedItem:
        if not entry.fetch_locator:
            raise HttpError(404, f"No download location for {entry.path}")
        content = await self.fetcher.fetch_raw(entry.fetch_locator, source)
        _write(target, content)
        self._record(entry, category, content_hash(content), target)
        logger.info("downloaded", item=entry.item_id, path=str(target))
        return DownloadedItem(entry=entry, category=category, paths=[target])

    async def _download_folder(
        self, entry: CatalogEntry, category: Category, source: Source, skill_dir: Path
    ) -> DownloadedItem:
        files = await self.fetcher.list_recursive(source, entry.path)

        # Every path is checked before anything is written
        planned = []
        for item in files:
            relative = item.relative_to(entry.path)
            planned.append((item, safe_join(skill_dir, relative)))

        digest = hashlib.sha256()
        written: List[Path] = []
        for item, target in planned:
            if not item.fetch_locator:
                raise HttpError(404, f"No download location for {item.path}")
            content = await self.fetcher.fetch_raw(item.fetch_locator, source)
            _write(target, content)
            written.append(target)
            digest.update(item.relative_to(entry.path).encode("utf-8"))
            digest.update(content_hash(content).encode("ascii"))

        self._record(entry, category, digest.hexdigest(), skill_dir)
        logger.info("downloaded folder", item=entry.item_id, files=len(written), path=str(skill_dir))
        return DownloadedItem(entry=entry, category=category, paths=written)

    def _record(self, entry: CatalogEntry, category: Category, digest: str, target: Path) -> None:
        if self.ledger is None:
            return
        self.ledger.record(DownloadRecord(
            item_id=entry.item_id,
            category=category.value,
            source_id=entry.source_id,
            downloaded_at=utc_now(),
            content_hash=digest,
            remote_ref=entry.remote_ref,
            size=entry.size,
            target_path=str(target),
        ))

    async def download_plan(
        self,
        plan: ResolvedDownloadPlan,
        target_root: Path,
        overwrite: OverwritePolicy = always_overwrite,
        progress: ProgressSink = _no_progress,
        cancel: Optional[CancellationToken] = None,
    ) -> DownloadSummary:
        """Download every plan item in order.

        One item failing never stops the rest. Cancellation is checked before
        each item; an item already being written is allowed to finish.
        """
        summary = DownloadSummary()
        items = list(plan.items)
        total = len(items)
        started_any = False

        for index, item in enumerate(items):
            if cancel is not None and cancel.cancelled:
                summary.cancelled = True
                summary.not_started.extend(items[index:])
                logger.info("bundle cancelled", remaining=total - index)
                break

            if isinstance(item, UnresolvedItem):
                summary.failed.append(FailedItem(
                    label=item.ref.path, kind=FailureKind.NOT_FOUND, reason=item.reason, ref=item.ref,
                ))
                progress(DownloadProgress(index, total, item.ref.path, "failed", item.reason))
                continue

            if started_any and self.pacing_s > 0:
                await self._sleep(self.pacing_s)
            started_any = True

            label = item.entry.name
            progress(DownloadProgress(index, total, label, "start"))
            try:
                done = await self.download_entry(item.entry, item.category, item.source, target_root, overwrite)
            except DownloadAborted:
                summary.cancelled = True
                summary.not_started.extend(items[index:])
                logger.info("bundle aborted by overwrite policy", remaining=total - index)
                break
            except (CatalogError, OSError) as e:
                kind, status = classify_failure(e)
                reason = str(e)
                logger.warning("item failed", item=item.entry.item_id, kind=kind.value, error=reason)
                summary.failed.append(FailedItem(
                    label=label, kind=kind, reason=reason, status_code=status, ref=item.ref, entry=item.entry,
                ))
                progress(DownloadProgress(index, total, label, "failed", reason))
                continue

            if done is None:
                target = self.target_for(item.entry, item.category, target_root)
                summary.skipped.append(SkippedItem(entry=item.entry, path=target, ref=item.ref))
                progress(DownloadProgress(index, total, label, "skipped"))
            else:
                done.ref = item.ref
                summary.succeeded.append(done)
                progress(DownloadProgress(index, total, label, "done"))

        return summary
