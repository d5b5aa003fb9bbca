"""Collection manifests and their resolution against live listings.

A collection is a YAML document naming items that belong together::

    id: frontend-kit
    name: Frontend Kit
    description: Instructions and prompts for frontend work
    items:
      - path: instructions/react.instructions.md
        kind: instruction
      - path: skills/storybook
        kind: skill

Resolving a manifest maps each item onto an entry in the matching category
listing. Items that cannot be matched are reported, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Union

import yaml

from .catalog.cache import CatalogCache
from .catalog.fetcher import CatalogFetcher
from .catalog.models import CatalogEntry, Category
from .errors import ManifestParseError, ManifestValidationError, TransportError
from .log import get_logger
from .sources import Source

logger = get_logger(__name__)

KIND_CATEGORIES: Dict[str, Category] = {
    "instruction": Category.INSTRUCTIONS,
    "prompt": Category.PROMPTS,
    "agent": Category.AGENTS,
    "skill": Category.SKILLS,
}


@dataclass(frozen=True)
class CollectionItemRef:
    path: str
    kind: str

    @property
    def basename(self) -> str:
        return PurePosixPath(self.path).name

    @property
    def category(self) -> Optional[Category]:
        return KIND_CATEGORIES.get(self.kind)


@dataclass(frozen=True)
class DisplayOptions:
    ordering: str = "alpha"
    show_badge: bool = False


@dataclass(frozen=True)
class CollectionManifest:
    id: str
    name: str
    description: str
    items: List[CollectionItemRef] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    display: Optional[DisplayOptions] = None


def _require_text(data: Dict[str, Any], key: str, *, strip: bool) -> str:
    if key not in data or data[key] is None:
        raise ManifestValidationError(key, "is required")
    value = data[key]
    if not isinstance(value, str):
        raise ManifestValidationError(key, "must be a string")
    checked = value.strip() if strip else value
    if not checked:
        raise ManifestValidationError(key, "must not be empty")
    return checked


def _parse_item(index: int, raw: Any) -> CollectionItemRef:
    field_name = f"items[{index}]"
    if not isinstance(raw, dict):
        raise ManifestValidationError(field_name, "must be a mapping with 'path' and 'kind'")
    path = raw.get("path")
    if not isinstance(path, str) or not path.strip():
        raise ManifestValidationError(f"{field_name}.path", "is required")
    kind = raw.get("kind")
    if kind not in KIND_CATEGORIES:
        allowed = ", ".join(KIND_CATEGORIES)
        raise ManifestValidationError(f"{field_name}.kind", f"must be one of: {allowed} (got {kind!r})")
    return CollectionItemRef(path=path.strip(), kind=kind)


def _parse_display(raw: Any) -> Optional[DisplayOptions]:
    if not isinstance(raw, dict):
        return None
    return DisplayOptions(
        ordering=str(raw.get("ordering", "alpha")),
        show_badge=bool(raw.get("show_badge", False)),
    )


def parse_manifest(text: str) -> CollectionManifest:
    """Parse and validate a collection manifest.

    Fields are checked in order id, name, description, items; the first
    problem raises a ManifestValidationError naming that field.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ManifestParseError(f"Manifest is not valid YAML: {e}")
    if not isinstance(data, dict):
        raise ManifestParseError("Manifest must be a YAML mapping")

    manifest_id = _require_text(data, "id", strip=False)
    name = _require_text(data, "name", strip=True)
    description = _require_text(data, "description", strip=True)

    if "items" not in data or data["items"] is None:
        raise ManifestValidationError("items", "is required")
    raw_items = data["items"]
    if not isinstance(raw_items, list):
        raise ManifestValidationError("items", "must be a list")

    tags = data.get("tags") or []
    if not isinstance(tags, list):
        raise ManifestValidationError("tags", "must be a list of strings")

    return CollectionManifest(
        id=manifest_id,
        name=name,
        description=description,
        items=[_parse_item(i, raw) for i, raw in enumerate(raw_items)],
        tags=[str(tag) for tag in tags],
        display=_parse_display(data.get("display")),
    )


# --- Resolution ---

@dataclass(frozen=True)
class ResolvedItem:
    ref: CollectionItemRef
    entry: CatalogEntry
    category: Category
    source: Source


@dataclass(frozen=True)
class UnresolvedItem:
    ref: CollectionItemRef
    reason: str


PlanItem = Union[ResolvedItem, UnresolvedItem]


@dataclass
class ResolvedDownloadPlan:
    manifest: CollectionManifest
    items: List[PlanItem] = field(default_factory=list)

    @property
    def resolved(self) -> List[ResolvedItem]:
        return [item for item in self.items if isinstance(item, ResolvedItem)]

    @property
    def unresolved(self) -> List[UnresolvedItem]:
        return [item for item in self.items if isinstance(item, UnresolvedItem)]


def _segments(path: str) -> List[str]:
    return [part for part in PurePosixPath(path.strip("/")).parts if part not in ("", ".")]


def match_skill(ref: CollectionItemRef, entries: List[CatalogEntry]) -> Optional[CatalogEntry]:
    """Find the skill folder that contains ``ref.path``.

    A folder matches when its path equals the ref or is a whole-segment
    prefix of it. Refs rooted elsewhere (``.github/skills/x``) fall back to
    the folder named by the segment after ``skills``.
    """
    ref_parts = _segments(ref.path)
    for entry in entries:
        if not entry.is_dir:
            continue
        entry_parts = _segments(entry.path)
        if entry_parts and ref_parts[: len(entry_parts)] == entry_parts:
            return entry

    if Category.SKILLS.value in ref_parts:
        position = ref_parts.index(Category.SKILLS.value)
        if position + 1 < len(ref_parts):
            wanted = ref_parts[position + 1]
            for entry in entries:
                if entry.is_dir and entry.name == wanted:
                    return entry
    return None


def match_file(ref: CollectionItemRef, entries: List[CatalogEntry]) -> Optional[CatalogEntry]:
    basename = ref.basename
    for entry in entries:
        if entry.is_file and entry.name == basename:
            return entry
    return None


class ManifestResolver:
    """Turns manifests into download plans using cached listings."""

    def __init__(self, cache: CatalogCache, fetcher: CatalogFetcher):
        self.cache = cache
        self.fetcher = fetcher

    async def load_collection(self, source: Source, entry: CatalogEntry) -> CollectionManifest:
        """Fetch a manifest file from the collections listing and parse it."""
        if not entry.fetch_locator:
            raise ManifestParseError(f"No download location for {entry.path}")
        text = await self.fetcher.fetch_text(entry.fetch_locator, source)
        return parse_manifest(text)

    async def resolve(self, manifest: CollectionManifest, source: Source) -> ResolvedDownloadPlan:
        plan = ResolvedDownloadPlan(manifest=manifest)
        listings: Dict[Category, List[CatalogEntry]] = {}
        failures: Dict[Category, str] = {}

        for ref in manifest.items:
            category = ref.category
            if category is None:
                plan.items.append(UnresolvedItem(ref, f"Unknown item kind '{ref.kind}'"))
                continue

            if category not in listings and category not in failures:
                try:
                    listings[category] = await self.cache.get(source, category)
                except TransportError as e:
                    failures[category] = f"Could not list {category.value} from {source.identifier}: {e.message}"

            if category in failures:
                plan.items.append(UnresolvedItem(ref, failures[category]))
                continue

            entries = listings[category]
            if category is Category.SKILLS:
                entry = match_skill(ref, entries)
            else:
                entry = match_file(ref, entries)

            if entry is None:
                plan.items.append(UnresolvedItem(
                    ref,
                    f"'{ref.path}' not found in {category.value} of {source.identifier}",
                ))
            else:
                plan.items.append(ResolvedItem(ref=ref, entry=entry, category=category, source=source))

        logger.info(
            "collection resolved",
            collection=manifest.id,
            resolved=len(plan.resolved),
            unresolved=len(plan.unresolved),
        )
        return plan
