"""Catalog data models.

Listing entries are immutable snapshots of one remote directory listing.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, Literal, Optional, Tuple

EntryKind = Literal["file", "dir"]


class Category(str, Enum):
    """Top-level catalog folders."""
    COLLECTIONS = "collections"
    INSTRUCTIONS = "instructions"
    PROMPTS = "prompts"
    AGENTS = "agents"
    SKILLS = "skills"

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]

    @property
    def folder(self) -> str:
        """Local subfolder under the download root."""
        return self.value

    @property
    def lists_directories(self) -> bool:
        """Skills are multi-file folders; every other category lists files."""
        return self is Category.SKILLS

    @classmethod
    def parse(cls, value: str) -> "Category":
        key = value.strip().lower()
        for category in cls:
            if key in (category.value, category.value.rstrip("s")):
                return category
        raise ValueError(f"Unknown category: {value!r}")


CATEGORY_LABELS: Dict[Category, str] = {
    Category.COLLECTIONS: "Collections",
    Category.INSTRUCTIONS: "Instructions",
    Category.PROMPTS: "Prompts",
    Category.AGENTS: "Agents",
    Category.SKILLS: "Skills",
}


@dataclass(frozen=True)
class CatalogEntry:
    """One file or directory from a listing."""
    name: str
    path: str
    kind: EntryKind
    size: Optional[int] = None          # None when the listing omits it
    remote_ref: Optional[str] = None     # blob/tree sha
    fetch_locator: Optional[str] = None  # download_url for files, API url for dirs
    source_id: str = ""
    display_name: Optional[str] = None

    @property
    def is_file(self) -> bool:
        return self.kind == "file"

    @property
    def is_dir(self) -> bool:
        return self.kind == "dir"

    @property
    def label(self) -> str:
        return self.display_name or self.name

    @property
    def item_id(self) -> str:
        """Ledger key: the entry's path within its source."""
        return f"{self.source_id}/{self.path}"

    def with_display_name(self, display_name: Optional[str]) -> "CatalogEntry":
        return replace(self, display_name=display_name)

    def relative_to(self, root: str) -> str:
        """Path of this entry below ``root``; unrelated paths come back as-is."""
        root = root.strip("/")
        if root and self.path.startswith(root + "/"):
            return self.path[len(root) + 1:]
        return self.path

    @classmethod
    def from_api(cls, data: Dict[str, Any], source_id: str) -> "CatalogEntry":
        kind: EntryKind = "dir" if data.get("type") == "dir" else "file"
        path = str(data.get("path", "") or data.get("name", ""))
        name = str(data.get("name", "") or PurePosixPath(path).name)
        locator = data.get("download_url") or data.get("locator")
        if kind == "dir" and not locator:
            locator = data.get("url")
        size = data.get("size")
        return cls(
            name=name,
            path=path,
            kind=kind,
            size=int(size) if isinstance(size, (int, float)) else None,
            remote_ref=data.get("sha") or None,
            fetch_locator=locator or None,
            source_id=source_id,
        )


@dataclass(frozen=True)
class CacheRecord:
    """Entries for one (source, category) with their fetch time."""
    entries: Tuple[CatalogEntry, ...]
    fetched_at: float

    def is_fresh(self, now: float, ttl_s: float) -> bool:
        return (now - self.fetched_at) < ttl_s
