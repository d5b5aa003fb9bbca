"""Catalog sources and the registry that holds them.

A source is one GitHub (or GitHub Enterprise) repository whose top-level
folders are the catalog categories. Users type either ``owner/repo`` or a
full repository URL; both are normalized by :func:`parse_source`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from .config import sources_path
from .errors import DuplicateSource, InvalidFormat, LastSourceError, SourceError, UnknownSource
from .log import get_logger

logger = get_logger(__name__)

PUBLIC_HOST = "github.com"
_PUBLIC_HOSTS = {"github.com", "www.github.com"}


@dataclass(frozen=True)
class Source:
    """A configured catalog location."""
    owner: str
    name: str
    base_url: Optional[str] = None   # set for GitHub Enterprise hosts
    label: Optional[str] = None

    @property
    def host(self) -> str:
        if self.base_url:
            return urlparse(self.base_url).netloc or self.base_url
        return PUBLIC_HOST

    @property
    def identity(self) -> Tuple[str, str, str]:
        return (self.host.lower(), self.owner.lower(), self.name.lower())

    @property
    def id(self) -> str:
        """Stable key used for cache entries and ledger records."""
        return f"{self.host}/{self.owner}/{self.name}"

    @property
    def identifier(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def is_enterprise(self) -> bool:
        return bool(self.base_url)

    @property
    def repo_url(self) -> str:
        if self.base_url:
            return f"{self.base_url.rstrip('/')}/{self.owner}/{self.name}"
        return f"https://github.com/{self.owner}/{self.name}"

    @property
    def contents_root(self) -> str:
        """Base of the contents API, ending with a slash."""
        if self.base_url:
            base = self.base_url.rstrip("/")
            return f"{base}/api/v3/repos/{self.owner}/{self.name}/contents/"
        return f"https://api.github.com/repos/{self.owner}/{self.name}/contents/"

    @property
    def type_tag(self) -> str:
        return "[Enterprise]" if self.base_url else "[GitHub.com]"

    @property
    def display_label(self) -> str:
        if self.label:
            return f"{self.label} ({self.identifier})"
        return self.identifier

    def to_dict(self) -> dict:
        data = {"owner": self.owner, "repo": self.name}
        if self.base_url:
            data["baseUrl"] = self.base_url
        if self.label:
            data["label"] = self.label
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Source":
        return cls(
            owner=str(data.get("owner", "")).strip(),
            name=str(data.get("repo", data.get("name", ""))).strip(),
            base_url=data.get("baseUrl") or data.get("base_url") or None,
            label=data.get("label") or None,
        )


DEFAULT_SOURCES: Tuple[Source, ...] = (
    Source(owner="github", name="awesome-copilot", label="Awesome Copilot"),
)


def _strip_git(name: str) -> str:
    return name[:-4] if name.endswith(".git") else name


def parse_source(text: str, label: Optional[str] = None) -> Source:
    """Parse ``owner/repo`` or a repository URL into a :class:`Source`.

    Any host other than github.com becomes an enterprise base URL.
    """
    clean = (text or "").strip()
    owner = ""
    name = ""
    base_url: Optional[str] = None

    if clean.startswith(("http://", "https://")):
        parsed = urlparse(clean)
        parts = [p for p in parsed.path.split("/") if p.strip()]
        if not parsed.netloc or len(parts) < 2:
            raise InvalidFormat(clean)
        owner = parts[0].strip()
        name = _strip_git(parts[1].strip())
        if parsed.netloc.lower() not in _PUBLIC_HOSTS:
            base_url = f"https://{parsed.netloc}"
    elif "/" in clean:
        parts = [p.strip() for p in clean.split("/") if p.strip()]
        if len(parts) >= 2:
            owner = parts[0]
            name = _strip_git(parts[1])

    if not owner or not name:
        raise InvalidFormat(clean, owner, name)

    return Source(owner=owner, name=name, base_url=base_url, label=(label or "").strip() or None)


def _find(sources: Sequence[Source], identity: Tuple[str, str, str]) -> Optional[Source]:
    for source in sources:
        if source.identity == identity:
            return source
    return None


class SourceRegistry:
    """Ordered, duplicate-free list of sources.

    The registry never touches the listing cache; whoever removes a source is
    responsible for invalidating its cache entries.
    """

    def __init__(self, sources: Optional[Sequence[Source]] = None, path: Optional[Path] = None):
        self._path = path
        self._sources: Tuple[Source, ...] = ()
        self.replace(list(sources) if sources else list(DEFAULT_SOURCES), persist=False)

    def list(self) -> List[Source]:
        return list(self._sources)

    def __len__(self) -> int:
        return len(self._sources)

    def get(self, text: str) -> Source:
        """Look up a registered source by ``owner/repo``, URL or id."""
        if text.count("/") == 2 and not text.startswith(("http://", "https://")):
            host, owner, name = text.split("/")
            found = _find(self._sources, (host.lower(), owner.lower(), name.lower()))
        else:
            found = _find(self._sources, parse_source(text).identity)
        if found is None:
            raise UnknownSource(text)
        return found

    def add(self, candidate: Source) -> Source:
        if not candidate.owner or not candidate.name:
            raise InvalidFormat(candidate.identifier, candidate.owner, candidate.name)
        if _find(self._sources, candidate.identity) is not None:
            raise DuplicateSource(candidate.id)
        self._sources = self._sources + (candidate,)
        self._persist()
        logger.info("source added", source=candidate.id)
        return candidate

    def remove(self, identity: Tuple[str, str, str]) -> Source:
        found = _find(self._sources, identity)
        if found is None:
            raise UnknownSource("/".join(identity))
        if len(self._sources) <= 1:
            raise LastSourceError()
        self._sources = tuple(s for s in self._sources if s.identity != identity)
        self._persist()
        logger.info("source removed", source=found.id)
        return found

    def reset(self) -> List[Source]:
        self._sources = tuple(DEFAULT_SOURCES)
        self._persist()
        return self.list()

    def replace(self, sources: Sequence[Source], persist: bool = True) -> List[Source]:
        """Replace the whole list at once."""
        if not sources:
            raise LastSourceError()
        seen = set()
        for source in sources:
            if not source.owner or not source.name:
                raise InvalidFormat(source.identifier, source.owner, source.name)
            if source.identity in seen:
                raise DuplicateSource(source.id)
            seen.add(source.identity)
        self._sources = tuple(sources)
        if persist:
            self._persist()
        return self.list()

    # --- Persistence ---

    def _persist(self) -> None:
        if self._path is not None:
            self.save(self._path)

    def save(self, path: Optional[Path] = None) -> Path:
        path = path or self._path or sources_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"sources": [s.to_dict() for s in self._sources]}
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "SourceRegistry":
        path = path or sources_path()
        if not path.exists():
            return cls(path=path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            items = data.get("sources", []) if isinstance(data, dict) else data
            sources = [Source.from_dict(item) for item in items if isinstance(item, dict)]
            return cls(sources, path=path)
        except (OSError, ValueError, AttributeError, SourceError) as e:
            logger.warning("unreadable sources file, using defaults", path=str(path), error=str(e))
            return cls(path=path)
