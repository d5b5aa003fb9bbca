"""Error taxonomy for promptshelf.

Every failure the catalog engine can produce is one of these classes.
Callers match on them with ``except`` clauses; nothing is inspected by shape.
"""

from __future__ import annotations

from typing import Optional


class CatalogError(Exception):
    """Base class for all promptshelf errors."""
    pass


# --- Listing / transport ---

class CategoryAbsent(CatalogError):
    """The source does not provide this category (HTTP 404 on the listing).

    Not a user-facing error: a source may legitimately skip categories.
    """

    def __init__(self, source_id: str, category: str):
        super().__init__(f"{source_id} has no '{category}' folder")
        self.source_id = source_id
        self.category = category


class TransportError(CatalogError):
    """A remote call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: str = ""):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.url = url


class NetworkError(TransportError):
    """Connection failure, DNS failure or timeout. Never carries a status."""

    def __init__(self, message: str, url: str = ""):
        super().__init__(message, status_code=None, url=url)


class HttpError(TransportError):
    """Non-2xx HTTP response."""

    def __init__(self, status_code: int, message: str = "", url: str = ""):
        super().__init__(message or f"HTTP {status_code}", status_code=status_code, url=url)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)


class TooDeep(CatalogError):
    """Recursive listing exceeded the depth cap."""

    def __init__(self, path: str, max_depth: int):
        super().__init__(f"Directory tree under '{path}' is deeper than {max_depth} levels")
        self.path = path
        self.max_depth = max_depth


class FilesystemError(CatalogError):
    """Local write failed or a target path is unsafe."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


# --- Manifests ---

class ManifestError(CatalogError):
    """Collection manifest could not be used."""
    pass


class ManifestParseError(ManifestError):
    """Text is not YAML, or not a mapping."""
    pass


class ManifestValidationError(ManifestError):
    """A specific manifest field is missing or invalid."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


# --- Source registry ---

class SourceError(CatalogError):
    """Invalid change to the configured sources."""
    pass


class DuplicateSource(SourceError):
    """A source with the same identity is already registered."""

    def __init__(self, identity: str):
        super().__init__(f"Source already added: {identity}")
        self.identity = identity


class InvalidFormat(SourceError):
    """User input could not be parsed into owner/name."""

    def __init__(self, text: str, owner: str = "", name: str = ""):
        super().__init__(
            f"Invalid repository format. Use owner/repo or a full URL "
            f"(parsed owner={owner!r}, repo={name!r} from {text!r})"
        )
        self.text = text


class LastSourceError(SourceError):
    """Refused to remove the only remaining source."""

    def __init__(self) -> None:
        super().__init__("At least one repository source is required.")


class UnknownSource(SourceError):
    """No registered source matches."""

    def __init__(self, identity: str):
        super().__init__(f"Source not found: {identity}")
        self.identity = identity


class EntryNotFound(CatalogError):
    """No listing entry with the requested name."""

    def __init__(self, category: str, name: str):
        super().__init__(f"No {category} entry named '{name}'")
        self.category = category
        self.name = name
