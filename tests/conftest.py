"""Shared fakes for catalog tests."""

from typing import Any, Dict, List, Optional, Tuple

import pytest

from promptshelf.errors import HttpError
from promptshelf.sources import Source

API = "https://api.github.com/repos"


def listing_url(source: Source, path: str) -> str:
    return source.contents_root + path.strip("/")


def file_item(path: str, sha: str = "sha1", size: int = 10, locator: Optional[str] = None) -> Dict[str, Any]:
    name = path.rsplit("/", 1)[-1]
    return {
        "type": "file",
        "name": name,
        "path": path,
        "sha": sha,
        "size": size,
        "download_url": locator or f"https://raw.example/{path}",
    }


def dir_item(path: str, sha: str = "tree1") -> Dict[str, Any]:
    name = path.rsplit("/", 1)[-1]
    return {"type": "dir", "name": name, "path": path, "sha": sha, "url": f"{API}/x/y/contents/{path}"}


class FakeTransport:
    """In-memory stand-in for Transport.

    ``routes`` maps a URL to a JSON payload, bytes, or an exception to raise.
    Every call is recorded in ``calls`` as ``(url, token)``.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes: Dict[str, Any] = dict(routes or {})
        self.calls: List[Tuple[str, Optional[str]]] = []

    def _answer(self, url: str, token: Optional[str]) -> Any:
        self.calls.append((url, token))
        if url not in self.routes:
            raise HttpError(404, "HTTP 404: Not Found", url=url)
        value = self.routes[url]
        if isinstance(value, Exception):
            raise value
        return value

    async def get_json(self, url: str, token: Optional[str] = None) -> Any:
        return self._answer(url, token)

    async def get_bytes(self, url: str, token: Optional[str] = None) -> bytes:
        value = self._answer(url, token)
        return value if isinstance(value, bytes) else str(value).encode("utf-8")

    def urls(self) -> List[str]:
        return [url for url, _ in self.calls]


@pytest.fixture
def acme() -> Source:
    return Source(owner="acme", name="kit")


@pytest.fixture
def other() -> Source:
    return Source(owner="other", name="stuff")


@pytest.fixture(autouse=True)
def _no_env_tokens(monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("GH_TOKEN", raising=False)
