"""Listing and content retrieval for one source at a time."""

from __future__ import annotations

import os
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set, Tuple
from urllib.parse import quote

from ..config import DEFAULT_MAX_DEPTH
from ..errors import CategoryAbsent, HttpError, TooDeep, TransportError
from ..log import get_logger
from ..sources import Source
from .models import CatalogEntry, Category
from .transport import Transport

logger = get_logger(__name__)

TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")

# Called after a 401 to obtain a fresh token; None means "give up".
AuthRefresher = Callable[[Source], Awaitable[Optional[str]]]


class CatalogFetcher:
    """Lists categories and downloads raw content through a :class:`Transport`."""

    def __init__(
        self,
        transport: Transport,
        *,
        tokens: Optional[Dict[str, str]] = None,
        enterprise_token: str = "",
        auth_refresher: Optional[AuthRefresher] = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.transport = transport
        self.max_depth = max_depth
        self._tokens = dict(tokens or {})
        self._enterprise_token = enterprise_token
        self._auth_refresher = auth_refresher

    # --- Auth ---

    def token_for(self, source: Optional[Source]) -> Optional[str]:
        """Resolve the token for a source.

        Order: per-source token, enterprise token (enterprise hosts only),
        then GITHUB_TOKEN / GH_TOKEN (github.com only).
        """
        if source is None:
            return None
        token = self._tokens.get(source.id) or self._tokens.get(source.identifier)
        if token:
            return token
        if source.is_enterprise:
            return self._enterprise_token or None
        for env_name in TOKEN_ENV_VARS:
            value = os.environ.get(env_name, "").strip()
            if value:
                return value
        return None

    async def _with_auth(self, source: Optional[Source], call: Callable[[Optional[str]], Awaitable[Any]]) -> Any:
        token = self.token_for(source)
        try:
            return await call(token)
        except HttpError as e:
            if e.status_code != 401 or source is None or self._auth_refresher is None:
                raise
            logger.info("auth rejected, refreshing token", source=source.id)
            fresh = await self._auth_refresher(source)
            if not fresh:
                raise
            self._tokens[source.id] = fresh
            return await call(fresh)

    # --- Listing ---

    def _contents_url(self, source: Source, path: str) -> str:
        return source.contents_root + quote(path.strip("/"))

    async def _list_path(self, source: Source, path: str) -> List[CatalogEntry]:
        url = self._contents_url(source, path)
        data = await self._with_auth(source, lambda token: self.transport.get_json(url, token))
        if isinstance(data, dict):
            # Contents API returns a single object when the path is a file
            data = [data]
        if not isinstance(data, list):
            raise TransportError(f"Unexpected listing payload for '{path}'", url=url)
        return [CatalogEntry.from_api(item, source.id) for item in data if isinstance(item, dict)]

    async def list_category(self, source: Source, category: Category) -> List[CatalogEntry]:
        """List one category folder.

        Raises CategoryAbsent on 404 and TransportError for anything else.
        """
        try:
            entries = await self._list_path(source, category.value)
        except HttpError as e:
            if e.is_not_found:
                logger.debug("category absent", source=source.id, category=category.value)
                raise CategoryAbsent(source.id, category.value)
            raise

        wanted = "dir" if category.lists_directories else "file"
        filtered = [entry for entry in entries if entry.kind == wanted]
        logger.debug("listed category", source=source.id, category=category.value, count=len(filtered))
        return filtered

    async def list_recursive(self, source: Source, path: str) -> List[CatalogEntry]:
        """Expand a directory into every file below it.

        Walks an explicit worklist; a directory is never expanded twice and
        nesting beyond ``max_depth`` raises TooDeep.
        """
        root = path.strip("/")
        files: List[CatalogEntry] = []
        visited: Set[str] = set()
        queue: Deque[Tuple[str, int]] = deque([(root, 0)])

        while queue:
            current, depth = queue.popleft()
            if current in visited:
                continue
            if depth > self.max_depth:
                raise TooDeep(root, self.max_depth)
            visited.add(current)

            for entry in await self._list_path(source, current):
                if entry.is_file:
                    files.append(entry)
                elif entry.is_dir and entry.path.strip("/") not in visited:
                    queue.append((entry.path.strip("/"), depth + 1))

        return files

    # --- Content ---

    async def fetch_raw(self, locator: str, source: Optional[Source] = None) -> bytes:
        return await self._with_auth(source, lambda token: self.transport.get_bytes(locator, token))

    async def fetch_text(self, locator: str, source: Optional[Source] = None) -> str:
        raw = await self.fetch_raw(locator, source)
        return raw.decode("utf-8", errors="replace")
