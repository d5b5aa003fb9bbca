"""HTTP transport for the contents API.

Wraps a ``requests.Session`` and turns every failure into the closed
:class:`~promptshelf.errors.TransportError` family. Calls are blocking
underneath; the ``async`` methods run them in a worker thread so the rest
of the engine can await them.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import requests

from ..errors import HttpError, NetworkError
from ..log import get_logger

logger = get_logger(__name__)

USER_AGENT = "promptshelf"
DEFAULT_TIMEOUT_S = 10.0


def _auth_header(token: str) -> str:
    token = token.strip()
    if token.lower().startswith(("token ", "bearer ")):
        return token
    return f"token {token}"


class Transport:
    """Minimal GET-only client for listing and raw content requests."""

    def __init__(self, timeout_s: float = DEFAULT_TIMEOUT_S, session: Optional[requests.Session] = None):
        self.timeout_s = timeout_s
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = USER_AGENT

    def _headers(self, token: Optional[str], accept: str) -> Dict[str, str]:
        headers = {"Accept": accept}
        if token:
            headers["Authorization"] = _auth_header(token)
        return headers

    def _get(self, url: str, token: Optional[str], accept: str) -> requests.Response:
        try:
            response = self._session.get(url, headers=self._headers(token, accept), timeout=self.timeout_s)
        except requests.exceptions.Timeout:
            raise NetworkError(f"Timed out after {self.timeout_s:g}s", url=url)
        except requests.exceptions.ConnectionError as e:
            raise NetworkError(f"Cannot connect: {e}", url=url)
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Request failed: {e}", url=url)

        if not response.ok:
            try:
                detail = response.json().get("message", "")
            except (ValueError, AttributeError):
                detail = response.text or ""
            message = f"HTTP {response.status_code}"
            if detail:
                message = f"{message}: {detail}"
            raise HttpError(response.status_code, message, url=url)

        return response

    def get_json_sync(self, url: str, token: Optional[str] = None) -> Any:
        response = self._get(url, token, "application/vnd.github.v3+json")
        try:
            return response.json()
        except ValueError as e:
            raise HttpError(response.status_code, f"Invalid JSON response: {e}", url=url)

    def get_bytes_sync(self, url: str, token: Optional[str] = None) -> bytes:
        return self._get(url, token, "*/*").content

    async def get_json(self, url: str, token: Optional[str] = None) -> Any:
        logger.debug("GET json", url=url)
        return await asyncio.to_thread(self.get_json_sync, url, token)

    async def get_bytes(self, url: str, token: Optional[str] = None) -> bytes:
        logger.debug("GET raw", url=url)
        return await asyncio.to_thread(self.get_bytes_sync, url, token)

    def close(self) -> None:
        self._session.close()
