"""
Remote API transport.

Async HTTP client that turns every call into a RemoteCallResult. It never
raises for HTTP errors or network failures, classification is left to the
caller.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urljoin

import aiohttp

from differ import Patch
from outcomes import RemoteCallResult

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"


class RemoteClient:
    """
    aiohttp-based client for the remote API.

    Holds one pooled ClientSession, created on first use unless one is
    injected. An injected session is left open on close().
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        if not base_url:
            raise ValueError("base_url cannot be empty")
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "RemoteClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Create aiohttp session if not exists."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Accept": JSON_CONTENT_TYPE, **self.headers},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    def url_for(self, path: str) -> str:
        """
        Resolve a request path.

        Relative paths are resolved against base_url, paths starting with '/'
        against its origin. Absolute URLs are used as-is.
        """
        return urljoin(self.base_url, path)

    @staticmethod
    def _encode(body: Any) -> Tuple[Optional[bytes], Dict[str, str]]:
        if body is None:
            return None, {}
        if isinstance(body, Patch):
            return body.to_json(), {"Content-Type": JSON_PATCH_CONTENT_TYPE}
        if isinstance(body, (bytes, bytearray)):
            return bytes(body), {}
        if isinstance(body, str):
            return body.encode("utf-8"), {}
        return json.dumps(body).encode("utf-8"), {"Content-Type": JSON_CONTENT_TYPE}

    async def call(self, method: str, path: str, body: Any = None) -> RemoteCallResult:
        """
        Make one HTTP request.

        Args:
            method: HTTP method
            path: Path relative to base_url, or an absolute URL
            body: JSON document, JSON Patch, raw bytes/str, or None

        Returns:
            RemoteCallResult with status, body and headers, or only an
            error_message when no response was received
        """
        url = self.url_for(path)
        data, headers = self._encode(body)
        session = await self._ensure_session()

        logger.debug(f"{method} {url}")
        try:
            async with session.request(
                method, url, data=data, headers=headers
            ) as response:
                payload = await response.read()
                logger.debug(f"{method} {url} -> {response.status}")
                return RemoteCallResult(
                    status_code=response.status,
                    body=payload,
                    headers=dict(response.headers),
                )
        except asyncio.TimeoutError:
            logger.debug(f"{method} {url} timed out after {self.timeout}s")
            return RemoteCallResult(
                error_message=f"{method} {url}: timed out after {self.timeout}s"
            )
        except aiohttp.ClientError as e:
            logger.debug(f"{method} {url} failed: {e}")
            return RemoteCallResult(error_message=f"{method} {url}: {e}")
