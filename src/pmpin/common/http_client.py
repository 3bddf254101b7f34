"""Shared HTTP transport used by registry clients and the installer.

Wraps a single aiohttp session so that concurrent registry queries share a
connection pool. Centralizes the network kill switch, registry credentials,
error translation and DEBUG traces so callers only deal with parsed data.
"""
from __future__ import annotations

import base64
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

import aiohttp

from ..constants import Constants
from ..errors import HttpError, NetworkDisabled
from ..settings import BrokerSettings
from .logging_utils import Timer, extra_context, is_debug_enabled, redact, safe_url

logger = logging.getLogger(__name__)


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.hostname or ''}{f':{parts.port}' if parts.port else ''}"


class HttpClient:
    """Async HTTP client honoring the broker settings."""

    def __init__(self, settings: BrokerSettings):
        """Initialize the client.

        Args:
            settings: Broker settings (network switch, credentials, timeout).
        """
        self._settings = settings
        self._timeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=settings.http_timeout,
            sock_read=settings.http_timeout,
        )
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> aiohttp.ClientSession:
        """Start the HTTP session if needed and return it."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                trust_env=True,
                headers={"User-Agent": Constants.USER_AGENT},
            )
        return self._session

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    def build_request(
        self, url: str, headers: Optional[Dict[str, str]] = None
    ) -> Tuple[str, Dict[str, str]]:
        """Return the URL to request and the headers to send.

        Credentials embedded in the URL, or configured for the npm registry,
        become an ``authorization`` header; the bearer token only goes to the
        configured npm registry origin.
        """
        request_headers: Dict[str, str] = dict(headers or {})
        parts = urlsplit(url)

        username = parts.username or self._settings.npm_username
        password = parts.password or self._settings.npm_password
        if parts.username or parts.password:
            netloc = parts.hostname or ""
            if parts.port:
                netloc = f"{netloc}:{parts.port}"
            url = urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))

        if username or password:
            creds = f"{username or ''}:{password or ''}".encode("utf-8")
            request_headers["authorization"] = f"Basic {base64.b64encode(creds).decode('ascii')}"

        if self._settings.npm_token and _origin(url) == _origin(self._settings.npm_registry_url):
            request_headers["authorization"] = f"Bearer {self._settings.npm_token}"

        return url, request_headers

    @asynccontextmanager
    async def open_response(
        self, url: str, headers: Optional[Dict[str, str]] = None
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """Open a GET response as an async context manager.

        Raises:
            NetworkDisabled: If network access is disabled by the settings.
            HttpError: On transport failure or a non-2xx answer.
        """
        safe_target = safe_url(url)
        if not self._settings.enable_network:
            raise NetworkDisabled(
                f"Network access disabled by the environment; can't reach {safe_target}"
            )

        session = await self.start()
        request_url, request_headers = self.build_request(url, headers)

        with Timer() as t:
            if is_debug_enabled(logger):
                logger.debug(
                    "HTTP request",
                    extra=extra_context(
                        event="http_request",
                        component="http_client",
                        action="GET",
                        target=safe_target,
                        authorization=redact(request_headers.get("authorization")),
                    ),
                )
            try:
                response = await session.get(request_url, headers=request_headers)
            except (aiohttp.ClientError, TimeoutError) as exc:
                raise HttpError(f"Error when performing the request to {safe_target}: {exc}") from exc

        try:
            if response.status >= 400:
                logger.debug(
                    "HTTP response not ok",
                    extra=extra_context(
                        event="http_response",
                        component="http_client",
                        outcome="error",
                        status_code=response.status,
                        target=safe_target,
                    ),
                )
                raise HttpError(
                    f"Server answered with HTTP {response.status} when performing the request to {safe_target}"
                )
            if is_debug_enabled(logger):
                logger.debug(
                    "HTTP response ok",
                    extra=extra_context(
                        event="http_response",
                        component="http_client",
                        outcome="success",
                        status_code=response.status,
                        duration_ms=t.duration_ms(),
                        target=safe_target,
                    ),
                )
            yield response
        finally:
            response.release()

    async def fetch_bytes(self, url: str, headers: Optional[Dict[str, str]] = None) -> bytes:
        """GET url and return the whole body."""
        async with self.open_response(url, headers) as response:
            try:
                return await response.read()
            except (aiohttp.ClientError, TimeoutError) as exc:
                raise HttpError(f"Error when reading the response from {safe_url(url)}: {exc}") from exc

    async def fetch_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Any:
        """GET url and parse the body as JSON.

        Raises:
            HttpError: If the body is not valid JSON.
        """
        body = await self.fetch_bytes(url, headers)
        text = body.decode("utf-8", errors="replace")
        try:
            return json.loads(text)
        except ValueError as exc:
            truncated = f"{text[:30]}..." if len(text) > 30 else text
            raise HttpError(f"Couldn't parse JSON data: {json.dumps(truncated)}") from exc

    async def download(self, url: str, destination: str, hashers: Iterable[Any] = ()) -> int:
        """Stream url into destination, feeding every chunk to the given hashers.

        Returns:
            Number of bytes written.
        """
        hashers = list(hashers)
        written = 0
        async with self.open_response(url) as response:
            with open(destination, "wb") as fh:
                try:
                    async for chunk in response.content.iter_chunked(Constants.DOWNLOAD_CHUNK_SIZE):
                        fh.write(chunk)
                        for hasher in hashers:
                            hasher.update(chunk)
                        written += len(chunk)
                except (aiohttp.ClientError, TimeoutError) as exc:
                    raise HttpError(f"Error when downloading {safe_url(url)}: {exc}") from exc
        logger.debug("Downloaded %d bytes from %s", written, safe_url(url))
        return written

    async def __aenter__(self) -> "HttpClient":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.stop()
