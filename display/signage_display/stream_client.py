"""HTTP client for the signage server.

Handles the display side of the protocol:
  Push channel: GET /api/settings/stream (Server-Sent Events, one JSON
    message per ``data:`` frame, ``:`` comment lines as keep-alives)
  One-shot reads: GET /api/settings, /api/dismissal/status, /api/emergency/status
  Livestream probe: HEAD <livestream url>
  Weather: GET <weather url>, when one is configured

Every endpoint used here is public; the display never holds a session token.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

import httpx
from pydantic import ValidationError

from signage.messages import BroadcastMessage, parse_message

logger = logging.getLogger(__name__)


class StreamClosed(Exception):
    """The server ended the push channel without an error status."""


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Reassemble SSE ``data:`` payloads from a stream of lines.

    Multi-line ``data:`` fields are joined with newlines; comment lines and
    other fields (``event:``, ``id:``, ``retry:``) are ignored.
    """
    data: list[str] = []
    async for line in lines:
        if not line:
            if data:
                yield "\n".join(data)
                data = []
            continue
        if line.startswith(":"):
            continue
        fieldname, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if fieldname == "data":
            data.append(value)
    if data:
        yield "\n".join(data)


class SignageClient:
    """Reads settings from the signage server over httpx."""

    def __init__(
        self,
        server_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(base_url=self.server_url, timeout=timeout)
        self._owns_client = client is None

    async def stream(self, params: dict[str, str]) -> AsyncIterator[BroadcastMessage]:
        """Yield push-channel messages until the channel ends.

        Raises :class:`httpx.HTTPError` on connection or status errors and
        :class:`StreamClosed` when the server ends the stream cleanly.
        Malformed frames are logged and skipped.
        """
        # No read timeout: the server sends a keep-alive comment every 30 s
        timeout = httpx.Timeout(self.timeout, read=None)
        async with self._client.stream(
            "GET",
            "/api/settings/stream",
            params=params,
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            timeout=timeout,
        ) as response:
            response.raise_for_status()
            logger.info("Connected to settings stream at %s", self.server_url)
            async for payload in iter_sse_data(response.aiter_lines()):
                try:
                    yield parse_message(payload)
                except (ValueError, ValidationError):
                    logger.warning("Ignoring malformed stream frame: %.200s", payload)
        raise StreamClosed("Server closed the settings stream")

    async def fetch_settings(self) -> dict[str, Any]:
        """One plain GET /api/settings."""
        data = await self._get_json("/api/settings")
        if not isinstance(data, dict):
            raise ValueError("Settings response is not an object")
        return data

    async def fetch_dismissal_status(self) -> dict[str, Any]:
        return await self._get_json("/api/dismissal/status")

    async def fetch_emergency_status(self) -> dict[str, Any]:
        return await self._get_json("/api/emergency/status")

    async def fetch_json(self, url: str) -> Any:
        """GET an arbitrary JSON document, relative to the server or absolute."""
        return await self._get_json(url)

    async def probe(self, url: str) -> bool:
        """True if *url* answers a HEAD request without an error status."""
        try:
            response = await self._client.head(url, follow_redirects=True)
        except httpx.HTTPError as exc:
            logger.debug("Probe of %s failed: %s", url, exc)
            return False
        return response.status_code < 400

    async def _get_json(self, path: str) -> Any:
        response = await self._client.get(path)
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
