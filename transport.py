"""aiohttp-backed network exchange used by ApiClient."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote

import aiohttp
from yarl import URL

from api_errors import TransportError

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass
class Response:
    status: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)


def _decode(body: bytes, content_type: str, method: str, url: str):
    if not body:
        return None
    if "json" in content_type:
        try:
            return json.loads(body)
        except ValueError as e:
            raise TransportError(f"{method} {url}: malformed JSON body") from e
    return body.decode("utf-8", errors="replace")


class AiohttpTransport:
    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    async def _ensure_session(self):
        if self._session is None or self._session.closed:
            # unsafe: also keep cookies from IP hosts (LAN dev servers)
            self._session = aiohttp.ClientSession(
                timeout=self._timeout, cookie_jar=aiohttp.CookieJar(unsafe=True),
            )

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def send(
        self, method: str, url: str, *, headers: dict[str, str],
        params=None, json=None, data=None,
    ) -> Response:
        await self._ensure_session()
        try:
            async with self._session.request(
                method, url, params=params, json=json, data=data, headers=headers,
            ) as resp:
                body = await resp.read()
                return Response(
                    status=resp.status,
                    data=_decode(body, resp.content_type, method, url),
                    headers=dict(resp.headers),
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.error("API %s %s error: %s", method, url, e)
            raise TransportError(f"{method} {url}: {e or type(e).__name__}") from e

    def cookie(self, name: str, url: str) -> str | None:
        """Value of cookie ``name`` as it would be sent to ``url``."""
        if self._session is None:
            return None
        morsel = self._session.cookie_jar.filter_cookies(URL(url)).get(name)
        return unquote(morsel.value) if morsel is not None else None
