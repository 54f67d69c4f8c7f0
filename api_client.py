"""Central HTTP client for server communication. Bearer auth with auto-refresh."""

import asyncio
import functools
import inspect
import logging
from typing import Any, Callable

from api_errors import (
    AntiForgeryExpiredError,
    ApiError,
    AuthExpiredError,
    HTTPStatusError,
    raise_for_status,
)
from auth.refresh import RefreshCoordinator
from auth.token_store import ACCESS_TOKEN_KEY, CREDENTIAL_KEYS, REFRESH_TOKEN_KEY
from request_cache import DEFAULT_TTL, SingleFlightCache, is_multipart, request_key
from transport import DEFAULT_TIMEOUT, AiohttpTransport
from url_normalizer import ResponseNormalizer

log = logging.getLogger(__name__)

DEFAULT_REFRESH_PATH = "/api/auth/refresh-token"
DEFAULT_CSRF_PATH = "/sanctum/csrf-cookie"
XSRF_COOKIE = "XSRF-TOKEN"

_BASE_HEADERS = {
    "Accept": "application/json",
    "X-Requested-With": "XMLHttpRequest",
}


def _retrieve(task: asyncio.Future):
    # the caller may have stopped waiting
    if not task.cancelled():
        task.exception()


class ApiClient:
    def __init__(
        self,
        server_url: str,
        token_store,
        *,
        transport=None,
        normalizer: ResponseNormalizer | None = None,
        dedupe_ttl: float = DEFAULT_TTL,
        refresh_path: str = DEFAULT_REFRESH_PATH,
        csrf_path: str = DEFAULT_CSRF_PATH,
        on_session_invalidated: Callable[[], Any] | None = None,
        on_navigation_reset: Callable[[], Any] | None = None,
    ):
        self._base = server_url.rstrip("/")
        self._tokens = token_store
        self._transport = transport or AiohttpTransport(DEFAULT_TIMEOUT)
        self._normalize = normalizer or ResponseNormalizer(self._base)
        self._cache = SingleFlightCache(dedupe_ttl)
        self._refresh_path = refresh_path
        self._csrf_path = csrf_path
        self._on_session_invalidated = on_session_invalidated
        self._on_navigation_reset = on_navigation_reset
        self._background: set[asyncio.Future] = set()
        self._refresher = RefreshCoordinator(
            token_store, self._request_refresh, self._invalidate_session,
        )

    @classmethod
    def from_settings(cls, settings, token_store, **kwargs) -> "ApiClient":
        kwargs.setdefault("transport", AiohttpTransport(settings.request_timeout))
        kwargs.setdefault("normalizer", ResponseNormalizer(settings.current_origin))
        return cls(
            settings.api_base_url,
            token_store,
            dedupe_ttl=settings.dedupe_ttl,
            refresh_path=settings.refresh_path,
            csrf_path=settings.csrf_path,
            **kwargs,
        )

    @property
    def refresher(self) -> RefreshCoordinator:
        return self._refresher

    @property
    def token_store(self):
        return self._tokens

    async def close(self):
        await self._transport.close()

    # ── Public verbs ───────────────────────────────────────

    async def get(self, path: str, params: dict | None = None):
        return await self._dispatch("GET", path, params=params)

    async def post(self, path: str, data=None):
        return await self._dispatch("POST", path, body=data)

    async def put(self, path: str, data=None):
        return await self._dispatch("PUT", path, body=data)

    async def patch(self, path: str, data=None):
        return await self._dispatch("PATCH", path, body=data)

    async def delete(self, path: str, params: dict | None = None):
        return await self._dispatch("DELETE", path, params=params)

    # ── Tokens ─────────────────────────────────────────────

    async def set_token(self, access_token: str, refresh_token: str | None = None):
        if not access_token:
            return
        await self._tokens.set(ACCESS_TOKEN_KEY, access_token)
        if refresh_token:
            await self._tokens.set(REFRESH_TOKEN_KEY, refresh_token)
        else:
            # never pair a new access token with another session's refresh token
            await self._tokens.remove(REFRESH_TOKEN_KEY)
        log.info("Tokens saved")

    async def clear_token(self):
        for key in CREDENTIAL_KEYS:
            await self._tokens.remove(key)
        self._cache.clear()
        log.info("Tokens cleared")

    async def fetch_csrf_token(self):
        """Ask the server to set a fresh anti-forgery cookie."""
        url = self._url(self._csrf_path)
        response = await self._transport.send("GET", url, headers=dict(_BASE_HEADERS))
        try:
            raise_for_status(response, "GET", self._csrf_path)
        except ApiError as e:
            log.error("CSRF cookie request failed: %s", e)
            raise

    # ── Internals ──────────────────────────────────────────

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._base}{path}"

    def _headers(self, url: str, token: str | None, body) -> dict[str, str]:
        headers = dict(_BASE_HEADERS)
        # multipart boundary is set by the transport
        if not is_multipart(body):
            headers["Content-Type"] = "application/json"
        if token:
            headers["Authorization"] = f"Bearer {token}"
        xsrf = self._transport.cookie(XSRF_COOKIE, url)
        if xsrf:
            headers["X-XSRF-TOKEN"] = xsrf
        return headers

    async def _dispatch(self, method: str, path: str, *, params=None, body=None):
        if is_multipart(body):
            # not cached, but still never aborted by a cancelled caller
            task = asyncio.ensure_future(self._send(method, path, params, body))
            task.add_done_callback(_retrieve)
            return await asyncio.shield(task)
        key = request_key(method, path, params, body)
        return await self._cache.dedupe(
            key, functools.partial(self._send, method, path, params, body),
        )

    async def _send(self, method: str, path: str, params, body):
        token = await self._tokens.get(ACCESS_TOKEN_KEY)
        try:
            return await self._exchange(method, path, params, body, token)
        except AuthExpiredError as e:
            if path == self._refresh_path:
                await self._tokens_rejected(e)
                raise
            return await self._refresher.recover(
                token, functools.partial(self._exchange, method, path, params, body),
            )

    async def _exchange(self, method, path, params, body, token, *, csrf_retry=True):
        multipart = is_multipart(body)
        url = self._url(path)
        response = await self._transport.send(
            method,
            url,
            headers=self._headers(url, token, body),
            params=params,
            json=None if multipart else body,
            data=body if multipart else None,
        )
        try:
            raise_for_status(response, method, path)
        except AntiForgeryExpiredError:
            if not csrf_retry:
                log.error("API %s %s → 419 after CSRF refresh", method, path)
                raise
            log.info("CSRF token expired on %s %s, fetching a new one", method, path)
            await self.fetch_csrf_token()
            return await self._exchange(method, path, params, body, token, csrf_retry=False)
        except AuthExpiredError:
            log.debug("API %s %s → 401", method, path)
            raise
        except HTTPStatusError as e:
            log.error("API %s %s → %d", method, path, e.status)
            raise
        return self._normalize(response.data)

    async def _request_refresh(self, refresh_token: str):
        token = await self._tokens.get(ACCESS_TOKEN_KEY)
        return await self._exchange(
            "POST", self._refresh_path, None, {"refreshToken": refresh_token}, token,
        )

    async def _tokens_rejected(self, error: AuthExpiredError):
        log.warning("Refresh endpoint returned 401, ending session")
        await self._refresher.abort(error)

    async def _invalidate_session(self):
        await self.clear_token()
        self._emit(self._on_session_invalidated, "session-invalidated")
        self._emit(self._on_navigation_reset, "navigation reset")

    def _emit(self, callback, name: str):
        if callback is None:
            return
        try:
            result = callback()
        except Exception:
            log.exception("%s handler failed", name)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._background.add(task)
            task.add_done_callback(functools.partial(self._emitted, name))

    def _emitted(self, name: str, task: asyncio.Future):
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("%s handler failed: %s", name, task.exception())
