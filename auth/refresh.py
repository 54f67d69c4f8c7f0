"""Single-flight access token refresh.

One refresh at a time per client. Requests that hit 401 while a refresh is
running are parked and replayed (in arrival order) once it settles, or
rejected with the same error if it fails.
"""

import asyncio
import enum
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from api_errors import MissingRefreshTokenError, RefreshError
from auth.token_store import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY

log = logging.getLogger(__name__)

Replay = Callable[[str], Awaitable[Any]]


class RefreshState(enum.Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


@dataclass
class PendingRequest:
    future: asyncio.Future
    replay: Replay


class SessionClearedError(RefreshError):
    """Credentials were wiped while the request was in flight."""


def _transfer(task: asyncio.Future, future: asyncio.Future):
    if future.done():
        if not task.cancelled():
            task.exception()
        return
    if task.cancelled():
        future.cancel()
    elif task.exception() is not None:
        future.set_exception(task.exception())
    else:
        future.set_result(task.result())


class RefreshCoordinator:
    def __init__(
        self,
        store,
        request_refresh: Callable[[str], Awaitable[Any]],
        on_failure: Callable[[], Awaitable[None]],
    ):
        self._store = store
        self._request_refresh = request_refresh
        self._on_failure = on_failure
        self._state = RefreshState.IDLE
        self._queue: deque[PendingRequest] = deque()

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def recover(self, sent_token: str | None, replay: Replay):
        """Obtain a fresh access token and run ``replay`` with it."""
        if self._state is RefreshState.REFRESHING:
            return await self._park(replay)

        # Flag must flip before the first await
        self._state = RefreshState.REFRESHING
        try:
            token = await self._obtain_token(sent_token)
        except SessionClearedError as e:
            self._reject_all(e)
            raise
        except RefreshError as e:
            await self._fail(e)
            raise
        except Exception as e:
            error = RefreshError(f"Token refresh failed: {e}")
            await self._fail(error, cause=e)
            raise error from e
        except BaseException:
            # cancelled mid-refresh: credentials untouched, waiters released
            self._reject_all(RefreshError("Token refresh was cancelled"))
            raise

        first = asyncio.ensure_future(replay(token))
        self._drain(token)
        return await first

    async def abort(self, error: Exception):
        """Enter the failure transition without attempting a refresh."""
        if self._state is RefreshState.REFRESHING:
            # the running refresh reports its own outcome
            return
        self._state = RefreshState.REFRESHING
        await self._fail(RefreshError(f"Refresh endpoint rejected the session: {error}"), cause=error)

    async def _park(self, replay: Replay):
        future = asyncio.get_running_loop().create_future()
        self._queue.append(PendingRequest(future, replay))
        log.debug("Request parked until refresh settles (%d waiting)", len(self._queue))
        return await future

    async def _obtain_token(self, sent_token: str | None) -> str:
        current = await self._store.get(ACCESS_TOKEN_KEY)
        if current and current != sent_token:
            log.debug("Access token already renewed, replaying")
            return current
        if sent_token and not current:
            raise SessionClearedError("Session was cleared while the request was in flight")

        refresh_token = await self._store.get(REFRESH_TOKEN_KEY)
        if not refresh_token:
            raise MissingRefreshTokenError("No refresh token stored")

        log.info("Access token expired, refreshing")
        payload = await self._request_refresh(refresh_token)
        token = payload.get("token") if isinstance(payload, dict) else None
        if not token:
            raise RefreshError("Refresh response did not include a token")

        await self._store.set(ACCESS_TOKEN_KEY, token)
        if payload.get("refreshToken"):
            await self._store.set(REFRESH_TOKEN_KEY, payload["refreshToken"])
        log.info("Access token refreshed")
        return token

    def _drain(self, token: str):
        self._state = RefreshState.IDLE
        pending, self._queue = self._queue, deque()
        for request in pending:
            if request.future.done():
                continue
            task = asyncio.ensure_future(request.replay(token))
            task.add_done_callback(lambda t, f=request.future: _transfer(t, f))

    async def _fail(self, error: RefreshError, cause: Exception | None = None):
        log.warning("Token refresh failed: %s", cause or error)
        if cause is not None:
            error.__cause__ = cause
        try:
            await self._on_failure()
        finally:
            self._reject_all(error)

    def _reject_all(self, error: Exception):
        self._state = RefreshState.IDLE
        pending, self._queue = self._queue, deque()
        for request in pending:
            if not request.future.done():
                request.future.set_exception(error)
