"""Single-flight token refresh shared by every request that hits an expired token."""

import asyncio
import logging
from typing import Awaitable, Callable

from auth.session import SessionTerminator
from auth.token_store import Credentials, TokenStore
from errors import RefreshRejected

log = logging.getLogger(__name__)

# Takes the current refresh token, returns the new credentials.
# refresh_token on the result may be None when the server does not rotate it.
RefreshCall = Callable[[str], Awaitable[Credentials]]


class RefreshCoordinator:
    """At most one refresh in flight; everyone else waits for its outcome.

    Every caller, the one that starts the refresh included, waits on its own
    future in ``_subscribers``. ``refreshing`` is flipped before anything is
    awaited, so a task that runs afterwards queues instead of sending a second
    refresh with a token that is about to be rotated away. The refresh itself
    runs in its own task: a caller that stops waiting does not abort it.
    """

    def __init__(
        self,
        token_store: TokenStore,
        refresh_call: RefreshCall,
        terminator: SessionTerminator,
    ):
        self._tokens = token_store
        self._refresh_call = refresh_call
        self._terminator = terminator
        self._refreshing = False
        self._subscribers: list[asyncio.Future] = []
        self._task: asyncio.Task | None = None

    @property
    def refreshing(self) -> bool:
        return self._refreshing

    @property
    def waiting(self) -> int:
        return len(self._subscribers)

    async def fresh_access_token(self) -> str:
        """Return a new access token once the shared refresh completes.

        Raises RefreshRejected when the session cannot be recovered; by then
        the store is cleared and the terminator has run.
        """
        fut = asyncio.get_running_loop().create_future()
        self._subscribers.append(fut)
        if self._refreshing:
            log.debug("Refresh in flight, queued (%d waiting)", len(self._subscribers))
        else:
            self._refreshing = True
            self._task = asyncio.ensure_future(self._run())
            self._task.add_done_callback(self._on_task_done)
        return await fut

    async def _run(self):
        try:
            credentials = await self._refresh()
        except RefreshRejected as e:
            self._fail(e)
        except Exception as e:
            log.debug("Refresh call raised", exc_info=True)
            self._fail(RefreshRejected(str(e) or type(e).__name__))
        else:
            self._succeed(credentials.access_token)

    def _on_task_done(self, task: asyncio.Task):
        if task is self._task:
            self._task = None
        if task.cancelled():
            self._abandon()

    async def _refresh(self) -> Credentials:
        refresh_token = self._tokens.refresh_token
        if not refresh_token:
            raise RefreshRejected("No refresh token available")

        log.info("Refreshing access token")
        issued = await self._refresh_call(refresh_token)
        # Rotation is optional; keep the old refresh token when none comes back.
        credentials = Credentials(issued.access_token, issued.refresh_token or refresh_token)
        self._tokens.set(credentials)
        return credentials

    def _succeed(self, access_token: str):
        subscribers, self._subscribers = self._subscribers, []
        log.info("Token refreshed, replaying %d request(s)", len(subscribers))
        for fut in subscribers:
            if not fut.done():
                fut.set_result(access_token)
        self._refreshing = False

    def _abandon(self):
        """Refresh task cancelled: release the waiters, leave the session alone."""
        subscribers, self._subscribers = self._subscribers, []
        log.warning("Token refresh cancelled (%d request(s) dropped)", len(subscribers))
        for fut in subscribers:
            if not fut.done():
                fut.set_exception(RefreshRejected("Refresh cancelled"))
        self._refreshing = False

    def _fail(self, error: RefreshRejected):
        subscribers, self._subscribers = self._subscribers, []
        log.warning("Token refresh failed: %s (%d request(s) dropped)", error, len(subscribers))
        try:
            for fut in subscribers:
                if not fut.done():
                    fut.set_exception(RefreshRejected(*error.args))
            self._tokens.clear()
            self._terminator.terminate()
        finally:
            self._refreshing = False
