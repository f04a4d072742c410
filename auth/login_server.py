"""Localhost receiver for the third-party sign-in redirect."""

import asyncio
import logging

from aiohttp import web

log = logging.getLogger(__name__)

CALLBACK_PATH = "/auth/callback"

_DONE_PAGE = "<html><body><h1>Signed in. You can close this tab.</h1></body></html>"


class LoginCallbackServer:
    """Catches access/refresh tokens from the provider redirect on 127.0.0.1.

    The tokens are unverified; pass them to ApiClient.verify_callback.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0):
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None
        self._tokens: asyncio.Future | None = None
        self.port: int | None = None

    @property
    def redirect_url(self) -> str:
        return f"http://{self._host}:{self.port}{CALLBACK_PATH}"

    async def start(self) -> int:
        self._tokens = asyncio.get_running_loop().create_future()
        app = web.Application()
        app.router.add_get(CALLBACK_PATH, self._on_callback)

        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        self.port = self._runner.addresses[0][1]
        log.info("Login callback server listening on port %d", self.port)
        return self.port

    async def _on_callback(self, request: web.Request) -> web.Response:
        access = request.query.get("access_token")
        refresh = request.query.get("refresh_token")
        if not access or not refresh:
            log.warning("Callback without tokens: %s", request.query.get("error", "no error given"))
            return web.Response(status=400, text="Missing tokens")

        if not self._tokens.done():
            self._tokens.set_result({"access_token": access, "refresh_token": refresh})
        return web.Response(text=_DONE_PAGE, content_type="text/html")

    async def wait_for_callback(self, timeout: float = 120.0) -> dict | None:
        """Tokens from the redirect, or None on timeout. Stops the server either way."""
        try:
            return await asyncio.wait_for(asyncio.shield(self._tokens), timeout)
        except asyncio.TimeoutError:
            log.warning("Login callback timed out")
            return None
        finally:
            await self.stop()

    async def stop(self):
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            log.info("Login callback server stopped")
