"""Shared fixtures: in-memory token store and a fake dashboard backend."""

import asyncio
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from api_client import ApiClient
from auth.storage import MemoryStorage
from auth.token_store import TokenStore

LOGIN_URL = "http://dashboard.test/login"


class FakeBackend:
    """Backend with single-use refresh tokens, like the real one."""

    def __init__(self):
        self.access_token = "access-1"
        self.refresh_token = "refresh-1"
        self.generation = 1
        self.rotate = True
        self.refresh_delay = 0.0
        self.refresh_status = 200
        self.refresh_calls = 0
        self.refresh_auth_headers: list[str | None] = []
        self.seen: list[tuple[str, str | None]] = []
        self.url = ""

        self.app = web.Application()
        r = self.app.router
        r.add_post("/api/v1/auth/refresh/", self.refresh)
        r.add_post("/api/v1/auth/login/", self.login)
        r.add_post("/api/v1/auth/register/", self.register)
        r.add_get("/api/v1/profiles/", self.profiles)
        r.add_get("/api/v1/profiles/{profile_id}/", self.profile)
        r.add_get("/api/v1/profiles/{profile_id}/security_settings/", self.security_settings)
        r.add_get("/api/v1/profiles/{profile_id}/denylist/", self.tier_forbidden)
        r.add_get("/api/v1/analytics/{profile_id}/overview/", self.rate_limited)
        r.add_get("/api/v1/invoices/", self.always_unauthorized)
        r.add_get("/api/v1/subscriptions/usage/", self.usage_summary)

    def _authorized(self, request: web.Request) -> bool:
        header = request.headers.get("Authorization")
        self.seen.append((request.path, header))
        return header == f"Bearer {self.access_token}"

    async def refresh(self, request: web.Request):
        self.refresh_calls += 1
        self.refresh_auth_headers.append(request.headers.get("Authorization"))
        body = await request.json()
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_status != 200:
            return web.json_response({"detail": "refresh rejected"}, status=self.refresh_status)
        if body.get("refresh_token") != self.refresh_token:
            return web.json_response({"detail": "invalid refresh token"}, status=401)

        self.generation += 1
        self.access_token = f"access-{self.generation}"
        payload = {"access_token": self.access_token}
        if self.rotate:
            self.refresh_token = f"refresh-{self.generation}"
            payload["refresh_token"] = self.refresh_token
        return web.json_response(payload)

    async def login(self, request: web.Request):
        self.seen.append((request.path, request.headers.get("Authorization")))
        body = await request.json()
        if body.get("password") != "secret":
            return web.json_response({"detail": "bad credentials"}, status=401)
        return web.json_response({
            "user": {"id": "u1", "email": body["email"]},
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
        })

    async def register(self, request: web.Request):
        body = await request.json()
        return web.json_response({"user": {"id": "u2", "email": body["email"]}})

    async def profiles(self, request: web.Request):
        if not self._authorized(request):
            return web.json_response({"detail": "token expired"}, status=401)
        return web.json_response([{"id": 1, "display_name": "Kid"}])

    async def profile(self, request: web.Request):
        if not self._authorized(request):
            return web.json_response({"detail": "token expired"}, status=401)
        return web.json_response({"id": int(request.match_info["profile_id"])})

    async def security_settings(self, request: web.Request):
        if not self._authorized(request):
            return web.json_response({"detail": "token expired"}, status=401)
        return web.json_response({"data": {"googleSafeBrowsing": True}})

    async def usage_summary(self, request: web.Request):
        if not self._authorized(request):
            return web.Response(status=401, body=b"\xff\xfe\xfa", content_type="application/octet-stream")
        return web.json_response({"queries": 42})

    async def tier_forbidden(self, request: web.Request):
        self.seen.append((request.path, request.headers.get("Authorization")))
        return web.json_response({
            "detail": "Upgrade required",
            "feature": "Custom lists",
            "current_tier": "free",
            "required_tier": "pro",
        }, status=403)

    async def rate_limited(self, request: web.Request):
        self.seen.append((request.path, request.headers.get("Authorization")))
        return web.json_response({"detail": "Too many requests"}, status=429)

    async def always_unauthorized(self, request: web.Request):
        self.seen.append((request.path, request.headers.get("Authorization")))
        return web.json_response({"detail": "nope"}, status=401)


@pytest.fixture
def token_store():
    return TokenStore(MemoryStorage())


@pytest.fixture
def navigate():
    return MagicMock()


@pytest_asyncio.fixture
async def backend():
    fake = FakeBackend()
    server = TestServer(fake.app)
    await server.start_server()
    fake.url = f"http://{server.host}:{server.port}"
    yield fake
    await server.close()


@pytest_asyncio.fixture
async def client(backend, token_store, navigate):
    api = ApiClient(
        backend.url, token_store,
        login_url=LOGIN_URL, navigate=navigate,
        request_timeout=5.0, refresh_timeout=2.0,
    )
    yield api
    await api.close()
