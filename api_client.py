"""Central HTTP client for the dashboard backend. Bearer auth with coordinated refresh."""

import asyncio
import logging
from dataclasses import dataclass, field, replace

import aiohttp

from auth.refresh import RefreshCoordinator
from auth.session import SessionTerminator
from auth.token_store import Credentials, TokenStore
from config import DEFAULT_LOGIN_URL
from errors import HttpError, NetworkError, RefreshRejected
from tier_signals import TierSignalBroadcaster

log = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
LOGIN_PATH = f"{API_PREFIX}/auth/login/"
REGISTER_PATH = f"{API_PREFIX}/auth/register/"
REFRESH_PATH = f"{API_PREFIX}/auth/refresh/"
VERIFY_CALLBACK_PATH = f"{API_PREFIX}/auth/verify_callback/"

# Endpoints that hand out credentials: no bearer header, no refresh on failure.
_CREDENTIAL_ENDPOINTS = ("/auth/login", "/auth/register", "/auth/refresh", "/auth/verify_callback")


@dataclass
class ApiRequest:
    method: str
    path: str
    json: object = None
    params: dict | None = None
    headers: dict[str, str] = field(default_factory=dict)
    retried: bool = False

    @property
    def issues_credentials(self) -> bool:
        return any(p in self.path for p in _CREDENTIAL_ENDPOINTS)

    def replay(self, access_token: str) -> "ApiRequest":
        """Copy for the one post-refresh attempt, carrying the new token."""
        headers = {k: v for k, v in self.headers.items() if k.lower() != "authorization"}
        headers["Authorization"] = f"Bearer {access_token}"
        return replace(self, headers=headers, retried=True)


@dataclass
class ApiResponse:
    status: int
    data: object
    request: ApiRequest


class ApiClient:
    def __init__(
        self,
        server_url: str,
        token_store: TokenStore,
        *,
        login_url: str = DEFAULT_LOGIN_URL,
        request_timeout: float = 30.0,
        refresh_timeout: float = 10.0,
        navigate=None,
        tier_signals: TierSignalBroadcaster | None = None,
    ):
        self._base = server_url.rstrip("/")
        self._tokens = token_store
        self._session: aiohttp.ClientSession | None = None
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._refresh_timeout = aiohttp.ClientTimeout(total=refresh_timeout)
        self._default_headers: dict[str, str] = {"Accept": "application/json"}
        if token_store.access_token:
            self._default_headers["Authorization"] = f"Bearer {token_store.access_token}"
        self.tier_signals = tier_signals or TierSignalBroadcaster()
        self._terminator = SessionTerminator(
            token_store, login_url, self._default_headers, navigate,
        )
        self._refresher = RefreshCoordinator(token_store, self._post_refresh, self._terminator)

    @classmethod
    def from_settings(cls, settings, token_store: TokenStore, **kwargs) -> "ApiClient":
        return cls(
            settings.api_url,
            token_store,
            login_url=settings.login_url,
            request_timeout=settings.request_timeout,
            refresh_timeout=settings.refresh_timeout,
            **kwargs,
        )

    @property
    def refresher(self) -> RefreshCoordinator:
        return self._refresher

    @property
    def terminator(self) -> SessionTerminator:
        return self._terminator

    @property
    def default_headers(self) -> dict[str, str]:
        return dict(self._default_headers)

    async def _ensure_session(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    # ── Dispatch ───────────────────────────────────────────

    async def send(self, request: ApiRequest) -> ApiResponse:
        """Dispatch request; on an expired token refresh once and replay.

        Raises HttpError for non-2xx answers, NetworkError when no answer
        arrives and RefreshRejected when the session could not be recovered.
        """
        try:
            return await self._dispatch(request)
        except HttpError as e:
            if not self._needs_refresh(request, e):
                raise
            log.info("API %s %s → %d, attempting token refresh", request.method, request.path, e.status)

        access_token = await self._refresher.fresh_access_token()
        self._default_headers["Authorization"] = f"Bearer {access_token}"
        return await self._dispatch(request.replay(access_token))

    @staticmethod
    def _needs_refresh(request: ApiRequest, error: HttpError) -> bool:
        return error.is_auth_failure and not request.retried and not request.issues_credentials

    async def _dispatch(self, request: ApiRequest) -> ApiResponse:
        await self._ensure_session()
        headers = dict(self._default_headers)
        headers.pop("Authorization", None)
        if not request.issues_credentials:
            token = self._tokens.access_token
            if token:
                headers["Authorization"] = f"Bearer {token}"
            else:
                log.debug("No access token for %s %s", request.method, request.path)
        headers.update(request.headers)

        url = f"{self._base}{request.path}"
        log.debug("API → %s %s%s", request.method, request.path, " (retry)" if request.retried else "")
        try:
            async with self._session.request(
                request.method, url, json=request.json, params=request.params,
                headers=headers, timeout=self._timeout,
            ) as resp:
                status = resp.status
                data = await _read_body(resp)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.error("API %s %s error: %r", request.method, request.path, e)
            raise NetworkError(request.method, request.path, e) from e

        if status >= 400:
            error = HttpError(status, data, request)
            log.error("API %s %s → %d: %s", request.method, request.path, status, str(data)[:200])
            restriction = error.tier
            if restriction is not None:
                self.tier_signals.publish(restriction)
            raise error

        log.debug("API ← %s %s %d", request.method, request.path, status)
        return ApiResponse(status, data, request)

    async def _post_refresh(self, refresh_token: str) -> Credentials:
        # Straight to the session: going through send() would re-enter refresh handling.
        await self._ensure_session()
        try:
            async with self._session.post(
                f"{self._base}{REFRESH_PATH}",
                json={"refresh_token": refresh_token},
                headers={"Accept": "application/json"},
                timeout=self._refresh_timeout,
            ) as resp:
                if not 200 <= resp.status < 300:
                    raise RefreshRejected(f"Refresh endpoint returned {resp.status}")
                data = await _read_body(resp)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RefreshRejected(f"Refresh request failed: {e!r}") from e

        if not isinstance(data, dict) or not data.get("access_token"):
            raise RefreshRejected("Refresh response carried no access token")
        return Credentials(data["access_token"], data.get("refresh_token"))

    async def _request(self, method: str, path: str, *, json=None, params=None):
        response = await self.send(ApiRequest(method, path, json=json, params=params))
        return response.data

    # ── Auth ───────────────────────────────────────────────

    def set_auth_tokens(self, access_token: str, refresh_token: str | None):
        self._tokens.save(access_token, refresh_token)
        self._default_headers["Authorization"] = f"Bearer {access_token}"
        self._terminator.reset()

    def clear_auth_tokens(self):
        self._tokens.clear()
        self._default_headers.pop("Authorization", None)

    def is_authenticated(self) -> bool:
        return self._tokens.is_authenticated

    async def login(self, email: str, password: str) -> dict:
        data = await self._request("POST", LOGIN_PATH, json={"email": email, "password": password})
        self.set_auth_tokens(data["access_token"], data["refresh_token"])
        return data

    async def register(self, email: str, password: str) -> dict:
        data = await self._request("POST", REGISTER_PATH, json={"email": email, "password": password})
        # Unconfirmed accounts come back without tokens.
        if data.get("access_token") and data.get("refresh_token"):
            self.set_auth_tokens(data["access_token"], data["refresh_token"])
        return data

    async def verify_callback(self, access_token: str, refresh_token: str) -> dict:
        data = await self._request("POST", VERIFY_CALLBACK_PATH, json={
            "access_token": access_token,
            "refresh_token": refresh_token,
        })
        self.set_auth_tokens(data["access_token"], data["refresh_token"])
        return data

    async def refresh_tokens(self, refresh_token: str | None = None) -> dict:
        """Manual refresh; expired tokens on ordinary calls are handled by send()."""
        refresh_token = refresh_token or self._tokens.refresh_token
        data = await self._request("POST", REFRESH_PATH, json={"refresh_token": refresh_token})
        self.set_auth_tokens(data["access_token"], data.get("refresh_token") or refresh_token)
        return data

    def logout(self):
        self.clear_auth_tokens()

    # ── Profiles ───────────────────────────────────────────

    async def get_profiles(self) -> list[dict]:
        return await self._request("GET", f"{API_PREFIX}/profiles/")

    async def get_profile(self, profile_id: int) -> dict:
        return await self._request("GET", f"{API_PREFIX}/profiles/{profile_id}/")

    async def create_profile(self, display_name: str, age_preset: str, is_router_level: bool = False) -> dict:
        return await self._request("POST", f"{API_PREFIX}/profiles/", json={
            "display_name": display_name,
            "age_preset": age_preset,
            "is_router_level": is_router_level,
        })

    async def update_profile(self, profile_id: int, profile: dict) -> dict:
        return await self._request("PUT", f"{API_PREFIX}/profiles/{profile_id}/", json=profile)

    async def patch_profile(self, profile_id: int, changes: dict) -> dict:
        return await self._request("PATCH", f"{API_PREFIX}/profiles/{profile_id}/", json=changes)

    async def delete_profile(self, profile_id: int):
        await self._request("DELETE", f"{API_PREFIX}/profiles/{profile_id}/")

    # ── Settings ───────────────────────────────────────────

    async def _get_enveloped(self, path: str) -> dict:
        data = await self._request("GET", path)
        return data.get("data") if isinstance(data, dict) else data

    async def get_parental_controls(self, profile_id: int) -> dict:
        return await self._get_enveloped(f"{API_PREFIX}/profiles/{profile_id}/parental_controls/")

    async def update_parental_controls(self, profile_id: int, settings: dict) -> dict:
        return await self._request(
            "PATCH", f"{API_PREFIX}/profiles/{profile_id}/parental_controls/", json=settings,
        )

    async def get_recreation_schedule(self, profile_id: int) -> dict:
        return await self._request("GET", f"{API_PREFIX}/profiles/{profile_id}/parental_controls/recreation/")

    async def update_recreation_schedule(self, profile_id: int, schedule: dict) -> dict:
        return await self._request(
            "PATCH", f"{API_PREFIX}/profiles/{profile_id}/parental_controls/recreation/", json=schedule,
        )

    async def get_security_settings(self, profile_id: int) -> dict:
        return await self._get_enveloped(f"{API_PREFIX}/profiles/{profile_id}/security_settings/")

    async def update_security_settings(self, profile_id: int, settings: dict) -> dict:
        return await self._request(
            "PATCH", f"{API_PREFIX}/profiles/{profile_id}/security_settings/", json=settings,
        )

    async def get_privacy_settings(self, profile_id: int) -> dict:
        return await self._get_enveloped(f"{API_PREFIX}/profiles/{profile_id}/privacy_settings/")

    async def update_privacy_settings(self, profile_id: int, settings: dict) -> dict:
        return await self._request(
            "PATCH", f"{API_PREFIX}/profiles/{profile_id}/privacy_settings/", json=settings,
        )

    # ── Domain lists ───────────────────────────────────────

    async def get_domain_list(self, profile_id: int, kind: str) -> dict:
        """kind is "allowlist" or "denylist"."""
        return await self._request("GET", f"{API_PREFIX}/profiles/{profile_id}/{kind}/")

    async def add_to_domain_list(self, profile_id: int, kind: str, domains: list[str]) -> dict:
        return await self._request("POST", f"{API_PREFIX}/profiles/{profile_id}/{kind}/", json={"domains": domains})

    async def remove_from_domain_list(self, profile_id: int, kind: str, domains: list[str]) -> dict:
        return await self._request("DELETE", f"{API_PREFIX}/profiles/{profile_id}/{kind}/", json={"domains": domains})

    # ── Analytics ──────────────────────────────────────────

    async def get_analytics(self, profile_id: int, report: str, *, time_range: str | None = "1d", limit: int | None = None):
        """report: overview, domains, devices, timeline, trackers, logs, export_logs."""
        params = {}
        if time_range is not None and report not in ("logs", "export_logs"):
            params["time_range"] = time_range
        if limit is not None:
            params["limit"] = limit
        return await self._request("GET", f"{API_PREFIX}/analytics/{profile_id}/{report}/", params=params or None)

    # ── Subscriptions ──────────────────────────────────────

    async def get_subscription_tiers(self) -> list[dict]:
        data = await self._request("GET", f"{API_PREFIX}/subscriptions/tiers/")
        return [
            {
                "id": tier_id,
                "name": tier.get("name"),
                "description": tier.get("description"),
                "price_monthly": tier.get("price"),
                "price_yearly": (tier.get("price") or 0) * 12,
                "features": tier.get("features", []),
                "max_profiles": tier.get("profile_limit"),
                "analytics_retention": tier.get("analytics_days"),
            }
            for tier_id, tier in (data or {}).items()
        ]

    async def get_current_subscription(self) -> dict:
        return await self._request("GET", f"{API_PREFIX}/subscriptions/current/")

    async def create_subscription(self, subscription: dict) -> dict:
        return await self._request("POST", f"{API_PREFIX}/subscriptions/", json=subscription)

    async def cancel_subscription(self, subscription_id: str) -> dict:
        return await self._request("POST", f"{API_PREFIX}/subscriptions/{subscription_id}/cancel/")

    async def cancel_pending_subscription(self) -> dict:
        return await self._request("POST", f"{API_PREFIX}/subscriptions/cancel-pending/")

    async def get_payment_history(self, subscription_id: str) -> list[dict]:
        return await self._request("GET", f"{API_PREFIX}/subscriptions/{subscription_id}/payment_history/")

    async def get_usage_summary(self) -> dict:
        return await self._request("GET", f"{API_PREFIX}/subscriptions/usage/")

    async def get_invoices(self) -> list[dict]:
        return await self._request("GET", f"{API_PREFIX}/invoices/")

    async def get_invoice(self, invoice_id: str) -> dict:
        return await self._request("GET", f"{API_PREFIX}/invoices/{invoice_id}/")

    # ── Reference data ─────────────────────────────────────

    async def get_nextdns_details(self, profile_id: int) -> dict:
        return await self._request("GET", f"{API_PREFIX}/profiles/{profile_id}/nextdns_details/")

    async def get_reference_data(self) -> dict:
        return await self._request("GET", f"{API_PREFIX}/profiles/reference_data/")


async def _read_body(resp: aiohttp.ClientResponse):
    if resp.status == 204:
        return None
    try:
        return await resp.json(content_type=None)
    except ValueError:
        return await resp.text(errors="replace")
