"""Subscription manager — caches the account tier, tracks upgrade prompts."""

import logging
import time

from errors import ApiError
from tier_signals import TierRestriction

log = logging.getLogger(__name__)

# Tier assumed until the server says otherwise
_DEFAULT_TIER = "free"

# Cache TTL in seconds
_CACHE_TTL = 3600  # 1 hour


class SubscriptionManager:
    def __init__(self, api_client):
        self._api = api_client
        self._subscription: dict | None = None
        self._cache_time: float = 0.0
        self._pending_upgrade: TierRestriction | None = None
        self._unsubscribe = api_client.tier_signals.subscribe(self._on_tier_restricted)

    @property
    def tier(self) -> str:
        """Current tier. Offline or stale: last known value."""
        if self._subscription is None:
            return _DEFAULT_TIER
        return self._subscription.get("tier") or _DEFAULT_TIER

    @property
    def is_stale(self) -> bool:
        return time.monotonic() - self._cache_time >= _CACHE_TTL

    @property
    def subscription(self) -> dict | None:
        return self._subscription

    @property
    def pending_upgrade(self) -> TierRestriction | None:
        """Latest tier restriction reported by the server, until dismissed."""
        return self._pending_upgrade

    def dismiss_upgrade(self):
        self._pending_upgrade = None

    async def refresh(self, force: bool = False):
        """Fetch the current subscription and update the cache."""
        if not self._api.is_authenticated():
            return
        if not force and self._subscription is not None and not self.is_stale:
            return

        try:
            result = await self._api.get_current_subscription()
        except ApiError as e:
            log.warning("Failed to refresh subscription, keeping cached tier: %s", e)
            return
        if isinstance(result, dict):
            self._subscription = result
            self._cache_time = time.monotonic()
            log.info("Subscription cache refreshed: tier=%s status=%s", self.tier, result.get("status"))

    def close(self):
        self._unsubscribe()

    def _on_tier_restricted(self, feature: str, current_tier: str, required_tier: str):
        self._pending_upgrade = TierRestriction(feature, current_tier, required_tier)
