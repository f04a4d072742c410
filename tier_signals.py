"""Tier/quota restriction signalling for the upgrade prompt."""

import logging
from dataclasses import dataclass
from typing import Callable

log = logging.getLogger(__name__)

DEFAULT_FEATURE = "API Requests"
DEFAULT_CURRENT_TIER = "free"
DEFAULT_REQUIRED_TIER = "basic"

_TIER_FIELDS = ("required_tier", "current_tier")
_TIER_CODES = {"tier_restricted", "upgrade_required", "rate_limited", "quota_exceeded"}

TierHandler = Callable[[str, str, str], None]


@dataclass(frozen=True)
class TierRestriction:
    feature: str
    current_tier: str
    required_tier: str


def tier_restriction(status: int, data) -> TierRestriction | None:
    """Classify a response as a tier/quota restriction.

    429 always is one. 403 only when the body says so, otherwise it is an
    ordinary authentication failure.
    """
    body = data if isinstance(data, dict) else {}
    if status == 403:
        code = body.get("code") or body.get("error")
        coded = isinstance(code, str) and code in _TIER_CODES
        if not coded and not any(f in body for f in _TIER_FIELDS):
            return None
    elif status != 429:
        return None
    return TierRestriction(
        feature=body.get("feature") or DEFAULT_FEATURE,
        current_tier=body.get("current_tier") or DEFAULT_CURRENT_TIER,
        required_tier=body.get("required_tier") or DEFAULT_REQUIRED_TIER,
    )


class TierSignalBroadcaster:
    def __init__(self):
        self._handlers: list[TierHandler] = []

    def subscribe(self, handler: TierHandler) -> Callable[[], None]:
        """Register handler; returns a callable that removes it again."""
        self._handlers.append(handler)

        def unsubscribe():
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    @property
    def has_subscribers(self) -> bool:
        return bool(self._handlers)

    def publish(self, restriction: TierRestriction):
        log.info(
            "Tier restriction: %s (%s → %s)",
            restriction.feature, restriction.current_tier, restriction.required_tier,
        )
        for handler in list(self._handlers):
            try:
                handler(restriction.feature, restriction.current_tier, restriction.required_tier)
            except Exception:
                log.exception("Tier signal handler failed")
