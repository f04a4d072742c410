"""Failures surfaced by ApiClient."""

from tier_signals import TierRestriction, tier_restriction


class ApiError(Exception):
    """Base class for every client-side API failure."""


class NetworkError(ApiError):
    """No response received (connection refused, timeout, reset)."""

    def __init__(self, method: str, path: str, cause: Exception):
        super().__init__(f"{method} {path}: {cause!r}")
        self.method = method
        self.path = path
        self.cause = cause


class HttpError(ApiError):
    """Server answered with a non-2xx status."""

    def __init__(self, status: int, data, request=None):
        target = f"{request.method} {request.path} " if request is not None else ""
        super().__init__(f"{target}→ {status}")
        self.status = status
        self.data = data
        self.request = request

    @property
    def tier(self) -> TierRestriction | None:
        return tier_restriction(self.status, self.data)

    @property
    def is_auth_failure(self) -> bool:
        return self.status in (401, 403) and self.tier is None


class RefreshRejected(ApiError):
    """Refresh endpoint refused the refresh token, or there was none to send."""
