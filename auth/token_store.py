"""Access/refresh token storage on top of a key-value backend."""

import logging
from dataclasses import dataclass

from auth.storage import KeyValueStorage

log = logging.getLogger(__name__)

ACCESS_KEY = "access_token"
REFRESH_KEY = "refresh_token"


@dataclass(frozen=True)
class Credentials:
    access_token: str
    refresh_token: str | None = None


class TokenStore:
    def __init__(self, storage: KeyValueStorage):
        self._storage = storage

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    @property
    def access_token(self) -> str | None:
        return self._storage.get(ACCESS_KEY)

    @property
    def refresh_token(self) -> str | None:
        return self._storage.get(REFRESH_KEY)

    def get(self) -> Credentials | None:
        access = self.access_token
        if access is None:
            return None
        return Credentials(access, self.refresh_token)

    def set(self, credentials: Credentials):
        self._storage.update({
            ACCESS_KEY: credentials.access_token,
            REFRESH_KEY: credentials.refresh_token or None,
        })
        log.info("Tokens saved")

    def save(self, access_token: str, refresh_token: str | None):
        self.set(Credentials(access_token, refresh_token))

    def clear(self):
        self._storage.update({ACCESS_KEY: None, REFRESH_KEY: None})
        log.info("Tokens cleared")
