"""Forced logout: wipe local session state and hard-redirect to login."""

import logging
import webbrowser
from typing import Callable

from auth.token_store import TokenStore

log = logging.getLogger(__name__)


class SessionTerminator:
    def __init__(
        self,
        token_store: TokenStore,
        login_url: str,
        default_headers: dict[str, str],
        navigate: Callable[[str], object] | None = None,
    ):
        self._tokens = token_store
        self._login_url = login_url
        self._headers = default_headers
        self._navigate = navigate or webbrowser.open
        self._terminated = False

    @property
    def terminated(self) -> bool:
        return self._terminated

    def terminate(self):
        """Clear credentials and open the login entry point. No-op if already done."""
        if self._terminated:
            return
        self._terminated = True
        self._tokens.clear()
        self._headers.pop("Authorization", None)
        log.warning("Session terminated, redirecting to %s", self._login_url)
        try:
            self._navigate(self._login_url)
        except Exception:
            log.exception("Redirect to %s failed", self._login_url)

    def reset(self):
        """Arm again after a fresh login."""
        self._terminated = False
