import asyncio
import logging
import webbrowser
from urllib.parse import urlencode

from config import get_settings
from auth.login_server import LoginCallbackServer
from auth.storage import JsonFileStorage
from auth.token_store import TokenStore
from api_client import ApiClient
from errors import ApiError
from modules.subscription import SubscriptionManager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
log = logging.getLogger(__name__)


async def sign_in_via_browser(api_client: ApiClient, oauth_url: str) -> bool:
    """Open the provider sign-in page and verify the tokens it redirects back with."""
    server = LoginCallbackServer()
    await server.start()
    webbrowser.open(f"{oauth_url}?{urlencode({'redirect_to': server.redirect_url})}")

    data = await server.wait_for_callback(timeout=120)
    if not data:
        return False
    try:
        result = await api_client.verify_callback(data["access_token"], data["refresh_token"])
    except ApiError as e:
        log.error("Callback verification failed: %s", e)
        return False
    log.info("Signed in as %s", result.get("user", {}).get("email"))
    return True


async def session_check_loop(api_client: ApiClient, sub_manager: SubscriptionManager, interval: float):
    """Periodically touch the backend so an expired token is refreshed early."""
    while True:
        if api_client.is_authenticated():
            try:
                profiles = await api_client.get_profiles()
                log.info("Session alive, %d profile(s)", len(profiles or []))
                await sub_manager.refresh()
                if sub_manager.pending_upgrade:
                    upgrade = sub_manager.pending_upgrade
                    log.warning(
                        "Upgrade needed for %s: %s → %s",
                        upgrade.feature, upgrade.current_tier, upgrade.required_tier,
                    )
                    sub_manager.dismiss_upgrade()
            except ApiError as e:
                log.warning("Session check failed: %s", e)
        else:
            log.info("Not authenticated")
        await asyncio.sleep(interval)


async def run():
    settings = get_settings()
    token_store = TokenStore(JsonFileStorage(settings.token_file))
    api_client = ApiClient.from_settings(settings, token_store)
    sub_manager = SubscriptionManager(api_client)
    try:
        if not api_client.is_authenticated() and settings.oauth_url:
            await sign_in_via_browser(api_client, settings.oauth_url)
        await session_check_loop(api_client, sub_manager, settings.session_check_interval)
    finally:
        sub_manager.close()
        await api_client.close()


if __name__ == "__main__":
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass
