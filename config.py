import os
from pathlib import Path
from pydantic_settings import BaseSettings
from functools import lru_cache

_ROOT = Path(__file__).parent
_ENV_FILE = _ROOT / ".env"

DEFAULT_API_URL = "http://localhost:8000"
DEFAULT_LOGIN_URL = "http://localhost:3000/login"


class Settings(BaseSettings):
    api_url: str = DEFAULT_API_URL
    request_timeout: float = 30.0
    refresh_timeout: float = 10.0   # kept below request_timeout
    login_url: str = DEFAULT_LOGIN_URL
    token_file: str = os.path.join(str(_ROOT), "config.json")
    session_check_interval: float = 30.0
    oauth_url: str = ""   # provider sign-in page; empty disables browser sign-in

    model_config = {
        "env_prefix": "DASHBOARD_",
        "env_file": str(_ENV_FILE),
        "env_file_encoding": "utf-8",
    }


@lru_cache
def get_settings() -> Settings:
    return Settings()
