import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

DEFAULT_API_URL = "http://localhost:8081/api"


def _first_env(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


class Settings(BaseModel):
    api_url: str = DEFAULT_API_URL
    request_timeout: float = 30.0

    session_cookie_name: str = "auth-storage"
    session_cookie_max_age: int = 86400  # upper bound, token exp wins when sooner
    login_path: str = "/login"
    rehydrate_delay: float = 0.1

    page_limit: int = 12
    catalog_limit: int = 40
    admin_limit: int = 10

    latest_retry_attempts: int = 3
    latest_retry_delay: float = 1.0

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4.1-mini"
    classifier_url: str = "http://127.0.0.1:8080/batik"

    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000


def load_settings() -> Settings:
    """Build settings from the environment, reading `.env` first."""
    load_dotenv()
    values = {
        "api_url": _first_env("NEXT_PUBLIC_API_ROUTE", "NEXT_PUBLIC_API_URL", "API_URL"),
        "request_timeout": os.getenv("API_TIMEOUT"),
        "session_cookie_name": os.getenv("SESSION_COOKIE_NAME"),
        "session_cookie_max_age": os.getenv("SESSION_COOKIE_MAX_AGE"),
        "openai_api_key": _first_env("OPENAI_API_KEY", "GPT_KEY"),
        "openai_model": os.getenv("OPENAI_MODEL"),
        "classifier_url": os.getenv("BATIK_CLASSIFIER_URL"),
        "log_level": os.getenv("LOG_LEVEL"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
    }
    return Settings(**{k: v for k, v in values.items() if v is not None})
