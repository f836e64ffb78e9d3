import logging
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent
TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"


class Settings(BaseSettings):
    """Runtime configuration, read from WELLNESS_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="WELLNESS_", env_file=".env", extra="ignore")

    database_url: str = f"sqlite+aiosqlite:///{BASE_DIR / 'data' / 'app.db'}"
    secret_key: str = "change-me-in-prod"
    slot_minutes: int = 30
    log_level: str = "INFO"

    # Bootstrap administrator
    admin_email: str = "admin@bienestar.local"
    admin_password: str = "admin123"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level.upper())
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    root.addHandler(handler)
    root.setLevel(level.upper())
