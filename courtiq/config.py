from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

DATA_DIR = Path(__file__).parent / "data"


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    data_dir: Path = Field(default_factory=lambda: DATA_DIR)
    database_url: str = Field(
        default_factory=lambda: _env_str("COURTIQ_DATABASE_URL") or f"sqlite:///{DATA_DIR / 'courtiq.db'}"
    )

    # Shared secret for the cron endpoints. Empty means every call is rejected.
    cron_secret: str = Field(default_factory=lambda: _env_str("CRON_SECRET"))

    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    )
    request_timeout_seconds: float = Field(default_factory=lambda: _env_float("COURTIQ_REQUEST_TIMEOUT", 10.0))
    itf_timeout_seconds: float = 15.0
    request_delay_seconds: float = Field(default_factory=lambda: _env_float("COURTIQ_REQUEST_DELAY", 0.5))

    max_list_pages: int = Field(default_factory=lambda: _env_int("COURTIQ_MAX_LIST_PAGES", 10))
    min_list_rows: int = Field(default_factory=lambda: _env_int("COURTIQ_MIN_LIST_ROWS", 3))
    max_list_players: int = Field(default_factory=lambda: _env_int("COURTIQ_MAX_LIST_PLAYERS", 200))

    llm_provider: str = Field(default_factory=lambda: _env_str("LLM_PROVIDER", "anthropic"))
    llm_model: str = Field(default_factory=lambda: _env_str("LLM_MODEL"))

    # Origins allowed to call the API from a browser (the capture extension runs on
    # tennisrecruiting.net pages).
    cors_origins: list[str] = Field(default_factory=lambda: _env_list("COURTIQ_CORS_ORIGINS", ["*"]))

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_directories()
    return settings
