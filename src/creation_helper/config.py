"""Client configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("http://localhost:8000/api"),
        validation_alias=AliasChoices("CREATION_HELPER_BACKEND_URL", "backend_url"),
    )
    # None keeps a round trip open until it resolves or the user aborts.
    request_timeout: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("CREATION_HELPER_TIMEOUT", "request_timeout"),
        gt=0,
    )
    connect_timeout: float = Field(
        default=10.0,
        validation_alias=AliasChoices(
            "CREATION_HELPER_CONNECT_TIMEOUT", "connect_timeout"
        ),
        gt=0,
    )
    draft_history_limit: Optional[int] = Field(
        default=None,
        ge=1,
        validation_alias=AliasChoices("DRAFT_HISTORY_LIMIT", "draft_history_limit"),
    )
    smart_tool_selection: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "CREATION_HELPER_SMART_TOOL_SELECTION",
            "smart_tool_selection",
        ),
    )
    logging_settings_path: Path = Field(
        default_factory=lambda: Path("logging_settings.conf"),
        validation_alias=AliasChoices(
            "LOGGING_SETTINGS_PATH", "logging_settings_path"
        ),
    )

    @property
    def resolved_logging_settings_path(self) -> Path:
        path = self.logging_settings_path
        if not path.is_absolute():
            path = PROJECT_ROOT / path
        return path


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["PROJECT_ROOT", "Settings", "get_settings"]
