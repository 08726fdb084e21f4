"""Configuration for the content archiver using pydantic-settings.

All settings are driven by environment variables with the CONTENT_ARCHIVE_
prefix, e.g. ``CONTENT_ARCHIVE_CONNECT_TIMEOUT=15``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

USER_AGENT_PRODUCT = "ContentArchiver/1.0"


@dataclass(frozen=True)
class FetchConfig:
    """HTTP client settings injected into the fetcher."""

    connect_timeout: float
    read_timeout: float
    max_redirects: int
    max_bytes: int
    user_agent: str


class Settings(BaseSettings):
    """Archiver configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CONTENT_ARCHIVE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = True

    connect_timeout: float = 10.0
    read_timeout: float = 15.0

    max_redirects: int = 5
    max_content_size: int = 10 * 1024 * 1024

    max_retries: int = 3
    retry_backoff_base: float = 2.0
    retry_backoff_max: float = 60.0

    user_agent_contact_url: str = ""

    store_dir: Path = Path("archives")

    @property
    def user_agent(self) -> str:
        """User-Agent header value, e.g. ``ContentArchiver/1.0 (+https://...)``."""
        if self.user_agent_contact_url:
            return f"{USER_AGENT_PRODUCT} (+{self.user_agent_contact_url})"
        return USER_AGENT_PRODUCT

    def fetch_config(self) -> FetchConfig:
        return FetchConfig(
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
            max_redirects=self.max_redirects,
            max_bytes=self.max_content_size,
            user_agent=self.user_agent,
        )

    def ensure_dirs(self) -> None:
        """Create the archive store directory if it doesn't exist."""
        self.store_dir.mkdir(parents=True, exist_ok=True)
        logger.debug("Ensured directory: %s", self.store_dir)


def get_settings() -> Settings:
    """Load settings from environment and ensure the store directory exists."""
    s = Settings()
    s.ensure_dirs()
    return s
