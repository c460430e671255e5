"""
Configuration for pagescrape using pydantic-settings.

Values come from keyword arguments, then ``PAGESCRAPE_*`` environment
variables (nested with ``__``, e.g. ``PAGESCRAPE_BROWSER__HEADLESS=false``),
then the defaults below.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class ParsingSettings(BaseModel):
    """Crawl defaults and retry tuning."""

    default_delay_ms: int = Field(
        default=1000, ge=0, description="Delay between pages in milliseconds."
    )
    default_max_pages: int = Field(
        default=1, ge=1, description="Pages crawled when a request omits it."
    )
    timeout_seconds: float = Field(
        default=30.0, gt=0, description="HTTP and navigation timeout."
    )
    retry_attempts: int = Field(
        default=3, ge=1, description="Attempts per page fetch."
    )
    retry_delay_seconds: float = Field(
        default=2.0, ge=0, description="Backoff before the second attempt."
    )
    max_retry_delay_seconds: float = Field(
        default=10.0, ge=0, description="Upper bound on any backoff delay."
    )
    backoff_factor: float = Field(default=2.0, ge=1)
    user_agent: str = Field(
        default="Mozilla/5.0 (compatible; pagescrape/0.1)",
        description="User-Agent header for HTTP backends.",
    )


class BrowserSettings(BaseModel):
    """Headless browser launch and interaction settings."""

    browser_type: Literal["chromium", "firefox", "webkit"] = "chromium"
    headless: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080
    locale: str = "en-US"
    user_agent: str | None = None
    post_navigation_wait_ms: int = Field(
        default=2000, ge=0, description="Settle time after goto()."
    )
    scroll_wait_ms: int = Field(
        default=2000, ge=0, description="Wait after each infinite scroll."
    )
    max_scrolls: int = Field(
        default=10, ge=1, description="Scroll cap for the initial scroll loop."
    )
    unchanged_scroll_limit: int = Field(
        default=3, ge=1, description="Unchanged heights that end scrolling."
    )
    spa_network_timeout_ms: int = 15000
    custom_wait_timeout_ms: int = 10000
    content_growth_timeout_ms: int = 10000


class LimitsSettings(BaseModel):
    """Hard bounds applied when validating requests."""

    max_url_length: int = 2048
    max_selectors_count: int = 50
    max_pages_limit: int = 1000


class ScrapeSettings(BaseSettings):
    """Top-level settings object."""

    parsing: ParsingSettings = Field(default_factory=ParsingSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    limits: LimitsSettings = Field(default_factory=LimitsSettings)
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="PAGESCRAPE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache(maxsize=1)
def get_settings() -> ScrapeSettings:
    """Return the process-wide settings, loaded once from the environment."""
    settings = ScrapeSettings()
    logger.debug(f"Loaded settings: {settings.model_dump()}")
    return settings
