"""
Application Configuration

Centralized configuration management using Pydantic settings.
Handles environment variables and crawler defaults.
"""

from typing import List, Optional
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    APP_NAME: str = "Job Crawler"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # Target site
    SEARCH_URL_TEMPLATE: str = "https://www.rozee.pk/job/jsearch/q/{keyword}"
    # Fixed user agent; a random one per session when unset
    USER_AGENT: Optional[str] = None
    # CSS selector the browser fetcher waits for after navigation
    LANDMARK_SELECTOR: Optional[str] = None
    PROXY_URL: Optional[str] = None

    # Crawling
    REQUEST_TIMEOUT_SECONDS: float = 30.0
    PAGE_READY_TIMEOUT_SECONDS: float = 15.0
    MAX_CONCURRENT_REQUESTS: int = 5
    MIN_DELAY_MS: int = 1000
    MAX_DELAY_MS: int = 2000
    MAX_RETRIES: int = 3
    TARGET_COUNT: int = 50
    MAX_PAGES: int = 5
    DESCRIPTION_MAX_CHARS: int = 4000

    # Path segments that never identify a job posting
    EXCLUDED_PATH_SEGMENTS: str = (
        "company,companies,employer,employers,login,signin,sign-in,signup,"
        "register,about,about-us,contact,contact-us,apply,blog,help,faq,"
        "privacy,terms,search,jsearch,account,password"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    def get_excluded_segments(self) -> List[str]:
        """Get excluded path segments as a list."""
        return [
            segment.strip().lower()
            for segment in self.EXCLUDED_PATH_SEGMENTS.split(",")
            if segment.strip()
        ]


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
