"""
Base Scraper Types

Shared data structures for the crawl pipeline: crawl tasks, the normalized
job record, extraction failures and the per-run crawl configuration.
"""

from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
from dataclasses import dataclass, field, replace
from enum import Enum
from urllib.parse import quote

from bs4 import BeautifulSoup

from job_crawler.core.config import Settings, get_settings
from job_crawler.core.exceptions import ConfigurationError
from job_crawler.scrapers.date_filter import DateWindow

# Parsed HTML document handed between pipeline stages
ParsedDocument = BeautifulSoup

NOT_SPECIFIED = "Not specified"
DEFAULT_LOCATION = "Pakistan"
UNKNOWN_DATE = "Unknown"
NO_DESCRIPTION = "No description found"

MISSING_REQUIRED_FIELD = "missing-required-field"


class ScraperType(Enum):
    """Fetch strategies available."""
    HTTP_ONLY = "http_only"
    SELENIUM = "selenium"


class TaskKind(Enum):
    """Kind of page a crawl task points at."""
    LISTING = "listing"
    DETAIL = "detail"


@dataclass(frozen=True)
class CrawlTask:
    """A unit of crawl work. Consumed exactly once by the driver."""

    url: str
    kind: TaskKind
    page_index: int = 1


@dataclass(frozen=True)
class JobRecord:
    """Normalized job record handed to the sink."""

    url: str
    title: str
    company: str
    location: str = DEFAULT_LOCATION
    salary: str = NOT_SPECIFIED
    job_type: str = NOT_SPECIFIED
    category: str = NOT_SPECIFIED
    experience: str = NOT_SPECIFIED
    date_posted: str = UNKNOWN_DATE
    description: str = NO_DESCRIPTION
    scraped_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Output shape of a record, keyed the way the dataset is consumed."""
        return {
            "url": self.url,
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "salary": self.salary,
            "jobType": self.job_type,
            "category": self.category,
            "experience": self.experience,
            "datePosted": self.date_posted,
            "description": self.description,
            "scrapedAt": self.scraped_at.isoformat(),
        }


@dataclass(frozen=True)
class ExtractionFailure:
    """Returned instead of a record when required fields are missing."""

    url: str
    missing_fields: List[str]
    reason: str = MISSING_REQUIRED_FIELD


@dataclass
class CrawlConfig:
    """Configuration for a single crawl run."""

    seeds: List[str] = field(default_factory=list)
    keyword: Optional[str] = None
    search_url_template: str = "https://www.rozee.pk/job/jsearch/q/{keyword}"

    target_count: int = 50
    max_pages: int = 5
    collect_details: bool = True

    min_delay_ms: int = 1000
    max_delay_ms: int = 2000
    max_retries: int = 3
    concurrency: int = 5

    request_timeout: float = 30.0
    page_ready_timeout: float = 15.0
    description_max_chars: int = 4000

    date_filter: DateWindow = DateWindow.ALL
    excluded_segments: Optional[List[str]] = None

    scraper_type: ScraperType = ScraperType.HTTP_ONLY
    proxy_url: Optional[str] = None
    user_agent: Optional[str] = None
    landmark_selector: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides) -> "CrawlConfig":
        """
        Build a run configuration from application settings.

        Args:
            settings: Application settings, defaults to the cached settings
            **overrides: Field values taking precedence over settings

        Returns:
            CrawlConfig: Run configuration
        """
        settings = settings or get_settings()
        config = cls(
            search_url_template=settings.SEARCH_URL_TEMPLATE,
            target_count=settings.TARGET_COUNT,
            max_pages=settings.MAX_PAGES,
            min_delay_ms=settings.MIN_DELAY_MS,
            max_delay_ms=settings.MAX_DELAY_MS,
            max_retries=settings.MAX_RETRIES,
            concurrency=settings.MAX_CONCURRENT_REQUESTS,
            request_timeout=settings.REQUEST_TIMEOUT_SECONDS,
            page_ready_timeout=settings.PAGE_READY_TIMEOUT_SECONDS,
            description_max_chars=settings.DESCRIPTION_MAX_CHARS,
            excluded_segments=settings.get_excluded_segments(),
            proxy_url=settings.PROXY_URL,
            user_agent=settings.USER_AGENT,
            landmark_selector=settings.LANDMARK_SELECTOR,
        )
        overrides = {key: value for key, value in overrides.items() if value is not None}
        return replace(config, **overrides)

    def validate(self) -> None:
        """
        Check numeric bounds.

        Raises:
            ConfigurationError: If any bound is violated
        """
        problems = []
        if self.target_count < 1:
            problems.append("target_count must be at least 1")
        if self.max_pages < 1:
            problems.append("max_pages must be at least 1")
        if self.concurrency < 1:
            problems.append("concurrency must be at least 1")
        if self.max_retries < 0:
            problems.append("max_retries must not be negative")
        if self.min_delay_ms < 0 or self.min_delay_ms > self.max_delay_ms:
            problems.append("delay interval must satisfy 0 <= min_delay_ms <= max_delay_ms")

        if problems:
            raise ConfigurationError(
                "Invalid crawl configuration: " + "; ".join(problems),
                details={"problems": problems},
            )

    def resolve_seeds(self) -> List[str]:
        """
        Seed URLs for the run.

        Explicit seeds win; otherwise one listing URL is synthesized from
        the keyword.

        Raises:
            ConfigurationError: If no usable seed can be derived
        """
        seeds = [seed.strip() for seed in self.seeds if seed and seed.strip()]
        if seeds:
            return seeds

        keyword = (self.keyword or "").strip()
        if not keyword:
            raise ConfigurationError("No seed URLs or keyword given")
        if "{keyword}" not in self.search_url_template:
            raise ConfigurationError(
                "Search URL template has no {keyword} placeholder",
                details={"template": self.search_url_template},
            )

        return [self.search_url_template.format(keyword=quote(keyword, safe=""))]
