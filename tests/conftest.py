"""
Test Configuration for Job Crawler

Shared fixtures: fast crawl configuration, an in-memory fetcher serving
canned pages, and HTML builders for listing and detail pages.
"""

from typing import Dict, List, Optional, Union

import pytest

from job_crawler.scrapers.base import CrawlConfig
from job_crawler.scrapers.fetcher import BaseFetcher, FetchResult
from job_crawler.services.sink import MemorySink

BASE = "https://jobs.example.pk"
LISTING_URL = f"{BASE}/jobs/search?q=python"

Response = Union[str, tuple, Exception]


class FakeFetcher(BaseFetcher):
    """
    Fetcher serving canned responses.

    ``pages`` maps a URL to a response or a list of responses consumed one
    per attempt. A response is an HTML string (status 200), a
    ``(status_code, html)`` tuple or an exception to raise.
    """

    def __init__(self, config: CrawlConfig, pages: Dict[str, Union[Response, List[Response]]]):
        super().__init__(config)
        self.pages = dict(pages)
        self.calls: List[tuple] = []
        self.opened = 0
        self.closed = 0

    async def _open_session(self) -> object:
        self.opened += 1
        return object()

    async def _close_session(self, handle: object) -> None:
        self.closed += 1

    async def fetch(self, url: str, session: Optional[str] = None) -> FetchResult:
        token, _ = self._session(session)
        self.calls.append((url, token))

        response = self.pages.get(url, (404, "<html><body>Not found</body></html>"))
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if isinstance(response, Exception):
            raise response
        status, text = response if isinstance(response, tuple) else (200, response)
        return self._build_result(url, status, text, token)

    @property
    def fetched_urls(self) -> List[str]:
        return [url for url, _ in self.calls]


def listing_page(detail_paths: List[str], next_href: Optional[str] = None, extra: str = "") -> str:
    """Listing page with one job card per detail path."""
    cards = "\n".join(
        f'''<div class="job-card">
              <h3><a href="{path}">Job {index}</a></h3>
              <span class="company-name">Company {index}</span>
            </div>'''
        for index, path in enumerate(detail_paths, start=1)
    )
    pager = f'<ul class="pagination"><li><a href="{next_href}">Next</a></li></ul>' if next_href else ""
    return f"""<html><head><title>Jobs</title></head><body>
      <nav><a href="/">Home</a> <a href="/companies">Companies</a> <a href="/login">Login</a></nav>
      {cards}
      {pager}
      {extra}
    </body></html>"""


def detail_page(title: Optional[str], company: Optional[str], body: str = "") -> str:
    """Detail page with a heading and a company element when given."""
    heading = f"<h1>{title}</h1>" if title else ""
    employer = f'<a class="company-link" href="/company/acme">{company}</a>' if company else ""
    return f"""<html><head><title>Job Details</title></head><body>
      {heading}
      {employer}
      <div class="job-description"><p>Build things.</p><p>Ship them.</p></div>
      {body}
    </body></html>"""


@pytest.fixture
def fast_config():
    """Crawl configuration without delays."""
    return CrawlConfig(
        seeds=[LISTING_URL],
        target_count=50,
        max_pages=5,
        min_delay_ms=0,
        max_delay_ms=0,
        max_retries=2,
        concurrency=3,
        request_timeout=5.0,
        page_ready_timeout=1.0,
    )


@pytest.fixture
def memory_sink():
    return MemorySink()


@pytest.fixture
def make_fetcher():
    """Factory building an initialized FakeFetcher."""
    async def factory(config: CrawlConfig, pages: Dict) -> FakeFetcher:
        fetcher = FakeFetcher(config, pages)
        await fetcher.initialize()
        return fetcher

    return factory
