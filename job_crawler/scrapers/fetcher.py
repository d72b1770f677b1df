"""
Fetch Collaborators

Fetchers turn a URL into a parsed document. Each fetcher manages session
identities: ``new_session()`` hands out an opaque token backed by a fresh
client (HTTP) or a fresh browser (Selenium), so a blocked task can be
retried under a different identity.
"""

import asyncio
import random
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import httpx
from bs4 import BeautifulSoup
from selenium import webdriver
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.common.by import By
from selenium.webdriver.remote.webdriver import WebDriver
from selenium.webdriver.support.ui import WebDriverWait
from selenium.webdriver.support import expected_conditions as EC
from selenium.common.exceptions import TimeoutException, WebDriverException

from job_crawler.core.exceptions import BlockedError, FetchError, FetchTimeoutError
from job_crawler.scrapers.base import CrawlConfig, ParsedDocument, ScraperType
from job_crawler.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_SESSION = "default"

BLOCKED_STATUS_CODES = frozenset({403, 429, 503})
NON_RETRYABLE_STATUS_CODES = frozenset({400, 401, 404, 405, 410, 451})

# Content signals of an anti-bot interstitial
BLOCK_MARKERS = (
    "cf-browser-verification",
    "/cdn-cgi/challenge-platform",
    "checking your browser before accessing",
    "attention required! | cloudflare",
    "are you a robot",
    "please verify you are a human",
    "unusual traffic from your computer",
    "px-captcha",
    "incapsula incident",
)
BLOCK_SCAN_CHARS = 20_000

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:122.0) Gecko/20100101 Firefox/122.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2.1 Safari/605.1.15"
]


def pick_user_agent(config: CrawlConfig) -> str:
    """The configured user agent, or a random one from the rotation."""
    return config.user_agent or random.choice(USER_AGENTS)


@dataclass
class FetchResult:
    """A fetched and parsed page."""

    url: str
    status_code: int
    document: ParsedDocument
    text: str
    session: str


def detect_block(status_code: int, text: str) -> Optional[str]:
    """
    Check a response for block signals.

    Args:
        status_code: HTTP status code
        text: Response body

    Returns:
        Optional[str]: Block reason, or None if the response looks normal
    """
    if status_code in BLOCKED_STATUS_CODES:
        return f"status {status_code}"

    sample = (text or "")[:BLOCK_SCAN_CHARS].lower()
    for marker in BLOCK_MARKERS:
        if marker in sample:
            return marker
    return None


class BaseFetcher(ABC):
    """
    Abstract base class for fetch collaborators.

    Provides session bookkeeping and response classification; subclasses
    implement how a session is opened, closed and used.
    """

    def __init__(self, config: CrawlConfig) -> None:
        self.config = config
        self._sessions: Dict[str, object] = {}

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.cleanup()

    async def initialize(self) -> None:
        """Open the default session."""
        if DEFAULT_SESSION not in self._sessions:
            self._sessions[DEFAULT_SESSION] = await self._open_session()
        logger.info("Initialized fetcher", fetcher=self.__class__.__name__)

    async def cleanup(self) -> None:
        """Close every open session."""
        for token in list(self._sessions):
            await self._close_session(self._sessions.pop(token))

    async def new_session(self) -> str:
        """Open a fresh session identity and return its token."""
        token = uuid.uuid4().hex
        self._sessions[token] = await self._open_session()
        logger.debug("Opened new session", session=token)
        return token

    async def release_session(self, token: Optional[str]) -> None:
        """Close a session obtained from ``new_session``."""
        if not token or token == DEFAULT_SESSION or token not in self._sessions:
            return
        await self._close_session(self._sessions.pop(token))

    def _session(self, token: Optional[str]):
        token = token if token in self._sessions else DEFAULT_SESSION
        if token not in self._sessions:
            raise RuntimeError("Fetcher used before initialize()")
        return token, self._sessions[token]

    def _build_result(self, url: str, status_code: int, text: str, session: str) -> FetchResult:
        """
        Classify a response and parse it.

        Raises:
            BlockedError: On block status codes or interstitial content
            FetchError: On other error statuses or an empty body
        """
        reason = detect_block(status_code, text)
        if reason:
            raise BlockedError(url, status_code=status_code, reason=reason)
        if status_code >= 400:
            raise FetchError(
                url,
                message=f"HTTP {status_code} fetching {url}",
                status_code=status_code,
                retryable=status_code not in NON_RETRYABLE_STATUS_CODES,
            )
        if not text or not text.strip():
            raise FetchError(url, message=f"Empty body fetching {url}", status_code=status_code)

        return FetchResult(
            url=url,
            status_code=status_code,
            document=BeautifulSoup(text, "html.parser"),
            text=text,
            session=session,
        )

    @abstractmethod
    async def _open_session(self) -> object:
        """Create the client or browser backing a session."""

    @abstractmethod
    async def _close_session(self, handle: object) -> None:
        """Dispose of a session's client or browser."""

    @abstractmethod
    async def fetch(self, url: str, session: Optional[str] = None) -> FetchResult:
        """
        Fetch and parse a page.

        Args:
            url: Absolute URL
            session: Session token, defaults to the default session

        Returns:
            FetchResult: Parsed page

        Raises:
            FetchError: On any retryable or hard fetch failure
        """


class HttpFetcher(BaseFetcher):
    """Static HTML fetcher on httpx with user agent rotation per session."""

    def __init__(
        self,
        config: CrawlConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        super().__init__(config)
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "User-Agent": pick_user_agent(self.config),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }

    async def _open_session(self) -> httpx.AsyncClient:
        kwargs = {
            "headers": self._headers(),
            "timeout": self.config.request_timeout,
            "follow_redirects": True,
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        elif self.config.proxy_url:
            kwargs["proxy"] = self.config.proxy_url
        return httpx.AsyncClient(**kwargs)

    async def _close_session(self, handle: httpx.AsyncClient) -> None:
        await handle.aclose()

    async def fetch(self, url: str, session: Optional[str] = None) -> FetchResult:
        token, client = self._session(session)
        try:
            response = await client.get(url)
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(url, timeout=self.config.request_timeout) from e
        except httpx.HTTPError as e:
            raise FetchError(url, message=f"Request failed: {e}") from e

        return self._build_result(str(response.url), response.status_code, response.text, token)


class BrowserFetcher(BaseFetcher):
    """
    Headless Chrome fetcher on Selenium.

    Driver calls run in the default executor. After navigation the fetcher
    waits for ``landmark_selector`` up to ``page_ready_timeout`` seconds and
    proceeds with whatever rendered when the wait runs out.
    """

    def __init__(
        self,
        config: CrawlConfig,
        driver_factory: Optional[Callable[[], WebDriver]] = None
    ) -> None:
        super().__init__(config)
        self._driver_factory = driver_factory or self._build_driver
        self._locks: Dict[int, asyncio.Lock] = {}

    def _build_driver(self) -> WebDriver:
        options = Options()
        options.add_argument("--headless=new")
        options.add_argument("--no-sandbox")
        options.add_argument("--disable-dev-shm-usage")
        options.add_argument("--disable-gpu")
        options.add_argument("--window-size=1920,1080")
        options.add_argument(f"--user-agent={pick_user_agent(self.config)}")
        if self.config.proxy_url:
            options.add_argument(f"--proxy-server={self.config.proxy_url}")
        return webdriver.Chrome(options=options)

    async def _open_session(self) -> WebDriver:
        loop = asyncio.get_running_loop()
        driver = await loop.run_in_executor(None, self._driver_factory)
        driver.set_page_load_timeout(self.config.request_timeout)
        self._locks[id(driver)] = asyncio.Lock()
        return driver

    async def _close_session(self, handle: WebDriver) -> None:
        self._locks.pop(id(handle), None)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, handle.quit)

    def _load(self, driver: WebDriver, url: str) -> Tuple[str, str]:
        """Navigate and read back the rendered page. Runs in the executor."""
        driver.get(url)
        selector = self.config.landmark_selector
        if selector:
            try:
                WebDriverWait(driver, self.config.page_ready_timeout).until(
                    EC.presence_of_element_located((By.CSS_SELECTOR, selector))
                )
            except TimeoutException:
                logger.warning("Landmark not found, proceeding", url=url, selector=selector)
        return driver.current_url, driver.page_source

    @staticmethod
    def _release_when_done(lock: asyncio.Lock) -> Callable[[asyncio.Future], None]:
        def release(future: asyncio.Future) -> None:
            lock.release()
            if not future.cancelled():
                # Mark the outcome retrieved when the caller was cancelled
                future.exception()
        return release

    async def fetch(self, url: str, session: Optional[str] = None) -> FetchResult:
        token, driver = self._session(session)
        loop = asyncio.get_running_loop()

        # A driver serves one navigation at a time. The lock is held until the
        # executor call returns, even when the awaiting task is cancelled.
        lock = self._locks[id(driver)]
        await lock.acquire()
        navigation = loop.run_in_executor(None, self._load, driver, url)
        navigation.add_done_callback(self._release_when_done(lock))

        try:
            current_url, source = await asyncio.shield(navigation)
        except TimeoutException as e:
            raise FetchTimeoutError(url, timeout=self.config.request_timeout) from e
        except WebDriverException as e:
            raise FetchError(url, message=f"Browser navigation failed: {e.msg}") from e

        return self._build_result(current_url or url, 200, source, token)


def create_fetcher(config: CrawlConfig) -> BaseFetcher:
    """Fetcher for the configured fetch strategy."""
    if config.scraper_type == ScraperType.SELENIUM:
        return BrowserFetcher(config)
    return HttpFetcher(config)
