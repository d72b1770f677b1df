"""
Pagination Resolution

Decides the next listing URL from the content of the current listing page.
Strategies are tried in order and the first hit wins:

1. an explicit ``rel="next"`` link
2. an anchor labelled "Next" or with a chevron
3. the anchor numbered one past the highlighted page
4. rewriting a page-like query parameter found on any anchor
"""

import re
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

from bs4 import BeautifulSoup, Tag

from job_crawler.scrapers.urls import normalize_url
from job_crawler.scrapers.utils import clean_text, element_text
from job_crawler.utils.logger import get_logger

logger = get_logger(__name__)

NEXT_LABELS = {
    "next", "next page", "next »", "next ›", "next >", "next>>", "next >>",
    "»", "›", ">", ">>", "→", "older", "more jobs",
}
PAGE_PARAMS = ("page", "p", "pg", "pageno", "page_no", "pagenum", "currentpage", "paged")
_ACTIVE_CLASS_RE = re.compile(r'\b(?:active|current|selected)\b', re.IGNORECASE)
_DISABLED_CLASS_RE = re.compile(r'\bdisabled\b', re.IGNORECASE)


def _is_disabled(element: Tag) -> bool:
    for node in (element, element.parent):
        if node is None or not isinstance(node, Tag):
            continue
        if node.get("aria-disabled") == "true" or node.has_attr("disabled"):
            return True
        if _DISABLED_CLASS_RE.search(" ".join(node.get("class", []))):
            return True
    return False


def next_from_rel(soup: BeautifulSoup, base_url: str, current_page_index: int) -> Optional[str]:
    """An explicit next relation on a <link> or <a>."""
    for element in soup.find_all(["link", "a"], href=True):
        rel = element.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "next" in [value.lower() for value in rel] and not _is_disabled(element):
            return normalize_url(element["href"], base_url)
    return None


def next_from_label(soup: BeautifulSoup, base_url: str, current_page_index: int) -> Optional[str]:
    """A navigation anchor labelled 'Next' or with a chevron."""
    for anchor in soup.find_all("a", href=True):
        if _is_disabled(anchor):
            continue
        label = element_text(anchor).lower()
        aria = clean_text(anchor.get("aria-label")).lower()
        if label in NEXT_LABELS or aria in ("next", "next page") or aria.startswith("next "):
            url = normalize_url(anchor["href"], base_url)
            if url:
                return url
    return None


def _has_active_indicator(soup: BeautifulSoup) -> bool:
    for element in soup.find_all(True):
        highlighted = (
            element.get("aria-current") == "page"
            or _ACTIVE_CLASS_RE.search(" ".join(element.get("class", []))) is not None
        )
        if highlighted and element_text(element).isdigit():
            return True
    return False


def next_from_active_page(soup: BeautifulSoup, base_url: str, current_page_index: int) -> Optional[str]:
    """The anchor numbered ``current_page_index + 1`` next to a highlighted page."""
    if not _has_active_indicator(soup):
        return None

    target = str(current_page_index + 1)
    for anchor in soup.find_all("a", href=True):
        if element_text(anchor) == target and not _is_disabled(anchor):
            url = normalize_url(anchor["href"], base_url)
            if url:
                return url
    return None


def _page_param(url: str) -> Optional[str]:
    for key, _ in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        if key.lower() in PAGE_PARAMS:
            return key
    return None


def _with_page(url: str, key: str, page: int) -> str:
    parts = urlsplit(url)
    query = [
        (name, str(page) if name == key else value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), ""))


def next_from_query_param(soup: BeautifulSoup, base_url: str, current_page_index: int) -> Optional[str]:
    """Rewrite a page-like query parameter to ``current_page_index + 1``."""
    for anchor in soup.find_all("a", href=True):
        url = normalize_url(anchor["href"], base_url)
        if url is None:
            continue
        key = _page_param(url)
        if key is not None:
            return _with_page(url, key, current_page_index + 1)
    return None


Strategy = Callable[[BeautifulSoup, str, int], Optional[str]]

STRATEGIES: List[Tuple[str, Strategy]] = [
    ("rel_next", next_from_rel),
    ("next_label", next_from_label),
    ("active_page", next_from_active_page),
    ("query_param", next_from_query_param),
]


def find_next_page(
    soup: BeautifulSoup,
    base_url: str,
    current_page_index: int,
    max_pages: int,
    quota_met: bool = False
) -> Optional[str]:
    """
    Compute the next listing URL.

    Args:
        soup: Parsed listing page
        base_url: URL of the listing page
        current_page_index: 1-based index of the listing page
        max_pages: Last page index allowed
        quota_met: Whether the record quota is already met

    Returns:
        Optional[str]: Next listing URL, or None to stop paginating
    """
    if quota_met or current_page_index >= max_pages:
        return None

    current = normalize_url(base_url, base_url)
    for name, strategy in STRATEGIES:
        url = strategy(soup, base_url, current_page_index)
        if url and url != current:
            logger.debug("Next page resolved", strategy=name, url=url, page_index=current_page_index + 1)
            return url
    return None
