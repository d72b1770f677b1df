"""
Listing Page Extraction

Turns a parsed listing page into the set of candidate detail URLs and,
when detail pages are not collected, into job summaries built from what
the listing itself shows.

Link candidates come from three stages whose results are unioned:
structured-data blocks, anchors anywhere in the page, and embedded
application state. Every candidate is normalized and classified before it
is kept.
"""

from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

from bs4 import BeautifulSoup, Tag

from job_crawler.scrapers.base import ExtractionFailure, JobRecord
from job_crawler.scrapers.detail import build_record, fields_from_posting
from job_crawler.scrapers.structured import (
    COMPANY_KEYS,
    TITLE_KEYS,
    decode_job_posting,
    find_job_entries,
    first_value,
    flatten_json_ld,
    iter_json_ld,
    iter_raw_url_strings,
    iter_state_blobs,
    iter_url_strings,
    list_item_urls,
)
from job_crawler.scrapers.urls import (
    DetailUrlClassifier,
    PageShape,
    default_classifier,
    normalize_url,
)
from job_crawler.scrapers.utils import clean_text, element_text
from job_crawler.utils.logger import get_logger

logger = get_logger(__name__)

# Key aliases of job summaries found in embedded application state
STATE_FIELD_KEYS: Dict[str, Tuple[str, ...]] = {
    "title": TITLE_KEYS,
    "company": COMPANY_KEYS,
    "location": ("location", "city", "jobLocation"),
    "salary": ("salary", "salaryRange"),
    "job_type": ("jobType", "employmentType", "type"),
    "category": ("category", "industry", "functionalArea"),
    "experience": ("experience", "expRequired"),
    "date_posted": ("postedOn", "postedDate", "datePosted", "createdAt"),
    "description": ("description", "summary", "snippet"),
}


def _structured_candidates(soup: BeautifulSoup) -> Iterator[str]:
    yield from list_item_urls(soup)


def _anchor_candidates(soup: BeautifulSoup) -> Iterator[str]:
    for anchor in soup.find_all("a", href=True):
        yield anchor["href"]


def _state_candidates(soup: BeautifulSoup) -> Iterator[str]:
    decoded_any = False
    for blob in iter_state_blobs(soup):
        decoded_any = True
        yield from iter_url_strings(blob)

    if decoded_any:
        return
    # No blob decoded: scan the inline scripts' raw text instead
    for script in soup.find_all("script"):
        if (script.get("type") or "").lower() == "application/ld+json":
            continue
        text = script.string or script.get_text()
        if text:
            yield from iter_raw_url_strings(text)


_STAGES = (
    (PageShape.STRUCTURED_DATA, _structured_candidates),
    (PageShape.HTML_ANCHORS, _anchor_candidates),
    (PageShape.EMBEDDED_STATE, _state_candidates),
)


def extract_detail_links(
    soup: BeautifulSoup,
    base_url: str,
    classifier: Optional[DetailUrlClassifier] = None
) -> Set[str]:
    """
    Collect detail URLs from a listing page.

    Args:
        soup: Parsed listing page
        base_url: URL of the listing page
        classifier: Detail URL classifier, defaults to the module default

    Returns:
        Set[str]: Normalized, deduplicated detail URLs
    """
    classifier = classifier or default_classifier
    links: Set[str] = set()

    for shape, stage in _STAGES:
        found = 0
        for candidate in stage(soup):
            url = normalize_url(candidate, base_url)
            if url is None or url in links:
                continue
            if classifier.is_detail_url(url, shape):
                links.add(url)
                found += 1
        logger.debug("Listing stage finished", stage=shape.value, found=found, url=base_url)

    return links


# ---------------------------------------------------------------------------
# Listing-visible job summaries

def _posting_summaries(soup: BeautifulSoup) -> Iterator[Dict[str, Optional[str]]]:
    for block in iter_json_ld(soup):
        for node in flatten_json_ld(block):
            posting = decode_job_posting(node)
            if posting is not None:
                yield fields_from_posting(posting)


def _state_value(entry: Dict, keys: Tuple[str, ...]) -> Optional[str]:
    value = first_value(entry, keys)
    if isinstance(value, dict):
        value = value.get("name") or value.get("title")
    if isinstance(value, list):
        value = ", ".join(str(item) for item in value if item)
    return clean_text(str(value)) if value is not None else None


def _state_summaries(soup: BeautifulSoup) -> Iterator[Dict[str, Optional[str]]]:
    for blob in iter_state_blobs(soup):
        for entry in find_job_entries(blob):
            fields = {name: _state_value(entry, keys) for name, keys in STATE_FIELD_KEYS.items()}
            url = first_value(entry, ("jobUrl", "url", "link", "href", "detailUrl"))
            if not isinstance(url, str) and isinstance(entry.get("slug"), str):
                url = f"/job/{entry['slug']}"
            fields["url"] = url if isinstance(url, str) else None
            yield fields


def _card_for(anchor: Tag) -> Optional[Tag]:
    """Closest ancestor of an anchor that also holds a company hint."""
    for parent in anchor.parents:
        if parent.name in ("body", "html", "[document]"):
            return None
        if parent.select_one('[class*="company"]') is not None:
            return parent
    return None


def _card_summaries(
    soup: BeautifulSoup,
    base_url: str,
    classifier: DetailUrlClassifier
) -> Iterator[Dict[str, Optional[str]]]:
    for anchor in soup.find_all("a", href=True):
        url = normalize_url(anchor["href"], base_url)
        if not classifier.is_detail_url(url, PageShape.HTML_ANCHORS):
            continue
        card = _card_for(anchor)
        if card is None:
            continue
        company = card.select_one('[class*="company"]')
        location = card.select_one('[class*="location"]')
        salary = card.select_one('[class*="salary"]')
        posted = card.select_one('[class*="date"], time')
        yield {
            "url": url,
            "title": element_text(anchor),
            "company": element_text(company),
            "location": element_text(location),
            "salary": element_text(salary),
            "date_posted": element_text(posted),
        }


def extract_listing_jobs(
    soup: BeautifulSoup,
    base_url: str,
    classifier: Optional[DetailUrlClassifier] = None,
    description_max_chars: int = 4000
) -> List[Union[JobRecord, ExtractionFailure]]:
    """
    Build records from the job summaries a listing page shows.

    Summaries come from structured data, embedded state and DOM job cards,
    in that order; the first summary seen for a URL wins.

    Args:
        soup: Parsed listing page
        base_url: URL of the listing page
        classifier: Detail URL classifier
        description_max_chars: Description length bound

    Returns:
        List[Union[JobRecord, ExtractionFailure]]: One result per summary
    """
    classifier = classifier or default_classifier
    results: List[Union[JobRecord, ExtractionFailure]] = []
    seen: Set[str] = set()

    sources = (
        _posting_summaries(soup),
        _state_summaries(soup),
        _card_summaries(soup, base_url, classifier),
    )
    for summaries in sources:
        for fields in summaries:
            url = normalize_url(fields.get("url"), base_url)
            if url is None or url in seen or classifier.is_excluded(url):
                continue
            seen.add(url)
            results.append(build_record(url, fields, description_max_chars))

    return results
