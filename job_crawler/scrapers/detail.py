"""
Detail Field Extraction

Builds a normalized job record from a detail page. Every field is
resolved by its own cascade of extractors in fixed priority:

1. structured data (JSON-LD JobPosting)
2. DOM heuristics (headings, class hints, label-adjacent text, regexes
   over the visible text)
3. regex over the raw HTML, bounded to a fixed character budget

The first non-empty candidate wins. A page whose title or company stays
empty yields an ``ExtractionFailure`` instead of a record.
"""

import re
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from functools import cached_property

from bs4 import BeautifulSoup, NavigableString, Tag

from job_crawler.scrapers.base import (
    ExtractionFailure,
    JobRecord,
    DEFAULT_LOCATION,
    NOT_SPECIFIED,
    UNKNOWN_DATE,
    NO_DESCRIPTION,
)
from job_crawler.scrapers.structured import JobPostingSchema, job_postings
from job_crawler.scrapers.utils import (
    EXPERIENCE_RE,
    JOB_TYPE_RE,
    POSTED_RE,
    SALARY_RE,
    clean_text,
    element_text,
    first_match,
    html_to_text,
    truncate,
)
from job_crawler.utils.logger import get_logger

logger = get_logger(__name__)

# Character budget for the raw-HTML regex fallback
RAW_TEXT_BUDGET = 500_000

# Longest text accepted as a label's value
MAX_LABEL_VALUE_CHARS = 150

TITLE_DELIMITERS = (" | ", " - ", " – ", " — ", " :: ")
DESCRIPTION_SELECTOR = (
    'div.job-description, section.job-description, div[class*="description"], '
    'section[class*="description"], article'
)
_SKIP_PARENTS = {"script", "style", "noscript", "template", "head", "title"}

# Navigation texts that sit on company-like links but name no company
GENERIC_COMPANY_TEXT = {
    "company", "companies", "all companies", "top companies", "view company",
    "company profile", "view company profile", "follow company",
}


class Source(Enum):
    """Where a field value came from."""
    STRUCTURED_DATA = "structured_data"
    DOM = "dom"
    REGEX_FALLBACK = "regex_fallback"


@dataclass(frozen=True)
class FieldValue:
    """A resolved field value tagged with its source."""

    value: str
    source: Source


@dataclass
class DetailPage:
    """A parsed detail page with lazily computed views."""

    soup: BeautifulSoup
    url: str

    @cached_property
    def posting(self) -> Optional[JobPostingSchema]:
        postings = job_postings(self.soup)
        return postings[0] if postings else None

    @cached_property
    def posting_fields(self) -> Dict[str, Optional[str]]:
        return fields_from_posting(self.posting) if self.posting else {}

    @cached_property
    def text(self) -> str:
        return visible_text(self.soup)

    @cached_property
    def raw(self) -> str:
        return str(self.soup)[:RAW_TEXT_BUDGET]


FieldExtractor = Callable[[DetailPage], Optional[str]]
Cascade = Sequence[Tuple[Source, FieldExtractor]]


def first_non_empty(cascade: Cascade, page: DetailPage) -> Optional[FieldValue]:
    """
    Evaluate a field cascade.

    Args:
        cascade: (source, extractor) pairs in priority order
        page: Detail page

    Returns:
        Optional[FieldValue]: First non-empty value, or None
    """
    for source, extractor in cascade:
        value = extractor(page)
        if value and value.strip():
            return FieldValue(value=value, source=source)
    return None


# ---------------------------------------------------------------------------
# Page views

def visible_text(soup: BeautifulSoup) -> str:
    """Normalized text of a page, excluding script and style contents."""
    parts = []
    for node in soup.find_all(string=True):
        if node.parent is not None and node.parent.name in _SKIP_PARENTS:
            continue
        text = clean_text(str(node))
        if text:
            parts.append(text)
    return " ".join(parts)


def _following_text(node: NavigableString) -> Optional[str]:
    """Text right after a label: a sibling, or a sibling of an ancestor."""
    current: Union[NavigableString, Tag, None] = node
    for _ in range(3):
        for sibling in current.next_siblings:
            if isinstance(sibling, Tag):
                if sibling.name in _SKIP_PARENTS:
                    continue
                text = element_text(sibling)
            else:
                text = clean_text(str(sibling))
            text = text.lstrip(":").strip()
            if text:
                return text
        current = current.parent
        if current is None or current.name in ("body", "html", "[document]"):
            break
    return None


def label_value(soup: BeautifulSoup, labels: Sequence[str]) -> Optional[str]:
    """
    Value written next to a label such as 'Salary' or 'Location'.

    Handles 'Label: value' in one text node as well as a label element
    followed by a value element or text node.
    """
    wanted = {label.lower() for label in labels}
    for node in soup.find_all(string=True):
        if node.parent is None or node.parent.name in _SKIP_PARENTS:
            continue
        text = clean_text(str(node))
        if not text or len(text) > 80:
            continue

        head, separator, tail = text.partition(":")
        if clean_text(head).lower() not in wanted:
            continue

        value = clean_text(tail) if separator else ""
        if not value:
            value = _following_text(node) or ""
        if value and len(value) <= MAX_LABEL_VALUE_CHARS:
            return value
    return None


# ---------------------------------------------------------------------------
# Structured data

def _join(value: Any) -> Optional[str]:
    if isinstance(value, list):
        items = [clean_text(str(item)) for item in value if item]
        return ", ".join(item for item in items if item) or None
    if value is None:
        return None
    return clean_text(str(value)) or None


def _format_number(value: Any) -> str:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return clean_text(str(value))
    return f"{number:,.0f}" if number.is_integer() else f"{number:,.2f}"


def _format_location(location: Any) -> Optional[str]:
    if isinstance(location, list):
        location = location[0] if location else None
    if isinstance(location, str):
        return clean_text(location) or None
    if not isinstance(location, dict):
        return None

    address = location.get("address", location)
    if isinstance(address, str):
        return clean_text(address) or None
    if not isinstance(address, dict):
        return None

    parts = []
    for key in ("addressLocality", "addressRegion", "addressCountry"):
        part = address.get(key)
        if isinstance(part, dict):
            part = part.get("name")
        part = clean_text(str(part)) if part else ""
        if part and part not in parts:
            parts.append(part)
    return ", ".join(parts) or None


def _format_salary(salary: Any) -> Optional[str]:
    if isinstance(salary, (int, float)):
        return _format_number(salary)
    if isinstance(salary, str):
        return clean_text(salary) or None
    if not isinstance(salary, dict):
        return None

    currency = clean_text(str(salary.get("currency") or ""))
    value = salary.get("value", salary)
    unit = None
    if isinstance(value, dict):
        unit = value.get("unitText")
        low, high = value.get("minValue"), value.get("maxValue")
        single = value.get("value")
        if low is not None and high is not None:
            amount = f"{_format_number(low)} - {_format_number(high)}"
        elif single is not None or low is not None or high is not None:
            amount = _format_number(single if single is not None else (low if low is not None else high))
        else:
            return None
    else:
        amount = _format_number(value)

    text = f"{currency} {amount}".strip()
    if unit:
        text = f"{text} per {clean_text(str(unit)).lower()}"
    return text


def _format_experience(experience: Any) -> Optional[str]:
    if isinstance(experience, str):
        return clean_text(experience) or None
    if not isinstance(experience, dict):
        return None
    months = experience.get("monthsOfExperience")
    if months is not None:
        try:
            months = float(months)
        except (TypeError, ValueError):
            return None
        if months % 12 == 0:
            return f"{months / 12:g} years"
        return f"{months:g} months"
    return _join(experience.get("description"))


def _format_job_type(employment_type: Any) -> Optional[str]:
    joined = _join(employment_type)
    return joined.replace("_", " ").title() if joined else None


def fields_from_posting(posting: JobPostingSchema) -> Dict[str, Optional[str]]:
    """Flatten a JobPosting node into record fields."""
    return {
        "title": clean_text(posting.title) or None,
        "company": clean_text(posting.company_name) or None,
        "url": posting.url,
        "location": _format_location(posting.job_location),
        "salary": _format_salary(posting.base_salary),
        "job_type": _format_job_type(posting.employment_type),
        "category": _join(posting.industry) or _join(posting.occupational_category),
        "experience": _format_experience(posting.experience_requirements),
        "date_posted": clean_text(posting.date_posted) or None,
        "description": html_to_text(posting.description) or None,
    }


def _structured(name: str) -> FieldExtractor:
    def extract(page: DetailPage) -> Optional[str]:
        return page.posting_fields.get(name)
    extract.__name__ = f"structured_{name}"
    return extract


# ---------------------------------------------------------------------------
# DOM heuristics

def dom_title(page: DetailPage) -> Optional[str]:
    """First heading, then og:title, then the <title> before its delimiter."""
    for tag in ("h1", "h2"):
        text = element_text(page.soup.find(tag))
        if text:
            return text

    meta = page.soup.find("meta", attrs={"property": "og:title"})
    if meta and clean_text(meta.get("content")):
        return clean_text(meta.get("content"))

    title = element_text(page.soup.find("title"))
    for delimiter in TITLE_DELIMITERS:
        if delimiter in title:
            title = title.split(delimiter)[0]
            break
    return clean_text(title) or None


def dom_company(page: DetailPage) -> Optional[str]:
    """Elements whose class, or anchors whose href, signals a company."""
    selectors = ('[class*="company"]', 'a[href*="/company/"], a[href*="company="]')
    for selector in selectors:
        for element in page.soup.select(selector):
            if element.name in ("html", "body"):
                continue
            text = element_text(element)
            if text and len(text) <= 120 and text.lower() not in GENERIC_COMPANY_TEXT:
                return text
    return label_value(page.soup, ("Company", "Company Name", "Employer", "Organization"))


def _label_or_class(labels: Sequence[str], class_hint: Optional[str] = None) -> FieldExtractor:
    def extract(page: DetailPage) -> Optional[str]:
        value = label_value(page.soup, labels)
        if value or not class_hint:
            return value
        for element in page.soup.select(f'[class*="{class_hint}"]'):
            text = element_text(element)
            if text and len(text) <= MAX_LABEL_VALUE_CHARS:
                return text
        return None
    return extract


def _text_pattern(pattern: re.Pattern) -> FieldExtractor:
    def extract(page: DetailPage) -> Optional[str]:
        return first_match(pattern, page.text)
    return extract


def dom_date_posted(page: DetailPage) -> Optional[str]:
    """A posted label, a <time datetime> element, then a date phrase."""
    value = label_value(page.soup, ("Posted", "Posted On", "Posted Date", "Date Posted", "Job Posted"))
    if value:
        return value
    time_tag = page.soup.find("time", attrs={"datetime": True})
    if time_tag:
        return clean_text(time_tag["datetime"])
    return first_match(POSTED_RE, page.text)


def dom_description(page: DetailPage) -> Optional[str]:
    """Description container converted to text."""
    for element in page.soup.select(DESCRIPTION_SELECTOR):
        text = html_to_text(element.decode_contents())
        if text:
            return text
    return None


# ---------------------------------------------------------------------------
# Raw-HTML regex fallback

def _raw_key(*keys: str) -> FieldExtractor:
    pattern = re.compile(
        r'"(?:%s)"\s*:\s*"([^"\\]{2,300})"' % "|".join(re.escape(key) for key in keys)
    )

    def extract(page: DetailPage) -> Optional[str]:
        match = pattern.search(page.raw)
        return clean_text(match.group(1)) if match else None
    return extract


_META_DESCRIPTION_RE = re.compile(
    r'<meta[^>]+name=["\']description["\'][^>]+content=["\']([^"\']{10,2000})["\']',
    re.IGNORECASE
)


def raw_meta_description(page: DetailPage) -> Optional[str]:
    match = _META_DESCRIPTION_RE.search(page.raw)
    return html_to_text(match.group(1)) if match else None


# ---------------------------------------------------------------------------
# Cascades

S, D, R = Source.STRUCTURED_DATA, Source.DOM, Source.REGEX_FALLBACK

FIELD_CASCADES: Dict[str, Cascade] = {
    "title": [
        (S, _structured("title")),
        (D, dom_title),
        (R, _raw_key("jobTitle", "job_title", "title")),
    ],
    "company": [
        (S, _structured("company")),
        (D, dom_company),
        (R, _raw_key("companyName", "company_name", "employerName", "company")),
    ],
    "location": [
        (S, _structured("location")),
        (D, _label_or_class(("Location", "Job Location", "City", "Locations"), "location")),
        (R, _raw_key("city", "location", "jobLocation")),
    ],
    "salary": [
        (S, _structured("salary")),
        (D, _label_or_class(("Salary", "Salary Range", "Pay", "Compensation"))),
        (D, _text_pattern(SALARY_RE)),
        (R, _raw_key("salary", "salaryRange")),
    ],
    "job_type": [
        (S, _structured("job_type")),
        (D, _label_or_class(("Job Type", "Employment Type", "Type"))),
        (D, _text_pattern(JOB_TYPE_RE)),
        (R, _raw_key("jobType", "employmentType", "type")),
    ],
    "category": [
        (S, _structured("category")),
        (D, _label_or_class(("Category", "Functional Area", "Industry", "Department"))),
        (R, _raw_key("category", "industry", "functionalArea")),
    ],
    "experience": [
        (S, _structured("experience")),
        (D, _label_or_class(("Experience", "Required Experience", "Minimum Experience"))),
        (D, _text_pattern(EXPERIENCE_RE)),
        (R, _raw_key("experience", "expRequired")),
    ],
    "date_posted": [
        (S, _structured("date_posted")),
        (D, dom_date_posted),
        (R, _raw_key("postedOn", "postedDate", "datePosted")),
    ],
    "description": [
        (S, _structured("description")),
        (D, dom_description),
        (R, raw_meta_description),
    ],
}


def build_record(
    url: str,
    fields: Dict[str, Optional[str]],
    description_max_chars: int = 4000,
    scraped_at: Optional[datetime] = None
) -> Union[JobRecord, ExtractionFailure]:
    """
    Apply defaults and the validity rule to extracted fields.

    Args:
        url: Record URL
        fields: Extracted field values keyed by record attribute name
        description_max_chars: Description length bound
        scraped_at: Extraction timestamp, defaults to now

    Returns:
        Union[JobRecord, ExtractionFailure]: Record, or failure when title
        or company is empty
    """
    title = clean_text(fields.get("title"))
    company = clean_text(fields.get("company"))
    missing = [name for name, value in (("title", title), ("company", company)) if not value]
    if missing:
        return ExtractionFailure(url=url, missing_fields=missing)

    description = html_to_text(fields.get("description") or "")
    extra = {"scraped_at": scraped_at} if scraped_at else {}
    return JobRecord(
        url=url,
        title=title,
        company=company,
        location=clean_text(fields.get("location")) or DEFAULT_LOCATION,
        salary=clean_text(fields.get("salary")) or NOT_SPECIFIED,
        job_type=clean_text(fields.get("job_type")) or NOT_SPECIFIED,
        category=clean_text(fields.get("category")) or NOT_SPECIFIED,
        experience=clean_text(fields.get("experience")) or NOT_SPECIFIED,
        date_posted=clean_text(fields.get("date_posted")) or UNKNOWN_DATE,
        description=truncate(description, description_max_chars) or NO_DESCRIPTION,
        **extra
    )


def extract_job(
    soup: BeautifulSoup,
    url: str,
    description_max_chars: int = 4000
) -> Union[JobRecord, ExtractionFailure]:
    """
    Extract a job record from a parsed detail page.

    Args:
        soup: Parsed detail page
        url: URL of the page
        description_max_chars: Description length bound

    Returns:
        Union[JobRecord, ExtractionFailure]: Normalized record or failure
    """
    page = DetailPage(soup=soup, url=url)
    values: Dict[str, Optional[str]] = {}
    sources: Dict[str, str] = {}

    for name, cascade in FIELD_CASCADES.items():
        result = first_non_empty(cascade, page)
        if result is not None:
            values[name] = result.value
            sources[name] = result.source.value

    logger.debug("Extracted detail fields", url=url, sources=sources)
    return build_record(url, values, description_max_chars)
