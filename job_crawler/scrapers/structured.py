"""
Embedded Structured Data

Decoding of JSON embedded in pages: schema.org JSON-LD blocks and
serialized application state (Next.js ``__NEXT_DATA__``, ``window.__X__ = {...}``
assignments).

Every tier is a separate function. A block that fails to decode is skipped
on its own and never aborts the caller:

1. ``parse_json_block`` - text to JSON, None on failure
2. ``decode_job_posting`` - strict ``JobPosting`` schema match
3. ``iter_url_strings`` / ``find_job_entries`` - untyped tree walk
"""

import re
import json
from typing import Any, Dict, Iterator, List, Optional, Union

from bs4 import BeautifulSoup
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from job_crawler.utils.logger import get_logger

logger = get_logger(__name__)

# Upper bound for a single embedded-state blob
MAX_STATE_CHARS = 2_000_000

_STATE_ASSIGNMENT_RE = re.compile(
    r'(?:window\.)?(__[A-Za-z0-9_]+__|[A-Za-z_$][\w$]*(?:State|STATE|Data|DATA))\s*=\s*(?=[{\[])'
)
_URL_STRING_RE = re.compile(r'(?:https?://|/)[^\s"\'<>\\]{3,500}')

TITLE_KEYS = ("title", "jobTitle", "job_title", "designation", "position")
COMPANY_KEYS = ("company", "companyName", "company_name", "employer", "employerName")
URL_KEYS = ("jobUrl", "url", "link", "href", "permalink", "detailUrl")


class Organization(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None


class JobPostingSchema(BaseModel):
    """Strict view of a schema.org JobPosting node."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type_: Union[str, List[str]] = Field(alias="@type")
    title: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None
    date_posted: Optional[str] = Field(None, alias="datePosted")
    employment_type: Optional[Union[str, List[str]]] = Field(None, alias="employmentType")
    hiring_organization: Optional[Union[Organization, str]] = Field(None, alias="hiringOrganization")
    job_location: Optional[Union[Dict[str, Any], List[Dict[str, Any]], str]] = Field(None, alias="jobLocation")
    base_salary: Optional[Union[Dict[str, Any], str, int, float]] = Field(None, alias="baseSalary")
    industry: Optional[Union[str, List[str]]] = None
    occupational_category: Optional[Union[str, List[str]]] = Field(None, alias="occupationalCategory")
    experience_requirements: Optional[Union[str, Dict[str, Any]]] = Field(None, alias="experienceRequirements")

    @property
    def company_name(self) -> Optional[str]:
        if isinstance(self.hiring_organization, Organization):
            return self.hiring_organization.name
        return self.hiring_organization


def parse_json_block(text: Optional[str]) -> Optional[Any]:
    """Parse one embedded block; None when it is empty or not valid JSON."""
    if not text or not text.strip():
        return None
    try:
        return json.loads(text.strip())
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        logger.debug("Skipping malformed JSON block", error=str(e))
        return None


def iter_json_ld(soup: BeautifulSoup) -> Iterator[Any]:
    """Yield every decodable JSON-LD block of a page."""
    for script in soup.find_all("script", type="application/ld+json"):
        data = parse_json_block(script.string or script.get_text())
        if data is not None:
            yield data


def flatten_json_ld(data: Any) -> Iterator[Dict[str, Any]]:
    """
    Yield candidate nodes of a JSON-LD document.

    Handles top-level lists, ``@graph`` containers and ``ItemList``
    wrappers (``itemListElement`` entries with or without ``item``).
    """
    if isinstance(data, list):
        for item in data:
            yield from flatten_json_ld(item)
        return
    if not isinstance(data, dict):
        return

    yield data
    if isinstance(data.get("@graph"), list):
        yield from flatten_json_ld(data["@graph"])
    if isinstance(data.get("itemListElement"), list):
        for element in data["itemListElement"]:
            if isinstance(element, dict) and isinstance(element.get("item"), dict):
                yield from flatten_json_ld(element["item"])
            elif isinstance(element, dict) and element.get("@type") != "ListItem":
                yield from flatten_json_ld(element)


def is_job_posting(node: Dict[str, Any]) -> bool:
    node_type = node.get("@type")
    if isinstance(node_type, list):
        return "JobPosting" in node_type
    return node_type == "JobPosting"


def decode_job_posting(node: Any) -> Optional[JobPostingSchema]:
    """Strict tier: a JobPosting node or None."""
    if not isinstance(node, dict) or not is_job_posting(node):
        return None
    try:
        return JobPostingSchema.model_validate(node)
    except ValidationError as e:
        logger.debug("JobPosting node failed schema validation", errors=e.error_count())
        return None


def job_postings(soup: BeautifulSoup) -> List[JobPostingSchema]:
    """All JobPosting nodes that decode strictly, in page order."""
    postings = []
    for block in iter_json_ld(soup):
        for node in flatten_json_ld(block):
            posting = decode_job_posting(node)
            if posting is not None:
                postings.append(posting)
    return postings


def list_item_urls(soup: BeautifulSoup) -> List[str]:
    """URLs declared by ItemList entries and JobPosting nodes."""
    urls = []
    for block in iter_json_ld(soup):
        for node in flatten_json_ld(block):
            if is_job_posting(node) and isinstance(node.get("url"), str):
                urls.append(node["url"])

            elements = node.get("itemListElement")
            if not isinstance(elements, list):
                continue
            for element in elements:
                if isinstance(element, dict) and isinstance(element.get("url"), str):
                    urls.append(element["url"])
    return urls


def _balanced_slice(text: str, start: int, limit: int = MAX_STATE_CHARS) -> Optional[str]:
    """
    Slice a JSON object or array starting at ``start``.

    Scans for the matching closing bracket, skipping string contents, and
    gives up after ``limit`` characters.
    """
    if start >= len(text) or text[start] not in "{[":
        return None

    depth = 0
    in_string = False
    escaped = False
    end = min(len(text), start + limit)
    for index in range(start, end):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def iter_state_blobs(soup: BeautifulSoup) -> Iterator[Any]:
    """
    Yield decodable application-state blobs of a page.

    Covers ``<script type="application/json">`` payloads (``__NEXT_DATA__``)
    and ``NAME = {...}`` assignments inside inline scripts.
    """
    for script in soup.find_all("script"):
        script_type = (script.get("type") or "").lower()
        if script_type == "application/ld+json":
            continue
        text = script.string or script.get_text()
        if not text:
            continue

        if script_type == "application/json":
            data = parse_json_block(text[:MAX_STATE_CHARS])
            if data is not None:
                yield data
            continue

        for match in _STATE_ASSIGNMENT_RE.finditer(text):
            blob = _balanced_slice(text, match.end())
            data = parse_json_block(blob)
            if data is not None:
                yield data


def walk_json(node: Any) -> Iterator[Any]:
    """Depth-first walk over every value of a decoded JSON tree."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        if isinstance(current, dict):
            stack.extend(reversed(list(current.values())))
        elif isinstance(current, list):
            stack.extend(reversed(current))


def iter_url_strings(node: Any) -> Iterator[str]:
    """Untyped tier: URL-shaped strings anywhere in a decoded tree."""
    for value in walk_json(node):
        if isinstance(value, str) and _URL_STRING_RE.fullmatch(value.strip()):
            yield value.strip()


def iter_raw_url_strings(text: str, limit: int = MAX_STATE_CHARS) -> Iterator[str]:
    """URL-shaped strings in raw text, for blobs that did not decode."""
    for match in _URL_STRING_RE.finditer(text[:limit]):
        yield match.group(0)


def first_value(entry: Dict[str, Any], keys: tuple) -> Optional[Any]:
    """First present, non-empty value among alias keys."""
    for key in keys:
        value = entry.get(key)
        if value not in (None, "", [], {}):
            return value
    return None


def find_job_entries(node: Any) -> List[Dict[str, Any]]:
    """
    Untyped tier: dictionaries that look like job summaries.

    A job summary carries a title-like key and either a company-like or a
    URL-like key.
    """
    entries = []
    for value in walk_json(node):
        if not isinstance(value, dict):
            continue
        if first_value(value, TITLE_KEYS) is None:
            continue
        if first_value(value, COMPANY_KEYS) is None and first_value(value, URL_KEYS + ("slug",)) is None:
            continue
        entries.append(value)
    return entries
