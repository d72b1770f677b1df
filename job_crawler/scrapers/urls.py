"""
URL Normalization and Classification

Resolves links against their page, strips fragments and tracking
parameters, and decides whether a URL points at a job detail page.

Detail URLs are matched by interchangeable pattern strategies. Which one is
authoritative depends on where a link was found (its page shape):

- structured data: loose (the block already declares a job posting)
- anchors: strict (listing pages carry many unrelated links)
- embedded state: strict (state blobs are full of URL-shaped noise)
- unknown: loose, then strict
"""

import re
from typing import Dict, Iterable, List, Optional, Set
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urljoin, urlsplit, urlunsplit, parse_qsl, urlencode

TRACKING_PARAMS = {
    "gclid", "fbclid", "msclkid", "dclid", "yclid", "mc_cid", "mc_eid",
    "ref", "ref_src", "referrer", "_ga", "_gl", "igshid", "si",
}
_UNSUPPORTED_SCHEMES = ("javascript:", "mailto:", "tel:", "data:", "sms:", "whatsapp:")

DEFAULT_EXCLUDED_SEGMENTS = (
    "company", "companies", "employer", "employers", "login", "signin",
    "sign-in", "signup", "register", "about", "about-us", "contact",
    "contact-us", "apply", "blog", "help", "faq", "privacy", "terms",
    "search", "jsearch", "account", "password",
)


class PageShape(Enum):
    """Where on a listing page a candidate link was found."""
    STRUCTURED_DATA = "structured_data"
    HTML_ANCHORS = "html_anchors"
    EMBEDDED_STATE = "embedded_state"


@dataclass(frozen=True)
class DetailUrlPattern:
    """A named strategy for recognizing detail-page paths."""

    name: str
    regex: re.Pattern

    def matches(self, path: str) -> bool:
        return bool(self.regex.search(path.lower()))


LOOSE_PATTERN = DetailUrlPattern(
    name="loose",
    regex=re.compile(
        r'(?:^|/)(?:jobs?|jobdetails?|job-details?|vacanc(?:y|ies)|positions?|careers?)[/-][^/]+'
        r'|-jobs?-[^/]+'
        r'|\d{4,}'
    ),
)

STRICT_PATTERN = DetailUrlPattern(
    name="strict",
    regex=re.compile(r'[-/_](\d{4,})/?$'),
)

AUTHORITATIVE_PATTERNS: Dict[PageShape, DetailUrlPattern] = {
    PageShape.STRUCTURED_DATA: LOOSE_PATTERN,
    PageShape.HTML_ANCHORS: STRICT_PATTERN,
    PageShape.EMBEDDED_STATE: STRICT_PATTERN,
}


def normalize_url(href: Optional[str], base: Optional[str]) -> Optional[str]:
    """
    Resolve a link against its base URL.

    Fragments and tracking parameters are removed; scheme and host are
    lower-cased. Malformed input yields None, never an exception.

    Args:
        href: Link as found in the page
        base: URL of the page the link was found on

    Returns:
        Optional[str]: Absolute normalized URL or None
    """
    if not isinstance(href, str):
        return None
    href = href.strip()
    if not href or href.startswith("#") or href.lower().startswith(_UNSUPPORTED_SCHEMES):
        return None
    if not isinstance(base, str):
        base = ""

    try:
        parts = urlsplit(urljoin(base, href))
        # Raises ValueError for a non-numeric or out-of-range port
        parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()
    if scheme not in ("http", "https") or not netloc or re.search(r'\s', netloc):
        return None
    if not parts.hostname:
        return None

    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key.lower() not in TRACKING_PARAMS and not key.lower().startswith("utm_")
    ]
    path = parts.path or "/"
    return urlunsplit((scheme, netloc, path, urlencode(query, doseq=True), ""))


class DetailUrlClassifier:
    """Decides whether a normalized URL identifies a job detail page."""

    def __init__(
        self,
        excluded_segments: Optional[Iterable[str]] = None,
        patterns: Optional[List[DetailUrlPattern]] = None,
        authoritative: Optional[Dict[PageShape, DetailUrlPattern]] = None
    ) -> None:
        segments = DEFAULT_EXCLUDED_SEGMENTS if excluded_segments is None else excluded_segments
        self.excluded_segments: Set[str] = {segment.lower() for segment in segments}
        self.patterns = patterns or [LOOSE_PATTERN, STRICT_PATTERN]
        self.authoritative = authoritative or AUTHORITATIVE_PATTERNS

    def is_excluded(self, url: str) -> bool:
        """Check if any path segment names a non-job section."""
        try:
            path = urlsplit(url).path
        except ValueError:
            return True
        segments = [segment.lower() for segment in path.split("/") if segment]
        return any(segment in self.excluded_segments for segment in segments)

    def is_detail_url(self, url: Optional[str], shape: Optional[PageShape] = None) -> bool:
        """
        Match a URL against the detail-page patterns.

        Args:
            url: Normalized absolute URL
            shape: Page shape the URL was found in; selects the
                authoritative pattern. Without it every pattern is tried
                in order.

        Returns:
            bool: True if the URL looks like a job detail page
        """
        if not url:
            return False
        try:
            path = urlsplit(url).path
        except ValueError:
            return False
        if not path.strip("/") or self.is_excluded(url):
            return False

        if shape is not None and shape in self.authoritative:
            return self.authoritative[shape].matches(path)
        return any(pattern.matches(path) for pattern in self.patterns)


default_classifier = DetailUrlClassifier()


def is_detail_url(url: Optional[str], shape: Optional[PageShape] = None) -> bool:
    """Module-level shortcut using the default classifier."""
    return default_classifier.is_detail_url(url, shape)
