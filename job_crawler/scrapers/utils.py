"""
Scraper Utilities

Text normalization and regex helpers shared by the extractors.
"""

import re
import html
from typing import Optional

from bs4 import BeautifulSoup, Tag

_WHITESPACE_RE = re.compile(r'\s+')
_INLINE_SPACE_RE = re.compile(r'[ \t\r\f\v]+')
_EXCESS_NEWLINES_RE = re.compile(r'\n{3,}')
_BREAK_RE = re.compile(r'<br\s*/?>', re.IGNORECASE)
_BLOCK_CLOSE_RE = re.compile(
    r'</(?:p|div|li|ul|ol|h[1-6]|section|article|header|footer|tr|table|'
    r'blockquote|pre|dd|dt|dl)\s*>',
    re.IGNORECASE
)
_NBSP_CHARS = ('\xa0', '\u202f', '\u2007', '&nbsp;')

# Patterns applied to a page's visible text
SALARY_RE = re.compile(
    r'(?:PKR|Rs\.?|USD|US\$|\$|€|£)\s?\d[\d,]*(?:\.\d+)?\s?[kK]?'
    r'(?:\s?(?:-|–|—|to)\s?(?:PKR|Rs\.?|USD|US\$|\$|€|£)?\s?\d[\d,]*(?:\.\d+)?\s?[kK]?)?'
)
EXPERIENCE_RE = re.compile(
    r'\b\d+(?:\.\d+)?\s*(?:\+|(?:-|–|to)\s*\d+(?:\.\d+)?)?\s*(?:years?|yrs?)\b',
    re.IGNORECASE
)
JOB_TYPE_RE = re.compile(
    r'\b(full[- ]time|part[- ]time|contract(?:ual)?|internship|temporary|'
    r'freelance|permanent|work from home|remote)\b',
    re.IGNORECASE
)
POSTED_RE = re.compile(
    r'\b(?:\d+\+?|an?)\s*(?:minutes?|hours?|days?|weeks?|months?)\s+ago\b'
    r'|\b(?:today|yesterday)\b'
    r'|\b(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?\s+\d{1,2},?\s+\d{4}\b',
    re.IGNORECASE
)


def clean_text(text: Optional[str]) -> str:
    """
    Normalize a text fragment.

    Replaces non-breaking spaces, collapses whitespace runs and trims.

    Args:
        text: Raw text

    Returns:
        str: Normalized text, empty string for None
    """
    if not text:
        return ""
    for char in _NBSP_CHARS:
        text = text.replace(char, " ")
    return _WHITESPACE_RE.sub(" ", text).strip()


def element_text(element: Optional[Tag]) -> str:
    """Normalized visible text of an element, empty when missing."""
    if element is None:
        return ""
    return clean_text(element.get_text(" "))


def html_to_text(markup: Optional[str]) -> str:
    """
    Convert an HTML fragment to plain text.

    Block-level closing tags and line breaks become newlines before tags are
    stripped; lines are normalized and 3+ consecutive newlines collapse to
    exactly two. The result never contains angle brackets.

    Args:
        markup: HTML fragment (entity-escaped HTML is accepted too)

    Returns:
        str: Plain text
    """
    if not markup:
        return ""

    if "<" not in markup and "&lt;" in markup:
        markup = html.unescape(markup)

    markup = _BREAK_RE.sub("\n", markup)
    markup = _BLOCK_CLOSE_RE.sub(lambda match: match.group(0) + "\n", markup)
    text = BeautifulSoup(markup, "html.parser").get_text()
    text = text.replace("<", "").replace(">", "")

    for char in _NBSP_CHARS:
        text = text.replace(char, " ")
    lines = [_INLINE_SPACE_RE.sub(" ", line).strip() for line in text.split("\n")]
    text = "\n".join(lines)
    return _EXCESS_NEWLINES_RE.sub("\n\n", text).strip()


def truncate(text: str, limit: int) -> str:
    """Bound text to ``limit`` characters."""
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit].rstrip()


def first_match(pattern: re.Pattern, text: str) -> Optional[str]:
    """First match of a pattern as normalized text."""
    match = pattern.search(text)
    return clean_text(match.group(0)) if match else None
