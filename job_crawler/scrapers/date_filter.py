"""
Posting Date Filter

Recency filtering for job postings. Posting-date text is parsed in layers
(relative hours, relative days, today/yesterday, absolute date); a posting
whose date cannot be parsed is always included.
"""

import re
from typing import Optional
from datetime import datetime, timedelta, timezone
from enum import Enum

from dateutil import parser as date_parser


class DateWindow(Enum):
    """Recency windows accepted by the date filter."""
    ALL = "all"
    HOURS_24 = "24hours"
    DAYS_7 = "7days"
    DAYS_30 = "30days"

    @property
    def max_age(self) -> Optional[timedelta]:
        return _WINDOW_AGES[self]


_WINDOW_AGES = {
    DateWindow.ALL: None,
    DateWindow.HOURS_24: timedelta(hours=24),
    DateWindow.DAYS_7: timedelta(days=7),
    DateWindow.DAYS_30: timedelta(days=30),
}

_HOURS_RE = re.compile(
    r'(\d+|an?|one)\+?\s*(minutes?|mins?|hours?|hrs?|h)\s*ago', re.IGNORECASE
)
_DAYS_RE = re.compile(
    r'(\d+|an?|one)\+?\s*(days?|d|weeks?|wks?|months?|mos?)\s*ago', re.IGNORECASE
)
_ABSOLUTE_HINT_RE = re.compile(
    r'\b(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?\s+\d{1,2}'
    r'|\b\d{1,2}\s+(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*'
    r'|\b\d{4}-\d{2}-\d{2}',
    re.IGNORECASE
)


def _amount(token: str) -> int:
    return 1 if token.lower() in ("a", "an", "one") else int(token)


def parse_relative_hours(text: str) -> Optional[timedelta]:
    """Age from phrases like '3 hours ago' or '45 minutes ago'."""
    match = _HOURS_RE.search(text)
    if not match:
        return None
    number, unit = _amount(match.group(1)), match.group(2).lower()
    if unit.startswith("m"):
        return timedelta(minutes=number)
    return timedelta(hours=number)


def parse_relative_days(text: str) -> Optional[timedelta]:
    """Age from phrases like '5 days ago', '2 weeks ago' or '1 month ago'."""
    match = _DAYS_RE.search(text)
    if not match:
        return None
    number, unit = _amount(match.group(1)), match.group(2).lower()
    if unit.startswith("w"):
        return timedelta(weeks=number)
    if unit.startswith("mo"):
        return timedelta(days=number * 30)
    return timedelta(days=number)


def parse_today_yesterday(text: str) -> Optional[timedelta]:
    """Age for the literal words 'today', 'just now' and 'yesterday'."""
    lowered = text.lower()
    if "today" in lowered or "just now" in lowered:
        return timedelta(0)
    if "yesterday" in lowered:
        return timedelta(days=1)
    return None


def parse_absolute_date(text: str, now: datetime) -> Optional[timedelta]:
    """Age from an absolute date such as 'Jan 15, 2024' or '2024-01-15'."""
    if not _ABSOLUTE_HINT_RE.search(text):
        return None
    try:
        posted = date_parser.parse(text, fuzzy=True)
    except (ValueError, OverflowError):
        return None
    if posted.tzinfo is None:
        posted = posted.replace(tzinfo=timezone.utc)
    return now - posted


def parse_posting_age(text: Optional[str], now: Optional[datetime] = None) -> Optional[timedelta]:
    """
    Parse posting-date text into an age.

    Args:
        text: Posting-date text as found on the page
        now: Reference time, defaults to the current UTC time

    Returns:
        Optional[timedelta]: Age of the posting, or None when unparseable
    """
    if not text or not text.strip():
        return None

    now = now or datetime.now(timezone.utc)
    for layer in (parse_relative_hours, parse_relative_days, parse_today_yesterday):
        age = layer(text)
        if age is not None:
            return age
    return parse_absolute_date(text, now)


def passes_date_filter(
    text: Optional[str],
    window: DateWindow,
    now: Optional[datetime] = None
) -> bool:
    """
    Check posting-date text against a recency window.

    Unparseable dates are included.

    Args:
        text: Posting-date text
        window: Configured recency window
        now: Reference time

    Returns:
        bool: True if the posting should be kept
    """
    max_age = window.max_age
    if max_age is None:
        return True

    age = parse_posting_age(text, now)
    if age is None:
        return True
    return age <= max_age
