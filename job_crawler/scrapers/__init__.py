"""
Job Scrapers Package

URL classification, listing and detail extraction, pagination and the fetch
collaborators used by the crawl driver (``job_crawler.scrapers.crawler``).
"""

from .base import (
    CrawlConfig,
    CrawlTask,
    ExtractionFailure,
    JobRecord,
    ScraperType,
    TaskKind
)
from .date_filter import DateWindow, passes_date_filter
from .detail import extract_job
from .fetcher import BaseFetcher, BrowserFetcher, FetchResult, HttpFetcher, create_fetcher
from .listing import extract_detail_links, extract_listing_jobs
from .pagination import find_next_page
from .urls import DetailUrlClassifier, PageShape, is_detail_url, normalize_url

__all__ = [
    # Data model
    'CrawlConfig',
    'CrawlTask',
    'ExtractionFailure',
    'JobRecord',
    'ScraperType',
    'TaskKind',

    # Extraction
    'DateWindow',
    'passes_date_filter',
    'extract_job',
    'extract_detail_links',
    'extract_listing_jobs',
    'find_next_page',
    'DetailUrlClassifier',
    'PageShape',
    'is_detail_url',
    'normalize_url',

    # Fetching
    'BaseFetcher',
    'BrowserFetcher',
    'FetchResult',
    'HttpFetcher',
    'create_fetcher'
]
