#!/usr/bin/env python3
"""
Job Crawler Command Line

Crawls a job board from a keyword search or explicit seed URLs and writes the
extracted records as JSON lines.

Usage:
    job-crawler --keyword "python developer" [options]

Examples:
    job-crawler --keyword accountant --target 20 --max-pages 3
    job-crawler --seed https://www.rozee.pk/job/jsearch/q/sales --no-details
    job-crawler --keyword engineer --date-filter 7days --output out/jobs.jsonl

Exit status:
    0  crawl finished and saved records
    1  configuration error
    2  crawl finished without saving any record
"""

import asyncio
import argparse
import sys
from typing import List, Optional

from job_crawler.core.config import get_settings
from job_crawler.core.exceptions import ConfigurationError
from job_crawler.scrapers.base import CrawlConfig, ScraperType
from job_crawler.scrapers.crawler import CrawlDriver, CrawlSummary
from job_crawler.scrapers.date_filter import DateWindow
from job_crawler.scrapers.fetcher import create_fetcher
from job_crawler.services.sink import JsonLinesSink
from job_crawler.utils.logger import configure_logging, get_logger

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_NOTHING_SAVED = 2

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for the ``job-crawler`` command."""
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="job-crawler",
        description="Crawl a job board and save job records as JSON lines"
    )
    parser.add_argument("--version", action="version", version=f"{settings.APP_NAME} {settings.VERSION}")
    parser.add_argument("--keyword", help="Search keyword used to build the seed listing URL")
    parser.add_argument("--seed", action="append", default=[], help="Seed URL (repeatable)")
    parser.add_argument("--target", type=int, help="Maximum number of records to save")
    parser.add_argument("--max-pages", type=int, help="Maximum listing pages per seed")
    parser.add_argument("--no-details", action="store_true", help="Save listing summaries without visiting job pages")
    parser.add_argument("--min-delay-ms", type=int, help="Lower bound of the delay before each request")
    parser.add_argument("--max-delay-ms", type=int, help="Upper bound of the delay before each request")
    parser.add_argument("--concurrency", type=int, help="Number of concurrent workers")
    parser.add_argument("--max-retries", type=int, help="Retries per URL before giving up")
    parser.add_argument(
        "--date-filter",
        choices=[window.value for window in DateWindow],
        default=DateWindow.ALL.value,
        help="Only keep jobs posted within this window"
    )
    parser.add_argument("--output", default="jobs.jsonl", help="Output file (JSON lines)")
    parser.add_argument("--browser", action="store_true", help="Render pages with headless Chrome")
    parser.add_argument("--proxy-url", help="Proxy passed to the fetcher")
    parser.add_argument("--landmark", help="CSS selector the browser waits for after each navigation")
    parser.add_argument("--user-agent", help="Fixed user agent instead of the rotation")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    return parser


def config_from_args(args: argparse.Namespace) -> CrawlConfig:
    """Merge command line options over the application settings."""
    return CrawlConfig.from_settings(
        get_settings(),
        seeds=args.seed or None,
        keyword=args.keyword,
        target_count=args.target,
        max_pages=args.max_pages,
        collect_details=False if args.no_details else None,
        min_delay_ms=args.min_delay_ms,
        max_delay_ms=args.max_delay_ms,
        concurrency=args.concurrency,
        max_retries=args.max_retries,
        date_filter=DateWindow(args.date_filter),
        scraper_type=ScraperType.SELENIUM if args.browser else None,
        proxy_url=args.proxy_url,
        landmark_selector=args.landmark,
        user_agent=args.user_agent,
    )


async def run_crawl(config: CrawlConfig, output: str) -> CrawlSummary:
    """Run one crawl with the configured fetcher, writing to ``output``."""
    with JsonLinesSink(output) as sink:
        async with create_fetcher(config) as fetcher:
            driver = CrawlDriver(config, fetcher, sink)
            return await driver.run()


def print_summary(summary: CrawlSummary, output: str) -> None:
    print("\n" + "=" * 60)
    print("CRAWL SUMMARY")
    print("=" * 60)
    print(f"Saved: {summary.saved_count}")
    print(f"Failed: {len(summary.failed_urls)}")
    print(f"Filtered by date: {summary.filtered_count}")
    print(f"Listing pages: {summary.listing_pages}")
    print(f"Detail pages queued: {summary.enqueued_detail_count}")
    print(f"Duration: {summary.duration_seconds:.1f}s")
    if summary.saved_count:
        print(f"\nRecords saved to: {output}")
    if summary.is_anomalous:
        print("\nWARNING: no records were saved")


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point of the ``job-crawler`` command."""
    args = build_parser().parse_args(argv)
    configure_logging(level="DEBUG" if args.verbose else None)
    settings = get_settings()
    logger.info("Starting crawler", app=settings.APP_NAME, version=settings.VERSION)

    try:
        config = config_from_args(args)
        config.validate()
        config.resolve_seeds()
    except ConfigurationError as e:
        logger.error("Invalid configuration", **e.to_dict())
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        summary = asyncio.run(run_crawl(config, args.output))
    except ConfigurationError as e:
        logger.error("Invalid configuration", **e.to_dict())
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        print("\nCrawl interrupted")
        return 130

    print_summary(summary, args.output)
    return EXIT_NOTHING_SAVED if summary.is_anomalous else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
