"""
Tests for the crawl driver.

Runs complete crawls against an in-memory fetcher: task dispatch, quota and
page limits, retries with session rotation, the date filter and the
listing-only mode.
"""

import asyncio
import random

import pytest

from job_crawler.core.exceptions import ConfigurationError
from job_crawler.scrapers.base import CrawlConfig, CrawlTask, TaskKind
from job_crawler.scrapers.crawler import CrawlDriver, CrawlSummary, TaskRun, TaskState
from job_crawler.scrapers.date_filter import DateWindow
from job_crawler.scrapers.fetcher import DEFAULT_SESSION
from tests.conftest import BASE, LISTING_URL, FakeFetcher, detail_page, listing_page

PAGE_2 = f"{LISTING_URL}&page=2"
D1 = f"{BASE}/job/python-developer-10001"
D2 = f"{BASE}/job/backend-engineer-10002"
D3 = f"{BASE}/job/data-engineer-10003"


def listing_chain(pages: int, per_page: int = 0) -> dict:
    """Listing pages 1..pages, each linking to the next one."""
    responses = {}
    for index in range(1, pages + 1):
        url = LISTING_URL if index == 1 else f"{LISTING_URL}&page={index}"
        paths = [f"/job/role-{index}-{n}-{10000 + index * 100 + n}" for n in range(per_page)]
        responses[url] = listing_page(paths, next_href=f"?q=python&page={index + 1}")
    return responses


@pytest.mark.integration
class TestCrawlScenarios:
    """End-to-end crawl runs."""

    async def test_listing_with_three_details_and_next_page(self, fast_config, make_fetcher, memory_sink):
        pages = {
            LISTING_URL: listing_page(
                ["/job/python-developer-10001", "/job/backend-engineer-10002", "/job/data-engineer-10003"],
                next_href="?q=python&page=2"
            ),
            PAGE_2: listing_page([]),
            D1: detail_page("Python Developer", "Acme Software"),
            D2: detail_page("Backend Engineer", None),
            D3: detail_page("Data Engineer", None),
        }
        fetcher = await make_fetcher(fast_config, pages)
        driver = CrawlDriver(fast_config, fetcher, memory_sink)

        summary = await driver.run()

        assert driver.counters.enqueued_detail_count == 3
        # The seed plus exactly one pagination task
        assert driver.counters.enqueued_listing_count == 2
        assert PAGE_2 in fetcher.fetched_urls
        assert summary.saved_count == 1
        assert sorted(summary.failed_urls) == [D2, D3]
        assert summary.listing_pages == 2
        assert summary.is_anomalous is False
        assert [record.title for record in memory_sink.records] == ["Python Developer"]
        assert memory_sink.records[0].company == "Acme Software"

    async def test_listing_only_mode(self, fast_config, make_fetcher, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "collect_details": False})
        pages = {
            LISTING_URL: listing_page(
                ["/job/python-developer-10001", "/job/backend-engineer-10002", "/job/data-engineer-10003"],
                next_href="?q=python&page=2"
            ),
            PAGE_2: listing_page(["/job/python-developer-10001", "/job/qa-engineer-10004"]),
        }
        fetcher = await make_fetcher(config, pages)
        driver = CrawlDriver(config, fetcher, memory_sink)

        summary = await driver.run()

        assert driver.counters.enqueued_detail_count == 0
        assert set(fetcher.fetched_urls) == {LISTING_URL, PAGE_2}
        # The repeated card on page 2 is saved once
        assert summary.saved_count == 4
        assert {record.url for record in memory_sink.records} == {
            D1, D2, D3, f"{BASE}/job/qa-engineer-10004"
        }
        assert all(record.company.startswith("Company ") for record in memory_sink.records)

    async def test_listing_only_mode_never_fetches_detail_seeds(self, fast_config, make_fetcher, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "collect_details": False, "seeds": [D1]})
        fetcher = await make_fetcher(config, {D1: detail_page("Python Developer", "Acme")})
        driver = CrawlDriver(config, fetcher, memory_sink)

        await driver.run()

        assert driver.counters.enqueued_detail_count == 0
        assert driver.counters.listing_pages == 1

    async def test_detail_seed_is_extracted_directly(self, fast_config, make_fetcher, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "seeds": [D1]})
        fetcher = await make_fetcher(config, {D1: detail_page("Python Developer", "Acme")})

        summary = await CrawlDriver(config, fetcher, memory_sink).run()

        assert summary.saved_count == 1
        assert summary.listing_pages == 0

    async def test_quota_is_respected(self, fast_config, make_fetcher, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "target_count": 2})
        pages = listing_chain(pages=3, per_page=5)
        for url in list(pages):
            for path in [p for p in pages[url].split('"') if p.startswith("/job/")]:
                pages[f"{BASE}{path}"] = detail_page("Role", "Acme")
        fetcher = await make_fetcher(config, pages)
        driver = CrawlDriver(config, fetcher, memory_sink)

        summary = await driver.run()

        assert summary.saved_count == 2
        assert len(memory_sink.records) == 2
        assert driver.counters.enqueued_detail_count == 2

    async def test_max_pages_is_respected(self, fast_config, make_fetcher, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "max_pages": 2})
        fetcher = await make_fetcher(config, listing_chain(pages=5))
        driver = CrawlDriver(config, fetcher, memory_sink)

        summary = await driver.run()

        assert fetcher.fetched_urls == [LISTING_URL, PAGE_2]
        assert driver.counters.enqueued_listing_count == 2
        assert summary.is_anomalous is True

    async def test_urls_are_fetched_once(self, fast_config, make_fetcher, memory_sink):
        pages = {
            LISTING_URL: listing_page(["/job/python-developer-10001"], next_href="?q=python&page=2"),
            PAGE_2: listing_page(["/job/python-developer-10001#apply", "/job/python-developer-10001"],
                                 next_href="?q=python"),
            D1: detail_page("Python Developer", "Acme"),
        }
        fetcher = await make_fetcher(fast_config, pages)

        summary = await CrawlDriver(fast_config, fetcher, memory_sink).run()

        assert fetcher.fetched_urls.count(D1) == 1
        assert fetcher.fetched_urls.count(LISTING_URL) == 1
        assert summary.saved_count == 1

    async def test_failed_details_free_quota_for_remaining_links(self, fast_config, make_fetcher, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "target_count": 3, "concurrency": 1})
        broken = [f"/job/a-broken-{n}-1000{n}" for n in range(1, 4)]
        valid = [f"/job/b-valid-{n}-2000{n}" for n in range(1, 3)]
        pages = {LISTING_URL: listing_page(broken + valid)}
        for path in broken:
            pages[f"{BASE}{path}"] = detail_page("Broken Role", None)
        for path in valid:
            pages[f"{BASE}{path}"] = detail_page("Valid Role", "Acme")
        fetcher = await make_fetcher(config, pages)
        driver = CrawlDriver(config, fetcher, memory_sink)

        summary = await driver.run()

        assert summary.saved_count == 2
        assert len(summary.failed_urls) == 3
        assert driver.counters.enqueued_detail_count == 5
        assert all(f"{BASE}{path}" in fetcher.fetched_urls for path in valid)
        assert summary.is_anomalous is False

    async def test_backlog_is_not_used_once_quota_met(self, fast_config, make_fetcher, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "target_count": 1, "concurrency": 1})
        paths = [f"/job/role-{n}-3000{n}" for n in range(1, 4)]
        pages = {LISTING_URL: listing_page(paths)}
        for path in paths:
            pages[f"{BASE}{path}"] = detail_page("Role", "Acme")
        fetcher = await make_fetcher(config, pages)
        driver = CrawlDriver(config, fetcher, memory_sink)

        summary = await driver.run()

        assert summary.saved_count == 1
        assert driver.counters.enqueued_detail_count == 1
        assert len(fetcher.fetched_urls) == 2

    async def test_listing_only_failures_recorded_once(self, fast_config, make_fetcher, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "collect_details": False})
        state = (
            '<script id="__NEXT_DATA__" type="application/json">'
            '{"props": {"pageProps": {"jobs": [{"title": "Ghost Role", "jobUrl": "/job/ghost-role-10009"}]}}}'
            '</script>'
        )
        pages = {
            LISTING_URL: listing_page(["/job/python-developer-10001"], next_href="?q=python&page=2", extra=state),
            PAGE_2: listing_page([], extra=state),
        }
        fetcher = await make_fetcher(config, pages)

        summary = await CrawlDriver(config, fetcher, memory_sink).run()

        assert summary.listing_pages == 2
        assert summary.failed_urls == [f"{BASE}/job/ghost-role-10009"]
        assert summary.saved_count == 1

    async def test_date_filter(self, fast_config, make_fetcher, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "date_filter": DateWindow.HOURS_24})
        pages = {
            LISTING_URL: listing_page([
                "/job/python-developer-10001",
                "/job/backend-engineer-10002",
                "/job/data-engineer-10003",
            ]),
            D1: detail_page("Fresh", "Acme", body="<p>Posted On: 3 hours ago</p>"),
            D2: detail_page("Stale", "Acme", body="<p>Posted On: 5 days ago</p>"),
            D3: detail_page("Undated", "Acme"),
        }
        fetcher = await make_fetcher(config, pages)

        summary = await CrawlDriver(config, fetcher, memory_sink).run()

        assert sorted(record.title for record in memory_sink.records) == ["Fresh", "Undated"]
        assert summary.filtered_count == 1
        assert summary.failed_urls == []


@pytest.mark.integration
class TestRetries:
    """Retry, rotation and abandonment."""

    async def test_blocked_fetch_retries_with_new_session(self, fast_config, make_fetcher, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "seeds": [D1]})
        pages = {D1: [(503, "<html>busy</html>"), detail_page("Python Developer", "Acme")]}
        fetcher = await make_fetcher(config, pages)

        summary = await CrawlDriver(config, fetcher, memory_sink).run()

        assert summary.saved_count == 1
        sessions = [session for url, session in fetcher.calls]
        assert sessions[0] == DEFAULT_SESSION
        assert sessions[1] != DEFAULT_SESSION
        # Default session plus one rotated session, released after use
        assert fetcher.opened == 2
        assert fetcher.closed == 1

    async def test_retries_exhausted(self, fast_config, make_fetcher, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "seeds": [D1], "max_retries": 2})
        fetcher = await make_fetcher(config, {D1: (429, "slow down")})

        summary = await CrawlDriver(config, fetcher, memory_sink).run()

        assert fetcher.fetched_urls == [D1, D1, D1]
        assert summary.failed_urls == [D1]
        assert summary.is_anomalous is True

    async def test_not_found_is_not_retried(self, fast_config, make_fetcher, memory_sink):
        pages = {LISTING_URL: listing_page(["/job/python-developer-10001"])}
        fetcher = await make_fetcher(fast_config, pages)

        summary = await CrawlDriver(fast_config, fetcher, memory_sink).run()

        assert fetcher.fetched_urls.count(D1) == 1
        assert summary.failed_urls == [D1]

    async def test_extraction_failure_is_not_retried(self, fast_config, make_fetcher, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "seeds": [D1]})
        fetcher = await make_fetcher(config, {D1: detail_page("No Company", None)})

        summary = await CrawlDriver(config, fetcher, memory_sink).run()

        assert fetcher.fetched_urls == [D1]
        assert summary.failed_urls == [D1]

    async def test_unexpected_fetch_error_abandons_task_only(self, fast_config, make_fetcher, memory_sink):
        pages = {
            LISTING_URL: listing_page(["/job/python-developer-10001", "/job/backend-engineer-10002"]),
            D1: ValueError("parser exploded"),
            D2: detail_page("Backend Engineer", "Acme"),
        }
        fetcher = await make_fetcher(fast_config, pages)

        summary = await CrawlDriver(fast_config, fetcher, memory_sink).run()

        assert summary.saved_count == 1
        assert summary.failed_urls == [D1]
        assert fetcher.fetched_urls.count(D1) == 1

    async def test_session_close_failure_does_not_stall_run(self, fast_config, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "seeds": [D1, D2], "concurrency": 1})

        class CrashingCloseFetcher(FakeFetcher):
            async def _close_session(self, handle):
                raise RuntimeError("browser already gone")

        pages = {
            D1: [(503, "<html>busy</html>"), detail_page("Python Developer", "Acme")],
            D2: [(503, "<html>busy</html>"), detail_page("Backend Engineer", "Acme")],
        }
        fetcher = CrashingCloseFetcher(config, pages)
        await fetcher.initialize()

        summary = await asyncio.wait_for(CrawlDriver(config, fetcher, memory_sink).run(), timeout=5)

        assert summary.saved_count == 2
        assert summary.failed_urls == []

    async def test_task_crash_is_contained(self, fast_config, make_fetcher, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "seeds": [D1, D2], "concurrency": 1})
        fetcher = await make_fetcher(config, {
            D1: detail_page("Python Developer", "Acme"),
            D2: detail_page("Backend Engineer", "Acme"),
        })
        calls = []

        async def failing_first_sleep(seconds):
            calls.append(seconds)
            if len(calls) == 1:
                raise RuntimeError("timer broke")

        driver = CrawlDriver(config, fetcher, memory_sink, sleep=failing_first_sleep)
        summary = await asyncio.wait_for(driver.run(), timeout=5)

        assert summary.saved_count == 1
        assert len(summary.failed_urls) == 1
        assert len(fetcher.calls) == 1

    async def test_slow_fetch_times_out(self, make_fetcher, memory_sink):
        config = CrawlConfig(
            seeds=[D1], min_delay_ms=0, max_delay_ms=0, max_retries=1,
            request_timeout=0.05, page_ready_timeout=0.05,
        )

        class SlowFetcher(FakeFetcher):
            async def fetch(self, url, session=None):
                await asyncio.sleep(5)

        fetcher = SlowFetcher(config, {})
        await fetcher.initialize()

        summary = await CrawlDriver(config, fetcher, memory_sink).run()

        assert summary.failed_urls == [D1]
        assert fetcher.opened == 2


@pytest.mark.unit
class TestDriverMechanics:
    """Configuration, politeness and the task state machine."""

    async def test_politeness_delay_before_every_fetch(self, fast_config, make_fetcher, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "min_delay_ms": 100, "max_delay_ms": 200})
        pages = {
            LISTING_URL: listing_page(["/job/python-developer-10001", "/job/backend-engineer-10002"]),
            D1: detail_page("A", "Acme"),
            D2: detail_page("B", "Acme"),
        }
        fetcher = await make_fetcher(config, pages)
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        driver = CrawlDriver(config, fetcher, memory_sink, rng=random.Random(7), sleep=record_sleep)
        await driver.run()

        assert len(delays) == len(fetcher.calls) == 3
        assert all(0.1 <= delay <= 0.2 for delay in delays)

    async def test_no_usable_seed(self, make_fetcher, memory_sink):
        config = CrawlConfig(seeds=["not a url", "mailto:jobs@example.pk"], min_delay_ms=0, max_delay_ms=0)
        fetcher = await make_fetcher(config, {})

        with pytest.raises(ConfigurationError):
            await CrawlDriver(config, fetcher, memory_sink).run()
        assert fetcher.calls == []

    async def test_no_seed_and_no_keyword(self, make_fetcher, memory_sink):
        config = CrawlConfig(min_delay_ms=0, max_delay_ms=0)
        fetcher = await make_fetcher(config, {})

        with pytest.raises(ConfigurationError):
            await CrawlDriver(config, fetcher, memory_sink).run()

    async def test_keyword_seed(self, make_fetcher, memory_sink):
        config = CrawlConfig(
            keyword="data analyst",
            search_url_template=f"{BASE}/jobs/search?q={{keyword}}",
            min_delay_ms=0,
            max_delay_ms=0,
        )
        fetcher = await make_fetcher(config, {})

        summary = await CrawlDriver(config, fetcher, memory_sink).run()

        assert fetcher.fetched_urls == [f"{BASE}/jobs/search?q=data+analyst"]
        assert summary.seeds == [f"{BASE}/jobs/search?q=data+analyst"]

    async def test_invalid_bounds(self, make_fetcher, memory_sink):
        config = CrawlConfig(seeds=[LISTING_URL], min_delay_ms=500, max_delay_ms=100)
        fetcher = await make_fetcher(config, {})

        with pytest.raises(ConfigurationError):
            await CrawlDriver(config, fetcher, memory_sink).run()

    async def test_counters_reset_between_runs(self, fast_config, make_fetcher, memory_sink):
        config = CrawlConfig(**{**fast_config.__dict__, "seeds": [D1]})
        fetcher = await make_fetcher(config, {D1: detail_page("Python Developer", "Acme")})
        driver = CrawlDriver(config, fetcher, memory_sink)

        first = await driver.run()
        second = await driver.run()

        assert first.saved_count == second.saved_count == 1
        assert len(memory_sink.records) == 2

    def test_task_state_transitions(self):
        run = TaskRun(task=CrawlTask(url=D1, kind=TaskKind.DETAIL))

        run.advance(TaskState.FETCHING)
        run.advance(TaskState.FAILED)
        run.advance(TaskState.RETRYING)
        run.advance(TaskState.QUEUED)
        run.advance(TaskState.FETCHING)
        run.advance(TaskState.PARSED)
        run.advance(TaskState.DISPATCHED)

        with pytest.raises(RuntimeError):
            run.advance(TaskState.QUEUED)

    def test_illegal_transition(self):
        run = TaskRun(task=CrawlTask(url=D1, kind=TaskKind.DETAIL))
        with pytest.raises(RuntimeError):
            run.advance(TaskState.PARSED)

    def test_summary_anomaly(self):
        summary = CrawlSummary(
            seeds=[LISTING_URL], saved_count=0, failed_urls=[], filtered_count=0,
            listing_pages=1, enqueued_detail_count=0, duration_seconds=0.5,
        )
        assert summary.is_anomalous is True
        assert summary.to_dict()["anomalous"] is True
        summary.saved_count = 3
        assert summary.is_anomalous is False
