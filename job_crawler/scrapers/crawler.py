"""
Crawl Driver

Runs one crawl: seeds a task queue, processes listing and detail tasks with a
bounded worker pool, and hands valid records to the sink until the queue is
drained or the record quota is met.

Per-task lifecycle::

    QUEUED -> FETCHING -> PARSED -> DISPATCHED
                       -> FAILED -> RETRYING -> QUEUED
                                 -> ABANDONED

Shared run state (visited URLs, counters, pending detail count, link backlog)
is owned by the driver instance and only touched while holding its lock.
"""

import asyncio
import random
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Awaitable, Deque, Dict, List, Optional, Set, Union

from job_crawler.core.exceptions import (
    ConfigurationError,
    FetchError,
    FetchTimeoutError,
)
from job_crawler.scrapers.base import (
    CrawlConfig,
    CrawlTask,
    ExtractionFailure,
    JobRecord,
    TaskKind,
)
from job_crawler.scrapers.date_filter import passes_date_filter
from job_crawler.scrapers.detail import extract_job
from job_crawler.scrapers.fetcher import BaseFetcher, FetchResult
from job_crawler.scrapers.listing import extract_detail_links, extract_listing_jobs
from job_crawler.scrapers.pagination import find_next_page
from job_crawler.scrapers.urls import DetailUrlClassifier, PageShape, normalize_url
from job_crawler.services.sink import JobSink
from job_crawler.utils.logger import get_logger, log_scraping_activity

logger = get_logger(__name__)


class TaskState(Enum):
    """Lifecycle states of a crawl task."""
    QUEUED = "queued"
    FETCHING = "fetching"
    PARSED = "parsed"
    DISPATCHED = "dispatched"
    FAILED = "failed"
    RETRYING = "retrying"
    ABANDONED = "abandoned"


ALLOWED_TRANSITIONS: Dict[TaskState, Set[TaskState]] = {
    TaskState.QUEUED: {TaskState.FETCHING},
    TaskState.FETCHING: {TaskState.PARSED, TaskState.FAILED},
    TaskState.PARSED: {TaskState.DISPATCHED, TaskState.ABANDONED},
    TaskState.FAILED: {TaskState.RETRYING, TaskState.ABANDONED},
    TaskState.RETRYING: {TaskState.QUEUED},
    TaskState.DISPATCHED: set(),
    TaskState.ABANDONED: set(),
}


@dataclass
class TaskRun:
    """Mutable execution state wrapped around an immutable crawl task."""

    task: CrawlTask
    state: TaskState = TaskState.QUEUED
    attempts: int = 0
    session: Optional[str] = None
    finished: bool = False

    def advance(self, state: TaskState) -> None:
        if state not in ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal task transition {self.state.value} -> {state.value} for {self.task.url}"
            )
        self.state = state


@dataclass
class RunCounters:
    """Run-wide counters. Reset at the start of every run."""

    saved_count: int = 0
    enqueued_detail_count: int = 0
    enqueued_listing_count: int = 0
    listing_pages: int = 0
    filtered_count: int = 0
    failed_urls: List[str] = field(default_factory=list)


@dataclass
class CrawlSummary:
    """Final report of a crawl run."""

    seeds: List[str]
    saved_count: int
    failed_urls: List[str]
    filtered_count: int
    listing_pages: int
    enqueued_detail_count: int
    duration_seconds: float

    @property
    def is_anomalous(self) -> bool:
        """Zero saved records despite having seeds."""
        return self.saved_count == 0 and bool(self.seeds)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seeds": list(self.seeds),
            "saved_count": self.saved_count,
            "failed_count": len(self.failed_urls),
            "failed_urls": list(self.failed_urls),
            "filtered_count": self.filtered_count,
            "listing_pages": self.listing_pages,
            "enqueued_detail_count": self.enqueued_detail_count,
            "duration_seconds": round(self.duration_seconds, 3),
            "anomalous": self.is_anomalous,
        }


class CrawlDriver:
    """
    Queue-driven crawler over a fetch collaborator and a sink.

    The fetcher must already be initialized; the driver opens and releases
    extra sessions on it when retrying.
    """

    def __init__(
        self,
        config: CrawlConfig,
        fetcher: BaseFetcher,
        sink: JobSink,
        classifier: Optional[DetailUrlClassifier] = None,
        rng: Optional[random.Random] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None
    ) -> None:
        self.config = config
        self.fetcher = fetcher
        self.sink = sink
        self.classifier = classifier or DetailUrlClassifier(config.excluded_segments)
        self._rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep

        self.counters = RunCounters()
        self._visited: Set[str] = set()
        self._pending_details = 0
        self._backlog: Deque[str] = deque()
        self._failed: Set[str] = set()
        self._lock = asyncio.Lock()
        self._queue: Optional[asyncio.Queue] = None

    @property
    def quota_met(self) -> bool:
        return self.counters.saved_count >= self.config.target_count

    def _seed_tasks(self) -> List[CrawlTask]:
        tasks = []
        for seed in self.config.resolve_seeds():
            url = normalize_url(seed, seed)
            if url is None:
                logger.warning("Skipping unusable seed", seed=seed)
                continue
            # A seed that is itself a job page goes straight to extraction
            is_detail = self.config.collect_details and self.classifier.is_detail_url(url, PageShape.HTML_ANCHORS)
            kind = TaskKind.DETAIL if is_detail else TaskKind.LISTING
            tasks.append(CrawlTask(url=url, kind=kind, page_index=1))

        if not tasks:
            raise ConfigurationError(
                "No usable seed URL",
                details={"seeds": list(self.config.seeds), "keyword": self.config.keyword},
            )
        return tasks

    async def run(self) -> CrawlSummary:
        """
        Execute the crawl.

        Returns:
            CrawlSummary: Saved and failed counts for the run

        Raises:
            ConfigurationError: If the configuration is invalid or yields no seed
        """
        self.config.validate()
        seeds = self._seed_tasks()

        self.counters = RunCounters()
        self._visited = set()
        self._pending_details = 0
        self._backlog = deque()
        self._failed = set()
        self._queue = asyncio.Queue()
        started = time.monotonic()

        logger.info(
            "Starting crawl",
            seeds=[task.url for task in seeds],
            target_count=self.config.target_count,
            max_pages=self.config.max_pages,
            collect_details=self.config.collect_details,
            date_filter=self.config.date_filter.value,
        )

        async with self._lock:
            for task in seeds:
                self._enqueue(task)

        workers = [
            asyncio.create_task(self._worker(index))
            for index in range(self.config.concurrency)
        ]
        try:
            await self._queue.join()
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        summary = CrawlSummary(
            seeds=[task.url for task in seeds],
            saved_count=self.counters.saved_count,
            failed_urls=list(self.counters.failed_urls),
            filtered_count=self.counters.filtered_count,
            listing_pages=self.counters.listing_pages,
            enqueued_detail_count=self.counters.enqueued_detail_count,
            duration_seconds=time.monotonic() - started,
        )

        logger.info("Crawl finished", **summary.to_dict())
        if summary.is_anomalous:
            logger.error(
                "Crawl saved zero records",
                seeds=summary.seeds,
                failed_count=len(summary.failed_urls),
                listing_pages=summary.listing_pages,
            )
        return summary

    def _enqueue(self, task: CrawlTask) -> bool:
        """Enqueue an unseen task. Caller holds the lock."""
        if task.url in self._visited:
            return False
        self._visited.add(task.url)
        self._admit(task)
        return True

    def _admit(self, task: CrawlTask) -> None:
        """Count and queue a task. Caller holds the lock."""
        if task.kind == TaskKind.DETAIL:
            self._pending_details += 1
            self.counters.enqueued_detail_count += 1
        else:
            self.counters.enqueued_listing_count += 1
        self._queue.put_nowait(TaskRun(task=task))

    @property
    def _detail_slots(self) -> int:
        return self.config.target_count - self.counters.saved_count - self._pending_details

    def _refill_details(self) -> int:
        """Move backlog links into the queue while the quota has room. Caller holds the lock."""
        added = 0
        while self._backlog and self._detail_slots > 0:
            self._admit(CrawlTask(url=self._backlog.popleft(), kind=TaskKind.DETAIL))
            added += 1
        return added

    async def _worker(self, index: int) -> None:
        while True:
            run = await self._queue.get()
            try:
                await self._process(run)
            except Exception as e:
                logger.error(
                    "Task crashed",
                    worker=index,
                    url=run.task.url,
                    kind=run.task.kind.value,
                    error=str(e),
                    exc_info=True,
                )
                await self._record_failure(run.task.url)
                await self._finish(run)
            finally:
                self._queue.task_done()

    async def _politeness_delay(self) -> None:
        delay_ms = self._rng.uniform(self.config.min_delay_ms, self.config.max_delay_ms)
        await self._sleep(delay_ms / 1000.0)

    async def _process(self, run: TaskRun) -> None:
        task = run.task

        if self.quota_met:
            logger.debug("Quota met, dropping queued task", url=task.url, kind=task.kind.value)
            await self._finish(run)
            return

        await self._politeness_delay()
        run.advance(TaskState.FETCHING)
        run.attempts += 1
        log_scraping_activity("fetch", url=task.url, kind=task.kind.value, attempt=run.attempts)

        fetch_timeout = self.config.request_timeout + self.config.page_ready_timeout
        try:
            result = await asyncio.wait_for(
                self.fetcher.fetch(task.url, run.session),
                timeout=fetch_timeout
            )
        except asyncio.TimeoutError:
            await self._handle_fetch_failure(run, FetchTimeoutError(task.url, timeout=fetch_timeout))
            return
        except FetchError as e:
            await self._handle_fetch_failure(run, e)
            return
        except Exception as e:
            logger.error("Unexpected fetch error", url=task.url, error=str(e), exc_info=True)
            await self._handle_fetch_failure(run, FetchError(task.url, message=str(e), retryable=False))
            return

        run.advance(TaskState.PARSED)
        try:
            if task.kind == TaskKind.LISTING:
                await self._handle_listing(task, result)
            else:
                await self._handle_detail(task, result)
        except Exception as e:
            logger.error("Task processing failed", url=task.url, kind=task.kind.value, error=str(e), exc_info=True)
            run.advance(TaskState.ABANDONED)
            await self._record_failure(task.url)
        else:
            run.advance(TaskState.DISPATCHED)
        await self._finish(run)

    async def _handle_fetch_failure(self, run: TaskRun, error: FetchError) -> None:
        task = run.task
        run.advance(TaskState.FAILED)
        retries_used = run.attempts - 1

        session = None
        if error.retryable and retries_used < self.config.max_retries:
            try:
                session = await self.fetcher.new_session()
            except Exception as e:
                logger.error("Could not open a new session", url=task.url, error=str(e))

        if session is not None:
            run.advance(TaskState.RETRYING)
            await self._release(run.session)
            run.session = session
            run.advance(TaskState.QUEUED)
            log_scraping_activity(
                "retry",
                url=task.url,
                kind=task.kind.value,
                attempt=run.attempts,
                error_code=error.error_code,
                status_code=error.status_code,
            )
            await self._queue.put(run)
            return

        run.advance(TaskState.ABANDONED)
        log_scraping_activity(
            "abandoned",
            url=task.url,
            kind=task.kind.value,
            attempts=run.attempts,
            error_code=error.error_code,
            error=error.message,
        )
        await self._record_failure(task.url)
        await self._finish(run)

    async def _finish(self, run: TaskRun) -> None:
        """Free a finished task's quota slot and release its session. Runs once per task."""
        if run.finished:
            return
        run.finished = True

        if run.task.kind == TaskKind.DETAIL:
            async with self._lock:
                self._pending_details -= 1
                if not self.quota_met:
                    self._refill_details()

        session, run.session = run.session, None
        await self._release(session)

    async def _release(self, session: Optional[str]) -> None:
        try:
            await self.fetcher.release_session(session)
        except Exception as e:
            logger.warning("Could not release session", session=session, error=str(e))

    async def _record_failure(self, url: str) -> None:
        async with self._lock:
            if url in self._failed:
                return
            self._failed.add(url)
            self.counters.failed_urls.append(url)

    async def _handle_listing(self, task: CrawlTask, result: FetchResult) -> None:
        soup, base_url = result.document, result.url

        links: Set[str] = set()
        if self.config.collect_details:
            links = extract_detail_links(soup, base_url, self.classifier)
        else:
            outcomes = extract_listing_jobs(
                soup,
                base_url,
                self.classifier,
                self.config.description_max_chars
            )
            for outcome in outcomes:
                await self._accept(outcome)

        async with self._lock:
            self.counters.listing_pages += 1
            # Links beyond the quota wait in the backlog for slots freed by failures
            for url in sorted(links):
                if url not in self._visited:
                    self._visited.add(url)
                    self._backlog.append(url)
            added = self._refill_details()

            next_url = find_next_page(
                soup,
                base_url,
                task.page_index,
                self.config.max_pages,
                quota_met=self.quota_met
            )
            next_enqueued = bool(next_url) and self._enqueue(
                CrawlTask(url=next_url, kind=TaskKind.LISTING, page_index=task.page_index + 1)
            )

        log_scraping_activity(
            "listing_parsed",
            url=task.url,
            kind=task.kind.value,
            page_index=task.page_index,
            links_found=len(links),
            details_enqueued=added,
            next_page=next_url if next_enqueued else None,
        )

    async def _handle_detail(self, task: CrawlTask, result: FetchResult) -> None:
        outcome = extract_job(result.document, task.url, self.config.description_max_chars)
        await self._accept(outcome)

    async def _accept(self, outcome: Union[JobRecord, ExtractionFailure]) -> None:
        """Filter, count and save one extraction outcome."""
        if isinstance(outcome, ExtractionFailure):
            logger.warning(
                "Extraction failed",
                url=outcome.url,
                reason=outcome.reason,
                missing_fields=outcome.missing_fields,
            )
            await self._record_failure(outcome.url)
            return

        if not passes_date_filter(outcome.date_posted, self.config.date_filter):
            logger.debug(
                "Record outside date window",
                url=outcome.url,
                date_posted=outcome.date_posted,
                window=self.config.date_filter.value,
            )
            async with self._lock:
                self.counters.filtered_count += 1
            return

        async with self._lock:
            if self.quota_met:
                logger.debug("Quota met, record not saved", url=outcome.url)
                return
            if not self.config.collect_details:
                # Listing summaries repeat across pages
                if outcome.url in self._visited:
                    return
                self._visited.add(outcome.url)
            self.sink.append(outcome)
            self.counters.saved_count += 1
            saved = self.counters.saved_count

        log_scraping_activity("saved", url=outcome.url, title=outcome.title, saved_count=saved)
