"""
Record Sinks

Append-only destinations for extracted job records. The crawl driver calls
``append`` once per saved record and does not care about ordering.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import IO, List, Optional, Union

from job_crawler.scrapers.base import JobRecord
from job_crawler.utils.logger import get_logger

logger = get_logger(__name__)


class JobSink(ABC):
    """Destination for job records."""

    @abstractmethod
    def append(self, record: JobRecord) -> None:
        """Store one record."""

    def close(self) -> None:
        """Release any held resources."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class MemorySink(JobSink):
    """Keeps records in a list."""

    def __init__(self) -> None:
        self.records: List[JobRecord] = []

    def append(self, record: JobRecord) -> None:
        self.records.append(record)

    def __len__(self) -> int:
        return len(self.records)


class JsonLinesSink(JobSink):
    """
    Writes one JSON object per line.

    The file is opened lazily on the first record and every line is flushed
    immediately, so records saved before an interrupted run survive.
    """

    def __init__(self, path: Union[str, Path], append: bool = False) -> None:
        self.path = Path(path)
        self.mode = "a" if append else "w"
        self.count = 0
        self._handle: Optional[IO[str]] = None

    def _open(self) -> IO[str]:
        if self._handle is None:
            if self.path.parent and not self.path.parent.exists():
                self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = self.path.open(self.mode, encoding="utf-8")
            logger.info("Opened output file", path=str(self.path), mode=self.mode)
        return self._handle

    def append(self, record: JobRecord) -> None:
        handle = self._open()
        handle.write(json.dumps(record.to_dict(), ensure_ascii=False) + "\n")
        handle.flush()
        self.count += 1

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
            logger.info("Closed output file", path=str(self.path), records=self.count)
