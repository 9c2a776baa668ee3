"""Bounded-concurrency download orchestrator.

Runs one worker per item with at most ``concurrency`` workers in flight.
Items are started in submission order; completion order is whatever the
network makes it. A worker that raises is recorded as a failure and never
stops the rest of the batch.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

import structlog

T = TypeVar("T")

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[int, int], None]
ErrorCallback = Callable[[str, BaseException], None]
SleepFn = Callable[[float], Awaitable[None]]


class ItemStatus(str, Enum):
    DOWNLOADED = "downloaded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ItemFailure:
    item_id: str
    error: str

    def as_dict(self) -> dict[str, str]:
        return {"id": self.item_id, "error": self.error}


@dataclass
class BatchStats:
    total: int = 0
    downloaded: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[ItemFailure] = field(default_factory=list)

    @property
    def completed(self) -> int:
        return self.downloaded + self.skipped + self.failed

    def record(self, status: ItemStatus) -> None:
        if status is ItemStatus.DOWNLOADED:
            self.downloaded += 1
        elif status is ItemStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1


def describe_error(exc: BaseException) -> str:
    message = str(exc)
    return message or exc.__class__.__name__


class DownloadOrchestrator(Generic[T]):
    """Work queue drained by a bounded set of asyncio tasks.

    Args:
        concurrency: Maximum number of workers in flight
        delay: Seconds to wait after starting a worker while more items remain
        key: Maps an item to the identifier recorded on failure
        on_progress: Called with ``(completed, total)`` after every item
        on_error: Called with ``(item_id, error)`` for every failed item
    """

    def __init__(
        self,
        *,
        concurrency: int = 3,
        delay: float = 0.0,
        key: Callable[[T], str] = str,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.delay = max(0.0, delay)
        self._key = key
        self._on_progress = on_progress
        self._on_error = on_error
        self._sleep = sleep
        self.stats = BatchStats()

    async def run(self, items: Iterable[T], worker: Callable[[T], Awaitable[ItemStatus]]) -> BatchStats:
        pending: deque[T] = deque(items)
        stats = self.stats = BatchStats(total=len(pending))
        in_flight: set[asyncio.Task[None]] = set()

        log = logger.bind(total=stats.total, concurrency=self.concurrency)
        log.debug("batch_started")

        while pending or in_flight:
            while pending and len(in_flight) < self.concurrency:
                item = pending.popleft()
                in_flight.add(asyncio.create_task(self._process(item, worker, stats)))
                if pending and self.delay > 0:
                    await self._sleep(self.delay)
            if in_flight:
                _, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)

        log.debug(
            "batch_finished",
            downloaded=stats.downloaded,
            skipped=stats.skipped,
            failed=stats.failed,
        )
        return stats

    async def _process(
        self,
        item: T,
        worker: Callable[[T], Awaitable[ItemStatus]],
        stats: BatchStats,
    ) -> None:
        item_id = self._key(item)
        try:
            status = await worker(item)
        except Exception as exc:
            status = ItemStatus.FAILED
            stats.failures.append(ItemFailure(item_id=item_id, error=describe_error(exc)))
            logger.info("item_failed", item_id=item_id, error=describe_error(exc))
            if self._on_error is not None:
                self._on_error(item_id, exc)
        stats.record(status)
        if self._on_progress is not None:
            self._on_progress(stats.completed, stats.total)


__all__ = [
    "BatchStats",
    "DownloadOrchestrator",
    "ItemFailure",
    "ItemStatus",
    "describe_error",
]
