"""Batch scheduler — paced, failure-isolated execution of async work.

Items are processed in fixed-size chunks. Every item in a chunk runs
concurrently; the next chunk starts only after the current one has fully
settled, followed by a fixed pause (skipped after the last chunk).

One item failing never cancels its siblings: exceptions are captured per
item and turned into ``Failed`` results. The scheduler itself never retries.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from grindboard.engine.results import (
    ErrorKind,
    Failed,
    ItemResult,
    RunSummary,
    Success,
    is_item_result,
)
from grindboard.observability.logger import get_logger
from grindboard.observability.metrics import MetricsCollector

log = get_logger(__name__)

T = TypeVar("T")


@dataclass
class BatchReport(Generic[T]):
    """Outcome of one scheduler run, results in input order."""
    results: list[ItemResult] = field(default_factory=list)
    summary: RunSummary = field(default_factory=RunSummary)
    chunks: int = 0
    duration_secs: float = 0.0

    def by_key(self) -> dict[str, ItemResult]:
        return {r.key: r for r in self.results}


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    """Split ``items`` into consecutive slices of at most ``size``."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    return [items[i:i + size] for i in range(0, len(items), size)]


class BatchScheduler:
    """Run async units of work under a concurrency cap with pacing."""

    def __init__(
        self,
        concurrency: int,
        delay_secs: float = 0.0,
        *,
        metrics: MetricsCollector | None = None,
        name: str = "batch",
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if delay_secs < 0:
            raise ValueError("delay_secs must be >= 0")
        self._concurrency = concurrency
        self._delay = delay_secs
        self._metrics = metrics
        self._name = name

    async def _pause(self) -> None:
        if self._delay > 0:
            await asyncio.sleep(self._delay)

    async def run(
        self,
        items: Sequence[T],
        worker: Callable[[T], Awaitable[Any]],
        key: Callable[[T], str] = str,
    ) -> BatchReport[T]:
        """Execute ``worker`` once per item and collect every outcome.

        A worker may return an ``ItemResult`` directly; any other return value
        is wrapped in ``Success``. Raised exceptions become ``Failed`` with
        ``ErrorKind.INTERNAL`` for that item only.
        """
        start = time.monotonic()
        report: BatchReport[T] = BatchReport()
        chunks = chunked(list(items), self._concurrency)

        log.info(
            f"{self._name}.started",
            items=len(items),
            chunks=len(chunks),
            concurrency=self._concurrency,
            delay_secs=self._delay,
        )

        for idx, chunk in enumerate(chunks, start=1):
            settled = await asyncio.gather(
                *(worker(item) for item in chunk),
                return_exceptions=True,
            )
            for item, outcome in zip(chunk, settled):
                result = self._to_result(key(item), outcome)
                report.results.append(result)
                report.summary.add(result)
                if self._metrics is not None:
                    self._metrics.incr(f"{self._name}.{result.status}")

            report.chunks = idx
            log.debug(f"{self._name}.chunk_done", chunk=idx, of=len(chunks), size=len(chunk))

            if idx < len(chunks):
                await self._pause()

        report.duration_secs = time.monotonic() - start
        if self._metrics is not None:
            self._metrics.observe(f"{self._name}.duration", report.duration_secs)

        log.info(
            f"{self._name}.complete",
            succeeded=report.summary.succeeded,
            failed=report.summary.failed,
            skipped=report.summary.skipped,
            duration_secs=round(report.duration_secs, 3),
        )
        return report

    def _to_result(self, item_key: str, outcome: Any) -> ItemResult:
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                # KeyboardInterrupt, SystemExit, CancelledError
                raise outcome
            log.warning(
                f"{self._name}.item_error",
                key=item_key,
                error=str(outcome),
                error_type=type(outcome).__name__,
            )
            return Failed(item_key, str(outcome) or type(outcome).__name__, ErrorKind.INTERNAL)
        if is_item_result(outcome):
            return outcome
        return Success(item_key, outcome)
