from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True, slots=True)
class BatchFailure:
    """A chunk whose handler raised."""

    index: int
    size: int
    error: Exception


@dataclass
class BatchReport(Generic[R]):
    """Outcome of running a handler over every chunk of a sequence."""

    results: list[R] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)
    processed_items: int = 0
    failed_items: int = 0

    @property
    def batches(self) -> int:
        return len(self.results) + len(self.failures)

    @property
    def failed_batches(self) -> int:
        return len(self.failures)


def chunked(items: Sequence[T], batch_size: int) -> list[Sequence[T]]:
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")
    return [items[i : i + batch_size] for i in range(0, len(items), batch_size)]


async def process_batch(
    items: Sequence[T],
    batch_size: int,
    fn: Callable[[Sequence[T]], Awaitable[R]],
) -> BatchReport[R]:
    """Await ``fn`` on consecutive chunks of ``items``, one chunk at a time.

    Chunks run sequentially to bound load on the storage backend. A chunk
    whose handler raises is recorded in ``failures`` and the remaining chunks
    still run.
    """
    report: BatchReport[R] = BatchReport()
    for index, batch in enumerate(chunked(items, batch_size)):
        try:
            result = await fn(batch)
        except Exception as e:
            report.failures.append(BatchFailure(index=index, size=len(batch), error=e))
            report.failed_items += len(batch)
            continue
        report.results.append(result)
        report.processed_items += len(batch)
    return report
