"""Bounded-concurrency fan-out for bulk email work."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

#: Worker signature: (item, index into the input sequence) → awaitable result.
Worker = Callable[[T, int], Awaitable[R]]
ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class ItemSuccess(Generic[T, R]):
    index: int
    item: T
    value: R


@dataclass(frozen=True)
class ItemFailure(Generic[T]):
    index: int
    item: T
    error: Exception


@dataclass
class BatchOutcome(Generic[T, R]):
    """Every input item lands in exactly one of results, errors or skipped.

    skipped holds indices never attempted because the deadline passed; it is
    always empty when no deadline is given.
    """

    results: list[ItemSuccess[T, R]] = field(default_factory=list)
    errors: list[ItemFailure[T]] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)

    @property
    def values(self) -> list[R]:
        return [r.value for r in self.results]

    @property
    def timed_out(self) -> bool:
        return bool(self.skipped)


async def process_in_batches(
    items: Sequence[T],
    worker: Worker[T, R],
    batch_size: int = 5,
    on_progress: ProgressCallback | None = None,
    deadline: float | None = None,
) -> BatchOutcome[T, R]:
    """Run worker over items, batch_size at a time.

    Each chunk runs concurrently and is allowed to settle completely, success
    or failure, before the next chunk starts — chunk-synchronous, not a
    sliding window. A failing item never stops the run; its exception is
    recorded with its input index.

    Args:
        items:        Inputs, processed in chunk order.
        worker:       Async callable invoked as worker(item, index).
        batch_size:   Maximum number of concurrent worker calls.
        on_progress:  Called after each chunk with (completed, total).
        deadline:     Event-loop time (loop.time()) after which no new chunk
                      starts. Work already finished is kept.

    Raises:
        ValueError: if batch_size < 1.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    loop = asyncio.get_running_loop()
    outcome: BatchOutcome[T, R] = BatchOutcome()
    total = len(items)

    for start in range(0, total, batch_size):
        if deadline is not None and loop.time() >= deadline:
            outcome.skipped.extend(range(start, total))
            logger.warning(
                "Batch deadline reached: %d/%d item(s) done, %d skipped",
                start,
                total,
                total - start,
            )
            break

        chunk = items[start:start + batch_size]
        settled = await asyncio.gather(
            *(worker(item, start + offset) for offset, item in enumerate(chunk)),
            return_exceptions=True,
        )

        for offset, value in enumerate(settled):
            index = start + offset
            if isinstance(value, asyncio.CancelledError):
                raise value
            if isinstance(value, BaseException):
                error = value if isinstance(value, Exception) else RuntimeError(repr(value))
                outcome.errors.append(ItemFailure(index=index, item=chunk[offset], error=error))
            else:
                outcome.results.append(ItemSuccess(index=index, item=chunk[offset], value=value))

        if on_progress is not None:
            on_progress(min(start + batch_size, total), total)

    return outcome
