from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from scholargraph.errors import ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BatchFailure(Generic[T]):
    paper: T
    error: BaseException


@dataclass
class BatchSummary:
    success_count: int = 0
    failure_count: int = 0
    failures: list[BatchFailure] = field(default_factory=list)
    skipped_count: int = 0
    cancelled: bool = False

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count + self.skipped_count


class BatchIngestionController(Generic[T]):
    """
    Ingest many papers with at most `concurrency` in flight.

    Papers are processed in fixed chunks. A chunk is joined before the next starts and
    one paper's failure never cancels its siblings. Cancellation is only honoured
    between chunks; papers not yet started are counted as skipped.
    """

    def __init__(self, ingest_one: Callable[[T], Awaitable[Any]], *, chunk_delay_s: float = 2.0):
        self.ingest_one = ingest_one
        self.chunk_delay_s = chunk_delay_s

    async def ingest_many(
        self,
        papers: Sequence[T],
        concurrency: int,
        cancel_event: asyncio.Event | None = None,
    ) -> BatchSummary:
        if concurrency < 1:
            raise ValidationError(f"concurrency must be at least 1, got {concurrency}")

        summary = BatchSummary()
        total_chunks = (len(papers) + concurrency - 1) // concurrency
        logger.info("starting batch of %d papers (concurrency=%d)", len(papers), concurrency)

        for chunk_no, start in enumerate(range(0, len(papers), concurrency), start=1):
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                summary.skipped_count = len(papers) - start
                logger.warning("batch cancelled; skipping %d papers", summary.skipped_count)
                break

            chunk = papers[start : start + concurrency]
            logger.info("processing chunk %d/%d (%d papers)", chunk_no, total_chunks, len(chunk))
            results = await asyncio.gather(*(self.ingest_one(p) for p in chunk), return_exceptions=True)
            for paper, outcome in zip(chunk, results):
                if isinstance(outcome, BaseException):
                    if isinstance(outcome, asyncio.CancelledError):
                        raise outcome
                    summary.failure_count += 1
                    summary.failures.append(BatchFailure(paper, outcome))
                else:
                    summary.success_count += 1

            if chunk_no < total_chunks and self.chunk_delay_s > 0:
                await asyncio.sleep(self.chunk_delay_s)

        logger.info(
            "batch complete: %d succeeded, %d failed, %d skipped",
            summary.success_count,
            summary.failure_count,
            summary.skipped_count,
        )
        return summary
