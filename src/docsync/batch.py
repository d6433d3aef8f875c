"""
Batch Processor - Fan-out/fan-in execution of crawl entries.

Items are partitioned into fixed-size batches that run strictly one
after another; the items of a batch run concurrently. Individual
failures are captured per item and never cancel siblings.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class BatchStatus(str, Enum):
	"""Status of a batch operation."""
	COMPLETED = "completed"
	PARTIAL_FAILURE = "partial_failure"
	FAILED = "failed"


@dataclass
class BatchResult(Generic[T, R]):
	"""Result of processing a single item."""
	item: T
	success: bool
	result: Optional[R] = None
	error: Optional[BaseException] = None


@dataclass
class BatchSummary(Generic[T, R]):
	"""Summary of a completed batch operation."""
	status: BatchStatus
	total: int
	succeeded: int
	failed: int
	results: list[BatchResult[T, R]] = field(default_factory=list)

	@property
	def success_rate(self) -> float:
		"""Fraction of items that succeeded."""
		if self.total == 0:
			return 0.0
		return self.succeeded / self.total


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
	"""Split items into consecutive lists of at most ``size``."""
	if size < 1:
		raise ValueError("size must be at least 1")
	return [list(items[i:i + size]) for i in range(0, len(items), size)]


class BatchProcessor(Generic[T, R]):
	"""
	Processes items in sequential fixed-size batches.

	Peak concurrency is bounded by ``batch_size``; ``pause`` seconds are
	slept between consecutive batches.
	"""

	def __init__(
		self,
		batch_size: int = 5,
		pause: float = 0.0,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	):
		"""
		Initialize batch processor.

		Args:
			batch_size: Items per batch, and the concurrency limit
			pause: Seconds to wait between batches
			sleep: Sleep coroutine, replaceable in tests
		"""
		if batch_size < 1:
			raise ValueError("batch_size must be at least 1")
		self.batch_size = batch_size
		self.pause = pause
		self._sleep = sleep

	async def execute(
		self,
		items: Sequence[T],
		handler: Callable[[T], Awaitable[R]],
		on_batch_complete: Optional[Callable[[list[BatchResult[T, R]]], Awaitable[None]]] = None,
	) -> BatchSummary[T, R]:
		"""
		Run every item through the handler.

		Args:
			items: Items to process, in order
			handler: Async function to process each item
			on_batch_complete: Awaited with each batch's results before the
				next batch starts; exceptions it raises abort the run

		Returns:
			BatchSummary with results in input order
		"""
		results: list[BatchResult[T, R]] = []
		batches = chunked(items, self.batch_size)

		for index, batch in enumerate(batches):
			if index > 0 and self.pause > 0:
				await self._sleep(self.pause)

			logger.debug(f"Processing batch {index + 1}/{len(batches)} ({len(batch)} items)")
			batch_results = await self._run_batch(batch, handler)
			results.extend(batch_results)

			if on_batch_complete:
				await on_batch_complete(batch_results)

		succeeded = sum(1 for r in results if r.success)
		failed = len(results) - succeeded

		if failed == 0:
			status = BatchStatus.COMPLETED
		elif succeeded == 0:
			status = BatchStatus.FAILED
		else:
			status = BatchStatus.PARTIAL_FAILURE

		return BatchSummary(
			status=status,
			total=len(items),
			succeeded=succeeded,
			failed=failed,
			results=results,
		)

	async def _run_batch(
		self,
		batch: list[T],
		handler: Callable[[T], Awaitable[R]],
	) -> list[BatchResult[T, R]]:
		async def process_item(item: T) -> BatchResult[T, R]:
			try:
				return BatchResult(item=item, success=True, result=await handler(item))
			except Exception as e:
				return BatchResult(item=item, success=False, error=e)

		# Fan out, fan in; gather preserves input order
		return list(await asyncio.gather(*(process_item(item) for item in batch)))
