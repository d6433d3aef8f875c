"""
Sliding-window rate limiter shared by every outbound request.

At most ``max_requests`` acquisitions may start within any trailing
window of ``window_seconds``. One instance covers all sources.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
	"""
	Blocks callers until the trailing window has capacity.

	The lock is held while waiting, so callers are admitted in the
	order they arrived.
	"""

	def __init__(
		self,
		max_requests: int,
		window_seconds: float,
		clock: Callable[[], float] = time.monotonic,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	):
		if max_requests < 1:
			raise ValueError("max_requests must be at least 1")
		if window_seconds <= 0:
			raise ValueError("window_seconds must be positive")
		self.max_requests = max_requests
		self.window_seconds = window_seconds
		self._clock = clock
		self._sleep = sleep
		self._timestamps: deque[float] = deque()
		self._lock = asyncio.Lock()

	def _prune(self, now: float) -> None:
		while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
			self._timestamps.popleft()

	async def acquire(self) -> None:
		"""Wait until a request may start, then record it."""
		async with self._lock:
			now = self._clock()
			self._prune(now)
			while len(self._timestamps) >= self.max_requests:
				wait_time = self._timestamps[0] + self.window_seconds - now
				logger.debug(f"Rate limit reached, waiting {wait_time:.3f}s")
				await self._sleep(max(wait_time, 0.0))
				now = self._clock()
				self._prune(now)
			self._timestamps.append(now)

	@property
	def in_window(self) -> int:
		"""Number of acquisitions counted in the current window."""
		self._prune(self._clock())
		return len(self._timestamps)
