"""
Fetcher - Rate-limited HTTP retrieval of sitemaps and pages.

Every request passes through the shared sliding-window limiter and is
bounded by a client timeout.
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from .ratelimit import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


class FetchError(Exception):
	"""Transport-level failure retrieving a single URL."""
	pass


class SitemapError(Exception):
	"""A sitemap could not be fetched or parsed."""
	pass


class Fetcher:
	"""
	Shared aiohttp session plus rate limiter.

	Usage:
		async with Fetcher(limiter, timeout=30) as fetcher:
			html = await fetcher.fetch_page(url)
	"""

	def __init__(
		self,
		limiter: SlidingWindowRateLimiter,
		timeout: float = 30.0,
		user_agent: str = "docsync",
	):
		self.limiter = limiter
		self.timeout = timeout
		self.user_agent = user_agent
		self._session: Optional[aiohttp.ClientSession] = None

	async def open(self) -> None:
		"""Open the HTTP session."""
		if self._session is None or self._session.closed:
			self._session = aiohttp.ClientSession(
				headers={"User-Agent": self.user_agent},
				timeout=aiohttp.ClientTimeout(total=self.timeout),
			)

	async def close(self) -> None:
		"""Close the HTTP session."""
		if self._session is not None:
			await self._session.close()
			self._session = None

	async def __aenter__(self) -> "Fetcher":
		await self.open()
		return self

	async def __aexit__(self, *exc) -> None:
		await self.close()

	@property
	def session(self) -> aiohttp.ClientSession:
		if self._session is None or self._session.closed:
			raise RuntimeError("Fetcher is not open")
		return self._session

	async def fetch_page(self, url: str) -> Optional[str]:
		"""
		Fetch an HTML page.

		Returns:
			The page markup, or None for a non-200 status or a non-HTML
			content type.

		Raises:
			FetchError: On network failure or timeout
		"""
		await self.limiter.acquire()
		logger.debug(f"Fetching page: {url}")
		try:
			async with self.session.get(url) as response:
				if response.status != 200:
					logger.warning(f"Failed to fetch {url}: HTTP {response.status}")
					return None
				if response.content_type not in ("text/html", "application/xhtml+xml"):
					logger.warning(f"Skipping {url}: content type {response.content_type}")
					return None
				return await response.text()
		except (aiohttp.ClientError, asyncio.TimeoutError) as e:
			raise FetchError(f"{type(e).__name__}: {e}") from e

	async def fetch_sitemap(self, url: str) -> str:
		"""
		Fetch a sitemap document.

		Raises:
			SitemapError: On non-200 status, network failure or timeout
		"""
		await self.limiter.acquire()
		logger.debug(f"Fetching sitemap: {url}")
		try:
			async with self.session.get(url) as response:
				if response.status != 200:
					raise SitemapError(f"HTTP {response.status}")
				return await response.text()
		except (aiohttp.ClientError, asyncio.TimeoutError) as e:
			raise SitemapError(f"{type(e).__name__}: {e}") from e
