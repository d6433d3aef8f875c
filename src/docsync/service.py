"""
Docs Service - Composes store, fetcher, orchestrator and scheduler.

All components are built from one Config and share a single lifecycle:
``start()`` opens the store and HTTP session and starts the timer;
``stop()`` stops the timer, waits a bounded time for an active run and
then releases resources.
"""

import logging
from typing import Optional

from .config import Config
from .extractor import Extractor
from .fetcher import Fetcher
from .models import (
	CategorySummary,
	Document,
	GetDocumentInput,
	LedgerEntry,
	ListCategoriesInput,
	RecentUpdatesInput,
	SearchInput,
	SearchResult,
	StatusReport,
	TriggerUpdateInput,
)
from .orchestrator import TriggerResult, UpdateOrchestrator
from .ratelimit import SlidingWindowRateLimiter
from .scheduler import UpdateScheduler
from .sitemap import SitemapReader
from .store import DocumentStore

logger = logging.getLogger(__name__)


class DocsService:
	"""
	Process-level owner of every component.

	Usage:
		service = DocsService(config)
		await service.start()
		results = await service.search(SearchInput(query="push"))
		await service.stop()
	"""

	def __init__(
		self,
		config: Config,
		fetcher: Optional[Fetcher] = None,
		store: Optional[DocumentStore] = None,
	):
		self.config = config
		self.limiter = SlidingWindowRateLimiter(
			config.rate_limit_requests,
			config.rate_limit_window,
		)
		self.fetcher = fetcher or Fetcher(
			self.limiter,
			timeout=config.request_timeout,
			user_agent=config.user_agent,
		)
		self.store = store or DocumentStore(config.db_path)
		self.extractor = Extractor(min_content_length=config.min_content_length)
		self.reader = SitemapReader(self.fetcher)
		self.orchestrator = UpdateOrchestrator(
			store=self.store,
			fetcher=self.fetcher,
			extractor=self.extractor,
			reader=self.reader,
			sources=config.sources,
			exclude_patterns=config.exclude_patterns,
			batch_size=config.max_concurrent_updates,
			batch_pause=config.batch_pause,
		)
		self.scheduler = UpdateScheduler(
			self.orchestrator,
			config.update_schedule,
			force_on_start=config.force_update_on_start,
		)
		self._started = False

	async def start(self, schedule: bool = True) -> None:
		"""Open resources and, unless ``schedule`` is False, start the timer."""
		await self.store.init()
		await self.fetcher.open()
		if schedule:
			self.scheduler.start()
		self._started = True
		logger.info("Docs service started")

	async def stop(self) -> None:
		"""Stop the timer, wait for the active run, then release resources."""
		if not self._started:
			return
		await self.scheduler.shutdown(grace=self.config.shutdown_grace)
		await self.fetcher.close()
		await self.store.close()
		self._started = False
		logger.info("Docs service stopped")

	async def __aenter__(self) -> "DocsService":
		await self.start()
		return self

	async def __aexit__(self, *exc) -> None:
		await self.stop()

	# =========================================================================
	# Queries
	# =========================================================================

	async def search(self, params: SearchInput) -> list[SearchResult]:
		return await self.store.search(
			params.query,
			category=params.category,
			platform=params.platform.value if params.platform else None,
			type=params.type.value if params.type else None,
			source=params.source.value if params.source else None,
			limit=params.limit,
		)

	async def get_document(self, params: GetDocumentInput) -> Optional[Document]:
		return await self.store.get_document(params.id)

	async def list_categories(self, params: ListCategoriesInput) -> list[CategorySummary]:
		return await self.store.list_categories(
			platform=params.platform.value if params.platform else None,
		)

	async def recent_updates(self, params: RecentUpdatesInput) -> list[Document]:
		return await self.store.recent_updates(since=params.since, limit=params.limit)

	async def get_status(self) -> StatusReport:
		return StatusReport(
			last_update=await self.store.latest_ledger(),
			is_running=self.orchestrator.is_running,
			next_scheduled_run=self.scheduler.next_run_time(),
		)

	# =========================================================================
	# Updates
	# =========================================================================

	def trigger_update(self, params: TriggerUpdateInput) -> TriggerResult:
		"""Start a background run; returns immediately."""
		return self.orchestrator.trigger(force=params.force)

	async def run_update(self, force: bool = False) -> LedgerEntry:
		"""Run one update to completion."""
		return await self.orchestrator.perform_update(force=force)
