"""
Update Orchestrator - Reconciles sitemaps against the store.

One run: read sitemaps, filter to eligible article URLs, skip entries
not modified since the last successful run, crawl the rest in
sequential bounded batches, sweep records whose URLs disappeared, and
append exactly one ledger entry whatever the outcome.

Only one run may be active at a time. Runs execute as asyncio tasks so
callers can fire a trigger and poll, or await the returned task.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from .batch import BatchProcessor, BatchResult
from .config import SitemapSource
from .extractor import Extractor, document_id
from .fetcher import FetchError, Fetcher
from .models import DocSource, LedgerEntry, SitemapEntry, utcnow
from .sitemap import SitemapReader
from .store import DocumentStore, StoreError

logger = logging.getLogger(__name__)


class RunState(str, Enum):
	"""Orchestrator lifecycle states."""
	IDLE = "idle"
	RUNNING = "running"
	SUCCEEDED = "succeeded"
	FAILED = "failed"


class EntryOutcome(str, Enum):
	"""What happened to a single eligible entry."""
	CREATED = "created"
	UPDATED = "updated"
	UNCHANGED = "unchanged"
	ERROR = "error"


class UpdateInProgressError(RuntimeError):
	"""Raised when a run is requested while another is active."""
	pass


@dataclass
class TriggerResult:
	"""Outcome of a trigger request."""
	accepted: bool
	message: str
	task: Optional["asyncio.Task[LedgerEntry]"] = None


@dataclass
class RunCounters:
	"""Counts accumulated while a run progresses."""
	created: int = 0
	updated: int = 0
	unchanged: int = 0
	skipped: int = 0
	deleted: int = 0
	errors: list[str] = field(default_factory=list)


def should_skip(entry: SitemapEntry, threshold: Optional[datetime]) -> bool:
	"""
	True when the entry is known unchanged since ``threshold``.

	Entries without lastmod are always re-checked.
	"""
	if threshold is None or entry.last_modified is None:
		return False
	return entry.last_modified <= threshold


def dedupe_entries(entries: list[SitemapEntry]) -> list[SitemapEntry]:
	"""
	Collapse entries that map to the same record id, keeping the first
	occurrence. URLs differing only by trailing slash, fragment or host
	case share an id.
	"""
	seen: set[str] = set()
	unique = []
	for entry in entries:
		doc_id = document_id(entry.location)
		if doc_id in seen:
			continue
		seen.add(doc_id)
		unique.append(entry)
	return unique


class EntryFilter:
	"""Pure eligibility check against per-source include patterns and global exclusions."""

	def __init__(self, sources: list[SitemapSource], exclude_patterns: list[str]):
		self.include: dict[DocSource, list[str]] = {}
		for source in sources:
			self.include.setdefault(source.source, []).extend(source.include_patterns)
		self.exclude = list(exclude_patterns)

	def is_eligible(self, entry: SitemapEntry) -> bool:
		url = entry.location
		patterns = self.include.get(entry.source, [])
		if patterns and not any(p in url for p in patterns):
			return False
		return not any(p in url for p in self.exclude)

	def apply(self, entries: list[SitemapEntry]) -> list[SitemapEntry]:
		return [e for e in entries if self.is_eligible(e)]


class UpdateOrchestrator:
	"""
	Runs incremental documentation updates.

	Usage:
		orchestrator = UpdateOrchestrator(store, fetcher, extractor, reader, sources)
		entry = await orchestrator.perform_update(force=False)

		result = orchestrator.trigger()
		if not result.accepted:
			print(result.message)
	"""

	def __init__(
		self,
		store: DocumentStore,
		fetcher: Fetcher,
		extractor: Extractor,
		reader: SitemapReader,
		sources: list[SitemapSource],
		exclude_patterns: Optional[list[str]] = None,
		batch_size: int = 5,
		batch_pause: float = 1.0,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	):
		self.store = store
		self.fetcher = fetcher
		self.extractor = extractor
		self.reader = reader
		self.sources = sources
		self.filter = EntryFilter(sources, exclude_patterns or [])
		self.batch_size = batch_size
		self.batch_pause = batch_pause
		self._sleep = sleep

		self._state = RunState.IDLE
		self._task: Optional[asyncio.Task] = None
		self.last_state: Optional[RunState] = None
		self.last_result: Optional[LedgerEntry] = None

	@property
	def state(self) -> RunState:
		return self._state

	@property
	def is_running(self) -> bool:
		return self._state == RunState.RUNNING

	def trigger(self, force: bool = False) -> TriggerResult:
		"""
		Start a run in the background.

		Returns immediately; a second trigger while a run is active is
		rejected without starting anything.
		"""
		if self.is_running:
			return TriggerResult(accepted=False, message="Update already running")

		self._state = RunState.RUNNING
		self._task = asyncio.create_task(self._execute(force), name="docsync-update")
		self._task.add_done_callback(self._on_task_done)
		mode = "forced full" if force else "incremental"
		return TriggerResult(accepted=True, message=f"Started {mode} update", task=self._task)

	async def perform_update(self, force: bool = False) -> LedgerEntry:
		"""
		Run one update and wait for its ledger entry.

		Raises:
			UpdateInProgressError: Another run is active
			StoreError: The ledger entry itself could not be written
		"""
		result = self.trigger(force)
		if not result.accepted:
			raise UpdateInProgressError(result.message)
		return await result.task

	async def wait_idle(self, timeout: Optional[float] = None) -> bool:
		"""
		Wait for the active run to finish without cancelling it.

		Returns:
			True if no run is active when this returns
		"""
		task = self._task
		if task is None or task.done():
			return True
		done, _ = await asyncio.wait({task}, timeout=timeout)
		return bool(done)

	def _on_task_done(self, task: asyncio.Task) -> None:
		if task.cancelled():
			logger.warning("Update task was cancelled")
			return
		error = task.exception()
		if error is not None:
			logger.error(f"Update task ended without a ledger entry: {error}")

	async def _execute(self, force: bool) -> LedgerEntry:
		try:
			return await self._record_run(force)
		finally:
			self._state = RunState.IDLE

	async def _record_run(self, force: bool) -> LedgerEntry:
		run_timestamp = utcnow()
		started = time.monotonic()
		counters = RunCounters()
		succeeded = True
		cancelled: Optional[asyncio.CancelledError] = None
		logger.info(f"Starting documentation update (force={force})")

		try:
			await self._run(force, counters)
		except asyncio.CancelledError as e:
			# ledger the partial run, then let the cancellation through
			succeeded = False
			cancelled = e
			counters.errors.append("Update cancelled")
			logger.warning("Documentation update was cancelled")
		except Exception as e:
			succeeded = False
			counters.errors.append(f"Update failed: {e}")
			logger.exception("Documentation update failed")

		try:
			total = await self.store.count_documents()
		except StoreError as e:
			logger.error(f"Could not count documents for ledger: {e}")
			total = 0

		entry = LedgerEntry(
			run_timestamp=run_timestamp,
			total_documents=total,
			new_count=counters.created,
			updated_count=counters.updated,
			deleted_count=counters.deleted,
			errors=counters.errors,
			duration_millis=int((time.monotonic() - started) * 1000),
			succeeded=succeeded,
			completed_at=utcnow(),
		)

		try:
			await self.store.append_ledger(entry)
		finally:
			self.last_state = RunState.SUCCEEDED if succeeded else RunState.FAILED
			self.last_result = entry

		logger.info(
			f"Update finished: {entry.new_count} new, {entry.updated_count} updated, "
			f"{counters.unchanged} unchanged, {counters.skipped} skipped, "
			f"{entry.deleted_count} deleted, {len(entry.errors)} errors "
			f"in {entry.duration_millis}ms"
		)
		if cancelled is not None:
			raise cancelled
		return entry

	async def _run(self, force: bool, counters: RunCounters) -> None:
		read = await self.reader.read(self.sources)
		counters.errors.extend(read.errors)

		eligible = dedupe_entries(self.filter.apply(read.entries))
		logger.info(f"{len(eligible)} eligible entries from {len(read.entries)} sitemap entries")

		threshold = None if force else await self.store.latest_successful_run()
		pending = []
		for entry in eligible:
			if should_skip(entry, threshold):
				counters.skipped += 1
			else:
				pending.append(entry)

		async def tally(results: list[BatchResult[SitemapEntry, EntryOutcome]]) -> None:
			fatal: Optional[BaseException] = None
			for r in results:
				if r.success:
					self._count(counters, r.result)
				elif isinstance(r.error, StoreError):
					fatal = fatal or r.error
				else:
					message = f"Failed to process {r.item.location}: {r.error}"
					logger.warning(message)
					counters.errors.append(message)
			if fatal is not None:
				raise fatal

		processor: BatchProcessor[SitemapEntry, EntryOutcome] = BatchProcessor(
			batch_size=self.batch_size,
			pause=self.batch_pause,
			sleep=self._sleep,
		)
		summary = await processor.execute(pending, self.process_entry, on_batch_complete=tally)
		if summary.total:
			logger.info(
				f"Crawl {summary.status.value}: {summary.succeeded}/{summary.total} entries "
				f"processed ({summary.success_rate:.0%})"
			)

		await self._sweep(eligible, read.failed_sources, counters)

	def _count(self, counters: RunCounters, outcome: EntryOutcome) -> None:
		if outcome == EntryOutcome.CREATED:
			counters.created += 1
		elif outcome == EntryOutcome.UPDATED:
			counters.updated += 1
		else:
			counters.unchanged += 1

	async def process_entry(self, entry: SitemapEntry) -> EntryOutcome:
		"""
		Fetch, extract and upsert one entry.

		An unchanged checksum leaves the stored record untouched. Any
		raised exception leaves the prior record as it was.
		"""
		html = await self.fetcher.fetch_page(entry.location)
		if html is None:
			raise FetchError("non-success status or non-HTML content type")

		doc = self.extractor.extract(entry.location, html, entry.source, entry.last_modified)
		existing = await self.store.get_document(doc.id)
		if existing and existing.checksum == doc.checksum:
			return EntryOutcome.UNCHANGED

		await self.store.upsert_document(doc)
		outcome = EntryOutcome.UPDATED if existing else EntryOutcome.CREATED
		logger.debug(f"Document {outcome.value}: {doc.id} ({doc.url})")
		return outcome

	async def _sweep(
		self,
		eligible: list[SitemapEntry],
		failed_sources: set[DocSource],
		counters: RunCounters,
	) -> None:
		"""
		Delete records whose URL is no longer listed by a healthy source.

		Deletions are counted as they commit, so a failure partway
		through still ledgers the ones already made.
		"""
		current_ids = {document_id(entry.location) for entry in eligible}
		protected = {source.value for source in failed_sources}
		for ref in await self.store.list_document_refs():
			if ref.id in current_ids or ref.source in protected:
				continue
			if await self.store.delete_document(ref.id):
				counters.deleted += 1
				logger.debug(f"Document deleted (no longer in sitemap): {ref.id} ({ref.url})")
		if counters.deleted:
			logger.info(f"Cleaned up {counters.deleted} deleted documents")
