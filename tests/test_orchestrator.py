"""Tests for the update orchestrator: reconciliation, batching, sweep and ledger."""

import asyncio
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from docsync.config import DEFAULT_EXCLUDE_PATTERNS
from docsync.extractor import document_id
from docsync.fetcher import FetchError, SitemapError
from docsync.models import DocSource
from docsync.orchestrator import (
	EntryFilter,
	RunState,
	UpdateInProgressError,
	dedupe_entries,
	should_skip,
)
from docsync.store import StoreError

from .helpers import (
	DEV_SITEMAP,
	HELP_SITEMAP,
	LONG_TEXT,
	FakeFetcher,
	article_url,
	dev_source,
	entry,
	help_source,
	make_html,
	make_orchestrator,
	make_sitemap,
	open_store,
)

PAST = "2020-01-01T00:00:00Z"


class TestReconciliationRules:

	def test_should_skip_at_or_before_threshold(self):
		threshold = datetime(2024, 1, 1, tzinfo=timezone.utc)
		assert should_skip(entry("u", threshold), threshold) is True
		assert should_skip(entry("u", threshold - timedelta(days=1)), threshold) is True
		assert should_skip(entry("u", threshold + timedelta(seconds=1)), threshold) is False

	def test_no_lastmod_is_never_skipped(self):
		threshold = datetime(2024, 1, 1, tzinfo=timezone.utc)
		assert should_skip(entry("u", None), threshold) is False

	def test_no_threshold_never_skips(self):
		assert should_skip(entry("u", datetime(2000, 1, 1, tzinfo=timezone.utc)), None) is False

	def test_dedupe_keeps_first(self):
		first = entry("a", datetime(2024, 1, 1, tzinfo=timezone.utc))
		entries = [first, entry("b"), entry("a")]
		assert dedupe_entries(entries) == [first, entry("b")]

	def test_dedupe_by_record_id(self):
		"""URLs that normalize to the same record collapse to the first."""
		url = article_url(1, "alpha")
		variants = [entry(url), entry(url + "/"), entry(url + "#install"), entry(url.replace("developers.", "DEVELOPERS."))]
		assert dedupe_entries(variants) == [entry(url)]

	def test_filter(self):
		f = EntryFilter([dev_source(), help_source()], DEFAULT_EXCLUDE_PATTERNS)
		assert f.is_eligible(entry(article_url(1)))
		assert f.is_eligible(entry(article_url(2, host="help"), source=DocSource.HELP))
		# wrong host for its source
		assert not f.is_eligible(entry(article_url(2, host="help")))
		assert not f.is_eligible(entry("https://developers.moengage.com/hc/en-us/categories/1-sdks"))
		assert not f.is_eligible(entry("https://developers.moengage.com/hc/en-us/sections/2-android"))
		assert not f.is_eligible(entry("https://developers.moengage.com/hc/en-us/signin"))
		assert not f.is_eligible(entry("https://developers.moengage.com/blog/post"))


class TestUpdateRun:

	@pytest.mark.asyncio
	async def test_end_to_end_insufficient_content(self, tmp_path: Path):
		"""Two good pages and one stub: two records, one descriptive error."""
		good_a, good_b, stub = article_url(1, "alpha"), article_url(2, "beta"), article_url(3, "stub")
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(good_a, None), (good_b, None), (stub, None)])},
			pages={
				good_a: make_html("Alpha guide"),
				good_b: make_html("Beta guide"),
				stub: make_html("Stub", body="Coming soon."),
			},
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher)
			result = await orchestrator.perform_update()

			assert await store.count_documents() == 2
			assert result.new_count == 2
			assert result.updated_count == 0
			assert result.total_documents == 2
			assert result.succeeded is True
			assert len(result.errors) == 1
			assert stub in result.errors[0]
			assert "Insufficient content" in result.errors[0]
			assert await store.get_document(document_id(stub)) is None

			latest = await store.latest_ledger()
			assert latest.new_count == 2
			assert latest.errors == result.errors
			assert orchestrator.state == RunState.IDLE
			assert orchestrator.last_state == RunState.SUCCEEDED
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_idempotent_second_run(self, tmp_path: Path):
		"""Re-running with unchanged sources creates and updates nothing."""
		urls = [article_url(i) for i in range(3)]
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(u, None) for u in urls])},
			pages={u: make_html(f"Guide {i}") for i, u in enumerate(urls)},
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher)
			first = await orchestrator.perform_update()
			second = await orchestrator.perform_update()

			assert first.new_count == 3
			assert second.new_count == 0
			assert second.updated_count == 0
			assert second.deleted_count == 0
			assert second.total_documents == first.total_documents == 3
			# no lastmod: every page was re-fetched and compared by checksum
			assert len(fetcher.page_calls) == 6
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_changed_body_counts_as_update(self, tmp_path: Path):
		url = article_url(1)
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(url, None)])},
			pages={url: make_html("Guide")},
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher)
			await orchestrator.perform_update()
			before = await store.get_document(document_id(url))

			fetcher.pages[url] = make_html("Guide", body=LONG_TEXT * 2 + " New paragraph.")
			result = await orchestrator.perform_update()
			after = await store.get_document(document_id(url))

			assert result.updated_count == 1
			assert result.new_count == 0
			assert after.checksum != before.checksum
			assert after.created_at == before.created_at
			assert "New paragraph." in after.body
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_skip_rule_avoids_fetching(self, tmp_path: Path):
		"""Entries modified before the last successful run are not fetched."""
		old, undated = article_url(1, "old"), article_url(2, "undated")
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(old, PAST), (undated, None)])},
			pages={old: make_html("Old guide"), undated: make_html("Undated guide")},
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher)
			await orchestrator.perform_update()
			assert fetcher.calls_for(old) == 1

			result = await orchestrator.perform_update()
			assert fetcher.calls_for(old) == 1
			assert fetcher.calls_for(undated) == 2
			assert result.new_count == 0
			assert result.deleted_count == 0
			assert await store.count_documents() == 2
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_entry_modified_after_last_run_is_fetched(self, tmp_path: Path):
		url = article_url(1)
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(url, PAST)])},
			pages={url: make_html("Guide")},
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher)
			await orchestrator.perform_update()
			assert await store.latest_successful_run() is not None

			threshold = await store.latest_successful_run()
			fetcher.sitemaps[DEV_SITEMAP] = make_sitemap([
				(url, (threshold + timedelta(seconds=1)).isoformat()),
			])
			result = await orchestrator.perform_update()
			assert fetcher.calls_for(url) == 2
			assert result.succeeded is True
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_force_bypasses_skip_rule(self, tmp_path: Path):
		urls = [article_url(i) for i in range(3)]
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(u, PAST) for u in urls])},
			pages={u: make_html(f"Guide {i}") for i, u in enumerate(urls)},
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher)
			await orchestrator.perform_update()
			await orchestrator.perform_update()
			assert len(fetcher.page_calls) == 3

			result = await orchestrator.perform_update(force=True)
			assert all(fetcher.calls_for(u) == 2 for u in urls)
			assert result.new_count == 0
			assert result.updated_count == 0
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_filtered_and_duplicate_entries(self, tmp_path: Path):
		url = article_url(1)
		category = "https://developers.moengage.com/hc/en-us/categories/1-sdks"
		offsite = "https://developers.moengage.com/blog/launch"
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(url, None), (category, None), (offsite, None), (url, None)])},
			pages={url: make_html("Guide")},
		)
		store = await open_store(tmp_path)
		try:
			result = await make_orchestrator(store, fetcher).perform_update()
			assert fetcher.page_calls == [url]
			assert result.new_count == 1
			assert result.errors == []
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_trailing_slash_variant_counted_once(self, tmp_path: Path):
		"""Two sitemap URLs for one record produce one fetch and one creation."""
		url = article_url(1, "alpha")
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(url, None), (url + "/", None)])},
			pages={url: make_html("Alpha"), url + "/": make_html("Alpha")},
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher)
			result = await orchestrator.perform_update()

			assert fetcher.page_calls == [url]
			assert result.new_count == 1
			assert result.new_count == await store.count_documents()

			again = await orchestrator.perform_update(force=True)
			assert again.new_count == 0
			assert again.deleted_count == 0
			assert await store.count_documents() == 1
		finally:
			await store.close()


class TestErrorOutcomes:

	@pytest.mark.asyncio
	async def test_fetch_failure_leaves_prior_record(self, tmp_path: Path):
		url = article_url(1)
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(url, None)])},
			pages={url: make_html("Guide")},
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher)
			await orchestrator.perform_update()
			before = await store.get_document(document_id(url))

			fetcher.pages[url] = FetchError("TimeoutError: timed out")
			result = await orchestrator.perform_update()

			assert result.succeeded is True
			assert result.errors == [f"Failed to process {url}: TimeoutError: timed out"]
			after = await store.get_document(document_id(url))
			assert after.checksum == before.checksum
			assert after.updated_at == before.updated_at
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_missing_page_is_an_error(self, tmp_path: Path):
		"""A non-200 or non-HTML response yields no record and one error."""
		url = article_url(1)
		fetcher = FakeFetcher(sitemaps={DEV_SITEMAP: make_sitemap([(url, None)])}, pages={url: None})
		store = await open_store(tmp_path)
		try:
			result = await make_orchestrator(store, fetcher).perform_update()
			assert result.new_count == 0
			assert len(result.errors) == 1
			assert "non-success status" in result.errors[0]
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_sitemap_failure_recorded_and_others_processed(self, tmp_path: Path):
		help_url = article_url(5, host="help")
		fetcher = FakeFetcher(
			sitemaps={
				DEV_SITEMAP: SitemapError("HTTP 500"),
				HELP_SITEMAP: make_sitemap([(help_url, None)]),
			},
			pages={help_url: make_html("Help guide")},
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher, sources=[dev_source(), help_source()])
			result = await orchestrator.perform_update()
			assert result.new_count == 1
			assert len(result.errors) == 1
			assert DEV_SITEMAP in result.errors[0]
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_store_failure_is_fatal_but_ledgered(self, tmp_path: Path):
		"""A store error aborts the run, still appends one ledger entry and returns to idle."""
		urls = [article_url(i) for i in range(4)]
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(u, None) for u in urls])},
			pages={u: make_html(f"Guide {i}") for i, u in enumerate(urls)},
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher, batch_size=2)
			real_upsert = store.upsert_document
			calls = 0

			async def flaky_upsert(doc):
				nonlocal calls
				calls += 1
				if calls == 2:
					raise StoreError("Failed to upsert document: database is locked")
				await real_upsert(doc)

			store.upsert_document = flaky_upsert
			result = await orchestrator.perform_update()

			assert result.succeeded is False
			assert result.new_count == 1
			assert any(e.startswith("Update failed:") for e in result.errors)
			# second batch never started
			assert fetcher.page_calls == urls[:2]
			assert orchestrator.state == RunState.IDLE
			assert orchestrator.last_state == RunState.FAILED
			assert len(await store.list_ledger()) == 1
			assert await store.latest_successful_run() is None
		finally:
			await store.close()


class TestDeletionSweep:

	@pytest.mark.asyncio
	async def test_removed_url_is_deleted(self, tmp_path: Path):
		a, b = article_url(1, "alpha"), article_url(2, "beta")
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(a, None), (b, None)])},
			pages={a: make_html("Alpha"), b: make_html("Beta")},
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher)
			await orchestrator.perform_update()
			assert await store.count_documents() == 2

			fetcher.sitemaps[DEV_SITEMAP] = make_sitemap([(a, None)])
			result = await orchestrator.perform_update()

			assert result.deleted_count == 1
			assert result.total_documents == 1
			assert await store.get_document(document_id(b)) is None
			assert await store.get_document(document_id(a)) is not None
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_skipped_entries_are_not_deleted(self, tmp_path: Path):
		a = article_url(1)
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(a, PAST)])},
			pages={a: make_html("Alpha")},
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher)
			await orchestrator.perform_update()
			result = await orchestrator.perform_update()
			assert result.deleted_count == 0
			assert await store.count_documents() == 1
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_failed_source_is_not_swept(self, tmp_path: Path):
		dev_url, help_url = article_url(1), article_url(2, host="help")
		fetcher = FakeFetcher(
			sitemaps={
				DEV_SITEMAP: make_sitemap([(dev_url, None)]),
				HELP_SITEMAP: make_sitemap([(help_url, None)]),
			},
			pages={dev_url: make_html("Dev"), help_url: make_html("Help")},
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher, sources=[dev_source(), help_source()])
			await orchestrator.perform_update()

			fetcher.sitemaps[HELP_SITEMAP] = SitemapError("HTTP 502")
			result = await orchestrator.perform_update()

			assert result.deleted_count == 0
			assert await store.get_document(document_id(help_url)) is not None
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_store_failure_mid_sweep_keeps_partial_count(self, tmp_path: Path):
		"""Deletions committed before a fatal store error still reach the ledger."""
		keep = article_url(1, "keep")
		stale = [article_url(i, f"stale-{i}") for i in range(2, 5)]
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(u, None) for u in [keep, *stale]])},
			pages={u: make_html(f"Guide {u}") for u in [keep, *stale]},
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher)
			await orchestrator.perform_update()
			assert await store.count_documents() == 4

			real_delete = store.delete_document
			calls = 0

			async def failing_delete(doc_id):
				nonlocal calls
				calls += 1
				if calls == 3:
					raise StoreError("disk full")
				return await real_delete(doc_id)

			store.delete_document = failing_delete
			fetcher.sitemaps[DEV_SITEMAP] = make_sitemap([(keep, None)])
			result = await orchestrator.perform_update()

			assert result.succeeded is False
			assert result.deleted_count == 2
			assert result.errors == ["Update failed: disk full"]
			assert await store.count_documents() == 2
			assert orchestrator.state == RunState.IDLE
		finally:
			await store.close()


class TestConcurrency:

	@pytest.mark.asyncio
	async def test_in_flight_never_exceeds_limit(self, tmp_path: Path):
		"""Random per-entry latency never pushes concurrent fetches over the batch size."""
		rng = random.Random(42)
		urls = [article_url(i, f"page-{i}") for i in range(11)]
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(u, None) for u in urls])},
			pages={u: make_html(f"Guide {i}") for i, u in enumerate(urls)},
			latency=lambda url: rng.uniform(0, 0.02),
		)
		store = await open_store(tmp_path)
		try:
			result = await make_orchestrator(store, fetcher, batch_size=3).perform_update()

			assert fetcher.max_in_flight <= 3
			assert result.new_count == 11
			assert await store.count_documents() == 11
			for i, url in enumerate(urls):
				doc = await store.get_document(document_id(url))
				assert doc.title == f"Guide {i}"
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_second_trigger_rejected_while_running(self, tmp_path: Path):
		url = article_url(1)
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(url, None)])},
			pages={url: make_html("Guide")},
			latency=0.05,
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher)
			first = orchestrator.trigger()
			assert first.accepted is True
			assert orchestrator.is_running

			second = orchestrator.trigger(force=True)
			assert second.accepted is False
			assert second.message == "Update already running"
			assert second.task is None

			with pytest.raises(UpdateInProgressError):
				await orchestrator.perform_update()

			await first.task
			assert not orchestrator.is_running
			assert len(await store.list_ledger()) == 1
			assert fetcher.calls_for(url) == 1
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_wait_idle(self, tmp_path: Path):
		url = article_url(1)
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(url, None)])},
			pages={url: make_html("Guide")},
			latency=0.2,
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher)
			assert await orchestrator.wait_idle(timeout=0) is True

			result = orchestrator.trigger()
			assert await orchestrator.wait_idle(timeout=0.01) is False
			# the bounded wait does not cancel the run
			assert not result.task.cancelled()
			assert await orchestrator.wait_idle(timeout=5) is True
			assert orchestrator.last_result.new_count == 1
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_cancelled_run_returns_to_idle(self, tmp_path: Path):
		"""A cancelled run is ledgered as failed and does not block later triggers."""
		url = article_url(1)
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(url, None)])},
			pages={url: make_html("Guide")},
			latency=0.5,
		)
		store = await open_store(tmp_path)
		try:
			orchestrator = make_orchestrator(store, fetcher)
			first = orchestrator.trigger()
			await asyncio.sleep(0.1)
			first.task.cancel()
			with pytest.raises(asyncio.CancelledError):
				await first.task

			assert orchestrator.state == RunState.IDLE
			assert orchestrator.last_state == RunState.FAILED
			ledger = await store.list_ledger()
			assert len(ledger) == 1
			assert ledger[0].succeeded is False
			assert ledger[0].errors == ["Update cancelled"]

			fetcher.latency = 0.0
			retry = orchestrator.trigger()
			assert retry.accepted is True
			entry_after = await retry.task
			assert entry_after.succeeded is True
			assert entry_after.new_count == 1
		finally:
			await store.close()


class TestRunLogging:

	@pytest.mark.asyncio
	async def test_crawl_summary_logged(self, tmp_path: Path, caplog):
		good, missing = article_url(1, "good"), article_url(2, "missing")
		fetcher = FakeFetcher(
			sitemaps={DEV_SITEMAP: make_sitemap([(good, None), (missing, None)])},
			pages={good: make_html("Good")},
		)
		store = await open_store(tmp_path)
		try:
			with caplog.at_level("INFO", logger="docsync.orchestrator"):
				await make_orchestrator(store, fetcher).perform_update()
			assert "Crawl partial_failure: 1/2 entries processed (50%)" in caplog.text
		finally:
			await store.close()
