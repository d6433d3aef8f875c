"""
Document Store - SQLite-backed record table, FTS5 index and update ledger.

Features:
- Upsert by deterministic id, preserving created_at
- Full-text search ranked by bm25 (lower score is more relevant)
- Category summaries and recent-update queries
- Append-only ledger of update runs
"""

import asyncio
import json
import logging
import re
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, NamedTuple, Optional

import aiosqlite

from .models import (
	CategorySummary,
	DocSource,
	Document,
	LedgerEntry,
	SearchResult,
	as_utc,
	utcnow,
)

logger = logging.getLogger(__name__)

SCHEMA = [
	"""
	CREATE TABLE IF NOT EXISTS documents (
		id TEXT PRIMARY KEY,
		url TEXT NOT NULL UNIQUE,
		title TEXT NOT NULL,
		body TEXT NOT NULL,
		last_modified TEXT NOT NULL,
		category TEXT NOT NULL,
		platform TEXT NOT NULL,
		type TEXT NOT NULL,
		tags TEXT NOT NULL,
		source TEXT NOT NULL,
		checksum TEXT NOT NULL,
		created_at TEXT NOT NULL,
		updated_at TEXT NOT NULL
	)
	""",
	"CREATE INDEX IF NOT EXISTS idx_documents_category ON documents(category)",
	"CREATE INDEX IF NOT EXISTS idx_documents_platform ON documents(platform)",
	"CREATE INDEX IF NOT EXISTS idx_documents_type ON documents(type)",
	"CREATE INDEX IF NOT EXISTS idx_documents_source ON documents(source)",
	"CREATE INDEX IF NOT EXISTS idx_documents_last_modified ON documents(last_modified)",
	"CREATE INDEX IF NOT EXISTS idx_documents_checksum ON documents(checksum)",
	"CREATE INDEX IF NOT EXISTS idx_documents_updated_at ON documents(updated_at)",
	"""
	CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts USING fts5(
		id UNINDEXED, title, body, category, tags, source
	)
	""",
	"""
	CREATE TRIGGER IF NOT EXISTS documents_ai AFTER INSERT ON documents BEGIN
		INSERT INTO documents_fts(id, title, body, category, tags, source)
		VALUES (new.id, new.title, new.body, new.category, new.tags, new.source);
	END
	""",
	"""
	CREATE TRIGGER IF NOT EXISTS documents_ad AFTER DELETE ON documents BEGIN
		DELETE FROM documents_fts WHERE id = old.id;
	END
	""",
	"""
	CREATE TRIGGER IF NOT EXISTS documents_au AFTER UPDATE ON documents BEGIN
		DELETE FROM documents_fts WHERE id = old.id;
		INSERT INTO documents_fts(id, title, body, category, tags, source)
		VALUES (new.id, new.title, new.body, new.category, new.tags, new.source);
	END
	""",
	"""
	CREATE TABLE IF NOT EXISTS update_runs (
		id INTEGER PRIMARY KEY AUTOINCREMENT,
		run_timestamp TEXT NOT NULL,
		completed_at TEXT,
		total_documents INTEGER NOT NULL,
		new_count INTEGER NOT NULL,
		updated_count INTEGER NOT NULL,
		deleted_count INTEGER NOT NULL,
		errors TEXT NOT NULL,
		duration_millis INTEGER NOT NULL,
		succeeded INTEGER NOT NULL
	)
	""",
	"CREATE INDEX IF NOT EXISTS idx_update_runs_timestamp ON update_runs(run_timestamp)",
]


class StoreError(Exception):
	"""Raised when the underlying database fails or is unavailable."""
	pass


class DocumentRef(NamedTuple):
	"""Minimal identity of a stored record, used by the deletion sweep."""
	id: str
	url: str
	source: str


def format_ts(value: datetime) -> str:
	"""Fixed-width UTC ISO timestamp so text comparison orders correctly."""
	return as_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def parse_ts(value: Optional[str]) -> Optional[datetime]:
	if not value:
		return None
	return as_utc(datetime.fromisoformat(value))


def fts_query(query: str) -> Optional[str]:
	"""
	Turn free text into an FTS5 MATCH expression.

	Each word becomes a quoted term so operator characters in user input
	cannot break the query; terms are implicitly ANDed.
	"""
	terms = re.findall(r"\w+", query)
	if not terms:
		return None
	return " ".join(f'"{term}"' for term in terms)


@contextmanager
def _wrap_errors(action: str) -> Iterator[None]:
	try:
		yield
	except aiosqlite.Error as e:
		raise StoreError(f"Failed to {action}: {e}") from e


class DocumentStore:
	"""
	SQLite-backed document storage with full-text search.

	Usage:
		store = DocumentStore(config.db_path)
		await store.init()

		await store.upsert_document(doc)
		results = await store.search("push notifications", platform="android")
	"""

	def __init__(self, db_path: Path | str):
		"""Initialize the document store."""
		self.db_path = Path(db_path)
		self._db: Optional[aiosqlite.Connection] = None
		self._write_lock = asyncio.Lock()

	async def init(self):
		"""Open the connection and create the schema."""
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		with _wrap_errors("initialize store"):
			self._db = await aiosqlite.connect(str(self.db_path))
			self._db.row_factory = aiosqlite.Row
			await self._db.execute("PRAGMA journal_mode=WAL")
			for statement in SCHEMA:
				await self._db.execute(statement)
			await self._db.commit()
		logger.info(f"Document store initialized: {self.db_path}")

	async def close(self):
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	@property
	def db(self) -> aiosqlite.Connection:
		if self._db is None:
			raise StoreError("Store is not initialized")
		return self._db

	# =========================================================================
	# Records
	# =========================================================================

	async def upsert_document(self, doc: Document) -> None:
		"""Insert or replace a record by id; created_at is never overwritten."""
		now = format_ts(utcnow())
		async with self._write_lock:
			with _wrap_errors(f"upsert document {doc.id}"):
				await self.db.execute(
					"""
					INSERT INTO documents (
						id, url, title, body, last_modified, category, platform,
						type, tags, source, checksum, created_at, updated_at
					) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
					ON CONFLICT(id) DO UPDATE SET
						url = excluded.url,
						title = excluded.title,
						body = excluded.body,
						last_modified = excluded.last_modified,
						category = excluded.category,
						platform = excluded.platform,
						type = excluded.type,
						tags = excluded.tags,
						source = excluded.source,
						checksum = excluded.checksum,
						updated_at = excluded.updated_at
					""",
					(
						doc.id,
						doc.url,
						doc.title,
						doc.body,
						format_ts(doc.last_modified),
						doc.category,
						doc.platform.value,
						doc.type.value,
						json.dumps(doc.tags),
						doc.source.value,
						doc.checksum,
						format_ts(doc.created_at) if doc.created_at else now,
						now,
					),
				)
				await self.db.commit()

	async def get_document(self, doc_id: str) -> Optional[Document]:
		with _wrap_errors(f"get document {doc_id}"):
			async with self.db.execute(
				"SELECT * FROM documents WHERE id = ?", (doc_id,)
			) as cursor:
				row = await cursor.fetchone()
		return self._row_to_document(row) if row else None

	async def get_document_by_checksum(self, checksum: str) -> Optional[Document]:
		with _wrap_errors("get document by checksum"):
			async with self.db.execute(
				"SELECT * FROM documents WHERE checksum = ? ORDER BY id LIMIT 1",
				(checksum,),
			) as cursor:
				row = await cursor.fetchone()
		return self._row_to_document(row) if row else None

	async def delete_document(self, doc_id: str) -> bool:
		"""Delete a record. Returns True if a row was removed."""
		async with self._write_lock:
			with _wrap_errors(f"delete document {doc_id}"):
				cursor = await self.db.execute("DELETE FROM documents WHERE id = ?", (doc_id,))
				await self.db.commit()
				return cursor.rowcount > 0

	async def count_documents(self) -> int:
		with _wrap_errors("count documents"):
			async with self.db.execute("SELECT COUNT(*) FROM documents") as cursor:
				row = await cursor.fetchone()
		return row[0]

	async def list_document_refs(self) -> list[DocumentRef]:
		"""Id, URL and source of every stored record."""
		with _wrap_errors("list documents"):
			async with self.db.execute(
				"SELECT id, url, source FROM documents ORDER BY id"
			) as cursor:
				rows = await cursor.fetchall()
		return [DocumentRef(row["id"], row["url"], row["source"]) for row in rows]

	# =========================================================================
	# Queries
	# =========================================================================

	async def search(
		self,
		query: str,
		category: Optional[str] = None,
		platform: Optional[str] = None,
		type: Optional[str] = None,
		source: Optional[str] = None,
		limit: int = 10,
	) -> list[SearchResult]:
		"""
		Full-text search ordered by ascending bm25 score.

		A query with no searchable terms yields an empty list.
		"""
		match = fts_query(query)
		if match is None:
			return []

		sql = """
			SELECT
				d.id, d.title, d.url, d.category, d.platform, d.type, d.source,
				d.last_modified,
				snippet(documents_fts, 2, '<mark>', '</mark>', '...', 20) AS snippet,
				bm25(documents_fts) AS score
			FROM documents_fts
			JOIN documents d ON d.id = documents_fts.id
			WHERE documents_fts MATCH ?
		"""
		params: list = [match]
		for column, value in (
			("category", category),
			("platform", platform),
			("type", type),
			("source", source),
		):
			if value:
				sql += f" AND d.{column} = ?"
				params.append(value)
		sql += " ORDER BY score ASC, d.id ASC LIMIT ?"
		params.append(limit)

		with _wrap_errors("search documents"):
			async with self.db.execute(sql, params) as cursor:
				rows = await cursor.fetchall()

		return [
			SearchResult(
				id=row["id"],
				title=row["title"],
				url=row["url"],
				category=row["category"],
				platform=row["platform"],
				type=row["type"],
				source=row["source"],
				snippet=row["snippet"] or "",
				score=row["score"],
				last_modified=parse_ts(row["last_modified"]),
			)
			for row in rows
		]

	async def list_categories(self, platform: Optional[str] = None) -> list[CategorySummary]:
		sql = """
			SELECT category, platform, COUNT(*) AS document_count,
				MAX(last_modified) AS last_updated
			FROM documents
		"""
		params: list = []
		if platform:
			sql += " WHERE platform = ?"
			params.append(platform)
		sql += " GROUP BY category, platform ORDER BY category, platform"

		with _wrap_errors("list categories"):
			async with self.db.execute(sql, params) as cursor:
				rows = await cursor.fetchall()

		return [
			CategorySummary(
				category=row["category"],
				platform=row["platform"],
				document_count=row["document_count"],
				last_updated=parse_ts(row["last_updated"]),
			)
			for row in rows
		]

	async def recent_updates(
		self,
		since: Optional[datetime] = None,
		limit: int = 20,
	) -> list[Document]:
		"""Records ordered by updated_at, newest first."""
		sql = "SELECT * FROM documents"
		params: list = []
		if since:
			sql += " WHERE updated_at > ?"
			params.append(format_ts(since))
		sql += " ORDER BY updated_at DESC, id ASC LIMIT ?"
		params.append(limit)

		with _wrap_errors("get recent updates"):
			async with self.db.execute(sql, params) as cursor:
				rows = await cursor.fetchall()
		return [self._row_to_document(row) for row in rows]

	# =========================================================================
	# Ledger
	# =========================================================================

	async def append_ledger(self, entry: LedgerEntry) -> None:
		"""Append one run summary. Entries are never updated."""
		async with self._write_lock:
			with _wrap_errors("append ledger entry"):
				await self.db.execute(
					"""
					INSERT INTO update_runs (
						run_timestamp, completed_at, total_documents, new_count,
						updated_count, deleted_count, errors, duration_millis, succeeded
					) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
					""",
					(
						format_ts(entry.run_timestamp),
						format_ts(entry.completed_at) if entry.completed_at else None,
						entry.total_documents,
						entry.new_count,
						entry.updated_count,
						entry.deleted_count,
						json.dumps(entry.errors),
						entry.duration_millis,
						1 if entry.succeeded else 0,
					),
				)
				await self.db.commit()

	async def latest_ledger(self) -> Optional[LedgerEntry]:
		"""Most recent run by run_timestamp, or None before the first run."""
		return await self._fetch_ledger(
			"SELECT * FROM update_runs ORDER BY run_timestamp DESC, id DESC LIMIT 1"
		)

	async def latest_successful_run(self) -> Optional[datetime]:
		"""Start time of the most recent run that completed without a fatal error."""
		entry = await self._fetch_ledger(
			"SELECT * FROM update_runs WHERE succeeded = 1 "
			"ORDER BY run_timestamp DESC, id DESC LIMIT 1"
		)
		return entry.run_timestamp if entry else None

	async def list_ledger(self, limit: int = 10) -> list[LedgerEntry]:
		with _wrap_errors("list ledger entries"):
			async with self.db.execute(
				"SELECT * FROM update_runs ORDER BY run_timestamp DESC, id DESC LIMIT ?",
				(limit,),
			) as cursor:
				rows = await cursor.fetchall()
		return [self._row_to_ledger(row) for row in rows]

	async def _fetch_ledger(self, sql: str) -> Optional[LedgerEntry]:
		with _wrap_errors("read ledger"):
			async with self.db.execute(sql) as cursor:
				row = await cursor.fetchone()
		return self._row_to_ledger(row) if row else None

	# =========================================================================
	# Row mapping
	# =========================================================================

	def _row_to_document(self, row: aiosqlite.Row) -> Document:
		return Document(
			id=row["id"],
			url=row["url"],
			title=row["title"],
			body=row["body"],
			last_modified=parse_ts(row["last_modified"]),
			category=row["category"],
			platform=row["platform"],
			type=row["type"],
			tags=json.loads(row["tags"]),
			source=DocSource(row["source"]),
			checksum=row["checksum"],
			created_at=parse_ts(row["created_at"]),
			updated_at=parse_ts(row["updated_at"]),
		)

	def _row_to_ledger(self, row: aiosqlite.Row) -> LedgerEntry:
		return LedgerEntry(
			run_timestamp=parse_ts(row["run_timestamp"]),
			completed_at=parse_ts(row["completed_at"]),
			total_documents=row["total_documents"],
			new_count=row["new_count"],
			updated_count=row["updated_count"],
			deleted_count=row["deleted_count"],
			errors=json.loads(row["errors"]),
			duration_millis=row["duration_millis"],
			succeeded=bool(row["succeeded"]),
		)
