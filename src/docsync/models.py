"""
Document Models - Pydantic schemas for stored records and tool inputs.

Defines the documentation record, the update ledger entry, sitemap
entries, and one validated input struct per tool operation.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
	"""Timezone-aware current time in UTC."""
	return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
	"""Treat naive datetimes as UTC and convert aware ones to UTC."""
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc)


class DocSource(str, Enum):
	"""Configured documentation origins."""
	DEVELOPERS = "developers"
	HELP = "help"
	PARTNERS = "partners"


class Platform(str, Enum):
	"""Platform a document applies to."""
	ANDROID = "android"
	IOS = "ios"
	WEB = "web"
	REACT_NATIVE = "react-native"
	FLUTTER = "flutter"
	API = "api"
	GENERAL = "general"


class DocType(str, Enum):
	"""Kind of documentation page."""
	SDK = "sdk"
	API = "api"
	GUIDE = "guide"
	TUTORIAL = "tutorial"
	REFERENCE = "reference"


class Document(BaseModel):
	"""A single indexed documentation page."""
	id: str = Field(description="Stable identifier derived from the URL")
	url: str
	title: str
	body: str = Field(description="Normalized Markdown body")
	last_modified: datetime
	category: str
	platform: Platform = Platform.GENERAL
	type: DocType = DocType.GUIDE
	tags: list[str] = Field(default_factory=list)
	source: DocSource = DocSource.DEVELOPERS
	checksum: str
	created_at: Optional[datetime] = None
	updated_at: Optional[datetime] = None


class SitemapEntry(BaseModel):
	"""One <url> element read from a sitemap."""
	location: str
	last_modified: Optional[datetime] = None
	source: DocSource
	changefreq: Optional[str] = None
	priority: Optional[str] = None


class SearchResult(BaseModel):
	"""A ranked full-text hit. Lower score is more relevant (bm25)."""
	id: str
	title: str
	url: str
	category: str
	platform: str
	type: str
	source: str
	snippet: str
	score: float
	last_modified: datetime


class CategorySummary(BaseModel):
	"""Document counts grouped by category and platform."""
	category: str
	platform: str
	document_count: int
	last_updated: Optional[datetime] = None


class LedgerEntry(BaseModel):
	"""Append-only summary of one update run."""
	run_timestamp: datetime
	total_documents: int = 0
	new_count: int = 0
	updated_count: int = 0
	deleted_count: int = 0
	errors: list[str] = Field(default_factory=list)
	duration_millis: int = 0
	succeeded: bool = True
	completed_at: Optional[datetime] = None


class StatusReport(BaseModel):
	"""Latest ledger entry plus live scheduler state."""
	last_update: Optional[LedgerEntry] = None
	is_running: bool = False
	next_scheduled_run: Optional[datetime] = None


# =============================================================================
# Tool inputs
# =============================================================================

class ToolInput(BaseModel):
	"""Base for tool input structs; unknown fields are rejected."""
	model_config = ConfigDict(extra="forbid")


class SearchInput(ToolInput):
	query: str = Field(min_length=1, description="Full-text search query")
	category: Optional[str] = None
	platform: Optional[Platform] = None
	type: Optional[DocType] = None
	source: Optional[DocSource] = None
	limit: int = Field(default=10, ge=1, le=50)

	@field_validator("query")
	@classmethod
	def _query_not_blank(cls, value: str) -> str:
		if not value.strip():
			raise ValueError("query must not be blank")
		return value.strip()


class GetDocumentInput(ToolInput):
	id: str = Field(min_length=1)


class ListCategoriesInput(ToolInput):
	platform: Optional[Platform] = None


class RecentUpdatesInput(ToolInput):
	since: Optional[datetime] = None
	limit: int = Field(default=20, ge=1, le=100)

	@field_validator("since")
	@classmethod
	def _since_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
		return as_utc(value) if value else None


class TriggerUpdateInput(ToolInput):
	force: bool = False
