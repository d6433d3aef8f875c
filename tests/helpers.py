"""Shared test fixtures and helpers for docsync tests."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from docsync.config import DEFAULT_EXCLUDE_PATTERNS, Config, SitemapSource
from docsync.extractor import Extractor
from docsync.models import DocSource, Document, DocType, Platform, SitemapEntry, utcnow
from docsync.orchestrator import UpdateOrchestrator
from docsync.sitemap import SitemapReader
from docsync.store import DocumentStore

DEV_SITEMAP = "https://developers.moengage.com/hc/sitemap.xml"
HELP_SITEMAP = "https://help.moengage.com/hc/sitemap.xml"

LONG_TEXT = (
	"Follow these steps to add the library to your project and initialise it "
	"with your workspace identifier before sending events. "
)


def article_url(article_id: int, slug: str = "sdk-setup", host: str = "developers") -> str:
	return f"https://{host}.moengage.com/hc/en-us/articles/{article_id}-{slug}"


def make_html(
	title: str,
	body: str = LONG_TEXT * 2,
	keywords: Optional[str] = None,
	extra: str = "",
) -> str:
	"""Build a help-center style article page."""
	meta = f'<meta name="keywords" content="{keywords}">' if keywords else ""
	return f"""<html>
<head><title>{title} | Docs</title>{meta}</head>
<body>
<header class="header">Site header</header>
<article>
<h1 class="article-title">{title}</h1>
<div class="article-meta">Updated 3 days ago</div>
<div class="article-body">
<p>{body}</p>
{extra}
<script>var tracking = 1;</script>
</div>
</article>
<footer class="footer">Footer text</footer>
</body>
</html>"""


def make_sitemap(entries: list[tuple[str, Optional[str]]]) -> str:
	"""Build a <urlset> document from (loc, lastmod) pairs."""
	urls = []
	for loc, lastmod in entries:
		lastmod_el = f"<lastmod>{lastmod}</lastmod>" if lastmod else ""
		urls.append(f"<url><loc>{loc}</loc>{lastmod_el}</url>")
	return (
		'<?xml version="1.0" encoding="UTF-8"?>'
		'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
		+ "".join(urls)
		+ "</urlset>"
	)


def make_sitemap_index(children: list[str]) -> str:
	sitemaps = "".join(f"<sitemap><loc>{c}</loc></sitemap>" for c in children)
	return (
		'<?xml version="1.0" encoding="UTF-8"?>'
		'<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
		+ sitemaps
		+ "</sitemapindex>"
	)


def make_document(
	url: str,
	title: str = "Android SDK setup",
	body: str = LONG_TEXT,
	category: str = "Developers - Android SDK",
	platform: Platform = Platform.ANDROID,
	doc_type: DocType = DocType.SDK,
	source: DocSource = DocSource.DEVELOPERS,
	last_modified: Optional[datetime] = None,
	tags: Optional[list[str]] = None,
) -> Document:
	"""Create a Document the way the extractor would."""
	from docsync.extractor import content_checksum, document_id

	return Document(
		id=document_id(url),
		url=url,
		title=title,
		body=body,
		last_modified=last_modified or utcnow(),
		category=category,
		platform=platform,
		type=doc_type,
		tags=tags or [],
		source=source,
		checksum=content_checksum(body),
	)


PageResult = Union[str, None, Exception]


class FakeFetcher:
	"""
	In-memory stand-in for Fetcher.

	Records every call and the peak number of concurrent page fetches.
	"""

	def __init__(
		self,
		pages: Optional[dict[str, PageResult]] = None,
		sitemaps: Optional[dict[str, Union[str, Exception]]] = None,
		latency: Union[float, Callable[[str], float]] = 0.0,
	):
		self.pages = dict(pages or {})
		self.sitemaps = dict(sitemaps or {})
		self.latency = latency
		self.page_calls: list[str] = []
		self.sitemap_calls: list[str] = []
		self.in_flight = 0
		self.max_in_flight = 0

	async def open(self) -> None:
		pass

	async def close(self) -> None:
		pass

	def calls_for(self, url: str) -> int:
		return self.page_calls.count(url)

	async def fetch_page(self, url: str) -> Optional[str]:
		self.page_calls.append(url)
		self.in_flight += 1
		self.max_in_flight = max(self.max_in_flight, self.in_flight)
		try:
			delay = self.latency(url) if callable(self.latency) else self.latency
			await asyncio.sleep(delay)
			result = self.pages.get(url)
			if isinstance(result, Exception):
				raise result
			return result
		finally:
			self.in_flight -= 1

	async def fetch_sitemap(self, url: str) -> str:
		self.sitemap_calls.append(url)
		await asyncio.sleep(0)
		result = self.sitemaps[url]
		if isinstance(result, Exception):
			raise result
		return result


def dev_source() -> SitemapSource:
	return SitemapSource(
		source=DocSource.DEVELOPERS,
		sitemap_url=DEV_SITEMAP,
		include_patterns=["developers.moengage.com/hc/"],
	)


def help_source() -> SitemapSource:
	return SitemapSource(
		source=DocSource.HELP,
		sitemap_url=HELP_SITEMAP,
		include_patterns=["help.moengage.com/hc/"],
	)


def make_config(tmp_path: Path, **overrides) -> Config:
	"""Config rooted in tmp_path with a single developers source."""
	config = Config(
		config_dir=tmp_path / "config",
		data_dir=tmp_path / "data",
	)
	config.sources = [dev_source()]
	config.batch_pause = 0.0
	config.shutdown_grace = 1.0
	for key, value in overrides.items():
		setattr(config, key, value)
	return config


async def open_store(tmp_path: Path) -> DocumentStore:
	store = DocumentStore(tmp_path / "docs.db")
	await store.init()
	return store


def make_orchestrator(
	store: DocumentStore,
	fetcher: FakeFetcher,
	sources: Optional[list[SitemapSource]] = None,
	batch_size: int = 2,
	min_content_length: int = 100,
) -> UpdateOrchestrator:
	return UpdateOrchestrator(
		store=store,
		fetcher=fetcher,
		extractor=Extractor(min_content_length=min_content_length),
		reader=SitemapReader(fetcher),
		sources=sources or [dev_source()],
		exclude_patterns=DEFAULT_EXCLUDE_PATTERNS,
		batch_size=batch_size,
		batch_pause=0.0,
	)


def entry(url: str, last_modified: Optional[datetime] = None, source: DocSource = DocSource.DEVELOPERS) -> SitemapEntry:
	return SitemapEntry(location=url, last_modified=last_modified, source=source)


def capture_tools(service, register_fn: Callable) -> dict:
	"""Register tools on a mock MCP and return the captured tool functions.

	Args:
		service: Service object to pass to the registration function
		register_fn: The registration function (e.g., register_docs_tools)

	Returns:
		Dict mapping tool name to the tool function
	"""
	captured = {}

	class MockMCP:
		def tool(self):
			def decorator(fn):
				captured[fn.__name__] = fn
				return fn
			return decorator

	register_fn(MockMCP(), service)
	return captured
