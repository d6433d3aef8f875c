"""
Sitemap Reader - Fetches and parses XML sitemaps into ordered entries.

Supports <urlset> documents and one level of <sitemapindex> expansion.
A failing sitemap contributes zero entries and one error string; the
other sources still process. Entries are not deduplicated here.
"""

import asyncio
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .config import SitemapSource
from .fetcher import Fetcher, SitemapError
from .models import DocSource, SitemapEntry, as_utc

logger = logging.getLogger(__name__)


@dataclass
class SitemapReadResult:
	"""Entries from every source, in configured order, plus failures."""
	entries: list[SitemapEntry] = field(default_factory=list)
	errors: list[str] = field(default_factory=list)
	failed_sources: set[DocSource] = field(default_factory=set)


def parse_lastmod(value: Optional[str]) -> Optional[datetime]:
	"""Parse a W3C datetime; unparseable or empty values become None."""
	if not value:
		return None
	value = value.strip()
	if value.endswith("Z"):
		value = value[:-1] + "+00:00"
	try:
		return as_utc(datetime.fromisoformat(value))
	except ValueError:
		logger.debug(f"Ignoring invalid lastmod: {value!r}")
		return None


def _text(element: ET.Element, tag: str) -> Optional[str]:
	child = element.find(f"{{*}}{tag}")
	if child is None or child.text is None:
		return None
	return child.text.strip() or None


def parse_sitemap(xml_text: str, source: DocSource) -> tuple[list[SitemapEntry], list[str]]:
	"""
	Parse one sitemap document.

	Returns:
		(entries, child sitemap URLs). Child URLs are only present for
		a <sitemapindex> document.

	Raises:
		SitemapError: Malformed XML or an unexpected root element
	"""
	try:
		root = ET.fromstring(xml_text)
	except ET.ParseError as e:
		raise SitemapError(f"Invalid XML: {e}") from e

	tag = root.tag.split("}")[-1].lower()
	if tag == "sitemapindex":
		children = [
			loc.text.strip()
			for loc in root.findall(".//{*}sitemap/{*}loc")
			if loc.text and loc.text.strip()
		]
		return [], children

	if tag != "urlset":
		raise SitemapError(f"Invalid sitemap format: unexpected root <{tag}>")

	entries = []
	for url_el in root.findall("{*}url"):
		location = _text(url_el, "loc")
		if not location:
			continue
		entries.append(SitemapEntry(
			location=location,
			last_modified=parse_lastmod(_text(url_el, "lastmod")),
			source=source,
			changefreq=_text(url_el, "changefreq"),
			priority=_text(url_el, "priority"),
		))
	return entries, []


class SitemapReader:
	"""Reads every configured sitemap through the shared fetcher."""

	def __init__(self, fetcher: Fetcher):
		self.fetcher = fetcher

	async def read(self, sources: list[SitemapSource]) -> SitemapReadResult:
		"""
		Fetch all sources concurrently and flatten their entries.

		Ordering follows the configured source order regardless of
		completion order.
		"""
		result = SitemapReadResult()
		outcomes = await asyncio.gather(
			*(self._read_source(source) for source in sources),
			return_exceptions=True,
		)
		for source, outcome in zip(sources, outcomes):
			if isinstance(outcome, BaseException):
				if not isinstance(outcome, Exception):
					raise outcome
				message = f"Failed to fetch sitemap {source.sitemap_url}: {outcome}"
				logger.error(message)
				result.errors.append(message)
				result.failed_sources.add(source.source)
				continue
			logger.info(f"Sitemap {source.sitemap_url}: {len(outcome)} entries")
			result.entries.extend(outcome)
		return result

	async def _read_source(self, source: SitemapSource) -> list[SitemapEntry]:
		xml_text = await self.fetcher.fetch_sitemap(source.sitemap_url)
		entries, children = parse_sitemap(xml_text, source.source)
		for child_url in children:
			child_text = await self.fetcher.fetch_sitemap(child_url)
			child_entries, _ = parse_sitemap(child_text, source.source)
			entries.extend(child_entries)
		return entries
