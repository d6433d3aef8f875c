"""
Extractor - HTML to normalized documentation records.

Pure function of (url, html): the same input always yields the same
title, body, labels and checksum.
"""

import hashlib
import logging
import re
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse, urlunparse

from bs4 import BeautifulSoup
from markdownify import markdownify as md

from .classify import classify_category, classify_platform, classify_type, derive_tags
from .models import DocSource, Document, utcnow

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
	"""The page could not be turned into a record."""
	pass


class InsufficientContentError(ExtractionError):
	"""Extracted title or body is missing or below the minimum length."""
	pass


def normalize_url(url: str) -> str:
	"""Lowercase scheme and host, drop the fragment and any trailing slash."""
	parsed = urlparse(url.strip())
	path = parsed.path.rstrip("/") or "/"
	return urlunparse((
		parsed.scheme.lower(),
		parsed.netloc.lower(),
		path,
		parsed.params,
		parsed.query,
		"",
	))


def document_id(url: str) -> str:
	"""
	Stable record id for a URL.

	The readable slug is ``article-<n>`` for help-center article URLs or
	the last path segment; uniqueness comes from the 16-hex-digit
	SHA-256 suffix of the normalized URL.
	"""
	normalized = normalize_url(url)
	digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]

	match = re.search(r"/articles/(\d+)", normalized)
	if match:
		slug = f"article-{match.group(1)}"
	else:
		segments = [s for s in urlparse(normalized).path.split("/") if s]
		last = segments[-1] if segments else ""
		last = re.sub(r"\.[^/.]+$", "", last)
		slug = re.sub(r"[^A-Za-z0-9_-]+", "-", last).strip("-")[:60] or "doc"
	return f"{slug}-{digest}"


def content_checksum(body: str) -> str:
	"""SHA-256 hex digest of the normalized body."""
	return hashlib.sha256(body.encode("utf-8")).hexdigest()


class Extractor:
	"""Turns fetched HTML into a Document."""

	TITLE_SELECTORS = [
		"h1.article-title",
		"h1[data-test-id='article-title']",
		".article-header h1",
		"article h1",
		"h1",
		"title",
		".page-title",
		".post-title",
	]

	CONTENT_SELECTORS = [
		".article-body",
		"[data-test-id='article-body']",
		"article .content",
		".post-content",
		".entry-content",
		"main article",
		"main .content",
		"main",
	]

	# Elements to remove before content extraction
	REMOVE_SELECTORS = [
		"script",
		"style",
		"nav",
		".navigation",
		".breadcrumb",
		".sidebar",
		".footer",
		".header",
		".comment",
		".article-votes",
		".article-actions",
		".article-meta",
	]

	# Additionally removed when falling back to <body>
	FALLBACK_REMOVE_SELECTORS = ["header", "footer", "nav", "aside", ".nav"]

	BREADCRUMB_SELECTORS = ".breadcrumb, .breadcrumbs, nav"

	def __init__(self, min_content_length: int = 100):
		self.min_content_length = min_content_length

	def extract(
		self,
		url: str,
		html: str,
		source: DocSource,
		last_modified: Optional[datetime] = None,
	) -> Document:
		"""
		Build a Document from page markup.

		Raises:
			InsufficientContentError: No title, or body shorter than
				min_content_length
		"""
		soup = BeautifulSoup(html, "html.parser")

		title = self._extract_title(soup)
		if not title:
			raise InsufficientContentError(f"Insufficient content: no title found at {url}")

		breadcrumb = " ".join(
			el.get_text(" ", strip=True) for el in soup.select(self.BREADCRUMB_SELECTORS)
		)
		top_headings = " ".join(el.get_text(" ", strip=True) for el in soup.select("h1, h2"))
		keywords_tag = soup.find("meta", attrs={"name": "keywords"})
		keywords = keywords_tag.get("content") if keywords_tag else None

		content_element = self._extract_content(soup)
		sub_headings = [el.get_text(" ", strip=True) for el in content_element.select("h2, h3")]

		markdown = md(
			str(content_element),
			heading_style="ATX",
			bullets="-",
			strip=["script", "style"],
		)
		body = self._clean_markdown(markdown)
		if len(body) < self.min_content_length:
			raise InsufficientContentError(
				f"Insufficient content: {len(body)} chars extracted from {url} "
				f"(minimum {self.min_content_length})"
			)

		segments = [s for s in urlparse(url).path.split("/") if s]
		category = classify_category(source, segments, breadcrumb, f"{title} {top_headings}")
		platform = classify_platform(url, category)
		doc_type = classify_type(url, category)
		tags = derive_tags(category, platform, keywords, sub_headings)

		return Document(
			id=document_id(url),
			url=url,
			title=title,
			body=body,
			last_modified=last_modified or utcnow(),
			category=category,
			platform=platform,
			type=doc_type,
			tags=tags,
			source=source,
			checksum=content_checksum(body),
		)

	def _extract_title(self, soup: BeautifulSoup) -> str:
		for selector in self.TITLE_SELECTORS:
			element = soup.select_one(selector)
			if element:
				title = element.get_text(" ", strip=True)
				if title:
					return title
		return ""

	def _extract_content(self, soup: BeautifulSoup):
		for selector in self.REMOVE_SELECTORS:
			for element in soup.select(selector):
				element.decompose()

		for selector in self.CONTENT_SELECTORS:
			element = soup.select_one(selector)
			if element and len(element.get_text(strip=True)) > self.min_content_length:
				return element

		for selector in self.FALLBACK_REMOVE_SELECTORS:
			for element in soup.select(selector):
				element.decompose()
		return soup.body if soup.body else soup

	def _clean_markdown(self, markdown: str) -> str:
		"""Clean up converted markdown."""
		# Remove trailing whitespace
		lines = [line.rstrip() for line in markdown.split("\n")]
		markdown = "\n".join(lines)

		# Remove excessive blank lines
		markdown = re.sub(r"\n{3,}", "\n\n", markdown)

		return markdown.strip()
