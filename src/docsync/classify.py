"""
Classification rules for documentation pages.

Each table is an ordered list of (pattern, label) rules evaluated top to
bottom; the first rule whose pattern matches wins. Tables are plain data
so they can be extended without touching the extractor.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from .models import DocSource, DocType, Platform


@dataclass(frozen=True)
class Rule:
	"""A single (pattern, label) classification rule."""
	pattern: re.Pattern
	label: str

	def matches(self, text: str) -> bool:
		return bool(self.pattern.search(text))


def _rules(pairs: Iterable[tuple[str, str]]) -> list[Rule]:
	return [Rule(re.compile(p, re.IGNORECASE), label) for p, label in pairs]


CATEGORY_RULES = _rules([
	(r"android", "Android SDK"),
	(r"ios", "iOS SDK"),
	(r"react-native", "React Native SDK"),
	(r"web", "Web SDK"),
	(r"flutter", "Flutter SDK"),
	(r"cordova", "Cordova SDK"),
	(r"capacitor", "Capacitor SDK"),
	(r"unity", "Unity SDK"),
	(r"ionic", "Ionic SDK"),
	(r"api", "API Reference"),
	(r"shopify", "Shopify Integration"),
	(r"getting-started|getting started", "Getting Started"),
	(r"integration", "Integration Guide"),
	(r"troubleshooting", "Troubleshooting"),
	(r"faq", "FAQ"),
])

PLATFORM_RULES = _rules([
	(r"android", Platform.ANDROID.value),
	(r"ios", Platform.IOS.value),
	(r"react-native|react native", Platform.REACT_NATIVE.value),
	(r"web", Platform.WEB.value),
	(r"flutter", Platform.FLUTTER.value),
	(r"api", Platform.API.value),
])

TYPE_RULES = _rules([
	(r"tutorial", DocType.TUTORIAL.value),
	(r"reference", DocType.REFERENCE.value),
	(r"api", DocType.API.value),
	(r"sdk", DocType.SDK.value),
])

SOURCE_PREFIXES = {
	DocSource.DEVELOPERS: "Developers",
	DocSource.HELP: "Help",
	DocSource.PARTNERS: "Partners",
}

DEFAULT_CATEGORY = "General"
MAX_TAGS = 10


def first_match(rules: list[Rule], texts: Iterable[str]) -> Optional[str]:
	"""Return the label of the first rule matching any of the texts."""
	texts = [t for t in texts if t]
	for rule in rules:
		if any(rule.matches(text) for text in texts):
			return rule.label
	return None


def classify_category(
	source: DocSource,
	path_segments: list[str],
	breadcrumb: str = "",
	headings: str = "",
) -> str:
	"""
	Category label prefixed with the source name.

	URL path segments are consulted first, then breadcrumb text, then
	the title and top-level headings.
	"""
	prefix = SOURCE_PREFIXES.get(source, SOURCE_PREFIXES[DocSource.DEVELOPERS])
	for texts in (path_segments, [breadcrumb], [headings]):
		label = first_match(CATEGORY_RULES, texts)
		if label:
			return f"{prefix} - {label}"
	return f"{prefix} - {DEFAULT_CATEGORY}"


def classify_platform(url: str, category: str) -> Platform:
	label = first_match(PLATFORM_RULES, [url.lower(), category.lower()])
	return Platform(label) if label else Platform.GENERAL


def classify_type(url: str, category: str) -> DocType:
	label = first_match(TYPE_RULES, [url.lower(), category.lower()])
	return DocType(label) if label else DocType.GUIDE


def slugify(text: str) -> str:
	return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def derive_tags(
	category: str,
	platform: Platform,
	keywords: Optional[str] = None,
	headings: Iterable[str] = (),
) -> list[str]:
	"""
	Tags from the category slug, the platform, meta keywords and the
	first two long words of each sub-heading, capped at MAX_TAGS.
	"""
	tags: dict[str, None] = {}
	tags[slugify(category)] = None
	if platform != Platform.GENERAL:
		tags[platform.value] = None

	if keywords:
		for keyword in keywords.split(","):
			cleaned = keyword.strip().lower()
			if len(cleaned) > 2:
				tags[cleaned] = None

	for heading in headings:
		words = [w for w in heading.lower().split() if len(w) > 3]
		for word in words[:2]:
			tags[word] = None

	return list(tags)[:MAX_TAGS]
