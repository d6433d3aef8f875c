"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

import platformdirs
from dotenv import load_dotenv

from . import __version__
from .models import DocSource

APP_NAME = "docsync"
APP_AUTHOR = "docsync"

DEFAULT_EXCLUDE_PATTERNS = [
	"/categories/",
	"/sections/",
	"/search",
	"/requests",
	"/subscriptions",
	"/signin",
	"/signup",
	"/community",
]


class ConfigError(ValueError):
	"""Raised when configuration values are invalid."""
	pass


@dataclass
class SitemapSource:
	"""A sitemap URL tagged with the documentation origin it belongs to."""
	source: DocSource
	sitemap_url: str
	include_patterns: list[str] = field(default_factory=list)

	@classmethod
	def from_dict(cls, data: dict) -> "SitemapSource":
		try:
			source = DocSource(data["source"])
		except (KeyError, ValueError) as e:
			raise ConfigError(f"Invalid source entry {data!r}: {e}") from e
		if not data.get("sitemap_url"):
			raise ConfigError(f"Source {source.value} has no sitemap_url")
		return cls(
			source=source,
			sitemap_url=data["sitemap_url"],
			include_patterns=list(data.get("include_patterns", [])),
		)


def source_for_url(url: str) -> DocSource:
	"""Derive the source tag from a sitemap URL's host."""
	host = urlparse(url).netloc.lower()
	for source in DocSource:
		if host.startswith(f"{source.value}."):
			return source
	return DocSource.DEVELOPERS


def _default_sources() -> list[SitemapSource]:
	return [
		SitemapSource(
			source=source,
			sitemap_url=f"https://{source.value}.moengage.com/hc/sitemap.xml",
			include_patterns=[f"{source.value}.moengage.com/hc/"],
		)
		for source in (DocSource.DEVELOPERS, DocSource.HELP, DocSource.PARTNERS)
	]


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	db_path: Path = field(init=False)
	log_dir: Path = field(init=False)

	# Crawl sources
	sources: list[SitemapSource] = field(default_factory=_default_sources)
	exclude_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))

	# Update pipeline
	update_schedule: str = "0 2 * * sun"
	rate_limit_requests: int = 10
	rate_limit_window: float = 1.0
	max_concurrent_updates: int = 5
	request_timeout: float = 30.0
	batch_pause: float = 1.0
	min_content_length: int = 100
	force_update_on_start: bool = False
	shutdown_grace: float = 30.0
	user_agent: str = f"docsync/{__version__}"

	log_level: str = "INFO"

	def __post_init__(self) -> None:
		self.db_path = self.data_dir / "docs.db"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)

	def validate(self) -> None:
		"""Reject values the update pipeline cannot run with."""
		if self.rate_limit_requests < 1:
			raise ConfigError("rate_limit_requests must be at least 1")
		if self.rate_limit_window <= 0:
			raise ConfigError("rate_limit_window must be positive")
		if self.max_concurrent_updates < 1:
			raise ConfigError("max_concurrent_updates must be at least 1")
		if self.request_timeout <= 0:
			raise ConfigError("request_timeout must be positive")
		if self.batch_pause < 0 or self.shutdown_grace < 0:
			raise ConfigError("batch_pause and shutdown_grace must not be negative")
		if not self.sources:
			raise ConfigError("At least one sitemap source is required")


def _parse_bool(value: str) -> bool:
	return value.strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(config: Config) -> Config:
	"""Apply DOCSYNC_* environment variable overrides."""
	path_map = {
		"DOCSYNC_CONFIG_DIR": "config_dir",
		"DOCSYNC_DATA_DIR": "data_dir",
	}
	for env_key, attr in path_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, Path(val))

	typed_map = {
		"DOCSYNC_UPDATE_SCHEDULE": ("update_schedule", str),
		"DOCSYNC_LOG_LEVEL": ("log_level", str),
		"DOCSYNC_USER_AGENT": ("user_agent", str),
		"DOCSYNC_RATE_LIMIT_REQUESTS": ("rate_limit_requests", int),
		"DOCSYNC_RATE_LIMIT_WINDOW": ("rate_limit_window", float),
		"DOCSYNC_MAX_CONCURRENT_UPDATES": ("max_concurrent_updates", int),
		"DOCSYNC_REQUEST_TIMEOUT": ("request_timeout", float),
		"DOCSYNC_BATCH_PAUSE": ("batch_pause", float),
		"DOCSYNC_MIN_CONTENT_LENGTH": ("min_content_length", int),
		"DOCSYNC_SHUTDOWN_GRACE": ("shutdown_grace", float),
		"DOCSYNC_FORCE_UPDATE_ON_START": ("force_update_on_start", _parse_bool),
	}
	for env_key, (attr, convert) in typed_map.items():
		val = os.getenv(env_key)
		if val:
			try:
				setattr(config, attr, convert(val))
			except ValueError as e:
				raise ConfigError(f"Invalid value for {env_key}: {val!r}") from e

	sitemap_urls = os.getenv("DOCSYNC_SITEMAP_URLS")
	if sitemap_urls:
		urls = [u.strip() for u in sitemap_urls.split(",") if u.strip()]
		config.sources = [
			SitemapSource(
				source=source_for_url(url),
				sitemap_url=url,
				include_patterns=[f"{urlparse(url).netloc}/"],
			)
			for url in urls
		]

	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	path_fields = {"config_dir", "data_dir"}
	for key, val in data.items():
		if key == "sources":
			config.sources = [SitemapSource.from_dict(item) for item in val]
		elif key in path_fields:
			setattr(config, key, Path(os.path.expanduser(val)))
		elif hasattr(config, key) and key not in ("db_path", "log_dir"):
			setattr(config, key, val)

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	load_dotenv()
	config = Config()
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.validate()
	config.ensure_dirs()
	return config
