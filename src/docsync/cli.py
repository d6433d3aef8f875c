"""CLI for docsync: serve, update, status and search commands."""

import argparse
import asyncio
import sys

from pydantic import ValidationError

from .config import ConfigError, load_config
from .logging_config import setup_logging


def cmd_serve(args: argparse.Namespace) -> None:
	"""Run the MCP server (stdio transport)."""
	from .server import main as serve_main
	serve_main()


async def _run_update(force: bool) -> int:
	from .render import render_ledger_entry
	from .service import DocsService

	config = load_config()
	setup_logging(config.log_level, config.log_dir)
	service = DocsService(config)
	await service.start(schedule=False)
	try:
		entry = await service.run_update(force=force)
	finally:
		await service.stop()
	render_ledger_entry(entry, title="Update Result")
	return 0 if entry.succeeded else 1


def cmd_update(args: argparse.Namespace) -> None:
	"""Run one update synchronously and print its ledger entry."""
	sys.exit(asyncio.run(_run_update(args.force)))


async def _show_status() -> None:
	from .render import render_status
	from .service import DocsService

	service = DocsService(load_config())
	await service.start(schedule=False)
	try:
		report = await service.get_status()
	finally:
		await service.stop()
	render_status(report)


def cmd_status(args: argparse.Namespace) -> None:
	"""Show the latest ledger entry."""
	asyncio.run(_show_status())


async def _search(query: str, limit: int) -> None:
	from .models import SearchInput
	from .render import render_search_results
	from .service import DocsService

	params = SearchInput(query=query, limit=limit)
	service = DocsService(load_config())
	await service.start(schedule=False)
	try:
		results = await service.search(params)
	finally:
		await service.stop()
	render_search_results(params.query, results)


def cmd_search(args: argparse.Namespace) -> None:
	"""Full-text search the local store."""
	asyncio.run(_search(args.query, args.limit))


def main() -> None:
	"""CLI entry point."""
	parser = argparse.ArgumentParser(
		prog="docsync",
		description="Incremental documentation mirror with full-text search over MCP",
	)
	subparsers = parser.add_subparsers(dest="command")

	# serve
	serve_parser = subparsers.add_parser("serve", help="Run MCP server (stdio)")
	serve_parser.set_defaults(func=cmd_serve)

	# update
	update_parser = subparsers.add_parser("update", help="Run one documentation update now")
	update_parser.add_argument("--force", action="store_true", help="Re-check every page")
	update_parser.set_defaults(func=cmd_update)

	# status
	status_parser = subparsers.add_parser("status", help="Show the last update run")
	status_parser.set_defaults(func=cmd_status)

	# search
	search_parser = subparsers.add_parser("search", help="Search indexed documentation")
	search_parser.add_argument("query", help="Search terms")
	search_parser.add_argument("--limit", type=int, default=10, help="Max results (1-50)")
	search_parser.set_defaults(func=cmd_search)

	args = parser.parse_args()

	if not args.command:
		parser.print_help()
		sys.exit(1)

	try:
		args.func(args)
	except ConfigError as e:
		print(f"Configuration error: {e}", file=sys.stderr)
		sys.exit(2)
	except ValidationError as e:
		print(f"Invalid arguments: {e}", file=sys.stderr)
		sys.exit(2)
