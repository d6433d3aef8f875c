"""docsync MCP server."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from mcp.server.fastmcp import FastMCP

from .config import Config, load_config
from .logging_config import setup_logging
from .service import DocsService
from .tools import register_all_tools

logger = logging.getLogger(__name__)


def create_server(config: Optional[Config] = None, service: Optional[DocsService] = None) -> FastMCP:
	"""
	Build the FastMCP server.

	The service is started when the transport session begins and stopped
	(with its bounded wait for an active run) when it ends.
	"""
	config = config or load_config()
	service = service or DocsService(config)

	@asynccontextmanager
	async def lifespan(server: FastMCP) -> AsyncIterator[DocsService]:
		await service.start()
		try:
			yield service
		finally:
			await service.stop()

	mcp = FastMCP("docsync", lifespan=lifespan)
	register_all_tools(mcp, service)
	return mcp


def main() -> None:
	"""Run the server over stdio."""
	config = load_config()
	setup_logging(config.log_level, config.log_dir)
	create_server(config).run()
