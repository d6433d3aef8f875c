"""MCP tool registration."""

from mcp.server.fastmcp import FastMCP

from ..service import DocsService
from .docs import register_docs_tools
from .updates import register_update_tools


def register_all_tools(mcp: FastMCP, service: DocsService) -> None:
	"""Register all MCP tools."""
	register_docs_tools(mcp, service)
	register_update_tools(mcp, service)
