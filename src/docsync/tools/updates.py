"""Update status and trigger tools."""

import json

from mcp.server.fastmcp import FastMCP

from ..models import TriggerUpdateInput
from ..service import DocsService
from .errors import tool_errors


def register_update_tools(mcp: FastMCP, service: DocsService) -> None:
	"""Register update pipeline tools."""

	@mcp.tool()
	@tool_errors
	async def get_update_status() -> str:
		"""
		Status of the last documentation update, whether one is running,
		and when the next scheduled run fires.
		"""
		report = await service.get_status()
		payload = report.model_dump(mode="json")
		if report.last_update is None:
			payload["message"] = "No update status available. Run an update first."
		return json.dumps(payload, indent=2)

	@mcp.tool()
	@tool_errors
	async def trigger_update(force: bool = False) -> str:
		"""
		Start a documentation update in the background.

		Returns immediately; poll get_update_status for the result.

		Args:
			force: Re-check every page regardless of its last-modified date
		"""
		params = TriggerUpdateInput(force=force)
		result = service.trigger_update(params)
		return json.dumps({
			"accepted": result.accepted,
			"status": "started" if result.accepted else "already_running",
			"message": result.message,
		}, indent=2)

	@mcp.tool()
	@tool_errors
	async def health_check() -> str:
		"""Check the health of the docsync server."""
		config = service.config
		status = {
			"server": "running",
			"data_dir": str(config.data_dir),
			"db_exists": config.db_path.exists(),
			"documents": await service.store.count_documents(),
			"update_running": service.orchestrator.is_running,
			"schedule": config.update_schedule,
			"sources": [s.sitemap_url for s in config.sources],
		}
		return json.dumps(status, indent=2)
