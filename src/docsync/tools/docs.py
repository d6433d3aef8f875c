"""Documentation query tools."""

import json
from typing import Optional

from mcp.server.fastmcp import FastMCP

from ..models import (
	GetDocumentInput,
	ListCategoriesInput,
	RecentUpdatesInput,
	SearchInput,
)
from ..service import DocsService
from .errors import error_response, tool_errors


def register_docs_tools(mcp: FastMCP, service: DocsService) -> None:
	"""Register search and lookup tools."""

	@mcp.tool()
	@tool_errors
	async def search_documentation(
		query: str,
		category: Optional[str] = None,
		platform: Optional[str] = None,
		type: Optional[str] = None,
		source: Optional[str] = None,
		limit: int = 10,
	) -> str:
		"""
		Full-text search across the indexed documentation.

		Results are ranked by bm25; a lower score is more relevant.

		Args:
			query: Words to search for
			category: Exact category label (e.g. "Developers - Android SDK")
			platform: android, ios, web, react-native, flutter, api or general
			type: sdk, api, guide, tutorial or reference
			source: developers, help or partners
			limit: Maximum results (1-50)
		"""
		params = SearchInput(
			query=query,
			category=category,
			platform=platform,
			type=type,
			source=source,
			limit=limit,
		)
		results = await service.search(params)
		return json.dumps({
			"query": params.query,
			"count": len(results),
			"results": [r.model_dump(mode="json") for r in results],
		}, indent=2)

	@mcp.tool()
	@tool_errors
	async def get_document(id: str) -> str:
		"""
		Get the full content of a document by its id.

		Args:
			id: Document id as returned by search_documentation
		"""
		params = GetDocumentInput(id=id)
		doc = await service.get_document(params)
		if not doc:
			return error_response(f"Document not found: {params.id}")
		return json.dumps(doc.model_dump(mode="json"), indent=2)

	@mcp.tool()
	@tool_errors
	async def list_categories(platform: Optional[str] = None) -> str:
		"""
		List documentation categories with document counts.

		Args:
			platform: Optional platform filter
		"""
		params = ListCategoriesInput(platform=platform)
		categories = await service.list_categories(params)
		return json.dumps({
			"count": len(categories),
			"categories": [c.model_dump(mode="json") for c in categories],
		}, indent=2)

	@mcp.tool()
	@tool_errors
	async def get_recent_updates(since: Optional[str] = None, limit: int = 20) -> str:
		"""
		Documents most recently created or changed, newest first.

		Args:
			since: Optional ISO 8601 timestamp; only changes after it
			limit: Maximum documents (1-100)
		"""
		params = RecentUpdatesInput(since=since, limit=limit)
		docs = await service.recent_updates(params)
		return json.dumps({
			"count": len(docs),
			"documents": [
				{
					"id": d.id,
					"title": d.title,
					"url": d.url,
					"category": d.category,
					"platform": d.platform.value,
					"source": d.source.value,
					"last_modified": d.last_modified.isoformat(),
					"updated_at": d.updated_at.isoformat() if d.updated_at else None,
				}
				for d in docs
			],
		}, indent=2)
