"""Structured error responses for tool functions."""

import functools
import json
import logging
from typing import Awaitable, Callable

from pydantic import ValidationError

from ..store import StoreError

logger = logging.getLogger(__name__)


def error_response(message: str, **extra) -> str:
	return json.dumps({"error": message, **extra}, indent=2, default=str)


def tool_errors(fn: Callable[..., Awaitable[str]]) -> Callable[..., Awaitable[str]]:
	"""Convert input validation and store failures into JSON error results."""

	@functools.wraps(fn)
	async def wrapper(*args, **kwargs) -> str:
		try:
			return await fn(*args, **kwargs)
		except ValidationError as e:
			details = [
				{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
				for err in e.errors()
			]
			return error_response("Invalid arguments", details=details)
		except StoreError as e:
			logger.error(f"{fn.__name__} failed: {e}")
			return error_response(f"Store unavailable: {e}")

	return wrapper
