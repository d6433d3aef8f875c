"""docsync - incremental documentation mirror served over MCP."""

__version__ = "0.1.0"
