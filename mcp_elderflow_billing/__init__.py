"""MCP server for the ElderFlow billing core."""

__version__ = "0.1.0"
