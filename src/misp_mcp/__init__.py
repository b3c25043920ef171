"""MCP server exposing a MISP instance as tools."""

__version__ = "0.1.0"
