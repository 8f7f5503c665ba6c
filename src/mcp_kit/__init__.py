"""MCP Kit: build Model Context Protocol servers and expose REST APIs as tools."""

__version__ = "0.1.0"
