"""MCP server exposing tree sync as tools."""
