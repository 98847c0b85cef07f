"""MCP stdio host for the sync engine."""
