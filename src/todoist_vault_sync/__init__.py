"""Bidirectional sync between a Todoist workspace and a Markdown vault."""

__version__ = "0.4.0"
