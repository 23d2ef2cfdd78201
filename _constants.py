"""Shared constants for the PPM logbook MCP server."""

from __future__ import annotations

DEFAULT_BATCH_SIZE: int = 20
MAX_QUERY_LENGTH: int = 2000
QUERY_PAGE_SIZE: int = 100
MAX_QUERY_PAGES: int = 100
DEFAULT_WINDOW_MONTHS: int = 2
MAX_WINDOW_DAYS: int = 366
ISSUE_BATCH_SIZE: int = 50
MAX_ISSUE_RESULTS: int = 100
MAX_ISSUE_KEYS: int = 500
MAX_RECENT_DAYS: int = 90
MAX_CREDENTIAL_LENGTH: int = 512
