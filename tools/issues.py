"""Issue tracker MCP tools: read-only issue search and lookup."""

from __future__ import annotations

import logging
from typing import Any

from fastmcp import FastMCP

from _auth import check_result, tool_error_handler
from _constants import MAX_ISSUE_KEYS, MAX_ISSUE_RESULTS, MAX_RECENT_DAYS
from clients import get_registry

logger = logging.getLogger("ppm_mcp.server")

__all__ = ["register"]


def register(mcp: FastMCP) -> None:
    """Register all issue tracker tools on the given FastMCP instance."""

    @mcp.tool
    @tool_error_handler("Failed to connect to the issue tracker. Please try again.")
    async def issues_test_connection() -> dict[str, Any]:
        """Check the issue tracker credentials."""
        return check_result(await get_registry().issues.test_connection())

    @mcp.tool
    @tool_error_handler("Failed to list issue tracker projects. Please try again.")
    async def issues_list_projects() -> dict[str, Any]:
        """List the projects visible to the configured account."""
        return check_result(await get_registry().issues.list_projects())

    @mcp.tool
    @tool_error_handler("Failed to fetch issue tracker project. Please try again.")
    async def issues_get_project(project_key: str) -> dict[str, Any]:
        """Get a project's description, lead, components and issue types.

        Args:
            project_key: Project key such as ``ABC``.
        """
        return check_result(await get_registry().issues.get_project(project_key))

    @mcp.tool
    @tool_error_handler("Failed to search issues. Please try again.")
    async def issues_search(jql: str, max_results: int = 50) -> dict[str, Any]:
        """Search issues with a JQL query.

        Args:
            jql: JQL query string.
            max_results: Maximum number of issues to return (1-100).
        """
        if not jql.strip():
            raise ValueError("jql must not be empty.")
        if max_results < 1 or max_results > MAX_ISSUE_RESULTS:
            raise ValueError(f"max_results must be between 1 and {MAX_ISSUE_RESULTS}.")
        return check_result(await get_registry().issues.search(jql, max_results))

    @mcp.tool
    @tool_error_handler("Failed to fetch issue. Please try again.")
    async def issues_get(issue_key: str) -> dict[str, Any]:
        """Get a single issue by key.

        Args:
            issue_key: Issue key such as ``ABC-123``.
        """
        return check_result(await get_registry().issues.get_issue(issue_key))

    @mcp.tool
    @tool_error_handler("Failed to fetch issues. Please try again.")
    async def issues_fetch_many(issue_keys: list[str]) -> dict[str, Any]:
        """Get many issues by key; large lists are fetched in batches.

        Args:
            issue_keys: Issue keys such as ``["ABC-1", "ABC-2"]``.
        """
        if not issue_keys:
            raise ValueError("issue_keys must not be empty.")
        if len(issue_keys) > MAX_ISSUE_KEYS:
            raise ValueError(f"At most {MAX_ISSUE_KEYS} issue keys per call.")
        result = check_result(await get_registry().issues.fetch_issues(issue_keys))
        if result.get("failedBatches"):
            logger.warning("issues_fetch_many: %d batch(es) failed", result["failedBatches"])
        return result

    @mcp.tool
    @tool_error_handler("Failed to fetch assigned issues. Please try again.")
    async def issues_list_assigned() -> dict[str, Any]:
        """List open issues assigned to the configured account."""
        return check_result(await get_registry().issues.get_assigned_issues())

    @mcp.tool
    @tool_error_handler("Failed to fetch recent issues. Please try again.")
    async def issues_list_recent(days: int = 7) -> dict[str, Any]:
        """List issues updated in the last *days* days.

        Args:
            days: Look-back window in days (1-90).
        """
        if days < 1 or days > MAX_RECENT_DAYS:
            raise ValueError(f"days must be between 1 and {MAX_RECENT_DAYS}.")
        return check_result(await get_registry().issues.get_recent_issues(days))

    @mcp.tool
    @tool_error_handler("Failed to fetch issue tracker statistics. Please try again.")
    async def issues_get_stats() -> dict[str, Any]:
        """Count assigned issues, issues updated in the last week, and projects."""
        result = check_result(await get_registry().issues.get_stats())
        failed = result.get("data", {}).get("failedParts")
        if failed:
            logger.warning("issues_get_stats: failed parts=%s", ",".join(failed))
        return result
