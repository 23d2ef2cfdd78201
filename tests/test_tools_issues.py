"""Unit tests for issue tracker MCP tools (tools/issues.py)."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock

import pytest
from fastmcp.exceptions import ToolError

from clients import set_registry
from conftest import get_tool_fn


@pytest.fixture
def mock_issues() -> AsyncMock:
    """Return a fully mocked ``IssueTrackerClient`` instance."""
    client = AsyncMock()
    client.test_connection.return_value = {"status": "success", "data": {"accountId": "a"}}
    client.list_projects.return_value = {"status": "success", "data": []}
    client.search.return_value = {"status": "success", "data": [], "total": 0}
    client.get_issue.return_value = {"status": "success", "data": {"key": "ABC-1"}}
    client.fetch_issues.return_value = {
        "status": "success",
        "data": [],
        "count": 0,
        "failedBatches": 0,
    }
    client.get_assigned_issues.return_value = {"status": "success", "data": []}
    client.get_recent_issues.return_value = {"status": "success", "data": []}
    client.get_project.return_value = {"status": "success", "data": {"key": "ABC"}}
    client.get_stats.return_value = {
        "status": "success",
        "data": {"assignedCount": 2, "recentCount": 5, "projectCount": 1, "failedParts": []},
    }
    return client


@pytest.fixture
def mock_registry(mock_issues: AsyncMock) -> AsyncMock:
    registry = AsyncMock()
    registry.issues = mock_issues
    return registry


@pytest.fixture(autouse=True)
def _cleanup_registry():
    yield
    set_registry(None)


class TestIssuesReads:
    async def test_connection(self, mock_registry: AsyncMock) -> None:
        set_registry(mock_registry)
        result = await get_tool_fn("issues_test_connection")()
        assert result["data"]["accountId"] == "a"

    async def test_list_projects(self, mock_registry: AsyncMock) -> None:
        set_registry(mock_registry)
        assert (await get_tool_fn("issues_list_projects")())["status"] == "success"

    async def test_search(self, mock_registry: AsyncMock, mock_issues: AsyncMock) -> None:
        set_registry(mock_registry)
        await get_tool_fn("issues_search")(jql="project = ABC", max_results=10)
        mock_issues.search.assert_awaited_once_with("project = ABC", 10)

    @pytest.mark.parametrize(("jql", "max_results"), [("  ", 10), ("x", 0), ("x", 101)])
    async def test_search_validation(
        self, mock_registry: AsyncMock, mock_issues: AsyncMock, jql: str, max_results: int
    ) -> None:
        set_registry(mock_registry)
        with pytest.raises(ToolError):
            await get_tool_fn("issues_search")(jql=jql, max_results=max_results)
        mock_issues.search.assert_not_awaited()

    async def test_get_issue_error_dict(
        self, mock_registry: AsyncMock, mock_issues: AsyncMock
    ) -> None:
        mock_issues.get_issue.return_value = {
            "status": "error",
            "message": "Issue does not exist",
        }
        set_registry(mock_registry)
        with pytest.raises(ToolError, match="Issue does not exist"):
            await get_tool_fn("issues_get")(issue_key="ABC-404")

    async def test_get_project(self, mock_registry: AsyncMock, mock_issues: AsyncMock) -> None:
        set_registry(mock_registry)
        result = await get_tool_fn("issues_get_project")(project_key="ABC")
        assert result["data"]["key"] == "ABC"
        mock_issues.get_project.assert_awaited_once_with("ABC")

    async def test_get_project_error_dict(
        self, mock_registry: AsyncMock, mock_issues: AsyncMock
    ) -> None:
        mock_issues.get_project.return_value = {
            "status": "error",
            "message": "No project could be found with key 'NOPE'.",
        }
        set_registry(mock_registry)
        with pytest.raises(ToolError, match="No project could be found"):
            await get_tool_fn("issues_get_project")(project_key="NOPE")

    async def test_get_stats(self, mock_registry: AsyncMock) -> None:
        set_registry(mock_registry)
        result = await get_tool_fn("issues_get_stats")()
        assert result["data"]["assignedCount"] == 2
        assert result["data"]["projectCount"] == 1

    async def test_get_stats_partial_logs_failed_parts(
        self,
        mock_registry: AsyncMock,
        mock_issues: AsyncMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        mock_issues.get_stats.return_value = {
            "status": "success",
            "data": {"assignedCount": None, "failedParts": ["assigned"]},
        }
        set_registry(mock_registry)
        with caplog.at_level(logging.WARNING, logger="ppm_mcp.server"):
            result = await get_tool_fn("issues_get_stats")()
        assert result["data"]["failedParts"] == ["assigned"]
        assert "failed parts=assigned" in caplog.text

    async def test_list_assigned(self, mock_registry: AsyncMock, mock_issues: AsyncMock) -> None:
        set_registry(mock_registry)
        await get_tool_fn("issues_list_assigned")()
        mock_issues.get_assigned_issues.assert_awaited_once()

    async def test_list_recent(self, mock_registry: AsyncMock, mock_issues: AsyncMock) -> None:
        set_registry(mock_registry)
        await get_tool_fn("issues_list_recent")(days=14)
        mock_issues.get_recent_issues.assert_awaited_once_with(14)

    @pytest.mark.parametrize("days", [0, 91])
    async def test_list_recent_validation(self, mock_registry: AsyncMock, days: int) -> None:
        set_registry(mock_registry)
        with pytest.raises(ToolError, match="days must be between"):
            await get_tool_fn("issues_list_recent")(days=days)


class TestIssuesFetchMany:
    async def test_passes_keys(self, mock_registry: AsyncMock, mock_issues: AsyncMock) -> None:
        set_registry(mock_registry)
        result = await get_tool_fn("issues_fetch_many")(issue_keys=["ABC-1", "ABC-2"])

        mock_issues.fetch_issues.assert_awaited_once_with(["ABC-1", "ABC-2"])
        assert result["failedBatches"] == 0

    async def test_empty_rejected(self, mock_registry: AsyncMock) -> None:
        set_registry(mock_registry)
        with pytest.raises(ToolError, match="must not be empty"):
            await get_tool_fn("issues_fetch_many")(issue_keys=[])

    async def test_too_many_rejected(self, mock_registry: AsyncMock) -> None:
        set_registry(mock_registry)
        with pytest.raises(ToolError, match="At most 500"):
            await get_tool_fn("issues_fetch_many")(
                issue_keys=[f"ABC-{i}" for i in range(501)]
            )

    async def test_unexpected_error_is_generic(
        self, mock_registry: AsyncMock, mock_issues: AsyncMock
    ) -> None:
        mock_issues.fetch_issues.side_effect = RuntimeError("secret detail")
        set_registry(mock_registry)
        with pytest.raises(ToolError, match="Failed to fetch issues"):
            await get_tool_fn("issues_fetch_many")(issue_keys=["ABC-1"])
