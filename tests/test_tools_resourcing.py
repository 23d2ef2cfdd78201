"""Unit tests for resourcing MCP tools (tools/resourcing.py).

Every tool is tested via direct function call with a mocked ClientRegistry.
We never hit the real PPM API.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from fastmcp.exceptions import ToolError

from _config import Settings
from clients import set_registry
from clients.errors import AuthError
from clients.hierarchy import Hierarchy
from clients.identity import Identity, UserProfile
from clients.resourcing import ReconciliationResult, SourceOutcome
from conftest import get_tool_fn

PROFILE = UserProfile(user_id="u1", username="jdoe", full_name="Jane Doe", email="j@x.io")
JANE = Identity(name="Jane Doe", source="fullName", profile=PROFILE)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_registry() -> AsyncMock:
    """Return a fully mocked ``ClientRegistry`` instance."""
    registry = AsyncMock()
    registry.settings = Settings(ppm_username="svc", ppm_password="secret")
    registry.ppm.authenticate.return_value = "sess-1"
    registry.identity.fetch_profile.return_value = PROFILE
    registry.identity.resolve.return_value = JANE
    registry.resourcing.reconcile.return_value = ReconciliationResult(
        identity=JANE,
        sources=[
            SourceOutcome("assignments", "ok", fetched=1),
            SourceOutcome("project_resources", "exhausted"),
            SourceOutcome("timesheet", "failed", error="down"),
            SourceOutcome("allocations", "exhausted"),
        ],
    )
    registry.work_items.get_hierarchy.return_value = Hierarchy(
        timestamp=datetime(2024, 5, 1, tzinfo=UTC).isoformat(), parent_count=0, child_count=0
    )
    return registry


@pytest.fixture(autouse=True)
def _cleanup_registry():
    """Ensure registry is cleaned up after each test."""
    yield
    set_registry(None)


# ---------------------------------------------------------------------------
# Session handling
# ---------------------------------------------------------------------------


class TestSession:
    async def test_missing_credentials(self, mock_registry: AsyncMock) -> None:
        mock_registry.settings = Settings(ppm_username="svc")
        set_registry(mock_registry)

        with pytest.raises(ToolError, match="PPM_PASSWORD"):
            await get_tool_fn("ppm_test_connection")()
        mock_registry.ppm.authenticate.assert_not_awaited()

    async def test_rejected_login(self, mock_registry: AsyncMock) -> None:
        mock_registry.ppm.authenticate.side_effect = AuthError("bad password")
        set_registry(mock_registry)

        with pytest.raises(ToolError, match="PPM authentication failed: bad password"):
            await get_tool_fn("ppm_get_resourcing")()
        mock_registry.resourcing.reconcile.assert_not_awaited()

    async def test_unreachable(self, mock_registry: AsyncMock) -> None:
        mock_registry.ppm.authenticate.side_effect = ConnectionError("refused")
        set_registry(mock_registry)

        with pytest.raises(ToolError, match="temporarily unavailable"):
            await get_tool_fn("ppm_get_user")()

    async def test_registry_not_initialized(self) -> None:
        with pytest.raises(ToolError, match="Failed to connect"):
            await get_tool_fn("ppm_test_connection")()


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class TestPpmTestConnection:
    async def test_returns_profile(self, mock_registry: AsyncMock) -> None:
        set_registry(mock_registry)
        result = await get_tool_fn("ppm_test_connection")()

        assert result["status"] == "success"
        assert result["data"]["fullName"] == "Jane Doe"
        mock_registry.ppm.authenticate.assert_awaited_once_with("svc", "secret")
        mock_registry.identity.fetch_profile.assert_awaited_once_with("sess-1")


class TestPpmGetUser:
    async def test_passes_hint(self, mock_registry: AsyncMock) -> None:
        set_registry(mock_registry)
        result = await get_tool_fn("ppm_get_user")(user_name="J. Doe")

        mock_registry.identity.resolve.assert_awaited_once_with("sess-1", "J. Doe")
        assert result["data"]["name"] == "Jane Doe"
        assert result["data"]["source"] == "fullName"


class TestPpmGetResourcing:
    async def test_returns_reconciliation(self, mock_registry: AsyncMock) -> None:
        set_registry(mock_registry)
        result = await get_tool_fn("ppm_get_resourcing")(
            start_date="2024-01-01", end_date="2024-03-01"
        )

        mock_registry.resourcing.reconcile.assert_awaited_once_with(
            "sess-1", hint=None, start_date="2024-01-01", end_date="2024-03-01"
        )
        assert result["status"] == "success"
        assert result["state"] == "partially_succeeded"
        assert result["failedSources"] == ["timesheet"]
        assert result["count"] == 0

    async def test_degraded_pass_logged(
        self, mock_registry: AsyncMock, caplog: pytest.LogCaptureFixture
    ) -> None:
        set_registry(mock_registry)
        with caplog.at_level(logging.WARNING, logger="ppm_mcp.server"):
            await get_tool_fn("ppm_get_resourcing")()
        assert "failed sources=timesheet" in caplog.text

    @pytest.mark.parametrize(
        ("start", "end", "message"),
        [
            ("2024-01-01", None, "both start_date and end_date"),
            ("01/02/2024", "2024-03-01", "Invalid date format"),
            ("2024-03-01", "2024-01-01", "on or after"),
            ("2023-01-01", "2024-12-31", "exceeding the maximum"),
        ],
    )
    async def test_window_validation(
        self, mock_registry: AsyncMock, start: str | None, end: str | None, message: str
    ) -> None:
        set_registry(mock_registry)
        with pytest.raises(ToolError, match=message):
            await get_tool_fn("ppm_get_resourcing")(start_date=start, end_date=end)
        mock_registry.ppm.authenticate.assert_not_awaited()

    async def test_unexpected_error_is_generic(self, mock_registry: AsyncMock) -> None:
        mock_registry.resourcing.reconcile.side_effect = RuntimeError("internal detail")
        set_registry(mock_registry)

        with pytest.raises(ToolError) as exc_info:
            await get_tool_fn("ppm_get_resourcing")()
        assert "internal detail" not in str(exc_info.value)
        assert "Failed to fetch resourcing data" in str(exc_info.value)


class TestPpmGetWorkHierarchy:
    async def test_uses_resolved_name(self, mock_registry: AsyncMock) -> None:
        set_registry(mock_registry)
        result = await get_tool_fn("ppm_get_work_hierarchy")()

        mock_registry.identity.resolve.assert_awaited_once_with("sess-1", None)
        mock_registry.work_items.get_hierarchy.assert_awaited_once_with("sess-1", "Jane Doe")
        assert result["status"] == "success"
        assert result["data"]["parentCount"] == 0
        assert result["data"]["unassignedChildren"] == []
