"""Resourcing MCP tools: PPM profile, reconciliation and work hierarchy."""

from __future__ import annotations

import logging
from datetime import date as date_type
from typing import Any

from fastmcp import FastMCP

from _auth import get_ppm_session, tool_error_handler
from _constants import MAX_WINDOW_DAYS
from clients import get_registry

logger = logging.getLogger("ppm_mcp.server")

__all__ = ["register"]


def _validate_window(start_date: str | None, end_date: str | None) -> None:
    if not start_date and not end_date:
        return
    if not start_date or not end_date:
        raise ValueError("Provide both start_date and end_date, or neither.")
    try:
        start = date_type.fromisoformat(start_date)
        end = date_type.fromisoformat(end_date)
    except ValueError as exc:
        raise ValueError(f"Invalid date format. Use YYYY-MM-DD. Details: {exc}") from exc
    if end < start:
        raise ValueError("end_date must be on or after start_date.")
    day_span = (end - start).days + 1
    if day_span > MAX_WINDOW_DAYS:
        raise ValueError(
            f"Date range spans {day_span} days, exceeding the maximum of "
            f"{MAX_WINDOW_DAYS} days."
        )


def register(mcp: FastMCP) -> None:
    """Register all resourcing tools on the given FastMCP instance."""

    @mcp.tool
    @tool_error_handler("Failed to connect to the PPM service. Please try again.")
    async def ppm_test_connection() -> dict[str, Any]:
        """Log in to the PPM service and report who the session belongs to."""
        session = await get_ppm_session()
        profile = await get_registry().identity.fetch_profile(session)
        return {
            "status": "success",
            "message": "Successfully connected to the PPM service",
            "data": profile.as_dict(),
        }

    @mcp.tool
    @tool_error_handler("Failed to fetch the PPM user profile. Please try again.")
    async def ppm_get_user(user_name: str | None = None) -> dict[str, Any]:
        """Get the PPM profile and the name used to match the user's records.

        Args:
            user_name: Optional explicit name to use instead of the profile's name.
        """
        session = await get_ppm_session()
        identity = await get_registry().identity.resolve(session, user_name)
        return {"status": "success", "data": identity.as_dict()}

    @mcp.tool
    @tool_error_handler("Failed to fetch resourcing data. Please try again.")
    async def ppm_get_resourcing(
        user_name: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> dict[str, Any]:
        """Get the user's assignments, project roles, timesheet entries and allocations.

        Sources that fail are reported in ``failedSources`` and ``sources``;
        the rest are still returned.

        Args:
            user_name: Optional explicit name to match records against.
            start_date: Window start in YYYY-MM-DD format (defaults to two months ago).
            end_date: Window end in YYYY-MM-DD format (defaults to two months ahead).
        """
        _validate_window(start_date, end_date)
        session = await get_ppm_session()
        result = await get_registry().resourcing.reconcile(
            session, hint=user_name, start_date=start_date, end_date=end_date
        )
        if result.failed_sources:
            logger.warning(
                "Resourcing pass degraded: failed sources=%s", ",".join(result.failed_sources)
            )
        return {"status": "success", **result.as_dict()}

    @mcp.tool
    @tool_error_handler("Failed to fetch the work hierarchy. Please try again.")
    async def ppm_get_work_hierarchy(user_name: str | None = None) -> dict[str, Any]:
        """Get the user's projects with their tasks nested underneath.

        Tasks whose project was filtered out are listed under
        ``unassignedChildren``.

        Args:
            user_name: Optional explicit name used to select the user's projects.
        """
        session = await get_ppm_session()
        registry = get_registry()
        identity = await registry.identity.resolve(session, user_name)
        hierarchy = await registry.work_items.get_hierarchy(session, identity.name)
        return {"status": "success", "data": hierarchy.as_dict()}
