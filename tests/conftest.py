"""Pytest configuration for PPM MCP server tests.

Sets required environment variables before any test module imports server.py,
which reads its Settings from the environment at module level.
"""

from __future__ import annotations

import os
import tempfile

os.environ.setdefault("PPM_API_BASE_URL", "http://127.0.0.1:8000/services")
os.environ.setdefault("PPM_USERNAME", "svc-account")
os.environ.setdefault("PPM_PASSWORD", "test-password")
os.environ.setdefault(
    "PPM_DEBUG_LOG", os.path.join(tempfile.gettempdir(), "ppm_responses_test.log")
)
os.environ.setdefault("ENABLED_DOMAINS", "resourcing,issues")

# ---------------------------------------------------------------------------
# Shared test helpers: used by test_tools_resourcing.py, test_tools_issues.py
# ---------------------------------------------------------------------------

from fastmcp.tools.function_tool import FunctionTool

import server as server_module


def get_tool_fn(name: str):
    """Get a registered tool's underlying async function by name.

    Looks up the tool in ``mcp.local_provider._components``.
    Raises ``KeyError`` with available tool names if not found.
    """
    lp = server_module.mcp.local_provider
    for comp in lp._components.values():
        if isinstance(comp, FunctionTool) and comp.name == name:
            return comp.fn
    available = sorted(
        comp.name for comp in lp._components.values() if isinstance(comp, FunctionTool)
    )
    raise KeyError(f"Tool {name!r} not found. Available: {available}")
