"""Shared session and error-handling helpers for MCP tools."""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

from fastmcp.exceptions import ToolError

from clients import get_registry
from clients.errors import AuthError

logger = logging.getLogger("ppm_mcp.server")

P = ParamSpec("P")
R = TypeVar("R")


def check_result(result: dict[str, Any]) -> dict[str, Any]:
    """Raise ToolError if a client returned an error dict."""
    if isinstance(result, dict) and result.get("status") == "error":
        raise ToolError(result.get("message", "Operation failed"))
    return result


def tool_error_handler(
    error_message: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Decorator that wraps MCP tool functions with standard error handling.

    Converts PermissionError and ValueError to ToolError (preserving message),
    and catches all other exceptions with a generic message.
    """

    def decorator(fn: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            try:
                return await fn(*args, **kwargs)
            except ToolError:
                raise
            except PermissionError as exc:
                raise ToolError(str(exc)) from exc
            except ValueError as exc:
                raise ToolError(str(exc)) from exc
            except Exception:
                logger.exception("%s failed", fn.__name__)
                raise ToolError(error_message) from None

        return wrapper

    return decorator


async def get_ppm_session() -> str:
    """Log in with the configured PPM credentials and return a session token.

    Raises:
        PermissionError: If credentials are missing, rejected, or the PPM
            service cannot be reached.
    """
    registry = get_registry()
    settings = registry.settings
    missing = settings.missing_ppm_credentials()
    if missing:
        raise PermissionError(f"PPM credentials are not configured. Missing: {', '.join(missing)}")

    logger.debug("Opening PPM session (username=%s)", settings.ppm_username)
    try:
        session = await registry.ppm.authenticate(settings.ppm_username, settings.ppm_password)
    except AuthError as exc:
        logger.warning("PPM authentication failed: %s", exc)
        raise PermissionError(f"PPM authentication failed: {exc}") from exc
    except ConnectionError as exc:
        logger.warning("PPM authentication failed: connection error")
        raise PermissionError(
            "PPM service is temporarily unavailable. Please try again later."
        ) from exc
    return session
