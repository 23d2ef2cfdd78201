"""PPM Logbook MCP Server: FastMCP v3.

Exposes the PPM resourcing reconciliation and the read-only issue tracker
via the Model Context Protocol.  PPM sessions are opened per tool call
with the configured service credentials.
"""

from __future__ import annotations

import importlib.metadata
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from _config import Settings
from clients import ClientRegistry, set_registry
from tools import load_domains

# ---------------------------------------------------------------------------
# Configuration + logging
# ---------------------------------------------------------------------------

settings = Settings.from_env()

logger = logging.getLogger("ppm_mcp.server")

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

try:
    _APP_VERSION: str = importlib.metadata.version("ppm-logbook-mcp")
except importlib.metadata.PackageNotFoundError:
    _APP_VERSION = os.environ.get("APP_VERSION", "dev")


@asynccontextmanager
async def _lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Build the client registry for this server lifecycle and close it on shutdown."""
    if not settings.has_ppm_credentials:
        logger.warning(
            "PPM credentials missing (%s); resourcing tools will fail until they are set",
            ", ".join(settings.missing_ppm_credentials()),
        )
    registry = ClientRegistry(settings)
    set_registry(registry)
    logger.info("PPM MCP server %s starting up (%r)", _APP_VERSION, settings)
    try:
        yield
    finally:
        logger.info("PPM MCP server shutting down")
        set_registry(None)
        await registry.close()


mcp = FastMCP(name="ppm-logbook-mcp", lifespan=_lifespan)


# ---------------------------------------------------------------------------
# Security headers middleware
# ---------------------------------------------------------------------------


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Inject hardening headers into every HTTP response."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Cache-Control"] = "no-store"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


_security_middleware = Middleware(SecurityHeadersMiddleware)


@mcp.custom_route("/health", methods=["GET"])
async def health_check(request: Request) -> JSONResponse:
    """Return 200 OK for container health checks and load balancers."""
    return JSONResponse({"status": "ok", "version": _APP_VERSION})


# ---------------------------------------------------------------------------
# Domain tools
# ---------------------------------------------------------------------------

loaded_domains: list[str] = load_domains(mcp, settings.enabled_domains)


if __name__ == "__main__":
    mcp.run(
        transport="http",
        host=settings.host,
        port=settings.port,
        stateless_http=True,
        middleware=[_security_middleware],
    )
