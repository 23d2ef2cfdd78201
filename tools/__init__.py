"""Feature flag loader for domain tool modules.

Reads the enabled domain list (comma-separated) and imports only those
domain tool modules. Each module must expose a register(mcp) function.
"""

from __future__ import annotations

import importlib
import logging
import os

from fastmcp import FastMCP

from _config import DEFAULT_DOMAINS

logger = logging.getLogger("ppm_mcp.server")

__all__ = ["load_domains"]

# Map domain name -> module path (relative import within the package).
AVAILABLE_DOMAINS: dict[str, str] = {
    "resourcing": "tools.resourcing",
    "issues": "tools.issues",
}


def load_domains(mcp: FastMCP, enabled: str | None = None) -> list[str]:
    """Import and register tool modules for each enabled domain.

    *enabled* defaults to the ENABLED_DOMAINS env var (default
    "resourcing,issues").  Raises SystemExit if no valid domain is enabled.

    Returns list of loaded domain names.
    """
    raw = enabled if enabled is not None else os.environ.get("ENABLED_DOMAINS", DEFAULT_DOMAINS)
    requested = [d.strip().lower() for d in raw.split(",") if d.strip()]

    if not requested:
        logger.critical("ENABLED_DOMAINS is empty: at least one domain must be enabled")
        raise SystemExit(1)

    loaded: list[str] = []
    for domain in requested:
        module_path = AVAILABLE_DOMAINS.get(domain)
        if module_path is None:
            logger.warning(
                "Unknown domain '%s' in ENABLED_DOMAINS: skipping. Available: %s",
                domain,
                sorted(AVAILABLE_DOMAINS.keys()),
            )
            continue
        if domain in loaded:
            continue

        module = importlib.import_module(module_path)
        module.register(mcp)
        loaded.append(domain)
        logger.info("Loaded domain: %s", domain)

    if not loaded:
        logger.critical("No valid domains loaded from ENABLED_DOMAINS=%r", raw)
        raise SystemExit(1)

    return loaded
