"""Server configuration read once from the environment.

The resulting :class:`Settings` value is handed to the client registry at
startup; nothing downstream reads ``os.environ`` directly.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

__all__ = ["Settings"]

DEFAULT_PPM_API_BASE_URL = "https://api.clarizen.com/v2.0/services"
DEFAULT_DEBUG_LOG = "ppm_responses.log"
DEFAULT_DOMAINS = "resourcing,issues"


def _clean(env: Mapping[str, str], key: str, default: str = "") -> str:
    return env.get(key, default).strip()


@dataclass(frozen=True)
class Settings:
    """Immutable configuration for one server lifecycle."""

    ppm_base_url: str = DEFAULT_PPM_API_BASE_URL
    ppm_username: str = ""
    ppm_password: str = ""
    debug_log_path: str = DEFAULT_DEBUG_LOG
    issues_base_url: str = ""
    issues_user_email: str = ""
    issues_api_token: str = ""
    enabled_domains: str = DEFAULT_DOMAINS
    host: str = "127.0.0.1"
    port: int = 8100
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if env is None else env
        raw_port = _clean(env, "MCP_PORT", "8100")
        try:
            port = int(raw_port)
        except ValueError as exc:
            raise ValueError(f"MCP_PORT must be an integer, got {raw_port!r}") from exc
        return cls(
            ppm_base_url=_clean(env, "PPM_API_BASE_URL", DEFAULT_PPM_API_BASE_URL),
            ppm_username=_clean(env, "PPM_USERNAME"),
            # Passwords may legitimately carry surrounding whitespace.
            ppm_password=env.get("PPM_PASSWORD", ""),
            debug_log_path=_clean(env, "PPM_DEBUG_LOG", DEFAULT_DEBUG_LOG),
            issues_base_url=_clean(env, "ISSUES_BASE_URL"),
            issues_user_email=_clean(env, "ISSUES_USER_EMAIL"),
            issues_api_token=_clean(env, "ISSUES_API_TOKEN"),
            enabled_domains=env.get("ENABLED_DOMAINS", DEFAULT_DOMAINS),
            host=_clean(env, "MCP_HOST", "127.0.0.1"),
            port=port,
            log_level=_clean(env, "LOG_LEVEL", "INFO").upper(),
        )

    @property
    def has_ppm_credentials(self) -> bool:
        return bool(self.ppm_username and self.ppm_password)

    @property
    def has_issue_tracker(self) -> bool:
        return bool(self.issues_base_url and self.issues_user_email and self.issues_api_token)

    def missing_ppm_credentials(self) -> list[str]:
        missing: list[str] = []
        if not self.ppm_username:
            missing.append("PPM_USERNAME")
        if not self.ppm_password:
            missing.append("PPM_PASSWORD")
        return missing

    def __repr__(self) -> str:
        # Keep secrets out of logs and tracebacks.
        return (
            f"Settings(ppm_base_url={self.ppm_base_url!r}, ppm_username={self.ppm_username!r}, "
            f"issues_base_url={self.issues_base_url!r}, enabled_domains={self.enabled_domains!r})"
        )
