"""Client registry for the PPM and issue-tracker clients.

Provides get_registry() / set_registry() for the server lifespan.
Tests inject mocks via set_registry().
"""

from __future__ import annotations

from dataclasses import dataclass, field

from _config import Settings
from clients._base import PPMSessionClient
from clients._debuglog import DebugLog
from clients.hierarchy import WorkItemsClient
from clients.identity import IdentityResolver
from clients.issues import IssueTrackerClient
from clients.resourcing import ResourcingClient

__all__ = ["ClientRegistry", "get_registry", "set_registry"]


@dataclass
class ClientRegistry:
    """Holds client instances and the settings they were built from.

    One registry per server lifecycle.  No session state lives here: sessions
    are obtained per call and passed explicitly.
    """

    settings: Settings
    ppm: PPMSessionClient = field(init=False)
    identity: IdentityResolver = field(init=False)
    resourcing: ResourcingClient = field(init=False)
    work_items: WorkItemsClient = field(init=False)
    issues: IssueTrackerClient = field(init=False)

    def __post_init__(self) -> None:
        self.ppm = PPMSessionClient(
            self.settings.ppm_base_url, debug_log=DebugLog(self.settings.debug_log_path)
        )
        self.identity = IdentityResolver(self.ppm)
        self.resourcing = ResourcingClient(self.ppm, self.identity)
        self.work_items = WorkItemsClient(self.ppm)
        self.issues = IssueTrackerClient(
            self.settings.issues_base_url,
            self.settings.issues_user_email,
            self.settings.issues_api_token,
        )

    async def close(self) -> None:
        await self.ppm.close()
        await self.issues.close()


_registry: ClientRegistry | None = None


def get_registry() -> ClientRegistry:
    """Return the active registry, or raise if not initialized."""
    if _registry is None:
        raise RuntimeError("ClientRegistry not initialized. Server lifespan has not started.")
    return _registry


def set_registry(registry: ClientRegistry | None) -> None:
    """Set (or clear) the global registry. Used by lifespan and tests."""
    global _registry
    _registry = registry
