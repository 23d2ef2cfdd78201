"""Resolution of the "current user" name used to filter every PPM source.

The session-info endpoint names its fields differently across tenants, and
some tenants omit a display name entirely.  Resolution order (first
non-empty wins):

1. explicit caller-supplied hint
2. profile ``fullName``
3. profile ``username``
4. a name recovered from an already fetched result set whose entries embed
   the profile's raw user id (last resort)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from clients._base import PPMSessionClient
from clients._fields import Path, first_present, get_path

__all__ = ["Identity", "IdentityResolver", "UserProfile"]

logger = logging.getLogger("ppm_mcp.client")

SESSION_INFO_ENDPOINT = "authentication/GetSessionInfo"

_USERNAME_PATHS: tuple[Path, ...] = (("userName",), ("username",), ("UserName",))
_FULL_NAME_PATHS: tuple[Path, ...] = (
    ("fullName",),
    ("displayName",),
    ("name",),
    ("Name",),
)
_EMAIL_PATHS: tuple[Path, ...] = (("email",), ("Email",))
_USER_ID_PATHS: tuple[Path, ...] = (("userId",), ("UserId",), ("user", "id"))

_CUSTOM_INFO_FIELDS: dict[str, str] = {
    "UserName": "username",
    "username": "username",
    "FullName": "full_name",
    "fullName": "full_name",
    "DisplayName": "full_name",
    "Email": "email",
    "email": "email",
}


def _as_text(value: Any) -> str:
    if value is None or isinstance(value, dict | list):
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class UserProfile:
    """What the session-info endpoint told us about the logged-in user."""

    user_id: str = ""
    username: str = ""
    full_name: str = ""
    email: str = ""

    @classmethod
    def from_session_info(cls, data: Any) -> UserProfile:
        if not isinstance(data, dict):
            return cls()
        fields = {
            "user_id": _as_text(first_present(data, _USER_ID_PATHS)),
            "username": _as_text(first_present(data, _USERNAME_PATHS)),
            "full_name": _as_text(first_present(data, _FULL_NAME_PATHS)),
            "email": _as_text(first_present(data, _EMAIL_PATHS)),
        }
        custom_info = data.get("customInfo")
        if isinstance(custom_info, list):
            for info in custom_info:
                if not isinstance(info, dict):
                    continue
                target = _CUSTOM_INFO_FIELDS.get(str(info.get("fieldName", "")))
                value = _as_text(info.get("value"))
                if target and value:
                    fields[target] = value
        return cls(**fields)

    def as_dict(self) -> dict[str, str]:
        return {
            "userId": self.user_id,
            "username": self.username,
            "fullName": self.full_name,
            "email": self.email,
        }


@dataclass(frozen=True)
class Identity:
    """The resolved join key for one reconciliation pass.

    ``source`` is one of ``hint``, ``fullName``, ``username``, ``scan`` or
    ``""`` when nothing could be resolved.
    """

    name: str
    source: str
    profile: UserProfile

    def __bool__(self) -> bool:
        return bool(self.name)

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "source": self.source, "profile": self.profile.as_dict()}


class IdentityResolver:
    """Discovers the canonical current-user name."""

    def __init__(self, base: PPMSessionClient) -> None:
        self._base = base

    async def fetch_profile(self, session: str) -> UserProfile:
        data = await self._base.get(session, SESSION_INFO_ENDPOINT)
        profile = UserProfile.from_session_info(data)
        logger.debug(
            "Session info: user_id=%s has_full_name=%s has_username=%s",
            profile.user_id,
            bool(profile.full_name),
            bool(profile.username),
        )
        return profile

    async def resolve(self, session: str, hint: str | None = None) -> Identity:
        profile = await self.fetch_profile(session)
        return self.resolve_from_profile(profile, hint)

    @staticmethod
    def resolve_from_profile(profile: UserProfile, hint: str | None = None) -> Identity:
        for source, candidate in (
            ("hint", _as_text(hint)),
            ("fullName", profile.full_name),
            ("username", profile.username),
        ):
            if candidate:
                return Identity(name=candidate, source=source, profile=profile)
        return Identity(name="", source="", profile=profile)

    @staticmethod
    def recover_from_entities(
        identity: Identity,
        entities: Iterable[Any],
        *,
        id_path: Path = ("ReportedBy", "id"),
        name_path: Path = ("ReportedBy", "Name"),
    ) -> Identity:
        """Last-resort recovery of an empty identity from unrelated results.

        Adopts the name of the first entry whose embedded id contains the
        profile's raw user id.  An already resolved identity is returned
        unchanged.
        """
        if identity.name or not identity.profile.user_id:
            return identity
        user_id = identity.profile.user_id
        for entity in entities:
            embedded_id = get_path(entity, id_path)
            if not isinstance(embedded_id, str) or user_id not in embedded_id:
                continue
            name = _as_text(get_path(entity, name_path))
            if name:
                logger.info("Recovered user name from result set for user_id=%s", user_id)
                return Identity(name=name, source="scan", profile=identity.profile)
        return identity
