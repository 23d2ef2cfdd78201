"""Read-only client for the Jira-style issue tracker.

Basic-auth REST v3.  Follows the result-dict convention: every public method
returns ``{"status": "success", ...}`` or ``{"status": "error", "message":
...}`` and never raises on HTTP errors.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import UTC, date, datetime, timedelta
from typing import Any
from urllib.parse import urlparse

import httpx

from _constants import ISSUE_BATCH_SIZE, MAX_QUERY_LENGTH
from clients._fields import get_path
from clients.batching import ChunkedFetcher
from clients.errors import PPMRequestError

__all__ = ["IssueTrackerClient"]

logger = logging.getLogger("ppm_mcp.client")

ISSUE_KEY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*-\d+$")
PROJECT_KEY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")


class IssueTrackerClient:
    """Search and fetch issues for the configured account."""

    def __init__(self, base_url: str, user_email: str, api_token: str) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._user_email = user_email
        self._api_token = api_token
        if self._base_url:
            parsed = urlparse(self._base_url)
            loopback = (parsed.hostname or "") in ("localhost", "127.0.0.1")
            if parsed.scheme != "https" and not loopback:
                raise ValueError(
                    f"Non-HTTPS issue tracker URL is only permitted for localhost. Got: {base_url}"
                )
        self._http: httpx.AsyncClient = httpx.AsyncClient(
            follow_redirects=False,
            timeout=httpx.Timeout(connect=5.0, read=30.0, write=30.0, pool=5.0),
            auth=httpx.BasicAuth(user_email, api_token) if user_email and api_token else None,
        )

    @property
    def configured(self) -> bool:
        return bool(self._base_url and self._user_email and self._api_token)

    async def close(self) -> None:
        await self._http.aclose()

    # -- transport ------------------------------------------------------------

    async def _request(
        self,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not self.configured:
            missing = [
                name
                for name, value in (
                    ("ISSUES_BASE_URL", self._base_url),
                    ("ISSUES_USER_EMAIL", self._user_email),
                    ("ISSUES_API_TOKEN", self._api_token),
                )
                if not value
            ]
            return {
                "status": "error",
                "message": (
                    f"Issue tracker configuration is incomplete. Missing: {', '.join(missing)}"
                ),
            }

        url = f"{self._base_url}/rest/api/3/{endpoint.lstrip('/')}"
        try:
            response = await self._http.get(
                url, params=params, headers={"Accept": "application/json"}
            )
        except httpx.TransportError as exc:
            logger.warning("Issue tracker GET %s transport error: %s", endpoint, exc)
            return {"status": "error", "message": "Issue tracker temporarily unavailable."}

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError):
            data = {"text": response.text[:500]}

        if response.status_code >= 400:
            logger.warning(
                "Issue tracker GET %s returned status=%d", endpoint, response.status_code
            )
            message = f"Issue tracker error: HTTP {response.status_code}"
            if isinstance(data, dict):
                messages = data.get("errorMessages")
                if isinstance(messages, list) and messages:
                    message = "; ".join(str(m) for m in messages)[:500]
            return {"status": "error", "message": message, "status_code": response.status_code}

        return {"status": "success", "data": data}

    # -- formatting -----------------------------------------------------------

    def format_issue(self, issue: dict[str, Any]) -> dict[str, Any]:
        fields = issue.get("fields") if isinstance(issue.get("fields"), dict) else {}

        def names(key: str) -> list[str]:
            value = fields.get(key)
            if not isinstance(value, list):
                return []
            return [str(v.get("name")) for v in value if isinstance(v, dict) and v.get("name")]

        key = issue.get("key")
        return {
            "key": key,
            "summary": fields.get("summary"),
            "status": get_path(fields, ("status", "name")) or "Unknown",
            "priority": get_path(fields, ("priority", "name")) or "Medium",
            "issueType": get_path(fields, ("issuetype", "name")) or "Task",
            "assignee": get_path(fields, ("assignee", "displayName")) or "Unassigned",
            "reporter": get_path(fields, ("reporter", "displayName")) or "Unknown",
            "created": fields.get("created"),
            "updated": fields.get("updated"),
            "dueDate": fields.get("duedate"),
            "labels": fields.get("labels") if isinstance(fields.get("labels"), list) else [],
            "components": names("components"),
            "fixVersions": names("fixVersions"),
            "project": get_path(fields, ("project", "name")) or "Unknown",
            "projectKey": get_path(fields, ("project", "key")) or "UNKNOWN",
            "resolution": get_path(fields, ("resolution", "name")),
            "url": f"{self._base_url}/browse/{key}",
        }

    # -- read methods ---------------------------------------------------------

    async def test_connection(self) -> dict[str, Any]:
        result = await self._request("myself")
        if result["status"] != "success":
            return result
        user = result.get("data") or {}
        return {
            "status": "success",
            "message": f"Connected to issue tracker as {user.get('displayName', 'unknown user')}",
            "data": {
                "accountId": user.get("accountId"),
                "displayName": user.get("displayName"),
                "emailAddress": user.get("emailAddress"),
            },
        }

    async def list_projects(self) -> dict[str, Any]:
        result = await self._request("project")
        if result["status"] != "success":
            return result
        projects = result.get("data") if isinstance(result.get("data"), list) else []
        return {
            "status": "success",
            "data": [
                {
                    "key": p.get("key"),
                    "name": p.get("name"),
                    "projectTypeKey": p.get("projectTypeKey"),
                    "lead": get_path(p, ("lead", "displayName")),
                    "url": f"{self._base_url}/browse/{p.get('key')}",
                }
                for p in projects
                if isinstance(p, dict)
            ],
        }

    async def get_project(self, project_key: str) -> dict[str, Any]:
        project_key = project_key.strip().upper()
        if not PROJECT_KEY_PATTERN.match(project_key):
            return {"status": "error", "message": f"Invalid project key: {project_key!r}"}
        result = await self._request(f"project/{project_key}")
        if result["status"] != "success":
            return result
        project = result.get("data") if isinstance(result.get("data"), dict) else {}
        components = project.get("components")
        issue_types = project.get("issueTypes")
        if not isinstance(components, list):
            components = []
        if not isinstance(issue_types, list):
            issue_types = []
        key = project.get("key") or project_key
        return {
            "status": "success",
            "data": {
                "key": key,
                "name": project.get("name"),
                "description": project.get("description"),
                "projectTypeKey": project.get("projectTypeKey"),
                "lead": get_path(project, ("lead", "displayName")),
                "components": [
                    str(c["name"]) for c in components if isinstance(c, dict) and c.get("name")
                ],
                "issueTypes": [
                    {
                        "name": t.get("name"),
                        "description": t.get("description"),
                        "iconUrl": t.get("iconUrl"),
                    }
                    for t in issue_types
                    if isinstance(t, dict)
                ],
                "url": f"{self._base_url}/browse/{key}",
            },
        }

    async def search(self, jql: str, max_results: int = 50) -> dict[str, Any]:
        result = await self._request("search", params={"jql": jql, "maxResults": max_results})
        if result["status"] != "success":
            return result
        data = result.get("data") if isinstance(result.get("data"), dict) else {}
        issues = [i for i in data.get("issues", []) if isinstance(i, dict)]
        return {
            "status": "success",
            "data": [self.format_issue(i) for i in issues],
            "total": data.get("total", len(issues)),
            "maxResults": data.get("maxResults", max_results),
        }

    async def get_issue(self, issue_key: str) -> dict[str, Any]:
        issue_key = issue_key.strip().upper()
        if not ISSUE_KEY_PATTERN.match(issue_key):
            return {"status": "error", "message": f"Invalid issue key: {issue_key!r}"}
        result = await self._request(f"issue/{issue_key}")
        if result["status"] != "success":
            return result
        return {"status": "success", "data": self.format_issue(result.get("data") or {})}

    async def get_assigned_issues(self, max_results: int = 20) -> dict[str, Any]:
        return await self.search(
            "assignee = currentUser() AND status != Done ORDER BY priority DESC, updated DESC",
            max_results,
        )

    async def get_recent_issues(self, days: int = 7, max_results: int = 20) -> dict[str, Any]:
        since = (date.today() - timedelta(days=days)).isoformat()
        return await self.search(f'updated >= "{since}" ORDER BY updated DESC', max_results)

    async def fetch_issues(self, issue_keys: list[str]) -> dict[str, Any]:
        """Fetch many issues by key in batches of ``ISSUE_BATCH_SIZE``.

        A failed batch is logged and skipped; the rest are still returned.
        """
        if not self.configured:
            return await self._request("search")
        keys = [k.strip().upper() for k in issue_keys if isinstance(k, str)]
        invalid = [k for k in keys if not ISSUE_KEY_PATTERN.match(k)]
        if invalid:
            return {"status": "error", "message": f"Invalid issue keys: {', '.join(invalid[:10])}"}

        async def execute(jql: str) -> dict[str, Any]:
            result = await self._request(
                "search", params={"jql": jql, "maxResults": ISSUE_BATCH_SIZE}
            )
            if result["status"] != "success":
                raise PPMRequestError(result["message"], result.get("status_code"))
            return result["data"]

        fetcher = ChunkedFetcher(
            execute,
            batch_size=ISSUE_BATCH_SIZE,
            max_query_length=MAX_QUERY_LENGTH,
            label="issues",
        )
        outcome = await fetcher.fetch_batches(
            keys, lambda batch: f"key in ({', '.join(batch)})"
        )
        return {
            "status": "success",
            "data": [self.format_issue(i) for i in outcome.entities],
            "count": len(outcome.entities),
            "failedBatches": len(outcome.failed_batches),
        }

    async def get_stats(self) -> dict[str, Any]:
        """Counts of assigned, recently updated and visible issues and projects.

        The three lookups run concurrently and settle independently: a part
        that fails is reported in ``failedParts`` with a ``None`` count.  The
        call only fails when every part does.
        """
        parts = ("assigned", "recent", "projects")
        settled = await asyncio.gather(
            self.get_assigned_issues(),
            self.get_recent_issues(7),
            self.list_projects(),
            return_exceptions=True,
        )

        results: dict[str, dict[str, Any]] = {}
        errors: dict[str, str] = {}
        for part, outcome in zip(parts, settled, strict=True):
            if isinstance(outcome, BaseException):
                logger.warning("Issue tracker stats: %s lookup raised %r", part, outcome)
                errors[part] = str(outcome) or type(outcome).__name__
            elif outcome.get("status") != "success":
                errors[part] = str(outcome.get("message", "unknown error"))
            else:
                results[part] = outcome

        if not results:
            return {
                "status": "error",
                "message": f"Issue tracker stats unavailable: {errors['assigned']}",
            }

        def count(part: str) -> int | None:
            result = results.get(part)
            if result is None:
                return None
            data = result.get("data") if isinstance(result.get("data"), list) else []
            return result.get("total", len(data))

        projects = results.get("projects", {}).get("data") or []
        return {
            "status": "success",
            "data": {
                "assignedCount": count("assigned"),
                "recentCount": count("recent"),
                "projectCount": count("projects"),
                "projects": [p.get("key") for p in projects if isinstance(p, dict)],
                "lastSync": datetime.now(UTC).isoformat(),
                "failedParts": sorted(errors),
            },
        }
