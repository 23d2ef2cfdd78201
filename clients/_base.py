"""Base PPM client: session authentication and HTTP transport.

Provides ``PPMSessionClient`` -- the stateless async HTTP client for the
Clarizen-style PPM REST API.  Every data-query method takes ``session: str``
as the first positional argument.  The session is forwarded as
``Authorization: Session <value>`` on every request and is never stored on
the client, so concurrent passes for different users cannot share it.

Every request, successful or not, is appended to the :class:`DebugLog`
before the call returns.

Security controls implemented:
    Non-HTTPS base URLs are rejected for non-loopback hosts.
    Redirects are disabled.
    Session ids are masked in the debug log.
"""

from __future__ import annotations

import ipaddress
import json
import logging
from typing import Any
from urllib.parse import urlparse

import httpx

from _constants import MAX_CREDENTIAL_LENGTH, MAX_QUERY_PAGES, QUERY_PAGE_SIZE
from clients._debuglog import DebugLog
from clients.errors import AuthError, PPMRequestError

__all__ = ["PPMSessionClient"]

logger = logging.getLogger("ppm_mcp.client")

_ENVELOPE_KEYS: tuple[str, ...] = ("entities", "issues", "results", "data", "items")


class PPMSessionClient:
    """Stateless async HTTP client for the PPM REST API."""

    # -- construction -------------------------------------------------------

    def __init__(
        self,
        base_url: str,
        debug_log: DebugLog | None = None,
    ) -> None:
        parsed = urlparse(base_url)
        host = (parsed.hostname or "").lower()

        if parsed.scheme != "https" and not self._is_loopback(host):
            raise ValueError(
                f"Non-HTTPS base_url is only permitted for localhost. Got: {base_url}"
            )

        self._base_url: str = base_url.rstrip("/")
        self.debug_log: DebugLog = debug_log or DebugLog("ppm_responses.log")
        self._http: httpx.AsyncClient = httpx.AsyncClient(
            follow_redirects=False,
            timeout=httpx.Timeout(connect=5.0, read=30.0, write=30.0, pool=5.0),
            verify=True,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        await self._http.aclose()

    async def __aenter__(self) -> PPMSessionClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @staticmethod
    def _is_loopback(host: str) -> bool:
        """Check if host is a loopback address (localhost, 127.x.x.x, ::1, etc.)."""
        if host in ("localhost",):
            return True
        stripped = host.strip("[]")
        try:
            return ipaddress.ip_address(stripped).is_loopback
        except ValueError:
            return False

    # -- authentication -----------------------------------------------------

    async def authenticate(self, username: str, password: str) -> str:
        """Log in and return the session token.

        Raises:
            AuthError: Missing credentials, rejected login, or no ``sessionId``
                in the response.
            ConnectionError: The login endpoint could not be reached.
        """
        username = (username or "").strip()
        if not username or not password:
            missing = [n for n, v in (("username", username), ("password", password)) if not v]
            raise AuthError(f"PPM credentials are incomplete. Missing: {', '.join(missing)}")
        if len(username) > MAX_CREDENTIAL_LENGTH or len(password) > MAX_CREDENTIAL_LENGTH:
            raise AuthError(f"PPM credentials exceed maximum length ({MAX_CREDENTIAL_LENGTH})")

        endpoint = "authentication/login"
        try:
            response = await self._http.post(
                f"{self._base_url}/{endpoint}",
                json={"username": username, "password": password},
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            )
        except httpx.TransportError as exc:
            await self.debug_log.write(f"POST {endpoint}", {"error": str(exc)})
            raise ConnectionError(f"PPM authentication failed: {exc}") from exc

        data = self._parse_body(response)
        await self.debug_log.write(
            f"POST {endpoint}", {"status_code": response.status_code, "body": data}
        )

        if response.status_code >= 400:
            raise AuthError(f"PPM authentication failed (HTTP {response.status_code})")

        session_id = data.get("sessionId") if isinstance(data, dict) else None
        if not session_id or not isinstance(session_id, str):
            raise AuthError("No session ID received from authentication")

        logger.info("PPM authentication successful for %s", username)
        return session_id

    # -- generic request helper ---------------------------------------------

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError):
            return {"text": response.text[:500]}

    async def _request(
        self,
        method: str,
        endpoint: str,
        session: str,
        *,
        data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated request.  Returns a result dict.

        Never raises on HTTP errors -- returns an error dict instead.
        """
        url = f"{self._base_url}/{endpoint.lstrip('/')}"
        headers: dict[str, str] = {
            "Accept": "application/json",
            "Authorization": f"Session {session}",
        }
        if data is not None:
            headers["Content-Type"] = "application/json"
        label = f"{method} {endpoint}"

        try:
            response = await self._http.request(
                method,
                url,
                json=data,
                params=params,
                headers=headers,
            )
        except httpx.TransportError as exc:
            logger.warning("PPM API %s transport error: %s", label, exc)
            await self.debug_log.write(label, {"params": params, "error": str(exc)})
            return {
                "status": "error",
                "message": "PPM service temporarily unavailable.",
            }

        try:
            response_data = response.json()
            readable = True
        except (json.JSONDecodeError, ValueError):
            response_data = {"text": response.text[:500]}
            readable = False
        await self.debug_log.write(
            label,
            {"params": params, "status_code": response.status_code, "body": response_data},
        )

        if response.status_code >= 400:
            logger.warning("PPM API %s returned status=%d", label, response.status_code)
            error_msg: Any = f"API error: {response.status_code}"
            if isinstance(response_data, dict):
                error_msg = (
                    response_data.get("message")
                    or response_data.get("errorCode")
                    or response_data.get("error")
                    or error_msg
                )
            error_msg = str(error_msg)
            if len(error_msg) > 500:
                error_msg = error_msg[:500] + "..."
            return {
                "status": "error",
                "message": error_msg,
                "status_code": response.status_code,
            }

        if not readable:
            logger.warning("PPM API %s returned a non-JSON body", label)
            return {
                "status": "error",
                "message": "PPM service returned an unreadable response.",
                "status_code": response.status_code,
            }

        return {"status": "success", "data": response_data}

    @staticmethod
    def _unwrap(result: dict[str, Any]) -> Any:
        if result.get("status") != "success":
            raise PPMRequestError(
                result.get("message") or "PPM request failed",
                status_code=result.get("status_code"),
            )
        return result.get("data")

    # -- public API -----------------------------------------------------------

    async def get(self, session: str, path: str) -> Any:
        """GET *path* and return the decoded body.

        Raises:
            PPMRequestError: On transport or HTTP errors.
        """
        return self._unwrap(await self._request("GET", path, session))

    async def query(
        self,
        session: str,
        czql: str,
        *,
        page_size: int = QUERY_PAGE_SIZE,
    ) -> dict[str, Any]:
        """Run a CZQL query, following pagination until ``hasMore`` is false.

        Returns ``{"entities": [...], "paging": {...}}`` with every page
        concatenated.  Stops after ``MAX_QUERY_PAGES`` pages.

        Raises:
            PPMRequestError: If any page fails.
        """
        entities: list[dict[str, Any]] = []
        offset = 0
        for page in range(1, MAX_QUERY_PAGES + 1):
            body = self._unwrap(
                await self._request(
                    "GET",
                    "data/query",
                    session,
                    params={"q": czql, "from": offset, "limit": page_size},
                )
            )
            page_entities = self.extract_entities(body)
            entities.extend(page_entities)

            paging = body.get("paging") if isinstance(body, dict) else None
            if not isinstance(paging, dict) or not paging.get("hasMore"):
                break
            try:
                next_offset = int(paging.get("from", offset)) + int(paging.get("limit", page_size))
            except (TypeError, ValueError):
                break
            if next_offset <= offset:
                break
            offset = next_offset
        else:
            logger.warning("Query stopped after %d pages: %.120s", MAX_QUERY_PAGES, czql)

        logger.debug("Query returned %d entities over %d page(s)", len(entities), page)
        return {
            "entities": entities,
            "paging": {"from": 0, "limit": len(entities), "hasMore": False},
        }

    # -- static helpers (exposed for testing) --------------------------------

    @staticmethod
    def extract_entities(body: Any) -> list[dict[str, Any]]:
        """Return the entity list from any of the envelope shapes in use."""
        if isinstance(body, list):
            return [item for item in body if isinstance(item, dict)]
        if isinstance(body, dict):
            for key in _ENVELOPE_KEYS:
                val = body.get(key)
                if isinstance(val, list):
                    return [item for item in val if isinstance(item, dict)]
        return []
