"""Error taxonomy for the PPM clients.

Only :class:`AuthError` is fatal for a reconciliation pass.  Batch and source
failures are recovered where they happen and reported as outcome records,
never raised.
"""

from __future__ import annotations

__all__ = ["AllQueriesExhausted", "AuthError", "PPMRequestError"]


class AuthError(Exception):
    """No session token could be obtained from the PPM API."""


class PPMRequestError(Exception):
    """A PPM API call failed (transport error, HTTP error, or unreadable body)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AllQueriesExhausted(Exception):
    """Every candidate query of a cascade returned no entities.

    ``attempts`` holds one ``(query, error)`` pair per executed candidate;
    ``error`` is ``None`` when the query ran but matched nothing.
    """

    def __init__(self, attempts: list[tuple[str, str | None]]) -> None:
        self.attempts = attempts
        failed = sum(1 for _, err in attempts if err is not None)
        super().__init__(
            f"All {len(attempts)} candidate queries returned no entities ({failed} failed)"
        )

    @property
    def all_failed(self) -> bool:
        """True when every attempt errored, i.e. the remote was unreachable."""
        return bool(self.attempts) and all(err is not None for _, err in self.attempts)

    @property
    def last_error(self) -> str | None:
        for _, err in reversed(self.attempts):
            if err is not None:
                return err
        return None
