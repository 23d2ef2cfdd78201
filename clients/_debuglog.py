"""Append-only debug log of raw PPM responses.

Each entry goes to the file in one write under a lock so that concurrent
appends never interleave.  Async callers use :meth:`DebugLog.write`, which
runs the append in a worker thread to keep file I/O off the event loop.
Write failures are logged and swallowed: the debug log must never change
the outcome of the call it records.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

__all__ = ["DebugLog"]

logger = logging.getLogger("ppm_mcp.client")

_SEPARATOR = "=" * 40
_MASKED_KEYS: frozenset[str] = frozenset({"sessionId", "password", "access_token", "token"})


def _mask(payload: Any, _depth: int = 0) -> Any:
    if _depth > 20:
        return payload
    if isinstance(payload, dict):
        return {
            k: ("***" if k in _MASKED_KEYS and v else _mask(v, _depth + 1))
            for k, v in payload.items()
        }
    if isinstance(payload, list):
        return [_mask(item, _depth + 1) for item in payload]
    return payload


class DebugLog:
    """Timestamped, append-only text sink for request/response pairs."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, endpoint: str, payload: Any) -> None:
        try:
            body = json.dumps(_mask(payload), indent=2, default=str, ensure_ascii=False)
            entry = (
                f"\n{_SEPARATOR}\n"
                f"Timestamp: {datetime.now(UTC).isoformat()}\n"
                f"Endpoint: {endpoint}\n"
                f"Response: {body}\n"
                f"{_SEPARATOR}\n\n"
            )
            with self._lock, self._path.open("a", encoding="utf-8") as fh:
                fh.write(entry)
        except Exception as exc:
            logger.warning("Could not append to debug log %s: %s", self._path, exc)

    async def write(self, endpoint: str, payload: Any) -> None:
        await asyncio.to_thread(self.append, endpoint, payload)
