"""Ordered fallback over alternative queries.

Different tenants accept different identifier formats and entity names, and
only running the query reveals which one works.  A cascade tries the precise
predicate first, then looser ones, and stops at the first candidate that
returns any entities.  Candidates run one at a time, in order.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from clients._base import PPMSessionClient
from clients.errors import AllQueriesExhausted, PPMRequestError

__all__ = ["CascadeResult", "QueryExecutor", "run_cascade"]

logger = logging.getLogger("ppm_mcp.client")

QueryExecutor = Callable[[str], Awaitable[Any]]


@dataclass(frozen=True)
class CascadeResult:
    entities: list[dict[str, Any]]
    winning_index: int
    query: str


async def run_cascade(
    execute: QueryExecutor,
    queries: Sequence[str | None],
    *,
    label: str = "query",
) -> CascadeResult:
    """Run *queries* in order until one returns entities.

    A candidate that raises a request error counts as a zero-result attempt
    and is not retried.  ``None`` and empty candidates are skipped without
    being executed.

    Raises:
        AllQueriesExhausted: No candidate returned any entities.
    """
    attempts: list[tuple[str, str | None]] = []
    for index, query in enumerate(queries):
        if not query:
            continue
        try:
            response = await execute(query)
        except (PPMRequestError, httpx.HTTPError) as exc:
            logger.info("%s candidate %d failed: %s", label, index + 1, exc)
            attempts.append((query, str(exc) or type(exc).__name__))
            continue

        entities = PPMSessionClient.extract_entities(response)
        if entities:
            logger.info(
                "%s candidate %d returned %d entities", label, index + 1, len(entities)
            )
            return CascadeResult(entities=entities, winning_index=index, query=query)

        logger.debug("%s candidate %d returned no entities", label, index + 1)
        attempts.append((query, None))

    raise AllQueriesExhausted(attempts)
