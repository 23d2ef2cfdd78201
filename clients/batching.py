"""Batched fetches over large identifier sets.

Identifier lists are split into consecutive batches so that each generated
query stays under the transport's URL-length limit.  Batches run one at a
time, in order; a batch that fails contributes nothing and the rest carry on.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from _constants import DEFAULT_BATCH_SIZE, MAX_QUERY_LENGTH
from clients.cascade import QueryExecutor, run_cascade
from clients.errors import AllQueriesExhausted

__all__ = [
    "BatchFetchResult",
    "BatchOutcome",
    "ChunkedFetcher",
    "clean_identifier",
    "partition",
]

logger = logging.getLogger("ppm_mcp.client")

# Greedy: everything up to and including the last "/" is dropped.
_ENTITY_REF_PREFIX = re.compile(r"^.*/")

QueryBuilder = Callable[[list[str]], str | Sequence[str]]


def clean_identifier(identifier: str) -> str:
    """Reduce an entity reference such as ``/User/abc123`` to ``abc123``.

    Bare identifiers pass through unchanged, so cleaning is idempotent.
    """
    return _ENTITY_REF_PREFIX.sub("", str(identifier).strip().rstrip("/"))


def _candidates(built: str | Sequence[str]) -> list[str]:
    if isinstance(built, str):
        return [built]
    return [q for q in built if q]


def partition(
    identifiers: Sequence[str],
    batch_size: int = DEFAULT_BATCH_SIZE,
    render: QueryBuilder | None = None,
    max_query_length: int = MAX_QUERY_LENGTH,
) -> list[list[str]]:
    """Split *identifiers* into consecutive batches, preserving order.

    A batch holds at most *batch_size* identifiers.  When *render* is given, a
    batch is also closed early once adding the next identifier would make the
    longest rendered candidate query exceed *max_query_length*.  A single
    identifier whose query is already too long still gets its own batch.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    batches: list[list[str]] = []
    current: list[str] = []
    for identifier in identifiers:
        tentative = current + [identifier]
        too_many = len(tentative) > batch_size
        too_long = False
        if render is not None and current and not too_many:
            too_long = max(map(len, _candidates(render(tentative))), default=0) > max_query_length
        if too_many or too_long:
            batches.append(current)
            current = [identifier]
        else:
            current = tentative
    if current:
        batches.append(current)
    return batches


@dataclass(frozen=True)
class BatchOutcome:
    """How one batch went: ``ok``, ``empty`` (ran, matched nothing) or ``failed``."""

    index: int
    size: int
    status: str
    count: int = 0
    error: str | None = None


@dataclass
class BatchFetchResult:
    entities: list[dict[str, Any]] = field(default_factory=list)
    batches: list[BatchOutcome] = field(default_factory=list)

    @property
    def failed_batches(self) -> list[BatchOutcome]:
        return [b for b in self.batches if b.status == "failed"]


class ChunkedFetcher:
    """Runs one query cascade per identifier batch and concatenates the results."""

    def __init__(
        self,
        execute: QueryExecutor,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_query_length: int = MAX_QUERY_LENGTH,
        label: str = "batch",
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._execute = execute
        self.batch_size = batch_size
        self.max_query_length = max_query_length
        self._label = label

    @staticmethod
    def prepare(identifiers: Iterable[str]) -> list[str]:
        """Clean identifiers and drop blanks and duplicates, keeping first-seen order."""
        cleaned = (clean_identifier(i) for i in identifiers if i is not None)
        return list(dict.fromkeys(c for c in cleaned if c))

    async def fetch_batches(
        self,
        identifiers: Iterable[str],
        query_builder: QueryBuilder,
    ) -> BatchFetchResult:
        ids = self.prepare(identifiers)
        batches = partition(ids, self.batch_size, query_builder, self.max_query_length)
        result = BatchFetchResult()
        if not batches:
            return result

        logger.info(
            "%s: %d identifiers in %d batch(es) of up to %d",
            self._label,
            len(ids),
            len(batches),
            self.batch_size,
        )
        for index, batch in enumerate(batches):
            queries = _candidates(query_builder(batch))
            try:
                cascade = await run_cascade(
                    self._execute, queries, label=f"{self._label} {index + 1}/{len(batches)}"
                )
            except AllQueriesExhausted as exc:
                if exc.all_failed:
                    logger.warning(
                        "%s batch %d/%d failed (%d ids): %s",
                        self._label,
                        index + 1,
                        len(batches),
                        len(batch),
                        exc.last_error,
                    )
                    result.batches.append(
                        BatchOutcome(index, len(batch), "failed", error=exc.last_error)
                    )
                else:
                    result.batches.append(BatchOutcome(index, len(batch), "empty"))
                continue
            except Exception as exc:
                logger.warning(
                    "%s batch %d/%d raised unexpectedly: %s",
                    self._label,
                    index + 1,
                    len(batches),
                    exc,
                )
                result.batches.append(BatchOutcome(index, len(batch), "failed", error=str(exc)))
                continue

            result.entities.extend(cascade.entities)
            result.batches.append(
                BatchOutcome(index, len(batch), "ok", count=len(cascade.entities))
            )

        return result

    async def fetch_in_batches(
        self,
        identifiers: Iterable[str],
        query_builder: QueryBuilder,
    ) -> list[dict[str, Any]]:
        """Flat, batch-ordered list of every entity the successful batches returned."""
        return (await self.fetch_batches(identifiers, query_builder)).entities
