"""Parent/child work-item hierarchy.

An alternate strategy to the four-source reconciliation: fetch the user's
parent projects, fetch their child tasks in batches keyed on the parent ids,
and nest children under parents.  Only one level of nesting is built.

Work items with no positive effort are dropped while parsing.  Children are
still fetched for every parent the user owns, so a task under a zero-effort
project has no parent to join to and is reported in ``unassigned_children``
rather than silently lost.

Parent queries fall back from a manager-filtered query to looser ones.  The
looser candidates select ``ProjectManager.Name`` and their results are
filtered on it client-side, so another manager's projects are never
attributed to the user.  With no user name there is nothing to filter on and
the looser results are kept as they are.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from _constants import DEFAULT_BATCH_SIZE, MAX_QUERY_LENGTH
from clients._base import PPMSessionClient
from clients._fields import czql_literal, first_hours, first_present, format_date, get_path
from clients.batching import ChunkedFetcher
from clients.cascade import run_cascade
from clients.errors import AllQueriesExhausted

__all__ = [
    "Hierarchy",
    "HierarchyEntry",
    "WorkItem",
    "WorkItemsClient",
    "build_hierarchy",
    "parse_work_items",
]

logger = logging.getLogger("ppm_mcp.client")

_WORK_FIELDS = "Name, StartDate, DueDate, Work"
_PARENT_KEYS: tuple[str, ...] = ("Project", "Parent", "ParentProject")
_MANAGER_NAME = ("ProjectManager", "Name")


@dataclass(frozen=True)
class WorkItem:
    id: str
    name: str
    start_date: str | None
    end_date: str | None
    work_hours: float
    parent_id: str | None = None
    parent_name: str | None = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "workHours": self.work_hours,
        }
        if self.parent_id is not None or self.parent_name is not None:
            out["parentId"] = self.parent_id
            out["parentName"] = self.parent_name
        return out


@dataclass(frozen=True)
class HierarchyEntry:
    parent: WorkItem
    children: list[WorkItem]

    def as_dict(self) -> dict[str, Any]:
        return {
            "parent": self.parent.as_dict(),
            "children": [c.as_dict() for c in self.children],
        }


@dataclass
class Hierarchy:
    timestamp: str
    parent_count: int
    child_count: int
    entries: list[HierarchyEntry] = field(default_factory=list)
    unassigned_children: list[WorkItem] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "parentCount": self.parent_count,
            "childCount": self.child_count,
            "entries": [e.as_dict() for e in self.entries],
            "unassignedChildren": [c.as_dict() for c in self.unassigned_children],
        }


def parse_work_items(entities: Iterable[Any], *, child: bool = False) -> list[WorkItem]:
    """Map raw Project/Task entities to work items, dropping zero-effort ones."""
    items: list[WorkItem] = []
    for entity in entities:
        if not isinstance(entity, dict) or not entity.get("id"):
            continue
        hours = first_hours(entity, (("Work",), ("Duration",), ("RemainingEffort",)))
        if hours <= 0:
            continue
        parent_id = parent_name = None
        if child:
            parent_id = first_present(entity, [(key, "id") for key in _PARENT_KEYS])
            parent_name = first_present(entity, [(key, "Name") for key in _PARENT_KEYS])
        items.append(
            WorkItem(
                id=str(entity["id"]),
                name=str(entity.get("Name") or ""),
                start_date=format_date(first_present(entity, (("StartDate",),))),
                end_date=format_date(first_present(entity, (("DueDate",), ("EndDate",)))),
                work_hours=hours,
                parent_id=str(parent_id) if parent_id is not None else None,
                parent_name=str(parent_name) if parent_name is not None else None,
            )
        )
    return items


def build_hierarchy(
    parents: Sequence[WorkItem],
    children: Sequence[WorkItem],
    *,
    now: datetime | None = None,
) -> Hierarchy:
    """Nest *children* under *parents* by strict ``parent_id == id`` equality."""
    by_parent: dict[str, list[WorkItem]] = {}
    for item in children:
        if item.parent_id is not None:
            by_parent.setdefault(item.parent_id, []).append(item)

    parent_ids = {p.id for p in parents}
    entries = [HierarchyEntry(parent=p, children=list(by_parent.get(p.id, []))) for p in parents]
    unassigned = [c for c in children if c.parent_id not in parent_ids]
    if unassigned:
        logger.info("%d child work item(s) have no matching parent", len(unassigned))

    return Hierarchy(
        timestamp=(now or datetime.now(UTC)).isoformat(),
        parent_count=len(parents),
        child_count=len(children),
        entries=entries,
        unassigned_children=unassigned,
    )


def parent_queries(name: str) -> list[str | None]:
    base = f"SELECT {_WORK_FIELDS}, ProjectManager.Name FROM Project"
    return [
        (
            f"SELECT {_WORK_FIELDS} FROM Project"
            f" WHERE State = 'Active' AND ProjectManager.Name = {czql_literal(name)}"
            if name
            else None
        ),
        f"{base} WHERE State = 'Active'",
        base,
    ]


def managed_by(entities: Iterable[Any], name: str) -> list[Any]:
    """Keep the entities whose ``ProjectManager.Name`` is exactly *name*."""
    return [e for e in entities if get_path(e, _MANAGER_NAME) == name]


def entity_ids(entities: Iterable[Any]) -> list[str]:
    ids: list[str] = []
    for entity in entities:
        if isinstance(entity, dict) and entity.get("id"):
            ids.append(str(entity["id"]))
    return ids


def child_queries(batch: list[str]) -> list[str]:
    refs = ", ".join(czql_literal(f"/Project/{bare}") for bare in batch)
    bare_ids = ", ".join(czql_literal(bare) for bare in batch)
    fields = f"SELECT {_WORK_FIELDS}, Project.Name FROM Task"
    return [
        f"{fields} WHERE Project IN ({refs})",
        f"{fields} WHERE Project.id IN ({bare_ids})",
    ]


class WorkItemsClient:
    """Fetches the parent/child work-item tree.

    All public methods take ``session: str`` as the first argument.
    """

    def __init__(
        self,
        base: PPMSessionClient,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_query_length: int = MAX_QUERY_LENGTH,
    ) -> None:
        self._base = base
        self._batch_size = batch_size
        self._max_query_length = max_query_length

    async def get_parents(self, session: str, user_name: str) -> tuple[list[str], list[WorkItem]]:
        """Fetch the user's projects.

        Returns the ids of every project the user owns, including zero-effort
        ones, alongside the parsed projects that carry effort.
        """

        async def execute(czql: str) -> dict[str, Any]:
            return await self._base.query(session, czql)

        try:
            cascade = await run_cascade(execute, parent_queries(user_name), label="projects")
        except AllQueriesExhausted as exc:
            logger.warning("No parent projects found: %s", exc)
            return [], []

        entities = cascade.entities
        if user_name and cascade.winning_index > 0:
            entities = managed_by(entities, user_name)
            logger.info(
                "Parent query %d matched %d project(s), %d managed by %s",
                cascade.winning_index,
                len(cascade.entities),
                len(entities),
                user_name,
            )
        return entity_ids(entities), parse_work_items(entities)

    async def get_children(self, session: str, parent_ids: Iterable[str]) -> list[WorkItem]:
        async def execute(czql: str) -> dict[str, Any]:
            return await self._base.query(session, czql)

        fetcher = ChunkedFetcher(
            execute,
            batch_size=self._batch_size,
            max_query_length=self._max_query_length,
            label="tasks",
        )
        entities = await fetcher.fetch_in_batches(parent_ids, child_queries)
        return parse_work_items(entities, child=True)

    async def get_hierarchy(self, session: str, user_name: str = "") -> Hierarchy:
        parent_ids, parents = await self.get_parents(session, user_name)
        children = await self.get_children(session, parent_ids)
        hierarchy = build_hierarchy(parents, children)
        await self._base.debug_log.write(
            "WORK_HIERARCHY_SUMMARY",
            {
                "user": user_name,
                "parentCount": hierarchy.parent_count,
                "childCount": hierarchy.child_count,
                "unassignedChildren": len(hierarchy.unassigned_children),
            },
        )
        return hierarchy
