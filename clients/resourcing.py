"""Four-source resourcing reconciliation.

Fetches user assignments, project resources, timesheet entries and resource
allocations concurrently, filters each by the resolved identity and maps them
into one :class:`NormalizedRecord` shape.  The fan-out is all-settled: one
source failing never cancels or fails the others, and the pass reports a
per-source outcome instead of raising.
"""

from __future__ import annotations

import asyncio
import calendar
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum
from typing import Any

from _constants import DEFAULT_WINDOW_MONTHS
from clients._base import PPMSessionClient
from clients._fields import (
    Path,
    czql_literal,
    first_hours,
    first_present,
    format_date,
    get_path,
)
from clients.cascade import run_cascade
from clients.errors import AllQueriesExhausted
from clients.identity import Identity, IdentityResolver

__all__ = [
    "LAYOUTS",
    "NormalizedRecord",
    "PassState",
    "ReconciliationResult",
    "ResourcingClient",
    "SourceLayout",
    "SourceOutcome",
    "default_window",
    "normalize_source",
]

logger = logging.getLogger("ppm_mcp.client")

ASSIGNMENTS = "assignments"
PROJECT_RESOURCES = "project_resources"
TIMESHEET = "timesheet"
ALLOCATIONS = "allocations"
SOURCE_ORDER: tuple[str, ...] = (ASSIGNMENTS, PROJECT_RESOURCES, TIMESHEET, ALLOCATIONS)


class PassState(StrEnum):
    FULLY_SUCCEEDED = "fully_succeeded"
    PARTIALLY_SUCCEEDED = "partially_succeeded"
    EXHAUSTED = "exhausted"


# ---------------------------------------------------------------------------
# Records and outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NormalizedRecord:
    id: str | None
    project_id: str | None
    project_name: str | None
    tag: str | None
    user_name: str
    hours: float
    start_date: str | None
    end_date: str | None
    status: str
    role: str
    type: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "projectName": self.project_name,
            "tag": self.tag,
            "userName": self.user_name,
            "hours": self.hours,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "status": self.status,
            "role": self.role,
            "type": self.type,
        }


@dataclass(frozen=True)
class SourceOutcome:
    """Result of one source fetch: ``ok``, ``exhausted`` (nothing found) or ``failed``."""

    source: str
    status: str
    fetched: int = 0
    matched: int = 0
    winning_index: int | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "status": self.status,
            "fetched": self.fetched,
            "matched": self.matched,
            "winningIndex": self.winning_index,
            "error": self.error,
        }


@dataclass
class ReconciliationResult:
    identity: Identity
    records: list[NormalizedRecord] = field(default_factory=list)
    sources: list[SourceOutcome] = field(default_factory=list)

    @property
    def state(self) -> PassState:
        failed = sum(1 for s in self.sources if s.status == "failed")
        if failed == 0:
            return PassState.FULLY_SUCCEEDED
        if failed < len(self.sources):
            return PassState.PARTIALLY_SUCCEEDED
        return PassState.EXHAUSTED

    @property
    def failed_sources(self) -> list[str]:
        return [s.source for s in self.sources if s.status == "failed"]

    def counts_by_type(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for record in self.records:
            counts[record.type] = counts.get(record.type, 0) + 1
        return counts

    def as_dict(self) -> dict[str, Any]:
        return {
            "state": str(self.state),
            "identity": self.identity.as_dict(),
            "count": len(self.records),
            "breakdown": self.counts_by_type(),
            "failedSources": self.failed_sources,
            "sources": [s.as_dict() for s in self.sources],
            "data": [r.as_dict() for r in self.records],
        }


# ---------------------------------------------------------------------------
# Source layouts (source field paths -> canonical fields)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceLayout:
    """Where each canonical field lives in one source's rows.

    ``explode`` turns a raw entity into zero or more flat rows; every path
    list is tried in order and the first present value wins.
    """

    name: str
    record_type: str
    explode: Callable[[dict[str, Any]], list[dict[str, Any]]]
    owner: tuple[Path, ...]
    id: tuple[Path, ...]
    project_id: tuple[Path, ...]
    project_name: tuple[Path, ...]
    tag: tuple[Path, ...]
    hours: tuple[Path, ...]
    start_date: tuple[Path, ...]
    end_date: tuple[Path, ...]
    status: tuple[Path, ...] = ()
    role: tuple[Path, ...] = ()
    default_project_name: str | None = None
    default_tag: str | None = None
    default_status: str = "Active"
    default_role: str = "Resource"


def _as_is(entity: dict[str, Any]) -> list[dict[str, Any]]:
    return [entity]


def _explode_assignments(user: dict[str, Any]) -> list[dict[str, Any]]:
    items = get_path(user, ("AssignedWorkItems", "entities"))
    if not isinstance(items, list):
        return []
    return [{"User": user, "WorkItem": item} for item in items if isinstance(item, dict)]


def _explode_project_resources(project: dict[str, Any]) -> list[dict[str, Any]]:
    resources = get_path(project, ("Resources", "entities"))
    if not isinstance(resources, list):
        return []
    return [
        {
            "Project": project,
            "Resource": resource,
            "id": f"{project.get('id')}-{resource.get('id')}",
        }
        for resource in resources
        if isinstance(resource, dict)
    ]


LAYOUTS: dict[str, SourceLayout] = {
    ASSIGNMENTS: SourceLayout(
        name=ASSIGNMENTS,
        record_type="Assignment",
        explode=_explode_assignments,
        owner=(("User", "Name"),),
        id=(("WorkItem", "id"),),
        project_id=(("WorkItem", "ParentProject", "id"),),
        project_name=(("WorkItem", "ParentProject", "Name"), ("WorkItem", "Name")),
        tag=(("WorkItem", "EntityType"),),
        hours=(("WorkItem", "RemainingEffort"), ("WorkItem", "ActualEffort")),
        start_date=(("WorkItem", "StartDate"),),
        end_date=(("WorkItem", "DueDate"),),
        status=(("WorkItem", "State", "id"), ("WorkItem", "State")),
        default_role="Assigned",
    ),
    PROJECT_RESOURCES: SourceLayout(
        name=PROJECT_RESOURCES,
        record_type="Project Resource",
        explode=_explode_project_resources,
        owner=(("Resource", "Name"),),
        id=(("id",),),
        project_id=(("Project", "id"),),
        project_name=(("Project", "Name"),),
        tag=(),
        hours=(),
        start_date=(),
        end_date=(),
        role=(("Resource", "Role"),),
        default_tag="Project Resource",
    ),
    TIMESHEET: SourceLayout(
        name=TIMESHEET,
        record_type="Timesheet",
        explode=_as_is,
        owner=(("ReportedBy", "Name"),),
        id=(("id",),),
        project_id=(("WorkItem", "id"),),
        project_name=(("WorkItem", "Name"),),
        tag=(("WorkItem", "EntityType"),),
        hours=(("Duration",),),
        start_date=(("ReportedDate",),),
        end_date=(("ReportedDate",),),
        default_tag="Timesheet",
        default_status="Logged",
        default_role="Time Entry",
    ),
    ALLOCATIONS: SourceLayout(
        name=ALLOCATIONS,
        record_type="ResourceAllocation",
        explode=_as_is,
        owner=(("User", "Name"), ("Resource", "Name"), ("ReportedBy", "Name")),
        id=(("id",),),
        project_id=(("WorkItem", "id"), ("Project", "id"), ("id",)),
        project_name=(("WorkItem", "Name"), ("ProjectAssignment", "Name"), ("Project", "Name")),
        tag=(("WorkItem", "EntityType"), ("Project", "EntityType")),
        hours=(("Work",), ("Units",), ("Duration",)),
        start_date=(("Date",), ("StartDate",), ("ReportedDate",)),
        end_date=(("EndDate",), ("ReportedDate",)),
        role=(("ResourceRole",), ("Role",)),
        default_project_name="Unknown Project",
        default_tag="Allocation",
        default_status="Allocated",
    ),
}


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, dict | list):
        return None
    return str(value)


def normalize_source(
    layout: SourceLayout,
    entities: Sequence[Any],
    identity_name: str,
) -> list[NormalizedRecord]:
    """Filter *entities* to rows owned by *identity_name* and map them.

    Ownership is exact, case-sensitive string equality.
    """
    records: list[NormalizedRecord] = []
    if not identity_name:
        return records
    for entity in entities:
        if not isinstance(entity, dict):
            continue
        for row in layout.explode(entity):
            if first_present(row, layout.owner) != identity_name:
                continue
            records.append(
                NormalizedRecord(
                    id=_text(first_present(row, layout.id)),
                    project_id=_text(first_present(row, layout.project_id)),
                    project_name=_text(
                        first_present(row, layout.project_name, layout.default_project_name)
                    ),
                    tag=_text(first_present(row, layout.tag, layout.default_tag)),
                    user_name=identity_name,
                    hours=first_hours(row, layout.hours),
                    start_date=format_date(first_present(row, layout.start_date)),
                    end_date=format_date(first_present(row, layout.end_date)),
                    status=_text(first_present(row, layout.status)) or layout.default_status,
                    role=_text(first_present(row, layout.role)) or layout.default_role,
                    type=layout.record_type,
                )
            )
    return records


# ---------------------------------------------------------------------------
# Query candidates
# ---------------------------------------------------------------------------


def _shift_months(d: date, months: int) -> date:
    index = d.month - 1 + months
    year, month = d.year + index // 12, index % 12 + 1
    return date(year, month, min(d.day, calendar.monthrange(year, month)[1]))


def default_window(
    today: date | None = None, months: int = DEFAULT_WINDOW_MONTHS
) -> tuple[str, str]:
    """``(start, end)`` ISO dates *months* calendar months either side of today."""
    today = today or date.today()
    return _shift_months(today, -months).isoformat(), _shift_months(today, months).isoformat()


def assignment_queries(name: str) -> list[str | None]:
    if not name:
        return []
    return [
        "SELECT Name, (SELECT Name, EntityType, State, RemainingEffort, ActualEffort, "
        "StartDate, DueDate, ParentProject.Name FROM AssignedWorkItems) "
        f"FROM User WHERE Name = {czql_literal(name)}"
    ]


def project_resource_queries(name: str) -> list[str | None]:
    user_filter = f" WHERE Name = {czql_literal(name)}" if name else ""
    return [
        f"SELECT Name, (SELECT Name, Role FROM Resources{user_filter}) "
        "FROM Project WHERE State = 'Active'"
    ]


def timesheet_queries(name: str, email: str, start: str, end: str) -> list[str | None]:
    fields = "SELECT ReportedBy.Name, WorkItem.Name, WorkItem.EntityType, Duration, ReportedDate"
    window = (
        f"FROM Timesheet WHERE ReportedDate >= {czql_literal(start)} "
        f"AND ReportedDate <= {czql_literal(end)}"
    )
    return [
        f"{fields} {window} AND ReportedBy.Name = {czql_literal(name)}" if name else None,
        f"{fields} {window}",
        f"{fields} {window} AND ReportedBy.Email = {czql_literal(email)}" if email else None,
    ]


def allocation_queries(name: str, start: str, end: str) -> list[str | None]:
    who = czql_literal(name) if name else None
    human = "SELECT WorkItem.Name, WorkItem.EntityType, Resource.Name, ResourceRole, Units"
    link = (
        "SELECT WorkItem.Name, WorkItem.EntityType, Resource.Name, Work, Units, "
        "StartDate, EndDate FROM RegularResourceLink "
        "WHERE WorkItem.EntityType IN ('Project', 'Task')"
    )
    project = (
        "SELECT Project.Name, Project.EntityType, Resource.Name, Role, Percentage "
        "FROM ProjectResource WHERE Project.EntityType = 'Project'"
    )
    timesheet = (
        "SELECT ReportedBy.Name, WorkItem.Name, WorkItem.EntityType, Duration, ReportedDate "
        "FROM Timesheet"
    )
    return [
        f"{human} FROM HumanResource WHERE Resource.Name = {who}" if who else None,
        f"{human} FROM HumanResource",
        f"{human} FROM ResourceAssignment WHERE Resource.Name = {who}" if who else None,
        f"{human} FROM ResourceAssignment",
        f"{link} AND Resource.Name = {who}" if who else None,
        link,
        f"{project} AND Resource.Name = {who}" if who else None,
        project,
        # Daily timesheet breakdown as a last resort, then without the window.
        f"{timesheet} WHERE ReportedDate >= {czql_literal(start)} "
        f"AND ReportedDate <= {czql_literal(end)} AND ReportedBy.Name = {who}"
        if who
        else None,
        f"{timesheet} WHERE ReportedBy.Name = {who}" if who else None,
    ]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class ResourcingClient:
    """Runs one reconciliation pass per call.

    All public methods take ``session: str`` as the first argument.
    """

    def __init__(self, base: PPMSessionClient, resolver: IdentityResolver | None = None) -> None:
        self._base = base
        self._resolver = resolver or IdentityResolver(base)

    def _executor(self, session: str) -> Callable[[str], Awaitable[dict[str, Any]]]:
        async def execute(czql: str) -> dict[str, Any]:
            return await self._base.query(session, czql)

        return execute

    async def _fetch_source(
        self, session: str, source: str, queries: list[str | None]
    ) -> tuple[list[dict[str, Any]], int | None]:
        """Entities and winning candidate index of one source's cascade."""
        cascade = await run_cascade(self._executor(session), queries, label=source)
        return cascade.entities, cascade.winning_index

    async def reconcile(
        self,
        session: str,
        identity: Identity | None = None,
        *,
        hint: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> ReconciliationResult:
        """Fetch, filter and normalize all four sources.

        Never raises because a source failed; only the identity lookup (when
        *identity* is not supplied) can raise.
        """
        if identity is None:
            identity = await self._resolver.resolve(session, hint)
        if not start_date or not end_date:
            start_date, end_date = default_window()

        name = identity.name
        candidates: dict[str, list[str | None]] = {
            ASSIGNMENTS: assignment_queries(name),
            PROJECT_RESOURCES: project_resource_queries(name),
            TIMESHEET: timesheet_queries(name, identity.profile.email, start_date, end_date),
            ALLOCATIONS: allocation_queries(name, start_date, end_date),
        }
        logger.info(
            "Reconciling resourcing for %r (%s) over %s..%s",
            name,
            identity.source or "unresolved",
            start_date,
            end_date,
        )

        settled = await asyncio.gather(
            *(self._fetch_source(session, source, candidates[source]) for source in SOURCE_ORDER),
            return_exceptions=True,
        )

        fetched: dict[str, list[dict[str, Any]]] = {}
        outcomes: dict[str, SourceOutcome] = {}
        for source, outcome in zip(SOURCE_ORDER, settled, strict=True):
            if isinstance(outcome, AllQueriesExhausted):
                status = "failed" if outcome.all_failed else "exhausted"
                fetched[source] = []
                outcomes[source] = SourceOutcome(source, status, error=outcome.last_error)
                if status == "failed":
                    logger.warning("Source %s failed: %s", source, outcome.last_error)
            elif isinstance(outcome, Exception):
                fetched[source] = []
                outcomes[source] = SourceOutcome(source, "failed", error=str(outcome))
                logger.warning("Source %s failed: %s", source, outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                entities, winning_index = outcome
                fetched[source] = entities
                outcomes[source] = SourceOutcome(
                    source, "ok", fetched=len(entities), winning_index=winning_index
                )

        # Identity is frozen from here on: every filter below uses the same name.
        identity = IdentityResolver.recover_from_entities(identity, fetched[TIMESHEET])
        if not identity:
            logger.warning("No user identity could be resolved; no records will match")

        result = ReconciliationResult(identity=identity)
        for source in SOURCE_ORDER:
            records = normalize_source(LAYOUTS[source], fetched[source], identity.name)
            result.records.extend(records)
            previous = outcomes[source]
            result.sources.append(
                SourceOutcome(
                    source,
                    previous.status,
                    fetched=previous.fetched,
                    matched=len(records),
                    winning_index=previous.winning_index,
                    error=previous.error,
                )
            )

        logger.info(
            "Reconciliation %s: %d records (%s)",
            result.state,
            len(result.records),
            ", ".join(f"{s.source}={s.status}:{s.matched}" for s in result.sources),
        )
        await self._base.debug_log.write(
            "RESOURCING_SUMMARY",
            {
                "identity": identity.as_dict(),
                "window": {"start": start_date, "end": end_date},
                "state": str(result.state),
                "sources": [s.as_dict() for s in result.sources],
                "breakdown": result.counts_by_type(),
            },
        )
        return result
