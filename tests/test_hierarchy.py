"""Tests for clients/hierarchy.py -- parent/child work-item tree."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from clients.errors import PPMRequestError
from clients.hierarchy import (
    WorkItem,
    WorkItemsClient,
    build_hierarchy,
    child_queries,
    parent_queries,
    parse_work_items,
)


def _item(id_: str, parent_id: str | None = None, hours: float = 1.0) -> WorkItem:
    return WorkItem(id_, id_.lower(), None, None, hours, parent_id, None)


def _make_base(handler) -> AsyncMock:
    base = AsyncMock()
    base.query.side_effect = handler
    base.debug_log = MagicMock()
    base.debug_log.write = AsyncMock()
    return base


class TestParseWorkItems:
    def test_drops_zero_effort(self) -> None:
        items = parse_work_items(
            [
                {"id": "P1", "Name": "Apollo", "Work": {"value": 10, "unit": "Hours"}},
                {"id": "P2", "Name": "Idle", "Work": 0},
                {"id": "P3", "Name": "No effort"},
                {"Name": "No id", "Work": 5},
                None,
            ]
        )
        assert [i.id for i in items] == ["P1"]
        assert items[0].work_hours == 10.0

    def test_child_parent_reference(self) -> None:
        [child] = parse_work_items(
            [
                {
                    "id": "C1",
                    "Name": "Design",
                    "Duration": "4",
                    "StartDate": "2024-01-01T08:00:00",
                    "DueDate": "2024-01-05",
                    "Project": {"id": "P1", "Name": "Apollo"},
                }
            ],
            child=True,
        )
        assert child.parent_id == "P1"
        assert child.parent_name == "Apollo"
        assert child.start_date == "2024-01-01"
        assert child.as_dict()["parentId"] == "P1"

    def test_parent_fallback_keys(self) -> None:
        [child] = parse_work_items(
            [{"id": "C1", "Work": 1, "ParentProject": {"id": "P9", "Name": "Legacy"}}], child=True
        )
        assert child.parent_id == "P9"

    def test_parent_dict_omits_parent_fields(self) -> None:
        [parent] = parse_work_items([{"id": "P1", "Name": "Apollo", "Work": 3}])
        assert "parentId" not in parent.as_dict()


class TestBuildHierarchy:
    def test_children_nested_and_orphans_reported(self) -> None:
        now = datetime(2024, 5, 1, tzinfo=UTC)
        hierarchy = build_hierarchy(
            [_item("P1")], [_item("C1", "P1"), _item("C2", "P2")], now=now
        )

        assert hierarchy.parent_count == 1
        assert hierarchy.child_count == 2
        assert len(hierarchy.entries) == 1
        assert [c.id for c in hierarchy.entries[0].children] == ["C1"]
        assert [c.id for c in hierarchy.unassigned_children] == ["C2"]
        assert hierarchy.timestamp == now.isoformat()

    def test_parent_without_children(self) -> None:
        hierarchy = build_hierarchy([_item("P1"), _item("P2")], [_item("C1", "P2")])
        assert [len(e.children) for e in hierarchy.entries] == [0, 1]
        assert hierarchy.unassigned_children == []

    def test_as_dict(self) -> None:
        out = build_hierarchy([_item("P1")], [_item("C1", "P1")]).as_dict()
        assert set(out) == {
            "timestamp",
            "parentCount",
            "childCount",
            "entries",
            "unassignedChildren",
        }
        assert out["entries"][0]["parent"]["id"] == "P1"
        assert out["entries"][0]["children"][0]["parentId"] == "P1"


class TestQueries:
    def test_parent_queries(self) -> None:
        queries = parent_queries("Jane Doe")
        assert "ProjectManager.Name = 'Jane Doe'" in queries[0]
        assert queries[-1].endswith("FROM Project")
        assert all("ProjectManager.Name" in q for q in queries[1:])
        assert parent_queries("")[0] is None

    def test_child_queries_reference_then_bare(self) -> None:
        first, second = child_queries(["P1", "P2"])
        assert "Project IN ('/Project/P1', '/Project/P2')" in first
        assert "Project.id IN ('P1', 'P2')" in second


class TestWorkItemsClient:
    async def test_get_hierarchy(self) -> None:
        parents = [
            {"id": "P1", "Name": "Apollo", "Work": 10},
            {"id": "P2", "Name": "Idle", "Work": 0},
        ]
        children = [
            {"id": "C1", "Name": "Design", "Work": 3, "Project": {"id": "P1", "Name": "Apollo"}},
            {"id": "C2", "Name": "Spare", "Work": 0, "Project": {"id": "P1", "Name": "Apollo"}},
            {"id": "C3", "Name": "Cleanup", "Work": 4, "Project": {"id": "P2", "Name": "Idle"}},
        ]
        queries: list[str] = []

        async def handler(session: str, czql: str) -> dict[str, Any]:
            queries.append(czql)
            if "FROM Project" in czql:
                return {"entities": parents}
            if "FROM Task" in czql:
                return {
                    "entities": [
                        c for c in children if f"'/Project/{c['Project']['id']}'" in czql
                    ]
                }
            return {"entities": []}

        base = _make_base(handler)
        hierarchy = await WorkItemsClient(base).get_hierarchy("sess", "Jane Doe")

        assert hierarchy.parent_count == 1
        assert hierarchy.child_count == 2
        assert [c.id for c in hierarchy.entries[0].children] == ["C1"]
        assert "'/Project/P1'" in queries[1]
        assert "'/Project/P2'" in queries[1]
        endpoint, payload = base.debug_log.write.await_args.args
        assert endpoint == "WORK_HIERARCHY_SUMMARY"
        assert payload["childCount"] == 2
        assert payload["unassignedChildren"] == 1

    async def test_child_of_zero_effort_parent_is_unassigned(self) -> None:
        async def handler(session: str, czql: str) -> dict[str, Any]:
            if "FROM Project" in czql:
                return {"entities": [{"id": "P2", "Name": "Idle", "Work": 0}]}
            if "'/Project/P2'" in czql:
                return {
                    "entities": [
                        {"id": "C2", "Name": "Cleanup", "Work": 4, "Project": {"id": "P2"}}
                    ]
                }
            return {"entities": []}

        hierarchy = await WorkItemsClient(_make_base(handler)).get_hierarchy("sess", "Jane Doe")

        assert hierarchy.parent_count == 0
        assert hierarchy.entries == []
        assert hierarchy.child_count == 1
        assert [c.id for c in hierarchy.unassigned_children] == ["C2"]
        assert hierarchy.as_dict()["unassignedChildren"][0]["parentId"] == "P2"

    async def test_get_parents_returns_ids_of_zero_effort_projects(self) -> None:
        async def handler(session: str, czql: str) -> dict[str, Any]:
            return {
                "entities": [
                    {"id": "P1", "Name": "Apollo", "Work": 10},
                    {"id": "P2", "Name": "Idle", "Work": 0},
                ]
            }

        ids, parents = await WorkItemsClient(_make_base(handler)).get_parents("sess", "Jane Doe")
        assert ids == ["P1", "P2"]
        assert [p.id for p in parents] == ["P1"]

    async def test_parent_cascade_falls_back(self) -> None:
        async def handler(session: str, czql: str) -> dict[str, Any]:
            if "ProjectManager.Name = " in czql:
                return {"entities": []}
            if "FROM Project" in czql:
                return {
                    "entities": [
                        {
                            "id": "P1",
                            "Name": "Apollo",
                            "Work": 2,
                            "ProjectManager": {"id": "u1", "Name": "Jane Doe"},
                        }
                    ]
                }
            return {"entities": []}

        ids, parents = await WorkItemsClient(_make_base(handler)).get_parents("sess", "Jane Doe")
        assert ids == ["P1"]
        assert [p.id for p in parents] == ["P1"]

    async def test_fallback_drops_other_managers_projects(self) -> None:
        queries: list[str] = []

        async def handler(session: str, czql: str) -> dict[str, Any]:
            queries.append(czql)
            if "ProjectManager.Name = " in czql:
                return {"entities": []}
            if "FROM Project" in czql:
                return {
                    "entities": [
                        {
                            "id": "P9",
                            "Name": "Someone else",
                            "Work": 5,
                            "ProjectManager": {"Name": "Bob"},
                        },
                        {"id": "P8", "Name": "Unmanaged", "Work": 5},
                    ]
                }
            return {"entities": []}

        base = _make_base(handler)
        client = WorkItemsClient(base)
        ids, parents = await client.get_parents("sess", "Jane Doe")
        assert ids == []
        assert parents == []

        hierarchy = await client.get_hierarchy("sess", "Jane Doe")
        assert hierarchy.parent_count == 0
        assert not any("FROM Task" in q for q in queries)

    async def test_whole_table_fallback_filtered_by_manager(self) -> None:
        async def handler(session: str, czql: str) -> dict[str, Any]:
            if "WHERE" in czql:
                return {"entities": []}
            return {
                "entities": [
                    {"id": "P1", "Work": 1, "ProjectManager": {"Name": "Jane Doe"}},
                    {"id": "P2", "Work": 1, "ProjectManager": {"Name": "jane doe"}},
                ]
            }

        ids, parents = await WorkItemsClient(_make_base(handler)).get_parents("sess", "Jane Doe")
        assert ids == ["P1"]
        assert [p.id for p in parents] == ["P1"]

    async def test_no_user_name_keeps_loose_results(self) -> None:
        async def handler(session: str, czql: str) -> dict[str, Any]:
            return {"entities": [{"id": "P9", "Work": 5, "ProjectManager": {"Name": "Bob"}}]}

        ids, parents = await WorkItemsClient(_make_base(handler)).get_parents("sess", "")
        assert ids == ["P9"]
        assert [p.id for p in parents] == ["P9"]

    async def test_no_parents_means_no_child_queries(self) -> None:
        async def handler(session: str, czql: str) -> dict[str, Any]:
            raise PPMRequestError("down")

        base = _make_base(handler)
        hierarchy = await WorkItemsClient(base).get_hierarchy("sess", "Jane Doe")

        assert hierarchy.parent_count == 0
        assert hierarchy.entries == []
        assert all("FROM Task" not in c.args[1] for c in base.query.await_args_list)

    async def test_children_fetched_in_batches(self) -> None:
        parents = [{"id": f"P{i:02d}", "Name": f"Project {i}", "Work": 1} for i in range(25)]
        task_queries: list[str] = []

        async def handler(session: str, czql: str) -> dict[str, Any]:
            if "FROM Task" in czql:
                task_queries.append(czql)
                return {"entities": []}
            return {"entities": parents}

        hierarchy = await WorkItemsClient(_make_base(handler), batch_size=20).get_hierarchy(
            "sess", "Jane Doe"
        )

        assert hierarchy.parent_count == 25
        # Each batch tries the reference form, then the bare-id form.
        assert len(task_queries) == 4
        assert "'/Project/P19'" in task_queries[0]
        assert "'/Project/P20'" in task_queries[2]

    async def test_failed_child_batch_keeps_others(self) -> None:
        parents = [{"id": f"P{i:02d}", "Name": f"Project {i}", "Work": 1} for i in range(3)]

        async def handler(session: str, czql: str) -> dict[str, Any]:
            if "FROM Task" in czql:
                if "P02" in czql:
                    raise PPMRequestError("URI too long", status_code=414)
                return {"entities": [{"id": "C0", "Work": 1, "Project": {"id": "P00"}}]}
            return {"entities": parents}

        client = WorkItemsClient(_make_base(handler), batch_size=2)
        hierarchy = await client.get_hierarchy("sess", "Jane Doe")

        assert hierarchy.child_count == 1
        assert [len(e.children) for e in hierarchy.entries] == [1, 0, 0]
