"""Tests for feed-shaped exports of reconstructions."""

import json

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import CardCategory, Project
from pipeline.roadmap.dates import MS_PER_DAY
from pipeline.roadmap.export import export_all, export_documents, export_snapshot
from pipeline.roadmap.feed import parse_snapshot
from pipeline.roadmap.ingestion import RoadmapIngestionService
from pipeline.roadmap.snapshot_service import (
    CardState,
    DeliverableState,
    DisciplineState,
    TeamState,
    TimeAllocationState,
)

JAN_1_2022 = 1_640_995_200_000


def _make_state() -> DeliverableState:
    allocation = TimeAllocationState(
        uuid="ta1",
        start_date=JAN_1_2022,
        end_date=JAN_1_2022 + 7 * MS_PER_DAY,
        partial_time=True,
        row_id=3,
        discipline=DisciplineState(uuid="disc-1", title="Engineering", number_of_members=4, row_id=2),
    )
    team = TeamState(
        slug="core",
        abbreviation="CORE",
        title="Core <Tech>",
        description=None,
        start_date=JAN_1_2022,
        end_date=JAN_1_2022 + 30 * MS_PER_DAY,
        number_of_deliverables=1,
        row_id=1,
        time_allocations=[allocation],
    )
    card = CardState(
        tid="c1",
        title="Salvage",
        description=None,
        category=CardCategory.GAMEPLAY,
        release_id="r1",
        release_title="Alpha 3.18",
        update_date=None,
        thumbnail=None,
        row_id=4,
    )
    return DeliverableState(
        uuid="d1",
        slug="salvage",
        title="Salvage",
        description="Ship & crew",
        start_date=JAN_1_2022,
        end_date=JAN_1_2022 + 30 * MS_PER_DAY,
        update_date=None,
        number_of_disciplines=1,
        number_of_teams=1,
        total_count=1,
        projects=[Project.STAR_CITIZEN],
        added_date=JAN_1_2022,
        row_ids=[5],
        card=card,
        teams=[team],
    )


class TestExportDocuments:
    """Document shape of an exported deliverable."""

    def test_camel_case_and_iso_dates(self) -> None:
        [document] = export_documents([_make_state()])

        assert document["startDate"] == "2022-01-01T00:00:00.000Z"
        assert document["numberOfTeams"] == 1
        assert document["projects"] == [{"title": "Star Citizen"}]
        allocation = document["teams"][0]["timeAllocations"][0]
        assert allocation["partialTime"] is True
        assert allocation["discipline"]["numberOfMembers"] == 4
        assert document["card"]["id"] == "c1"
        assert document["card"]["release"] == {"id": "r1", "title": "Alpha 3.18"}
        assert "addedDate" not in document
        assert "rowIds" not in document

    def test_text_is_html_escaped(self) -> None:
        [document] = export_documents([_make_state()])

        assert document["description"] == "Ship &amp; crew"
        assert document["teams"][0]["title"] == "Core &lt;Tech&gt;"

    def test_export_parses_back(self) -> None:
        documents = json.loads(json.dumps(export_documents([_make_state()])))

        [deliverable] = parse_snapshot(documents).deliverables

        assert deliverable.description == "Ship & crew"
        assert deliverable.end_date == JAN_1_2022 + 30 * MS_PER_DAY
        assert deliverable.card.tid == "c1"
        assert deliverable.card.category == CardCategory.GAMEPLAY
        assert deliverable.teams[0].title == "Core <Tech>"
        assert deliverable.teams[0].time_allocations[0].discipline.uuid == "disc-1"


class TestExportFiles:
    """Writing exports from the ledger."""

    @pytest.mark.asyncio
    async def test_export_snapshot_file(self, session: AsyncSession, tmp_path) -> None:
        raw = export_documents([_make_state()])
        await RoadmapIngestionService(session).ingest_raw(raw, JAN_1_2022)

        path = await export_snapshot(session, JAN_1_2022, tmp_path)

        assert path.name == "2022-01-01.json"
        with open(path, encoding="utf-8") as f:
            assert json.load(f) == raw

    @pytest.mark.asyncio
    async def test_export_all(self, session: AsyncSession, tmp_path) -> None:
        service = RoadmapIngestionService(session)
        await service.ingest_raw(export_documents([_make_state()]), JAN_1_2022)
        await service.ingest_raw([], JAN_1_2022 + MS_PER_DAY)

        paths = await export_all(session, tmp_path)

        assert [p.name for p in paths] == ["2022-01-02.json", "2022-01-01.json"]
        with open(paths[0], encoding="utf-8") as f:
            assert json.load(f) == []
