"""Tests for snapshot ingestion into the roadmap ledger."""

import json
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.enums import IngestionStatus
from app.models.ingestion_log import IngestionLog
from app.models.ledger import (
    CardDiff,
    DeliverableDiff,
    DeliverableTeam,
    DisciplineDiff,
    TeamDiff,
    TimeAllocationDiff,
)
from pipeline.roadmap.dates import MS_PER_DAY
from pipeline.roadmap.errors import IncompleteBatchError, IngestionError
from pipeline.roadmap.feed import parse_snapshot
from pipeline.roadmap.fetch import DeliverablePage
from pipeline.roadmap.ingestion import (
    ChangeCounters,
    IngestResult,
    LedgerIngestor,
    RoadmapIngestionService,
)
from pipeline.roadmap.snapshot_service import SnapshotService

BASE = 1_650_000_000_000
T1 = BASE + 100 * MS_PER_DAY
T2 = T1 + MS_PER_DAY
T3 = T2 + MS_PER_DAY


def D(days: int) -> int:
    return BASE + days * MS_PER_DAY


def _make_ta(
    uuid: str,
    start: int = D(0),
    end: int = D(10),
    partial: bool = False,
    discipline: tuple[str, str, int] = ("disc-1", "Engineering", 4),
) -> dict[str, Any]:
    disc_uuid, disc_title, members = discipline
    return {
        "uuid": uuid,
        "startDate": start,
        "endDate": end,
        "partialTime": partial,
        "discipline": {
            "uuid": disc_uuid,
            "title": disc_title,
            "numberOfMembers": members,
        },
    }


def _make_team(
    slug: str = "core",
    title: str = "Core Team",
    tas: list[dict[str, Any]] | None = None,
    description: str = "Builds the engine",
) -> dict[str, Any]:
    return {
        "slug": slug,
        "abbreviation": slug.upper(),
        "title": title,
        "description": description,
        "startDate": D(0),
        "endDate": D(30),
        "numberOfDeliverables": 1,
        "timeAllocations": tas or [],
    }


def _make_card(tid: str = "c1", release_title: str = "Alpha 3.18") -> dict[str, Any]:
    return {
        "tid": tid,
        "title": "Alpha card",
        "description": "On the release view",
        "category": "Gameplay",
        "release": {"id": "r1", "title": release_title},
        "updateDate": D(1),
        "thumbnail": "/media/alpha.png",
    }


def _make_deliverable(
    uuid: str = "d1",
    title: str = "Alpha",
    start: int = D(0),
    end: int = D(10),
    teams: list[dict[str, Any]] | None = None,
    card: dict[str, Any] | None = None,
    description: str = "The first deliverable",
) -> dict[str, Any]:
    teams = teams or []
    return {
        "uuid": uuid,
        "slug": title.lower().replace(" ", "-"),
        "title": title,
        "description": description,
        "startDate": start,
        "endDate": end,
        "updateDate": start,
        "numberOfDisciplines": 1,
        "numberOfTeams": len(teams),
        "totalCount": 10,
        "projects": [{"title": "Star Citizen"}],
        "card": card,
        "teams": teams,
    }


async def _ingest(
    session: AsyncSession, raw: list[dict[str, Any]], at: int
) -> IngestResult:
    return await RoadmapIngestionService(session).ingest(parse_snapshot(raw), at)


async def _count(session: AsyncSession, model: type) -> int:
    result = await session.execute(select(func.count()).select_from(model))
    return result.scalar_one()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestDeliverableLifecycle:
    """Added -> removed -> re-added across three captures."""

    @pytest.mark.asyncio
    async def test_added_removed_readded(self, session: AsyncSession) -> None:
        service = SnapshotService(session)

        first = await _ingest(session, [_make_deliverable(end=D(10))], T1)
        assert first.counters == ChangeCounters(added=1)

        second = await _ingest(session, [], T2)
        assert second.counters.removed == 1
        assert await service.get_deliverables_at(T2) == []

        third = await _ingest(session, [_make_deliverable(end=D(20))], T3)
        assert third.counters.readded == 1
        assert third.counters.added == 1

        current = await service.get_deliverables_at(T3)
        assert [(d.title, d.end_date) for d in current] == [("Alpha", D(20))]

    @pytest.mark.asyncio
    async def test_tombstone_keeps_business_key_and_title(
        self, session: AsyncSession
    ) -> None:
        await _ingest(session, [_make_deliverable()], T1)
        await _ingest(session, [], T2)

        result = await session.execute(
            select(DeliverableDiff).order_by(DeliverableDiff.id)
        )
        rows = result.scalars().all()
        assert len(rows) == 2
        tombstone = rows[1]
        assert tombstone.is_tombstone
        assert tombstone.uuid == "d1"
        assert tombstone.title == "Alpha"
        assert tombstone.added_date == T2

    @pytest.mark.asyncio
    async def test_already_removed_is_not_tombstoned_again(
        self, session: AsyncSession
    ) -> None:
        await _ingest(session, [_make_deliverable()], T1)
        await _ingest(session, [], T2)
        third = await _ingest(session, [], T3)

        assert third.counters.removed == 0
        assert third.rows_written == {}


# ---------------------------------------------------------------------------
# Minimal writes
# ---------------------------------------------------------------------------


class TestMinimalWrites:
    """Only changed entities get new rows."""

    @pytest.mark.asyncio
    async def test_same_snapshot_twice_writes_nothing(
        self, session: AsyncSession
    ) -> None:
        raw = [
            _make_deliverable(
                teams=[_make_team(tas=[_make_ta("ta1"), _make_ta("ta2", partial=True)])],
                card=_make_card(),
            )
        ]
        first = await _ingest(session, raw, T1)
        assert first.total_rows_written > 0

        second = await _ingest(session, raw, T2)
        assert second.counters == ChangeCounters()
        assert second.rows_written == {}

    @pytest.mark.asyncio
    async def test_card_without_release_or_update_date_is_stable(
        self, session: AsyncSession
    ) -> None:
        raw = [_make_deliverable(card={"tid": "c9", "title": "Loose card"})]

        first = await _ingest(session, raw, T1)
        second = await _ingest(session, raw, T2)

        assert [w.key for w in first.warnings] == ["c9"]
        assert await _count(session, CardDiff) == 0
        assert second.counters == ChangeCounters()
        assert second.rows_written == {}
        [current] = await SnapshotService(session).get_deliverables_at(T2)
        assert current.uuid == "d1"

    @pytest.mark.asyncio
    async def test_card_losing_release_is_not_removed(
        self, session: AsyncSession
    ) -> None:
        await _ingest(session, [_make_deliverable(card=_make_card("c1"))], T1)

        await _ingest(
            session, [_make_deliverable(card={"tid": "c1", "title": "Alpha card"})], T2
        )

        cards = (await session.execute(select(CardDiff))).scalars().all()
        assert len(cards) == 1
        assert not cards[0].is_tombstone

    @pytest.mark.asyncio
    async def test_time_allocation_end_change_only_writes_allocation(
        self, session: AsyncSession
    ) -> None:
        await _ingest(
            session,
            [_make_deliverable(teams=[_make_team(tas=[_make_ta("ta1", end=D(10))])])],
            T1,
        )
        result = await _ingest(
            session,
            [_make_deliverable(teams=[_make_team(tas=[_make_ta("ta1", end=D(12))])])],
            T2,
        )

        assert result.rows_written == {"timeAllocation_diff": 1}
        assert result.counters == ChangeCounters()

    @pytest.mark.asyncio
    async def test_discipline_member_change_repoints_allocation(
        self, session: AsyncSession
    ) -> None:
        await _ingest(
            session,
            [_make_deliverable(teams=[_make_team(tas=[_make_ta("ta1")])])],
            T1,
        )
        ta = _make_ta("ta1", discipline=("disc-1", "Engineering", 6))
        result = await _ingest(
            session, [_make_deliverable(teams=[_make_team(tas=[ta])])], T2
        )

        assert result.rows_written == {"discipline_diff": 1, "timeAllocation_diff": 1}
        current = await SnapshotService(session).get_deliverables_at(T2)
        allocation = current[0].teams[0].time_allocations[0]
        assert allocation.discipline.number_of_members == 6

    @pytest.mark.asyncio
    async def test_removed_allocation_is_tombstoned(self, session: AsyncSession) -> None:
        await _ingest(
            session,
            [
                _make_deliverable(
                    teams=[_make_team(tas=[_make_ta("ta1"), _make_ta("ta2", start=D(10), end=D(20))])]
                )
            ],
            T1,
        )
        result = await _ingest(
            session,
            [_make_deliverable(teams=[_make_team(tas=[_make_ta("ta1")])])],
            T2,
        )

        assert result.rows_written == {"timeAllocation_diff": 1}
        current = await SnapshotService(session).get_deliverables_at(T2)
        assert [ta.uuid for ta in current[0].teams[0].time_allocations] == ["ta1"]


# ---------------------------------------------------------------------------
# Child entities with their own cadence
# ---------------------------------------------------------------------------


class TestChildReconciliation:
    """Teams and cards change without their deliverable changing."""

    @pytest.mark.asyncio
    async def test_team_change_relinks_unchanged_deliverable(
        self, session: AsyncSession
    ) -> None:
        await _ingest(
            session,
            [_make_deliverable(teams=[_make_team(tas=[_make_ta("ta1")])])],
            T1,
        )
        team = _make_team(tas=[_make_ta("ta1")], description="Now builds tools")
        result = await _ingest(session, [_make_deliverable(teams=[team])], T2)

        assert result.counters == ChangeCounters()
        assert result.rows_written["team_diff"] == 1
        assert result.rows_written["deliverable_teams"] == 1
        assert "deliverable_diff" not in result.rows_written
        assert await _count(session, DeliverableDiff) == 1
        assert await _count(session, DeliverableTeam) == 2

        service = SnapshotService(session)
        now = await service.get_deliverables_at(T2)
        before = await service.get_deliverables_at(T1)
        assert now[0].teams[0].description == "Now builds tools"
        assert [ta.uuid for ta in now[0].teams[0].time_allocations] == ["ta1"]
        assert before[0].teams[0].description == "Builds the engine"

    @pytest.mark.asyncio
    async def test_card_change_with_unchanged_deliverable(
        self, session: AsyncSession
    ) -> None:
        await _ingest(session, [_make_deliverable(card=_make_card())], T1)
        result = await _ingest(
            session, [_make_deliverable(card=_make_card(release_title="Alpha 3.19"))], T2
        )

        assert result.rows_written == {"card_diff": 1}
        service = SnapshotService(session)
        assert (await service.get_deliverables_at(T2))[0].card.release_title == "Alpha 3.19"
        assert (await service.get_deliverables_at(T1))[0].card.release_title == "Alpha 3.18"

    @pytest.mark.asyncio
    async def test_shared_card_written_once(self, session: AsyncSession) -> None:
        result = await _ingest(
            session,
            [
                _make_deliverable("d1", "Alpha", card=_make_card("shared")),
                _make_deliverable("d2", "Beta", card=_make_card("shared")),
            ],
            T1,
        )

        assert result.rows_written["card_diff"] == 1
        current = await SnapshotService(session).get_deliverables_at(T1)
        assert {d.card.tid for d in current} == {"shared"}

    @pytest.mark.asyncio
    async def test_card_dropped_from_deliverable(self, session: AsyncSession) -> None:
        await _ingest(session, [_make_deliverable(card=_make_card())], T1)
        result = await _ingest(session, [_make_deliverable()], T2)

        assert result.counters.updated == 1
        assert await _count(session, CardDiff) == 2
        current = await SnapshotService(session).get_deliverables_at(T2)
        assert current[0].card is None

    @pytest.mark.asyncio
    async def test_team_removed_from_roadmap(self, session: AsyncSession) -> None:
        await _ingest(
            session,
            [_make_deliverable(teams=[_make_team(tas=[_make_ta("ta1")])])],
            T1,
        )
        result = await _ingest(session, [_make_deliverable()], T2)

        assert result.counters.updated == 1
        assert result.rows_written["team_diff"] == 1
        assert result.rows_written["timeAllocation_diff"] == 1
        current = await SnapshotService(session).get_deliverables_at(T2)
        assert current[0].teams == []


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class TestIdentity:
    """UUID churn and the announced-title policy."""

    @pytest.mark.asyncio
    async def test_uuid_churn_matched_by_title(self, session: AsyncSession) -> None:
        await _ingest(session, [_make_deliverable("d1", "Alpha")], T1)
        result = await _ingest(session, [_make_deliverable("d9", "Alpha")], T2)

        assert result.counters == ChangeCounters(updated=1)
        current = await SnapshotService(session).get_deliverables_at(T2)
        assert [d.uuid for d in current] == ["d9"]

    @pytest.mark.asyncio
    async def test_uuid_churn_without_title_matching(
        self, session: AsyncSession
    ) -> None:
        with patch.object(settings, "match_announced_by_title", False):
            await _ingest(session, [_make_deliverable("d1", "Alpha")], T1)
            result = await _ingest(session, [_make_deliverable("d9", "Alpha")], T2)
            current = await SnapshotService(session).get_deliverables_at(T2)

        assert result.counters == ChangeCounters(added=1, removed=1)
        assert [d.uuid for d in current] == ["d9"]

    @pytest.mark.asyncio
    async def test_uuid_match_wins_over_earlier_title_match(
        self, session: AsyncSession
    ) -> None:
        await _ingest(session, [_make_deliverable("d1", "Alpha")], T1)

        result = await _ingest(
            session,
            [_make_deliverable("d5", "Alpha"), _make_deliverable("d1", "Alpha")],
            T2,
        )

        assert result.counters == ChangeCounters(added=1)
        assert result.rows_written == {"deliverable_diff": 1}
        rows = (
            (await session.execute(select(DeliverableDiff).where(DeliverableDiff.uuid == "d1")))
            .scalars()
            .all()
        )
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_discipline_uuid_match_wins_over_earlier_title_match(
        self, session: AsyncSession
    ) -> None:
        alpha = _make_deliverable(
            "d1", "Alpha", teams=[_make_team(tas=[_make_ta("ta1")])]
        )
        await _ingest(session, [alpha], T1)

        beta = _make_deliverable(
            "d2",
            "Beta",
            teams=[
                _make_team(
                    "art",
                    "Art Team",
                    tas=[_make_ta("ta2", discipline=("disc-2", "Engineering", 4))],
                )
            ],
        )
        result = await _ingest(session, [beta, alpha], T2)

        assert result.rows_written["discipline_diff"] == 1
        assert result.rows_written["timeAllocation_diff"] == 1
        [disc_2] = (
            (await session.execute(select(DisciplineDiff).where(DisciplineDiff.uuid == "disc-2")))
            .scalars()
            .all()
        )
        assert disc_2.added_date == T2

    @pytest.mark.asyncio
    async def test_unannounced_only_match_by_uuid(self, session: AsyncSession) -> None:
        await _ingest(
            session,
            [
                _make_deliverable("u1", "Unannounced", description="Secret one"),
                _make_deliverable("u2", "Unannounced", description="Secret two"),
            ],
            T1,
        )
        assert len(await SnapshotService(session).get_deliverables_at(T1)) == 2

        result = await _ingest(
            session, [_make_deliverable("u3", "Unannounced", description="Secret one")], T2
        )
        assert result.counters == ChangeCounters(added=1, removed=2)


# ---------------------------------------------------------------------------
# Malformed input
# ---------------------------------------------------------------------------


class TestMalformedEntities:
    """Skipped entities are reported, not treated as removed."""

    @pytest.mark.asyncio
    async def test_skipped_deliverable_not_tombstoned(
        self, session: AsyncSession
    ) -> None:
        await _ingest(
            session,
            [
                _make_deliverable("d1", "Alpha"),
                _make_deliverable(
                    "d2", "Beta", teams=[_make_team("art", tas=[_make_ta("ta9")])]
                ),
            ],
            T1,
        )
        broken = _make_deliverable("d2", "Beta", teams=[_make_team("art", tas=[_make_ta("ta9")])])
        broken["startDate"] = None

        result = await _ingest(session, [_make_deliverable("d1", "Alpha"), broken], T2)

        assert result.counters == ChangeCounters()
        assert result.rows_written == {}
        assert len(result.warnings) == 1
        titles = [d.title for d in await SnapshotService(session).get_deliverables_at(T2)]
        assert sorted(titles) == ["Alpha", "Beta"]


# ---------------------------------------------------------------------------
# Transactions and audit log
# ---------------------------------------------------------------------------


class TestIngestionService:
    """Commit, rollback and the ingestion log."""

    @pytest.mark.asyncio
    async def test_completed_ingestion_is_logged(self, session: AsyncSession) -> None:
        await _ingest(session, [_make_deliverable()], T1)

        result = await session.execute(select(IngestionLog))
        log = result.scalar_one()
        assert log.status == IngestionStatus.COMPLETED
        assert log.observed_at == T1
        assert log.added == 1
        assert log.rows_written == 1

    @pytest.mark.asyncio
    async def test_failure_rolls_back_every_row(self, session: AsyncSession) -> None:
        raw = [_make_deliverable(teams=[_make_team(tas=[_make_ta("ta1")])])]
        with patch.object(
            LedgerIngestor,
            "_relink_unchanged",
            new_callable=AsyncMock,
            side_effect=RuntimeError("database went away"),
        ):
            with pytest.raises(IngestionError) as exc_info:
                await _ingest(session, raw, T1)

        assert exc_info.value.observed_at == T1
        assert await _count(session, DeliverableDiff) == 0
        assert await _count(session, TeamDiff) == 0
        assert await _count(session, TimeAllocationDiff) == 0

        result = await session.execute(select(IngestionLog))
        log = result.scalar_one()
        assert log.status == IngestionStatus.FAILED
        assert "database went away" in log.error_message

    @pytest.mark.asyncio
    async def test_capture_older_than_latest_rejected(
        self, session: AsyncSession
    ) -> None:
        await _ingest(session, [_make_deliverable()], T2)

        with pytest.raises(IngestionError):
            await _ingest(session, [], T1)
        assert await _count(session, DeliverableDiff) == 1

    @pytest.mark.asyncio
    async def test_unchanged_snapshot_is_still_a_capture(
        self, session: AsyncSession
    ) -> None:
        await _ingest(session, [_make_deliverable()], T1)
        await _ingest(session, [_make_deliverable()], T2)

        assert await SnapshotService(session).capture_dates() == [T2, T1]

    @pytest.mark.asyncio
    async def test_seed_from_directory(self, session: AsyncSession, tmp_path) -> None:
        (tmp_path / "20220101.json").write_text(json.dumps([_make_deliverable(end=D(10))]))
        (tmp_path / "20220201.json").write_text(json.dumps([_make_deliverable(end=D(20))]))
        (tmp_path / "notes.json").write_text("[]")

        service = RoadmapIngestionService(session)
        results = await service.seed_from_directory(tmp_path)

        assert [r.counters for r in results] == [
            ChangeCounters(added=1),
            ChangeCounters(updated=1),
        ]
        assert results[0].observed_at < results[1].observed_at
        assert await service.seed_from_directory(tmp_path) == []

    @pytest.mark.asyncio
    async def test_pull_ingests_fetched_snapshot(self, session: AsyncSession) -> None:
        class _Source:
            async def fetch_deliverables(self, offset: int, limit: int) -> DeliverablePage:
                deliverable = _make_deliverable()
                deliverable.pop("teams")
                return DeliverablePage(total_count=1, items=[deliverable] if offset == 0 else [])

            async def fetch_teams(self, deliverable_slug: str) -> list[dict[str, Any]]:
                return [_make_team(tas=[{"uuid": "ta1", "startDate": D(0), "endDate": D(5)}])]

            async def fetch_disciplines(
                self, team_slug: str, deliverable_slug: str
            ) -> list[dict[str, Any]]:
                return [
                    {
                        "uuid": "disc-1",
                        "title": "Engineering",
                        "numberOfMembers": 3,
                        "timeAllocations": [{"uuid": "ta1"}],
                    }
                ]

        result = await RoadmapIngestionService(session).pull(_Source(), T1)

        assert result.counters == ChangeCounters(added=1)
        current = await SnapshotService(session).get_deliverables_at(T1)
        allocation = current[0].teams[0].time_allocations[0]
        assert allocation.discipline.title == "Engineering"

    @pytest.mark.asyncio
    async def test_pull_discards_incomplete_batch(self, session: AsyncSession) -> None:
        source = AsyncMock()
        source.fetch_deliverables.side_effect = ConnectionError("upstream down")

        with pytest.raises(IncompleteBatchError):
            await RoadmapIngestionService(session).pull(source, T1)

        assert await _count(session, DeliverableDiff) == 0
        result = await session.execute(select(IngestionLog))
        assert result.scalar_one().status == IngestionStatus.FAILED
