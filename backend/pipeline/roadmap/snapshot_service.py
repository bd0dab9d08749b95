"""Point-in-time reconstruction of the roadmap.

Core read primitives for retrieving the roadmap as it looked at any moment.
These are used by the diff engine, the schedule view, the export and the API;
nothing else reads the ledger tables.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.enums import CardCategory, Project
from app.models.ledger import (
    CardDiff,
    DeliverableDiff,
    DeliverableTeam,
    DisciplineDiff,
    TeamDiff,
    TimeAllocationDiff,
)
from pipeline.roadmap.identity import TitleFallbackIdentity, dedupe_announced, deliverable_identity
from pipeline.roadmap.ledger import LedgerStore

logger = logging.getLogger(__name__)


@dataclass
class DisciplineState:
    uuid: str
    title: str | None
    number_of_members: int | None
    row_id: int


@dataclass
class TimeAllocationState:
    uuid: str
    start_date: int
    end_date: int
    partial_time: bool
    row_id: int
    discipline: DisciplineState | None = None


@dataclass
class TeamState:
    """A team as assigned to one deliverable, with that deliverable's allocations."""

    slug: str
    abbreviation: str | None
    title: str | None
    description: str | None
    start_date: int | None
    end_date: int | None
    number_of_deliverables: int | None
    row_id: int
    time_allocations: list[TimeAllocationState] = field(default_factory=list)


@dataclass
class CardState:
    tid: str
    title: str | None
    description: str | None
    category: CardCategory | None
    release_id: str | None
    release_title: str | None
    update_date: int | None
    thumbnail: str | None
    row_id: int


@dataclass
class DeliverableState:
    """The state of a deliverable at a particular moment."""

    uuid: str
    slug: str | None
    title: str
    description: str | None
    start_date: int
    end_date: int
    update_date: int | None
    number_of_disciplines: int | None
    number_of_teams: int | None
    total_count: int | None
    projects: list[Project]
    added_date: int
    row_ids: list[int]
    card: CardState | None = None
    teams: list[TeamState] = field(default_factory=list)

    def team(self, slug: str) -> TeamState | None:
        for team in self.teams:
            if team.slug == slug:
                return team
        return None


def _card_state(row: CardDiff) -> CardState:
    return CardState(
        tid=row.tid,
        title=row.title,
        description=row.description,
        category=CardCategory.parse(row.category),
        release_id=row.release_id,
        release_title=row.release_title,
        update_date=row.update_date,
        thumbnail=row.thumbnail,
        row_id=row.id,
    )


def _team_state(row: TeamDiff) -> TeamState:
    return TeamState(
        slug=row.slug,
        abbreviation=row.abbreviation,
        title=row.title,
        description=row.description,
        start_date=row.start_date,
        end_date=row.end_date,
        number_of_deliverables=row.number_of_deliverables,
        row_id=row.id,
    )


class SnapshotService:
    """Service for reconstructing the roadmap at any capture time.

    Only changed entities get new ledger rows, so the state at time T is the
    most recent row per business id with ``addedDate <= T``, minus tombstones,
    joined back together through row ids.
    """

    def __init__(
        self,
        session: AsyncSession,
        identity: TitleFallbackIdentity | None = None,
    ):
        self.session = session
        self.store = LedgerStore(session)
        self.identity = identity or deliverable_identity(
            settings.unannounced_marker, settings.match_announced_by_title
        )

    async def capture_dates(self) -> list[int]:
        """All capture times, newest first."""
        return await self.store.capture_dates()

    async def resolve_capture(self, moment: int) -> int | None:
        """The closest capture at or before ``moment`` (None if there is none)."""
        for capture in await self.capture_dates():
            if capture <= moment:
                return capture
        return None

    async def removed_deliverable_keys(self, as_of: int) -> set[str]:
        """UUIDs and announced titles of deliverables tombstoned at or before ``as_of``."""
        keys: set[str] = set()
        for row in await self.store.tombstoned_deliverables(as_of):
            keys.add(row.uuid)
            if self.identity.match_titles and self.identity.is_announced(row):
                keys.add(row.title)
        return keys

    async def get_deliverables_at(
        self, as_of: int, alphabetize: bool = False
    ) -> list[DeliverableState]:
        """Materialize every live deliverable as of ``as_of``.

        Args:
            as_of: Moment (epoch ms) to reconstruct.
            alphabetize: Sort by title instead of most recently changed first.

        Returns:
            List of DeliverableState with teams, time allocations,
            disciplines and card attached.
        """
        rows = await self.store.latest(DeliverableDiff, as_of)
        current = [
            kept
            for kept, _ in dedupe_announced(rows, self.identity)
            if not kept.is_tombstone
        ]
        if not current:
            return []
        current_ids = {row.id for row in current}

        teams_by_slug = {
            row.slug: row for row in await self.store.latest(TeamDiff, as_of)
        }
        links = await self.store.links(deliverable_ids=current_ids)
        linked_teams = await self.store.rows_by_id(TeamDiff, (l.team_id for l in links))
        slugs_by_deliverable = self._linked_slugs(links, linked_teams, as_of)

        allocations = [
            ta
            for ta in await self.store.latest(TimeAllocationDiff, as_of)
            if ta.deliverable_id in current_ids
            and not ta.is_tombstone
            and ta.start_date is not None
            and ta.end_date is not None
        ]
        allocation_teams = await self.store.rows_by_id(
            TeamDiff, (ta.team_id for ta in allocations if ta.team_id)
        )
        disciplines = await self.store.rows_by_id(
            DisciplineDiff, (ta.discipline_id for ta in allocations if ta.discipline_id)
        )
        cards = await self._cards(current, as_of)

        # (deliverable row id, team slug) -> allocations
        grouped: dict[tuple[int, str], list[TimeAllocationState]] = {}
        for ta in allocations:
            team = allocation_teams.get(ta.team_id)
            if team is None:
                continue
            discipline = disciplines.get(ta.discipline_id)
            grouped.setdefault((ta.deliverable_id, team.slug), []).append(
                TimeAllocationState(
                    uuid=ta.uuid,
                    start_date=ta.start_date,
                    end_date=ta.end_date,
                    partial_time=bool(ta.partial_time),
                    row_id=ta.id,
                    discipline=DisciplineState(
                        uuid=discipline.uuid,
                        title=discipline.title,
                        number_of_members=discipline.number_of_members,
                        row_id=discipline.id,
                    )
                    if discipline is not None
                    else None,
                )
            )

        deliverables = []
        for row in current:
            teams = []
            for slug in sorted(slugs_by_deliverable.get(row.id, ())):
                team_row = teams_by_slug.get(slug)
                if team_row is None or team_row.is_tombstone:
                    continue
                team = _team_state(team_row)
                team.time_allocations = sorted(
                    grouped.get((row.id, slug), []),
                    key=lambda ta: (ta.start_date, ta.end_date, ta.uuid),
                )
                teams.append(team)

            deliverables.append(
                DeliverableState(
                    uuid=row.uuid,
                    slug=row.slug,
                    title=row.title,
                    description=row.description,
                    start_date=row.start_date,
                    end_date=row.end_date,
                    update_date=row.update_date,
                    number_of_disciplines=row.number_of_disciplines,
                    number_of_teams=row.number_of_teams,
                    total_count=row.total_count,
                    projects=row.projects,
                    added_date=row.added_date,
                    row_ids=[row.id],
                    card=cards.get(row.card_id) if row.card_id else None,
                    teams=teams,
                )
            )

        if alphabetize:
            deliverables.sort(key=lambda d: d.title.lower())
        logger.debug(f"Reconstructed {len(deliverables)} deliverables at {as_of}")
        return deliverables

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _linked_slugs(
        links: list[DeliverableTeam],
        linked_teams: dict[int, TeamDiff],
        as_of: int,
    ) -> dict[int, set[str]]:
        """Team slugs linked to each deliverable row through teams known by ``as_of``."""
        slugs: dict[int, set[str]] = {}
        for link in links:
            team = linked_teams.get(link.team_id)
            if team is not None and team.added_date <= as_of:
                slugs.setdefault(link.deliverable_id, set()).add(team.slug)
        return slugs

    async def _cards(
        self, deliverables: list[DeliverableDiff], as_of: int
    ) -> dict[int, CardState]:
        """Card state as of ``as_of`` keyed by the card row id each deliverable holds."""
        referenced = await self.store.rows_by_id(
            CardDiff, (d.card_id for d in deliverables if d.card_id)
        )
        if not referenced:
            return {}
        latest_by_tid = {row.tid: row for row in await self.store.latest(CardDiff, as_of)}
        cards = {}
        for row_id, row in referenced.items():
            latest = latest_by_tid.get(row.tid)
            if latest is not None and not latest.is_tombstone:
                cards[row_id] = _card_state(latest)
        return cards
