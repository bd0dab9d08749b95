"""Snapshot ingestion into the append-only roadmap ledger.

``LedgerIngestor`` compares a parsed snapshot against the latest ledger state
and appends only what changed:

1. match incoming deliverables to ledger rows (UUID, then title),
2. tombstone every entity that disappeared from the snapshot,
3. write new versions of teams, disciplines and cards,
4. write new versions of deliverables with their team links and
   time allocations,
5. re-point links of unchanged deliverables to re-versioned teams,
6. count added / removed / updated / re-added deliverables.

Everything happens inside the caller's transaction; ``RoadmapIngestionService``
owns the commit, the rollback and the audit log.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.base import Base
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
from pipeline.roadmap.dates import ms_to_iso, now_ms, parse_capture_date
from pipeline.roadmap.errors import IncompleteBatchError, IngestionError
from pipeline.roadmap.feed import (
    FeedCard,
    FeedDeliverable,
    FeedDiscipline,
    FeedTeam,
    FeedTimeAllocation,
    FeedWarning,
    RoadmapSnapshot,
    parse_snapshot,
)
from pipeline.roadmap.fetch import RoadmapSource, fetch_roadmap
from pipeline.roadmap.identity import (
    KeyIdentity,
    TitleFallbackIdentity,
    card_identity,
    dedupe_announced,
    deliverable_identity,
    discipline_identity,
    team_identity,
)
from pipeline.roadmap.ledger import LedgerStore

logger = logging.getLogger(__name__)


@dataclass
class ChangeCounters:
    """Deliverable-level change counts for one ingestion."""

    added: int = 0
    removed: int = 0
    updated: int = 0
    readded: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.updated)


@dataclass
class IngestResult:
    """Summary returned by RoadmapIngestionService.ingest."""

    observed_at: int
    counters: ChangeCounters
    deliverables_seen: int
    rows_written: dict[str, int] = field(default_factory=dict)
    warnings: list[FeedWarning] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def total_rows_written(self) -> int:
        return sum(self.rows_written.values())


# ---------------------------------------------------------------------------
# Field comparison
# ---------------------------------------------------------------------------


def _team_changed(row: TeamDiff, team: FeedTeam) -> bool:
    return (
        row.abbreviation,
        row.title,
        row.description,
        row.start_date,
        row.end_date,
        row.number_of_deliverables,
    ) != (
        team.abbreviation,
        team.title,
        team.description,
        team.start_date,
        team.end_date,
        team.number_of_deliverables,
    )


def _discipline_changed(row: DisciplineDiff, discipline: FeedDiscipline) -> bool:
    return (row.uuid, row.title, row.number_of_members) != (
        discipline.uuid,
        discipline.title,
        discipline.number_of_members,
    )


def _card_changed(row: CardDiff, card: FeedCard) -> bool:
    category = card.category.value if card.category is not None else None
    return (
        row.title,
        row.description,
        row.category,
        row.release_id,
        row.release_title,
        row.update_date,
        row.thumbnail,
    ) != (
        card.title,
        card.description,
        category,
        card.release_id,
        card.release_title,
        card.update_date,
        card.thumbnail,
    )


def _deliverable_fields(deliverable: FeedDeliverable) -> tuple[Any, ...]:
    return (
        deliverable.uuid,
        deliverable.slug,
        deliverable.title,
        deliverable.description,
        deliverable.start_date,
        deliverable.end_date,
        deliverable.update_date,
        deliverable.number_of_disciplines,
        deliverable.number_of_teams,
        deliverable.total_count,
        deliverable.project_ids or None,
    )


def _row_fields(row: DeliverableDiff) -> tuple[Any, ...]:
    return (
        row.uuid,
        row.slug,
        row.title,
        row.description,
        row.start_date,
        row.end_date,
        row.update_date,
        row.number_of_disciplines,
        row.number_of_teams,
        row.total_count,
        row.project_ids or None,
    )


# ---------------------------------------------------------------------------
# Ingestor
# ---------------------------------------------------------------------------


class LedgerIngestor:
    """Appends the changes between a snapshot and the ledger's latest state.

    One instance handles one ingestion; it does not commit.
    """

    def __init__(
        self,
        session: AsyncSession,
        unannounced_marker: str | None = None,
        match_by_title: bool | None = None,
    ) -> None:
        marker = unannounced_marker or settings.unannounced_marker
        match_titles = (
            settings.match_announced_by_title if match_by_title is None else match_by_title
        )
        self.store = LedgerStore(session)
        self.deliverable_identity: TitleFallbackIdentity = deliverable_identity(
            marker, match_titles
        )
        self.discipline_identity: TitleFallbackIdentity = discipline_identity(
            marker, match_titles
        )
        self.team_identity: KeyIdentity = team_identity()
        self.card_identity: KeyIdentity = card_identity()

        self.counters = ChangeCounters()
        self.rows_written: dict[str, int] = {}
        self._links: set[tuple[int, int]] = set()

    async def insert_changes(
        self, snapshot: RoadmapSnapshot, observed_at: int
    ) -> ChangeCounters:
        """Append the snapshot's changes with ``added_date = observed_at``.

        Args:
            snapshot: Parsed, complete roadmap capture.
            observed_at: Capture time in epoch ms.

        Returns:
            ChangeCounters for the deliverables.
        """
        self.observed_at = observed_at
        await self._load()

        matches = self._match_deliverables(snapshot)
        self._tombstone_deliverables(snapshot, matches)
        self._tombstone_by_key(
            self.known_teams,
            {t.slug for t in snapshot.teams()} | snapshot.skipped_teams,
            self._team_tombstone,
        )
        self._tombstone_by_key(
            self.known_time_allocations.values(),
            {ta.uuid for ta in snapshot.time_allocations()}
            | snapshot.skipped_time_allocations,
            self._time_allocation_tombstone,
        )
        self._tombstone_by_key(
            self.known_cards,
            {c.tid for c in snapshot.cards()} | snapshot.skipped_cards,
            self._card_tombstone,
        )

        self._write_teams(snapshot)
        self._write_disciplines(snapshot)
        self._write_cards(snapshot)
        await self.store.flush()

        written = self._write_deliverables(matches)
        await self.store.flush()

        self._write_links_and_allocations(written)
        await self._relink_unchanged(written)
        await self.store.flush()

        logger.info(
            f"Ledger changes at {ms_to_iso(observed_at)}: "
            f"+{self.counters.added} ~{self.counters.updated} "
            f"-{self.counters.removed} (re-added {self.counters.readded}), "
            f"{sum(self.rows_written.values())} rows"
        )
        return self.counters

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _load(self) -> None:
        store = self.store
        latest_deliverables = await store.latest(DeliverableDiff)
        self.known_deliverables = [
            kept
            for kept, _ in dedupe_announced(latest_deliverables, self.deliverable_identity)
        ]
        self.known_teams = await store.latest(TeamDiff)
        self.known_disciplines = await store.latest(DisciplineDiff)
        self.known_time_allocations = {
            row.uuid: row for row in await store.latest(TimeAllocationDiff)
        }
        self.known_cards = await store.latest(CardDiff)

        self.team_rows: dict[str, TeamDiff] = {t.slug: t for t in self.known_teams}
        self.card_rows: dict[str, CardDiff] = {c.tid: c for c in self.known_cards}
        self.discipline_rows: dict[str, DisciplineDiff] = {}
        self.team_remap: dict[int, TeamDiff] = {}

        deliverable_ids = [d.id for d in self.known_deliverables]
        links = await store.links(deliverable_ids=deliverable_ids)
        self._links = {(link.deliverable_id, link.team_id) for link in links}
        linked_teams = await store.rows_by_id(TeamDiff, (l.team_id for l in links))
        self.team_slugs: dict[int, set[str]] = {}
        for link in links:
            team = linked_teams.get(link.team_id)
            if team is not None:
                self.team_slugs.setdefault(link.deliverable_id, set()).add(team.slug)

        cards = await store.rows_by_id(
            CardDiff, (d.card_id for d in self.known_deliverables if d.card_id)
        )
        self.card_tids: dict[int, str] = {row_id: c.tid for row_id, c in cards.items()}

    def _append(self, row: Base) -> None:
        self.store.append(row)
        name = type(row).__tablename__
        self.rows_written[name] = self.rows_written.get(name, 0) + 1

    # ------------------------------------------------------------------
    # Step 1-2: matching and tombstones
    # ------------------------------------------------------------------

    def _match_deliverables(
        self, snapshot: RoadmapSnapshot
    ) -> list[tuple[FeedDeliverable, DeliverableDiff | None]]:
        matches = self.deliverable_identity.resolve_all(
            self.known_deliverables, snapshot.deliverables
        )
        return list(zip(snapshot.deliverables, matches))

    def _tombstone_deliverables(
        self,
        snapshot: RoadmapSnapshot,
        matches: list[tuple[FeedDeliverable, DeliverableDiff | None]],
    ) -> None:
        claimed = {match.id for _, match in matches if match is not None}
        skipped = snapshot.skipped_deliverables
        for row in self.known_deliverables:
            if row.id in claimed or row.is_tombstone:
                continue
            if row.uuid in skipped or (
                self.deliverable_identity.is_announced(row) and row.title in skipped
            ):
                continue
            self._append(
                DeliverableDiff(
                    uuid=row.uuid,
                    slug=row.slug,
                    title=row.title,
                    description=row.description,
                    total_count=row.total_count,
                    added_date=self.observed_at,
                )
            )
            self.counters.removed += 1

    def _tombstone_by_key(self, rows, present: set[str], make_tombstone) -> None:
        for row in rows:
            key = getattr(row, row.__business_key__)
            if key not in present and not row.is_tombstone:
                self._append(make_tombstone(row))

    def _team_tombstone(self, row: TeamDiff) -> TeamDiff:
        return TeamDiff(
            slug=row.slug,
            abbreviation=row.abbreviation,
            title=row.title,
            description=row.description,
            number_of_deliverables=row.number_of_deliverables,
            added_date=self.observed_at,
        )

    def _time_allocation_tombstone(self, row: TimeAllocationDiff) -> TimeAllocationDiff:
        return TimeAllocationDiff(
            uuid=row.uuid,
            team_id=row.team_id,
            deliverable_id=row.deliverable_id,
            discipline_id=row.discipline_id,
            added_date=self.observed_at,
        )

    def _card_tombstone(self, row: CardDiff) -> CardDiff:
        return CardDiff(
            tid=row.tid,
            title=row.title,
            description=row.description,
            category=row.category,
            thumbnail=row.thumbnail,
            added_date=self.observed_at,
        )

    # ------------------------------------------------------------------
    # Step 3: teams, disciplines, cards
    # ------------------------------------------------------------------

    def _write_teams(self, snapshot: RoadmapSnapshot) -> None:
        for team in snapshot.teams():
            match = self.team_identity.resolve(self.known_teams, team)
            if match is not None and not _team_changed(match, team):
                continue
            row = TeamDiff(
                slug=team.slug,
                abbreviation=team.abbreviation,
                title=team.title,
                description=team.description,
                start_date=team.start_date,
                end_date=team.end_date,
                number_of_deliverables=team.number_of_deliverables,
                added_date=self.observed_at,
            )
            self._append(row)
            self.team_rows[team.slug] = row
            if match is not None:
                self.team_remap[match.id] = row

    def _write_disciplines(self, snapshot: RoadmapSnapshot) -> None:
        incoming: dict[str, FeedDiscipline] = {}
        for ta in snapshot.time_allocations():
            if ta.discipline is not None:
                incoming.setdefault(ta.discipline.uuid, ta.discipline)

        # Title fallback only reaches rows whose UUID left the feed.
        matches = self.discipline_identity.resolve_all(
            self.known_disciplines,
            list(incoming.values()),
            fallback=lambda row: row.uuid not in incoming,
        )
        for (uuid, discipline), match in zip(incoming.items(), matches):
            if match is not None and not _discipline_changed(match, discipline):
                self.discipline_rows[uuid] = match
                continue
            row = DisciplineDiff(
                uuid=discipline.uuid,
                title=discipline.title,
                number_of_members=discipline.number_of_members,
                added_date=self.observed_at,
            )
            self._append(row)
            self.discipline_rows[uuid] = row

        present = set(incoming) | snapshot.skipped_disciplines
        for row in self.known_disciplines:
            if row.uuid in present or row.is_tombstone:
                continue
            self._append(
                DisciplineDiff(uuid=row.uuid, title=row.title, added_date=self.observed_at)
            )

    def _write_cards(self, snapshot: RoadmapSnapshot) -> None:
        written: set[str] = set()
        for card in snapshot.cards():
            if card.tid in written:
                continue
            written.add(card.tid)
            match = self.card_identity.resolve(self.known_cards, card)
            if match is not None and not match.is_tombstone and not _card_changed(match, card):
                continue
            row = CardDiff(
                tid=card.tid,
                title=card.title,
                description=card.description,
                category=card.category.value if card.category is not None else None,
                release_id=card.release_id,
                release_title=card.release_title,
                update_date=card.update_date,
                thumbnail=card.thumbnail,
                added_date=self.observed_at,
            )
            self._append(row)
            self.card_rows[card.tid] = row

    # ------------------------------------------------------------------
    # Step 4: deliverables, links, time allocations
    # ------------------------------------------------------------------

    def _deliverable_changed(
        self, row: DeliverableDiff, deliverable: FeedDeliverable
    ) -> bool:
        if row.is_tombstone or _row_fields(row) != _deliverable_fields(deliverable):
            return True
        incoming_tid = deliverable.card.tid if deliverable.card else None
        current_tid = self.card_tids.get(row.card_id) if row.card_id else None
        if current_tid != incoming_tid:
            return True
        return self.team_slugs.get(row.id, set()) != {t.slug for t in deliverable.teams}

    def _write_deliverables(
        self, matches: list[tuple[FeedDeliverable, DeliverableDiff | None]]
    ) -> list[tuple[FeedDeliverable, DeliverableDiff, bool]]:
        """Returns (incoming, current row, row is new) per incoming deliverable."""
        written = []
        for deliverable, match in matches:
            if match is not None and not self._deliverable_changed(match, deliverable):
                written.append((deliverable, match, False))
                continue

            card = self.card_rows.get(deliverable.card.tid) if deliverable.card else None
            row = DeliverableDiff(
                uuid=deliverable.uuid,
                slug=deliverable.slug,
                title=deliverable.title,
                description=deliverable.description,
                start_date=deliverable.start_date,
                end_date=deliverable.end_date,
                update_date=deliverable.update_date,
                number_of_disciplines=deliverable.number_of_disciplines,
                number_of_teams=deliverable.number_of_teams,
                total_count=deliverable.total_count,
                project_ids=deliverable.project_ids or None,
                card_id=card.id if card is not None else None,
                added_date=self.observed_at,
            )
            self._append(row)
            written.append((deliverable, row, True))

            if match is None:
                self.counters.added += 1
            elif match.is_tombstone:
                self.counters.added += 1
                self.counters.readded += 1
            else:
                self.counters.updated += 1
        return written

    def _link(self, deliverable_id: int, team_id: int) -> None:
        if (deliverable_id, team_id) in self._links:
            return
        self._links.add((deliverable_id, team_id))
        self._append(DeliverableTeam(deliverable_id=deliverable_id, team_id=team_id))

    def _write_links_and_allocations(
        self, written: list[tuple[FeedDeliverable, DeliverableDiff, bool]]
    ) -> None:
        seen_allocations: set[str] = set()
        for deliverable, row, is_new in written:
            for team in deliverable.teams:
                team_row = self.team_rows[team.slug]
                if is_new:
                    self._link(row.id, team_row.id)
                for ta in team.time_allocations:
                    if ta.uuid in seen_allocations:
                        continue
                    seen_allocations.add(ta.uuid)
                    self._write_time_allocation(ta, team_row, row)

    def _write_time_allocation(
        self, ta: FeedTimeAllocation, team: TeamDiff, deliverable: DeliverableDiff
    ) -> None:
        discipline = (
            self.discipline_rows.get(ta.discipline.uuid) if ta.discipline else None
        )
        fields = (
            ta.start_date,
            ta.end_date,
            int(ta.partial_time),
            team.id,
            deliverable.id,
            discipline.id if discipline is not None else None,
        )
        match = self.known_time_allocations.get(ta.uuid)
        if match is not None and (
            match.start_date,
            match.end_date,
            match.partial_time,
            match.team_id,
            match.deliverable_id,
            match.discipline_id,
        ) == fields:
            return
        self._append(
            TimeAllocationDiff(
                uuid=ta.uuid,
                start_date=ta.start_date,
                end_date=ta.end_date,
                partial_time=int(ta.partial_time),
                team_id=team.id,
                deliverable_id=deliverable.id,
                discipline_id=discipline.id if discipline is not None else None,
                added_date=self.observed_at,
            )
        )

    # ------------------------------------------------------------------
    # Step 5: re-point links of unchanged deliverables
    # ------------------------------------------------------------------

    async def _relink_unchanged(
        self, written: list[tuple[FeedDeliverable, DeliverableDiff, bool]]
    ) -> None:
        if not self.team_remap:
            return
        reused = {row.id for _, row, is_new in written if not is_new}
        if not reused:
            return
        links = await self.store.links(team_ids=self.team_remap)
        for link in links:
            if link.deliverable_id in reused:
                self._link(link.deliverable_id, self.team_remap[link.team_id].id)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class RoadmapIngestionService:
    """Runs ingestions as single transactions with an audit trail."""

    def __init__(self, session: AsyncSession, source: str = "progress-tracker") -> None:
        self.session = session
        self.source = source

    async def ingest(
        self, snapshot: RoadmapSnapshot, observed_at: int | None = None
    ) -> IngestResult:
        """Ingest a parsed snapshot and commit.

        Args:
            snapshot: Complete, parsed capture.
            observed_at: Capture time in epoch ms (default: now).

        Returns:
            IngestResult with the change counters.

        Raises:
            IngestionError: The transaction failed and was rolled back. A
                failed IngestionLog entry is recorded.
        """
        observed_at = observed_at if observed_at is not None else now_ms()
        start_time = time.monotonic()

        try:
            latest = await LedgerStore(self.session).capture_dates()
            if latest and observed_at <= latest[0]:
                raise ValueError(
                    f"capture time {ms_to_iso(observed_at)} is not after the "
                    f"latest capture {ms_to_iso(latest[0])}"
                )

            log = IngestionLog(
                source=self.source,
                observed_at=observed_at,
                status=IngestionStatus.RUNNING,
                deliverables_seen=len(snapshot.deliverables),
                warnings=len(snapshot.warnings),
            )
            self.session.add(log)

            ingestor = LedgerIngestor(self.session)
            counters = await ingestor.insert_changes(snapshot, observed_at)

            log.status = IngestionStatus.COMPLETED
            log.completed_at = datetime.now(timezone.utc)
            log.added = counters.added
            log.removed = counters.removed
            log.updated = counters.updated
            log.readded = counters.readded
            log.rows_written = sum(ingestor.rows_written.values())
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Ingestion at {ms_to_iso(observed_at)} failed: {e}")
            await self._record_failure(observed_at, str(e), len(snapshot.deliverables))
            raise IngestionError(observed_at, str(e)) from e

        elapsed = time.monotonic() - start_time
        logger.info(
            f"Ingested {len(snapshot.deliverables)} deliverables at "
            f"{ms_to_iso(observed_at)} in {elapsed:.1f}s"
        )
        return IngestResult(
            observed_at=observed_at,
            counters=counters,
            deliverables_seen=len(snapshot.deliverables),
            rows_written=dict(ingestor.rows_written),
            warnings=list(snapshot.warnings),
            elapsed_seconds=elapsed,
        )

    async def ingest_raw(
        self, raw_deliverables: list[dict[str, Any]], observed_at: int | None = None
    ) -> IngestResult:
        return await self.ingest(parse_snapshot(raw_deliverables), observed_at)

    async def ingest_file(self, path: Path, observed_at: int | None = None) -> IngestResult:
        """Ingest a JSON capture (a list of deliverables) from disk."""
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
        return await self.ingest_raw(raw, observed_at)

    async def pull(
        self, source: RoadmapSource, observed_at: int | None = None
    ) -> IngestResult:
        """Fetch a complete snapshot from ``source`` and ingest it.

        An incomplete batch is recorded as a failed ingestion and re-raised;
        nothing is written to the ledger.
        """
        observed_at = observed_at if observed_at is not None else now_ms()
        try:
            raw = await fetch_roadmap(source)
        except IncompleteBatchError as e:
            logger.error(f"Discarding incomplete batch: {e}")
            await self._record_failure(observed_at, str(e), 0)
            raise
        return await self.ingest_raw(raw, observed_at)

    async def seed_from_directory(self, directory: Path) -> list[IngestResult]:
        """Ingest dated captures ("YYYYMMDD.json") in chronological order.

        Only runs against an empty ledger; returns [] otherwise.
        """
        if not await LedgerStore(self.session).is_empty():
            logger.info("Ledger already populated, skipping seed")
            return []

        captures = []
        for path in Path(directory).glob("*.json"):
            try:
                captures.append((parse_capture_date(path.stem), path))
            except ValueError:
                logger.warning(f"Skipping {path.name}: file name is not a date")
        captures.sort()

        results = []
        for observed_at, path in captures:
            logger.info(f"Seeding from {path.name}")
            results.append(await self.ingest_file(path, observed_at))
        return results

    async def _record_failure(
        self, observed_at: int, message: str, deliverables_seen: int
    ) -> None:
        self.session.add(
            IngestionLog(
                source=self.source,
                observed_at=observed_at,
                status=IngestionStatus.FAILED,
                completed_at=datetime.now(timezone.utc),
                deliverables_seen=deliverables_seen,
                error_message=message[:2000],
            )
        )
        await self.session.commit()
