"""Capture-to-capture delta engine for the roadmap.

Compares two reconstructions and classifies every deliverable as added,
removed, updated or unchanged. Updates carry typed change items (date shifts,
text changes, team work changes, card changes) for an external renderer; no
formatted text is produced here.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from pipeline.roadmap.dates import ms_to_days, ms_to_iso, now_ms
from pipeline.roadmap.errors import InsufficientDataError
from pipeline.roadmap.identity import TitleFallbackIdentity
from pipeline.roadmap.schedule import (
    allocation_ranges,
    calculate_task_load,
    merged_span,
)
from pipeline.roadmap.snapshot_service import (
    CardState,
    DeliverableState,
    SnapshotService,
    TeamState,
)

logger = logging.getLogger(__name__)

CARD_FIELDS = ("title", "description", "category", "release_title")


class DateShiftKind(str, Enum):
    CORRECTED = "corrected"
    MOVED_CLOSER = "moved_closer"
    PUSHED_BACK = "pushed_back"
    MOVED_EARLIER = "moved_earlier"  # end date now in the past; allocations likely removed
    EXTENDED = "extended"


class TeamChangeKind(str, Enum):
    ASSIGNED = "assigned"
    ADDED = "added"
    FREED = "freed"
    REMOVED = "removed"


@dataclass
class DateShift:
    field: str  # "start_date" or "end_date"
    kind: DateShiftKind
    old: int
    new: int


@dataclass
class TextChange:
    field: str  # "title" or "description"
    old: str | None
    new: str | None


@dataclass
class TeamWorkChange:
    slug: str
    title: str | None
    kind: TeamChangeKind
    days: int
    revealed: bool = False  # assigned work had already started at compare time


@dataclass
class CardChange:
    field: str
    old: str | None
    new: str | None


@dataclass
class DisciplineWorkload:
    """Remaining work of one discipline on a newly added deliverable."""

    title: str | None
    number_of_members: int | None
    full_time: int
    part_time: int
    load: float | None  # None when no tasks remain

    @property
    def tasks(self) -> int:
        return self.full_time + self.part_time


@dataclass
class TeamAssignment:
    slug: str
    title: str | None
    first_start: int | None
    began: bool
    disciplines: list[DisciplineWorkload] = field(default_factory=list)


@dataclass
class RemovedDeliverable:
    deliverable: DeliverableState
    freed_teams: list[str] = field(default_factory=list)


@dataclass
class AddedDeliverable:
    deliverable: DeliverableState
    readded: bool = False
    teams: list[TeamAssignment] = field(default_factory=list)


@dataclass
class UpdatedDeliverable:
    before: DeliverableState
    after: DeliverableState
    date_shifts: list[DateShift] = field(default_factory=list)
    text_changes: list[TextChange] = field(default_factory=list)
    team_changes: list[TeamWorkChange] = field(default_factory=list)
    card_changes: list[CardChange] = field(default_factory=list)
    removed_from_release: bool = False


@dataclass
class RoadmapDelta:
    """Full delta between two captures."""

    start: int
    end: int
    compare_time: int
    deliverable_count: int
    removed: list[RemovedDeliverable] = field(default_factory=list)
    added: list[AddedDeliverable] = field(default_factory=list)
    updated: list[UpdatedDeliverable] = field(default_factory=list)
    unchanged: int = 0
    elapsed_seconds: float = 0.0

    @property
    def readded(self) -> int:
        return sum(1 for a in self.added if a.readded)

    @property
    def has_changes(self) -> bool:
        return bool(self.removed or self.added or self.updated)

    @property
    def summary(self) -> str:
        if not self.has_changes:
            return "no changes detected"
        returning = f" ({self.readded} returning)" if self.readded else ""
        return (
            f"{len(self.added)} additions, {len(self.removed)} removals, "
            f"{len(self.updated)} updates{returning}"
        )


# ---------------------------------------------------------------------------
# Change items
# ---------------------------------------------------------------------------


def start_date_shift(old: int, new: int, compare_time: int) -> DateShiftKind | None:
    if old == new:
        return None
    if old < compare_time and new < compare_time:
        return DateShiftKind.CORRECTED
    return DateShiftKind.MOVED_CLOSER if new < old else DateShiftKind.PUSHED_BACK


def end_date_shift(old: int, new: int, compare_time: int) -> DateShiftKind | None:
    if old == new:
        return None
    if compare_time < old and new < compare_time:
        return DateShiftKind.MOVED_EARLIER
    return DateShiftKind.EXTENDED if new > old else DateShiftKind.MOVED_CLOSER


def _team_shape(team: TeamState) -> tuple:
    return (
        team.start_date,
        team.end_date,
        tuple(
            (
                ta.uuid,
                ta.start_date,
                ta.end_date,
                ta.partial_time,
                ta.discipline.uuid if ta.discipline else None,
            )
            for ta in sorted(team.time_allocations, key=lambda ta: ta.uuid)
        ),
    )


def _teams_shape(deliverable: DeliverableState) -> dict[str, tuple]:
    return {team.slug: _team_shape(team) for team in deliverable.teams}


def _first_start(team: TeamState) -> int | None:
    if not team.time_allocations:
        return None
    return min(ta.start_date for ta in team.time_allocations)


def team_work_changes(
    before: DeliverableState, after: DeliverableState, compare_time: int
) -> list[TeamWorkChange]:
    """Per-team work changes between two versions of a deliverable."""
    changes: list[TeamWorkChange] = []
    for team in after.teams:
        new_span = merged_span(allocation_ranges(team.time_allocations))
        first_start = _first_start(team)
        revealed = first_start is not None and first_start < compare_time
        old_team = before.team(team.slug)

        if old_team is None:
            changes.append(
                TeamWorkChange(
                    team.slug,
                    team.title,
                    TeamChangeKind.ASSIGNED,
                    ms_to_days(new_span),
                    revealed=revealed,
                )
            )
            continue
        if _team_shape(old_team) == _team_shape(team):
            continue

        old_span = merged_span(allocation_ranges(old_team.time_allocations))
        if old_span == 0 and new_span > 0:
            changes.append(
                TeamWorkChange(
                    team.slug,
                    team.title,
                    TeamChangeKind.ASSIGNED,
                    ms_to_days(new_span),
                    revealed=revealed,
                )
            )
            continue
        days = ms_to_days(abs(new_span - old_span))
        if days:
            kind = TeamChangeKind.ADDED if new_span > old_span else TeamChangeKind.FREED
            changes.append(TeamWorkChange(team.slug, team.title, kind, days))

    remaining = {team.slug for team in after.teams}
    for old_team in before.teams:
        if old_team.slug in remaining:
            continue
        days = 0
        if old_team.start_date is not None and old_team.end_date is not None:
            days = ms_to_days(old_team.end_date - old_team.start_date)
        changes.append(
            TeamWorkChange(old_team.slug, old_team.title, TeamChangeKind.REMOVED, days)
        )
    return changes


def card_changes(before: CardState | None, after: CardState | None) -> list[CardChange]:
    if before is None or after is None:
        return []
    changes = []
    for name in CARD_FIELDS:
        old = getattr(before, name)
        new = getattr(after, name)
        if old != new:
            changes.append(
                CardChange(
                    name,
                    old.value if isinstance(old, Enum) else old,
                    new.value if isinstance(new, Enum) else new,
                )
            )
    return changes


def team_assignments(
    deliverable: DeliverableState, compare_time: int
) -> list[TeamAssignment]:
    """Team assignments of a newly added deliverable with remaining workload.

    A task counts as remaining when it ends after the deliverable's last
    update; the load is computed over the summed span of remaining tasks.
    """
    assignments = []
    for team in deliverable.teams:
        first_start = _first_start(team)
        by_discipline: dict[str | None, list] = {}
        for ta in team.time_allocations:
            title = ta.discipline.title if ta.discipline else None
            by_discipline.setdefault(title, []).append(ta)

        workloads = []
        for title, allocations in by_discipline.items():
            discipline = allocations[0].discipline
            members = discipline.number_of_members if discipline else None
            remaining = [
                ta
                for ta in allocations
                if deliverable.update_date is None or deliverable.update_date < ta.end_date
            ]
            full_time = sum(1 for ta in remaining if not ta.partial_time)
            part_time = len(remaining) - full_time
            span = sum(ta.end_date - ta.start_date for ta in remaining)
            workloads.append(
                DisciplineWorkload(
                    title=title,
                    number_of_members=members,
                    full_time=full_time,
                    part_time=part_time,
                    load=calculate_task_load(members, full_time, part_time, span)
                    if remaining
                    else None,
                )
            )

        assignments.append(
            TeamAssignment(
                slug=team.slug,
                title=team.title,
                first_start=first_start,
                began=first_start is not None and first_start < compare_time,
                disciplines=workloads,
            )
        )
    return assignments


def _update(
    before: DeliverableState, after: DeliverableState, compare_time: int
) -> UpdatedDeliverable | None:
    update = UpdatedDeliverable(before=before, after=after)

    kind = start_date_shift(before.start_date, after.start_date, compare_time)
    if kind is not None:
        update.date_shifts.append(
            DateShift("start_date", kind, before.start_date, after.start_date)
        )
    kind = end_date_shift(before.end_date, after.end_date, compare_time)
    if kind is not None:
        update.date_shifts.append(
            DateShift("end_date", kind, before.end_date, after.end_date)
        )

    for name in ("title", "description"):
        if getattr(before, name) != getattr(after, name):
            update.text_changes.append(
                TextChange(name, getattr(before, name), getattr(after, name))
            )

    if _teams_shape(before) != _teams_shape(after):
        update.team_changes = team_work_changes(before, after, compare_time)

    if not (update.date_shifts or update.text_changes or update.team_changes):
        return None

    update.card_changes = card_changes(before.card, after.card)
    update.removed_from_release = before.card is not None and after.card is None
    return update


def diff_snapshots(
    first: list[DeliverableState],
    last: list[DeliverableState],
    compare_time: int,
    removed_before: set[str],
    identity: TitleFallbackIdentity,
    start: int = 0,
    end: int = 0,
) -> RoadmapDelta:
    """Pure-function delta between two reconstructions.

    Separated from the engine class so it can be tested without a database.

    Args:
        first: Reconstruction at the earlier capture.
        last: Reconstruction at the later capture.
        compare_time: Moment date shifts and "already began" are judged against.
        removed_before: UUIDs/titles tombstoned at or before the earlier
            capture; additions matching them are flagged as re-added.
        identity: Deliverable identity policy (UUID, then announced title).
        start: Earlier capture time (informational).
        end: Later capture time (informational).

    Returns:
        RoadmapDelta (elapsed_seconds set to 0.0; caller may override).
    """
    delta = RoadmapDelta(
        start=start, end=end, compare_time=compare_time, deliverable_count=len(last)
    )

    for before in first:
        after = identity.resolve(last, before)
        if after is None:
            delta.removed.append(
                RemovedDeliverable(
                    deliverable=before,
                    freed_teams=list(dict.fromkeys(t.title or t.slug for t in before.teams)),
                )
            )
            continue
        update = _update(before, after, compare_time)
        if update is None:
            delta.unchanged += 1
        else:
            delta.updated.append(update)

    for after in last:
        if identity.resolve(first, after) is not None:
            continue
        readded = after.uuid in removed_before or (
            identity.match_titles
            and identity.is_announced(after)
            and after.title in removed_before
        )
        delta.added.append(
            AddedDeliverable(
                deliverable=after,
                readded=readded,
                teams=team_assignments(after, compare_time),
            )
        )

    return delta


class RoadmapDiffEngine:
    """Compares two captures and produces a deliverable-level delta."""

    def __init__(self, session: AsyncSession) -> None:
        self.snapshot_service = SnapshotService(session)

    async def resolve_window(
        self, start: int | None = None, end: int | None = None
    ) -> tuple[int, int]:
        """Resolve requested moments to capture times.

        ``end`` defaults to the latest capture and ``start`` to the capture
        immediately before ``end``; explicit moments resolve to the closest
        capture at or before them.

        Raises:
            InsufficientDataError: No valid (start < end) pair of captures.
        """
        captures = await self.snapshot_service.capture_dates()
        if end is None:
            end_capture = captures[0] if captures else None
        else:
            end_capture = await self.snapshot_service.resolve_capture(end)
        if end_capture is None:
            raise InsufficientDataError("insufficient data to compare")

        if start is None:
            earlier = [c for c in captures if c < end_capture]
            start_capture = earlier[0] if earlier else None
        else:
            start_capture = await self.snapshot_service.resolve_capture(start)
        if start_capture is None or start_capture >= end_capture:
            raise InsufficientDataError("insufficient data to compare")
        return start_capture, end_capture

    async def diff(
        self,
        start: int | None = None,
        end: int | None = None,
        compare_time: int | None = None,
    ) -> RoadmapDelta:
        """Diff the roadmap between two captures.

        Args:
            start: Earlier moment (default: capture before ``end``).
            end: Later moment (default: latest capture).
            compare_time: Reference moment for date shifts (default: now).

        Returns:
            RoadmapDelta with classified deliverables.
        """
        started = time.monotonic()
        start_capture, end_capture = await self.resolve_window(start, end)
        compare_time = compare_time if compare_time is not None else now_ms()

        first = await self.snapshot_service.get_deliverables_at(start_capture, True)
        last = await self.snapshot_service.get_deliverables_at(end_capture, True)
        removed_before = await self.snapshot_service.removed_deliverable_keys(
            start_capture
        )

        delta = diff_snapshots(
            first,
            last,
            compare_time,
            removed_before,
            self.snapshot_service.identity,
            start=start_capture,
            end=end_capture,
        )
        delta.elapsed_seconds = time.monotonic() - started

        logger.info(
            f"Delta {ms_to_iso(start_capture)} -> {ms_to_iso(end_capture)}: "
            f"{delta.summary}, {delta.unchanged} unchanged "
            f"({delta.elapsed_seconds:.1f}s)"
        )
        return delta
