"""Date-range merging, the load heuristic and the scheduled-deliverables view.

Time allocations of one discipline are often staggered and overlapping, so
assigned time is measured on the merged covering set of their ranges rather
than as max(end) - min(start): gaps are not assigned time and overlaps are
not counted twice.

The load estimate is an approximation: each task is assumed to take
``load_hours_per_task`` engineer-hours (part-time tasks count half), and a
team's capacity is its members working ``load_hours_per_day`` hours per
calendar day at ``load_focus_factor`` focus. A load above 1.0 means the
scheduled tasks exceed that capacity.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from app.config import settings
from app.models.enums import Project
from pipeline.roadmap.dates import MS_PER_DAY
from pipeline.roadmap.snapshot_service import (
    DeliverableState,
    TeamState,
    TimeAllocationState,
)

logger = logging.getLogger(__name__)


@dataclass
class DateRange:
    """A scheduled interval with the task counts it carries."""

    start_date: int
    end_date: int
    full_time: int = 0
    part_time: int = 0
    number_of_members: int | None = None
    title: str | None = None

    @property
    def span(self) -> int:
        return self.end_date - self.start_date

    @property
    def tasks(self) -> int:
        return self.full_time + self.part_time

    def covers(self, moment: int) -> bool:
        return self.start_date <= moment <= self.end_date


def merge_date_ranges(ranges: Iterable[DateRange]) -> list[DateRange]:
    """Merge overlapping or touching ranges into a minimal covering set.

    Task counts of merged ranges are summed; members and title come from the
    earliest range of each merged group. Input ranges are not modified.
    """
    merged: list[DateRange] = []
    for r in sorted(ranges, key=lambda r: (r.start_date, r.end_date)):
        if merged and r.start_date <= merged[-1].end_date:
            current = merged[-1]
            current.end_date = max(current.end_date, r.end_date)
            current.full_time += r.full_time
            current.part_time += r.part_time
        else:
            merged.append(
                DateRange(
                    start_date=r.start_date,
                    end_date=r.end_date,
                    full_time=r.full_time,
                    part_time=r.part_time,
                    number_of_members=r.number_of_members,
                    title=r.title,
                )
            )
    return merged


def merged_span(ranges: Iterable[DateRange]) -> int:
    """Total milliseconds covered by the ranges, overlaps counted once."""
    return sum(r.span for r in merge_date_ranges(ranges))


def allocation_ranges(allocations: Iterable[TimeAllocationState]) -> list[DateRange]:
    return [DateRange(ta.start_date, ta.end_date) for ta in allocations]


def calculate_task_load(
    members: int | None,
    full_time: int,
    part_time: int,
    span_ms: int,
    hours_per_task: float | None = None,
    focus_factor: float | None = None,
    hours_per_day: float | None = None,
) -> float | None:
    """Estimated utilization of a discipline over a span.

    ``(full + 0.5 * part) * hours_per_task / (members * focus * days * hours_per_day)``
    with days the span in calendar days.

    Returns:
        The load ratio (1.0 = fully booked), or None when the discipline has
        no members or the span is empty.
    """
    hours_per_task = hours_per_task if hours_per_task is not None else settings.load_hours_per_task
    focus_factor = focus_factor if focus_factor is not None else settings.load_focus_factor
    hours_per_day = hours_per_day if hours_per_day is not None else settings.load_hours_per_day

    days = span_ms / MS_PER_DAY
    if not members or days <= 0:
        return None
    capacity = members * focus_factor * days * hours_per_day
    return (full_time + 0.5 * part_time) * hours_per_task / capacity


# ---------------------------------------------------------------------------
# Scheduled-deliverables view
# ---------------------------------------------------------------------------


@dataclass
class ActiveSchedule:
    """A merged schedule of one discipline that covers the report moment."""

    start_date: int
    end_date: int
    full_time: int
    part_time: int
    number_of_members: int | None
    load: float | None

    @property
    def tasks(self) -> int:
        return self.full_time + self.part_time


@dataclass
class DisciplineSchedule:
    uuid: str | None
    title: str | None
    number_of_members: int | None
    sprints: list[DateRange] = field(default_factory=list)
    merged: list[DateRange] = field(default_factory=list)
    active: list[ActiveSchedule] = field(default_factory=list)


@dataclass
class TeamSchedule:
    slug: str
    title: str | None
    disciplines: list[DisciplineSchedule] = field(default_factory=list)


@dataclass
class ScheduledDeliverable:
    uuid: str
    slug: str | None
    title: str
    projects: list[Project]
    teams: list[TeamSchedule] = field(default_factory=list)


@dataclass
class ScheduleReport:
    """Deliverables being worked on at ``at``."""

    at: int
    is_past: bool
    deliverables: list[ScheduledDeliverable] = field(default_factory=list)

    @property
    def deliverable_count(self) -> int:
        return len(self.deliverables)

    @property
    def team_count(self) -> int:
        return len({t.slug for d in self.deliverables for t in d.teams})


def _sprints(allocations: list[TimeAllocationState]) -> list[DateRange]:
    """Group allocations sharing (start, end) into sprints with task counts."""
    sprints: dict[tuple[int, int], DateRange] = {}
    for ta in allocations:
        key = (ta.start_date, ta.end_date)
        sprint = sprints.get(key)
        if sprint is None:
            discipline = ta.discipline
            sprint = sprints[key] = DateRange(
                start_date=ta.start_date,
                end_date=ta.end_date,
                number_of_members=discipline.number_of_members if discipline else None,
                title=discipline.title if discipline else None,
            )
        if ta.partial_time:
            sprint.part_time += 1
        else:
            sprint.full_time += 1
    return sorted(sprints.values(), key=lambda s: (s.start_date, s.end_date))


def _team_schedule(team: TeamState, at: int) -> TeamSchedule:
    by_discipline: dict[str | None, list[TimeAllocationState]] = {}
    for ta in team.time_allocations:
        uuid = ta.discipline.uuid if ta.discipline else None
        by_discipline.setdefault(uuid, []).append(ta)

    schedule = TeamSchedule(slug=team.slug, title=team.title)
    for uuid, allocations in by_discipline.items():
        discipline = allocations[0].discipline
        sprints = _sprints(allocations)
        merged = merge_date_ranges(sprints)
        active = [
            ActiveSchedule(
                start_date=m.start_date,
                end_date=m.end_date,
                full_time=m.full_time,
                part_time=m.part_time,
                number_of_members=m.number_of_members,
                load=calculate_task_load(
                    m.number_of_members, m.full_time, m.part_time, m.span
                ),
            )
            for m in merged
            if m.covers(at)
        ]
        schedule.disciplines.append(
            DisciplineSchedule(
                uuid=uuid,
                title=discipline.title if discipline else None,
                number_of_members=discipline.number_of_members if discipline else None,
                sprints=sprints,
                merged=merged,
                active=active,
            )
        )
    schedule.disciplines.sort(key=lambda d: (d.title or "").lower())
    return schedule


def build_schedule_report(
    deliverables: list[DeliverableState],
    at: int,
    latest_capture: int | None = None,
) -> ScheduleReport:
    """Build the scheduled-deliverables view at ``at``.

    Args:
        deliverables: Reconstruction at (or just before) ``at``.
        at: Report moment in epoch ms.
        latest_capture: Most recent capture time; the report is "past" when
            ``at`` lies before it.

    Returns:
        ScheduleReport listing deliverables with at least one time
        allocation active at ``at``, teams in alphabetical order.
    """
    report = ScheduleReport(
        at=at, is_past=latest_capture is not None and at < latest_capture
    )
    for deliverable in deliverables:
        active_teams = [
            team
            for team in deliverable.teams
            if any(
                ta.start_date <= at <= ta.end_date for ta in team.time_allocations
            )
        ]
        if not active_teams:
            continue
        active_teams.sort(key=lambda t: (t.title or t.slug).lower())
        report.deliverables.append(
            ScheduledDeliverable(
                uuid=deliverable.uuid,
                slug=deliverable.slug,
                title=deliverable.title,
                projects=list(deliverable.projects),
                teams=[_team_schedule(team, at) for team in active_teams],
            )
        )
    logger.info(
        f"{report.deliverable_count} deliverables scheduled across "
        f"{report.team_count} teams"
    )
    return report
