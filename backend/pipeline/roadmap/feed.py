"""Typed roadmap snapshot structures and the raw-feed boundary.

The progress tracker feed arrives as nested JSON documents (deliverables →
teams → time allocations → discipline, deliverable → card). ``parse_snapshot``
turns them into dataclasses once, normalizing dates to epoch milliseconds and
unescaping HTML entities, so nothing downstream touches untyped maps.

Malformed entities are skipped and reported as ``FeedWarning`` records. Their
business ids are remembered so ingestion does not mistake them for removals.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field
from typing import Any

from app.models.enums import CardCategory, Project
from pipeline.roadmap.dates import to_epoch_ms

logger = logging.getLogger(__name__)


@dataclass
class FeedWarning:
    """An entity that could not be ingested as delivered."""

    entity: str  # "deliverable", "team", "time_allocation", "card", "project"
    key: str | None
    message: str


@dataclass
class FeedDiscipline:
    uuid: str
    title: str | None
    number_of_members: int | None


@dataclass
class FeedTimeAllocation:
    uuid: str
    start_date: int
    end_date: int
    partial_time: bool
    discipline: FeedDiscipline | None = None


@dataclass
class FeedTeam:
    slug: str
    abbreviation: str | None
    title: str | None
    description: str | None
    start_date: int | None
    end_date: int | None
    number_of_deliverables: int | None
    time_allocations: list[FeedTimeAllocation] = field(default_factory=list)


@dataclass
class FeedCard:
    tid: str
    title: str | None
    description: str | None
    category: CardCategory | None
    release_id: str | None
    release_title: str | None
    update_date: int | None
    thumbnail: str | None


@dataclass
class FeedDeliverable:
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
    projects: list[Project] = field(default_factory=list)
    card: FeedCard | None = None
    teams: list[FeedTeam] = field(default_factory=list)

    @property
    def project_ids(self) -> str:
        return ",".join(p.value for p in self.projects)


@dataclass
class RoadmapSnapshot:
    """A complete, parsed capture of the roadmap."""

    deliverables: list[FeedDeliverable] = field(default_factory=list)
    warnings: list[FeedWarning] = field(default_factory=list)
    # Business ids of skipped entities; present in the feed, just unusable.
    skipped_deliverables: set[str] = field(default_factory=set)
    skipped_teams: set[str] = field(default_factory=set)
    skipped_time_allocations: set[str] = field(default_factory=set)
    skipped_disciplines: set[str] = field(default_factory=set)
    skipped_cards: set[str] = field(default_factory=set)

    def teams(self) -> list[FeedTeam]:
        """Unique teams referenced by any deliverable (first occurrence wins)."""
        seen: dict[str, FeedTeam] = {}
        for deliverable in self.deliverables:
            for team in deliverable.teams:
                seen.setdefault(team.slug, team)
        return list(seen.values())

    def time_allocations(self) -> list[FeedTimeAllocation]:
        return [
            ta
            for deliverable in self.deliverables
            for team in deliverable.teams
            for ta in team.time_allocations
        ]

    def cards(self) -> list[FeedCard]:
        return [d.card for d in self.deliverables if d.card is not None]


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return html.unescape(str(value))


def _int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _id(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


class _SnapshotParser:
    def __init__(self) -> None:
        self.snapshot = RoadmapSnapshot()

    def warn(self, entity: str, key: str | None, message: str) -> None:
        logger.warning(f"Skipping {entity} {key or '<no id>'}: {message}")
        self.snapshot.warnings.append(FeedWarning(entity, key, message))

    def parse(self, raw_deliverables: list[dict[str, Any]]) -> RoadmapSnapshot:
        for raw in raw_deliverables:
            deliverable = self.parse_deliverable(raw)
            if deliverable is not None:
                self.snapshot.deliverables.append(deliverable)
        return self.snapshot

    def parse_deliverable(self, raw: dict[str, Any]) -> FeedDeliverable | None:
        uuid = _id(raw.get("uuid"))
        title = _text(raw.get("title"))
        start_date = to_epoch_ms(raw.get("startDate"))
        end_date = to_epoch_ms(raw.get("endDate"))

        problem = None
        if uuid is None:
            problem = "missing uuid"
        elif not title:
            problem = "missing title"
        elif start_date is None or end_date is None:
            problem = "missing or unparseable start/end date"
        if problem is not None:
            self.warn("deliverable", uuid or title, problem)
            self.snapshot.skipped_deliverables.update(k for k in (uuid, title) if k)
            self.remember_children(raw)
            return None

        return FeedDeliverable(
            uuid=uuid,
            slug=raw.get("slug"),
            title=title,
            description=_text(raw.get("description")),
            start_date=start_date,
            end_date=end_date,
            update_date=to_epoch_ms(raw.get("updateDate")),
            number_of_disciplines=_int(raw.get("numberOfDisciplines")),
            number_of_teams=_int(raw.get("numberOfTeams")),
            total_count=_int(raw.get("totalCount")),
            projects=self.parse_projects(raw.get("projects"), uuid),
            card=self.parse_card(raw.get("card")),
            teams=[
                team
                for team in (self.parse_team(t) for t in raw.get("teams") or [])
                if team is not None
            ],
        )

    def remember_children(self, raw: dict[str, Any]) -> None:
        """Record the ids under a skipped deliverable so none look removed."""
        card = raw.get("card")
        if isinstance(card, dict):
            tid = _id(card.get("tid", card.get("id")))
            if tid is not None:
                self.snapshot.skipped_cards.add(tid)
        for team in raw.get("teams") or []:
            self.remember_team(team)

    def remember_team(self, raw: dict[str, Any]) -> None:
        slug = _id(raw.get("slug"))
        if slug is not None:
            self.snapshot.skipped_teams.add(slug)
        for ta in raw.get("timeAllocations") or []:
            self.remember_time_allocation(ta)

    def remember_time_allocation(self, raw: dict[str, Any]) -> None:
        uuid = _id(raw.get("uuid"))
        if uuid is not None:
            self.snapshot.skipped_time_allocations.add(uuid)
        discipline = self.parse_discipline(raw)
        if discipline is not None:
            self.snapshot.skipped_disciplines.add(discipline.uuid)

    def parse_projects(self, raw_projects: Any, uuid: str) -> list[Project]:
        projects: list[Project] = []
        for raw in raw_projects or []:
            title = raw.get("title") if isinstance(raw, dict) else raw
            project = Project.from_title(title)
            if project is None:
                self.warn("project", uuid, f"unknown project {title!r}")
            elif project not in projects:
                projects.append(project)
        return projects

    def parse_card(self, raw: dict[str, Any] | None) -> FeedCard | None:
        if not raw:
            return None
        # Exports write the card id back as "id"; captures may carry "tid".
        tid = _id(raw.get("tid", raw.get("id")))
        if tid is None:
            self.warn("card", None, "missing card id")
            return None

        release = raw.get("release")
        if isinstance(release, dict):
            release_id = _id(release.get("id"))
            release_title = release.get("title")
        else:
            release_id = _id(raw.get("release_id"))
            release_title = raw.get("release_title")
        update_date = to_epoch_ms(raw.get("updateDate"))
        if update_date is None and release_id is None and _text(release_title) is None:
            # Same shape as a card tombstone.
            self.warn("card", tid, "missing update date and release")
            self.snapshot.skipped_cards.add(tid)
            return None

        category = CardCategory.parse(raw.get("category"))
        if category is None and raw.get("category") is not None:
            # Unknown categories keep the card; only the category is dropped.
            logger.warning(f"Card {tid}: unknown category {raw.get('category')!r}")
            self.snapshot.warnings.append(
                FeedWarning("card", tid, f"unknown category {raw.get('category')!r}")
            )

        return FeedCard(
            tid=tid,
            title=_text(raw.get("title")),
            description=_text(raw.get("description")),
            category=category,
            release_id=release_id,
            release_title=_text(release_title),
            update_date=update_date,
            thumbnail=raw.get("thumbnail"),
        )

    def parse_team(self, raw: dict[str, Any]) -> FeedTeam | None:
        slug = _id(raw.get("slug"))
        if slug is None:
            self.warn("team", _text(raw.get("title")), "missing slug")
            return None

        start_date = to_epoch_ms(raw.get("startDate"))
        end_date = to_epoch_ms(raw.get("endDate"))
        if start_date is None and end_date is None:
            # Both missing would be indistinguishable from a tombstone.
            self.warn("team", slug, "missing start and end date")
            self.remember_team(raw)
            return None

        return FeedTeam(
            slug=slug,
            abbreviation=raw.get("abbreviation"),
            title=_text(raw.get("title")),
            description=_text(raw.get("description")),
            start_date=start_date,
            end_date=end_date,
            number_of_deliverables=_int(raw.get("numberOfDeliverables")),
            time_allocations=[
                ta
                for ta in (
                    self.parse_time_allocation(t)
                    for t in raw.get("timeAllocations") or []
                )
                if ta is not None
            ],
        )

    def parse_time_allocation(self, raw: dict[str, Any]) -> FeedTimeAllocation | None:
        uuid = _id(raw.get("uuid"))
        if uuid is None:
            self.warn("time_allocation", None, "missing uuid")
            return None

        start_date = to_epoch_ms(raw.get("startDate"))
        end_date = to_epoch_ms(raw.get("endDate"))
        if start_date is None or end_date is None:
            self.warn("time_allocation", uuid, "missing or unparseable start/end date")
            self.remember_time_allocation(raw)
            return None

        return FeedTimeAllocation(
            uuid=uuid,
            start_date=start_date,
            end_date=end_date,
            partial_time=bool(raw.get("partialTime")),
            discipline=self.parse_discipline(raw),
        )

    @staticmethod
    def parse_discipline(raw: dict[str, Any]) -> FeedDiscipline | None:
        # Live captures nest the discipline; older captures flattened it onto
        # the time allocation (title, numberOfMembers, disciplineUuid).
        nested = raw.get("discipline")
        if isinstance(nested, dict):
            uuid = _id(nested.get("uuid"))
            title = nested.get("title")
            members = nested.get("numberOfMembers")
        else:
            uuid = _id(raw.get("disciplineUuid"))
            title = raw.get("title")
            members = raw.get("numberOfMembers")
        if uuid is None:
            return None
        return FeedDiscipline(
            uuid=uuid, title=_text(title), number_of_members=_int(members)
        )


def parse_snapshot(raw_deliverables: list[dict[str, Any]]) -> RoadmapSnapshot:
    """Parse a raw roadmap capture into a typed snapshot.

    Args:
        raw_deliverables: Deliverable documents as returned by the feed (or
            as written by the export), teams and disciplines attached.

    Returns:
        RoadmapSnapshot with the usable deliverables and any warnings.
    """
    return _SnapshotParser().parse(raw_deliverables)
