"""Append-only ledger tables for the roadmap.

Every *_diff row records what an entity looked like when it was observed at
``added_date``. Rows are never updated: a change, a disappearance (tombstone)
or a return is always a new row. Dates are epoch milliseconds.

Column names follow the historical camelCase schema; attributes are
snake_case.
"""

from sqlalchemy import BigInteger, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.enums import Project


class DeliverableDiff(Base):
    """One observed version of a deliverable.

    A row with neither start nor end date is a tombstone: the deliverable was
    absent from the snapshot captured at ``added_date``.
    """

    __tablename__ = "deliverable_diff"
    __business_key__ = "uuid"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uuid: Mapped[str] = mapped_column(String(64), nullable=False)
    slug: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    added_date: Mapped[int] = mapped_column("addedDate", BigInteger, nullable=False)
    number_of_disciplines: Mapped[int | None] = mapped_column(
        "numberOfDisciplines", Integer, nullable=True
    )
    number_of_teams: Mapped[int | None] = mapped_column(
        "numberOfTeams", Integer, nullable=True
    )
    total_count: Mapped[int | None] = mapped_column(
        "totalCount", Integer, nullable=True
    )
    card_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("card_diff.id"), nullable=True
    )
    project_ids: Mapped[str | None] = mapped_column(
        String(50), nullable=True, doc='Comma-separated project codes, e.g. "SC,SQ42"'
    )
    start_date: Mapped[int | None] = mapped_column("startDate", BigInteger)
    end_date: Mapped[int | None] = mapped_column("endDate", BigInteger)
    update_date: Mapped[int | None] = mapped_column("updateDate", BigInteger)

    __table_args__ = (
        Index("idx_deliverable_diff_uuid_added", "uuid", "addedDate"),
        Index("idx_deliverable_diff_added", "addedDate"),
    )

    @property
    def is_tombstone(self) -> bool:
        return self.start_date is None and self.end_date is None

    @property
    def projects(self) -> list[Project]:
        if not self.project_ids:
            return []
        return [Project(code) for code in self.project_ids.split(",") if code]

    def __repr__(self) -> str:
        return f"<DeliverableDiff(id={self.id}, {self.title!r} @ {self.added_date})>"


class TeamDiff(Base):
    """One observed version of a development team (tombstone: no dates)."""

    __tablename__ = "team_diff"
    __business_key__ = "slug"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    abbreviation: Mapped[str | None] = mapped_column(String(50), nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_date: Mapped[int | None] = mapped_column("startDate", BigInteger)
    end_date: Mapped[int | None] = mapped_column("endDate", BigInteger)
    number_of_deliverables: Mapped[int | None] = mapped_column(
        "numberOfDeliverables", Integer, nullable=True
    )
    added_date: Mapped[int] = mapped_column("addedDate", BigInteger, nullable=False)

    __table_args__ = (Index("idx_team_diff_slug_added", "slug", "addedDate"),)

    @property
    def is_tombstone(self) -> bool:
        return self.start_date is None and self.end_date is None

    def __repr__(self) -> str:
        return f"<TeamDiff(id={self.id}, {self.slug} @ {self.added_date})>"


class DisciplineDiff(Base):
    """One observed version of a team discipline (tombstone: no member count)."""

    __tablename__ = "discipline_diff"
    __business_key__ = "uuid"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uuid: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    number_of_members: Mapped[int | None] = mapped_column(
        "numberOfMembers", Integer, nullable=True
    )
    added_date: Mapped[int] = mapped_column("addedDate", BigInteger, nullable=False)

    __table_args__ = (Index("idx_discipline_diff_uuid_added", "uuid", "addedDate"),)

    @property
    def is_tombstone(self) -> bool:
        return self.number_of_members is None

    def __repr__(self) -> str:
        return f"<DisciplineDiff(id={self.id}, {self.title!r} @ {self.added_date})>"


class TimeAllocationDiff(Base):
    """One observed version of a time allocation.

    A time allocation schedules a discipline of a team on a deliverable.
    Tombstone: no start, end or partial-time flag.
    """

    __tablename__ = "timeAllocation_diff"
    __business_key__ = "uuid"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uuid: Mapped[str] = mapped_column(String(64), nullable=False)
    start_date: Mapped[int | None] = mapped_column("startDate", BigInteger)
    end_date: Mapped[int | None] = mapped_column("endDate", BigInteger)
    partial_time: Mapped[int | None] = mapped_column(
        "partialTime", Integer, nullable=True, doc="0 or 1"
    )
    team_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("team_diff.id"), nullable=True
    )
    deliverable_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("deliverable_diff.id"), nullable=True
    )
    discipline_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("discipline_diff.id"), nullable=True
    )
    added_date: Mapped[int] = mapped_column("addedDate", BigInteger, nullable=False)

    __table_args__ = (
        Index("idx_time_allocation_diff_uuid_added", "uuid", "addedDate"),
        Index("idx_time_allocation_diff_deliverable", "deliverable_id"),
    )

    @property
    def is_tombstone(self) -> bool:
        return (
            self.start_date is None
            and self.end_date is None
            and self.partial_time is None
        )

    def __repr__(self) -> str:
        return f"<TimeAllocationDiff(id={self.id}, {self.uuid} @ {self.added_date})>"


class CardDiff(Base):
    """One observed version of a release view card.

    Tombstone: no update date and no release.
    """

    __tablename__ = "card_diff"
    __business_key__ = "tid"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tid: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    release_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    release_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    update_date: Mapped[int | None] = mapped_column("updateDate", BigInteger)
    thumbnail: Mapped[str | None] = mapped_column(Text, nullable=True)
    added_date: Mapped[int] = mapped_column("addedDate", BigInteger, nullable=False)

    __table_args__ = (Index("idx_card_diff_tid_added", "tid", "addedDate"),)

    @property
    def is_tombstone(self) -> bool:
        return (
            self.update_date is None
            and self.release_id is None
            and self.release_title is None
        )

    def __repr__(self) -> str:
        return f"<CardDiff(id={self.id}, {self.tid} @ {self.added_date})>"


class DeliverableTeam(Base):
    """Links a deliverable row to a team row. Append-only, never versioned."""

    __tablename__ = "deliverable_teams"

    deliverable_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("deliverable_diff.id"), primary_key=True
    )
    team_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("team_diff.id"), primary_key=True
    )

    __table_args__ = (Index("idx_deliverable_teams_team", "team_id"),)

    def __repr__(self) -> str:
        return f"<DeliverableTeam({self.deliverable_id} -> {self.team_id})>"


LEDGER_MODELS: tuple[type[Base], ...] = (
    DeliverableDiff,
    TeamDiff,
    DisciplineDiff,
    TimeAllocationDiff,
    CardDiff,
)
