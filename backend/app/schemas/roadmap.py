"""Pydantic schemas for roadmap exports and API responses.

Export* schemas reproduce the progress tracker's own document shape
(camelCase keys, ISO-8601 dates) so an export can be ingested again. The
remaining schemas serialize reconstruction, schedule and delta results for
the API.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.enums import Project
from pipeline.roadmap.diff_engine import DateShiftKind, TeamChangeKind

# =============================================================================
# Export (feed-shaped)
# =============================================================================


class _FeedModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExportDisciplineSchema(_FeedModel):
    uuid: str
    title: str | None = None
    number_of_members: int | None = None


class ExportTimeAllocationSchema(_FeedModel):
    uuid: str
    start_date: str
    end_date: str
    partial_time: bool
    discipline: ExportDisciplineSchema | None = None


class ExportTeamSchema(_FeedModel):
    slug: str
    abbreviation: str | None = None
    title: str | None = None
    description: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    number_of_deliverables: int | None = None
    time_allocations: list[ExportTimeAllocationSchema] = Field(default_factory=list)


class ExportReleaseSchema(_FeedModel):
    id: str | None = None
    title: str | None = None


class ExportCardSchema(_FeedModel):
    id: str = Field(..., description="Card tid")
    title: str | None = None
    description: str | None = None
    category: str | None = None
    release: ExportReleaseSchema | None = None
    update_date: str | None = None
    thumbnail: str | None = None


class ExportProjectSchema(_FeedModel):
    title: str


class ExportDeliverableSchema(_FeedModel):
    """One deliverable in the feed's document shape, ledger bookkeeping stripped."""

    uuid: str
    slug: str | None = None
    title: str
    description: str | None = None
    start_date: str
    end_date: str
    update_date: str | None = None
    number_of_disciplines: int | None = None
    number_of_teams: int | None = None
    total_count: int | None = None
    projects: list[ExportProjectSchema] = Field(default_factory=list)
    card: ExportCardSchema | None = None
    teams: list[ExportTeamSchema] = Field(default_factory=list)


# =============================================================================
# API responses
# =============================================================================


class CaptureSchema(BaseModel):
    """A capture time available for reconstruction."""

    observed_at: int = Field(..., description="Capture time (epoch ms)")
    date: str = Field(..., description="Capture time (ISO-8601)")


class ActiveScheduleSchema(BaseModel):
    start_date: int
    end_date: int
    full_time: int
    part_time: int
    tasks: int
    number_of_members: int | None
    load: float | None

    model_config = {"from_attributes": True}


class DisciplineScheduleSchema(BaseModel):
    uuid: str | None
    title: str | None
    number_of_members: int | None
    active: list[ActiveScheduleSchema]

    model_config = {"from_attributes": True}


class TeamScheduleSchema(BaseModel):
    slug: str
    title: str | None
    disciplines: list[DisciplineScheduleSchema]

    model_config = {"from_attributes": True}


class ScheduledDeliverableSchema(BaseModel):
    uuid: str
    slug: str | None
    title: str
    projects: list[Project]
    teams: list[TeamScheduleSchema]

    model_config = {"from_attributes": True}


class ScheduleReportSchema(BaseModel):
    """Deliverables being worked on at a moment."""

    at: int
    is_past: bool
    deliverable_count: int
    team_count: int
    deliverables: list[ScheduledDeliverableSchema]

    model_config = {"from_attributes": True}


class DeliverableSummarySchema(BaseModel):
    uuid: str
    slug: str | None
    title: str
    description: str | None
    start_date: int
    end_date: int

    model_config = {"from_attributes": True}


class DateShiftSchema(BaseModel):
    field: str
    kind: DateShiftKind
    old: int
    new: int

    model_config = {"from_attributes": True}


class ValueChangeSchema(BaseModel):
    field: str
    old: str | None
    new: str | None

    model_config = {"from_attributes": True}


class TeamWorkChangeSchema(BaseModel):
    slug: str
    title: str | None
    kind: TeamChangeKind
    days: int
    revealed: bool

    model_config = {"from_attributes": True}


class DisciplineWorkloadSchema(BaseModel):
    title: str | None
    number_of_members: int | None
    full_time: int
    part_time: int
    load: float | None

    model_config = {"from_attributes": True}


class TeamAssignmentSchema(BaseModel):
    slug: str
    title: str | None
    first_start: int | None
    began: bool
    disciplines: list[DisciplineWorkloadSchema]

    model_config = {"from_attributes": True}


class RemovedDeliverableSchema(BaseModel):
    deliverable: DeliverableSummarySchema
    freed_teams: list[str]

    model_config = {"from_attributes": True}


class AddedDeliverableSchema(BaseModel):
    deliverable: DeliverableSummarySchema
    readded: bool
    teams: list[TeamAssignmentSchema]

    model_config = {"from_attributes": True}


class UpdatedDeliverableSchema(BaseModel):
    before: DeliverableSummarySchema
    after: DeliverableSummarySchema
    date_shifts: list[DateShiftSchema]
    text_changes: list[ValueChangeSchema]
    team_changes: list[TeamWorkChangeSchema]
    card_changes: list[ValueChangeSchema]
    removed_from_release: bool

    model_config = {"from_attributes": True}


class RoadmapDeltaSchema(BaseModel):
    """Delta between two captures."""

    start: int
    end: int
    compare_time: int
    deliverable_count: int
    summary: str
    readded: int
    unchanged: int
    removed: list[RemovedDeliverableSchema]
    added: list[AddedDeliverableSchema]
    updated: list[UpdatedDeliverableSchema]

    model_config = {"from_attributes": True}
