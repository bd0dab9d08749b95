"""Read operations for the roadmap ledger API."""

from sqlalchemy.ext.asyncio import AsyncSession

from app.schemas.roadmap import (
    CaptureSchema,
    ExportDeliverableSchema,
    RoadmapDeltaSchema,
    ScheduleReportSchema,
)
from pipeline.roadmap.dates import ms_to_iso
from pipeline.roadmap.diff_engine import RoadmapDiffEngine
from pipeline.roadmap.export import deliverable_document
from pipeline.roadmap.schedule import build_schedule_report
from pipeline.roadmap.snapshot_service import SnapshotService


async def get_capture_dates(session: AsyncSession) -> list[CaptureSchema]:
    """Return every capture time, newest first."""
    captures = await SnapshotService(session).capture_dates()
    return [CaptureSchema(observed_at=c, date=ms_to_iso(c)) for c in captures]


async def get_snapshot(
    session: AsyncSession, as_of: int
) -> list[ExportDeliverableSchema] | None:
    """Return the roadmap at the closest capture at or before ``as_of``.

    Returns None when nothing had been captured by then.
    """
    service = SnapshotService(session)
    capture = await service.resolve_capture(as_of)
    if capture is None:
        return None
    deliverables = await service.get_deliverables_at(capture, alphabetize=True)
    return [deliverable_document(d) for d in deliverables]


async def get_schedule(session: AsyncSession, at: int) -> ScheduleReportSchema | None:
    """Return the scheduled-deliverables view at ``at``."""
    service = SnapshotService(session)
    captures = await service.capture_dates()
    capture = next((c for c in captures if c <= at), None)
    if capture is None:
        return None
    deliverables = await service.get_deliverables_at(capture, alphabetize=True)
    report = build_schedule_report(deliverables, at, latest_capture=captures[0])
    return ScheduleReportSchema.model_validate(report)


async def get_delta(
    session: AsyncSession,
    start: int | None = None,
    end: int | None = None,
    compare_time: int | None = None,
) -> RoadmapDeltaSchema:
    """Return the delta between two captures.

    Raises:
        InsufficientDataError: No valid pair of captures for the window.
    """
    delta = await RoadmapDiffEngine(session).diff(start, end, compare_time)
    return RoadmapDeltaSchema.model_validate(delta)
