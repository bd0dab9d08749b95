"""Snapshot endpoints for point-in-time roadmap queries."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.crud.roadmap import get_capture_dates, get_schedule, get_snapshot
from app.models.base import get_async_session
from app.schemas.roadmap import (
    CaptureSchema,
    ExportDeliverableSchema,
    ScheduleReportSchema,
)
from pipeline.roadmap.dates import parse_capture_date

router = APIRouter()


def _moment(value: str) -> int:
    try:
        return parse_capture_date(value)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@router.get("/dates")
async def list_capture_dates(
    session: AsyncSession = Depends(get_async_session),
) -> list[CaptureSchema]:
    """Return all capture times, newest first."""
    return await get_capture_dates(session)


@router.get("/{as_of}")
async def roadmap_at(
    as_of: str,
    session: AsyncSession = Depends(get_async_session),
) -> list[ExportDeliverableSchema]:
    """Return the roadmap as of a date (YYYYMMDD, ISO-8601 or epoch ms)."""
    result = await get_snapshot(session, _moment(as_of))
    if result is None:
        raise HTTPException(status_code=404, detail=f"No capture at or before {as_of}")
    return result


@router.get("/{as_of}/schedule")
async def schedule_at(
    as_of: str,
    session: AsyncSession = Depends(get_async_session),
) -> ScheduleReportSchema:
    """Return the deliverables being worked on at a moment."""
    result = await get_schedule(session, _moment(as_of))
    if result is None:
        raise HTTPException(status_code=404, detail=f"No capture at or before {as_of}")
    return result
