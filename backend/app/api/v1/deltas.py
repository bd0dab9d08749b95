"""Delta endpoint comparing two roadmap captures."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.crud.roadmap import get_delta
from app.models.base import get_async_session
from app.schemas.roadmap import RoadmapDeltaSchema
from pipeline.roadmap.dates import parse_capture_date
from pipeline.roadmap.errors import InsufficientDataError

router = APIRouter()


@router.get("")
async def roadmap_delta(
    start: str | None = Query(None, description="Earlier date (default: capture before end)"),
    end: str | None = Query(None, description="Later date (default: latest capture)"),
    session: AsyncSession = Depends(get_async_session),
) -> RoadmapDeltaSchema:
    """Compare the roadmap between two captures."""
    try:
        start_ms = parse_capture_date(start) if start else None
        end_ms = parse_capture_date(end) if end else None
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    try:
        return await get_delta(session, start_ms, end_ms)
    except InsufficientDataError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
