"""Pydantic schemas module.

This module contains Pydantic models used for:
- API responses
- Feed-shaped exports that can be ingested again

Naming convention:
- Schema suffix to distinguish from SQLAlchemy models and pipeline dataclasses
- Export* prefix for documents in the progress tracker's own shape
"""

from app.schemas.roadmap import (
    CaptureSchema,
    ExportCardSchema,
    ExportDeliverableSchema,
    ExportTeamSchema,
    ExportTimeAllocationSchema,
    RoadmapDeltaSchema,
    ScheduleReportSchema,
)

__all__ = [
    "CaptureSchema",
    "ExportCardSchema",
    "ExportDeliverableSchema",
    "ExportTeamSchema",
    "ExportTimeAllocationSchema",
    "RoadmapDeltaSchema",
    "ScheduleReportSchema",
]
