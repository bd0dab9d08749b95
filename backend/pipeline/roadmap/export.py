"""Export reconstructions in the progress tracker's document shape.

An exported file is a list of deliverable documents exactly as
``parse_snapshot`` reads them, so exports double as seed captures.
"""

from __future__ import annotations

import html
import json
import logging
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.schemas.roadmap import (
    ExportCardSchema,
    ExportDeliverableSchema,
    ExportDisciplineSchema,
    ExportProjectSchema,
    ExportReleaseSchema,
    ExportTeamSchema,
    ExportTimeAllocationSchema,
)
from pipeline.roadmap.dates import ms_to_hyphenated_date, ms_to_iso
from pipeline.roadmap.snapshot_service import (
    CardState,
    DeliverableState,
    SnapshotService,
    TeamState,
)

logger = logging.getLogger(__name__)


def _escape(text: str | None) -> str | None:
    return html.escape(text) if text is not None else None


def _card_document(card: CardState) -> ExportCardSchema:
    release = None
    if card.release_id is not None or card.release_title is not None:
        release = ExportReleaseSchema(id=card.release_id, title=_escape(card.release_title))
    return ExportCardSchema(
        id=card.tid,
        title=_escape(card.title),
        description=_escape(card.description),
        category=card.category.value if card.category is not None else None,
        release=release,
        update_date=ms_to_iso(card.update_date),
        thumbnail=card.thumbnail,
    )


def _team_document(team: TeamState) -> ExportTeamSchema:
    return ExportTeamSchema(
        slug=team.slug,
        abbreviation=team.abbreviation,
        title=_escape(team.title),
        description=_escape(team.description),
        start_date=ms_to_iso(team.start_date),
        end_date=ms_to_iso(team.end_date),
        number_of_deliverables=team.number_of_deliverables,
        time_allocations=[
            ExportTimeAllocationSchema(
                uuid=ta.uuid,
                start_date=ms_to_iso(ta.start_date),
                end_date=ms_to_iso(ta.end_date),
                partial_time=ta.partial_time,
                discipline=ExportDisciplineSchema(
                    uuid=ta.discipline.uuid,
                    title=_escape(ta.discipline.title),
                    number_of_members=ta.discipline.number_of_members,
                )
                if ta.discipline is not None
                else None,
            )
            for ta in team.time_allocations
        ],
    )


def deliverable_document(deliverable: DeliverableState) -> ExportDeliverableSchema:
    """Convert one reconstructed deliverable to its feed document."""
    return ExportDeliverableSchema(
        uuid=deliverable.uuid,
        slug=deliverable.slug,
        title=_escape(deliverable.title),
        description=_escape(deliverable.description),
        start_date=ms_to_iso(deliverable.start_date),
        end_date=ms_to_iso(deliverable.end_date),
        update_date=ms_to_iso(deliverable.update_date),
        number_of_disciplines=deliverable.number_of_disciplines,
        number_of_teams=deliverable.number_of_teams,
        total_count=deliverable.total_count,
        projects=[ExportProjectSchema(title=p.title) for p in deliverable.projects],
        card=_card_document(deliverable.card) if deliverable.card else None,
        teams=[_team_document(team) for team in deliverable.teams],
    )


def export_documents(deliverables: list[DeliverableState]) -> list[dict[str, Any]]:
    """Feed-shaped JSON documents (camelCase keys) for a reconstruction."""
    return [
        deliverable_document(d).model_dump(mode="json", by_alias=True)
        for d in deliverables
    ]


async def export_snapshot(
    session: AsyncSession, as_of: int, directory: Path | None = None
) -> Path:
    """Write the reconstruction at ``as_of`` to ``<directory>/YYYY-MM-DD.json``.

    Returns:
        Path of the written file.
    """
    directory = Path(directory or settings.export_dir)
    directory.mkdir(parents=True, exist_ok=True)

    deliverables = await SnapshotService(session).get_deliverables_at(
        as_of, alphabetize=True
    )
    path = directory / f"{ms_to_hyphenated_date(as_of)}.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(export_documents(deliverables), f, indent=2, ensure_ascii=False)

    logger.info(f"Exported {len(deliverables)} deliverables to {path}")
    return path


async def export_all(session: AsyncSession, directory: Path | None = None) -> list[Path]:
    """Export every capture, newest first."""
    service = SnapshotService(session)
    return [
        await export_snapshot(session, capture, directory)
        for capture in await service.capture_dates()
    ]
