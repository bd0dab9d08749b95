"""Read and append primitives over the roadmap ledger tables.

The ledger is append-only: ``append`` is the only write. Reads are always
"latest row per business id", optionally bounded by ``addedDate <= as_of``,
computed with a ``row_number()`` window so the same query runs on SQLite and
PostgreSQL.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TypeVar

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import Base
from app.models.enums import IngestionStatus
from app.models.ingestion_log import IngestionLog
from app.models.ledger import (
    LEDGER_MODELS,
    DeliverableDiff,
    DeliverableTeam,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=Base)


class LedgerStore:
    """Session-bound access to the ledger tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def latest(self, model: type[M], as_of: int | None = None) -> list[M]:
        """Most recent row per business id, tombstones included.

        Args:
            model: One of the *_diff models.
            as_of: Only consider rows with added_date <= as_of (None: all).

        Returns:
            Rows ordered most recent first.
        """
        key = getattr(model, model.__business_key__)
        ranked = select(
            model.id.label("row_id"),
            func.row_number()
            .over(
                partition_by=key,
                order_by=(model.added_date.desc(), model.id.desc()),
            )
            .label("row_rank"),
        )
        if as_of is not None:
            ranked = ranked.where(model.added_date <= as_of)
        ranked_sq = ranked.subquery()

        stmt = (
            select(model)
            .join(ranked_sq, model.id == ranked_sq.c.row_id)
            .where(ranked_sq.c.row_rank == 1)
            .order_by(model.added_date.desc(), model.id.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def rows_by_id(self, model: type[M], ids: Iterable[int]) -> dict[int, M]:
        id_list = sorted(set(ids))
        if not id_list:
            return {}
        result = await self.session.execute(select(model).where(model.id.in_(id_list)))
        return {row.id: row for row in result.scalars().all()}

    async def links(
        self,
        deliverable_ids: Iterable[int] = (),
        team_ids: Iterable[int] = (),
    ) -> list[DeliverableTeam]:
        """Association rows touching any of the given deliverable or team rows."""
        d_ids = sorted(set(deliverable_ids))
        t_ids = sorted(set(team_ids))
        conditions = []
        if d_ids:
            conditions.append(DeliverableTeam.deliverable_id.in_(d_ids))
        if t_ids:
            conditions.append(DeliverableTeam.team_id.in_(t_ids))
        if not conditions:
            return []
        result = await self.session.execute(select(DeliverableTeam).where(or_(*conditions)))
        return list(result.scalars().all())

    def append(self, row: Base) -> None:
        """Stage a new ledger row. Ids are assigned on the next flush."""
        self.session.add(row)

    async def flush(self) -> None:
        await self.session.flush()

    async def is_empty(self) -> bool:
        result = await self.session.execute(select(func.count(DeliverableDiff.id)))
        return not result.scalar_one()

    async def capture_dates(self) -> list[int]:
        """Distinct capture times, newest first.

        A capture is any observation that wrote ledger rows or completed an
        ingestion (an unchanged snapshot still counts as a capture).
        """
        dates: set[int] = set()
        for model in LEDGER_MODELS:
            result = await self.session.execute(select(model.added_date).distinct())
            dates.update(result.scalars().all())
        result = await self.session.execute(
            select(IngestionLog.observed_at).distinct().where(
                IngestionLog.status == IngestionStatus.COMPLETED
            )
        )
        dates.update(result.scalars().all())
        return sorted(dates, reverse=True)

    async def tombstoned_deliverables(self, as_of: int) -> list[DeliverableDiff]:
        """Every deliverable tombstone written at or before ``as_of``."""
        stmt = select(DeliverableDiff).where(
            DeliverableDiff.added_date <= as_of,
            DeliverableDiff.start_date.is_(None),
            DeliverableDiff.end_date.is_(None),
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
