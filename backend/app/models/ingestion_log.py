"""Audit log for roadmap ingestion runs."""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, enum_column
from app.models.enums import IngestionStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionLog(Base):
    """One ingestion attempt.

    Completed entries are written inside the ingestion transaction, so they
    exist only if the ledger rows do. Failed entries are written afterwards in
    a separate transaction.
    """

    __tablename__ = "ingestion_log"

    log_id: Mapped[int] = mapped_column(primary_key=True)
    source: Mapped[str] = mapped_column(String(100), nullable=False)
    observed_at: Mapped[int] = mapped_column(
        BigInteger, nullable=False, doc="Capture time (epoch ms) used as addedDate"
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    status: Mapped[IngestionStatus] = mapped_column(
        enum_column(IngestionStatus, "ingestion_status_enum", length=20),
        default=IngestionStatus.RUNNING,
        nullable=False,
    )
    deliverables_seen: Mapped[int] = mapped_column(Integer, default=0)
    added: Mapped[int] = mapped_column(Integer, default=0)
    removed: Mapped[int] = mapped_column(Integer, default=0)
    updated: Mapped[int] = mapped_column(Integer, default=0)
    readded: Mapped[int] = mapped_column(Integer, default=0)
    rows_written: Mapped[int] = mapped_column(Integer, default=0)
    warnings: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_ingestion_log_observed", "observed_at"),
        Index("idx_ingestion_log_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<IngestionLog({self.source} @ {self.observed_at}: {self.status})>"
