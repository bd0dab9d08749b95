"""SQLAlchemy models for the roadmap ledger."""

from app.models.base import Base, async_session_maker, get_async_session
from app.models.enums import CardCategory, IngestionStatus, Project
from app.models.ingestion_log import IngestionLog
from app.models.ledger import (
    LEDGER_MODELS,
    CardDiff,
    DeliverableDiff,
    DeliverableTeam,
    DisciplineDiff,
    TeamDiff,
    TimeAllocationDiff,
)

__all__ = [
    # Base
    "Base",
    "async_session_maker",
    "get_async_session",
    # Enums
    "CardCategory",
    "IngestionStatus",
    "Project",
    # Ledger
    "LEDGER_MODELS",
    "DeliverableDiff",
    "TeamDiff",
    "DisciplineDiff",
    "TimeAllocationDiff",
    "CardDiff",
    "DeliverableTeam",
    # Audit
    "IngestionLog",
]
