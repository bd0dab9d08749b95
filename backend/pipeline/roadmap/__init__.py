"""Roadmap ledger: ingestion, point-in-time reconstruction and deltas."""

from pipeline.roadmap.feed import RoadmapSnapshot, parse_snapshot
from pipeline.roadmap.ingestion import (
    ChangeCounters,
    IngestResult,
    LedgerIngestor,
    RoadmapIngestionService,
)
from pipeline.roadmap.snapshot_service import DeliverableState, SnapshotService

__all__ = [
    "ChangeCounters",
    "DeliverableState",
    "IngestResult",
    "LedgerIngestor",
    "RoadmapIngestionService",
    "RoadmapSnapshot",
    "SnapshotService",
    "parse_snapshot",
]
