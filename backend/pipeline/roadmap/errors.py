"""Exceptions raised by the roadmap ledger pipeline."""


class RoadmapLedgerError(Exception):
    """Base class for roadmap ledger failures."""


class IncompleteBatchError(RoadmapLedgerError):
    """A sub-fetch of the snapshot failed or timed out.

    The whole batch is discarded; ingestion must not run on it.
    """


class IngestionError(RoadmapLedgerError):
    """The ingestion transaction failed and was rolled back."""

    def __init__(self, observed_at: int, message: str) -> None:
        super().__init__(f"Ingestion at {observed_at} rolled back: {message}")
        self.observed_at = observed_at


class InsufficientDataError(RoadmapLedgerError):
    """The ledger does not hold the captures needed for a request."""
