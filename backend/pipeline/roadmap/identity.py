"""Identity resolution between incoming entities and ledger rows.

Each entity kind has its own rule for deciding that an incoming entity and a
ledger row describe the same thing:

- deliverables and disciplines: UUID, falling back to exact title for
  announced content (the feed is known to re-issue UUIDs),
- teams: slug,
- time allocations: UUID,
- cards: tid.

Candidates handed to a strategy are expected to be one row per business id,
most recent first. Strategies work on anything exposing the relevant
attributes, so the same rules serve ledger rows and reconstructed states.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class LedgerRow(Protocol):
    id: int
    added_date: int


R = TypeVar("R", bound=LedgerRow)


class IdentityStrategy(Protocol):
    """Finds the candidate that represents the same entity as ``incoming``."""

    def resolve(self, candidates: Sequence[T], incoming: Any) -> T | None: ...


class KeyIdentity:
    """Exact match on a single business-key attribute."""

    def __init__(self, attribute: str) -> None:
        self.attribute = attribute

    def key(self, entity: Any) -> Any:
        return getattr(entity, self.attribute)

    def resolve(self, candidates: Sequence[T], incoming: Any) -> T | None:
        wanted = self.key(incoming)
        for candidate in candidates:
            if self.key(candidate) == wanted:
                return candidate
        return None


class TitleFallbackIdentity(KeyIdentity):
    """UUID match with an exact-title fallback for announced content.

    Titles containing ``marker`` belong to placeholder entities whose titles
    say nothing about identity, so they only ever match by UUID.
    """

    def __init__(
        self,
        marker: str = "Unannounced",
        match_titles: bool = True,
        attribute: str = "uuid",
    ) -> None:
        super().__init__(attribute)
        self.marker = marker
        self.match_titles = match_titles

    def is_announced(self, entity: Any) -> bool:
        title = getattr(entity, "title", None)
        return bool(title) and self.marker not in title

    def resolve_title(self, candidates: Sequence[T], incoming: Any) -> T | None:
        """Title-only match, or None when title matching is off."""
        if not self.match_titles or not self.is_announced(incoming):
            return None
        for candidate in candidates:
            if self.is_announced(candidate) and candidate.title == incoming.title:
                return candidate
        return None

    def resolve(self, candidates: Sequence[T], incoming: Any) -> T | None:
        match = super().resolve(candidates, incoming)
        if match is not None:
            return match
        return self.resolve_title(candidates, incoming)

    def resolve_all(
        self,
        candidates: Sequence[R],
        incoming: Sequence[Any],
        fallback: Callable[[R], bool] | None = None,
    ) -> list[R | None]:
        """Match a whole batch, each candidate claimed at most once.

        Exact key matches are settled for every incoming entity before any
        title fallback runs, so the result does not depend on feed order.
        ``fallback`` narrows which unclaimed candidates the title pass sees.
        """
        matches: list[R | None] = [None] * len(incoming)
        claimed: set[int] = set()
        for index, entity in enumerate(incoming):
            unclaimed = [c for c in candidates if c.id not in claimed]
            match = KeyIdentity.resolve(self, unclaimed, entity)
            if match is not None:
                claimed.add(match.id)
                matches[index] = match
        for index, entity in enumerate(incoming):
            if matches[index] is not None:
                continue
            unclaimed = [
                c
                for c in candidates
                if c.id not in claimed and (fallback is None or fallback(c))
            ]
            match = self.resolve_title(unclaimed, entity)
            if match is not None:
                claimed.add(match.id)
                matches[index] = match
        return matches


def deliverable_identity(marker: str, match_titles: bool) -> TitleFallbackIdentity:
    return TitleFallbackIdentity(marker=marker, match_titles=match_titles)


def discipline_identity(marker: str, match_titles: bool) -> TitleFallbackIdentity:
    return TitleFallbackIdentity(marker=marker, match_titles=match_titles)


def team_identity() -> KeyIdentity:
    return KeyIdentity("slug")


def card_identity() -> KeyIdentity:
    return KeyIdentity("tid")


def dedupe_announced(
    rows: Sequence[R], identity: TitleFallbackIdentity
) -> list[tuple[R, list[R]]]:
    """Collapse announced rows sharing a title; unannounced rows stay separate.

    ``rows`` must be ordered most recent first. Returns (kept row, all rows
    it stands for) pairs; the kept row is the most recent of its group.
    Rows without a title are dropped.
    """
    groups: dict[tuple[str, Any], tuple[R, list[R]]] = {}
    for row in rows:
        title = getattr(row, "title", None)
        if not title:
            continue
        if identity.match_titles and identity.is_announced(row):
            group_key = ("title", title)
        else:
            group_key = ("id", identity.key(row))
        if group_key in groups:
            groups[group_key][1].append(row)
        else:
            groups[group_key] = (row, [row])
    return list(groups.values())
