"""Concurrent full-snapshot fetch from an upstream roadmap source.

The transport is behind the ``RoadmapSource`` protocol; this module only
coordinates the sub-queries:

1. the first deliverable page (to learn ``total_count``), then every other
   page concurrently,
2. the teams of every deliverable,
3. the disciplines of every (team, deliverable) pair, attached to the time
   allocations whose UUIDs they list.

Sub-queries run under a semaphore with a per-call timeout. A single failure
or timeout fails the whole batch with ``IncompleteBatchError``: a partial
snapshot would look like mass removal to the ingestor.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from app.config import settings
from pipeline.roadmap.errors import IncompleteBatchError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class DeliverablePage:
    """One page of deliverable documents."""

    total_count: int
    items: list[dict[str, Any]] = field(default_factory=list)


class RoadmapSource(Protocol):
    """Upstream roadmap queries.

    Implementations raise (or return None) on failure; an empty result is a
    valid answer.
    """

    async def fetch_deliverables(self, offset: int, limit: int) -> DeliverablePage: ...

    async def fetch_teams(self, deliverable_slug: str) -> list[dict[str, Any]]: ...

    async def fetch_disciplines(
        self, team_slug: str, deliverable_slug: str
    ) -> list[dict[str, Any]]: ...


async def _gather_all(*calls: Awaitable[T]) -> list[T]:
    """Await every call; on the first failure cancel the rest, then re-raise."""
    tasks = [asyncio.ensure_future(call) for call in calls]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class _BatchFetcher:
    def __init__(
        self,
        source: RoadmapSource,
        page_size: int,
        timeout: float,
        concurrency: int,
    ) -> None:
        self.source = source
        self.page_size = page_size
        self.timeout = timeout
        self.semaphore = asyncio.Semaphore(concurrency)

    async def call(self, what: str, factory: Callable[[], Awaitable[T | None]]) -> T:
        async with self.semaphore:
            try:
                result = await asyncio.wait_for(factory(), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                raise IncompleteBatchError(
                    f"{what} timed out after {self.timeout}s"
                ) from e
            except Exception as e:
                raise IncompleteBatchError(f"{what} failed: {e}") from e
        if result is None:
            raise IncompleteBatchError(f"{what} returned no data")
        return result

    async def deliverables(self) -> list[dict[str, Any]]:
        first = await self.call(
            "deliverable page 0",
            lambda: self.source.fetch_deliverables(0, self.page_size),
        )
        offsets = range(self.page_size, first.total_count, self.page_size)
        pages = await _gather_all(
            *(
                self.call(
                    f"deliverable page {offset}",
                    lambda offset=offset: self.source.fetch_deliverables(
                        offset, self.page_size
                    ),
                )
                for offset in offsets
            )
        )

        items = list(first.items)
        for page in pages:
            items.extend(page.items)
        if len(items) != first.total_count:
            logger.warning(
                f"Feed reported {first.total_count} deliverables, received {len(items)}"
            )
        return items

    async def attach_teams(self, deliverables: list[dict[str, Any]]) -> None:
        with_slug = [d for d in deliverables if d.get("slug")]
        teams = await _gather_all(
            *(
                self.call(
                    f"teams of {d['slug']}",
                    lambda slug=d["slug"]: self.source.fetch_teams(slug),
                )
                for d in with_slug
            )
        )
        for deliverable, team_list in zip(with_slug, teams):
            deliverable["teams"] = team_list

    async def attach_disciplines(self, deliverables: list[dict[str, Any]]) -> None:
        pairs = [
            (team, deliverable["slug"])
            for deliverable in deliverables
            for team in deliverable.get("teams") or []
            if team.get("slug")
        ]
        results = await _gather_all(
            *(
                self.call(
                    f"disciplines of {team['slug']} on {slug}",
                    lambda team_slug=team["slug"], slug=slug: (
                        self.source.fetch_disciplines(team_slug, slug)
                    ),
                )
                for team, slug in pairs
            )
        )
        for (team, _), disciplines in zip(pairs, results):
            _attach(team, disciplines)


def _attach(team: dict[str, Any], disciplines: list[dict[str, Any]]) -> None:
    """Nest each discipline under the time allocations it lists."""
    by_allocation: dict[str, dict[str, Any]] = {}
    for discipline in disciplines:
        summary = {
            "uuid": discipline.get("uuid"),
            "title": discipline.get("title"),
            "numberOfMembers": discipline.get("numberOfMembers"),
        }
        for ta in discipline.get("timeAllocations") or []:
            ta_uuid = ta.get("uuid") if isinstance(ta, dict) else ta
            if ta_uuid:
                by_allocation[ta_uuid] = summary
    for ta in team.get("timeAllocations") or []:
        discipline = by_allocation.get(ta.get("uuid"))
        if discipline is not None:
            ta["discipline"] = discipline


async def fetch_roadmap(
    source: RoadmapSource,
    page_size: int | None = None,
    timeout: float | None = None,
    concurrency: int | None = None,
) -> list[dict[str, Any]]:
    """Fetch a complete roadmap snapshot as raw deliverable documents.

    Args:
        source: Upstream query implementation.
        page_size: Deliverables per page (default: settings.fetch_page_size).
        timeout: Seconds per sub-query (default: settings.fetch_timeout_seconds).
        concurrency: Max in-flight sub-queries (default: settings.fetch_concurrency).

    Returns:
        Deliverable documents with teams and disciplines attached, ready for
        ``parse_snapshot``.

    Raises:
        IncompleteBatchError: Any sub-query failed or timed out.
    """
    fetcher = _BatchFetcher(
        source,
        page_size=page_size or settings.fetch_page_size,
        timeout=timeout or settings.fetch_timeout_seconds,
        concurrency=concurrency or settings.fetch_concurrency,
    )
    deliverables = await fetcher.deliverables()
    await fetcher.attach_teams(deliverables)
    await fetcher.attach_disciplines(deliverables)
    logger.info(f"Fetched {len(deliverables)} deliverables")
    return deliverables
