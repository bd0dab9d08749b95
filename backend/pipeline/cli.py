"""CLI for running roadmap ledger ingestion and reports."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from pipeline.roadmap.dates import ms_to_iso, now_ms, parse_capture_date

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)-5.5s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def _date_arg(value: str) -> int:
    """argparse type for YYYYMMDD / ISO-8601 dates."""
    try:
        return parse_capture_date(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


async def init_db_command() -> int:
    """Create the ledger tables (local SQLite use; PostgreSQL uses Alembic)."""
    from app.models.base import create_all_tables

    await create_all_tables()
    logger.info("Ledger tables created")
    return 0


async def ingest_command(path: Path, observed_at: int | None = None) -> int:
    """Ingest a captured roadmap JSON file.

    Args:
        path: JSON file holding a list of deliverable documents.
        observed_at: Capture time (default: now).

    Returns:
        0 on success, 1 on failure.
    """
    from app.models.base import async_session_maker
    from pipeline.roadmap.errors import IngestionError
    from pipeline.roadmap.ingestion import RoadmapIngestionService

    if not path.is_file():
        logger.error(f"No such file: {path}")
        return 1

    async with async_session_maker() as session:
        service = RoadmapIngestionService(session, source=f"file:{path.name}")
        try:
            result = await service.ingest_file(path, observed_at)
        except IngestionError as e:
            logger.error(str(e))
            return 1

    counters = result.counters
    if not counters.has_changes:
        print("No changes detected")
    else:
        returning = f" ({counters.readded} returning)" if counters.readded else ""
        print(
            f"{counters.added} additions, {counters.removed} removals, "
            f"{counters.updated} updates{returning}"
        )
    if result.warnings:
        print(f"{len(result.warnings)} malformed entities skipped")
    return 0


async def seed_command(directory: Path) -> int:
    """Seed an empty ledger from dated capture files."""
    from app.models.base import async_session_maker
    from pipeline.roadmap.errors import IngestionError
    from pipeline.roadmap.ingestion import RoadmapIngestionService

    if not directory.is_dir():
        logger.error(f"No such directory: {directory}")
        return 1

    async with async_session_maker() as session:
        service = RoadmapIngestionService(session, source="seed")
        try:
            results = await service.seed_from_directory(directory)
        except IngestionError as e:
            logger.error(str(e))
            return 1

    for result in results:
        c = result.counters
        print(
            f"{ms_to_iso(result.observed_at)}: +{c.added} ~{c.updated} -{c.removed}"
        )
    if not results:
        print("Nothing seeded")
    return 0


async def dates_command() -> int:
    """Print every capture date, newest first."""
    from app.models.base import async_session_maker
    from pipeline.roadmap.snapshot_service import SnapshotService

    async with async_session_maker() as session:
        captures = await SnapshotService(session).capture_dates()

    if not captures:
        print("No captures recorded")
        return 1
    for capture in captures:
        print(f"{capture}  {ms_to_iso(capture)}")
    return 0


async def compare_command(
    start: int | None, end: int | None, as_json: bool = False
) -> int:
    """Print the delta between two captures."""
    from app.crud.roadmap import get_delta
    from app.models.base import async_session_maker
    from pipeline.roadmap.errors import InsufficientDataError

    async with async_session_maker() as session:
        try:
            delta = await get_delta(session, start, end)
        except InsufficientDataError:
            print("Invalid timespan or insufficient data to compare")
            return 1

    if as_json:
        print(delta.model_dump_json(indent=2))
        return 0

    print(f"{ms_to_iso(delta.start)} => {ms_to_iso(delta.end)}")
    print(f"{delta.deliverable_count} deliverables listed: {delta.summary}")
    for removed in delta.removed:
        print(f"  - {removed.deliverable.title}")
    for added in delta.added:
        suffix = " (returning)" if added.readded else ""
        print(f"  + {added.deliverable.title}{suffix}")
    for updated in delta.updated:
        print(f"  ~ {updated.after.title}")
    print(f"{delta.unchanged} unchanged")
    return 0


async def schedule_command(at: int, as_json: bool = False) -> int:
    """Print the deliverables being worked on at a moment."""
    from app.crud.roadmap import get_schedule
    from app.models.base import async_session_maker

    async with async_session_maker() as session:
        report = await get_schedule(session, at)

    if report is None or not report.deliverables:
        print("Insufficient data to generate report")
        return 1
    if as_json:
        print(report.model_dump_json(indent=2))
        return 0

    tense = "were" if report.is_past else "are currently"
    print(
        f"There {tense} {report.deliverable_count} scheduled deliverables being "
        f"worked on by {report.team_count} teams"
    )
    for deliverable in report.deliverables:
        print(f"{deliverable.title}")
        for team in deliverable.teams:
            print(f"  {team.title or team.slug}")
            for discipline in team.disciplines:
                for active in discipline.active:
                    load = f"{round(active.load * 100)}%" if active.load is not None else "n/a"
                    print(
                        f"    {active.number_of_members}x {discipline.title}: "
                        f"{active.tasks} tasks ({load} load) thru {ms_to_iso(active.end_date)}"
                    )
    return 0


async def export_command(
    at: int | None, export_all_dates: bool, directory: Path | None
) -> int:
    """Export one capture (or all of them) as feed-shaped JSON files."""
    from app.models.base import async_session_maker
    from pipeline.roadmap.export import export_all, export_snapshot
    from pipeline.roadmap.snapshot_service import SnapshotService

    async with async_session_maker() as session:
        if export_all_dates:
            paths = await export_all(session, directory)
        else:
            service = SnapshotService(session)
            capture = await service.resolve_capture(at if at is not None else now_ms())
            if capture is None:
                print("Invalid timespan or insufficient data to export")
                return 1
            paths = [await export_snapshot(session, capture, directory)]

    for path in paths:
        print(path)
    return 0 if paths else 1


def main() -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(description="Roadmap ledger CLI")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-db", help="Create the ledger tables")

    ingest_parser = subparsers.add_parser("ingest", help="Ingest a captured snapshot file")
    ingest_parser.add_argument("file", type=Path, help="JSON list of deliverables")
    ingest_parser.add_argument(
        "--at",
        type=_date_arg,
        help="Capture date, YYYYMMDD or ISO-8601 (default: now)",
    )

    seed_parser = subparsers.add_parser(
        "seed", help="Seed an empty ledger from YYYYMMDD.json captures"
    )
    seed_parser.add_argument(
        "dir",
        type=Path,
        nargs="?",
        help="Capture directory (default: settings.seed_dir)",
    )

    subparsers.add_parser("dates", help="List capture dates, newest first")

    compare_parser = subparsers.add_parser("compare", help="Delta between two captures")
    compare_parser.add_argument(
        "-s", "--start", type=_date_arg, help="Start date (default: capture before end)"
    )
    compare_parser.add_argument(
        "-e", "--end", type=_date_arg, help="End date (default: latest capture)"
    )
    compare_parser.add_argument("--json", action="store_true", help="Print JSON")

    schedule_parser = subparsers.add_parser(
        "schedule", help="Deliverables being worked on at a moment"
    )
    schedule_parser.add_argument(
        "-t", "--at", type=_date_arg, help="Report date (default: now)"
    )
    schedule_parser.add_argument("--json", action="store_true", help="Print JSON")

    export_parser = subparsers.add_parser("export", help="Export captures as JSON")
    export_target = export_parser.add_mutually_exclusive_group()
    export_target.add_argument(
        "-t", "--at", type=_date_arg, help="Export date (default: latest capture)"
    )
    export_target.add_argument(
        "--all", action="store_true", dest="all_dates", help="Export every capture"
    )
    export_parser.add_argument(
        "--dir", type=Path, help="Output directory (default: settings.export_dir)"
    )

    args = parser.parse_args()

    if args.command == "init-db":
        return asyncio.run(init_db_command())

    elif args.command == "ingest":
        return asyncio.run(ingest_command(args.file, args.at))

    elif args.command == "seed":
        from app.config import settings

        return asyncio.run(seed_command(args.dir or settings.seed_dir))

    elif args.command == "dates":
        return asyncio.run(dates_command())

    elif args.command == "compare":
        return asyncio.run(compare_command(args.start, args.end, args.json))

    elif args.command == "schedule":
        at = args.at if args.at is not None else now_ms()
        return asyncio.run(schedule_command(at, args.json))

    elif args.command == "export":
        return asyncio.run(export_command(args.at, args.all_dates, args.dir))

    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
