"""
Entry point for the postal registry ingestion pipeline.
"""

import argparse
import asyncio
import logging
import sys

from .application.exceptions import PostalRegistryError
from .infrastructure.containers import Container

logger = logging.getLogger(__name__)


def setup_logging(level: str):
    """Applies basic logging configuration."""
    logging.basicConfig(level=level)


def print_history(container: Container, limit: int):
    """Prints the newest ledger entries, most recent first."""
    ledger = container.ledger()
    versions = ledger.get_all_versions()
    if not versions:
        print("No versions in the history yet.")
        return

    for index, entry in enumerate(versions[:limit], start=1):
        print(f"{index}. Version: {entry.version}")
        print(f"   File date:     {entry.source_file_date or 'N/A'}")
        print(f"   Downloaded:    {entry.download_timestamp.isoformat()}")
        print(f"   Size:          {entry.byte_size / 1024 / 1024:.2f} MB")
        print(f"   Records:       {entry.record_count:,}")
        print(f"   Postal codes:  {entry.unique_key_count:,}")
        print(f"   File:          {entry.file_name}")

    if len(versions) > limit:
        print(f"... and {len(versions) - limit} more")
    print(f"Total versions: {len(versions)}")


def print_status(container: Container):
    """Prints readiness and, when ready, the loaded dataset's totals."""
    cache = container.cache()
    readiness = cache.readiness()
    print(f"Ready: {readiness.ready} (version {readiness.version})")
    if not readiness.ready:
        print(f"Reason: {readiness.reason}")
        return

    cache.load()
    stats = cache.get_stats()
    if stats is not None:
        print(f"Postal codes:   {stats.total_postal_codes:,}")
        print(f"States:         {stats.total_states:,}")
        print(f"Cities:         {stats.total_cities:,}")
        print(f"Municipalities: {stats.total_municipalities:,}")
        print(f"Neighborhoods:  {stats.total_neighborhoods:,}")


async def run_pipeline(container: Container, args: argparse.Namespace) -> bool:
    """Runs one ingestion and reports its outcome."""
    service = container.ingestion_service()
    try:
        report = await service.run(
            force_download=args.force_download,
            check_only=args.command == "check",
        )
    finally:
        await container.http_client().aclose()

    if not report.success:
        logger.error(f"Run failed: {report.reason}")
        return False

    if report.reason:
        logger.warning(report.reason)
    logger.info(
        f"Run finished. Version: {report.version}, "
        f"update available: {report.has_update}"
    )
    return True


async def run_application(args: argparse.Namespace):
    """Wires and runs the application using the DI container."""

    container = Container()
    container.cli_args.from_dict(vars(args))
    setup_logging(level=container.config().logging.level)

    try:
        if args.command in ("run", "check"):
            if not await run_pipeline(container, args):
                sys.exit(1)
        elif args.command == "history":
            print_history(container, args.limit)
        elif args.command == "status":
            print_status(container)
    except PostalRegistryError as e:
        logger.error(f"An application error occurred: {e}")
        sys.exit(1)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Postal Registry Ingestion")

    parser.add_argument(
        "command",
        choices=["run", "check", "history", "status"],
        help="'run' ingests a new publication, 'check' only detects one.",
    )

    parser.add_argument(
        "--force-download",
        action="store_true",
        help="Process the current publication even if it is already known.",
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Number of versions shown by 'history'.",
    )

    parser.add_argument(
        "--no-progress",
        dest="show_progress",
        action="store_false",
        help="Hide the download progress bar.",
    )

    cli_args = parser.parse_args()

    asyncio.run(run_application(cli_args))
