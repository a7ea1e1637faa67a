"""CLI command for failing image tasks stuck in pending or processing state.

Usage:
    python -m img2img.cli.recover_tasks [OPTIONS]

Examples:
    # Fail tasks untouched for the configured STALE_TASK_MINUTES
    python -m img2img.cli.recover_tasks

    # Fail tasks untouched for more than 10 minutes
    python -m img2img.cli.recover_tasks --older-than-minutes 10

    # Dry run (no database writes)
    python -m img2img.cli.recover_tasks --dry-run

    # Verbose logging
    python -m img2img.cli.recover_tasks -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from img2img.core import timezone  # noqa: F401
from img2img.core.config import Settings, configure_logging
from img2img.core.database import setup_db_session
from img2img.services.task_recovery import recover_stale_tasks
from img2img.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Fail image tasks left in pending or processing state",
        epilog="A task is stale when its updated_at is older than the threshold",
    )

    parser.add_argument(
        "--older-than-minutes",
        type=int,
        help="Staleness threshold in minutes (default: STALE_TASK_MINUTES)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List stale tasks without database writes",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]

    if args.verbose:
        settings.log_level = "DEBUG"

    configure_logging(settings)

    older_than = args.older_than_minutes or settings.stale_task_minutes
    if older_than <= 0:
        print("Error: --older-than-minutes must be positive", file=sys.stderr)
        return 1

    logger.info("cli.started", older_than_minutes=older_than, dry_run=args.dry_run)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    try:
        async with await uow_factory() as uow:
            result = await recover_stale_tasks(
                uow=uow,
                older_than_minutes=older_than,
                dry_run=args.dry_run,
            )

        print("\n" + "=" * 60)
        print("Stale Task Recovery Summary")
        print("=" * 60)
        print(f"Stale tasks found: {result.stale_count}")
        print(f"Tasks marked failed: {result.recovered_count}")

        for task_id in result.task_ids[:10]:
            print(f"  - {task_id}")
        if len(result.task_ids) > 10:
            print(f"  ... and {len(result.task_ids) - 10} more")

        if args.dry_run:
            print("\n[DRY RUN] No changes were persisted to database")

        print("=" * 60 + "\n")

        logger.info("cli.completed", stale=result.stale_count, recovered=result.recovered_count)
        return 0

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nRecovery interrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
