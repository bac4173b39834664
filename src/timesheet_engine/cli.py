"""Timesheet engine command line interface.

Provides operational tools for:
- Schema bootstrap
- Draining the recompute outbox
- Manual recompute requests
- Reviving parked outbox items

Usage:
    python -m timesheet_engine init-db
    python -m timesheet_engine drain --batch-size 50 --max-batches 20
    python -m timesheet_engine enqueue --timesheet-id X [--reason MANUAL]
    python -m timesheet_engine requeue-parked [--timesheet-id X]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Callable
from uuid import UUID

from timesheet_engine.config import Settings, get_settings
from timesheet_engine.database import create_schema, get_engine, make_session_factory
from timesheet_engine.services.outbox import OutboxService, RecomputeReason
from timesheet_engine.services.processor import RecomputeProcessor

logger = logging.getLogger("timesheet_engine.cli")


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


class EngineCli:
    """Timesheet engine command line interface."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="timesheet-engine",
            description="Timesheet financial engine operational tools",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Database URL (default: $DATABASE_URL)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create engine tables")

        drain = subparsers.add_parser("drain", help="Drain the recompute outbox")
        drain.add_argument(
            "--batch-size",
            type=int,
            default=self.settings.drain_batch_size,
            help=f"Items leased per batch (default: {self.settings.drain_batch_size})",
        )
        drain.add_argument(
            "--max-batches",
            type=int,
            default=self.settings.drain_max_batches,
            help=f"Stop after this many batches (default: {self.settings.drain_max_batches})",
        )
        drain.add_argument(
            "--concurrency",
            type=int,
            default=self.settings.worker_concurrency,
            help="Items processed concurrently within a batch",
        )

        enqueue = subparsers.add_parser("enqueue", help="Request a recompute")
        enqueue.add_argument(
            "--timesheet-id",
            type=parse_uuid,
            required=True,
            help="Timesheet to recompute",
        )
        enqueue.add_argument(
            "--reason",
            type=str,
            choices=[r.value for r in RecomputeReason],
            default=RecomputeReason.MANUAL.value,
            help="Recompute reason (default: MANUAL)",
        )

        requeue = subparsers.add_parser("requeue-parked", help="Revive parked outbox items")
        requeue.add_argument(
            "--timesheet-id",
            type=parse_uuid,
            help="Only revive items for this timesheet",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[..., int]] = {
            "init-db": self._cmd_init_db,
            "drain": self._cmd_drain,
            "enqueue": self._cmd_enqueue,
            "requeue-parked": self._cmd_requeue_parked,
        }

        handler = handlers.get(parsed.command)
        if handler:
            return handler(parsed)

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    def _database_url(self, args: argparse.Namespace) -> str:
        return args.database_url or self.settings.database_url

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create engine tables."""

        async def run() -> None:
            engine = get_engine(self._database_url(args))
            try:
                await create_schema(engine)
            finally:
                await engine.dispose()

        asyncio.run(run())
        print("Schema created.")
        return 0

    def _cmd_drain(self, args: argparse.Namespace) -> int:
        """Drain the recompute outbox until idle."""

        async def run():
            engine = get_engine(self._database_url(args))
            try:
                processor = RecomputeProcessor(
                    make_session_factory(engine),
                    config=self.settings.outbox_config(),
                    concurrency=args.concurrency,
                )
                return await processor.drain_until_idle(args.batch_size, args.max_batches)
            finally:
                await engine.dispose()

        result = asyncio.run(run())
        print(
            f"Drained {result.batches} batch(es): picked={result.picked} "
            f"succeeded={result.succeeded} failed={result.failed} parked={result.parked}"
        )
        return 0 if result.failed == 0 else 2

    def _cmd_enqueue(self, args: argparse.Namespace) -> int:
        """Enqueue a recompute for one timesheet."""

        async def run() -> None:
            engine = get_engine(self._database_url(args))
            try:
                async with make_session_factory(engine)() as session:
                    await OutboxService(session, self.settings.outbox_config()).enqueue(
                        args.timesheet_id, args.reason
                    )
                    await session.commit()
            finally:
                await engine.dispose()

        asyncio.run(run())
        print(f"Enqueued {args.reason} recompute for timesheet {args.timesheet_id}")
        return 0

    def _cmd_requeue_parked(self, args: argparse.Namespace) -> int:
        """Return parked outbox items to the queue."""

        async def run() -> int:
            engine = get_engine(self._database_url(args))
            try:
                async with make_session_factory(engine)() as session:
                    count = await OutboxService(
                        session, self.settings.outbox_config()
                    ).requeue_parked(args.timesheet_id)
                    await session.commit()
                    return count
            finally:
                await engine.dispose()

        count = asyncio.run(run())
        print(f"Requeued {count} parked item(s)")
        return 0


def main() -> int:
    """CLI entry point."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cli = EngineCli(settings)
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
