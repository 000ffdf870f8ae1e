"""
Run sequence-runner cycles from the command line (cron or manual use).

Usage:
    python scripts/run_cycle.py
    python scripts/run_cycle.py --org 3f2c9a1e-...
    python scripts/run_cycle.py --cycles 5 --batch-size 200
    python scripts/run_cycle.py --broadcasts
"""
import argparse
import asyncio
import json
import logging
import sys
import uuid

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def run(organization_id=None, cycles: int = 1, batch_size=None, broadcasts: bool = False):
    """Run up to `cycles` cycles, stopping early once nothing is due."""
    from cadence.database import async_session_factory
    from cadence.workers.sequence_runner import run_cycle
    from cadence.services.broadcasts import dispatch_due_broadcasts

    total = 0
    for i in range(cycles):
        async with async_session_factory() as db:
            summary = await run_cycle(db, organization_id=organization_id, batch_size=batch_size)
        logger.info("Cycle %d: %s", i + 1, json.dumps(summary.counts))
        total += summary.processed
        if summary.processed == 0:
            break

    if broadcasts:
        async with async_session_factory() as db:
            started = await dispatch_due_broadcasts(db)
        logger.info("Dispatched %d scheduled broadcasts", started)

    logger.info("Done: %d enrollments processed", total)
    return total


def main():
    parser = argparse.ArgumentParser(description="Run sequence-runner cycles")
    parser.add_argument(
        "--org", type=str, default=None,
        help="Only process enrollments of this organization ID",
    )
    parser.add_argument(
        "--cycles", type=int, default=1,
        help="Max number of cycles to run (stops early when nothing is due)",
    )
    parser.add_argument(
        "--batch-size", type=int, default=None,
        help="Enrollments per cycle (default: RUNNER_BATCH_SIZE)",
    )
    parser.add_argument(
        "--broadcasts", action="store_true",
        help="Also send scheduled broadcasts that are due",
    )
    args = parser.parse_args()

    organization_id = None
    if args.org:
        try:
            organization_id = uuid.UUID(args.org)
        except ValueError:
            logger.error("Invalid organization ID: %s", args.org)
            sys.exit(1)

    asyncio.run(run(organization_id, args.cycles, args.batch_size, args.broadcasts))


if __name__ == "__main__":
    main()
