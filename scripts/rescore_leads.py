"""
Recompute lead scores for one organization.

Usage:
    python scripts/rescore_leads.py --org 3f2c9a1e-...
"""
import argparse
import asyncio
import logging
import sys
import uuid

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def rescore(organization_id: uuid.UUID) -> int:
    from cadence.database import async_session_factory
    from cadence.services.scoring import score_organization

    async with async_session_factory() as db:
        updated = await score_organization(db, organization_id)
    logger.info("Rescored %d leads for %s", updated, str(organization_id)[:8])
    return updated


def main():
    parser = argparse.ArgumentParser(description="Rescore every lead of an organization")
    parser.add_argument("--org", type=str, required=True, help="Organization ID")
    args = parser.parse_args()

    try:
        organization_id = uuid.UUID(args.org)
    except ValueError:
        logger.error("Invalid organization ID: %s", args.org)
        sys.exit(1)

    asyncio.run(rescore(organization_id))


if __name__ == "__main__":
    main()
