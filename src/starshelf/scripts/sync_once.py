"""
Run one star sync in the foreground.

Usage:
    python -m starshelf sync --user-id 1
    python -m starshelf.scripts.sync_once --user-id 1

Starts the sync exactly as the API would, then waits for the background
work (including the follow-up release fetch) and prints the final status.
"""
import argparse
import asyncio
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)


async def _sync_once(user_id: int) -> str:
    from starshelf.db.engine import get_engine
    from starshelf.services.sync_service import StarSyncService

    service = StarSyncService(get_engine())
    result = await service.sync_user_stars(user_id)
    if not result.started:
        logger.info("Sync %s already running for user %s", result.sync_status.id, user_id)
        return result.sync_status.status

    await service.wait_for_background()
    final = service.get_latest_status(user_id)
    if final.error:
        logger.error("Sync failed: %s", final.error)
    return final.status


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Sync a user's GitHub stars once")
    parser.add_argument("--user-id", type=int, required=True, help="Internal user id")
    args = parser.parse_args(argv)
    status = asyncio.run(_sync_once(args.user_id))
    logger.info("Sync finished with status %s", status)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    main()
