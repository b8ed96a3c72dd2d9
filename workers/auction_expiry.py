"""Worker to close auctions whose end time has passed."""

import asyncio
import logging
from typing import Optional

from auctions import AuctionManager
from config import settings_conf

# Configure logging
logger = logging.getLogger(__name__)

SWEEP_INTERVAL = settings_conf['auction_sweep_interval']


async def sweep_once(manager: AuctionManager) -> int:
    """Run one reconciliation pass, logging instead of raising."""
    try:
        return await manager.close_expired_auctions()
    except Exception as e:
        logger.error(f"Error closing expired auctions: {e}")
        return 0


async def run_worker(manager: Optional[AuctionManager] = None, interval: int = SWEEP_INTERVAL):
    """Main worker loop."""
    manager = manager or AuctionManager()
    logger.info(f"Auction expiry worker starting up (every {interval}s)")
    while True:
        try:
            await sweep_once(manager)
        finally:
            await asyncio.sleep(interval)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        pass
