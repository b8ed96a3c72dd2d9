"""REST API module for the marketplace.

This module provides HTTP endpoints for:
- The current user and their ledger balance
- Transaction history
- Minting, listing and buying NFTs
- Auctions, bids and auction settlement
- Stock purchases and profit claims
- Withdrawal requests and admin review
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from database import init_db, close as db_close
from workers.auction_expiry import run_worker

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Initializing API...")
    await init_db()

    expiry_task = asyncio.create_task(run_worker())
    logger.info("Started auction expiry task")

    yield

    logger.info("Shutting down API...")
    expiry_task.cancel()
    try:
        await expiry_task
    except asyncio.CancelledError:
        pass

    # Let queued notification emails finish
    for manager in (nft_manager, auction_manager, withdrawal_manager):
        await manager.notifier.drain()
    await db_close()


# Create FastAPI app
app = FastAPI(
    title="NFT Marketplace API",
    description="REST API for the NFT marketplace ledger and auctions",
    version=VERSION,
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, replace with specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    return {
        "name": "NFT Marketplace API",
        "version": VERSION,
        "status": "running"
    }


# Import and include all routers
from .me import router as me_router
from .transactions import router as transactions_router
from .nfts import router as nfts_router, nft_manager
from .auctions import router as auctions_router, auction_manager
from .stocks import router as stocks_router
from .withdrawals import router as withdrawals_router, withdrawal_manager
from .admin import router as admin_router

app.include_router(me_router)
app.include_router(transactions_router)
app.include_router(nfts_router)
app.include_router(auctions_router)
app.include_router(stocks_router)
app.include_router(withdrawals_router)
app.include_router(admin_router)
