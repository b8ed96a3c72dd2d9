"""Auction API endpoints."""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Security, status
from pydantic import BaseModel

from auctions import AuctionManager
from auth import CurrentUser, get_current_user
from errors import MarketplaceError
from ..errors import internal_error, to_http_exception

router = APIRouter(
    prefix="/auctions",
    tags=["Auctions"]
)

auction_manager = AuctionManager()


def get_auction_manager() -> AuctionManager:
    return auction_manager


class CreateAuctionRequest(BaseModel):
    """Request model for starting an auction."""
    nft_id: UUID
    starting_price: Decimal
    reserve_price: Optional[Decimal] = None
    duration: int  # hours


class BidRequest(BaseModel):
    """Request model for placing a bid."""
    amount: Decimal


@router.get("")
async def list_auctions(
    is_active: Optional[bool] = None,
    seller_id: Optional[UUID] = None,
    category: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    manager: AuctionManager = Depends(get_auction_manager)
):
    """Browse auctions."""
    try:
        return await manager.list_auctions(
            is_active=is_active,
            seller_id=seller_id,
            category=category,
            min_price=min_price,
            max_price=max_price,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order
        )
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_auction(
    request: CreateAuctionRequest,
    user: CurrentUser = Security(get_current_user),
    manager: AuctionManager = Depends(get_auction_manager)
):
    """Start an auction for an NFT the caller owns."""
    try:
        return await manager.create_auction(
            request.nft_id,
            user.id,
            request.starting_price,
            reserve_price=request.reserve_price,
            duration_hours=request.duration,
            is_admin=user.is_admin
        )
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)


@router.get("/{auction_id}")
async def get_auction(auction_id: UUID, manager: AuctionManager = Depends(get_auction_manager)):
    """Get auction details with bid history."""
    try:
        return await manager.get_auction(auction_id)
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)


@router.post("/{auction_id}/bid", status_code=status.HTTP_201_CREATED)
async def place_bid(
    auction_id: UUID,
    request: BidRequest,
    user: CurrentUser = Security(get_current_user),
    manager: AuctionManager = Depends(get_auction_manager)
):
    """Place a bid."""
    try:
        bid = await manager.place_bid(auction_id, user.id, request.amount)
        return {'message': 'Bid placed successfully', 'bid': bid}
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)


@router.post("/{auction_id}/settle")
async def settle_auction(
    auction_id: UUID,
    user: CurrentUser = Security(get_current_user),
    manager: AuctionManager = Depends(get_auction_manager)
):
    """Settle an ended auction (seller, highest bidder or admin)."""
    try:
        return await manager.settle_auction(auction_id, user.id, is_admin=user.is_admin)
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)
