"""NFT API endpoints."""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Security, status
from pydantic import BaseModel, Field

from auth import CurrentUser, get_current_user
from errors import MarketplaceError
from nfts import NFTManager
from ..errors import internal_error, to_http_exception

router = APIRouter(
    prefix="/nfts",
    tags=["NFTs"]
)

nft_manager = NFTManager()


def get_nft_manager() -> NFTManager:
    return nft_manager


class MintRequest(BaseModel):
    """Request model for minting an NFT."""
    name: str
    image: str
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[Decimal] = None
    collection_id: Optional[UUID] = None


class UpdateNFTRequest(BaseModel):
    """Request model for updating an NFT's listing."""
    name: Optional[str] = None
    description: Optional[str] = Field(None, max_length=1000)
    price: Optional[Decimal] = None
    is_listed: Optional[bool] = None


@router.get("")
async def list_nfts(
    search: Optional[str] = None,
    category: Optional[str] = None,
    collection_id: Optional[UUID] = None,
    creator_id: Optional[UUID] = None,
    owner_id: Optional[UUID] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    is_listed: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    manager: NFTManager = Depends(get_nft_manager)
):
    """Browse NFTs."""
    try:
        return await manager.list_nfts(
            search=search,
            category=category,
            collection_id=collection_id,
            creator_id=creator_id,
            owner_id=owner_id,
            min_price=min_price,
            max_price=max_price,
            is_listed=is_listed,
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
async def mint_nft(
    request: MintRequest,
    user: CurrentUser = Security(get_current_user),
    manager: NFTManager = Depends(get_nft_manager)
):
    """Mint an NFT, paying the mint fee from the caller's balance."""
    try:
        return await manager.mint_with_debit(request.model_dump(), user.id, is_admin=user.is_admin)
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)


@router.get("/{nft_id}")
async def get_nft(nft_id: UUID, manager: NFTManager = Depends(get_nft_manager)):
    """Get NFT details."""
    try:
        return await manager.get_nft(nft_id)
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)


@router.patch("/{nft_id}")
async def update_nft(
    nft_id: UUID,
    request: UpdateNFTRequest,
    user: CurrentUser = Security(get_current_user),
    manager: NFTManager = Depends(get_nft_manager)
):
    """Update an NFT's price, listing or display fields (owner or admin)."""
    try:
        return await manager.update_listing(
            nft_id,
            user.id,
            is_admin=user.is_admin,
            price=request.price,
            is_listed=request.is_listed,
            name=request.name,
            description=request.description
        )
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)


@router.post("/{nft_id}/purchase")
async def purchase_nft(
    nft_id: UUID,
    user: CurrentUser = Security(get_current_user),
    manager: NFTManager = Depends(get_nft_manager)
):
    """Buy a listed NFT at its price."""
    try:
        result = await manager.settle_purchase(nft_id, user.id)
        return {'message': 'NFT purchased successfully', **result}
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)
