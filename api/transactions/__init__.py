"""Transaction history API endpoints."""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Security

from auth import CurrentUser, get_current_user
from errors import MarketplaceError
from ledger import LedgerManager
from ..errors import internal_error, to_http_exception
from ..me import get_ledger_manager

router = APIRouter(
    prefix="/transactions",
    tags=["Transactions"]
)


@router.get("")
async def list_transactions(
    type: Optional[str] = Query(None, description="SALE, TRANSFER, MINT, DEPOSIT or WITHDRAWAL"),
    nft_id: Optional[UUID] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    user: CurrentUser = Security(get_current_user),
    ledger: LedgerManager = Depends(get_ledger_manager)
):
    """List the authenticated user's transactions."""
    try:
        return await ledger.list_transactions(
            user.id,
            tx_type=type.upper() if type else None,
            nft_id=nft_id,
            min_amount=min_amount,
            max_amount=max_amount,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order
        )
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: UUID,
    user: CurrentUser = Security(get_current_user),
    ledger: LedgerManager = Depends(get_ledger_manager)
):
    """Get one transaction (own transactions, or any for admins)."""
    try:
        return await ledger.get_transaction(transaction_id, user.id, user.is_admin)
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)
