"""Stock purchase API endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Security, status
from pydantic import BaseModel

from auth import CurrentUser, get_current_user
from errors import MarketplaceError
from stocks import StockManager
from ..errors import internal_error, to_http_exception

router = APIRouter(
    prefix="/stocks",
    tags=["Stocks"]
)

stock_manager = StockManager()


def get_stock_manager() -> StockManager:
    return stock_manager


class StockPurchaseRequest(BaseModel):
    """Request model for recording a stock purchase."""
    symbol: str
    amount_usd: Decimal
    price_usd: Decimal
    shares: Decimal
    date: Optional[datetime] = None


@router.get("/purchases")
async def list_purchases(
    user: CurrentUser = Security(get_current_user),
    manager: StockManager = Depends(get_stock_manager)
):
    """List the caller's stock purchases."""
    try:
        return {'purchases': await manager.list_purchases(user.id)}
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)


@router.post("/purchases", status_code=status.HTTP_201_CREATED)
async def record_purchase(
    request: StockPurchaseRequest,
    user: CurrentUser = Security(get_current_user),
    manager: StockManager = Depends(get_stock_manager)
):
    """Record a stock purchase paid from the caller's balance."""
    try:
        return await manager.record_purchase(
            user.id,
            request.symbol,
            request.amount_usd,
            request.price_usd,
            request.shares,
            date=request.date
        )
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)


@router.post("/purchases/claim")
async def claim_profit(
    user: CurrentUser = Security(get_current_user),
    manager: StockManager = Depends(get_stock_manager)
):
    """Claim profit accrued on all of the caller's purchases."""
    try:
        result = await manager.claim_profit(user.id)
        message = 'Profit claimed' if result['transaction'] else 'No profit to claim yet'
        return {'message': message, **result}
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)
