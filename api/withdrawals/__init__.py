"""Withdrawal request API endpoints."""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Security, status
from pydantic import BaseModel

from auth import CurrentUser, get_current_user
from errors import MarketplaceError
from withdrawals import WithdrawalManager
from ..errors import internal_error, to_http_exception

router = APIRouter(
    prefix="/withdrawals",
    tags=["Withdrawals"]
)

withdrawal_manager = WithdrawalManager()


def get_withdrawal_manager() -> WithdrawalManager:
    return withdrawal_manager


class WithdrawalRequestBody(BaseModel):
    """Request model for filing a withdrawal request."""
    amount: Decimal
    method: str
    currency: Optional[str] = "USD"
    details: Optional[str] = ""


@router.get("")
async def list_requests(
    user: CurrentUser = Security(get_current_user),
    manager: WithdrawalManager = Depends(get_withdrawal_manager)
):
    """List the caller's latest withdrawal requests."""
    try:
        return {'requests': await manager.list_requests(user.id)}
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_request(
    request: WithdrawalRequestBody,
    user: CurrentUser = Security(get_current_user),
    manager: WithdrawalManager = Depends(get_withdrawal_manager)
):
    """File a withdrawal request for admin review."""
    try:
        record = await manager.create_request(
            user.id,
            request.amount,
            request.method,
            currency=request.currency,
            details=request.details
        )
        return {'request_id': record['id'], 'status': record['status'], 'request': record}
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)


@router.get("/{request_id}")
async def get_request(
    request_id: UUID,
    user: CurrentUser = Security(get_current_user),
    manager: WithdrawalManager = Depends(get_withdrawal_manager)
):
    """Get one of the caller's withdrawal requests."""
    try:
        return await manager.get_request(request_id, user.id)
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)
