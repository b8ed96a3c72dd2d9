"""Admin API endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from auth import CurrentUser, require_admin
from errors import MarketplaceError
from withdrawals import WithdrawalManager
from ..errors import internal_error, to_http_exception
from ..withdrawals import get_withdrawal_manager

router = APIRouter(
    prefix="/admin",
    tags=["Admin"]
)


class ReviewRequest(BaseModel):
    """Request model for reviewing a withdrawal request."""
    status: str  # APPROVED or DENIED


@router.get("/withdrawals")
async def list_withdrawal_requests(
    user_id: Optional[UUID] = None,
    admin: CurrentUser = Depends(require_admin),
    manager: WithdrawalManager = Depends(get_withdrawal_manager)
):
    """List the latest withdrawal requests, optionally for one user."""
    try:
        return {'requests': await manager.list_all_requests(user_id)}
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)


@router.put("/withdrawals/{request_id}")
async def review_withdrawal_request(
    request_id: UUID,
    request: ReviewRequest,
    admin: CurrentUser = Depends(require_admin),
    manager: WithdrawalManager = Depends(get_withdrawal_manager)
):
    """Approve or deny a pending withdrawal request."""
    try:
        return await manager.review_request(request_id, request.status, admin.id)
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)
