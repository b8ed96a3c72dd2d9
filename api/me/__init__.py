"""Current user API endpoints."""

from fastapi import APIRouter, Depends, Security

from auth import CurrentUser, get_current_user
from errors import MarketplaceError
from ledger import LedgerManager
from users import UserManager
from ..errors import internal_error, to_http_exception

router = APIRouter(
    prefix="/me",
    tags=["Me"]
)

ledger_manager = LedgerManager()
user_manager = UserManager()


def get_ledger_manager() -> LedgerManager:
    return ledger_manager


def get_user_manager() -> UserManager:
    return user_manager


@router.get("")
async def get_me(
    user: CurrentUser = Security(get_current_user),
    users: UserManager = Depends(get_user_manager)
):
    """Get the authenticated user's account."""
    try:
        return await users.get_user(user.id)
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)


@router.get("/balance")
async def get_balance(
    user: CurrentUser = Security(get_current_user),
    ledger: LedgerManager = Depends(get_ledger_manager)
):
    """Get the authenticated user's ledger balance."""
    try:
        balance = await ledger.compute_balance(user.id)
        return {'user_id': user.id, 'balance': balance}
    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise internal_error(e)
