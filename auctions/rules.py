"""Auction and bid rules.

Pure functions with no database access. AuctionManager feeds them rows it has
read under lock; the order of the checks in ``check_bid`` is the order in
which rejections are reported to the bidder.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from errors import ConflictError, ValidationError

DEFAULT_INCREMENT = Decimal('0.01')


class BidTooLowError(ValidationError):
    """Raised when a bid is below the current minimum acceptable bid."""
    default_code = 'BidTooLow'

    def __init__(self, amount: Decimal, minimum: Decimal):
        self.amount = amount
        self.minimum_bid = minimum
        super().__init__(
            f"Bid must be at least {minimum}",
            details={'minimum_bid': minimum}
        )


def highest_bid(bids: Iterable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Pick the highest bid: largest amount, earliest created_at on ties."""
    ranked = sorted(bids, key=lambda bid: (-bid['amount'], bid['created_at']))
    return ranked[0] if ranked else None


def minimum_bid(
    start_price: Decimal,
    highest_amount: Optional[Decimal] = None,
    increment: Decimal = DEFAULT_INCREMENT
) -> Decimal:
    """Smallest acceptable next bid.

    The starting price until the first bid, then the highest bid plus the
    increment. The reserve price plays no part here.
    """
    if highest_amount is None:
        return Decimal(start_price)
    return Decimal(highest_amount) + increment


def is_expired(end_time: datetime, now: datetime) -> bool:
    return end_time <= now


def time_remaining(end_time: datetime, now: datetime) -> int:
    """Whole seconds until end_time, floored at zero."""
    return max(0, int((end_time - now).total_seconds()))


def reserve_met(amount: Optional[Decimal], reserve_price: Optional[Decimal]) -> bool:
    """Whether a winning amount satisfies the reserve (no reserve always does)."""
    if amount is None:
        return False
    return reserve_price is None or amount >= reserve_price


def validate_auction_params(
    starting_price: Decimal,
    reserve_price: Optional[Decimal],
    duration_hours: int,
    min_hours: int = 1,
    max_hours: int = 168
) -> None:
    """Validate auction creation input.

    Raises:
        ValidationError: If a price is not positive or the duration is out of range
    """
    if starting_price is None or starting_price <= 0:
        raise ValidationError("Starting price must be greater than 0")
    if reserve_price is not None and reserve_price <= 0:
        raise ValidationError("Reserve price must be greater than 0")
    if duration_hours is None or not (min_hours <= duration_hours <= max_hours):
        raise ValidationError(f"Duration must be between {min_hours} and {max_hours} hours")


def check_bid(
    auction: Dict[str, Any],
    nft_owner_id,
    bidder_id,
    amount: Decimal,
    highest: Optional[Dict[str, Any]],
    now: datetime,
    increment: Decimal = DEFAULT_INCREMENT
) -> Decimal:
    """Check a bid against the auction's current state.

    Args:
        auction: Auction row (is_active, end_time, start_price)
        nft_owner_id: Current owner of the auctioned NFT
        bidder_id: User placing the bid
        amount: Offered amount
        highest: Current highest bid row, if any
        now: Current time
        increment: Minimum raise over the highest bid

    Returns:
        The minimum bid that the amount was checked against

    Raises:
        ValidationError: Non-positive amount, SelfBid or BidTooLow
        ConflictError: Inactive, Expired or AlreadyHighest
    """
    if amount is None or amount <= 0:
        raise ValidationError("Bid amount must be greater than 0")
    if not auction['is_active']:
        raise ConflictError("Auction is not active", code='Inactive')
    if is_expired(auction['end_time'], now):
        raise ConflictError("Auction has ended", code='Expired')
    if nft_owner_id is not None and nft_owner_id == bidder_id:
        raise ValidationError("Cannot bid on your own NFT", code='SelfBid')

    minimum = minimum_bid(
        auction['start_price'],
        highest['amount'] if highest else None,
        increment
    )
    if amount < minimum:
        raise BidTooLowError(amount, minimum)
    if highest and highest['bidder_id'] == bidder_id:
        raise ConflictError("You already have the highest bid", code='AlreadyHighest')
    return minimum
