"""Auctions module for timed NFT auctions.

An auction is active from creation until ``end_time``; expiry is purely a
function of the clock, so every read and write path compares ``end_time``
with the current time instead of trusting ``is_active`` alone. A background
sweep (``close_expired_auctions``) flips the flag on expired rows so the
partial unique index on active auctions stays tight, but no rule depends on
it having run.

Bids are immutable. The highest bid is derived from the bids table (largest
amount, earliest on ties); ``current_price`` keeps the starting price.
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from asyncpg.exceptions import PostgresError, UniqueViolationError
from asyncpg.pool import Pool

from config import settings_conf
from database import get_pool
from database.lib.pagination import page_bounds, page_info
from errors import ConflictError, ForbiddenError, InternalError, MarketplaceError, NotFoundError, ValidationError
from nfts.settlement import apply_sale
from notifications import EmailNotifier, auction_settled_email, bid_received_email
from .rules import (
    check_bid,
    is_expired,
    minimum_bid,
    reserve_met,
    time_remaining,
    validate_auction_params
)

logger = logging.getLogger(__name__)

MIN_BID_INCREMENT = settings_conf['min_bid_increment']
MIN_AUCTION_HOURS = settings_conf['min_auction_hours']
MAX_AUCTION_HOURS = settings_conf['max_auction_hours']

SORT_COLUMNS = {'created_at': 'a.created_at', 'start_price': 'a.start_price', 'end_time': 'a.end_time'}

HIGHEST_BID_QUERY = '''
    SELECT * FROM bids
    WHERE auction_id = $1
    ORDER BY amount DESC, created_at ASC
    LIMIT 1
'''

AUCTION_VIEW_QUERY = '''
    SELECT
        a.*,
        n.name AS nft_name,
        n.image AS nft_image,
        n.category AS nft_category,
        n.owner_id AS nft_owner_id,
        hb.amount AS current_bid,
        hb.bidder_id AS highest_bidder_id,
        (SELECT COUNT(*) FROM bids b WHERE b.auction_id = a.id) AS total_bids
    FROM auctions a
    JOIN nfts n ON n.id = a.nft_id
    LEFT JOIN LATERAL (
        SELECT amount, bidder_id FROM bids b
        WHERE b.auction_id = a.id
        ORDER BY amount DESC, created_at ASC
        LIMIT 1
    ) hb ON true
'''


class AuctionManager:
    """Manages auction creation, bidding and settlement."""

    def __init__(
        self,
        pool: Optional[Pool] = None,
        notifier: Optional[EmailNotifier] = None,
        clock: Optional[Callable[[], datetime]] = None
    ) -> None:
        """Initialize auction manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
            notifier: Optional email notifier
            clock: Optional callable returning the current aware datetime
        """
        self.pool = pool
        self.notifier = notifier or EmailNotifier()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    def _decorate(self, row, now: datetime) -> Dict[str, Any]:
        auction = dict(row)
        expired = is_expired(auction['end_time'], now)
        auction['is_expired'] = expired
        auction['time_remaining'] = time_remaining(auction['end_time'], now)
        if 'current_bid' in auction:
            auction['minimum_bid'] = minimum_bid(
                auction['start_price'], auction['current_bid'], MIN_BID_INCREMENT
            )
        if auction.get('settled_at'):
            auction['status'] = 'settled'
        elif auction['is_active'] and not expired:
            auction['status'] = 'active'
        elif expired:
            auction['status'] = 'ended'
        else:
            auction['status'] = 'closed'
        return auction

    async def create_auction(
        self,
        nft_id: UUID,
        seller_id: UUID,
        starting_price: Decimal,
        reserve_price: Optional[Decimal] = None,
        duration_hours: int = 24,
        is_admin: bool = False
    ) -> Dict[str, Any]:
        """Start an auction for an NFT.

        Args:
            nft_id: NFT to auction
            seller_id: Requesting user, recorded as the seller
            starting_price: First acceptable bid
            reserve_price: Optional minimum outcome required for settlement to sell
            duration_hours: Auction length in whole hours
            is_admin: Whether the requester may auction NFTs they don't own

        Returns:
            The created auction

        Raises:
            ValidationError: Invalid price or duration
            NotFoundError: NFT does not exist
            ForbiddenError: Requester neither owns the NFT nor is an admin
            ConflictError: AlreadySold, AlreadyActive or PendingSettlement
        """
        validate_auction_params(
            starting_price, reserve_price, duration_hours, MIN_AUCTION_HOURS, MAX_AUCTION_HOURS
        )
        await self.ensure_pool()
        now = self.clock()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    nft = await conn.fetchrow(
                        'SELECT id, owner_id, is_sold FROM nfts WHERE id = $1 FOR UPDATE',
                        nft_id
                    )
                    if not nft:
                        raise NotFoundError("NFT not found")
                    if nft['owner_id'] != seller_id and not is_admin:
                        raise ForbiddenError("You can only auction NFTs you own")
                    if nft['is_sold']:
                        raise ConflictError("NFT has already been sold", code='AlreadySold')

                    pending = await conn.fetchval(
                        '''
                        SELECT a.id FROM auctions a
                        WHERE a.nft_id = $1
                        AND a.settled_at IS NULL
                        AND a.end_time <= $2
                        AND EXISTS (SELECT 1 FROM bids b WHERE b.auction_id = a.id)
                        LIMIT 1
                        ''',
                        nft_id,
                        now
                    )
                    if pending:
                        raise ConflictError(
                            "NFT has an ended auction awaiting settlement",
                            code='PendingSettlement',
                            details={'auction_id': pending}
                        )

                    # Expired rows still flagged active would trip the unique index
                    await conn.execute(
                        '''
                        UPDATE auctions
                        SET is_active = false, settled_at = COALESCE(settled_at, $2)
                        WHERE nft_id = $1 AND is_active AND end_time <= $2
                        ''',
                        nft_id,
                        now
                    )

                    active = await conn.fetchval(
                        'SELECT id FROM auctions WHERE nft_id = $1 AND is_active AND end_time > $2',
                        nft_id,
                        now
                    )
                    if active:
                        raise ConflictError(
                            "NFT already has an active auction",
                            code='AlreadyActive',
                            details={'auction_id': active}
                        )

                    auction = await conn.fetchrow(
                        '''
                        INSERT INTO auctions (
                            nft_id, seller_id, start_price, reserve_price,
                            current_price, start_time, end_time, is_active
                        ) VALUES ($1, $2, $3, $4, $3, $5, $6, true)
                        RETURNING *
                        ''',
                        nft_id,
                        seller_id,
                        starting_price,
                        reserve_price,
                        now,
                        now + timedelta(hours=duration_hours)
                    )

            logger.info(f"Created auction {auction['id']} for NFT {nft_id} ending {auction['end_time']}")
            return self._decorate(auction, now)

        except MarketplaceError:
            raise
        except UniqueViolationError:
            raise ConflictError("NFT already has an active auction", code='AlreadyActive')
        except PostgresError as e:
            logger.error(f"Error creating auction for NFT {nft_id}: {e}")
            raise InternalError(f"Failed to create auction: {e}")

    async def place_bid(self, auction_id: UUID, bidder_id: UUID, amount: Decimal) -> Dict[str, Any]:
        """Place a bid on an auction.

        The auction row is locked for the duration of the check and insert, so
        concurrent bids on one auction are evaluated one after another against
        the then-current highest bid.

        Returns:
            The created bid with the next minimum bid

        Raises:
            NotFoundError: Auction does not exist
            ValidationError: Non-positive amount, SelfBid or BidTooLow
            ConflictError: Inactive, Expired or AlreadyHighest
        """
        await self.ensure_pool()
        now = self.clock()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    auction = await conn.fetchrow(
                        '''
                        SELECT a.*, n.owner_id AS nft_owner_id, n.name AS nft_name, u.email AS owner_email
                        FROM auctions a
                        JOIN nfts n ON n.id = a.nft_id
                        LEFT JOIN users u ON u.id = n.owner_id
                        WHERE a.id = $1
                        FOR UPDATE OF a
                        ''',
                        auction_id
                    )
                    if not auction:
                        raise NotFoundError("Auction not found")

                    highest = await conn.fetchrow(HIGHEST_BID_QUERY, auction_id)
                    check_bid(
                        auction,
                        auction['nft_owner_id'],
                        bidder_id,
                        amount,
                        highest,
                        now,
                        MIN_BID_INCREMENT
                    )

                    bid = await conn.fetchrow(
                        '''
                        INSERT INTO bids (auction_id, nft_id, bidder_id, amount, created_at)
                        VALUES ($1, $2, $3, $4, $5)
                        RETURNING *
                        ''',
                        auction_id,
                        auction['nft_id'],
                        bidder_id,
                        amount,
                        now
                    )
                    bidder_name = await conn.fetchval('SELECT username FROM users WHERE id = $1', bidder_id)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Error placing bid on auction {auction_id}: {e}")
            raise InternalError(f"Failed to place bid: {e}")

        logger.info(f"Bid {bid['id']} of {amount} on auction {auction_id} by {bidder_id}")

        subject, body = bid_received_email(
            auction['nft_name'], amount, bidder_name or 'A collector', self.notifier.app_url
        )
        self.notifier.dispatch(auction['owner_email'], subject, body)

        result = dict(bid)
        result['minimum_next_bid'] = minimum_bid(auction['start_price'], amount, MIN_BID_INCREMENT)
        return result

    async def get_auction(self, auction_id: UUID) -> Dict[str, Any]:
        """Get an auction with its highest bid and bid history.

        Raises:
            NotFoundError: Auction does not exist
        """
        await self.ensure_pool()
        now = self.clock()
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(f'{AUCTION_VIEW_QUERY} WHERE a.id = $1', auction_id)
                if not row:
                    raise NotFoundError("Auction not found")
                bids = await conn.fetch(
                    '''
                    SELECT b.id, b.bidder_id, u.username AS bidder_username, b.amount, b.created_at
                    FROM bids b
                    LEFT JOIN users u ON u.id = b.bidder_id
                    WHERE b.auction_id = $1
                    ORDER BY b.amount DESC, b.created_at ASC
                    ''',
                    auction_id
                )
        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Error getting auction {auction_id}: {e}")
            raise InternalError(f"Failed to get auction: {e}")

        auction = self._decorate(row, now)
        auction['bids'] = [dict(bid) for bid in bids]
        return auction

    async def list_auctions(
        self,
        is_active: Optional[bool] = None,
        seller_id: Optional[UUID] = None,
        category: Optional[str] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = 'created_at',
        sort_order: str = 'desc'
    ) -> Dict[str, Any]:
        """List auctions with filters and pagination.

        ``is_active=True`` means active and unexpired; ``False`` is everything else.

        Returns:
            Dict with ``auctions`` and ``pagination``
        """
        if sort_by not in SORT_COLUMNS:
            raise ValidationError(f"Cannot sort auctions by {sort_by}")
        order = 'ASC' if sort_order.lower() == 'asc' else 'DESC'
        page, limit, offset = page_bounds(page, limit)
        now = self.clock()

        params: List[Any] = []
        conditions = ['true']
        if is_active is not None:
            params.append(now)
            live = f'(a.is_active AND a.end_time > ${len(params)})'
            conditions.append(live if is_active else f'NOT {live}')
        for column, op, value in (
            ('a.seller_id', '=', seller_id),
            ('n.category', '=', category),
            ('a.start_price', '>=', min_price),
            ('a.start_price', '<=', max_price)
        ):
            if value is not None:
                params.append(value)
                conditions.append(f"{column} {op} ${len(params)}")
        where = ' AND '.join(conditions)

        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                total = await conn.fetchval(
                    f'SELECT COUNT(*) FROM auctions a JOIN nfts n ON n.id = a.nft_id WHERE {where}',
                    *params
                )
                rows = await conn.fetch(
                    f'''
                    {AUCTION_VIEW_QUERY}
                    WHERE {where}
                    ORDER BY {SORT_COLUMNS[sort_by]} {order}
                    LIMIT {limit} OFFSET {offset}
                    ''',
                    *params
                )
        except PostgresError as e:
            logger.error(f"Error listing auctions: {e}")
            raise InternalError(f"Failed to list auctions: {e}")

        return {
            'auctions': [self._decorate(row, now) for row in rows],
            'pagination': page_info(page, limit, total)
        }

    async def settle_auction(self, auction_id: UUID, requester_id: UUID, is_admin: bool = False) -> Dict[str, Any]:
        """Settle an ended auction.

        The highest bid wins if it meets the reserve price (when one is set):
        the NFT moves to the bidder and a SALE is recorded at the bid amount.
        Otherwise, or when the seller no longer holds the NFT, the auction
        closes without a sale. Either way the auction is marked inactive and
        settled in the same transaction.

        Returns:
            Dict with ``auction``, ``sold`` and, when sold, ``nft`` and ``transaction``

        Raises:
            NotFoundError: Auction does not exist
            ForbiddenError: Requester is not the seller, the highest bidder or an admin
            ConflictError: AlreadySettled or NotEnded
        """
        await self.ensure_pool()
        now = self.clock()
        nft = transaction = None

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    auction = await conn.fetchrow(
                        '''
                        SELECT a.*, n.name AS nft_name
                        FROM auctions a
                        JOIN nfts n ON n.id = a.nft_id
                        WHERE a.id = $1
                        FOR UPDATE OF a
                        ''',
                        auction_id
                    )
                    if not auction:
                        raise NotFoundError("Auction not found")

                    highest = await conn.fetchrow(HIGHEST_BID_QUERY, auction_id)
                    allowed = {auction['seller_id']}
                    if highest:
                        allowed.add(highest['bidder_id'])
                    if requester_id not in allowed and not is_admin:
                        raise ForbiddenError("Only the seller, the highest bidder or an admin can settle")

                    if auction['settled_at']:
                        raise ConflictError("Auction has already been settled", code='AlreadySettled')
                    if not is_expired(auction['end_time'], now):
                        raise ConflictError("Auction has not ended yet", code='NotEnded')

                    sold = highest is not None and reserve_met(highest['amount'], auction['reserve_price'])
                    if sold:
                        holding = await conn.fetchrow(
                            'SELECT id, owner_id, is_sold FROM nfts WHERE id = $1 FOR UPDATE',
                            auction['nft_id']
                        )
                        if holding['owner_id'] != auction['seller_id'] or holding['is_sold']:
                            logger.warning(
                                f"Auction {auction_id}: seller no longer holds NFT {auction['nft_id']}, "
                                f"closing without sale"
                            )
                            sold = False
                    if sold:
                        nft, transaction = await apply_sale(
                            conn,
                            auction['nft_id'],
                            highest['bidder_id'],
                            highest['amount'],
                            seller_id=auction['seller_id']
                        )

                    settled = await conn.fetchrow(
                        '''
                        UPDATE auctions
                        SET is_active = false, settled_at = $2, winning_bid_id = $3
                        WHERE id = $1
                        RETURNING *
                        ''',
                        auction_id,
                        now,
                        highest['id'] if sold else None
                    )

                    recipients = [auction['seller_id']] + ([highest['bidder_id']] if highest else [])
                    emails = await conn.fetch(
                        'SELECT email FROM users WHERE id = ANY($1::uuid[])',
                        recipients
                    )

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Error settling auction {auction_id}: {e}")
            raise InternalError(f"Failed to settle auction: {e}")

        logger.info(
            f"Settled auction {auction_id}: "
            + (f"sold to {highest['bidder_id']} for {highest['amount']}" if sold else "no sale")
        )

        subject, body = auction_settled_email(
            auction['nft_name'], highest['amount'] if sold else None, self.notifier.app_url
        )
        for row in emails:
            self.notifier.dispatch(row['email'], subject, body)

        result = {'auction': self._decorate(settled, now), 'sold': sold}
        if sold:
            result['nft'] = nft
            result['transaction'] = transaction
        return result

    async def close_expired_auctions(self) -> int:
        """Flip ``is_active`` off for auctions past their end time.

        Expired auctions without bids are also marked settled, since there is
        nothing left to decide. Auctions with bids stay open for settlement.

        Returns:
            Number of auctions closed
        """
        await self.ensure_pool()
        now = self.clock()
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    '''
                    UPDATE auctions a
                    SET is_active = false,
                        settled_at = CASE
                            WHEN EXISTS (SELECT 1 FROM bids b WHERE b.auction_id = a.id) THEN NULL
                            ELSE $1
                        END
                    WHERE a.is_active AND a.end_time <= $1
                    RETURNING a.id
                    ''',
                    now
                )
        except PostgresError as e:
            logger.error(f"Error closing expired auctions: {e}")
            raise InternalError(f"Failed to close expired auctions: {e}")

        if rows:
            logger.info(f"Closed {len(rows)} expired auctions")
        return len(rows)


__all__ = ['AuctionManager']
