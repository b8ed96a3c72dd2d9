"""NFTs module for minting, listing and direct purchase.

Minting charges a fixed fee against the creator's ledger balance; the fee
check and the MINT row are made under a lock on the creator's user row so two
concurrent mints cannot both spend the same balance. Purchases go through the
conditional update in ``nfts.settlement``.
"""
import logging
import re
import secrets
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from asyncpg.exceptions import PostgresError
from asyncpg.pool import Pool

from config import settings_conf
from database import get_pool
from database.lib.pagination import page_bounds, page_info
from errors import (
    ConflictError,
    ForbiddenError,
    InsufficientBalanceError,
    InternalError,
    MarketplaceError,
    NotFoundError,
    ValidationError
)
from ledger import LedgerManager, record_transaction
from notifications import EmailNotifier, nft_sold_email
from .settlement import apply_sale, check_purchase

logger = logging.getLogger(__name__)

MINT_FEE = settings_conf['mint_fee']

URL_PATTERN = re.compile(r'^https?://[^\s/$.?#][^\s]*$', re.IGNORECASE)

SORT_COLUMNS = {'created_at': 'n.created_at', 'updated_at': 'n.updated_at', 'price': 'n.price'}

NFT_VIEW_QUERY = '''
    SELECT
        n.*,
        c.username AS creator_username,
        o.username AS owner_username,
        col.name AS collection_name
    FROM nfts n
    JOIN users c ON c.id = n.creator_id
    LEFT JOIN users o ON o.id = n.owner_id
    LEFT JOIN collections col ON col.id = n.collection_id
'''

ACTIVE_AUCTION_QUERY = '''
    SELECT EXISTS (
        SELECT 1 FROM auctions
        WHERE nft_id = $1 AND is_active AND end_time > $2
    )
'''

# An ended auction with bids still holds the NFT until it is settled
UNSETTLED_AUCTION_QUERY = '''
    SELECT EXISTS (
        SELECT 1 FROM auctions a
        WHERE a.nft_id = $1 AND a.settled_at IS NULL
        AND (
            (a.is_active AND a.end_time > $2)
            OR EXISTS (SELECT 1 FROM bids b WHERE b.auction_id = a.id)
        )
    )
'''


def validate_nft_data(nft_data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and normalize mint input.

    Raises:
        ValidationError: If a field is missing or malformed
    """
    name = (nft_data.get('name') or '').strip()
    if not 1 <= len(name) <= 100:
        raise ValidationError("Name must be between 1 and 100 characters")

    description = nft_data.get('description')
    if description is not None and len(description) > 1000:
        raise ValidationError("Description must be at most 1000 characters")

    image = (nft_data.get('image') or '').strip()
    if not URL_PATTERN.match(image):
        raise ValidationError("Invalid image URL")

    price = nft_data.get('price')
    if price is not None:
        price = Decimal(str(price))
        if price <= 0:
            raise ValidationError("Price must be positive")

    return {
        'name': name,
        'description': description,
        'image': image,
        'category': nft_data.get('category'),
        'price': price,
        'collection_id': nft_data.get('collection_id')
    }


def generate_token_id() -> str:
    return secrets.token_hex(16)


class NFTManager:
    """Manages NFT minting, listings and purchases."""

    def __init__(
        self,
        pool: Optional[Pool] = None,
        notifier: Optional[EmailNotifier] = None,
        clock: Optional[Callable[[], datetime]] = None
    ) -> None:
        """Initialize NFT manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
            notifier: Optional email notifier
            clock: Optional callable returning the current aware datetime
        """
        self.pool = pool
        self.ledger = LedgerManager(pool)
        self.notifier = notifier or EmailNotifier()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()
            self.ledger.pool = self.pool

    async def mint_with_debit(
        self,
        nft_data: Dict[str, Any],
        creator_id: UUID,
        is_admin: bool = False
    ) -> Dict[str, Any]:
        """Mint an NFT, charging the mint fee to the creator's balance.

        Args:
            nft_data: name, image, and optionally description, category, price, collection_id
            creator_id: Minting user, who becomes creator and first owner
            is_admin: Whether the creator may mint into other users' collections

        Returns:
            Dict with ``nft``, ``transaction``, ``mint_fee`` and ``new_balance``

        Raises:
            ValidationError: Invalid NFT data
            NotFoundError: Collection does not exist
            ForbiddenError: Collection belongs to another user
            InsufficientBalanceError: Balance below the mint fee
            BalanceUnavailableError: Balance could not be computed
        """
        data = validate_nft_data(nft_data)
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                if data['collection_id']:
                    collection = await conn.fetchrow(
                        'SELECT id, creator_id FROM collections WHERE id = $1',
                        data['collection_id']
                    )
                    if not collection:
                        raise NotFoundError("Collection not found")
                    if collection['creator_id'] != creator_id and not is_admin:
                        raise ForbiddenError("You can only mint into your own collections")

                async with conn.transaction():
                    # Serializes debits for this user until commit
                    locked = await conn.fetchval('SELECT id FROM users WHERE id = $1 FOR UPDATE', creator_id)
                    if not locked:
                        raise NotFoundError("User not found")

                    balance = await self.ledger.compute_balance(creator_id, conn=conn)
                    if balance < MINT_FEE:
                        raise InsufficientBalanceError(MINT_FEE, balance)

                    nft = await conn.fetchrow(
                        '''
                        INSERT INTO nfts (
                            token_id, name, description, image, category, price,
                            is_listed, is_sold, creator_id, owner_id, collection_id
                        ) VALUES ($1, $2, $3, $4, $5, $6, true, false, $7, $7, $8)
                        RETURNING *
                        ''',
                        generate_token_id(),
                        data['name'],
                        data['description'],
                        data['image'],
                        data['category'],
                        data['price'],
                        creator_id,
                        data['collection_id']
                    )
                    transaction = await record_transaction(conn, 'MINT', MINT_FEE, creator_id, nft['id'])

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Error minting NFT for {creator_id}: {e}")
            raise InternalError(f"Failed to mint NFT: {e}")

        logger.info(f"Minted NFT {nft['id']} for {creator_id}, fee {MINT_FEE}")
        return {
            'nft': dict(nft),
            'transaction': transaction,
            'mint_fee': MINT_FEE,
            'new_balance': balance - MINT_FEE
        }

    async def settle_purchase(self, nft_id: UUID, buyer_id: UUID) -> Dict[str, Any]:
        """Buy a listed NFT at its list price.

        Returns:
            Dict with the SALE ``transaction`` and the updated ``nft``

        Raises:
            NotFoundError: NFT does not exist
            ConflictError: Unavailable or ActiveAuction
            ValidationError: SelfPurchase or InvalidPrice
        """
        await self.ensure_pool()
        now = self.clock()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    # Row lock orders this purchase against create_auction and price changes
                    nft = await conn.fetchrow(
                        '''
                        SELECT n.*, o.email AS owner_email, o.username AS owner_username
                        FROM nfts n
                        LEFT JOIN users o ON o.id = n.owner_id
                        WHERE n.id = $1
                        FOR UPDATE OF n
                        ''',
                        nft_id
                    )
                    has_auction = bool(nft) and await conn.fetchval(UNSETTLED_AUCTION_QUERY, nft_id, now)
                    price = check_purchase(nft, buyer_id, has_auction)
                    updated, transaction = await apply_sale(conn, nft_id, buyer_id, price)
                buyer_name = await conn.fetchval('SELECT username FROM users WHERE id = $1', buyer_id)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Error purchasing NFT {nft_id}: {e}")
            raise InternalError(f"Failed to purchase NFT: {e}")

        subject, body = nft_sold_email(nft['name'], price, buyer_name or 'a collector', self.notifier.app_url)
        self.notifier.dispatch(nft['owner_email'], subject, body)

        return {'transaction': transaction, 'nft': updated}

    async def get_nft(self, nft_id: UUID) -> Dict[str, Any]:
        """Get an NFT with creator, owner and collection names.

        Raises:
            NotFoundError: NFT does not exist
        """
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(f'{NFT_VIEW_QUERY} WHERE n.id = $1', nft_id)
                if row:
                    has_auction = await conn.fetchval(ACTIVE_AUCTION_QUERY, nft_id, self.clock())
        except PostgresError as e:
            logger.error(f"Error getting NFT {nft_id}: {e}")
            raise InternalError(f"Failed to get NFT: {e}")

        if not row:
            raise NotFoundError("NFT not found")
        nft = dict(row)
        nft['in_auction'] = has_auction
        return nft

    async def list_nfts(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        collection_id: Optional[UUID] = None,
        creator_id: Optional[UUID] = None,
        owner_id: Optional[UUID] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        is_listed: Optional[bool] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = 'created_at',
        sort_order: str = 'desc'
    ) -> Dict[str, Any]:
        """List NFTs with filters and pagination.

        Returns:
            Dict with ``nfts`` and ``pagination``
        """
        if sort_by not in SORT_COLUMNS:
            raise ValidationError(f"Cannot sort NFTs by {sort_by}")
        order = 'ASC' if sort_order.lower() == 'asc' else 'DESC'
        page, limit, offset = page_bounds(page, limit)

        params: List[Any] = []
        conditions = ['true']
        if search:
            params.append(f"%{search}%")
            placeholder = f"${len(params)}"
            conditions.append(
                f"(n.name ILIKE {placeholder} OR n.description ILIKE {placeholder} "
                f"OR c.username ILIKE {placeholder})"
            )
        for column, op, value in (
            ('n.category', '=', category),
            ('n.collection_id', '=', collection_id),
            ('n.creator_id', '=', creator_id),
            ('n.owner_id', '=', owner_id),
            ('n.price', '>=', min_price),
            ('n.price', '<=', max_price),
            ('n.is_listed', '=', is_listed)
        ):
            if value is not None:
                params.append(value)
                conditions.append(f"{column} {op} ${len(params)}")
        where = ' AND '.join(conditions)

        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                total = await conn.fetchval(
                    f'SELECT COUNT(*) FROM nfts n JOIN users c ON c.id = n.creator_id WHERE {where}',
                    *params
                )
                rows = await conn.fetch(
                    f'''
                    {NFT_VIEW_QUERY}
                    WHERE {where}
                    ORDER BY {SORT_COLUMNS[sort_by]} {order} NULLS LAST
                    LIMIT {limit} OFFSET {offset}
                    ''',
                    *params
                )
        except PostgresError as e:
            logger.error(f"Error listing NFTs: {e}")
            raise InternalError(f"Failed to list NFTs: {e}")

        return {
            'nfts': [dict(row) for row in rows],
            'pagination': page_info(page, limit, total)
        }

    async def update_listing(
        self,
        nft_id: UUID,
        requester_id: UUID,
        is_admin: bool = False,
        price: Optional[Decimal] = None,
        is_listed: Optional[bool] = None,
        name: Optional[str] = None,
        description: Optional[str] = None
    ) -> Dict[str, Any]:
        """Update an NFT's listing (price, listed flag) or display fields.

        Listing a sold NFT puts it back on sale, clearing ``is_sold``.

        Raises:
            ValidationError: Invalid price, name or description
            NotFoundError: NFT does not exist
            ForbiddenError: Requester neither owns the NFT nor is an admin
            ConflictError: ActiveAuction when delisting during an auction
        """
        if price is not None and price <= 0:
            raise ValidationError("Price must be positive")
        if name is not None and not 1 <= len(name.strip()) <= 100:
            raise ValidationError("Name must be between 1 and 100 characters")
        if description is not None and len(description) > 1000:
            raise ValidationError("Description must be at most 1000 characters")

        await self.ensure_pool()
        now = self.clock()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    nft = await conn.fetchrow('SELECT * FROM nfts WHERE id = $1 FOR UPDATE', nft_id)
                    if not nft:
                        raise NotFoundError("NFT not found")
                    if nft['owner_id'] != requester_id and not is_admin:
                        raise ForbiddenError("You do not have permission to update this NFT")
                    if is_listed is False and await conn.fetchval(ACTIVE_AUCTION_QUERY, nft_id, now):
                        raise ConflictError("NFT is currently in an active auction", code='ActiveAuction')

                    listed = nft['is_listed'] if is_listed is None else is_listed
                    sold = False if listed else nft['is_sold']

                    updated = await conn.fetchrow(
                        '''
                        UPDATE nfts
                        SET price = COALESCE($2, price),
                            is_listed = $3,
                            is_sold = $4,
                            name = COALESCE($5, name),
                            description = COALESCE($6, description)
                        WHERE id = $1
                        RETURNING *
                        ''',
                        nft_id,
                        price,
                        listed,
                        sold,
                        name.strip() if name is not None else None,
                        description
                    )

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Error updating NFT {nft_id}: {e}")
            raise InternalError(f"Failed to update NFT: {e}")

        logger.info(f"Updated NFT {nft_id}: listed={listed} price={updated['price']}")
        return dict(updated)


__all__ = ['NFTManager', 'MINT_FEE', 'validate_nft_data']
