"""Atomic settlement of an NFT sale.

``check_purchase`` validates a direct purchase without touching the store.
``apply_sale`` is the atomic unit itself: a conditional ownership update plus
the SALE ledger row, executed on the caller's connection inside the caller's
transaction. The conditional update is what makes a second purchase of the
same NFT fail, even when two buyers pass the pre-checks concurrently.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from errors import ConflictError, NotFoundError, ValidationError
from ledger import record_transaction

logger = logging.getLogger(__name__)


def check_purchase(
    nft: Optional[Dict[str, Any]],
    buyer_id: UUID,
    has_active_auction: bool
) -> Decimal:
    """Check that an NFT can be bought outright by ``buyer_id``.

    Returns:
        The sale price

    Raises:
        NotFoundError: NFT does not exist
        ConflictError: Unavailable or ActiveAuction
        ValidationError: SelfPurchase or InvalidPrice
    """
    if not nft:
        raise NotFoundError("NFT not found")
    if not nft['is_listed'] or nft['is_sold']:
        raise ConflictError("NFT is not available for purchase", code='Unavailable')
    if nft['owner_id'] == buyer_id:
        raise ValidationError("You cannot purchase your own NFT", code='SelfPurchase')
    if has_active_auction:
        raise ConflictError("NFT is currently in an active auction", code='ActiveAuction')
    if nft['price'] is None or nft['price'] <= 0:
        raise ValidationError("NFT does not have a valid price", code='InvalidPrice')
    return nft['price']


async def apply_sale(
    conn,
    nft_id: UUID,
    buyer_id: UUID,
    price: Decimal,
    seller_id: Optional[UUID] = None
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Transfer ownership and record the SALE on the caller's transaction.

    Without ``seller_id`` the NFT must still be listed and unsold (direct
    purchase). With it the NFT must be unsold and still owned by the seller
    (auction settlement, where the NFT need not be listed).

    Returns:
        Tuple of (updated nft row, SALE transaction row)

    Raises:
        ConflictError: Unavailable, when the conditional update matches no row
    """
    if seller_id is None:
        nft = await conn.fetchrow(
            '''
            UPDATE nfts
            SET owner_id = $2, is_sold = true, is_listed = false
            WHERE id = $1 AND is_listed AND NOT is_sold
            RETURNING *
            ''',
            nft_id,
            buyer_id
        )
    else:
        nft = await conn.fetchrow(
            '''
            UPDATE nfts
            SET owner_id = $2, is_sold = true, is_listed = false
            WHERE id = $1 AND NOT is_sold AND owner_id = $3
            RETURNING *
            ''',
            nft_id,
            buyer_id,
            seller_id
        )

    if not nft:
        raise ConflictError("NFT is not available for purchase", code='Unavailable')

    transaction = await record_transaction(conn, 'SALE', price, buyer_id, nft_id)
    logger.info(f"Settled NFT {nft_id} to {buyer_id} for {price}")
    return dict(nft), transaction
