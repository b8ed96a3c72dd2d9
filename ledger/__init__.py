"""Ledger module for balances and transaction history.

The ``transactions`` table is append-only and is the only source of truth for
a user's balance. Nothing in this module updates or deletes a transaction row;
rows are written by the operations that change marketplace state, inside the
same database transaction, through ``record_transaction``.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from asyncpg.exceptions import InterfaceError, PostgresError
from asyncpg.pool import Pool

from database import get_pool
from database.lib.pagination import page_bounds, page_info
from errors import ForbiddenError, InternalError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

TRANSACTION_TYPES = ('SALE', 'TRANSFER', 'MINT', 'DEPOSIT', 'WITHDRAWAL')

# Types that move money into (+) or out of (-) a user's balance
CREDIT_TYPES = ('DEPOSIT',)
DEBIT_TYPES = ('WITHDRAWAL', 'MINT')

SORT_COLUMNS = {'created_at': 'created_at', 'amount': 'amount'}

BALANCE_QUERY = '''
    SELECT
        COALESCE(SUM(amount) FILTER (WHERE type = 'DEPOSIT'), 0)
        - COALESCE(SUM(amount) FILTER (WHERE type = 'WITHDRAWAL'), 0)
        - COALESCE(SUM(amount) FILTER (WHERE type = 'MINT'), 0)
    FROM transactions
    WHERE user_id = $1
'''


class BalanceUnavailableError(InternalError):
    """Raised when the balance aggregation cannot be computed."""
    default_code = 'BalanceUnavailable'


def signed_amount(tx_type: str, amount: Decimal) -> Decimal:
    """Contribution of a single transaction to the owner's balance."""
    if tx_type in CREDIT_TYPES:
        return amount
    if tx_type in DEBIT_TYPES:
        return -amount
    return Decimal('0')


async def record_transaction(
    conn,
    tx_type: str,
    amount: Decimal,
    user_id: UUID,
    nft_id: Optional[UUID] = None
) -> Dict[str, Any]:
    """Append a transaction row using the caller's connection.

    Must be called inside the caller's database transaction so the ledger row
    commits or rolls back together with the state change it records.
    """
    if tx_type not in TRANSACTION_TYPES:
        raise ValidationError(f"Unknown transaction type {tx_type}")
    if amount <= 0:
        raise ValidationError("Transaction amount must be positive")

    row = await conn.fetchrow(
        '''
        INSERT INTO transactions (type, amount, user_id, nft_id, transaction_hash)
        VALUES ($1, $2, $3, $4, $5)
        RETURNING *
        ''',
        tx_type,
        amount,
        user_id,
        nft_id,
        uuid4().hex
    )
    return dict(row)


class LedgerManager:
    """Read side of the ledger: balances and transaction history."""

    def __init__(self, pool: Optional[Pool] = None) -> None:
        """Initialize ledger manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def compute_balance(self, user_id: UUID, conn=None) -> Decimal:
        """Compute a user's balance from the ledger.

        balance = sum(DEPOSIT) - sum(WITHDRAWAL) - sum(MINT). SALE and TRANSFER
        rows do not move the balance.

        Args:
            user_id: User to compute the balance for
            conn: Optional connection, used by callers that hold a transaction

        Returns:
            The balance, computed fresh from the transactions table

        Raises:
            BalanceUnavailableError: If the aggregation query fails
        """
        try:
            if conn is not None:
                value = await conn.fetchval(BALANCE_QUERY, user_id)
            else:
                await self.ensure_pool()
                async with self.pool.acquire() as conn:
                    value = await conn.fetchval(BALANCE_QUERY, user_id)
        except (PostgresError, InterfaceError, OSError) as e:
            logger.error(f"Error computing balance for user {user_id}: {e}")
            raise BalanceUnavailableError(f"Balance unavailable for user {user_id}")

        return Decimal(value or 0)

    async def list_transactions(
        self,
        user_id: UUID,
        tx_type: Optional[str] = None,
        nft_id: Optional[UUID] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = 'created_at',
        sort_order: str = 'desc'
    ) -> Dict[str, Any]:
        """List a user's transactions with filtering and pagination.

        Returns:
            Dict with ``transactions`` and ``pagination``
        """
        if tx_type is not None and tx_type not in TRANSACTION_TYPES:
            raise ValidationError(f"Invalid transaction type {tx_type}")
        if sort_by not in SORT_COLUMNS:
            raise ValidationError(f"Cannot sort transactions by {sort_by}")
        order = 'ASC' if sort_order.lower() == 'asc' else 'DESC'
        page, limit, offset = page_bounds(page, limit)

        conditions = ['t.user_id = $1']
        params: List[Any] = [user_id]
        for column, op, value in (
            ('t.type', '=', tx_type),
            ('t.nft_id', '=', nft_id),
            ('t.amount', '>=', min_amount),
            ('t.amount', '<=', max_amount)
        ):
            if value is not None:
                params.append(value)
                conditions.append(f"{column} {op} ${len(params)}")
        where = ' AND '.join(conditions)

        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                total = await conn.fetchval(f'SELECT COUNT(*) FROM transactions t WHERE {where}', *params)
                rows = await conn.fetch(
                    f'''
                    SELECT t.*, n.name AS nft_name, n.image AS nft_image
                    FROM transactions t
                    LEFT JOIN nfts n ON n.id = t.nft_id
                    WHERE {where}
                    ORDER BY t.{SORT_COLUMNS[sort_by]} {order}
                    LIMIT {limit} OFFSET {offset}
                    ''',
                    *params
                )
        except PostgresError as e:
            logger.error(f"Error listing transactions for user {user_id}: {e}")
            raise InternalError(f"Failed to list transactions: {e}")

        return {
            'transactions': [dict(row) for row in rows],
            'pagination': page_info(page, limit, total)
        }

    async def get_transaction(self, transaction_id: UUID, requester_id: UUID, is_admin: bool = False) -> Dict[str, Any]:
        """Get a single transaction visible to the requester.

        Raises:
            NotFoundError: If the transaction does not exist
            ForbiddenError: If the requester neither owns it nor is an admin
        """
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    '''
                    SELECT t.*, n.name AS nft_name, n.image AS nft_image
                    FROM transactions t
                    LEFT JOIN nfts n ON n.id = t.nft_id
                    WHERE t.id = $1
                    ''',
                    transaction_id
                )
        except PostgresError as e:
            logger.error(f"Error getting transaction {transaction_id}: {e}")
            raise InternalError(f"Failed to get transaction: {e}")

        if not row:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if row['user_id'] != requester_id and not is_admin:
            raise ForbiddenError("Not allowed to view this transaction")
        return dict(row)


__all__ = [
    'LedgerManager',
    'BalanceUnavailableError',
    'record_transaction',
    'signed_amount',
    'TRANSACTION_TYPES'
]
