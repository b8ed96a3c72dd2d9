"""Stocks module for stock purchases and profit claims.

A purchase is paid from the ledger balance (a WITHDRAWAL debit) and accrues
profit at a fixed hourly rate on its USD amount. Claiming credits the accrued
total as one DEPOSIT and restarts every contributing purchase's accrual clock
in the same transaction, so a repeated claim only pays what accrued since.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from asyncpg.exceptions import PostgresError
from asyncpg.pool import Pool

from config import settings_conf
from database import get_pool
from errors import InsufficientBalanceError, InternalError, MarketplaceError, NotFoundError, ValidationError
from ledger import LedgerManager, record_transaction
from .accrual import accrued_profit, round_claim

logger = logging.getLogger(__name__)

PROFIT_RATE_PER_HOUR = settings_conf['profit_rate_per_hour']


class StockManager:
    """Manages stock purchases and profit claims."""

    def __init__(
        self,
        pool: Optional[Pool] = None,
        clock: Optional[Callable[[], datetime]] = None,
        rate_per_hour: Optional[Decimal] = None
    ) -> None:
        self.pool = pool
        self.ledger = LedgerManager(pool)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.rate_per_hour = PROFIT_RATE_PER_HOUR if rate_per_hour is None else rate_per_hour

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()
            self.ledger.pool = self.pool

    async def record_purchase(
        self,
        user_id: UUID,
        symbol: str,
        amount_usd: Decimal,
        price_usd: Decimal,
        shares: Decimal,
        date: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Record a stock purchase and debit its amount from the user's balance.

        Returns:
            Dict with ``purchase`` and the WITHDRAWAL ``transaction``

        Raises:
            ValidationError: Blank symbol or non-positive amounts
            NotFoundError: User does not exist
            InsufficientBalanceError: Balance below the purchase amount
        """
        symbol = (symbol or '').strip().upper()
        if not symbol:
            raise ValidationError("Symbol is required")
        for label, value in (('Amount', amount_usd), ('Price', price_usd), ('Shares', shares)):
            if value is None or value <= 0:
                raise ValidationError(f"{label} must be positive")

        await self.ensure_pool()
        now = self.clock()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    locked = await conn.fetchval('SELECT id FROM users WHERE id = $1 FOR UPDATE', user_id)
                    if not locked:
                        raise NotFoundError("User not found")

                    balance = await self.ledger.compute_balance(user_id, conn=conn)
                    if balance < amount_usd:
                        raise InsufficientBalanceError(amount_usd, balance)

                    purchase = await conn.fetchrow(
                        '''
                        INSERT INTO stock_purchases (
                            user_id, symbol, amount_usd, price_usd, shares,
                            date, last_profit_claim_at, created_at
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $7)
                        RETURNING *
                        ''',
                        user_id,
                        symbol,
                        amount_usd,
                        price_usd,
                        shares,
                        date or now,
                        now
                    )
                    transaction = await record_transaction(conn, 'WITHDRAWAL', amount_usd, user_id)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Error recording stock purchase for {user_id}: {e}")
            raise InternalError(f"Failed to record stock purchase: {e}")

        logger.info(f"Recorded purchase of {shares} {symbol} for {user_id} ({amount_usd} USD)")
        return {'purchase': dict(purchase), 'transaction': transaction}

    async def list_purchases(self, user_id: UUID) -> List[Dict[str, Any]]:
        """List a user's purchases, newest first, with unclaimed profit."""
        await self.ensure_pool()
        now = self.clock()
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    'SELECT * FROM stock_purchases WHERE user_id = $1 ORDER BY created_at DESC',
                    user_id
                )
        except PostgresError as e:
            logger.error(f"Error listing stock purchases for {user_id}: {e}")
            raise InternalError(f"Failed to list stock purchases: {e}")

        purchases = []
        for row in rows:
            purchase = dict(row)
            purchase['unclaimed_profit'] = round_claim(
                accrued_profit(row['amount_usd'], row['last_profit_claim_at'], now, self.rate_per_hour)
            )
            purchases.append(purchase)
        return purchases

    async def claim_profit(self, user_id: UUID) -> Dict[str, Any]:
        """Credit all profit accrued since each purchase's last claim.

        The total is rounded half up to cents. A rounded total of zero is a
        no-op: no transaction is written and no accrual clock is reset.

        Returns:
            Dict with ``claimed_amount`` and ``transaction`` (None when nothing was claimed)

        Raises:
            NotFoundError: User does not exist
        """
        await self.ensure_pool()
        now = self.clock()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    exists = await conn.fetchval('SELECT id FROM users WHERE id = $1', user_id)
                    if not exists:
                        raise NotFoundError("User not found")

                    purchases = await conn.fetch(
                        '''
                        SELECT id, amount_usd, last_profit_claim_at
                        FROM stock_purchases
                        WHERE user_id = $1
                        FOR UPDATE
                        ''',
                        user_id
                    )

                    total = Decimal(0)
                    contributing = []
                    for purchase in purchases:
                        profit = accrued_profit(
                            purchase['amount_usd'],
                            purchase['last_profit_claim_at'],
                            now,
                            self.rate_per_hour
                        )
                        if profit > 0:
                            total += profit
                            contributing.append(purchase['id'])

                    claimed = round_claim(total)
                    if claimed <= 0:
                        return {'claimed_amount': Decimal('0.00'), 'transaction': None}

                    transaction = await record_transaction(conn, 'DEPOSIT', claimed, user_id)
                    await conn.execute(
                        'UPDATE stock_purchases SET last_profit_claim_at = $2 WHERE id = ANY($1::uuid[])',
                        contributing,
                        now
                    )

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Error claiming profit for {user_id}: {e}")
            raise InternalError(f"Failed to claim profit: {e}")

        logger.info(f"User {user_id} claimed {claimed} profit from {len(contributing)} purchases")
        return {'claimed_amount': claimed, 'transaction': transaction}


__all__ = ['StockManager']
