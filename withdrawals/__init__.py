"""Withdrawal requests module.

Users file withdrawal requests (rate limited per user); a request has no
effect on the balance until an admin approves it. Approval re-checks the
balance under a lock on the user's row and writes the WITHDRAWAL ledger row in
the same transaction as the status change.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from asyncpg.exceptions import PostgresError
from asyncpg.pool import Pool

from config import settings_conf
from database import get_pool
from errors import (
    ConflictError,
    InsufficientBalanceError,
    InternalError,
    MarketplaceError,
    NotFoundError,
    ValidationError
)
from ledger import LedgerManager, record_transaction
from notifications import EmailNotifier, withdrawal_reviewed_email
from ratelimit import RateLimiter

logger = logging.getLogger(__name__)

MAX_WITHDRAWAL_AMOUNT = Decimal('1000000')
MAX_DETAILS_LENGTH = 500
USER_LIST_LIMIT = 20
ADMIN_LIST_LIMIT = 50
REVIEW_STATUSES = ('APPROVED', 'DENIED')

WITHDRAWAL_RATE_LIMIT = settings_conf['withdrawal_rate_limit']
WITHDRAWAL_RATE_WINDOW = settings_conf['withdrawal_rate_window']


def normalize_request(amount, method, currency, details) -> Dict[str, Any]:
    """Validate and normalize withdrawal request input.

    Raises:
        ValidationError: If the amount is not in (0, 1,000,000] or the method is blank
    """
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Invalid amount or method")
    method = str(method or '').strip()
    if not value.is_finite() or value <= 0 or value > MAX_WITHDRAWAL_AMOUNT or not method:
        raise ValidationError("Invalid amount or method")

    currency = str(currency or 'USD').strip().upper() or 'USD'
    details = details.strip()[:MAX_DETAILS_LENGTH] if isinstance(details, str) else ''
    return {'amount': value, 'method': method, 'currency': currency, 'details': details}


class WithdrawalManager:
    """Manages withdrawal request intake and admin review."""

    def __init__(
        self,
        pool: Optional[Pool] = None,
        notifier: Optional[EmailNotifier] = None,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Optional[Callable[[], datetime]] = None
    ) -> None:
        self.pool = pool
        self.ledger = LedgerManager(pool)
        self.rate_limiter = rate_limiter or RateLimiter(pool)
        self.notifier = notifier or EmailNotifier()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()
            self.ledger.pool = self.pool

    async def create_request(
        self,
        user_id: UUID,
        amount,
        method: str,
        currency: str = 'USD',
        details: str = ''
    ) -> Dict[str, Any]:
        """File a withdrawal request in PENDING status.

        Raises:
            RateLimitedError: More than the allowed requests in the window
            ValidationError: Invalid amount or method
        """
        await self.rate_limiter.enforce(
            f"withdrawal:create:{user_id}", WITHDRAWAL_RATE_LIMIT, WITHDRAWAL_RATE_WINDOW
        )
        data = normalize_request(amount, method, currency, details)

        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    '''
                    INSERT INTO withdrawal_requests (user_id, amount, method, currency, details, status)
                    VALUES ($1, $2, $3, $4, $5, 'PENDING')
                    RETURNING *
                    ''',
                    user_id,
                    data['amount'],
                    data['method'],
                    data['currency'],
                    data['details']
                )
        except PostgresError as e:
            logger.error(f"Error creating withdrawal request for {user_id}: {e}")
            raise InternalError(f"Failed to create withdrawal request: {e}")

        logger.info(f"Withdrawal request {row['id']} for {data['amount']} {data['currency']} by {user_id}")
        return dict(row)

    async def list_requests(self, user_id: UUID) -> List[Dict[str, Any]]:
        """List a user's latest requests, newest first."""
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f'''
                    SELECT * FROM withdrawal_requests
                    WHERE user_id = $1
                    ORDER BY created_at DESC
                    LIMIT {USER_LIST_LIMIT}
                    ''',
                    user_id
                )
        except PostgresError as e:
            logger.error(f"Error listing withdrawal requests for {user_id}: {e}")
            raise InternalError(f"Failed to list withdrawal requests: {e}")
        return [dict(row) for row in rows]

    async def get_request(self, request_id: UUID, user_id: UUID) -> Dict[str, Any]:
        """Get one of the user's own requests.

        Raises:
            NotFoundError: No such request for this user
        """
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    'SELECT * FROM withdrawal_requests WHERE id = $1 AND user_id = $2',
                    request_id,
                    user_id
                )
        except PostgresError as e:
            logger.error(f"Error getting withdrawal request {request_id}: {e}")
            raise InternalError(f"Failed to get withdrawal request: {e}")
        if not row:
            raise NotFoundError("Withdrawal request not found")
        return dict(row)

    async def list_all_requests(self, user_id: Optional[UUID] = None) -> List[Dict[str, Any]]:
        """List the latest requests across users (admin view)."""
        await self.ensure_pool()
        query = '''
            SELECT w.*, u.email AS user_email, u.username AS user_username
            FROM withdrawal_requests w
            JOIN users u ON u.id = w.user_id
        '''
        params = []
        if user_id is not None:
            query += ' WHERE w.user_id = $1'
            params.append(user_id)
        query += f' ORDER BY w.created_at DESC LIMIT {ADMIN_LIST_LIMIT}'

        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, *params)
        except PostgresError as e:
            logger.error(f"Error listing withdrawal requests: {e}")
            raise InternalError(f"Failed to list withdrawal requests: {e}")
        return [dict(row) for row in rows]

    async def review_request(self, request_id: UUID, status: str, admin_id: UUID) -> Dict[str, Any]:
        """Approve or deny a pending request.

        Args:
            request_id: Request to review
            status: APPROVED or DENIED, case-insensitive
            admin_id: Reviewing admin

        Returns:
            Dict with the updated ``request`` and, on approval, the WITHDRAWAL ``transaction``

        Raises:
            ValidationError: Unknown status
            NotFoundError: Request does not exist
            ConflictError: Request already reviewed
            InsufficientBalanceError: Approval would overdraw the user
        """
        normalized = str(status or '').strip().upper()
        if normalized not in REVIEW_STATUSES:
            raise ValidationError("Invalid status")

        await self.ensure_pool()
        now = self.clock()
        transaction = None

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    request = await conn.fetchrow(
                        'SELECT * FROM withdrawal_requests WHERE id = $1 FOR UPDATE',
                        request_id
                    )
                    if not request:
                        raise NotFoundError("Withdrawal request not found")
                    if request['status'] != 'PENDING':
                        raise ConflictError(
                            f"Withdrawal request is already {request['status']}",
                            code='AlreadyReviewed'
                        )

                    if normalized == 'APPROVED':
                        await conn.execute('SELECT id FROM users WHERE id = $1 FOR UPDATE', request['user_id'])
                        balance = await self.ledger.compute_balance(request['user_id'], conn=conn)
                        if balance < request['amount']:
                            raise InsufficientBalanceError(request['amount'], balance)
                        transaction = await record_transaction(
                            conn, 'WITHDRAWAL', request['amount'], request['user_id']
                        )

                    updated = await conn.fetchrow(
                        '''
                        UPDATE withdrawal_requests
                        SET status = $2, reviewed_by = $3, reviewed_at = $4
                        WHERE id = $1
                        RETURNING *
                        ''',
                        request_id,
                        normalized,
                        admin_id,
                        now
                    )
                    email = await conn.fetchval('SELECT email FROM users WHERE id = $1', request['user_id'])

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Error reviewing withdrawal request {request_id}: {e}")
            raise InternalError(f"Failed to review withdrawal request: {e}")

        logger.info(f"Withdrawal request {request_id} {normalized} by admin {admin_id}")

        subject, body = withdrawal_reviewed_email(
            updated['amount'], updated['currency'], normalized, self.notifier.app_url
        )
        self.notifier.dispatch(email, subject, body)

        return {'request': dict(updated), 'transaction': transaction}


__all__ = ['WithdrawalManager', 'normalize_request']
