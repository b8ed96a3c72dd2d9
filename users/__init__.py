"""User lookups.

Accounts are created by the token-issuing service; this module only reads
them (plus a ``create_user`` used for seeding and integration tests).
"""
import logging
from typing import Any, Dict, Optional
from uuid import UUID

from asyncpg.exceptions import PostgresError, UniqueViolationError
from asyncpg.pool import Pool

from database import get_pool
from errors import ConflictError, InternalError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

USER_COLUMNS = 'id, email, username, is_admin, preferred_currency, created_at, updated_at'


class UserManager:
    """Reads and seeds user rows."""

    def __init__(self, pool: Optional[Pool] = None) -> None:
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def get_user(self, user_id: UUID) -> Dict[str, Any]:
        """Get a user by id.

        Raises:
            NotFoundError: If the user does not exist
        """
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(f'SELECT {USER_COLUMNS} FROM users WHERE id = $1', user_id)
        except PostgresError as e:
            logger.error(f"Error getting user {user_id}: {e}")
            raise InternalError(f"Failed to get user: {e}")

        if not row:
            raise NotFoundError(f"User {user_id} not found")
        return dict(row)

    async def create_user(
        self,
        email: str,
        username: str,
        is_admin: bool = False,
        preferred_currency: str = 'USD'
    ) -> Dict[str, Any]:
        """Create a user row.

        Raises:
            ValidationError: If email or username is blank
            ConflictError: If the email or username is taken
        """
        email = (email or '').strip().lower()
        username = (username or '').strip()
        if not email or '@' not in email:
            raise ValidationError("A valid email is required")
        if not username:
            raise ValidationError("Username is required")

        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f'''
                    INSERT INTO users (email, username, is_admin, preferred_currency)
                    VALUES ($1, $2, $3, $4)
                    RETURNING {USER_COLUMNS}
                    ''',
                    email,
                    username,
                    is_admin,
                    preferred_currency.upper()
                )
        except UniqueViolationError:
            raise ConflictError("Email or username already registered", code='AlreadyExists')
        except PostgresError as e:
            logger.error(f"Error creating user {email}: {e}")
            raise InternalError(f"Failed to create user: {e}")

        logger.info(f"Created user {row['id']} ({username})")
        return dict(row)


__all__ = ['UserManager']
