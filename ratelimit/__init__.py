"""Fixed-window rate limiting backed by the ``rate_limits`` table.

Each identifier (for example ``withdrawal:<user id>``) has one row holding the
request count for the current window and the time the window resets. The row
is locked while it is read and updated, so every process serving the API
shares the same counter.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from asyncpg.exceptions import PostgresError
from asyncpg.pool import Pool

from database import get_pool
from errors import InternalError, RateLimitedError

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check."""
    allowed: bool
    remaining: int
    reset_time: datetime


class RateLimiter:
    """Counts requests per identifier in fixed windows."""

    def __init__(self, pool: Optional[Pool] = None, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.pool = pool
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def check_rate_limit(self, identifier: str, max_requests: int, window_seconds: int) -> RateLimitResult:
        """Count a request against the identifier's current window.

        Args:
            identifier: Counter key
            max_requests: Requests allowed per window
            window_seconds: Window length

        Returns:
            RateLimitResult; a refused request is not counted
        """
        await self.ensure_pool()
        now = self.clock()
        window_end = now + timedelta(seconds=window_seconds)

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    # First request for this identifier creates the row
                    await conn.execute(
                        '''
                        INSERT INTO rate_limits (identifier, request_count, reset_time)
                        VALUES ($1, 0, $2)
                        ON CONFLICT (identifier) DO NOTHING
                        ''',
                        identifier,
                        window_end
                    )
                    row = await conn.fetchrow(
                        'SELECT request_count, reset_time FROM rate_limits WHERE identifier = $1 FOR UPDATE',
                        identifier
                    )

                    if row['reset_time'] <= now:
                        count, reset_time = 0, window_end
                    else:
                        count, reset_time = row['request_count'], row['reset_time']

                    if count >= max_requests:
                        return RateLimitResult(allowed=False, remaining=0, reset_time=reset_time)

                    await conn.execute(
                        'UPDATE rate_limits SET request_count = $2, reset_time = $3 WHERE identifier = $1',
                        identifier,
                        count + 1,
                        reset_time
                    )
                    return RateLimitResult(
                        allowed=True,
                        remaining=max_requests - count - 1,
                        reset_time=reset_time
                    )

        except PostgresError as e:
            logger.error(f"Error checking rate limit for {identifier}: {e}")
            raise InternalError(f"Failed to check rate limit: {e}")

    async def enforce(self, identifier: str, max_requests: int, window_seconds: int) -> RateLimitResult:
        """Like check_rate_limit, but raise when the request is refused.

        Raises:
            RateLimitedError: If the window's budget is spent
        """
        result = await self.check_rate_limit(identifier, max_requests, window_seconds)
        if not result.allowed:
            logger.warning(f"Rate limit exceeded for {identifier}")
            raise RateLimitedError("Too many requests. Please try again later.", reset_time=result.reset_time)
        return result


__all__ = ['RateLimiter', 'RateLimitResult']
