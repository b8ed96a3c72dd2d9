from datetime import timedelta

import pytest

from errors import RateLimitedError
from ratelimit import RateLimiter


@pytest.fixture
def limiter(fake_db, clock):
    return RateLimiter(pool=fake_db.pool, clock=clock)


@pytest.mark.asyncio
async def test_counts_within_window(limiter, clock):
    """Test the remaining budget shrinks with each request."""
    results = [await limiter.check_rate_limit('login:alice', 3, 60) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]
    assert all(r.reset_time == results[0].reset_time for r in results)


@pytest.mark.asyncio
async def test_refused_requests_are_not_counted(limiter, fake_db):
    await limiter.check_rate_limit('k', 1, 60)
    for _ in range(3):
        assert not (await limiter.check_rate_limit('k', 1, 60)).allowed
    assert fake_db.tables['rate_limits'][0]['request_count'] == 1


@pytest.mark.asyncio
async def test_window_resets(limiter, clock):
    await limiter.check_rate_limit('k', 1, 60)
    assert not (await limiter.check_rate_limit('k', 1, 60)).allowed

    clock.advance(seconds=60)
    result = await limiter.check_rate_limit('k', 1, 60)
    assert result.allowed
    assert result.reset_time == clock.now + timedelta(seconds=60)


@pytest.mark.asyncio
async def test_identifiers_are_independent(limiter):
    assert (await limiter.check_rate_limit('a', 1, 60)).allowed
    assert (await limiter.check_rate_limit('b', 1, 60)).allowed
    assert not (await limiter.check_rate_limit('a', 1, 60)).allowed


@pytest.mark.asyncio
async def test_enforce_raises(limiter):
    await limiter.enforce('k', 1, 60)
    with pytest.raises(RateLimitedError) as exc:
        await limiter.enforce('k', 1, 60)
    assert exc.value.reset_time is not None
    assert 'reset_time' in exc.value.to_dict()
