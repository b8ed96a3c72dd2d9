from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from errors import InsufficientBalanceError, NotFoundError, ValidationError
from stocks import StockManager
from stocks.accrual import accrued_profit, hours_elapsed, round_claim

RATE = Decimal('0.10')


@pytest.fixture
def manager(fake_db, clock):
    return StockManager(pool=fake_db.pool, clock=clock, rate_per_hour=RATE)


@pytest.fixture
def investor(fake_db):
    user = fake_db.add_user('investor')
    fake_db.deposit(user['id'], '500.00')
    return user


@pytest.mark.asyncio
async def test_purchase_debits_balance(manager, fake_db, investor, clock):
    """Test recording a purchase writes a WITHDRAWAL for its amount."""
    result = await manager.record_purchase(
        investor['id'], ' acme ', Decimal('100'), Decimal('25'), Decimal('4')
    )

    assert result['purchase']['symbol'] == 'ACME'
    assert result['purchase']['last_profit_claim_at'] == clock.now
    assert result['transaction']['type'] == 'WITHDRAWAL'
    assert fake_db.balance(investor['id']) == Decimal('400.00')


@pytest.mark.asyncio
async def test_purchase_requires_balance(manager, fake_db, investor):
    with pytest.raises(InsufficientBalanceError):
        await manager.record_purchase(investor['id'], 'ACME', Decimal('600'), Decimal('1'), Decimal('600'))
    assert fake_db.tables['stock_purchases'] == []
    assert fake_db.balance(investor['id']) == Decimal('500.00')

    with pytest.raises(ValidationError):
        await manager.record_purchase(investor['id'], '  ', Decimal('1'), Decimal('1'), Decimal('1'))
    with pytest.raises(ValidationError):
        await manager.record_purchase(investor['id'], 'ACME', Decimal('1'), Decimal('0'), Decimal('1'))


@pytest.mark.asyncio
async def test_claim_after_one_hour(manager, fake_db, investor, clock):
    """100 USD for one hour at 10% per hour pays 10.00, once."""
    await manager.record_purchase(investor['id'], 'ACME', Decimal('100'), Decimal('25'), Decimal('4'))
    clock.advance(hours=1)

    result = await manager.claim_profit(investor['id'])
    assert result['claimed_amount'] == Decimal('10.00')
    assert result['transaction']['type'] == 'DEPOSIT'
    assert result['transaction']['amount'] == Decimal('10.00')
    assert fake_db.balance(investor['id']) == Decimal('410.00')

    again = await manager.claim_profit(investor['id'])
    assert again['claimed_amount'] == Decimal('0.00')
    assert again['transaction'] is None
    assert len(fake_db.transactions_of(investor['id'], 'DEPOSIT')) == 2


@pytest.mark.asyncio
async def test_claims_do_not_double_count(manager, fake_db, investor, clock):
    await manager.record_purchase(investor['id'], 'ACME', Decimal('100'), Decimal('25'), Decimal('4'))
    clock.advance(minutes=30)
    await manager.record_purchase(investor['id'], 'INIT', Decimal('50'), Decimal('5'), Decimal('10'))
    clock.advance(minutes=30)

    first = await manager.claim_profit(investor['id'])
    # 100 * 0.1 * 1h + 50 * 0.1 * 0.5h
    assert first['claimed_amount'] == Decimal('12.50')

    clock.advance(hours=2)
    second = await manager.claim_profit(investor['id'])
    assert second['claimed_amount'] == Decimal('30.00')


@pytest.mark.asyncio
async def test_claim_below_a_cent_is_noop(manager, fake_db, investor, clock):
    await manager.record_purchase(investor['id'], 'ACME', Decimal('1'), Decimal('1'), Decimal('1'))
    clock.advance(seconds=100)  # 1 * 0.1 * 100/3600 = 0.0028

    result = await manager.claim_profit(investor['id'])
    assert result == {'claimed_amount': Decimal('0.00'), 'transaction': None}
    purchase = fake_db.tables['stock_purchases'][0]
    assert purchase['last_profit_claim_at'] == clock.now - timedelta(seconds=100)


@pytest.mark.asyncio
async def test_claim_unknown_user(manager):
    with pytest.raises(NotFoundError):
        await manager.claim_profit(uuid4())


def test_accrual_math(clock):
    start = clock.now
    assert hours_elapsed(start, start + timedelta(minutes=90)) == Decimal('1.5')
    assert hours_elapsed(start, start - timedelta(hours=1)) == Decimal('0')
    assert accrued_profit(Decimal('100'), start, start + timedelta(hours=2), RATE) == Decimal('20')
    assert round_claim(Decimal('0.005')) == Decimal('0.01')
    assert round_claim(Decimal('0.0049')) == Decimal('0.00')
