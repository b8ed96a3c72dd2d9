from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from asyncpg.exceptions import PostgresError

from errors import InsufficientBalanceError, NotFoundError, ValidationError
from ledger import BalanceUnavailableError
from nfts import MINT_FEE, NFTManager, validate_nft_data

TEST_NFT = {
    'name': 'Sunset #1',
    'description': 'A sunset over the bay',
    'image': 'https://img.example.com/sunset.png',
    'category': 'art',
    'price': '5.00'
}


@pytest.fixture
def manager(fake_db, notifier, clock):
    return NFTManager(pool=fake_db.pool, notifier=notifier, clock=clock)


@pytest.mark.asyncio
async def test_mint_debits_fee(manager, fake_db):
    """Test minting charges the fee and records a MINT transaction."""
    creator = fake_db.add_user('creator')
    fake_db.deposit(creator['id'], '1.00')

    result = await manager.mint_with_debit(TEST_NFT, creator['id'])

    nft = result['nft']
    assert nft['creator_id'] == creator['id']
    assert nft['owner_id'] == creator['id']
    assert nft['is_listed'] and not nft['is_sold']
    assert nft['price'] == Decimal('5.00')
    assert len(nft['token_id']) == 32

    assert result['mint_fee'] == MINT_FEE
    assert result['new_balance'] == Decimal('1.00') - MINT_FEE
    assert result['transaction']['type'] == 'MINT'
    assert result['transaction']['nft_id'] == nft['id']
    assert fake_db.balance(creator['id']) == Decimal('1.00') - MINT_FEE


@pytest.mark.asyncio
async def test_mint_until_balance_runs_out(manager, fake_db):
    """A balance of ten fees allows exactly ten mints."""
    creator = fake_db.add_user('creator')
    fake_db.deposit(creator['id'], MINT_FEE * 10)

    for _ in range(10):
        await manager.mint_with_debit(TEST_NFT, creator['id'])
    assert fake_db.balance(creator['id']) == Decimal('0')

    with pytest.raises(InsufficientBalanceError) as exc:
        await manager.mint_with_debit(TEST_NFT, creator['id'])
    assert exc.value.required_amount == MINT_FEE
    assert exc.value.available_balance == Decimal('0')
    assert exc.value.code == 'InsufficientBalance'

    assert len(fake_db.tables['nfts']) == 10
    assert len(fake_db.transactions_of(creator['id'], 'MINT')) == 10


@pytest.mark.asyncio
async def test_mint_without_balance_leaves_no_trace(manager, fake_db):
    creator = fake_db.add_user('creator')
    fake_db.deposit(creator['id'], MINT_FEE / 2)

    with pytest.raises(InsufficientBalanceError):
        await manager.mint_with_debit(TEST_NFT, creator['id'])

    assert fake_db.tables['nfts'] == []
    assert fake_db.transactions_of(creator['id'], 'MINT') == []
    assert fake_db.rollbacks == 1


@pytest.mark.asyncio
async def test_mint_unknown_user(manager):
    with pytest.raises(NotFoundError):
        await manager.mint_with_debit(TEST_NFT, uuid4())


@pytest.mark.asyncio
async def test_mint_fails_when_balance_unavailable(notifier):
    """A failed balance query is an error, never a zero balance."""
    conn = MagicMock()
    conn.transaction.return_value.__aexit__.return_value = False
    conn.fetchval = AsyncMock(side_effect=[uuid4(), PostgresError('connection reset')])
    conn.fetchrow = AsyncMock()
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    pool.acquire.return_value.__aexit__.return_value = False

    manager = NFTManager(pool=pool, notifier=notifier)
    with pytest.raises(BalanceUnavailableError):
        await manager.mint_with_debit(TEST_NFT, uuid4())
    conn.fetchrow.assert_not_called()


@pytest.mark.parametrize('field, value', [
    ('name', ''),
    ('name', 'x' * 101),
    ('description', 'x' * 1001),
    ('image', 'not a url'),
    ('image', 'ftp://img.example.com/a.png'),
    ('price', '0'),
    ('price', '-3'),
])
def test_invalid_nft_data(field, value):
    with pytest.raises(ValidationError):
        validate_nft_data(dict(TEST_NFT, **{field: value}))


def test_nft_data_is_normalized():
    data = validate_nft_data({'name': '  Moon  ', 'image': 'http://img.example.com/moon.png'})
    assert data['name'] == 'Moon'
    assert data['price'] is None
    assert data['collection_id'] is None
