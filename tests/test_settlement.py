from decimal import Decimal
from uuid import uuid4

import pytest

from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from nfts import NFTManager
from nfts.settlement import apply_sale, check_purchase


@pytest.fixture
def manager(fake_db, notifier, clock):
    return NFTManager(pool=fake_db.pool, notifier=notifier, clock=clock)


@pytest.fixture
def seller(fake_db):
    return fake_db.add_user('seller')


@pytest.fixture
def buyer(fake_db):
    return fake_db.add_user('buyer')


@pytest.mark.asyncio
async def test_purchase(manager, fake_db, seller, buyer, notifier):
    """Test buying a listed NFT at its list price."""
    nft = fake_db.add_nft(seller['id'], price='5.00')

    result = await manager.settle_purchase(nft['id'], buyer['id'])

    assert result['nft']['owner_id'] == buyer['id']
    assert result['nft']['is_sold']
    assert not result['nft']['is_listed']
    assert result['transaction']['type'] == 'SALE'
    assert result['transaction']['amount'] == Decimal('5.00')
    assert result['transaction']['user_id'] == buyer['id']
    assert result['transaction']['nft_id'] == nft['id']
    notifier.dispatch.assert_called_once()
    assert notifier.dispatch.call_args[0][0] == seller['email']


@pytest.mark.asyncio
async def test_second_purchase_is_unavailable(manager, fake_db, seller, buyer):
    nft = fake_db.add_nft(seller['id'])
    other = fake_db.add_user('other')

    await manager.settle_purchase(nft['id'], buyer['id'])
    with pytest.raises(ConflictError) as exc:
        await manager.settle_purchase(nft['id'], other['id'])
    assert exc.value.code == 'Unavailable'
    assert len(fake_db.transactions_of(other['id'])) == 0


@pytest.mark.asyncio
async def test_purchase_rules(manager, fake_db, seller, buyer, notifier):
    with pytest.raises(NotFoundError):
        await manager.settle_purchase(uuid4(), buyer['id'])

    unlisted = fake_db.add_nft(seller['id'], is_listed=False)
    with pytest.raises(ConflictError) as exc:
        await manager.settle_purchase(unlisted['id'], buyer['id'])
    assert exc.value.code == 'Unavailable'

    own = fake_db.add_nft(buyer['id'])
    with pytest.raises(ValidationError) as exc:
        await manager.settle_purchase(own['id'], buyer['id'])
    assert exc.value.code == 'SelfPurchase'

    unpriced = fake_db.add_nft(seller['id'], price=None)
    with pytest.raises(ValidationError) as exc:
        await manager.settle_purchase(unpriced['id'], buyer['id'])
    assert exc.value.code == 'InvalidPrice'

    auctioned = fake_db.add_nft(seller['id'])
    fake_db.add_auction(auctioned)
    with pytest.raises(ConflictError) as exc:
        await manager.settle_purchase(auctioned['id'], buyer['id'])
    assert exc.value.code == 'ActiveAuction'

    assert fake_db.tables['transactions'] == []
    notifier.dispatch.assert_not_called()


@pytest.mark.asyncio
async def test_lost_race_writes_nothing(fake_db, seller, buyer):
    """When the conditional update matches nothing, no SALE is recorded."""
    nft = fake_db.add_nft(seller['id'])
    fake_db.find('nfts', nft['id']).update(is_sold=True, is_listed=False)

    with pytest.raises(ConflictError) as exc:
        async with fake_db.conn.transaction():
            await apply_sale(fake_db.conn, nft['id'], buyer['id'], Decimal('5.00'))
    assert exc.value.code == 'Unavailable'
    assert fake_db.tables['transactions'] == []


def test_check_purchase_order():
    """Unavailable is reported before SelfPurchase."""
    owner = uuid4()
    nft = {'is_listed': False, 'is_sold': True, 'owner_id': owner, 'price': Decimal('1')}
    with pytest.raises(ConflictError) as exc:
        check_purchase(nft, owner, has_active_auction=True)
    assert exc.value.code == 'Unavailable'

    nft.update(is_listed=True, is_sold=False)
    assert check_purchase(nft, uuid4(), has_active_auction=False) == Decimal('1')


@pytest.mark.asyncio
async def test_relist_after_sale(manager, fake_db, seller, buyer):
    nft = fake_db.add_nft(seller['id'])
    await manager.settle_purchase(nft['id'], buyer['id'])

    with pytest.raises(ForbiddenError):
        await manager.update_listing(nft['id'], seller['id'], is_listed=True)

    relisted = await manager.update_listing(nft['id'], buyer['id'], price=Decimal('9.00'), is_listed=True)
    assert relisted['is_listed']
    assert not relisted['is_sold']
    assert relisted['price'] == Decimal('9.00')

    other = fake_db.add_user('other')
    result = await manager.settle_purchase(nft['id'], other['id'])
    assert result['transaction']['amount'] == Decimal('9.00')


@pytest.mark.asyncio
async def test_delist_during_auction(manager, fake_db, seller):
    nft = fake_db.add_nft(seller['id'])
    fake_db.add_auction(nft)

    with pytest.raises(ConflictError) as exc:
        await manager.update_listing(nft['id'], seller['id'], is_listed=False)
    assert exc.value.code == 'ActiveAuction'

    with pytest.raises(ValidationError):
        await manager.update_listing(nft['id'], seller['id'], price=Decimal('0'))


@pytest.mark.asyncio
async def test_purchase_checks_run_under_row_lock(manager, fake_db, seller, buyer):
    nft = fake_db.add_nft(seller['id'])
    await manager.settle_purchase(nft['id'], buyer['id'])

    begin = fake_db.statements.index('BEGIN')
    lock, auction_check, update = fake_db.statements[begin + 1:begin + 4]
    assert lock.startswith('SELECT n.*') and lock.endswith('FOR UPDATE OF n')
    assert 'FROM auctions' in auction_check
    assert update.startswith('UPDATE nfts SET owner_id = $2')


@pytest.mark.asyncio
async def test_purchase_refused_while_ended_auction_awaits_settlement(manager, fake_db, seller, buyer, clock):
    nft = fake_db.add_nft(seller['id'])
    auction = fake_db.add_auction(nft, hours=1)
    bidder = fake_db.add_user('bidder')
    fake_db.tables['bids'].append({
        'id': uuid4(),
        'auction_id': auction['id'],
        'nft_id': nft['id'],
        'bidder_id': bidder['id'],
        'amount': Decimal('1.00'),
        'created_at': clock.now
    })

    clock.advance(hours=2)
    with pytest.raises(ConflictError) as exc:
        await manager.settle_purchase(nft['id'], buyer['id'])
    assert exc.value.code == 'ActiveAuction'
    assert fake_db.find('nfts', nft['id'])['owner_id'] == seller['id']

    # Once settled the auction no longer holds the NFT
    fake_db.find('auctions', auction['id']).update(is_active=False, settled_at=clock.now)
    fake_db.find('nfts', nft['id']).update(is_listed=True)
    result = await manager.settle_purchase(nft['id'], buyer['id'])
    assert result['nft']['owner_id'] == buyer['id']


@pytest.mark.asyncio
async def test_purchase_allowed_after_auction_without_bids_ends(manager, fake_db, seller, buyer, clock):
    nft = fake_db.add_nft(seller['id'])
    fake_db.add_auction(nft, hours=1)

    clock.advance(hours=2)
    result = await manager.settle_purchase(nft['id'], buyer['id'])
    assert result['nft']['owner_id'] == buyer['id']
