"""Shared fixtures.

FakeDB stands in for the asyncpg pool in manager tests. It keeps tables as
lists of dicts and answers the statements the managers issue, matched on
their normalized SQL text. ``conn.transaction()`` snapshots the tables and
restores them when the block raises, so rollbacks are observable.
"""

import copy
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def normalize(sql: str) -> str:
    return ' '.join(sql.split())


class Clock:
    """Settable clock passed to managers."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeTransaction:
    def __init__(self, db):
        self.db = db

    async def __aenter__(self):
        self.snapshot = copy.deepcopy(self.db.tables)
        self.db.statements.append('BEGIN')
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.db.tables.clear()
            self.db.tables.update(self.snapshot)
            self.db.rollbacks += 1
            self.db.statements.append('ROLLBACK')
        else:
            self.db.statements.append('COMMIT')
        return False


class FakeConnection:
    def __init__(self, db):
        self.db = db

    def transaction(self):
        return FakeTransaction(self.db)

    def _record(self, sql):
        query = normalize(sql)
        self.db.statements.append(query)
        return query

    async def fetchval(self, sql, *args):
        q = self._record(sql)
        db = self.db
        if "FILTER (WHERE type = 'DEPOSIT')" in q:
            return db.balance(args[0])
        if q.startswith('SELECT id FROM users WHERE id = $1'):
            user = db.find('users', args[0])
            return user['id'] if user else None
        if q.startswith('SELECT username FROM users WHERE id = $1'):
            user = db.find('users', args[0])
            return user['username'] if user else None
        if q.startswith('SELECT email FROM users WHERE id = $1'):
            user = db.find('users', args[0])
            return user['email'] if user else None
        if q.startswith('SELECT EXISTS ( SELECT 1 FROM auctions a WHERE a.nft_id = $1 AND a.settled_at IS NULL'):
            nft_id, now = args
            return any(
                a['nft_id'] == nft_id and a['settled_at'] is None and (
                    (a['is_active'] and a['end_time'] > now)
                    or any(b['auction_id'] == a['id'] for b in db.tables['bids'])
                )
                for a in db.tables['auctions']
            )
        if q.startswith('SELECT EXISTS ( SELECT 1 FROM auctions'):
            nft_id, now = args
            return any(
                a['nft_id'] == nft_id and a['is_active'] and a['end_time'] > now
                for a in db.tables['auctions']
            )
        if q.startswith('SELECT a.id FROM auctions a WHERE a.nft_id = $1 AND a.settled_at IS NULL'):
            nft_id, now = args
            for a in db.tables['auctions']:
                if (a['nft_id'] == nft_id and a['settled_at'] is None and a['end_time'] <= now
                        and any(b['auction_id'] == a['id'] for b in db.tables['bids'])):
                    return a['id']
            return None
        if q.startswith('SELECT id FROM auctions WHERE nft_id = $1 AND is_active AND end_time > $2'):
            nft_id, now = args
            for a in db.tables['auctions']:
                if a['nft_id'] == nft_id and a['is_active'] and a['end_time'] > now:
                    return a['id']
            return None
        raise AssertionError(f"Unexpected fetchval: {q}")

    async def fetchrow(self, sql, *args):
        q = self._record(sql)
        db = self.db
        if q.startswith('INSERT INTO transactions'):
            row = {
                'id': uuid4(),
                'type': args[0],
                'amount': args[1],
                'user_id': args[2],
                'nft_id': args[3],
                'transaction_hash': args[4],
                'created_at': db.clock()
            }
            db.tables['transactions'].append(row)
            return dict(row)
        if q.startswith('INSERT INTO nfts'):
            row = {
                'id': uuid4(),
                'token_id': args[0],
                'name': args[1],
                'description': args[2],
                'image': args[3],
                'category': args[4],
                'price': args[5],
                'is_listed': True,
                'is_sold': False,
                'creator_id': args[6],
                'owner_id': args[6],
                'collection_id': args[7]
            }
            db.tables['nfts'].append(row)
            return dict(row)
        if q.startswith('SELECT n.*, o.email AS owner_email'):
            nft = db.find('nfts', args[0])
            if not nft:
                return None
            owner = db.find('users', nft['owner_id']) or {}
            return dict(nft, owner_email=owner.get('email'), owner_username=owner.get('username'))
        if q.startswith('SELECT * FROM nfts WHERE id = $1 FOR UPDATE'):
            nft = db.find('nfts', args[0])
            return dict(nft) if nft else None
        if q.startswith('SELECT id, owner_id, is_sold FROM nfts WHERE id = $1 FOR UPDATE'):
            nft = db.find('nfts', args[0])
            return dict(nft) if nft else None
        if q.startswith('UPDATE nfts SET owner_id = $2'):
            nft = db.find('nfts', args[0])
            if not nft:
                return None
            if 'AND is_listed AND NOT is_sold' in q:
                allowed = nft['is_listed'] and not nft['is_sold']
            else:
                allowed = not nft['is_sold'] and nft['owner_id'] == args[2]
            if not allowed:
                return None
            nft.update(owner_id=args[1], is_sold=True, is_listed=False)
            return dict(nft)
        if q.startswith('UPDATE nfts SET price = COALESCE($2, price)'):
            nft = db.find('nfts', args[0])
            if args[1] is not None:
                nft['price'] = args[1]
            nft['is_listed'] = args[2]
            nft['is_sold'] = args[3]
            if args[4] is not None:
                nft['name'] = args[4]
            if args[5] is not None:
                nft['description'] = args[5]
            assert not (nft['is_sold'] and nft['is_listed'])
            return dict(nft)
        if q.startswith('INSERT INTO auctions'):
            row = {
                'id': uuid4(),
                'nft_id': args[0],
                'seller_id': args[1],
                'start_price': args[2],
                'reserve_price': args[3],
                'current_price': args[2],
                'start_time': args[4],
                'end_time': args[5],
                'is_active': True,
                'settled_at': None,
                'winning_bid_id': None
            }
            active = [
                a for a in db.tables['auctions']
                if a['nft_id'] == row['nft_id'] and a['is_active']
            ]
            assert not active, "unique index idx_auctions_one_active violated"
            db.tables['auctions'].append(row)
            return dict(row)
        if q.startswith('SELECT a.*, n.owner_id AS nft_owner_id'):
            auction = db.find('auctions', args[0])
            if not auction:
                return None
            nft = db.find('nfts', auction['nft_id'])
            owner = db.find('users', nft['owner_id']) or {}
            return dict(auction, nft_owner_id=nft['owner_id'], nft_name=nft['name'], owner_email=owner.get('email'))
        if q.startswith('SELECT a.*, n.name AS nft_name'):
            auction = db.find('auctions', args[0])
            if not auction:
                return None
            nft = db.find('nfts', auction['nft_id'])
            return dict(auction, nft_name=nft['name'])
        if q.startswith('SELECT * FROM bids WHERE auction_id = $1 ORDER BY amount DESC'):
            bids = [b for b in db.tables['bids'] if b['auction_id'] == args[0]]
            bids.sort(key=lambda b: (-b['amount'], b['created_at']))
            return dict(bids[0]) if bids else None
        if q.startswith('INSERT INTO bids'):
            row = {
                'id': uuid4(),
                'auction_id': args[0],
                'nft_id': args[1],
                'bidder_id': args[2],
                'amount': args[3],
                'created_at': args[4]
            }
            db.tables['bids'].append(row)
            return dict(row)
        if q.startswith('UPDATE auctions SET is_active = false, settled_at = $2, winning_bid_id = $3'):
            auction = db.find('auctions', args[0])
            auction.update(is_active=False, settled_at=args[1], winning_bid_id=args[2])
            return dict(auction)
        if q.startswith('INSERT INTO stock_purchases'):
            row = {
                'id': uuid4(),
                'user_id': args[0],
                'symbol': args[1],
                'amount_usd': args[2],
                'price_usd': args[3],
                'shares': args[4],
                'date': args[5],
                'last_profit_claim_at': args[6],
                'created_at': args[6]
            }
            db.tables['stock_purchases'].append(row)
            return dict(row)
        if q.startswith('INSERT INTO withdrawal_requests'):
            row = {
                'id': uuid4(),
                'user_id': args[0],
                'amount': args[1],
                'method': args[2],
                'currency': args[3],
                'details': args[4],
                'status': 'PENDING',
                'reviewed_by': None,
                'reviewed_at': None,
                'created_at': db.clock()
            }
            db.tables['withdrawal_requests'].append(row)
            return dict(row)
        if q.startswith('SELECT * FROM withdrawal_requests WHERE id = $1 FOR UPDATE'):
            request = db.find('withdrawal_requests', args[0])
            return dict(request) if request else None
        if q.startswith('UPDATE withdrawal_requests SET status = $2'):
            request = db.find('withdrawal_requests', args[0])
            request.update(status=args[1], reviewed_by=args[2], reviewed_at=args[3])
            return dict(request)
        if q.startswith('SELECT request_count, reset_time FROM rate_limits'):
            for row in db.tables['rate_limits']:
                if row['identifier'] == args[0]:
                    return dict(row)
            return None
        raise AssertionError(f"Unexpected fetchrow: {q}")

    async def fetch(self, sql, *args):
        q = self._record(sql)
        db = self.db
        if q.startswith('SELECT id, amount_usd, last_profit_claim_at FROM stock_purchases'):
            return [dict(p) for p in db.tables['stock_purchases'] if p['user_id'] == args[0]]
        if q.startswith('SELECT email FROM users WHERE id = ANY'):
            return [{'email': u['email']} for u in db.tables['users'] if u['id'] in args[0]]
        if q.startswith('UPDATE auctions a SET is_active = false, settled_at = CASE'):
            now = args[0]
            closed = []
            for a in db.tables['auctions']:
                if a['is_active'] and a['end_time'] <= now:
                    has_bids = any(b['auction_id'] == a['id'] for b in db.tables['bids'])
                    a['is_active'] = False
                    a['settled_at'] = None if has_bids else now
                    closed.append({'id': a['id']})
            return closed
        raise AssertionError(f"Unexpected fetch: {q}")

    async def execute(self, sql, *args):
        q = self._record(sql)
        db = self.db
        if q.startswith('SELECT id FROM users WHERE id = $1 FOR UPDATE'):
            return 'SELECT 1'
        if q.startswith('UPDATE stock_purchases SET last_profit_claim_at = $2'):
            ids, now = args
            for p in db.tables['stock_purchases']:
                if p['id'] in ids:
                    p['last_profit_claim_at'] = now
            return f'UPDATE {len(ids)}'
        if q.startswith('UPDATE auctions SET is_active = false, settled_at = COALESCE(settled_at, $2)'):
            nft_id, now = args
            for a in db.tables['auctions']:
                if a['nft_id'] == nft_id and a['is_active'] and a['end_time'] <= now:
                    a['is_active'] = False
                    a['settled_at'] = a['settled_at'] or now
            return 'UPDATE'
        if q.startswith('INSERT INTO rate_limits'):
            if not any(r['identifier'] == args[0] for r in db.tables['rate_limits']):
                db.tables['rate_limits'].append(
                    {'identifier': args[0], 'request_count': 0, 'reset_time': args[1]}
                )
            return 'INSERT 0 1'
        if q.startswith('UPDATE rate_limits SET request_count = $2, reset_time = $3'):
            for row in db.tables['rate_limits']:
                if row['identifier'] == args[0]:
                    row.update(request_count=args[1], reset_time=args[2])
            return 'UPDATE 1'
        raise AssertionError(f"Unexpected execute: {q}")


class FakeDB:
    """In-memory tables behind a pool-shaped mock."""

    def __init__(self, clock: Clock):
        self.clock = clock
        self.tables = {
            'users': [],
            'nfts': [],
            'auctions': [],
            'bids': [],
            'transactions': [],
            'stock_purchases': [],
            'withdrawal_requests': [],
            'rate_limits': []
        }
        self.statements = []
        self.rollbacks = 0
        self.conn = FakeConnection(self)

        self.pool = MagicMock()
        self.pool.acquire.return_value.__aenter__.return_value = self.conn
        self.pool.acquire.return_value.__aexit__.return_value = False

    def find(self, table, row_id):
        for row in self.tables[table]:
            if row['id'] == row_id:
                return row
        return None

    def balance(self, user_id) -> Decimal:
        total = Decimal('0')
        for tx in self.tables['transactions']:
            if tx['user_id'] != user_id:
                continue
            if tx['type'] == 'DEPOSIT':
                total += tx['amount']
            elif tx['type'] in ('WITHDRAWAL', 'MINT'):
                total -= tx['amount']
        return total

    def add_user(self, username: str, is_admin: bool = False) -> dict:
        user = {
            'id': uuid4(),
            'email': f"{username}@example.com",
            'username': username,
            'is_admin': is_admin,
            'preferred_currency': 'USD'
        }
        self.tables['users'].append(user)
        return user

    def deposit(self, user_id, amount) -> dict:
        tx = {
            'id': uuid4(),
            'type': 'DEPOSIT',
            'amount': Decimal(str(amount)),
            'user_id': user_id,
            'nft_id': None,
            'transaction_hash': uuid4().hex,
            'created_at': self.clock()
        }
        self.tables['transactions'].append(tx)
        return tx

    def add_nft(self, owner_id, price='5.00', is_listed=True, is_sold=False, name='Sunset #1') -> dict:
        nft = {
            'id': uuid4(),
            'token_id': uuid4().hex,
            'name': name,
            'description': None,
            'image': 'https://img.example.com/sunset.png',
            'category': 'art',
            'price': Decimal(price) if price is not None else None,
            'is_listed': is_listed,
            'is_sold': is_sold,
            'creator_id': owner_id,
            'owner_id': owner_id,
            'collection_id': None
        }
        self.tables['nfts'].append(nft)
        return nft

    def add_auction(self, nft, start_price='1.00', hours=24, reserve_price=None) -> dict:
        now = self.clock()
        auction = {
            'id': uuid4(),
            'nft_id': nft['id'],
            'seller_id': nft['owner_id'],
            'start_price': Decimal(start_price),
            'reserve_price': Decimal(reserve_price) if reserve_price else None,
            'current_price': Decimal(start_price),
            'start_time': now,
            'end_time': now + timedelta(hours=hours),
            'is_active': True,
            'settled_at': None,
            'winning_bid_id': None
        }
        self.tables['auctions'].append(auction)
        return auction

    def transactions_of(self, user_id, tx_type=None) -> list:
        return [
            tx for tx in self.tables['transactions']
            if tx['user_id'] == user_id and (tx_type is None or tx['type'] == tx_type)
        ]


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def fake_db(clock):
    return FakeDB(clock)


@pytest.fixture
def notifier():
    """Email notifier double; dispatch calls are recorded, nothing is sent."""
    mock = MagicMock()
    mock.app_url = 'http://localhost:3000'
    return mock
