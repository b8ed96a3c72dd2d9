"""Schema v2 - Stocks, withdrawals, rate limiting and auction settlement.

Changes from v1:
- users.preferred_currency
- auctions.settled_at and auctions.winning_bid_id
- stock_purchases with per-purchase profit claim tracking
- withdrawal_requests with admin review columns
- rate_limits fixed window counters
"""

schema = {
    'version': 2,
    'tables': [
        {
            'name': 'users',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'email', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'username', 'type': 'TEXT', 'nullable': False},
                {'name': 'is_admin', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'preferred_currency', 'type': 'TEXT', 'nullable': False, 'default': "'USD'"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_users_username', 'columns': ['username'], 'unique': True}
            ]
        },
        {
            'name': 'collections',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'name', 'type': 'TEXT', 'nullable': False},
                {'name': 'creator_id', 'type': 'UUID', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['creator_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_collections_creator', 'columns': ['creator_id']}
            ]
        },
        {
            'name': 'nfts',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'token_id', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'name', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT'},
                {'name': 'image', 'type': 'TEXT', 'nullable': False},
                {'name': 'category', 'type': 'TEXT'},
                {'name': 'price', 'type': 'DECIMAL(20,8)'},
                {'name': 'is_listed', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
                {'name': 'is_sold', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'creator_id', 'type': 'UUID', 'nullable': False},
                {'name': 'owner_id', 'type': 'UUID'},
                {'name': 'collection_id', 'type': 'UUID'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {'name': 'chk_nfts_sold_not_listed', 'expression': 'NOT (is_sold AND is_listed)'}
            ],
            'foreign_keys': [
                {'columns': ['creator_id'], 'references': 'users(id)'},
                {'columns': ['owner_id'], 'references': 'users(id)'},
                {'columns': ['collection_id'], 'references': 'collections(id)'}
            ],
            'indexes': [
                {'name': 'idx_nfts_owner', 'columns': ['owner_id']},
                {'name': 'idx_nfts_creator', 'columns': ['creator_id']},
                {'name': 'idx_nfts_listed', 'columns': ['is_listed', 'is_sold']}
            ]
        },
        {
            'name': 'auctions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'nft_id', 'type': 'UUID', 'nullable': False},
                {'name': 'seller_id', 'type': 'UUID', 'nullable': False},
                {'name': 'start_price', 'type': 'DECIMAL(20,8)', 'nullable': False},
                {'name': 'reserve_price', 'type': 'DECIMAL(20,8)'},
                {'name': 'current_price', 'type': 'DECIMAL(20,8)', 'nullable': False},
                {'name': 'start_time', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'end_time', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'is_active', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
                {'name': 'settled_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'winning_bid_id', 'type': 'UUID'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {'name': 'chk_auctions_start_price', 'expression': 'start_price > 0'}
            ],
            'foreign_keys': [
                {'columns': ['nft_id'], 'references': 'nfts(id)'},
                {'columns': ['seller_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_auctions_one_active', 'columns': ['nft_id'], 'unique': True, 'where': 'is_active'},
                {'name': 'idx_auctions_end_time', 'columns': ['end_time'], 'where': 'is_active'}
            ]
        },
        {
            'name': 'bids',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'auction_id', 'type': 'UUID', 'nullable': False},
                {'name': 'nft_id', 'type': 'UUID', 'nullable': False},
                {'name': 'bidder_id', 'type': 'UUID', 'nullable': False},
                {'name': 'amount', 'type': 'DECIMAL(20,8)', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {'name': 'chk_bids_amount', 'expression': 'amount > 0'}
            ],
            'foreign_keys': [
                {'columns': ['auction_id'], 'references': 'auctions(id)'},
                {'columns': ['nft_id'], 'references': 'nfts(id)'},
                {'columns': ['bidder_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_bids_auction_amount', 'columns': ['auction_id', 'amount DESC', 'created_at']}
            ]
        },
        {
            'name': 'transactions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'type', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': 'DECIMAL(20,8)', 'nullable': False},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False},
                {'name': 'nft_id', 'type': 'UUID'},
                {'name': 'transaction_hash', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {
                    'name': 'chk_transactions_type',
                    'expression': "type IN ('SALE', 'TRANSFER', 'MINT', 'DEPOSIT', 'WITHDRAWAL')"
                },
                {'name': 'chk_transactions_amount', 'expression': 'amount > 0'}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)'},
                {'columns': ['nft_id'], 'references': 'nfts(id)'}
            ],
            'indexes': [
                {'name': 'idx_transactions_user_type', 'columns': ['user_id', 'type']},
                {'name': 'idx_transactions_created', 'columns': ['created_at']}
            ]
        },
        {
            'name': 'stock_purchases',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False},
                {'name': 'symbol', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount_usd', 'type': 'DECIMAL(20,8)', 'nullable': False},
                {'name': 'price_usd', 'type': 'DECIMAL(20,8)', 'nullable': False},
                {'name': 'shares', 'type': 'DECIMAL(20,8)', 'nullable': False},
                {'name': 'date', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'last_profit_claim_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {'name': 'chk_stock_purchases_amount', 'expression': 'amount_usd > 0'}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_stock_purchases_user', 'columns': ['user_id']}
            ]
        },
        {
            'name': 'withdrawal_requests',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False},
                {'name': 'amount', 'type': 'DECIMAL(20,8)', 'nullable': False},
                {'name': 'method', 'type': 'TEXT', 'nullable': False},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False, 'default': "'USD'"},
                {'name': 'details', 'type': 'VARCHAR(500)', 'nullable': False, 'default': "''"},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'PENDING'"},
                {'name': 'reviewed_by', 'type': 'UUID'},
                {'name': 'reviewed_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {'name': 'chk_withdrawal_requests_status', 'expression': "status IN ('PENDING', 'APPROVED', 'DENIED')"},
                {'name': 'chk_withdrawal_requests_amount', 'expression': 'amount > 0'}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)'},
                {'columns': ['reviewed_by'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_withdrawal_requests_user', 'columns': ['user_id', 'created_at DESC']},
                {'name': 'idx_withdrawal_requests_status', 'columns': ['status']}
            ]
        },
        {
            'name': 'rate_limits',
            'columns': [
                {'name': 'identifier', 'type': 'TEXT', 'primary_key': True},
                {'name': 'request_count', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'reset_time', 'type': 'TIMESTAMPTZ', 'nullable': False}
            ]
        },
        {
            'name': 'system_settings',
            'columns': [
                {'name': 'key', 'type': 'TEXT', 'primary_key': True},
                {'name': 'value', 'type': 'TEXT', 'nullable': False},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ]
        }
    ],
    'triggers': [
        {
            'name': 'nfts_touch_updated_at',
            'function_name': 'touch_updated_at',
            'table': 'nfts',
            'timing': 'BEFORE',
            'event': 'UPDATE',
            'function_body': '''
                BEGIN
                    NEW.updated_at = now();
                    RETURN NEW;
                END;
            '''
        },
        {
            'name': 'auctions_touch_updated_at',
            'function_name': 'touch_updated_at',
            'table': 'auctions',
            'timing': 'BEFORE',
            'event': 'UPDATE',
            'function_body': '''
                BEGIN
                    NEW.updated_at = now();
                    RETURN NEW;
                END;
            '''
        },
        {
            'name': 'withdrawal_requests_touch_updated_at',
            'function_name': 'touch_updated_at',
            'table': 'withdrawal_requests',
            'timing': 'BEFORE',
            'event': 'UPDATE',
            'function_body': '''
                BEGIN
                    NEW.updated_at = now();
                    RETURN NEW;
                END;
            '''
        }
    ],
    'migrations': [
        # Display currency preference
        '''
        ALTER TABLE users
        ADD COLUMN IF NOT EXISTS preferred_currency TEXT NOT NULL DEFAULT 'USD';
        ''',

        # Auction settlement tracking
        '''
        ALTER TABLE auctions
        ADD COLUMN IF NOT EXISTS settled_at TIMESTAMPTZ,
        ADD COLUMN IF NOT EXISTS winning_bid_id UUID;
        ''',

        '''
        CREATE TABLE IF NOT EXISTS stock_purchases (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id),
            symbol TEXT NOT NULL,
            amount_usd DECIMAL(20,8) NOT NULL CONSTRAINT chk_stock_purchases_amount CHECK (amount_usd > 0),
            price_usd DECIMAL(20,8) NOT NULL,
            shares DECIMAL(20,8) NOT NULL,
            date TIMESTAMPTZ NOT NULL DEFAULT now(),
            last_profit_claim_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        ''',
        '''
        CREATE INDEX IF NOT EXISTS idx_stock_purchases_user ON stock_purchases(user_id);
        ''',

        '''
        CREATE TABLE IF NOT EXISTS withdrawal_requests (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id),
            amount DECIMAL(20,8) NOT NULL CONSTRAINT chk_withdrawal_requests_amount CHECK (amount > 0),
            method TEXT NOT NULL,
            currency TEXT NOT NULL DEFAULT 'USD',
            details VARCHAR(500) NOT NULL DEFAULT '',
            status TEXT NOT NULL DEFAULT 'PENDING'
                CONSTRAINT chk_withdrawal_requests_status CHECK (status IN ('PENDING', 'APPROVED', 'DENIED')),
            reviewed_by UUID REFERENCES users(id),
            reviewed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        ''',
        '''
        CREATE INDEX IF NOT EXISTS idx_withdrawal_requests_user ON withdrawal_requests(user_id, created_at DESC);
        ''',
        '''
        CREATE INDEX IF NOT EXISTS idx_withdrawal_requests_status ON withdrawal_requests(status);
        ''',
        '''
        CREATE TRIGGER withdrawal_requests_touch_updated_at
        BEFORE UPDATE ON withdrawal_requests
        FOR EACH ROW
        EXECUTE FUNCTION touch_updated_at();
        ''',

        '''
        CREATE TABLE IF NOT EXISTS rate_limits (
            identifier TEXT PRIMARY KEY,
            request_count INT8 NOT NULL DEFAULT 0,
            reset_time TIMESTAMPTZ NOT NULL
        );
        '''
    ]
}
