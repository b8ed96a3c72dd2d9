"""Schema v1 - Initial marketplace schema.

This version includes tables for:
- Users and collections
- NFTs, auctions and bids
- The append-only transaction ledger
- System settings
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'users',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'email', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'username', 'type': 'TEXT', 'nullable': False},
                {'name': 'is_admin', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
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
        }
    ],
    'migrations': []
}
