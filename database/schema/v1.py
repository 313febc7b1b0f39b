"""Schema v1 - Initial database schema.

This version includes tables for:
- Storefronts, products, reviews and questions
- Orders (transactions) and escrow deposits
- Seller/buyer wallets, wallet ledger entries and payout methods
- Disputes and dispute messages
- User roles
"""

MONEY = 'NUMERIC(14,2)'

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'user_roles',
            'columns': [
                {'name': 'user_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'role', 'type': 'TEXT', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'primary_key': ['user_id', 'role']
        },
        {
            'name': 'stores',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'seller_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'name', 'type': 'TEXT', 'nullable': False},
                {'name': 'slug', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'description', 'type': 'TEXT'},
                {'name': 'logo_url', 'type': 'TEXT'},
                {'name': 'banner_url', 'type': 'TEXT'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'active'"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_stores_seller', 'columns': ['seller_id']}
            ]
        },
        {
            'name': 'products',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'store_id', 'type': 'UUID', 'nullable': False},
                {'name': 'name', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT'},
                {'name': 'price', 'type': MONEY, 'nullable': False, 'check': 'price >= 0'},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False, 'default': "'KES'"},
                {'name': 'images', 'type': 'JSONB', 'nullable': False, 'default': "'[]'::jsonb"},
                {'name': 'category', 'type': 'TEXT'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'draft'"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['store_id'], 'references': 'stores(id)'}
            ],
            'indexes': [
                {'name': 'idx_products_store', 'columns': ['store_id', 'status']}
            ]
        },
        {
            'name': 'transactions',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'seller_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'buyer_id', 'type': 'TEXT'},
                {'name': 'buyer_name', 'type': 'TEXT'},
                {'name': 'buyer_phone', 'type': 'TEXT'},
                {'name': 'buyer_email', 'type': 'TEXT'},
                {'name': 'buyer_address', 'type': 'TEXT'},
                {'name': 'product_id', 'type': 'UUID'},
                {'name': 'item_name', 'type': 'TEXT', 'nullable': False},
                {'name': 'item_description', 'type': 'TEXT'},
                {'name': 'item_images', 'type': 'JSONB', 'nullable': False, 'default': "'[]'::jsonb"},
                {'name': 'quantity', 'type': 'INT4', 'nullable': False, 'default': '1'},
                {'name': 'amount', 'type': MONEY, 'nullable': False, 'check': 'amount > 0'},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False, 'default': "'KES'"},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'"},
                {'name': 'payment_method', 'type': 'TEXT'},
                {'name': 'payment_reference', 'type': 'TEXT'},
                {'name': 'platform_fee', 'type': MONEY},
                {'name': 'seller_payout', 'type': MONEY},
                {'name': 'cancellation_reason', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'paid_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'shipped_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'delivered_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'completed_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'refunded_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'cancelled_at', 'type': 'TIMESTAMPTZ'}
            ],
            'foreign_keys': [
                {'columns': ['product_id'], 'references': 'products(id)'}
            ],
            'indexes': [
                {'name': 'idx_transactions_seller', 'columns': ['seller_id', 'status']},
                {'name': 'idx_transactions_buyer', 'columns': ['buyer_id']},
                {'name': 'idx_transactions_status', 'columns': ['status', 'created_at']},
                {
                    'name': 'idx_transactions_reference',
                    'columns': ['payment_reference'],
                    'unique': True,
                    'where': 'payment_reference IS NOT NULL'
                }
            ]
        },
        {
            'name': 'escrow_deposits',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'transaction_id', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'seller_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': MONEY, 'nullable': False},
                {'name': 'platform_fee', 'type': MONEY, 'nullable': False},
                {'name': 'seller_payout', 'type': MONEY, 'nullable': False},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False, 'default': "'KES'"},
                {'name': 'payment_method', 'type': 'TEXT'},
                {'name': 'payment_reference', 'type': 'TEXT'},
                {'name': 'payer_name', 'type': 'TEXT'},
                {'name': 'payer_phone', 'type': 'TEXT'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'"},
                {'name': 'admin_notes', 'type': 'TEXT'},
                {'name': 'confirmed_by', 'type': 'TEXT'},
                {'name': 'confirmed_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'auto_release_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'released_by', 'type': 'TEXT'},
                {'name': 'released_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['transaction_id'], 'references': 'transactions(id)'}
            ],
            'indexes': [
                {'name': 'idx_deposits_status', 'columns': ['status', 'created_at']},
                {
                    'name': 'idx_deposits_auto_release',
                    'columns': ['auto_release_at'],
                    'where': "status = 'confirmed'"
                }
            ]
        },
        {
            'name': 'wallets',
            'columns': [
                {'name': 'user_id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'available_balance', 'type': MONEY, 'nullable': False, 'default': '0',
                 'check': 'available_balance >= 0'},
                {'name': 'pending_balance', 'type': MONEY, 'nullable': False, 'default': '0',
                 'check': 'pending_balance >= 0'},
                {'name': 'total_earned', 'type': MONEY, 'nullable': False, 'default': '0'},
                {'name': 'total_spent', 'type': MONEY, 'nullable': False, 'default': '0'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ]
        },
        {
            'name': 'payment_methods',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'method_type', 'type': 'TEXT', 'nullable': False},
                {'name': 'provider', 'type': 'TEXT', 'nullable': False},
                {'name': 'account_number', 'type': 'TEXT', 'nullable': False},
                {'name': 'account_name', 'type': 'TEXT'},
                {'name': 'bank_code', 'type': 'TEXT'},
                {'name': 'country', 'type': 'TEXT', 'nullable': False, 'default': "'KE'"},
                {'name': 'is_default', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_payment_methods_user', 'columns': ['user_id']},
                {
                    'name': 'idx_payment_methods_default',
                    'columns': ['user_id'],
                    'unique': True,
                    'where': 'is_default'
                }
            ]
        },
        {
            'name': 'wallet_transactions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'type', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': MONEY, 'nullable': False, 'check': 'amount > 0'},
                {'name': 'fee', 'type': MONEY, 'nullable': False, 'default': '0'},
                {'name': 'net_amount', 'type': MONEY, 'nullable': False},
                {'name': 'reference', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'"},
                {'name': 'payment_method', 'type': 'TEXT'},
                {'name': 'payment_method_id', 'type': 'UUID'},
                {'name': 'failure_reason', 'type': 'TEXT'},
                {'name': 'metadata', 'type': 'JSONB', 'nullable': False, 'default': "'{}'::jsonb"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'completed_at', 'type': 'TIMESTAMPTZ'}
            ],
            'indexes': [
                {'name': 'idx_wallet_transactions_user', 'columns': ['user_id', 'created_at']},
                {'name': 'idx_wallet_transactions_status', 'columns': ['type', 'status']}
            ]
        },
        {
            'name': 'disputes',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'transaction_id', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'opened_by', 'type': 'TEXT', 'nullable': False},
                {'name': 'reason', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT', 'nullable': False},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'open'"},
                {'name': 'outcome', 'type': 'TEXT'},
                {'name': 'resolution', 'type': 'TEXT'},
                {'name': 'resolved_by', 'type': 'TEXT'},
                {'name': 'resolved_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['transaction_id'], 'references': 'transactions(id)'}
            ],
            'indexes': [
                {'name': 'idx_disputes_status', 'columns': ['status', 'created_at']}
            ]
        },
        {
            'name': 'dispute_messages',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'dispute_id', 'type': 'UUID', 'nullable': False},
                {'name': 'sender_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'message', 'type': 'TEXT', 'nullable': False},
                {'name': 'is_admin', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['dispute_id'], 'references': 'disputes(id)'}
            ],
            'indexes': [
                {'name': 'idx_dispute_messages_dispute', 'columns': ['dispute_id', 'created_at']}
            ]
        },
        {
            'name': 'product_reviews',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'product_id', 'type': 'UUID', 'nullable': False},
                {'name': 'store_id', 'type': 'UUID', 'nullable': False},
                {'name': 'order_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'customer_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'customer_name', 'type': 'TEXT'},
                {'name': 'rating', 'type': 'INT2', 'nullable': False, 'check': 'rating BETWEEN 1 AND 5'},
                {'name': 'title', 'type': 'TEXT'},
                {'name': 'content', 'type': 'TEXT', 'nullable': False},
                {'name': 'is_verified_purchase', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
                {'name': 'helpful_count', 'type': 'INT4', 'nullable': False, 'default': '0'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'published'"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'unique': [
                ['product_id', 'order_id', 'customer_id']
            ],
            'foreign_keys': [
                {'columns': ['product_id'], 'references': 'products(id)'}
            ],
            'indexes': [
                {'name': 'idx_reviews_product', 'columns': ['product_id', 'status']}
            ]
        },
        {
            'name': 'review_questions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'product_id', 'type': 'UUID', 'nullable': False},
                {'name': 'store_id', 'type': 'UUID', 'nullable': False},
                {'name': 'customer_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'customer_name', 'type': 'TEXT'},
                {'name': 'question', 'type': 'TEXT', 'nullable': False},
                {'name': 'answer', 'type': 'TEXT'},
                {'name': 'answered_by', 'type': 'TEXT'},
                {'name': 'answered_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'is_answered', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['product_id'], 'references': 'products(id)'}
            ],
            'indexes': [
                {'name': 'idx_questions_product', 'columns': ['product_id', 'created_at']}
            ]
        }
    ],
    'migrations': []
}
