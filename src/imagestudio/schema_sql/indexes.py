"""All CREATE INDEX statements for the initial schema."""

ALL = [
    # user_accounts (reverse lookup for subscription events)
    "CREATE INDEX idx_accounts_customer ON user_accounts(payment_customer_id) "
    "WHERE payment_customer_id IS NOT NULL;",
    "CREATE INDEX idx_accounts_tier ON user_accounts(subscription_tier) "
    "WHERE subscription_tier <> 'free';",
    # processed_webhook_events
    "CREATE INDEX idx_webhook_events_type ON processed_webhook_events"
    "(event_type, processed_at DESC);",
    # generations
    "CREATE INDEX idx_generations_user ON generations(user_id, created_at DESC);",
]
