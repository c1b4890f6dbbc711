"""CREATE TABLE statements for accounts, webhook events, and the gallery."""

USER_ACCOUNTS = """
CREATE TABLE user_accounts (
    user_id             VARCHAR(255) PRIMARY KEY,
    email               VARCHAR(320),
    display_name        VARCHAR(255),
    subscription_tier   VARCHAR(10) NOT NULL DEFAULT 'free'
                        CONSTRAINT ck_account_tier
                        CHECK (subscription_tier IN ('free', 'basic', 'pro')),
    image_balance       NUMERIC(12, 2) NOT NULL DEFAULT 2
                        CONSTRAINT ck_account_balance_non_negative
                        CHECK (image_balance >= 0),
    monthly_allocation  INTEGER NOT NULL DEFAULT 0
                        CONSTRAINT ck_account_allocation
                        CHECK (monthly_allocation >= 0),
    bonus_images        NUMERIC(12, 2) NOT NULL DEFAULT 0,
    images_generated    INTEGER NOT NULL DEFAULT 0,
    payment_customer_id VARCHAR(255) UNIQUE,
    created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

PROCESSED_WEBHOOK_EVENTS = """
CREATE TABLE processed_webhook_events (
    event_id         VARCHAR(255) PRIMARY KEY,
    event_type       VARCHAR(100) NOT NULL,
    payload_snapshot JSON NOT NULL,
    processed_at     TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

GENERATIONS = """
CREATE TABLE generations (
    generation_id   UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id         VARCHAR(255) NOT NULL REFERENCES user_accounts(user_id),
    prompt          TEXT NOT NULL,
    generation_type VARCHAR(40) NOT NULL,
    width           INTEGER NOT NULL,
    height          INTEGER NOT NULL,
    resolution      VARCHAR(4) NOT NULL
                    CONSTRAINT ck_generation_resolution
                    CHECK (resolution IN ('1K', '2K', '4K')),
    credit_cost     NUMERIC(12, 2) NOT NULL,
    status          VARCHAR(20) NOT NULL
                    CONSTRAINT ck_generation_status
                    CHECK (status IN ('generating', 'completed', 'failed')),
    image_path      TEXT,
    error_message   TEXT,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    completed_at    TIMESTAMPTZ
);
"""

ALL = [
    USER_ACCOUNTS,
    PROCESSED_WEBHOOK_EVENTS,
    GENERATIONS,
]
