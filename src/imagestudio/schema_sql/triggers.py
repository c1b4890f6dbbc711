"""Trigger functions and trigger DDL for the initial schema."""

# ---- Trigger functions ----

FN_RAISE_IMMUTABLE = """
CREATE OR REPLACE FUNCTION raise_immutable_error()
RETURNS TRIGGER AS $$
BEGIN
    RAISE EXCEPTION 'Rows in table % are immutable', TG_TABLE_NAME;
END;
$$ LANGUAGE plpgsql;
"""

FN_TOUCH_UPDATED_AT = """
CREATE OR REPLACE FUNCTION touch_updated_at()
RETURNS TRIGGER AS $$
BEGIN
    NEW.updated_at = now();
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

FN_KEEP_CUSTOMER_BINDING = """
CREATE OR REPLACE FUNCTION keep_customer_binding()
RETURNS TRIGGER AS $$
BEGIN
    IF OLD.payment_customer_id IS NOT NULL
    AND NEW.payment_customer_id IS DISTINCT FROM OLD.payment_customer_id
    THEN
        RAISE EXCEPTION 'payment_customer_id is bound and cannot change';
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

FUNCTIONS_ALL = [
    FN_RAISE_IMMUTABLE,
    FN_TOUCH_UPDATED_AT,
    FN_KEEP_CUSTOMER_BINDING,
]

# ---- Triggers ----

TRIGGERS_ALL = [
    "CREATE TRIGGER trg_processed_webhook_events_immutable "
    "BEFORE UPDATE OR DELETE ON processed_webhook_events "
    "FOR EACH ROW EXECUTE FUNCTION raise_immutable_error();",

    "CREATE TRIGGER trg_accounts_touch_updated_at "
    "BEFORE UPDATE ON user_accounts "
    "FOR EACH ROW EXECUTE FUNCTION touch_updated_at();",

    "CREATE TRIGGER trg_accounts_keep_customer "
    "BEFORE UPDATE ON user_accounts "
    "FOR EACH ROW EXECUTE FUNCTION keep_customer_binding();",
]
