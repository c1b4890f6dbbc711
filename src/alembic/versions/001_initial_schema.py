"""Initial schema -- ledger, webhook event log, gallery, and protective triggers.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-16
"""

from alembic import op

from imagestudio.schema_sql import indexes, tables, triggers

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _execute_all(statements: list[str]) -> None:
    """Execute a list of SQL statements sequentially."""
    for stmt in statements:
        op.execute(stmt)


def upgrade() -> None:
    _execute_all(tables.ALL)
    _execute_all(indexes.ALL)
    _execute_all(triggers.FUNCTIONS_ALL)
    _execute_all(triggers.TRIGGERS_ALL)


def downgrade() -> None:
    _drop_triggers()
    _drop_functions()
    _drop_tables()


def _drop_triggers() -> None:
    op.execute(
        "DROP TRIGGER IF EXISTS trg_processed_webhook_events_immutable "
        "ON processed_webhook_events;"
    )
    op.execute("DROP TRIGGER IF EXISTS trg_accounts_touch_updated_at ON user_accounts;")
    op.execute("DROP TRIGGER IF EXISTS trg_accounts_keep_customer ON user_accounts;")


def _drop_functions() -> None:
    op.execute("DROP FUNCTION IF EXISTS raise_immutable_error();")
    op.execute("DROP FUNCTION IF EXISTS touch_updated_at();")
    op.execute("DROP FUNCTION IF EXISTS keep_customer_binding();")


def _drop_tables() -> None:
    tables_in_drop_order = [
        "generations",
        "processed_webhook_events",
        "user_accounts",
    ]
    for table in tables_in_drop_order:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE;")
