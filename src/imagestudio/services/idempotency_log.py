"""Event idempotency log -- at-most-once effect per payment-provider event."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

_RECORD_IF_NEW = text(
    "INSERT INTO processed_webhook_events "
    "(event_id, event_type, payload_snapshot, processed_at) "
    "VALUES (:event_id, :event_type, :payload, :processed_at) "
    "ON CONFLICT (event_id) DO NOTHING "
    "RETURNING event_id"
).bindparams(
    bindparam("payload", type_=JSON),
    bindparam("processed_at", type_=DateTime(timezone=True)),
)


async def record_if_new(
    db: AsyncSession,
    event_id: str,
    event_type: str,
    payload: dict[str, Any],
) -> bool:
    """Insert the event record if absent; return True only for the inserter.

    Check and insert are a single statement.  A second delivery racing the
    first blocks on the primary key until the first transaction ends and then
    gets False.  Callers must skip all side effects on False.
    """
    result = await db.execute(
        _RECORD_IF_NEW,
        {
            "event_id": event_id,
            "event_type": event_type,
            "payload": payload,
            "processed_at": datetime.now(timezone.utc),
        },
    )
    return result.fetchone() is not None


async def was_processed(db: AsyncSession, event_id: str) -> bool:
    """Return True if this event id has already been recorded."""
    existing = await db.execute(
        text("SELECT 1 FROM processed_webhook_events WHERE event_id = :event_id"),
        {"event_id": event_id},
    )
    return existing.fetchone() is not None
