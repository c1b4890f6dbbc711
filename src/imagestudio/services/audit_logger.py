"""Structured JSON audit logger for ledger and subscription events.

Emits structured log entries via structlog for credit decrements, credit
grants, tier changes, and webhook handling.  Every entry carries an
``audit: true`` flag so production log pipelines can filter on it easily.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog


log = structlog.get_logger()


class AuditLogger:
    """Structured audit logger for ledger events.

    All methods are synchronous -- they only emit log lines and perform
    no I/O beyond writing to the configured structlog sink.
    """

    # ------------------------------------------------------------------
    # Credit movements
    # ------------------------------------------------------------------

    def log_credit_event(
        self,
        user_id,
        amount,
        txn_type: str,
        balance_after=None,
        reference_id=None,
    ) -> None:
        """Log a balance movement (``spend``, ``allocation_grant``, ``bonus_grant``)."""
        log.info(
            "audit_event",
            event_type="credit_event",
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=str(user_id),
            amount=str(amount),
            txn_type=txn_type,
            balance_after=str(balance_after) if balance_after is not None else None,
            reference_id=str(reference_id) if reference_id else None,
            audit=True,
        )

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def log_tier_change(
        self,
        user_id,
        new_tier: str,
        allocation: int,
        source_event_id: str | None = None,
    ) -> None:
        """Record a subscription tier/allocation overwrite."""
        log.info(
            "audit_event",
            event_type="tier_change",
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=str(user_id),
            new_tier=new_tier,
            allocation=allocation,
            source_event_id=source_event_id,
            audit=True,
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def log_webhook_event(
        self,
        event_id: str,
        event_type: str,
        outcome: str,
        detail: str | None = None,
    ) -> None:
        """Log receipt of a verified webhook and what was done with it."""
        log.info(
            "audit_event",
            event_type="webhook",
            timestamp=datetime.now(timezone.utc).isoformat(),
            webhook_event_id=event_id,
            webhook_event_type=event_type,
            outcome=outcome,
            detail=detail,
            audit=True,
        )
