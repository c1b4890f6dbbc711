"""Subscription reconciler -- maps Stripe webhook events onto the ledger.

Flow for every delivery:

1. Verify the ``Stripe-Signature`` header against the webhook secret.  An
   unverifiable request never reaches the database.
2. Resolve the event type to a known :class:`EventType`; anything else is
   rejected loudly rather than silently acknowledged.
3. ``record_if_new`` in the idempotency log.  A duplicate is acknowledged
   and skipped.
4. Run the handler for that event type inside the same transaction.

Handlers are independently idempotent and do not assume any ordering
between different event types.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import stripe
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from imagestudio.config import settings
from imagestudio.services import ledger_store
from imagestudio.services.audit_logger import AuditLogger
from imagestudio.services.catalog import (
    PAID_TIERS,
    Tier,
    allocation_for,
    parse_paid_tier,
    tier_for_price,
)
from imagestudio.services.errors import (
    MalformedWebhookPayload,
    SignatureVerificationFailure,
    UnhandledEventType,
)
from imagestudio.services.idempotency_log import record_if_new

log = structlog.get_logger()
audit = AuditLogger()


class EventType(str, enum.Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAID = "invoice.paid"


class ReconcileStatus(str, enum.Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ReconcileResult:
    event_id: str
    event_type: EventType
    status: ReconcileStatus


# ---------------------------------------------------------------------------
# Verification and parsing
# ---------------------------------------------------------------------------

def verify_event(payload: bytes, sig_header: str | None) -> dict[str, Any]:
    """Authenticate a webhook body and return it as a plain dict.

    Raises SignatureVerificationFailure for a missing or invalid signature and
    MalformedWebhookPayload for a body that is not a JSON event object.
    """
    if not sig_header:
        raise SignatureVerificationFailure("Missing Stripe-Signature header")
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise RuntimeError("STRIPE_WEBHOOK_SECRET is not configured")

    try:
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
    except ValueError as exc:
        raise MalformedWebhookPayload("Webhook body is not UTF-8") from exc

    try:
        stripe.WebhookSignature.verify_header(
            body,
            sig_header,
            settings.STRIPE_WEBHOOK_SECRET,
            tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
        )
    except stripe.SignatureVerificationError as exc:
        raise SignatureVerificationFailure(str(exc)) from exc

    try:
        event = json.loads(body)
    except ValueError as exc:
        raise MalformedWebhookPayload("Webhook body is not valid JSON") from exc

    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise MalformedWebhookPayload("Webhook body is not an event object")
    return event


def parse_event_type(raw_type: str) -> EventType:
    try:
        return EventType(raw_type)
    except ValueError:
        raise UnhandledEventType(raw_type) from None


def _event_object(event: dict[str, Any]) -> dict[str, Any]:
    obj = (event.get("data") or {}).get("object")
    if not isinstance(obj, dict):
        raise MalformedWebhookPayload("Event has no data.object")
    return obj


def _customer_id(obj: dict[str, Any]) -> str | None:
    """Stripe sends ``customer`` as an id string or, when expanded, an object."""
    customer = obj.get("customer")
    if isinstance(customer, dict):
        return customer.get("id")
    return customer or None


def _subscription_price_id(subscription: dict[str, Any]) -> str | None:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    price = items[0].get("price") or {}
    return price.get("id")


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

Handler = Callable[[AsyncSession, str, dict[str, Any]], Awaitable[None]]


async def _on_checkout_completed(
    db: AsyncSession, event_id: str, session_obj: dict[str, Any],
) -> None:
    """Bind the customer, set the tier, and grant the first cycle's credits."""
    metadata = session_obj.get("metadata") or {}
    user_id = metadata.get("userId")
    raw_tier = metadata.get("targetTier")

    if not user_id or not raw_tier:
        raise MalformedWebhookPayload("Checkout session missing userId or targetTier metadata")
    tier = parse_paid_tier(raw_tier)
    if tier is None:
        raise MalformedWebhookPayload(f"Checkout session has unknown targetTier {raw_tier!r}")

    customer_id = _customer_id(session_obj)
    allocation = allocation_for(tier)

    await ledger_store.set_tier_and_allocation(
        db, user_id, tier, allocation, customer_id=customer_id,
    )
    audit.log_tier_change(user_id, tier.value, allocation, source_event_id=event_id)
    await ledger_store.grant_credits(db, user_id, allocation, reference_id=event_id)

    log.info(
        "checkout_fulfilled",
        user_id=user_id, tier=tier.value, customer_id=customer_id, event_id=event_id,
    )


async def _on_subscription_deleted(
    db: AsyncSession, event_id: str, subscription: dict[str, Any],
) -> None:
    """Downgrade the owning account to free; its balance is preserved."""
    customer_id = _customer_id(subscription)
    account = await ledger_store.find_by_customer_id(db, customer_id) if customer_id else None
    if account is None:
        log.info("subscription_deleted_no_account", customer_id=customer_id, event_id=event_id)
        return

    await ledger_store.downgrade_to_free(db, account.user_id)
    audit.log_tier_change(account.user_id, Tier.FREE.value, 0, source_event_id=event_id)


async def _on_subscription_updated(
    db: AsyncSession, event_id: str, subscription: dict[str, Any],
) -> None:
    """Metadata sync only.  Never grants credits.

    A plan switch between paid tiers made through the provider's portal is
    mirrored onto the account.  An account still on free is left alone: its
    upgrade is owned by the checkout event, which may simply not have been
    delivered yet.
    """
    customer_id = _customer_id(subscription)
    if subscription.get("cancel_at_period_end"):
        log.info(
            "subscription_cancel_scheduled",
            customer_id=customer_id,
            current_period_end=subscription.get("current_period_end"),
        )

    account = await ledger_store.find_by_customer_id(db, customer_id) if customer_id else None
    if account is None:
        log.info("subscription_updated_no_account", customer_id=customer_id, event_id=event_id)
        return

    new_tier = tier_for_price(_subscription_price_id(subscription))
    if new_tier is None or account.subscription_tier not in PAID_TIERS:
        return
    if new_tier == account.subscription_tier:
        return

    allocation = allocation_for(new_tier)
    await ledger_store.set_tier_and_allocation(db, account.user_id, new_tier, allocation)
    audit.log_tier_change(account.user_id, new_tier.value, allocation, source_event_id=event_id)


async def _on_invoice_paid(
    db: AsyncSession, event_id: str, invoice: dict[str, Any],
) -> None:
    """Grant the current allocation on each renewal invoice.

    The first cycle is granted by checkout completion, so only
    ``subscription_cycle`` invoices credit the account.
    """
    if invoice.get("billing_reason") != "subscription_cycle":
        return

    customer_id = _customer_id(invoice)
    account = await ledger_store.find_by_customer_id(db, customer_id) if customer_id else None
    if account is None:
        log.info("invoice_paid_no_account", customer_id=customer_id, event_id=event_id)
        return
    if account.monthly_allocation <= 0:
        return

    await ledger_store.grant_credits(
        db, account.user_id, account.monthly_allocation, reference_id=event_id,
    )


_HANDLERS: dict[EventType, Handler] = {
    EventType.CHECKOUT_COMPLETED: _on_checkout_completed,
    EventType.SUBSCRIPTION_UPDATED: _on_subscription_updated,
    EventType.SUBSCRIPTION_DELETED: _on_subscription_deleted,
    EventType.INVOICE_PAID: _on_invoice_paid,
}

_missing = set(EventType) - set(_HANDLERS)
if _missing:
    raise RuntimeError(f"No reconciler handler for: {sorted(m.value for m in _missing)}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

class SubscriptionReconciler:
    """Applies one verified webhook event to the ledger, at most once.

    The caller owns the transaction.  On MalformedWebhookPayload the event
    record has already been written and should be committed so a permanently
    malformed event is not reprocessed; on any other exception the caller
    rolls back so the provider's retry is processed afresh.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def handle(self, event: dict[str, Any]) -> ReconcileResult:
        event_id: str = event["id"]
        event_type = parse_event_type(event["type"])
        obj = _event_object(event)

        if not await record_if_new(self._db, event_id, event_type.value, event):
            audit.log_webhook_event(event_id, event_type.value, "skipped_duplicate")
            return ReconcileResult(event_id, event_type, ReconcileStatus.SKIPPED)

        try:
            await _HANDLERS[event_type](self._db, event_id, obj)
        except MalformedWebhookPayload as exc:
            audit.log_webhook_event(event_id, event_type.value, "rejected_malformed", str(exc))
            raise

        audit.log_webhook_event(event_id, event_type.value, "processed")
        return ReconcileResult(event_id, event_type, ReconcileStatus.PROCESSED)
