"""Stripe webhook endpoint."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from imagestudio.database import get_db
from imagestudio.services.errors import (
    AccountNotFound,
    MalformedWebhookPayload,
    SignatureVerificationFailure,
    UnhandledEventType,
)
from imagestudio.services.reconciler import SubscriptionReconciler, verify_event

log = structlog.get_logger()

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Receive and reconcile one Stripe webhook delivery.

    2xx tells the provider the event is done (processed or a duplicate).
    Any 5xx rolls the transaction back so the provider's retry is handled
    from scratch.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        raise HTTPException(status_code=400, detail="Missing Stripe-Signature header")

    try:
        event = verify_event(payload, sig_header)
    except SignatureVerificationFailure as exc:
        log.warning("webhook_signature_invalid", error=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")
    except MalformedWebhookPayload as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    try:
        result = await SubscriptionReconciler(db).handle(event)
    except UnhandledEventType as exc:
        log.warning("webhook_unhandled_type", event_id=event["id"], event_type=exc.event_type)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unhandled event type: {exc.event_type}",
        )
    except MalformedWebhookPayload as exc:
        # Keep the event record so a permanently bad event is not retried forever.
        await db.commit()
        raise HTTPException(status_code=400, detail=str(exc))
    except AccountNotFound as exc:
        log.error("webhook_account_missing", event_id=event["id"], user_id=exc.user_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Account not found",
        )

    await db.commit()
    return {"status": result.status.value, "event_id": result.event_id}
