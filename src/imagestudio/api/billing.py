"""Billing API endpoints: hosted checkout and self-service portal sessions."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from imagestudio.api.dependencies import get_current_identity
from imagestudio.database import get_db
from imagestudio.services.catalog import parse_paid_tier, price_for_tier
from imagestudio.services.checkout_broker import CheckoutSessionBroker
from imagestudio.services.errors import NoCustomer, UpstreamProviderError
from imagestudio.services.identity import Identity
from imagestudio.services.ledger_store import provision_user

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    tier: str


class CheckoutResponse(BaseModel):
    checkout_url: str


class PortalRequest(BaseModel):
    return_url: str | None = None


class PortalResponse(BaseModel):
    portal_url: str


def get_checkout_broker() -> CheckoutSessionBroker:
    return CheckoutSessionBroker()


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    broker: CheckoutSessionBroker = Depends(get_checkout_broker),
):
    """Start a hosted subscription checkout for a paid tier."""
    tier = parse_paid_tier(body.tier)
    if tier is None:
        raise HTTPException(status_code=400, detail=f"Unknown paid tier: {body.tier}")

    price_ref = price_for_tier(tier)
    if not price_ref:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"No price configured for tier {tier.value}",
        )

    # The webhook that completes this checkout needs an account to update.
    await provision_user(
        db, identity.user_id, email=identity.email, display_name=identity.display_name,
    )

    try:
        url = await broker.create_checkout_session(
            price_ref, identity.user_id, identity.email, tier,
        )
    except UpstreamProviderError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))

    return CheckoutResponse(checkout_url=url)


@router.post("/portal", response_model=PortalResponse)
async def create_portal(
    body: PortalRequest | None = None,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    broker: CheckoutSessionBroker = Depends(get_checkout_broker),
):
    """Open the provider's billing portal for the caller's customer."""
    account = await provision_user(
        db, identity.user_id, email=identity.email, display_name=identity.display_name,
    )
    return_url = body.return_url if body is not None else None

    try:
        url = await broker.create_portal_session(account.payment_customer_id, return_url)
    except NoCustomer:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="No billing account yet. Subscribe to a plan first.",
        )
    except UpstreamProviderError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))

    return PortalResponse(portal_url=url)
