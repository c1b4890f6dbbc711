"""Account (ledger view) API endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from imagestudio.api.dependencies import get_current_identity
from imagestudio.database import get_db
from imagestudio.services.identity import Identity
from imagestudio.services.ledger_store import Account, provision_user

router = APIRouter(prefix="/api/v1/account", tags=["account"])


class AccountResponse(BaseModel):
    user_id: str
    email: str | None
    display_name: str | None
    subscription_tier: str
    image_balance: float
    monthly_allocation: int
    bonus_images: float
    images_generated: int
    has_billing_account: bool

    @classmethod
    def from_account(cls, account: Account) -> AccountResponse:
        return cls(
            user_id=account.user_id,
            email=account.email,
            display_name=account.display_name,
            subscription_tier=account.subscription_tier.value,
            image_balance=float(account.image_balance),
            monthly_allocation=account.monthly_allocation,
            bonus_images=float(account.bonus_images),
            images_generated=account.images_generated,
            has_billing_account=account.payment_customer_id is not None,
        )


@router.get("", response_model=AccountResponse)
async def read_account(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    """Return the caller's ledger record, creating it on first sign-in."""
    account = await provision_user(
        db, identity.user_id, email=identity.email, display_name=identity.display_name,
    )
    return AccountResponse.from_account(account)
