"""Ledger store -- durable read/write access to user account records.

The ``user_accounts`` row is the single source of truth for a user's tier,
allocation, balance, and payment-customer binding.  Decrements are *not*
done here; they belong to :mod:`imagestudio.services.balance_guard`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import DateTime, Numeric, bindparam, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from imagestudio.models import UserAccount
from imagestudio.services.audit_logger import AuditLogger
from imagestudio.services.catalog import INITIAL_BALANCE, Tier, allocation_for
from imagestudio.services.errors import AccountAlreadyExists, AccountNotFound

log = structlog.get_logger()
audit = AuditLogger()

accounts = UserAccount.__table__


@dataclass(frozen=True)
class Account:
    """Read-only snapshot of a ledger row."""

    user_id: str
    email: str | None
    display_name: str | None
    subscription_tier: Tier
    image_balance: Decimal
    monthly_allocation: int
    bonus_images: Decimal
    images_generated: int
    payment_customer_id: str | None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> Account:
        m = row._mapping
        return cls(
            user_id=m["user_id"],
            email=m["email"],
            display_name=m["display_name"],
            subscription_tier=Tier(m["subscription_tier"]),
            image_balance=Decimal(m["image_balance"]),
            monthly_allocation=m["monthly_allocation"],
            bonus_images=Decimal(m["bonus_images"]),
            images_generated=m["images_generated"],
            payment_customer_id=m["payment_customer_id"],
            created_at=m["created_at"],
            updated_at=m["updated_at"],
        )


_INSERT_ACCOUNT = text(
    "INSERT INTO user_accounts "
    "(user_id, email, display_name, subscription_tier, image_balance, "
    "monthly_allocation, bonus_images, images_generated, created_at, updated_at) "
    "VALUES (:user_id, :email, :display_name, :tier, :balance, "
    ":allocation, 0, 0, :now, :now) "
    "ON CONFLICT (user_id) DO NOTHING "
    "RETURNING user_id"
).bindparams(
    bindparam("balance", type_=Numeric(12, 2)),
    bindparam("now", type_=DateTime(timezone=True)),
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_user(db: AsyncSession, user_id: str) -> Account | None:
    """Return the account for *user_id*, or None when it does not exist."""
    result = await db.execute(select(accounts).where(accounts.c.user_id == user_id))
    row = result.fetchone()
    return Account.from_row(row) if row is not None else None


async def find_by_customer_id(db: AsyncSession, customer_id: str) -> Account | None:
    """Reverse lookup from a payment-provider customer id."""
    if not customer_id:
        return None
    result = await db.execute(
        select(accounts).where(accounts.c.payment_customer_id == customer_id)
    )
    row = result.fetchone()
    return Account.from_row(row) if row is not None else None


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

async def create_user(
    db: AsyncSession,
    user_id: str,
    email: str | None = None,
    display_name: str | None = None,
    initial_tier: Tier = Tier.FREE,
    initial_balance: Decimal = INITIAL_BALANCE,
) -> Account:
    """Insert a new account row.

    Raises AccountAlreadyExists if *user_id* is already present.  The insert
    is ``ON CONFLICT DO NOTHING`` so concurrent callers never see a raw
    unique-violation error.
    """
    result = await db.execute(
        _INSERT_ACCOUNT,
        {
            "user_id": user_id,
            "email": email,
            "display_name": display_name,
            "tier": initial_tier.value,
            "balance": Decimal(initial_balance),
            "allocation": allocation_for(initial_tier),
            "now": _now(),
        },
    )
    if result.fetchone() is None:
        raise AccountAlreadyExists(user_id)

    log.info("account_created", user_id=user_id, tier=initial_tier.value)
    account = await get_user(db, user_id)
    if account is None:
        raise AccountNotFound(user_id)
    return account


async def provision_user(
    db: AsyncSession,
    user_id: str,
    email: str | None = None,
    display_name: str | None = None,
) -> Account:
    """Sign-in path: create the account on first sight, otherwise refetch it.

    Safe to call repeatedly and concurrently for the same identity.  A changed
    display name reported by the identity provider is written back.
    """
    try:
        return await create_user(db, user_id, email=email, display_name=display_name)
    except AccountAlreadyExists:
        pass

    account = await get_user(db, user_id)
    if account is None:
        raise AccountNotFound(user_id)

    if display_name and display_name != account.display_name:
        await db.execute(
            update(accounts)
            .where(accounts.c.user_id == user_id)
            .values(display_name=display_name, updated_at=_now())
        )
        account = await get_user(db, user_id)
        if account is None:
            raise AccountNotFound(user_id)
    return account


# ---------------------------------------------------------------------------
# Subscription mutations (Reconciler path)
# ---------------------------------------------------------------------------

async def set_tier_and_allocation(
    db: AsyncSession,
    user_id: str,
    tier: Tier,
    allocation: int,
    customer_id: str | None = None,
) -> None:
    """Overwrite tier and allocation; never touches the balance.

    *customer_id* is bound only while the account has none -- the binding is
    permanent once set.
    """
    values: dict[str, Any] = {
        "subscription_tier": tier.value,
        "monthly_allocation": allocation,
        "updated_at": _now(),
    }
    result = await db.execute(
        update(accounts)
        .where(accounts.c.user_id == user_id)
        .values(**values)
        .returning(accounts.c.user_id)
    )
    if result.fetchone() is None:
        raise AccountNotFound(user_id)

    if customer_id:
        await db.execute(
            update(accounts)
            .where(
                accounts.c.user_id == user_id,
                accounts.c.payment_customer_id.is_(None),
            )
            .values(payment_customer_id=customer_id)
        )


async def downgrade_to_free(db: AsyncSession, user_id: str) -> None:
    """Drop to the free tier.  Balance and bonus credits are kept."""
    result = await db.execute(
        update(accounts)
        .where(accounts.c.user_id == user_id)
        .values(
            subscription_tier=Tier.FREE.value,
            monthly_allocation=0,
            updated_at=_now(),
        )
        .returning(accounts.c.user_id)
    )
    if result.fetchone() is None:
        raise AccountNotFound(user_id)


async def grant_credits(
    db: AsyncSession,
    user_id: str,
    amount: Decimal | int,
    reference_id: str | None = None,
) -> Decimal:
    """Add *amount* to the balance (allocation grants).  Returns the new balance."""
    amount = Decimal(amount)
    if amount <= 0:
        raise ValueError("Grant amount must be positive")

    result = await db.execute(
        update(accounts)
        .where(accounts.c.user_id == user_id)
        .values(
            image_balance=accounts.c.image_balance + amount,
            updated_at=_now(),
        )
        .returning(accounts.c.image_balance)
    )
    row = result.fetchone()
    if row is None:
        raise AccountNotFound(user_id)

    new_balance = Decimal(row[0])
    audit.log_credit_event(
        user_id, amount, "allocation_grant",
        balance_after=new_balance, reference_id=reference_id,
    )
    return new_balance


async def grant_bonus(
    db: AsyncSession,
    user_id: str,
    amount: Decimal | int,
    reference_id: str | None = None,
) -> Decimal:
    """Promotional/manual grant: counts toward both bonus_images and the balance."""
    amount = Decimal(amount)
    if amount <= 0:
        raise ValueError("Grant amount must be positive")

    result = await db.execute(
        update(accounts)
        .where(accounts.c.user_id == user_id)
        .values(
            image_balance=accounts.c.image_balance + amount,
            bonus_images=accounts.c.bonus_images + amount,
            updated_at=_now(),
        )
        .returning(accounts.c.image_balance)
    )
    row = result.fetchone()
    if row is None:
        raise AccountNotFound(user_id)

    new_balance = Decimal(row[0])
    audit.log_credit_event(
        user_id, amount, "bonus_grant",
        balance_after=new_balance, reference_id=reference_id,
    )
    return new_balance
