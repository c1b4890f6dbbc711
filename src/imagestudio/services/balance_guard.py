"""Balance guard -- the only path by which an image balance goes down.

The check and the write are one conditional UPDATE at the storage layer::

    UPDATE user_accounts
       SET image_balance = image_balance - :amount, ...
     WHERE user_id = :user_id AND image_balance >= :amount
    RETURNING image_balance

so two concurrent requests for the same account can never both pass a
balance that only covers one of them.  There is no refund
counterpart: a decrement stands even if the work it paid for fails.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from imagestudio.models import UserAccount
from imagestudio.services.audit_logger import AuditLogger

audit = AuditLogger()

accounts = UserAccount.__table__


class DecrementOutcome(str, enum.Enum):
    SUCCESS = "success"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class DecrementResult:
    outcome: DecrementOutcome
    new_balance: Decimal | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is DecrementOutcome.SUCCESS


async def try_decrement(
    db: AsyncSession,
    user_id: str,
    amount: Decimal | int | str,
    reference_id: str | None = None,
) -> DecrementResult:
    """Atomically take *amount* credits from *user_id*.

    Returns a DecrementResult instead of raising, because callers must branch
    on the outcome.  On anything but SUCCESS nothing was written.  The
    lifetime ``images_generated`` counter moves in the same statement.
    """
    amount = Decimal(amount)
    if amount <= 0:
        raise ValueError("Decrement amount must be positive")

    result = await db.execute(
        update(accounts)
        .where(
            accounts.c.user_id == user_id,
            accounts.c.image_balance >= amount,
        )
        .values(
            image_balance=accounts.c.image_balance - amount,
            images_generated=accounts.c.images_generated + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .returning(accounts.c.image_balance)
    )
    row = result.fetchone()

    if row is not None:
        new_balance = Decimal(row[0])
        audit.log_credit_event(
            user_id, -amount, "spend",
            balance_after=new_balance, reference_id=reference_id,
        )
        return DecrementResult(DecrementOutcome.SUCCESS, new_balance)

    # Read-only probe to tell "no such account" from "not enough credits".
    exists = await db.execute(
        select(accounts.c.user_id).where(accounts.c.user_id == user_id)
    )
    if exists.fetchone() is None:
        return DecrementResult(DecrementOutcome.NOT_FOUND)
    return DecrementResult(DecrementOutcome.INSUFFICIENT_BALANCE)
