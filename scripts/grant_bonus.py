#!/usr/bin/env python3
"""Operator tool: grant promotional bonus credits to one account.

The grant raises both ``image_balance`` and ``bonus_images`` and is written
to the audit log as a ``bonus_grant`` credit event.

Usage:
    DATABASE_URL=postgresql+asyncpg://... python scripts/grant_bonus.py USER_ID AMOUNT [--reference REF]

Exit codes:
    0 -- credits granted
    1 -- no account for USER_ID
    2 -- invalid arguments
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from decimal import Decimal, InvalidOperation

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from imagestudio.database import async_session_factory, engine
from imagestudio.services import ledger_store
from imagestudio.services.errors import AccountNotFound


def _amount(raw: str) -> Decimal:
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {raw!r}") from None
    if not value.is_finite() or value <= 0:
        raise argparse.ArgumentTypeError("amount must be a positive number")
    return value


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Grant bonus image credits to an account.")
    parser.add_argument("user_id")
    parser.add_argument("amount", type=_amount)
    parser.add_argument("--reference", default=None, help="ticket or campaign id for the audit log")
    return parser.parse_args(argv)


async def grant(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: str,
    amount: Decimal,
    reference: str | None = None,
) -> Decimal:
    """Apply the grant in its own transaction and return the new balance."""
    async with session_factory() as db:
        new_balance = await ledger_store.grant_bonus(db, user_id, amount, reference_id=reference)
        await db.commit()
    return new_balance


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        new_balance = await grant(async_session_factory, args.user_id, args.amount, args.reference)
    except AccountNotFound:
        sys.stderr.write(f"No account for user {args.user_id!r}\n")
        return 1
    finally:
        await engine.dispose()

    json.dump(
        {
            "user_id": args.user_id,
            "granted": str(args.amount),
            "image_balance": str(new_balance),
            "reference": args.reference,
        },
        sys.stdout,
        indent=2,
    )
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
