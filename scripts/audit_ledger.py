#!/usr/bin/env python3
"""Nightly ledger consistency audit.

Reports accounts whose stored state contradicts the subscription catalog:

    - ``monthly_allocation`` that does not match ``subscription_tier``
    - paid accounts with no bound payment customer
    - negative balances (only possible if the CHECK constraint was dropped)

Usage:
    DATABASE_URL=postgresql://... python scripts/audit_ledger.py

Exit codes:
    0 -- no findings
    1 -- one or more findings
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from datetime import datetime, timezone

import asyncpg  # type: ignore[import-untyped]

DEFAULT_DATABASE_URL = "postgresql://app:devpassword@db:5432/imagestudio"

# Mirrors imagestudio.services.catalog.TIER_ALLOCATIONS; kept local so the
# script runs without the application settings.
TIER_ALLOCATIONS = {"free": 0, "basic": 100, "pro": 500}


def _get_dsn() -> str:
    """Return a raw ``postgresql://`` DSN (strip any SQLAlchemy dialect prefix)."""
    url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)
    for prefix in ("postgresql+asyncpg://", "postgresql+psycopg2://"):
        if url.startswith(prefix):
            url = "postgresql://" + url[len(prefix):]
    return url


async def _allocation_mismatches(conn: asyncpg.Connection) -> list[dict]:
    rows = await conn.fetch(
        "SELECT user_id, subscription_tier, monthly_allocation FROM user_accounts ORDER BY user_id"
    )
    findings = []
    for row in rows:
        expected = TIER_ALLOCATIONS.get(row["subscription_tier"])
        if expected != row["monthly_allocation"]:
            findings.append(
                {
                    "check": "allocation_mismatch",
                    "user_id": row["user_id"],
                    "tier": row["subscription_tier"],
                    "monthly_allocation": row["monthly_allocation"],
                    "expected_allocation": expected,
                }
            )
    return findings


async def _paid_without_customer(conn: asyncpg.Connection) -> list[dict]:
    rows = await conn.fetch(
        """
        SELECT user_id, subscription_tier
        FROM user_accounts
        WHERE subscription_tier <> 'free' AND payment_customer_id IS NULL
        ORDER BY user_id
        """
    )
    return [
        {"check": "paid_without_customer", "user_id": r["user_id"], "tier": r["subscription_tier"]}
        for r in rows
    ]


async def _negative_balances(conn: asyncpg.Connection) -> list[dict]:
    rows = await conn.fetch(
        "SELECT user_id, image_balance FROM user_accounts WHERE image_balance < 0 ORDER BY user_id"
    )
    return [
        {"check": "negative_balance", "user_id": r["user_id"], "image_balance": str(r["image_balance"])}
        for r in rows
    ]


async def audit(dsn: str) -> list[dict]:
    """Run every check and return the combined findings."""
    conn: asyncpg.Connection = await asyncpg.connect(dsn)
    try:
        findings: list[dict] = []
        findings.extend(await _allocation_mismatches(conn))
        findings.extend(await _paid_without_customer(conn))
        findings.extend(await _negative_balances(conn))
        return findings
    finally:
        await conn.close()


async def main() -> int:
    findings = await audit(_get_dsn())

    report = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "total_findings": len(findings),
        "findings": findings,
    }

    json.dump(report, sys.stdout, indent=2)
    sys.stdout.write("\n")

    return 1 if findings else 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
