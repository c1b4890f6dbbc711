#!/usr/bin/env python3
"""Monitoring / healthcheck script for SharePoint Image Studio.

Checks the availability of:
    - the API (/health)
    - PostgreSQL
    - Redis

Outputs a JSON array of ``{service, status, latency_ms}`` objects.

Exit codes:
    0 -- all services healthy
    1 -- one or more services unhealthy
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
import time
from typing import Any, Awaitable, Callable

import asyncpg  # type: ignore[import-untyped]
import httpx
from redis.asyncio import Redis

APP_URL = os.environ.get("APP_URL", "http://localhost:8000")
DATABASE_URL = os.environ.get(
    "DATABASE_URL", "postgresql://app:devpassword@db:5432/imagestudio"
)
REDIS_URL = os.environ.get("REDIS_URL", "redis://redis:6379/0")

CHECK_TIMEOUT = float(os.environ.get("HEALTHCHECK_TIMEOUT", "5"))


def _pg_dsn(url: str) -> str:
    for prefix in ("postgresql+asyncpg://", "postgresql+psycopg2://"):
        if url.startswith(prefix):
            url = "postgresql://" + url[len(prefix):]
    return url


async def _timed(service: str, probe: Callable[[], Awaitable[bool]]) -> dict[str, Any]:
    """Run *probe* and report its status and latency."""
    start = time.monotonic()
    try:
        healthy = await asyncio.wait_for(probe(), timeout=CHECK_TIMEOUT)
    except Exception as exc:
        return {
            "service": service,
            "status": "unhealthy",
            "latency_ms": round((time.monotonic() - start) * 1000, 2),
            "error": str(exc),
        }
    return {
        "service": service,
        "status": "healthy" if healthy else "unhealthy",
        "latency_ms": round((time.monotonic() - start) * 1000, 2),
    }


async def check_app(client: httpx.AsyncClient) -> dict[str, Any]:
    async def probe() -> bool:
        resp = await client.get(f"{APP_URL}/health")
        return resp.status_code == 200

    return await _timed("app", probe)


async def check_postgres() -> dict[str, Any]:
    async def probe() -> bool:
        conn = await asyncpg.connect(_pg_dsn(DATABASE_URL))
        try:
            return await conn.fetchval("SELECT 1") == 1
        finally:
            await conn.close()

    return await _timed("postgres", probe)


async def check_redis() -> dict[str, Any]:
    async def probe() -> bool:
        redis = Redis.from_url(REDIS_URL, decode_responses=True)
        try:
            return bool(await redis.ping())
        finally:
            await redis.aclose()

    return await _timed("redis", probe)


async def run_checks() -> list[dict[str, Any]]:
    async with httpx.AsyncClient() as client:
        results = await asyncio.gather(check_app(client), check_postgres(), check_redis())
    return list(results)


async def main() -> int:
    results = await run_checks()

    json.dump(results, sys.stdout, indent=2)
    sys.stdout.write("\n")

    return 0 if all(r["status"] == "healthy" for r in results) else 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
