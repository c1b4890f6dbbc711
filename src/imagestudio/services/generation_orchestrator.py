"""Generation orchestrator -- sequences a costed image request.

Per request:

1. Resolve dimensions and the credit cost of the requested resolution.
2. ``try_decrement`` the cost and insert a ``generating`` gallery row in the
   same short transaction, then commit before any network call.
3. Insufficient balance -> ``upgrade_required``; the image API is not called.
4. Call the image API.  Success stores the file and marks the row
   ``completed``; any failure marks it ``failed``.  The credit stays spent
   either way -- there is no refund path.

Variations are independent requests, each with its own session and its own
decrement; one failing does not affect the others.  Every outcome reports
the balance as read back from the ledger afterwards.
"""

from __future__ import annotations

import asyncio
import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Protocol

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from imagestudio.config import settings
from imagestudio.integrations.image_client import GeneratedImage
from imagestudio.models import GenerationRecord
from imagestudio.services import ledger_store
from imagestudio.services.balance_guard import DecrementOutcome, try_decrement
from imagestudio.services.catalog import Resolution, resolution_cost, resolve_dimensions
from imagestudio.services.errors import AccountNotFound

log = structlog.get_logger()

generations = GenerationRecord.__table__


# ---------------------------------------------------------------------------
# Protocol for the image API client
# ---------------------------------------------------------------------------

class ImageGeneratorProtocol(Protocol):
    """Structural interface for the image-generation integration."""

    async def generate(
        self,
        prompt: str,
        width: int,
        height: int,
        resolution: str,
        reference_images: list[str] | None = None,
    ) -> GeneratedImage: ...


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass
class GenerationContext:
    """Everything one user's generation work needs, passed explicitly."""

    user_id: str
    session_factory: async_sessionmaker[AsyncSession]
    generator: ImageGeneratorProtocol
    storage_dir: Path = field(default_factory=lambda: Path(settings.IMAGE_STORAGE_DIR))


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    resolution: Resolution = Resolution.MEDIUM
    generation_type: str = "hero"
    width: int | None = None
    height: int | None = None
    reference_images: tuple[str, ...] = ()


class GenerationStatus(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    UPGRADE_REQUIRED = "upgrade_required"


@dataclass(frozen=True)
class GenerationOutcome:
    status: GenerationStatus
    cost: Decimal
    balance: Decimal | None
    generation_id: uuid.UUID | None = None
    image_path: str | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Gallery DB helpers
# ---------------------------------------------------------------------------

class GenerationRepository:
    """Encapsulates database operations for gallery generation rows."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def insert_generating(
        self,
        generation_id: uuid.UUID,
        user_id: str,
        request: GenerationRequest,
        dimensions: tuple[int, int],
        cost: Decimal,
    ) -> None:
        await self._db.execute(
            generations.insert().values(
                generation_id=generation_id,
                user_id=user_id,
                prompt=request.prompt,
                generation_type=request.generation_type,
                width=dimensions[0],
                height=dimensions[1],
                resolution=Resolution(request.resolution).value,
                credit_cost=cost,
                status="generating",
                created_at=datetime.now(timezone.utc),
            )
        )

    async def mark_completed(self, generation_id: uuid.UUID, image_path: str) -> None:
        await self._db.execute(
            update(generations)
            .where(generations.c.generation_id == generation_id)
            .values(
                status="completed",
                image_path=image_path,
                completed_at=datetime.now(timezone.utc),
            )
        )

    async def mark_failed(self, generation_id: uuid.UUID, error_message: str) -> None:
        await self._db.execute(
            update(generations)
            .where(generations.c.generation_id == generation_id)
            .values(
                status="failed",
                error_message=error_message[:2000],
                completed_at=datetime.now(timezone.utc),
            )
        )

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """Newest-first gallery rows for *user_id*."""
        result = await self._db.execute(
            select(generations)
            .where(generations.c.user_id == user_id)
            .order_by(generations.c.created_at.desc())
            .limit(limit)
        )
        return [dict(row._mapping) for row in result.fetchall()]


async def _current_balance(db: AsyncSession, user_id: str) -> Decimal | None:
    account = await ledger_store.get_user(db, user_id)
    return account.image_balance if account is not None else None


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class GenerationOrchestrator:
    """Runs costed generation requests for the user in *ctx*."""

    def __init__(self, ctx: GenerationContext) -> None:
        self._ctx = ctx

    async def generate(self, request: GenerationRequest) -> GenerationOutcome:
        """Charge for and run one generation request.

        Raises ValueError for an unknown resolution or bad dimensions (before
        anything is charged) and AccountNotFound if the account is missing.
        """
        cost = resolution_cost(request.resolution)
        dimensions = resolve_dimensions(request.generation_type, request.width, request.height)
        generation_id = uuid.uuid4()
        user_id = self._ctx.user_id

        async with self._ctx.session_factory() as db:
            decrement = await try_decrement(db, user_id, cost, reference_id=str(generation_id))
            if decrement.outcome is DecrementOutcome.NOT_FOUND:
                raise AccountNotFound(user_id)
            if decrement.outcome is DecrementOutcome.INSUFFICIENT_BALANCE:
                balance = await _current_balance(db, user_id)
                log.info("generation_upgrade_required", user_id=user_id, cost=str(cost))
                return GenerationOutcome(GenerationStatus.UPGRADE_REQUIRED, cost, balance)

            await GenerationRepository(db).insert_generating(
                generation_id, user_id, request, dimensions, cost,
            )
            await db.commit()

        try:
            image = await self._ctx.generator.generate(
                prompt=request.prompt,
                width=dimensions[0],
                height=dimensions[1],
                resolution=Resolution(request.resolution).value,
                reference_images=list(request.reference_images) or None,
            )
            image_path = self._store(generation_id, image)
        except Exception as exc:
            log.warning(
                "generation_failed",
                user_id=user_id, generation_id=str(generation_id), error=str(exc),
            )
            return await self._finish_failed(generation_id, cost, str(exc) or type(exc).__name__)

        async with self._ctx.session_factory() as db:
            await GenerationRepository(db).mark_completed(generation_id, image_path)
            await db.commit()
            balance = await _current_balance(db, user_id)

        log.info("generation_completed", user_id=user_id, generation_id=str(generation_id))
        return GenerationOutcome(
            GenerationStatus.COMPLETED, cost, balance,
            generation_id=generation_id, image_path=image_path,
        )

    async def generate_variations(
        self, request: GenerationRequest, count: int,
    ) -> list[GenerationOutcome]:
        """Run *count* independent requests concurrently.

        A storage error in one variation is reported as a FAILED outcome for
        that variation; its siblings' outcomes are still returned.  Request
        errors (bad resolution or dimensions, missing account) are raised.
        """
        if count < 1:
            raise ValueError("count must be at least 1")
        cost = resolution_cost(request.resolution)
        results = await asyncio.gather(
            *(self.generate(request) for _ in range(count)),
            return_exceptions=True,
        )

        outcomes: list[GenerationOutcome] = []
        for result in results:
            if isinstance(result, (AccountNotFound, ValueError)):
                raise result
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                error = str(result) or type(result).__name__
                log.error(
                    "generation_variation_errored",
                    user_id=self._ctx.user_id, error=error, error_type=type(result).__name__,
                )
                outcomes.append(GenerationOutcome(GenerationStatus.FAILED, cost, None, error=error))
            else:
                outcomes.append(result)
        return outcomes

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _store(self, generation_id: uuid.UUID, image: GeneratedImage) -> str:
        self._ctx.storage_dir.mkdir(parents=True, exist_ok=True)
        path = self._ctx.storage_dir / f"{generation_id}.{image.extension}"
        path.write_bytes(image.data)
        return str(path)

    async def _finish_failed(
        self, generation_id: uuid.UUID, cost: Decimal, error: str,
    ) -> GenerationOutcome:
        """Mark the row failed.  The decrement stays in place."""
        async with self._ctx.session_factory() as db:
            await GenerationRepository(db).mark_failed(generation_id, error)
            await db.commit()
            balance = await _current_balance(db, self._ctx.user_id)
        return GenerationOutcome(
            GenerationStatus.FAILED, cost, balance,
            generation_id=generation_id, error=error,
        )
