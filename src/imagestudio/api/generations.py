"""Generation API endpoints.

Provides endpoints for running costed image generations and listing the
caller's gallery.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from imagestudio.api.dependencies import get_current_identity
from imagestudio.database import get_db, get_session_factory
from imagestudio.integrations.image_client import ImageClient
from imagestudio.services.catalog import Resolution
from imagestudio.services.errors import AccountNotFound
from imagestudio.services.generation_orchestrator import (
    GenerationContext,
    GenerationOrchestrator,
    GenerationOutcome,
    GenerationRepository,
    GenerationRequest,
    GenerationStatus,
    ImageGeneratorProtocol,
)
from imagestudio.services.identity import Identity

router = APIRouter(prefix="/api/v1/generations", tags=["generations"])


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------

class CreateGenerationRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=4000)
    resolution: Resolution = Resolution.MEDIUM
    generation_type: str = Field("hero", min_length=1, max_length=40)
    width: int | None = Field(None, gt=0, le=8192)
    height: int | None = Field(None, gt=0, le=8192)
    variations: int = Field(1, ge=1, le=4)
    reference_images: list[str] = Field(default_factory=list, max_length=4)


class VariationResult(BaseModel):
    status: str
    cost: float
    generation_id: str | None = None
    image_path: str | None = None
    error: str | None = None


class CreateGenerationResponse(BaseModel):
    results: list[VariationResult]
    image_balance: float | None


class GalleryItem(BaseModel):
    generation_id: str
    prompt: str
    generation_type: str
    width: int
    height: int
    resolution: str
    credit_cost: float
    status: str
    image_path: str | None = None
    created_at: datetime | None = None


def get_image_generator() -> ImageGeneratorProtocol:
    return ImageClient()


def _latest_balance(outcomes: list[GenerationOutcome]) -> float | None:
    """Lowest reported balance is the most recent authoritative read."""
    balances = [o.balance for o in outcomes if o.balance is not None]
    return float(min(balances)) if balances else None


# ---------------------------------------------------------------------------
# POST /api/v1/generations
# ---------------------------------------------------------------------------

@router.post("", status_code=status.HTTP_201_CREATED, response_model=CreateGenerationResponse)
async def create_generation(
    body: CreateGenerationRequest,
    identity: Identity = Depends(get_current_identity),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    generator: ImageGeneratorProtocol = Depends(get_image_generator),
):
    """Charge and run one or more independent variations.

    Responds 402 when not a single variation could be paid for.
    """
    ctx = GenerationContext(
        user_id=identity.user_id,
        session_factory=session_factory,
        generator=generator,
    )
    request = GenerationRequest(
        prompt=body.prompt,
        resolution=body.resolution,
        generation_type=body.generation_type,
        width=body.width,
        height=body.height,
        reference_images=tuple(body.reference_images),
    )

    try:
        outcomes = await GenerationOrchestrator(ctx).generate_variations(request, body.variations)
    except AccountNotFound:
        raise HTTPException(status_code=404, detail="Account not provisioned")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    if all(o.status is GenerationStatus.UPGRADE_REQUIRED for o in outcomes):
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": "Insufficient credits",
                "upgrade_required": True,
                "image_balance": _latest_balance(outcomes),
            },
        )

    return CreateGenerationResponse(
        results=[
            VariationResult(
                status=o.status.value,
                cost=float(o.cost),
                generation_id=str(o.generation_id) if o.generation_id else None,
                image_path=o.image_path,
                error=o.error,
            )
            for o in outcomes
        ],
        image_balance=_latest_balance(outcomes),
    )


# ---------------------------------------------------------------------------
# GET /api/v1/generations
# ---------------------------------------------------------------------------

@router.get("", response_model=list[GalleryItem])
async def list_generations(
    limit: int = 50,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    """Return the caller's gallery, newest first."""
    rows = await GenerationRepository(db).list_for_user(identity.user_id, limit=min(limit, 200))
    return [
        GalleryItem(
            generation_id=str(row["generation_id"]),
            prompt=row["prompt"],
            generation_type=row["generation_type"],
            width=row["width"],
            height=row["height"],
            resolution=row["resolution"],
            credit_cost=float(Decimal(row["credit_cost"])),
            status=row["status"],
            image_path=row["image_path"],
            created_at=row["created_at"],
        )
        for row in rows
    ]
