"""User account ledger row and gallery generation records."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from imagestudio.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserAccount(Base):
    """Authoritative per-user balance and subscription record."""

    __tablename__ = "user_accounts"

    # Issued by the identity provider; trusted as-is.
    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    subscription_tier: Mapped[str] = mapped_column(
        String(10), default="free", nullable=False
    )
    image_balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("2"), nullable=False
    )
    monthly_allocation: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    bonus_images: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False
    )
    images_generated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payment_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("image_balance >= 0", name="ck_account_balance_non_negative"),
        CheckConstraint(
            "subscription_tier IN ('free', 'basic', 'pro')",
            name="ck_account_tier",
        ),
        CheckConstraint("monthly_allocation >= 0", name="ck_account_allocation"),
    )

    generations: Mapped[list[GenerationRecord]] = relationship(
        back_populates="account", lazy="selectin"
    )


class GenerationRecord(Base):
    """Gallery entry for one costed generation request."""

    __tablename__ = "generations"

    generation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("user_accounts.user_id"), nullable=False
    )
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    generation_type: Mapped[str] = mapped_column(String(40), nullable=False)
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    height: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution: Mapped[str] = mapped_column(String(4), nullable=False)
    credit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    image_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('generating', 'completed', 'failed')",
            name="ck_generation_status",
        ),
        CheckConstraint("resolution IN ('1K', '2K', '4K')", name="ck_generation_resolution"),
    )

    account: Mapped[UserAccount] = relationship(back_populates="generations")
