"""Tests for the generation orchestrator (charge, call, record)."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from imagestudio.integrations.image_client import (
    GeneratedImage,
    ImageGenerationAPIError,
    ImageGenerationTimeoutError,
)
from imagestudio.services import ledger_store
from imagestudio.services.catalog import Resolution
from imagestudio.services.errors import AccountNotFound
from imagestudio.services.generation_orchestrator import (
    GenerationContext,
    GenerationOrchestrator,
    GenerationRepository,
    GenerationRequest,
    GenerationStatus,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeGenerator:
    """Records calls; fails the call numbers listed in *fail_on* (1-based)."""

    def __init__(self, fail_on: tuple[int, ...] = (), error: Exception | None = None):
        self.calls: list[dict] = []
        self._fail_on = fail_on
        self._error = error or ImageGenerationAPIError("model overloaded")

    async def generate(self, prompt, width, height, resolution, reference_images=None):
        self.calls.append({
            "prompt": prompt, "width": width, "height": height,
            "resolution": resolution, "reference_images": reference_images,
        })
        await asyncio.sleep(0)
        if len(self.calls) in self._fail_on:
            raise self._error
        return GeneratedImage(data=b"\x89PNG fake", mime_type="image/png")


async def _seed(session_factory, user_id: str = "user-1", extra: int = 0) -> None:
    async with session_factory() as db:
        await ledger_store.create_user(db, user_id)
        if extra:
            await ledger_store.grant_credits(db, user_id, extra)
        await db.commit()


async def _balance(session_factory, user_id: str = "user-1") -> Decimal:
    async with session_factory() as db:
        return (await ledger_store.get_user(db, user_id)).image_balance


async def _gallery(session_factory, user_id: str = "user-1") -> list[dict]:
    async with session_factory() as db:
        return await GenerationRepository(db).list_for_user(user_id)


def _ctx(session_factory, generator, tmp_path: Path, user_id: str = "user-1") -> GenerationContext:
    return GenerationContext(
        user_id=user_id,
        session_factory=session_factory,
        generator=generator,
        storage_dir=tmp_path / "images",
    )


# ---------------------------------------------------------------------------
# Single requests
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_successful_generation_charges_and_stores(session_factory, tmp_path):
    await _seed(session_factory)
    generator = FakeGenerator()

    outcome = await GenerationOrchestrator(_ctx(session_factory, generator, tmp_path)).generate(
        GenerationRequest(prompt="Quarterly kickoff banner", resolution=Resolution.LOW)
    )

    assert outcome.status is GenerationStatus.COMPLETED
    assert outcome.cost == Decimal("0.5")
    assert outcome.balance == Decimal("1.5")
    assert Path(outcome.image_path).read_bytes() == b"\x89PNG fake"
    assert generator.calls[0]["width"] == 1920
    assert generator.calls[0]["resolution"] == "1K"

    rows = await _gallery(session_factory)
    assert len(rows) == 1
    assert rows[0]["status"] == "completed"
    assert rows[0]["image_path"] == outcome.image_path


@pytest.mark.asyncio
async def test_insufficient_balance_never_calls_generator(session_factory, tmp_path):
    await _seed(session_factory)
    generator = FakeGenerator()
    orchestrator = GenerationOrchestrator(_ctx(session_factory, generator, tmp_path))

    first = await orchestrator.generate(GenerationRequest(prompt="p", resolution=Resolution.HIGH))
    second = await orchestrator.generate(GenerationRequest(prompt="p", resolution=Resolution.LOW))

    assert first.status is GenerationStatus.COMPLETED
    assert second.status is GenerationStatus.UPGRADE_REQUIRED
    assert second.balance == Decimal("0")
    assert len(generator.calls) == 1
    assert len(await _gallery(session_factory)) == 1


@pytest.mark.asyncio
async def test_failed_generation_keeps_the_charge(session_factory, tmp_path):
    await _seed(session_factory)
    generator = FakeGenerator(fail_on=(1,), error=ImageGenerationTimeoutError("too slow"))

    outcome = await GenerationOrchestrator(_ctx(session_factory, generator, tmp_path)).generate(
        GenerationRequest(prompt="p", resolution=Resolution.MEDIUM)
    )

    assert outcome.status is GenerationStatus.FAILED
    assert outcome.error == "too slow"
    assert outcome.balance == Decimal("1")
    assert await _balance(session_factory) == Decimal("1")

    rows = await _gallery(session_factory)
    assert rows[0]["status"] == "failed"
    assert rows[0]["error_message"] == "too slow"


@pytest.mark.asyncio
async def test_unknown_preset_rejected_before_charge(session_factory, tmp_path):
    await _seed(session_factory)
    generator = FakeGenerator()

    with pytest.raises(ValueError):
        await GenerationOrchestrator(_ctx(session_factory, generator, tmp_path)).generate(
            GenerationRequest(prompt="p", generation_type="billboard")
        )

    assert await _balance(session_factory) == Decimal("2")
    assert generator.calls == []


@pytest.mark.asyncio
async def test_missing_account_raises(session_factory, tmp_path):
    with pytest.raises(AccountNotFound):
        await GenerationOrchestrator(_ctx(session_factory, FakeGenerator(), tmp_path)).generate(
            GenerationRequest(prompt="p")
        )


@pytest.mark.asyncio
async def test_custom_dimensions_and_references_forwarded(session_factory, tmp_path):
    await _seed(session_factory)
    generator = FakeGenerator()

    await GenerationOrchestrator(_ctx(session_factory, generator, tmp_path)).generate(
        GenerationRequest(
            prompt="p", generation_type="custom", width=800, height=600,
            reference_images=("data:image/png;base64,AAAA",),
        )
    )

    call = generator.calls[0]
    assert (call["width"], call["height"]) == (800, 600)
    assert call["reference_images"] == ["data:image/png;base64,AAAA"]


# ---------------------------------------------------------------------------
# Variations and concurrency
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_variation_failures_are_independent(session_factory, tmp_path):
    await _seed(session_factory, extra=8)
    generator = FakeGenerator(fail_on=(2,))

    outcomes = await GenerationOrchestrator(
        _ctx(session_factory, generator, tmp_path)
    ).generate_variations(GenerationRequest(prompt="p", resolution=Resolution.MEDIUM), 3)

    statuses = sorted(o.status.value for o in outcomes)
    assert statuses == ["completed", "completed", "failed"]
    # All three were charged, including the failure.
    assert await _balance(session_factory) == Decimal("7")


@pytest.mark.asyncio
async def test_variation_storage_error_keeps_sibling_outcomes(session_factory, tmp_path, monkeypatch):
    await _seed(session_factory, extra=8)
    original = GenerationRepository.mark_completed
    attempts: list = []

    async def flaky_mark_completed(self, generation_id, image_path):
        attempts.append(generation_id)
        if len(attempts) == 1:
            raise OperationalError("UPDATE generations", {}, Exception("database is locked"))
        await original(self, generation_id, image_path)

    monkeypatch.setattr(GenerationRepository, "mark_completed", flaky_mark_completed)

    outcomes = await GenerationOrchestrator(
        _ctx(session_factory, FakeGenerator(), tmp_path)
    ).generate_variations(GenerationRequest(prompt="p", resolution=Resolution.MEDIUM), 3)

    assert len(outcomes) == 3
    failed = [o for o in outcomes if o.status is GenerationStatus.FAILED]
    assert len(failed) == 1
    assert failed[0].cost == Decimal("1")
    assert "database is locked" in failed[0].error
    assert sum(o.status is GenerationStatus.COMPLETED for o in outcomes) == 2
    # The errored variation was charged before the storage error.
    assert await _balance(session_factory) == Decimal("7")


@pytest.mark.asyncio
async def test_variations_for_missing_account_raise(session_factory, tmp_path):
    orchestrator = GenerationOrchestrator(_ctx(session_factory, FakeGenerator(), tmp_path, user_id="ghost"))
    with pytest.raises(AccountNotFound):
        await orchestrator.generate_variations(GenerationRequest(prompt="p"), 2)


@pytest.mark.asyncio
async def test_variations_stop_at_balance(session_factory, tmp_path):
    """Four 2K variations against two credits: two run, two need an upgrade."""
    await _seed(session_factory)
    generator = FakeGenerator()

    outcomes = await GenerationOrchestrator(
        _ctx(session_factory, generator, tmp_path)
    ).generate_variations(GenerationRequest(prompt="p", resolution=Resolution.MEDIUM), 4)

    statuses = [o.status for o in outcomes]
    assert statuses.count(GenerationStatus.COMPLETED) == 2
    assert statuses.count(GenerationStatus.UPGRADE_REQUIRED) == 2
    assert len(generator.calls) == 2
    assert await _balance(session_factory) == Decimal("0")


@pytest.mark.asyncio
async def test_variation_count_must_be_positive(session_factory, tmp_path):
    orchestrator = GenerationOrchestrator(_ctx(session_factory, FakeGenerator(), tmp_path))
    with pytest.raises(ValueError):
        await orchestrator.generate_variations(GenerationRequest(prompt="p"), 0)


@pytest.mark.asyncio
async def test_new_account_end_to_end(session_factory, tmp_path):
    """Free account: two 2K images succeed, the third needs an upgrade."""
    await _seed(session_factory)
    generator = FakeGenerator()
    orchestrator = GenerationOrchestrator(_ctx(session_factory, generator, tmp_path))
    request = GenerationRequest(prompt="p", resolution=Resolution.MEDIUM)

    first = await orchestrator.generate(request)
    assert (first.status, first.balance) == (GenerationStatus.COMPLETED, Decimal("1"))
    second = await orchestrator.generate(request)
    assert (second.status, second.balance) == (GenerationStatus.COMPLETED, Decimal("0"))
    third = await orchestrator.generate(request)
    assert (third.status, third.balance) == (GenerationStatus.UPGRADE_REQUIRED, Decimal("0"))

    assert len(generator.calls) == 2
    assert await _balance(session_factory) == Decimal("0")
