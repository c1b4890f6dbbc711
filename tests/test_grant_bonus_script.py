"""Tests for the bonus-grant operator script."""

from __future__ import annotations

import json
from decimal import Decimal

import pytest

import grant_bonus
from imagestudio.services import ledger_store
from imagestudio.services.errors import AccountNotFound


async def _seed(session_factory, user_id: str = "user-1") -> None:
    async with session_factory() as db:
        await ledger_store.create_user(db, user_id)
        await db.commit()


@pytest.mark.asyncio
async def test_grant_commits_bonus_and_balance(session_factory):
    await _seed(session_factory)

    new_balance = await grant_bonus.grant(session_factory, "user-1", Decimal("25"), "promo-launch")

    assert new_balance == Decimal("27")
    async with session_factory() as db:
        account = await ledger_store.get_user(db, "user-1")
    assert account.image_balance == Decimal("27")
    assert account.bonus_images == Decimal("25")


@pytest.mark.asyncio
async def test_grant_unknown_account(session_factory):
    with pytest.raises(AccountNotFound):
        await grant_bonus.grant(session_factory, "ghost", Decimal("5"))


@pytest.mark.parametrize("amount", ["0", "-3", "lots", "NaN"])
def test_rejects_bad_amount(amount):
    with pytest.raises(SystemExit) as exc_info:
        grant_bonus.parse_args(["user-1", amount])
    assert exc_info.value.code == 2


@pytest.mark.asyncio
async def test_main_reports_new_balance(session_factory, engine, monkeypatch, capsys):
    await _seed(session_factory)
    monkeypatch.setattr(grant_bonus, "async_session_factory", session_factory)
    monkeypatch.setattr(grant_bonus, "engine", engine)

    exit_code = await grant_bonus.main(["user-1", "10", "--reference", "TICKET-42"])

    assert exit_code == 0
    out = capsys.readouterr().out
    # Audit events share stdout; the report is the trailing JSON document.
    report = json.loads(out[out.rindex("{\n  \"user_id\""):])
    assert report["granted"] == "10"
    assert Decimal(report["image_balance"]) == Decimal("12")
    assert report["reference"] == "TICKET-42"
    async with session_factory() as db:
        assert (await ledger_store.get_user(db, "user-1")).bonus_images == Decimal("10")


@pytest.mark.asyncio
async def test_main_unknown_account_exits_1(session_factory, engine, monkeypatch, capsys):
    monkeypatch.setattr(grant_bonus, "async_session_factory", session_factory)
    monkeypatch.setattr(grant_bonus, "engine", engine)

    exit_code = await grant_bonus.main(["ghost", "10"])

    assert exit_code == 1
    assert "ghost" in capsys.readouterr().err
