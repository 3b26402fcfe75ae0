import asyncio
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import select, update

from adivina.database import Database
from adivina.errors import MaxAttemptsReached
from adivina.game_engine import GameService
from adivina.ledger import Ledger, LedgerTransaction
from adivina.models import LedgerEntry, LedgerHead, Wallet

from conftest import ALICE, BOB, HOST, PRIZE


async def play_session(service, new_game, guess):
    won = await new_game(secret=42)
    ended = await new_game(secret=7, prize=Decimal("0.25"))
    idle = await new_game(secret=99, prize=Decimal("0.5"))

    await guess(won, 10, player=BOB)
    receipt = await guess(won, 42)
    await service.resolve_guess(ALICE, won, receipt.guess_id)
    await service.end_game(HOST, ended)
    return won, ended, idle


async def test_audit_after_session(service, new_game, guess):
    await play_session(service, new_game, guess)

    report = await service.audit_ledger()
    assert report["integrity_status"] == "OK"
    assert report["total_entries_verified"] == 5
    assert Decimal(report["total_locked"]) == Decimal("0.85")
    assert Decimal(report["total_released"]) == Decimal("0.35")
    assert Decimal(report["total_in_escrow"]) == Decimal("0.5")
    assert Decimal(report["drift"]) == 0
    assert report["invalid_entries"] == []
    assert report["hash_mismatches"] == []


async def test_audit_detects_wallet_tampering(service, new_game, guess):
    await play_session(service, new_game, guess)

    async with service.ledger.database.session_factory() as session:
        async with session.begin():
            await session.execute(
                update(Wallet).where(Wallet.identity == ALICE).values(balance=Decimal("5"))
            )

    report = await service.audit_ledger()
    assert report["integrity_status"] == "ALERT"
    assert ALICE in report["hash_mismatches"]


async def test_audit_detects_broken_chain(service, new_game, guess):
    await play_session(service, new_game, guess)

    async with service.ledger.database.session_factory() as session:
        async with session.begin():
            await session.execute(
                update(LedgerEntry).where(LedgerEntry.id == 2).values(amount=Decimal("9"))
            )

    report = await service.audit_ledger()
    assert report["integrity_status"] == "ALERT"
    assert 2 in report["invalid_entries"]


async def test_failed_call_publishes_nothing(service, new_game, guess, published):
    game_id = await new_game(max_attempts=1)
    await guess(game_id, 5)
    published.clear()

    with pytest.raises(MaxAttemptsReached):
        await guess(game_id, 6)

    assert published == []
    assert [e["name"] for e in await service.list_events(game_id)] == ["GameCreated", "GuessMade"]


async def test_events_published_after_commit(service, new_game, guess, published):
    game_id = await new_game(secret=42)
    receipt = await guess(game_id, 42)
    await service.resolve_guess(ALICE, game_id, receipt.guess_id)

    assert [(e.name, e.game_id) for e in published] == [
        ("GameCreated", game_id),
        ("GuessMade", game_id),
        ("GameWon", game_id),
    ]


async def test_publisher_errors_do_not_revert(provider):
    async def broken(ledger_event):
        raise ConnectionError("socket caído")

    database = Database("sqlite+aiosqlite://")
    await database.create_all()
    service = GameService(Ledger(database, publisher=broken), provider)

    secret = provider.encrypt(42, HOST)
    game_id = await service.create_game(HOST, secret.handle, secret.proof, 10, PRIZE)
    assert (await service.get_game_info(game_id)).prize == PRIZE
    await database.dispose()


async def test_chain_head_follows_last_entry(service, new_game, guess):
    await play_session(service, new_game, guess)

    async with service.ledger.snapshot() as session:
        head = await session.get(LedgerHead, LedgerHead.ROW_ID)
        last = (await session.execute(select(LedgerEntry).order_by(LedgerEntry.id.desc()).limit(1))).scalar_one()

    assert head.last_entry_id == last.id
    assert head.last_hash == last.entry_hash
    assert head.entries == 5
    assert (await service.audit_ledger())["head_consistent"]


async def test_releases_across_games_keep_one_chain(service, new_game):
    game_ids = [await new_game() for _ in range(4)]

    await asyncio.gather(*[service.end_game(HOST, game_id) for game_id in game_ids])

    async with service.ledger.snapshot() as session:
        entries = (await session.execute(select(LedgerEntry).order_by(LedgerEntry.id))).scalars().all()
    previous = [e.previous_hash for e in entries]
    assert len(set(previous)) == len(entries)

    report = await service.audit_ledger()
    assert report["integrity_status"] == "OK"
    assert report["invalid_entries"] == []


async def test_audit_detects_moved_head(service, new_game, guess):
    await play_session(service, new_game, guess)

    async with service.ledger.database.session_factory() as session:
        async with session.begin():
            await session.execute(update(LedgerHead).values(entries=3))

    report = await service.audit_ledger()
    assert report["integrity_status"] == "ALERT"
    assert not report["head_consistent"]


async def test_rolled_back_guess_leaves_no_result_handle(service, provider, new_game, guess, monkeypatch):
    game_id = await new_game()
    results = []
    compare = service.comparison.compare

    def recording_compare(*args, **kwargs):
        result = compare(*args, **kwargs)
        results.append(result)
        return result

    def failing_emit(self, name, game_id, **payload):
        raise ConnectionError("event log unavailable")

    monkeypatch.setattr(service.comparison, "compare", recording_compare)
    monkeypatch.setattr(LedgerTransaction, "emit", failing_emit)

    with pytest.raises(ConnectionError):
        await guess(game_id, 50)

    assert len(results) == 1
    with pytest.raises(KeyError):
        provider.allow(results[0].handle, ALICE)
    assert await service.get_player_attempts(game_id, ALICE) == 0


async def test_scope_locks_are_released(service, new_game, guess):
    game_id = await new_game(max_attempts=1)
    await guess(game_id, 5)
    with pytest.raises(MaxAttemptsReached):
        await guess(game_id, 6)

    assert service.ledger.active_scopes == []


async def test_game_scope_locks_are_shared_then_pruned():
    ledger = Ledger(SimpleNamespace(is_sqlite=False))
    order = []

    async def hold(scope, tag):
        async with ledger._scoped_lock(ledger._lock_key(scope)):
            order.append(f"{tag}:in")
            await asyncio.sleep(0)
            order.append(f"{tag}:out")

    await asyncio.gather(hold(3, "a"), hold(3, "b"), hold(None, "c"))

    # Misma partida: nunca se intercalan
    assert order.index("a:out") < order.index("b:in")
    assert ledger.active_scopes == []
