from decimal import Decimal

import pytest

from adivina.errors import GameNotFound, InsufficientPrize, InvalidAmount, InvalidCiphertext, InvalidMaxAttempts
from adivina.models import GameState

from conftest import ALICE, HOST, PRIZE


async def test_create_game_records_metadata(service, new_game):
    game_id = await new_game(secret=42, max_attempts=10, prize=PRIZE)
    assert game_id == 0

    info = await service.get_game_info(game_id)
    assert info.host == HOST
    assert info.max_attempts == 10
    assert info.state == GameState.ACTIVE
    assert info.prize == PRIZE
    assert info.winner is None
    assert info.start_time is not None


async def test_ids_are_sequential(new_game):
    assert [await new_game() for _ in range(3)] == [0, 1, 2]


async def test_insufficient_prize_consumes_nothing(service, new_game, published):
    with pytest.raises(InsufficientPrize):
        await new_game(prize=Decimal("0.005"))

    assert await service.list_games() == []
    assert await service.list_events(0) == []
    assert (await service.audit_ledger())["total_entries_verified"] == 0
    assert published == []

    assert await new_game() == 0


async def test_minimum_prize_is_accepted(service, new_game):
    game_id = await new_game(prize=Decimal("0.01"))
    assert (await service.get_game_info(game_id)).prize == Decimal("0.01")


@pytest.mark.parametrize("max_attempts", [0, -1, 21])
async def test_max_attempts_out_of_range(new_game, max_attempts):
    with pytest.raises(InvalidMaxAttempts):
        await new_game(max_attempts=max_attempts)


@pytest.mark.parametrize("max_attempts", [1, 20])
async def test_max_attempts_bounds(service, new_game, max_attempts):
    game_id = await new_game(max_attempts=max_attempts)
    assert (await service.get_game_info(game_id)).max_attempts == max_attempts


async def test_prize_checked_before_attempts(new_game):
    with pytest.raises(InsufficientPrize):
        await new_game(max_attempts=0, prize=Decimal("0"))


async def test_tampered_proof_is_rejected(service, provider):
    secret = provider.encrypt(42, HOST)
    with pytest.raises(InvalidCiphertext):
        await service.create_game(HOST, secret.handle, "00" * 32, 10, PRIZE)


async def test_proof_bound_to_its_owner(service, provider):
    secret = provider.encrypt(42, ALICE)
    with pytest.raises(InvalidCiphertext):
        await service.create_game(HOST, secret.handle, secret.proof, 10, PRIZE)


async def test_unknown_handle_is_rejected(service):
    with pytest.raises(InvalidCiphertext):
        await service.create_game(HOST, "0xdeadbeef", "proof", 10, PRIZE)


async def test_secret_outside_domain_cannot_be_encrypted(provider):
    for value in (0, 101, 255):
        with pytest.raises(ValueError):
            provider.encrypt(value, HOST)


async def test_unknown_game(service):
    with pytest.raises(GameNotFound):
        await service.get_game_info(7)


async def test_list_games_by_state(service, new_game):
    first = await new_game()
    second = await new_game()
    await service.end_game(HOST, second)

    assert [g.game_id for g in await service.list_games()] == [first, second]
    assert [g.game_id for g in await service.list_games(GameState.ACTIVE)] == [first]
    assert [g.game_id for g in await service.list_games(GameState.ENDED)] == [second]


async def test_game_created_event(service, new_game, published):
    game_id = await new_game()

    events = await service.list_events(game_id)
    assert [e["name"] for e in events] == ["GameCreated"]
    assert events[0]["payload"] == {"game_id": game_id, "host": HOST}
    assert [e.name for e in published] == ["GameCreated"]


async def test_prize_finer_than_storage_is_rejected(service, new_game, published):
    with pytest.raises(InvalidAmount):
        await new_game(prize=Decimal("0.123456789"))

    assert await service.list_games() == []
    assert (await service.audit_ledger())["total_entries_verified"] == 0
    assert published == []
    assert await new_game() == 0


@pytest.mark.parametrize("prize", [Decimal("NaN"), Decimal("Infinity"), Decimal("10000000000")])
async def test_prize_outside_storage_range(new_game, prize):
    with pytest.raises(InvalidAmount):
        await new_game(prize=prize)


async def test_prize_is_kept_exactly(service, new_game):
    prize = Decimal("0.12345678")
    game_id = await new_game(prize=prize)
    assert (await service.get_game_info(game_id)).prize == prize

    closure = await service.end_game(HOST, game_id)
    assert closure.amount == prize
    assert await service.get_wallet_balance(HOST) == prize
    assert (await service.audit_ledger())["integrity_status"] == "OK"


async def test_trailing_zeros_are_accepted(service, new_game):
    game_id = await new_game(prize=Decimal("0.1000000000"))
    assert (await service.get_game_info(game_id)).prize == Decimal("0.1")
    assert (await service.audit_ledger())["integrity_status"] == "OK"


async def test_float_prize_uses_its_decimal_text(service, provider):
    secret = provider.encrypt(42, HOST)
    game_id = await service.create_game(HOST, secret.handle, secret.proof, 10, 0.1)
    assert (await service.get_game_info(game_id)).prize == Decimal("0.1")
