import asyncio

import pytest

from adivina.errors import GameNotActive, GameNotFound, InvalidCiphertext, MaxAttemptsReached

from conftest import ALICE, BOB, HOST


async def test_attempts_start_at_zero(service, new_game):
    game_id = await new_game()
    assert await service.get_player_attempts(game_id, ALICE) == 0
    assert await service.get_player_attempts(99, ALICE) == 0


async def test_each_guess_counts(service, new_game, guess):
    game_id = await new_game(secret=42)

    first = await guess(game_id, 10)
    assert first.attempt_index == 0
    assert await service.get_player_attempts(game_id, ALICE) == 1

    second = await guess(game_id, 20)
    assert second.attempt_index == 1
    assert await service.get_player_attempts(game_id, ALICE) == 2


async def test_limit_is_enforced(service, new_game, guess):
    game_id = await new_game(max_attempts=10)

    for value in range(1, 11):
        await guess(game_id, value)

    with pytest.raises(MaxAttemptsReached):
        await guess(game_id, 11)
    assert await service.get_player_attempts(game_id, ALICE) == 10


async def test_limit_is_per_player(service, new_game, guess):
    game_id = await new_game(max_attempts=1)

    await guess(game_id, 1, player=ALICE)
    with pytest.raises(MaxAttemptsReached):
        await guess(game_id, 2, player=ALICE)

    await guess(game_id, 2, player=BOB)
    assert await service.get_player_attempts(game_id, BOB) == 1


async def test_exhausted_players_do_not_end_the_game(service, new_game, guess):
    game_id = await new_game(max_attempts=1)
    await guess(game_id, 1, player=ALICE)
    await guess(game_id, 2, player=BOB)

    assert (await service.get_game_info(game_id)).state.value == "ACTIVE"


async def test_host_may_guess(service, new_game, guess):
    game_id = await new_game()
    receipt = await guess(game_id, 50, player=HOST)
    assert receipt.player == HOST
    assert await service.get_player_attempts(game_id, HOST) == 1


async def test_concurrent_guesses_never_exceed_limit(service, new_game, guess):
    game_id = await new_game(max_attempts=3)

    results = await asyncio.gather(
        *[guess(game_id, value) for value in range(1, 9)],
        return_exceptions=True
    )

    accepted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(accepted) == 3
    assert all(isinstance(r, MaxAttemptsReached) for r in rejected)
    assert sorted(r.attempt_index for r in accepted) == [0, 1, 2]
    assert await service.get_player_attempts(game_id, ALICE) == 3


async def test_invalid_guess_does_not_consume_attempt(service, provider, new_game):
    game_id = await new_game()
    other = provider.encrypt(50, BOB)

    with pytest.raises(InvalidCiphertext):
        await service.make_guess(ALICE, game_id, other.handle, other.proof)
    assert await service.get_player_attempts(game_id, ALICE) == 0
    assert [e["name"] for e in await service.list_events(game_id)] == ["GameCreated"]


async def test_guess_on_unknown_game(guess):
    with pytest.raises(GameNotFound):
        await guess(3, 50)


async def test_guess_on_finished_game(service, new_game, guess):
    game_id = await new_game()
    await service.end_game(HOST, game_id)

    with pytest.raises(GameNotActive):
        await guess(game_id, 50)
    assert await service.get_player_attempts(game_id, ALICE) == 0


async def test_guess_made_event(service, new_game, guess):
    game_id = await new_game()
    await guess(game_id, 50)

    events = await service.list_events(game_id)
    assert events[-1]["name"] == "GuessMade"
    assert events[-1]["payload"] == {"game_id": game_id, "player": ALICE, "attempt_index": 0}
