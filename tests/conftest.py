from decimal import Decimal

import pytest

from adivina.database import Database
from adivina.encryption import MockEncryptionProvider
from adivina.game_engine import GameService
from adivina.ledger import Ledger


HOST = "0xhost"
ALICE = "0xalice"
BOB = "0xbob"
VIEWER = "0xviewer"

PRIZE = Decimal("0.1")


@pytest.fixture
def provider():
    return MockEncryptionProvider(key="test-key")


@pytest.fixture
def published():
    return []


@pytest.fixture
async def service(provider, published):
    async def publisher(ledger_event):
        published.append(ledger_event)

    database = Database("sqlite+aiosqlite://")
    await database.create_all()
    yield GameService(Ledger(database, publisher=publisher), provider)
    await database.dispose()


@pytest.fixture
def new_game(service, provider):
    async def create(secret=42, max_attempts=10, prize=PRIZE, host=HOST):
        secret_input = provider.encrypt(secret, host)
        return await service.create_game(host, secret_input.handle, secret_input.proof, max_attempts, prize)
    return create


@pytest.fixture
def guess(service, provider):
    async def submit(game_id, value, player=ALICE, viewer=None):
        guess_input = provider.encrypt(value, player)
        return await service.make_guess(player, game_id, guess_input.handle, guess_input.proof, viewer)
    return submit
