"""
=============================================================================
ADIVINA - Registro de Partidas
=============================================================================
Asigna identificadores secuenciales (desde 0, nunca reutilizados) y guarda
los metadatos inmutables de cada partida junto con su secreto cifrado.
=============================================================================
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import GameConfig
from .encryption import EncryptionProvider
from .errors import GameNotFound, InsufficientPrize, InvalidAmount, InvalidCiphertext, InvalidMaxAttempts
from .escrow import EscrowManager
from .ledger import LedgerTransaction
from .models import Game, GameState, RegistryCounter


@dataclass(frozen=True)
class GameSnapshot:
    """Vista inmutable de una partida (sin el secreto)."""
    game_id: int
    host: str
    start_time: datetime
    max_attempts: int
    state: GameState
    winner: Optional[str]
    ended_by: Optional[str]
    prize: Decimal

    @classmethod
    def from_model(cls, game: Game) -> "GameSnapshot":
        return cls(
            game_id=game.id,
            host=game.host,
            start_time=game.start_time,
            max_attempts=game.max_attempts,
            state=GameState(game.state),
            winner=game.winner,
            ended_by=game.ended_by,
            prize=Decimal(game.prize),
        )


class GameRegistry:

    COUNTER_ROW = 1

    def __init__(self, provider: EncryptionProvider, escrow: EscrowManager):
        self.provider = provider
        self.escrow = escrow

    async def _allocate_id(self, session: AsyncSession) -> int:
        counter = await session.get(RegistryCounter, self.COUNTER_ROW, with_for_update=True)
        if counter is None:
            counter = RegistryCounter(id=self.COUNTER_ROW, next_game_id=0)
            session.add(counter)
        game_id = counter.next_game_id
        counter.next_game_id = game_id + 1
        return game_id

    async def create_game(
        self,
        tx: LedgerTransaction,
        secret_handle: str,
        proof: str,
        max_attempts: int,
        prize: Decimal
    ) -> int:
        """
        Crea una partida financiada por el llamante.

        Falla con InsufficientPrize, InvalidAmount, InvalidMaxAttempts o
        InvalidCiphertext, en ese orden, sin consumir ningún id.
        """
        if not prize.is_finite():
            raise InvalidAmount(f"Premio inválido: {prize}")

        if prize < GameConfig.MIN_PRIZE:
            raise InsufficientPrize(f"Premio {prize} menor al mínimo {GameConfig.MIN_PRIZE}")

        # El premio se guarda y se libera tal cual: nada de redondeos
        if prize > GameConfig.MAX_AMOUNT or prize != prize.quantize(GameConfig.AMOUNT_QUANTUM):
            raise InvalidAmount(f"Premio {prize} fuera de rango o con más de 8 decimales")

        if not GameConfig.MIN_ATTEMPTS <= max_attempts <= GameConfig.MAX_ATTEMPTS:
            raise InvalidMaxAttempts(
                f"max_attempts debe estar entre {GameConfig.MIN_ATTEMPTS} y {GameConfig.MAX_ATTEMPTS}"
            )

        if not self.provider.validate(secret_handle, proof, tx.caller):
            raise InvalidCiphertext("Prueba inválida para el secreto")

        game_id = await self._allocate_id(tx.session)
        game = Game(
            id=game_id,
            host=tx.caller,
            secret_handle=secret_handle,
            secret_proof=proof,
            start_time=datetime.now(timezone.utc),
            max_attempts=max_attempts,
            state=GameState.ACTIVE,
            prize=prize,
        )
        tx.session.add(game)
        await tx.session.flush()

        await self.escrow.fund(tx, game_id, prize)
        tx.emit("GameCreated", game_id, host=tx.caller)
        return game_id

    async def get(self, session: AsyncSession, game_id: int, for_update: bool = False) -> Game:
        game = await session.get(Game, game_id, with_for_update=for_update)
        if game is None:
            raise GameNotFound(f"Partida {game_id} no existe")
        return game

    async def get_game_info(self, session: AsyncSession, game_id: int) -> GameSnapshot:
        return GameSnapshot.from_model(await self.get(session, game_id))

    async def list_games(self, session: AsyncSession, state: Optional[GameState] = None) -> List[GameSnapshot]:
        query = select(Game).order_by(Game.id)
        if state is not None:
            query = query.where(Game.state == state)
        result = await session.execute(query)
        return [GameSnapshot.from_model(game) for game in result.scalars().all()]
