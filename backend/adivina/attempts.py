"""
=============================================================================
ADIVINA - Control de Intentos
=============================================================================
Aplica el límite de intentos por jugador y partida.
=============================================================================
"""

from sqlalchemy.ext.asyncio import AsyncSession

from .errors import GameNotActive, MaxAttemptsReached
from .ledger import LedgerTransaction
from .models import GameState, PlayerAttempt
from .registry import GameRegistry


class AttemptTracker:

    def __init__(self, registry: GameRegistry):
        self.registry = registry

    async def record_attempt(self, tx: LedgerTransaction, game_id: int, player: str) -> int:
        """
        Registra un intento aceptado y retorna su índice (base 0).

        Falla con GameNotFound, GameNotActive o MaxAttemptsReached.
        """
        game = await self.registry.get(tx.session, game_id, for_update=True)
        if game.state != GameState.ACTIVE:
            raise GameNotActive(f"La partida {game_id} está {game.state.value}")

        record = await tx.session.get(PlayerAttempt, (game_id, player), with_for_update=True)
        if record is None:
            record = PlayerAttempt(game_id=game_id, player=player, attempts=0)
            tx.session.add(record)

        if record.attempts >= game.max_attempts:
            raise MaxAttemptsReached(
                f"{player} ya usó sus {game.max_attempts} intentos en la partida {game_id}"
            )

        index = record.attempts
        record.attempts = index + 1
        return index

    async def get_attempts(self, session: AsyncSession, game_id: int, player: str) -> int:
        record = await session.get(PlayerAttempt, (game_id, player))
        return record.attempts if record else 0
