"""
=============================================================================
ADIVINA - Máquina de Estados de la Partida
=============================================================================
ACTIVE --intento IGUAL--> WON(jugador)     libera el premio al jugador
ACTIVE --end_game-------> ENDED(anfitrión) libera el premio al anfitrión

Ambos estados son terminales: nunca vuelven a ACTIVE ni pasan de uno a otro.
=============================================================================
"""

from datetime import datetime, timezone
from decimal import Decimal

from .errors import GameNotActive
from .escrow import EscrowManager
from .ledger import LedgerTransaction
from .models import Game, GameState
from .security import AccessControl


TRANSITIONS = {
    GameState.ACTIVE: {GameState.WON, GameState.ENDED},
    GameState.WON: set(),
    GameState.ENDED: set(),
}


class GameStateMachine:

    def __init__(self, escrow: EscrowManager, access: AccessControl):
        self.escrow = escrow
        self.access = access

    def _transition(self, game: Game, target: GameState):
        current = GameState(game.state)
        if target not in TRANSITIONS[current]:
            raise GameNotActive(f"La partida {game.id} está {current.value}")
        game.state = target
        game.finished_at = datetime.now(timezone.utc)

    async def declare_winner(self, tx: LedgerTransaction, game: Game, player: str) -> Decimal:
        self._transition(game, GameState.WON)
        game.winner = player
        amount = await self.escrow.release(tx, game.id, player)
        tx.emit("GameWon", game.id, winner=player)
        return amount

    async def end(self, tx: LedgerTransaction, game: Game) -> Decimal:
        """Cierre manual por el anfitrión; el premio vuelve al anfitrión."""
        self.access.require_host(game, tx.caller)
        self._transition(game, GameState.ENDED)
        game.ended_by = tx.caller
        amount = await self.escrow.release(tx, game.id, tx.caller)
        tx.emit("GameEnded", game.id, host=tx.caller)
        return amount
