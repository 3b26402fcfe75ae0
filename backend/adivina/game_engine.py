"""
=============================================================================
ADIVINA - Motor de Juego Confidencial
=============================================================================
Fachada que compone Registro, Control de Intentos, Motor de Comparación,
Máquina de Estados, Fideicomiso y Control de Acceso en las operaciones
externas. Cada operación es UNA transacción del ledger: o confirma todos sus
cambios de estado y de fondos, o ninguno.

Flujo de un intento:
1. make_guess: registra el intento y emite el resultado cifrado (PENDING)
2. resolve_guess: el jugador (o su visor) descifra el resultado; si es IGUAL
   y la partida sigue ACTIVE, la partida pasa a WON y se libera el premio
=============================================================================
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select

from .attempts import AttemptTracker
from .comparison import ComparisonEngine, GuessOutcome
from .encryption import EncryptionProvider
from .errors import GuessAlreadyResolved, GuessNotFound
from .escrow import EscrowManager
from .ledger import Ledger
from .models import (
    EscrowAccount,
    GameEvent,
    GameState,
    Guess,
    GuessStatus,
    LedgerEntry,
    LedgerEntryType,
    LedgerHead,
    Wallet,
)
from .registry import GameRegistry, GameSnapshot
from .security import AccessControl
from .state_machine import GameStateMachine


@dataclass(frozen=True)
class GuessReceipt:
    """Comprobante de un intento aceptado; el resultado sigue cifrado."""
    guess_id: UUID
    game_id: int
    player: str
    attempt_index: int
    result_handle: str
    status: GuessStatus = GuessStatus.PENDING


@dataclass(frozen=True)
class GuessResolution:
    """Resultado descifrado, entregado sólo a quien lo solicitó."""
    guess_id: UUID
    game_id: int
    outcome: GuessOutcome
    is_winning: bool
    game_state: GameState


@dataclass(frozen=True)
class GameClosure:
    game_id: int
    state: GameState
    recipient: str
    amount: Decimal


class GameService:

    def __init__(self, ledger: Ledger, provider: EncryptionProvider):
        self.ledger = ledger
        self.provider = provider

        self.access = AccessControl()
        self.escrow = EscrowManager()
        self.registry = GameRegistry(provider, self.escrow)
        self.attempts = AttemptTracker(self.registry)
        self.comparison = ComparisonEngine(provider)
        self.state_machine = GameStateMachine(self.escrow, self.access)

    # =========================================================================
    # OPERACIONES CON EFECTOS
    # =========================================================================

    async def create_game(
        self,
        caller: str,
        secret_handle: str,
        proof: str,
        max_attempts: int,
        value: Decimal
    ) -> int:
        prize = Decimal(str(value))
        async with self.ledger.transaction(caller, value=prize) as tx:
            return await self.registry.create_game(tx, secret_handle, proof, max_attempts, prize)

    async def make_guess(
        self,
        caller: str,
        game_id: int,
        guess_handle: str,
        proof: str,
        viewer: Optional[str] = None
    ) -> GuessReceipt:
        async with self.ledger.transaction(caller, scope=game_id) as tx:
            attempt_index = await self.attempts.record_attempt(tx, game_id, caller)
            game = await self.registry.get(tx.session, game_id)

            result = self.comparison.compare(game.secret_handle, guess_handle, proof, caller, viewer)
            tx.on_rollback(lambda: self.comparison.discard(result))

            guess = Guess(
                game_id=game_id,
                player=caller,
                viewer=viewer,
                attempt_index=attempt_index,
                guess_handle=guess_handle,
                result_handle=result.handle,
                status=GuessStatus.PENDING,
            )
            tx.session.add(guess)
            await tx.session.flush()

            tx.emit("GuessMade", game_id, player=caller, attempt_index=attempt_index)
            tx.after_commit(lambda: self.comparison.grant(result))

            return GuessReceipt(
                guess_id=guess.id,
                game_id=game_id,
                player=caller,
                attempt_index=attempt_index,
                result_handle=result.handle,
            )

    async def resolve_guess(self, caller: str, game_id: int, guess_id: UUID) -> GuessResolution:
        """
        Descifra el resultado de un intento para su jugador o visor.
        El primer IGUAL resuelto mientras la partida está ACTIVE gana.
        """
        async with self.ledger.transaction(caller, scope=game_id) as tx:
            guess = await tx.session.get(Guess, guess_id, with_for_update=True)
            if guess is None or guess.game_id != game_id:
                raise GuessNotFound(f"Intento {guess_id} no existe en la partida {game_id}")

            self.access.require_guess_reader(guess, caller)
            if guess.status == GuessStatus.RESOLVED:
                raise GuessAlreadyResolved(f"El intento {guess_id} ya fue resuelto")

            outcome = self.comparison.reveal(guess.result_handle, caller)
            game = await self.registry.get(tx.session, game_id, for_update=True)

            is_winning = outcome == GuessOutcome.EQUAL and game.state == GameState.ACTIVE
            if is_winning:
                await self.state_machine.declare_winner(tx, game, guess.player)

            guess.status = GuessStatus.RESOLVED
            guess.is_winning = is_winning
            guess.resolved_at = datetime.now(timezone.utc)

            return GuessResolution(
                guess_id=guess.id,
                game_id=game_id,
                outcome=outcome,
                is_winning=is_winning,
                game_state=GameState(game.state),
            )

    async def end_game(self, caller: str, game_id: int) -> GameClosure:
        async with self.ledger.transaction(caller, scope=game_id) as tx:
            game = await self.registry.get(tx.session, game_id, for_update=True)
            amount = await self.state_machine.end(tx, game)
            return GameClosure(game_id=game_id, state=GameState.ENDED, recipient=caller, amount=amount)

    # =========================================================================
    # CONSULTAS
    # =========================================================================

    async def get_game_info(self, game_id: int) -> GameSnapshot:
        async with self.ledger.snapshot() as session:
            return await self.registry.get_game_info(session, game_id)

    async def list_games(self, state: Optional[GameState] = None) -> List[GameSnapshot]:
        async with self.ledger.snapshot() as session:
            return await self.registry.list_games(session, state)

    async def get_player_attempts(self, game_id: int, player: str) -> int:
        async with self.ledger.snapshot() as session:
            return await self.attempts.get_attempts(session, game_id, player)

    async def list_events(self, game_id: int) -> List[Dict[str, Any]]:
        async with self.ledger.snapshot() as session:
            result = await session.execute(
                select(GameEvent).where(GameEvent.game_id == game_id).order_by(GameEvent.id)
            )
            return [
                {"id": e.id, "name": e.name, "payload": e.payload, "created_at": e.created_at}
                for e in result.scalars().all()
            ]

    async def get_wallet_balance(self, identity: str) -> Decimal:
        async with self.ledger.snapshot() as session:
            wallet = await session.get(Wallet, identity)
            return Decimal(wallet.balance) if wallet else Decimal("0")

    async def audit_ledger(self) -> Dict[str, Any]:
        """
        Verifica la integridad de los fondos.
        Recalcula la cadena de hashes, la custodia abierta y los saldos.
        """
        async with self.ledger.snapshot() as session:
            entries = (await session.execute(select(LedgerEntry).order_by(LedgerEntry.id))).scalars().all()
            accounts = (await session.execute(select(EscrowAccount))).scalars().all()
            wallets = (await session.execute(select(Wallet))).scalars().all()
            head = await session.get(LedgerHead, LedgerHead.ROW_ID)

        invalid_entries = []
        previous_hash = None
        locked = Decimal("0")
        released = Decimal("0")
        for entry in entries:
            if entry.previous_hash != previous_hash or entry.entry_hash != entry.compute_entry_hash(previous_hash):
                invalid_entries.append(entry.id)
            previous_hash = entry.entry_hash
            if entry.entry_type == LedgerEntryType.ESCROW_LOCK:
                locked += Decimal(entry.amount)
            else:
                released += Decimal(entry.amount)

        in_escrow = sum((Decimal(a.balance) for a in accounts if not a.released), Decimal("0"))
        wallets_total = sum((Decimal(w.balance) for w in wallets), Decimal("0"))
        hash_mismatches = [w.identity for w in wallets if not w.verify_balance_integrity()]

        # La cabeza debe apuntar al final de la cadena reconstruida
        head_hash, head_entries = (head.last_hash, head.entries) if head else (None, 0)
        head_consistent = head_hash == previous_hash and head_entries == len(entries)

        drift = locked - released - in_escrow
        wallet_drift = wallets_total - released
        ok = (
            drift == 0
            and wallet_drift == 0
            and head_consistent
            and not invalid_entries
            and not hash_mismatches
        )

        return {
            "total_entries_verified": len(entries),
            "invalid_entries": invalid_entries,
            "total_locked": str(locked),
            "total_released": str(released),
            "total_in_escrow": str(in_escrow),
            "drift": str(drift),
            "wallet_drift": str(wallet_drift),
            "hash_mismatches": hash_mismatches,
            "head_consistent": head_consistent,
            "integrity_status": "OK" if ok else "ALERT",
        }
