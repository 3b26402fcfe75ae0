"""
=============================================================================
ADIVINA - Fideicomiso (Escrow) del Premio
=============================================================================
Custodia el premio de cada partida. Se financia una sola vez al crear la
partida y se libera una sola vez, completo, a un único destinatario.
Es el único camino por el que los fondos salen del fideicomiso.
=============================================================================
"""

from datetime import datetime, timezone
from decimal import Decimal

from .errors import AlreadyFunded, DoubleRelease, GameNotFound
from .ledger import LedgerTransaction
from .models import EscrowAccount


class EscrowManager:

    async def fund(self, tx: LedgerTransaction, game_id: int, amount: Decimal) -> EscrowAccount:
        """Bloquea el valor adjunto a la llamada como premio de la partida."""
        account = await tx.session.get(EscrowAccount, game_id, with_for_update=True)
        if account is not None and account.funded:
            raise AlreadyFunded(f"El fideicomiso de la partida {game_id} ya fue financiado")

        if account is None:
            account = EscrowAccount(game_id=game_id)
            tx.session.add(account)

        account.balance = amount
        account.funded = True
        account.released = False
        await tx.accept_value(game_id)
        return account

    async def release(self, tx: LedgerTransaction, game_id: int, recipient: str) -> Decimal:
        """
        Transfiere el saldo completo a `recipient` y congela la cuenta.
        Retorna el monto liberado.
        """
        account = await tx.session.get(EscrowAccount, game_id, with_for_update=True)
        if account is None:
            raise GameNotFound(f"La partida {game_id} no tiene fideicomiso")
        if account.released:
            raise DoubleRelease(f"El fideicomiso de la partida {game_id} ya fue liberado")

        amount = Decimal(account.balance)
        account.released = True
        account.recipient = recipient
        account.released_amount = amount
        account.released_at = datetime.now(timezone.utc)
        account.balance = Decimal("0")

        await tx.pay(recipient, amount, game_id)
        return amount
