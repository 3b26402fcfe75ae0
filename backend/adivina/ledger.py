"""
=============================================================================
ADIVINA - Capa de Ledger / Transacciones
=============================================================================
Cada operación externa se ejecuta como UNA transacción atómica:
- Serialización por partida (lock) para las secuencias leer-modificar-escribir;
  los locks se descartan cuando ninguna llamada los usa
- Cadena de hashes global: la cabeza se bloquea (FOR UPDATE) al anexar
- Transacción de base de datos: confirma todo o nada
- Identidad del llamante y valor adjunto a la llamada
- Primitiva de transferencia de valor (wallet + entrada encadenada)
- Emisión de eventos: se persisten en la transacción y se publican sólo
  después del commit
=============================================================================
"""

import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .database import Database
from .models import GameEvent, LedgerEntry, LedgerEntryType, LedgerHead, Wallet


@dataclass
class LedgerEvent:
    """Evento confirmado listo para publicarse."""
    name: str
    game_id: int
    payload: Dict[str, Any]


Publisher = Callable[[LedgerEvent], Awaitable[None]]


@dataclass
class LedgerTransaction:
    """Contexto de una llamada: sesión, llamante y valor adjunto."""
    session: AsyncSession
    caller: str
    value: Decimal = Decimal("0")

    events: List[LedgerEvent] = field(default_factory=list)
    _after_commit: List[Callable[[], None]] = field(default_factory=list)
    _on_rollback: List[Callable[[], None]] = field(default_factory=list)
    _value_accepted: bool = False

    def emit(self, name: str, game_id: int, **payload) -> LedgerEvent:
        """Registra un evento; se publica sólo si la transacción confirma."""
        data = {"game_id": game_id, **payload}
        self.session.add(GameEvent(game_id=game_id, name=name, payload=data))
        ledger_event = LedgerEvent(name=name, game_id=game_id, payload=data)
        self.events.append(ledger_event)
        return ledger_event

    def after_commit(self, callback: Callable[[], None]):
        self._after_commit.append(callback)

    def on_rollback(self, callback: Callable[[], None]):
        """Deshace efectos fuera de la base de datos si la transacción revierte."""
        self._on_rollback.append(callback)

    async def _append_entry(
        self,
        entry_type: LedgerEntryType,
        game_id: int,
        party: str,
        amount: Decimal
    ) -> LedgerEntry:
        # Bloquea la cabeza hasta el commit: la cadena nunca se bifurca
        head = await self.session.get(LedgerHead, LedgerHead.ROW_ID, with_for_update=True)
        if head is None:
            head = LedgerHead(id=LedgerHead.ROW_ID, entries=0)
            self.session.add(head)
        previous_hash = head.last_hash

        entry = LedgerEntry(
            game_id=game_id,
            entry_type=entry_type,
            party=party,
            amount=amount,
            previous_hash=previous_hash,
        )
        entry.entry_hash = entry.compute_entry_hash(previous_hash)
        self.session.add(entry)
        await self.session.flush()

        head.last_entry_id = entry.id
        head.last_hash = entry.entry_hash
        head.entries += 1
        return entry

    async def accept_value(self, game_id: int) -> LedgerEntry:
        """Custodia el valor adjunto a la llamada para una partida."""
        if self._value_accepted:
            raise RuntimeError("El valor de la llamada ya fue custodiado")
        self._value_accepted = True
        return await self._append_entry(LedgerEntryType.ESCROW_LOCK, game_id, self.caller, self.value)

    async def pay(self, recipient: str, amount: Decimal, game_id: int) -> LedgerEntry:
        """Acredita `amount` a la wallet de `recipient`."""
        wallet = await self.session.get(Wallet, recipient, with_for_update=True)
        if wallet is None:
            wallet = Wallet(identity=recipient, balance=Decimal("0"))
            self.session.add(wallet)
            await self.session.flush()

        wallet.balance = Decimal(wallet.balance) + amount
        entry = await self._append_entry(LedgerEntryType.ESCROW_RELEASE, game_id, recipient, amount)

        print(f"[LEDGER] Partida {game_id}: +{amount} -> {recipient}")
        return entry


class Ledger:
    """
    Ejecuta transacciones serializadas sobre el estado persistente.

    Las llamadas sobre la misma partida nunca se intercalan. Con SQLite
    (un solo escritor) todas las transacciones comparten un único lock.
    """

    REGISTRY_SCOPE = "registry"

    def __init__(self, database: Database, publisher: Optional[Publisher] = None):
        self.database = database
        self.publisher = publisher
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Counter = Counter()

    def _lock_key(self, scope: Optional[int]) -> str:
        if self.database.is_sqlite:
            return "global"
        return self.REGISTRY_SCOPE if scope is None else f"game:{scope}"

    @property
    def active_scopes(self) -> List[str]:
        """Scopes con llamadas en curso o en espera."""
        return list(self._locks)

    @asynccontextmanager
    async def _scoped_lock(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    @asynccontextmanager
    async def transaction(
        self,
        caller: str,
        scope: Optional[int] = None,
        value: Decimal = Decimal("0")
    ):
        """
        Abre una transacción atómica.

        scope: id de la partida afectada (None para el registro).
        Cualquier excepción revierte TODO lo hecho dentro del bloque.
        """
        async with self._scoped_lock(self._lock_key(scope)):
            async with self.database.session_factory() as session:
                tx = LedgerTransaction(session=session, caller=caller, value=value)
                try:
                    async with session.begin():
                        yield tx
                except BaseException:
                    for callback in tx._on_rollback:
                        callback()
                    raise

        # Sólo se llega aquí si la transacción confirmó
        for callback in tx._after_commit:
            callback()
        await self._publish(tx.events)

    @asynccontextmanager
    async def snapshot(self):
        """Sesión de sólo lectura."""
        async with self.database.session_factory() as session:
            yield session

    async def _publish(self, events: List[LedgerEvent]):
        if not self.publisher:
            return
        for ledger_event in events:
            try:
                await self.publisher(ledger_event)
            except Exception as e:
                # El estado ya está confirmado; la difusión no lo revierte
                print(f"[LEDGER] Error publicando {ledger_event.name}: {e}")
