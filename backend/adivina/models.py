"""
=============================================================================
ADIVINA - Modelos de Base de Datos (SQLAlchemy)
=============================================================================
Estado persistente del motor: partidas, contadores de intentos, fideicomiso
por partida, intentos pendientes de resolución y el ledger de valor.

Principios de Diseño:
- Confidencialidad: sólo se guardan handles opacos, nunca texto plano
- Integridad Financiera: cada movimiento de valor queda encadenado por hash
- Inmutabilidad: ningún registro se elimina, sólo transiciona
=============================================================================
"""

import hashlib
import secrets
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional, List
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
    func,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# =============================================================================
# ENUMERACIONES DEL SISTEMA
# =============================================================================

class GameState(str, PyEnum):
    """
    Máquina de Estados de la partida.
    ACTIVE transiciona a exactamente un estado terminal.
    """
    ACTIVE = "ACTIVE"
    WON = "WON"        # Terminal: un jugador acertó
    ENDED = "ENDED"    # Terminal: el anfitrión cerró la partida


class GuessStatus(str, PyEnum):
    """Estado del resultado cifrado de un intento."""
    PENDING = "PENDING"      # Resultado cifrado emitido, sin resolver
    RESOLVED = "RESOLVED"    # Descifrado por su dueño


class LedgerEntryType(str, PyEnum):
    """Movimientos de valor registrados en el ledger."""
    ESCROW_LOCK = "ESCROW_LOCK"        # Premio recibido en fideicomiso
    ESCROW_RELEASE = "ESCROW_RELEASE"  # Premio liberado a un destinatario


# Precisión de montos: Numeric(18, 8)
AMOUNT = Numeric(18, 8)


# =============================================================================
# BASE DECLARATIVA
# =============================================================================

class Base(AsyncAttrs, DeclarativeBase):
    """Clase base para todos los modelos con soporte async."""
    pass


# =============================================================================
# TABLA: REGISTRY (Contador de identificadores)
# =============================================================================

class RegistryCounter(Base):
    """
    Fila única con el próximo identificador de partida.
    Se lee y actualiza dentro de la transacción que crea la partida, de modo
    que una creación fallida no consume ningún id.
    """
    __tablename__ = "registry_counter"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    next_game_id: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class LedgerHead(Base):
    """
    Cabeza de la cadena del ledger (fila única).
    Se bloquea con FOR UPDATE antes de anexar una entrada: dos transacciones
    de partidas distintas nunca encadenan sobre el mismo hash.
    """
    __tablename__ = "ledger_head"

    ROW_ID = 1

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    last_entry_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    entries: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


# =============================================================================
# TABLA: GAMES (Partidas)
# =============================================================================

class Game(Base):
    """
    Partida de adivinanza confidencial.

    SEGURIDAD: el secreto es un handle opaco del proveedor de cifrado. Se
    escribe una sola vez al crear la partida y nunca se revela.
    """
    __tablename__ = "games"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    host: Mapped[str] = mapped_column(String(128), nullable=False)

    # Secreto cifrado + prueba de validez
    secret_handle: Mapped[str] = mapped_column(String(128), nullable=False)
    secret_proof: Mapped[str] = mapped_column(Text, nullable=False)

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)

    # ==========================================================================
    # ESTADO (FSM)
    # ==========================================================================
    state: Mapped[GameState] = mapped_column(
        Enum(GameState),
        default=GameState.ACTIVE,
        nullable=False
    )
    winner: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    ended_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    prize: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)

    # Relaciones
    escrow: Mapped[Optional["EscrowAccount"]] = relationship(back_populates="game")
    attempts: Mapped[List["PlayerAttempt"]] = relationship(back_populates="game")
    guesses: Mapped[List["Guess"]] = relationship(back_populates="game")

    __table_args__ = (
        Index("idx_games_host", "host"),
        Index("idx_games_state", "state"),
        CheckConstraint("max_attempts >= 1", name="check_max_attempts_positive"),
        CheckConstraint("prize > 0", name="check_prize_positive"),
    )


# =============================================================================
# TABLA: PLAYER_ATTEMPTS (Contador de intentos por jugador)
# =============================================================================

class PlayerAttempt(Base):
    """Intentos aceptados de un jugador en una partida. Se crea al primer intento."""
    __tablename__ = "player_attempts"

    game_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("games.id", ondelete="RESTRICT"),
        primary_key=True
    )
    player: Mapped[str] = mapped_column(String(128), primary_key=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    game: Mapped["Game"] = relationship(back_populates="attempts")

    __table_args__ = (
        CheckConstraint("attempts >= 0", name="check_attempts_non_negative"),
    )


# =============================================================================
# TABLA: ESCROW (Fideicomiso del premio)
# =============================================================================

class EscrowAccount(Base):
    """
    Fideicomiso del premio de una partida.
    `released` pasa a True exactamente una vez; después la cuenta queda
    congelada.
    """
    __tablename__ = "escrow_accounts"

    game_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("games.id", ondelete="RESTRICT"),
        primary_key=True
    )
    balance: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"), nullable=False)
    funded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    released: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recipient: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    released_amount: Mapped[Optional[Decimal]] = mapped_column(AMOUNT, nullable=True)
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    locked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    game: Mapped["Game"] = relationship(back_populates="escrow")

    __table_args__ = (
        CheckConstraint("balance >= 0", name="check_escrow_balance_positive"),
    )


# =============================================================================
# TABLA: GUESSES (Resultados cifrados pendientes)
# =============================================================================

class Guess(Base):
    """
    Intento aceptado con su resultado cifrado.

    El resultado en texto plano nunca se persiste: sólo el jugador (o su
    visor designado) puede descifrarlo al resolver el intento.
    """
    __tablename__ = "guesses"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    game_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("games.id", ondelete="RESTRICT"),
        nullable=False
    )
    player: Mapped[str] = mapped_column(String(128), nullable=False)
    viewer: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    attempt_index: Mapped[int] = mapped_column(Integer, nullable=False)

    guess_handle: Mapped[str] = mapped_column(String(128), nullable=False)
    result_handle: Mapped[str] = mapped_column(String(128), nullable=False)

    status: Mapped[GuessStatus] = mapped_column(
        Enum(GuessStatus),
        default=GuessStatus.PENDING,
        nullable=False
    )
    is_winning: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    game: Mapped["Game"] = relationship(back_populates="guesses")

    __table_args__ = (
        UniqueConstraint("game_id", "player", "attempt_index", name="unique_player_attempt_index"),
        Index("idx_guesses_game", "game_id"),
        Index("idx_guesses_player", "player"),
    )


# =============================================================================
# TABLA: WALLETS (Saldos de identidades)
# =============================================================================

class Wallet(Base):
    """
    Saldo acreditado por el ledger a una identidad.

    SEGURIDAD: balance_hash es SHA-256 de identidad + saldo + salt. Una
    modificación directa del saldo en la BD rompe el hash.
    """
    __tablename__ = "wallets"

    identity: Mapped[str] = mapped_column(String(128), primary_key=True)
    balance: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"), nullable=False)

    # Fórmula: SHA256(identity:balance:balance_salt)
    balance_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    balance_salt: Mapped[str] = mapped_column(String(32), nullable=False)

    # Versión para control de concurrencia optimista
    balance_version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="check_wallet_balance_positive"),
    )

    def compute_balance_hash(self) -> str:
        """
        Calcula el hash SHA-256 del saldo.
        CRÍTICO: debe recalcularse SIEMPRE que cambie el saldo.
        """
        balance = Decimal(self.balance or 0).normalize()
        hash_input = f"{self.identity}:{balance}:{self.balance_salt}"
        return hashlib.sha256(hash_input.encode()).hexdigest()

    def verify_balance_integrity(self) -> bool:
        """Retorna False si el saldo fue alterado fuera del ledger."""
        return secrets.compare_digest(self.balance_hash, self.compute_balance_hash())

    @staticmethod
    def generate_balance_salt() -> str:
        return secrets.token_hex(16)


# =============================================================================
# TABLA: LEDGER_ENTRIES (Movimientos de valor encadenados)
# =============================================================================

class LedgerEntry(Base):
    """
    Libro Mayor de movimientos de valor.
    Cada entrada se encadena con la anterior para detectar manipulación.
    """
    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("games.id", ondelete="RESTRICT"),
        nullable=False
    )
    entry_type: Mapped[LedgerEntryType] = mapped_column(Enum(LedgerEntryType), nullable=False)
    party: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)

    # Fórmula: SHA256(prev_hash:type:game_id:party:amount)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    previous_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    __table_args__ = (
        Index("idx_ledger_game", "game_id"),
        Index("idx_ledger_type", "entry_type"),
        CheckConstraint("amount >= 0", name="check_entry_amount_positive"),
    )

    def compute_entry_hash(self, previous_hash: Optional[str] = None) -> str:
        prev = previous_hash or "GENESIS"
        amount = Decimal(self.amount).normalize()
        entry_type = LedgerEntryType(self.entry_type).value
        hash_input = f"{prev}:{entry_type}:{self.game_id}:{self.party}:{amount}"
        return hashlib.sha256(hash_input.encode()).hexdigest()


# =============================================================================
# TABLA: GAME_EVENTS (Registro de eventos emitidos)
# =============================================================================

class GameEvent(Base):
    """Evento emitido por una transacción confirmada."""
    __tablename__ = "game_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    __table_args__ = (
        Index("idx_events_game", "game_id"),
    )


# =============================================================================
# EVENT LISTENERS PARA INTEGRIDAD AUTOMÁTICA
# =============================================================================

@event.listens_for(Wallet, "before_insert")
def wallet_before_insert(mapper, connection, target: Wallet):
    """Genera el salt y hash inicial del saldo antes de insertar."""
    if not target.balance_salt:
        target.balance_salt = Wallet.generate_balance_salt()
    target.balance_hash = target.compute_balance_hash()


@event.listens_for(Wallet, "before_update")
def wallet_before_update(mapper, connection, target: Wallet):
    """Actualiza el hash del saldo y la versión al modificar."""
    target.balance_version += 1
    target.balance_hash = target.compute_balance_hash()
