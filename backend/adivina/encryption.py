"""
=============================================================================
ADIVINA - Proveedor de Cifrado Homomórfico
=============================================================================
El motor consume el esquema de cifrado a través de una interfaz de
capacidades; nunca ve texto plano de los operandos.

Incluye MockEncryptionProvider: proveedor de desarrollo y pruebas (equivale
al "modo mock" de un coprocesador FHE). Guarda los valores detrás de handles
opacos y firma las pruebas de entrada con HMAC-SHA256.
=============================================================================
"""

import hashlib
import hmac
import secrets
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Optional, Set, Tuple

from .config import GameConfig


class DecryptionDenied(Exception):
    """El solicitante no tiene permiso de descifrado sobre el handle."""


@dataclass(frozen=True)
class EncryptedInput:
    """Handle + prueba de buena formación emitidos al cifrar una entrada."""
    handle: str
    proof: str


class EncryptionProvider(ABC):
    """Capacidades del proveedor de cifrado que usa el motor."""

    @abstractmethod
    def validate(self, ciphertext: str, proof: str, owner: str) -> bool:
        """Verifica la prueba de buena formación de un ciphertext de `owner`."""

    @abstractmethod
    def compare(self, a: str, b: str) -> str:
        """
        Compara homomórficamente dos ciphertexts.
        Retorna un ciphertext de: 0 si a == b, 1 si a < b, 2 si a > b.
        """

    @abstractmethod
    def allow(self, ciphertext: str, party: str) -> None:
        """Concede a `party` el permiso de descifrar `ciphertext`."""

    @abstractmethod
    def decrypt_for(self, ciphertext: str, requester: str) -> int:
        """Descifra para un solicitante autorizado; DecryptionDenied si no lo está."""

    def discard(self, ciphertext: str) -> None:
        """Libera un ciphertext que nunca llegó a confirmarse. Opcional."""


# =============================================================================
# PROVEEDOR DE DESARROLLO
# =============================================================================

@dataclass
class _Ciphertext:
    value: int
    bits: int
    owner: Optional[str] = None


class MockEncryptionProvider(EncryptionProvider):
    """
    Proveedor en memoria para desarrollo y pruebas.

    - encrypt() aplica la prueba de rango del dominio en el punto de cifrado.
    - compare() produce un nuevo handle sin exponer los operandos.
    - decrypt_for() respeta la lista de control de acceso por handle.
    """

    def __init__(self, key: Optional[str] = None, bits: int = GameConfig.CIPHERTEXT_BITS):
        self._key = (key or secrets.token_hex(32)).encode()
        self.bits = bits
        self._store: Dict[str, _Ciphertext] = {}
        self._acl: Dict[str, Set[str]] = defaultdict(set)

    def _new_handle(self) -> str:
        return "0x" + secrets.token_hex(32)

    def _sign(self, handle: str, owner: str) -> str:
        return hmac.new(self._key, f"{handle}:{owner}".encode(), hashlib.sha256).hexdigest()

    def encrypt(
        self,
        value: int,
        owner: str,
        domain: Tuple[int, int] = (GameConfig.MIN_GUESS, GameConfig.MAX_GUESS),
    ) -> EncryptedInput:
        """Cifra una entrada de `owner` y emite su prueba de validez y rango."""
        if not domain[0] <= value <= domain[1]:
            raise ValueError(f"Valor fuera del dominio {domain[0]}..{domain[1]}")
        if value >= 2 ** self.bits:
            raise ValueError(f"Valor no cabe en {self.bits} bits")

        handle = self._new_handle()
        self._store[handle] = _Ciphertext(value=value, bits=self.bits, owner=owner)
        return EncryptedInput(handle=handle, proof=self._sign(handle, owner))

    def validate(self, ciphertext: str, proof: str, owner: str) -> bool:
        record = self._store.get(ciphertext)
        if record is None or record.owner != owner or not proof:
            return False
        return hmac.compare_digest(proof, self._sign(ciphertext, owner))

    def compare(self, a: str, b: str) -> str:
        left, right = self._store.get(a), self._store.get(b)
        if left is None or right is None:
            raise KeyError("Handle desconocido")

        if left.value == right.value:
            code = 0
        elif left.value < right.value:
            code = 1
        else:
            code = 2

        handle = self._new_handle()
        self._store[handle] = _Ciphertext(value=code, bits=self.bits)
        return handle

    def allow(self, ciphertext: str, party: str) -> None:
        if ciphertext not in self._store:
            raise KeyError("Handle desconocido")
        self._acl[ciphertext].add(party)

    def discard(self, ciphertext: str) -> None:
        self._store.pop(ciphertext, None)
        self._acl.pop(ciphertext, None)

    def decrypt_for(self, ciphertext: str, requester: str) -> int:
        record = self._store.get(ciphertext)
        if record is None or requester not in self._acl.get(ciphertext, set()):
            raise DecryptionDenied(f"{requester} no puede descifrar {ciphertext}")
        return record.value
