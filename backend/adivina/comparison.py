"""
=============================================================================
ADIVINA - Motor de Comparación Cifrada
=============================================================================
Evalúa el secreto cifrado contra un intento cifrado sin descifrar ninguno
de los operandos. El resultado es un ciphertext sobre {0, 1, 2}.

Dominio: números 1..100 en ciphertexts de 8 bits. El rango lo garantiza la
prueba del proveedor al cifrar; aquí no se vuelve a verificar.
=============================================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .encryption import EncryptionProvider
from .errors import InvalidCiphertext


class GuessOutcome(Enum):
    """Resultado tri-estado de un intento."""
    EQUAL = 0    # Acertó
    LOWER = 1    # El intento está por debajo del secreto
    HIGHER = 2   # El intento está por encima del secreto


@dataclass(frozen=True)
class EncryptedResult:
    handle: str
    player: str
    viewer: Optional[str] = None

    @property
    def readers(self):
        return {party for party in (self.player, self.viewer) if party}


class ComparisonEngine:

    def __init__(self, provider: EncryptionProvider):
        self.provider = provider

    def compare(
        self,
        secret_handle: str,
        guess_handle: str,
        guess_proof: str,
        submitter: str,
        viewer: Optional[str] = None
    ) -> EncryptedResult:
        """Calcula el resultado cifrado del intento de `submitter`."""
        if not self.provider.validate(guess_handle, guess_proof, submitter):
            raise InvalidCiphertext("Prueba inválida para el intento")

        # compare(intento, secreto): 0 igual, 1 intento < secreto, 2 intento > secreto
        handle = self.provider.compare(guess_handle, secret_handle)
        return EncryptedResult(handle=handle, player=submitter, viewer=viewer)

    def grant(self, result: EncryptedResult):
        """Descifrado selectivo: sólo el jugador y su visor designado."""
        for party in result.readers:
            self.provider.allow(result.handle, party)

    def discard(self, result: EncryptedResult):
        """Descarta un resultado cuyo intento fue revertido."""
        self.provider.discard(result.handle)

    def reveal(self, result_handle: str, requester: str) -> GuessOutcome:
        return GuessOutcome(self.provider.decrypt_for(result_handle, requester))
