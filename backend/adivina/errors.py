"""
=============================================================================
ADIVINA - Taxonomía de Errores
=============================================================================
Cada fallo identifica exactamente la precondición que no se cumplió
mediante un código `reason` estable. Todo error aborta la transacción
completa del ledger.
=============================================================================
"""


class GameError(Exception):
    """Error base del motor de juego."""

    category = "GameError"
    reason = "GameError"
    http_status = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.reason)
        self.message = message or self.reason

    def to_dict(self) -> dict:
        return {
            "error": self.category,
            "reason": self.reason,
            "detail": self.message,
        }


# =============================================================================
# CATEGORÍAS
# =============================================================================

class ValidationError(GameError):
    """Ciphertext/prueba mal formados o configuración fuera de rango."""
    category = "ValidationError"
    http_status = 422


class StateError(GameError):
    """La operación no es válida en el estado actual."""
    category = "StateError"
    http_status = 409


class AuthorizationError(GameError):
    category = "AuthorizationError"
    http_status = 403


class LimitError(GameError):
    category = "LimitError"
    http_status = 429


class FundingError(GameError):
    category = "FundingError"
    http_status = 402


# =============================================================================
# ERRORES CONCRETOS
# =============================================================================

class InvalidCiphertext(ValidationError):
    reason = "InvalidCiphertext"


class InvalidMaxAttempts(ValidationError):
    reason = "InvalidMaxAttempts"


class InvalidAmount(ValidationError):
    reason = "InvalidAmount"


class GameNotFound(StateError):
    reason = "GameNotFound"
    http_status = 404


class GameNotActive(StateError):
    reason = "GameNotActive"


class DoubleRelease(StateError):
    reason = "DoubleRelease"


class AlreadyFunded(StateError):
    reason = "AlreadyFunded"


class GuessNotFound(StateError):
    reason = "GuessNotFound"
    http_status = 404


class GuessAlreadyResolved(StateError):
    reason = "GuessAlreadyResolved"


class Unauthorized(AuthorizationError):
    reason = "Unauthorized"


class MaxAttemptsReached(LimitError):
    reason = "MaxAttemptsReached"


class InsufficientPrize(FundingError):
    reason = "InsufficientPrize"
