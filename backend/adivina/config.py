"""
=============================================================================
ADIVINA - Configuración
=============================================================================
Constantes del juego (no configurables en tiempo de llamada) y parámetros
de entorno del servidor.
=============================================================================
"""

import os
from decimal import Decimal


class GameConfig:
    """Reglas fijas del juego."""

    # Premio mínimo en unidades nativas
    MIN_PRIZE = Decimal("0.01")

    # Montos en Numeric(18, 8): 10 dígitos enteros, 8 decimales
    AMOUNT_QUANTUM = Decimal("0.00000001")
    MAX_AMOUNT = Decimal("9999999999.99999999")

    # Dominio del número secreto y de los intentos
    MIN_GUESS = 1
    MAX_GUESS = 100
    CIPHERTEXT_BITS = 8

    # Límite de intentos por jugador
    MIN_ATTEMPTS = 1
    MAX_ATTEMPTS = 20


class SocketConfig:
    """Configuración del canal en tiempo real."""

    HEARTBEAT_INTERVAL = 3
    HEARTBEAT_TIMEOUT = 10
    LOBBY_ROOM = "lobby"


DATABASE_URL = os.environ.get("ADIVINA_DATABASE_URL", "sqlite+aiosqlite:///./adivina.db")

# Clave HMAC del proveedor de cifrado de desarrollo (se genera si no existe)
PROVIDER_KEY = os.environ.get("ADIVINA_PROVIDER_KEY")
