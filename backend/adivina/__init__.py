"""
=============================================================================
ADIVINA - Motor de Juego Confidencial
=============================================================================
El anfitrión deposita un premio y compromete un número secreto cifrado.
Los jugadores envían intentos cifrados y sólo ellos pueden conocer el
resultado (IGUAL / MENOR / MAYOR) de su propio intento.
=============================================================================
"""

__version__ = "0.1.0"
