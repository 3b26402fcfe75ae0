"""
=============================================================================
ADIVINA - Control de Acceso
=============================================================================
Autoriza las operaciones restringidas:
- end_game: sólo el anfitrión de la partida
- resolver un intento: sólo su jugador o el visor que designó

create_game y make_guess están abiertas a cualquier identidad, incluido el
anfitrión.
=============================================================================
"""

from .errors import Unauthorized
from .models import Game, Guess


class AccessControl:

    def require_host(self, game: Game, caller: str):
        if caller != game.host:
            raise Unauthorized(f"Sólo el anfitrión puede realizar esta acción en la partida {game.id}")

    def require_guess_reader(self, guess: Guess, caller: str):
        if caller not in {party for party in (guess.player, guess.viewer) if party}:
            raise Unauthorized(f"{caller} no puede resolver el intento {guess.id}")
