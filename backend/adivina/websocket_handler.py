"""
=============================================================================
ADIVINA - Manejador de WebSockets (Socket.IO)
=============================================================================
Difusión en tiempo real de los eventos confirmados por el ledger.

Salas:
- lobby:        todas las conexiones; recibe game:created
- game_{id}:    espectadores de una partida; reciben game:guess, game:won,
                game:ended

Nunca se difunde un resultado de intento: sólo que el intento ocurrió.
=============================================================================
"""

import time

import socketio

from .config import SocketConfig
from .ledger import LedgerEvent


# Evento del ledger -> evento del socket
SOCKET_EVENTS = {
    "GameCreated": "game:created",
    "GuessMade": "game:guess",
    "GameWon": "game:won",
    "GameEnded": "game:ended",
}


def game_room(game_id: int) -> str:
    return f"game_{game_id}"


# =============================================================================
# SERVIDOR SOCKET.IO
# =============================================================================

sio = socketio.AsyncServer(
    async_mode='asgi',
    cors_allowed_origins='*',
    ping_timeout=SocketConfig.HEARTBEAT_TIMEOUT,
    ping_interval=SocketConfig.HEARTBEAT_INTERVAL
)


# =============================================================================
# HANDLERS DE EVENTOS
# =============================================================================

@sio.event
async def connect(sid: str, environ: dict, auth: dict = None):
    print(f"[WS] Nueva conexión: {sid}")
    await sio.enter_room(sid, SocketConfig.LOBBY_ROOM)
    await sio.emit('connected', {
        'sid': sid,
        'message': 'Conectado a Adivina',
        'server_time': time.time()
    }, room=sid)


@sio.event
async def disconnect(sid: str):
    print(f"[WS] Desconexión: {sid}")


@sio.event
async def watch_game(sid: str, data: dict):
    """
    Suscribe al cliente a los eventos de una partida.

    Payload: {'game_id': int}
    """
    try:
        game_id = int(data['game_id'])
    except (KeyError, TypeError, ValueError):
        await sio.emit('error', {'message': 'game_id inválido'}, room=sid)
        return

    await sio.enter_room(sid, game_room(game_id))
    await sio.emit('watching', {'game_id': game_id}, room=sid)


@sio.event
async def unwatch_game(sid: str, data: dict):
    try:
        game_id = int(data['game_id'])
    except (KeyError, TypeError, ValueError):
        await sio.emit('error', {'message': 'game_id inválido'}, room=sid)
        return

    await sio.leave_room(sid, game_room(game_id))


# =============================================================================
# PUBLICACIÓN DESDE EL LEDGER
# =============================================================================

async def publish_event(ledger_event: LedgerEvent):
    """Publisher del ledger: se invoca sólo después del commit."""
    socket_event = SOCKET_EVENTS.get(ledger_event.name)
    if socket_event is None:
        return

    room = SocketConfig.LOBBY_ROOM if ledger_event.name == "GameCreated" else game_room(ledger_event.game_id)
    await sio.emit(socket_event, ledger_event.payload, room=room)


def create_socket_app(app) -> socketio.ASGIApp:
    """Envuelve la app FastAPI: Socket.IO en /socket.io, el resto a FastAPI."""
    return socketio.ASGIApp(sio, other_asgi_app=app)
