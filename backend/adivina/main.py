"""
=============================================================================
ADIVINA - Punto de Entrada Principal (FastAPI + Socket.IO)
=============================================================================
Servidor del juego de adivinanza confidencial: el anfitrión cifra un número
secreto y deposita un premio; los jugadores envían intentos cifrados y sólo
ellos descifran si acertaron, quedaron por debajo o por encima.

Integra:
- FastAPI para REST API
- Socket.IO para difusión de eventos en tiempo real
- Middleware de seguridad y CORS
=============================================================================
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api import fhe_router, router as games_router, wallet_router
from .config import DATABASE_URL, PROVIDER_KEY
from .database import Database
from .encryption import MockEncryptionProvider
from .errors import GameError
from .game_engine import GameService
from .ledger import Ledger
from .websocket_handler import create_socket_app, publish_event


def build_service(database_url: str = DATABASE_URL) -> GameService:
    """Servicio con el proveedor de desarrollo y difusión por Socket.IO."""
    ledger = Ledger(Database(database_url), publisher=publish_event)
    return GameService(ledger, MockEncryptionProvider(PROVIDER_KEY))


# =============================================================================
# LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Gestiona el ciclo de vida de la aplicación."""
    service: GameService = app.state.service
    print("[ADIVINA] Iniciando servidor...")
    await service.ledger.database.create_all()
    print(f"[ADIVINA] Base de datos lista: {service.ledger.database.url}")
    print(f"[ADIVINA] Proveedor de cifrado: {type(service.provider).__name__}")
    yield
    print("[ADIVINA] Cerrando servidor...")
    await service.ledger.database.dispose()


# =============================================================================
# APLICACIÓN FASTAPI
# =============================================================================

def create_app(service: Optional[GameService] = None) -> FastAPI:
    app = FastAPI(
        title="Adivina API",
        description="""
        ## Juego de Adivinanza Confidencial

        ### Características:
        - **Secreto cifrado**: nadie, ni el servidor, ve el número secreto
        - **Descifrado selectivo**: cada resultado sólo lo lee su jugador
        - **Fideicomiso**: el premio se libera una sola vez, completo

        ### Estados de Partida (FSM):
        ACTIVE → WON (un jugador acierta) | ENDED (el anfitrión cierra)
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.service = service or build_service()

    # =========================================================================
    # MIDDLEWARE
    # =========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        """Agrega headers de seguridad a las respuestas."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    @app.exception_handler(GameError)
    async def game_error_handler(request: Request, exc: GameError):
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    # =========================================================================
    # ENDPOINTS - HEALTH & STATUS
    # =========================================================================

    @app.get("/health")
    async def health_check():
        """Endpoint de health check para Docker y load balancers."""
        return {
            "status": "healthy",
            "service": "adivina-backend",
            "version": __version__,
            "timestamp": time.time()
        }

    @app.get("/")
    async def root():
        return {
            "message": "Bienvenido a Adivina API",
            "docs": "/docs",
            "health": "/health",
            "websocket": "/socket.io",
            "version": __version__
        }

    app.include_router(games_router, prefix="/api/v1")
    app.include_router(wallet_router, prefix="/api/v1")
    app.include_router(fhe_router, prefix="/api/v1")
    return app


app = create_app()

# Socket.IO envuelve a FastAPI para que los upgrades de WebSocket funcionen
combined_app = create_socket_app(app)
