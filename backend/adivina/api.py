"""
=============================================================================
ADIVINA - API REST
=============================================================================
Endpoints del motor de juego. La identidad del llamante viaja en el header
X-Caller; el valor adjunto a create_game viaja en el cuerpo.

Routers:
- router:        partidas e intentos (/games)
- wallet_router: saldos y auditoría del ledger
- fhe_router:    relay del proveedor de cifrado de desarrollo
=============================================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field

from .encryption import DecryptionDenied, MockEncryptionProvider
from .game_engine import GameService
from .models import GameState
from .registry import GameSnapshot


router = APIRouter(prefix="/games", tags=["Games"])
wallet_router = APIRouter(tags=["Wallets"])
fhe_router = APIRouter(prefix="/fhe", tags=["Encryption"])


# =============================================================================
# DEPENDENCIAS
# =============================================================================

def get_service(request: Request) -> GameService:
    return request.app.state.service


async def get_caller(
    x_caller: str = Header(..., alias="X-Caller", min_length=1, max_length=128)
) -> str:
    """Identidad autenticada del llamante."""
    return x_caller


# =============================================================================
# SCHEMAS
# =============================================================================

class CreateGameRequest(BaseModel):
    """Secreto cifrado + configuración + premio adjunto."""
    secret_handle: str = Field(..., min_length=1, max_length=128)
    proof: str = Field(..., min_length=1)
    max_attempts: int
    value: Decimal = Field(..., ge=0, max_digits=18, decimal_places=8)


class CreateGameResponse(BaseModel):
    game_id: int


class GuessRequest(BaseModel):
    guess_handle: str = Field(..., min_length=1, max_length=128)
    proof: str = Field(..., min_length=1)
    viewer: Optional[str] = Field(None, min_length=1, max_length=128)


class GuessReceiptResponse(BaseModel):
    guess_id: UUID
    game_id: int
    player: str
    attempt_index: int
    result_handle: str
    status: str


class GuessResolutionResponse(BaseModel):
    guess_id: UUID
    game_id: int
    outcome: str
    is_winning: bool
    game_state: str


class EndGameResponse(BaseModel):
    game_id: int
    state: str
    recipient: str
    amount: str


class GameInfoResponse(BaseModel):
    game_id: int
    host: str
    start_time: datetime
    max_attempts: int
    state: str
    winner: Optional[str]
    ended_by: Optional[str]
    prize: str


class AttemptsResponse(BaseModel):
    game_id: int
    player: str
    attempts: int


class GameEventResponse(BaseModel):
    id: int
    name: str
    payload: dict
    created_at: datetime


class WalletResponse(BaseModel):
    identity: str
    balance: str


class EncryptRequest(BaseModel):
    value: int
    owner: str = Field(..., min_length=1, max_length=128)


class EncryptResponse(BaseModel):
    handle: str
    proof: str


class DecryptRequest(BaseModel):
    handle: str = Field(..., min_length=1)


def _game_response(snapshot: GameSnapshot) -> GameInfoResponse:
    return GameInfoResponse(
        game_id=snapshot.game_id,
        host=snapshot.host,
        start_time=snapshot.start_time,
        max_attempts=snapshot.max_attempts,
        state=snapshot.state.value,
        winner=snapshot.winner,
        ended_by=snapshot.ended_by,
        prize=str(snapshot.prize),
    )


# =============================================================================
# ENDPOINTS: PARTIDAS
# =============================================================================

@router.post("", response_model=CreateGameResponse, status_code=201)
async def create_game(
    request: CreateGameRequest,
    caller: str = Depends(get_caller),
    service: GameService = Depends(get_service)
):
    """Crea una partida; el valor adjunto queda en fideicomiso como premio."""
    game_id = await service.create_game(
        caller,
        request.secret_handle,
        request.proof,
        request.max_attempts,
        request.value
    )
    return CreateGameResponse(game_id=game_id)


@router.get("", response_model=List[GameInfoResponse])
async def list_games(
    state: Optional[GameState] = None,
    service: GameService = Depends(get_service)
):
    return [_game_response(s) for s in await service.list_games(state)]


@router.get("/{game_id}", response_model=GameInfoResponse)
async def get_game_info(game_id: int, service: GameService = Depends(get_service)):
    return _game_response(await service.get_game_info(game_id))


@router.post("/{game_id}/guesses", response_model=GuessReceiptResponse, status_code=201)
async def make_guess(
    game_id: int,
    request: GuessRequest,
    caller: str = Depends(get_caller),
    service: GameService = Depends(get_service)
):
    """
    Envía un intento cifrado. El resultado queda PENDING y cifrado; sólo el
    jugador (o su visor) puede resolverlo.
    """
    receipt = await service.make_guess(
        caller, game_id, request.guess_handle, request.proof, request.viewer
    )
    return GuessReceiptResponse(
        guess_id=receipt.guess_id,
        game_id=receipt.game_id,
        player=receipt.player,
        attempt_index=receipt.attempt_index,
        result_handle=receipt.result_handle,
        status=receipt.status.value,
    )


@router.post("/{game_id}/guesses/{guess_id}/resolve", response_model=GuessResolutionResponse)
async def resolve_guess(
    game_id: int,
    guess_id: UUID,
    caller: str = Depends(get_caller),
    service: GameService = Depends(get_service)
):
    resolution = await service.resolve_guess(caller, game_id, guess_id)
    return GuessResolutionResponse(
        guess_id=resolution.guess_id,
        game_id=resolution.game_id,
        outcome=resolution.outcome.name,
        is_winning=resolution.is_winning,
        game_state=resolution.game_state.value,
    )


@router.post("/{game_id}/end", response_model=EndGameResponse)
async def end_game(
    game_id: int,
    caller: str = Depends(get_caller),
    service: GameService = Depends(get_service)
):
    """Cierre manual por el anfitrión; el premio le es devuelto."""
    closure = await service.end_game(caller, game_id)
    return EndGameResponse(
        game_id=closure.game_id,
        state=closure.state.value,
        recipient=closure.recipient,
        amount=str(closure.amount),
    )


@router.get("/{game_id}/players/{player}/attempts", response_model=AttemptsResponse)
async def get_player_attempts(
    game_id: int,
    player: str,
    service: GameService = Depends(get_service)
):
    attempts = await service.get_player_attempts(game_id, player)
    return AttemptsResponse(game_id=game_id, player=player, attempts=attempts)


@router.get("/{game_id}/events", response_model=List[GameEventResponse])
async def list_events(game_id: int, service: GameService = Depends(get_service)):
    return [GameEventResponse(**e) for e in await service.list_events(game_id)]


# =============================================================================
# ENDPOINTS: WALLETS Y AUDITORÍA
# =============================================================================

@wallet_router.get("/wallets/{identity}", response_model=WalletResponse)
async def get_wallet(identity: str, service: GameService = Depends(get_service)):
    balance = await service.get_wallet_balance(identity)
    return WalletResponse(identity=identity, balance=str(balance))


@wallet_router.get("/ledger/audit")
async def audit_ledger(service: GameService = Depends(get_service)):
    """
    Auditoría completa del ledger: cadena de hashes, custodia abierta e
    integridad de saldos.
    """
    return await service.audit_ledger()


# =============================================================================
# ENDPOINTS: RELAY DEL PROVEEDOR DE CIFRADO
# =============================================================================

def _mock_provider(service: GameService) -> MockEncryptionProvider:
    if not isinstance(service.provider, MockEncryptionProvider):
        raise HTTPException(status_code=501, detail="El proveedor configurado no expone cifrado local")
    return service.provider


@fhe_router.post("/encrypt", response_model=EncryptResponse)
async def encrypt(request: EncryptRequest, service: GameService = Depends(get_service)):
    provider = _mock_provider(service)
    try:
        encrypted = provider.encrypt(request.value, request.owner)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return EncryptResponse(handle=encrypted.handle, proof=encrypted.proof)


@fhe_router.post("/decrypt")
async def decrypt(
    request: DecryptRequest,
    caller: str = Depends(get_caller),
    service: GameService = Depends(get_service)
):
    """Descifrado selectivo: sólo para identidades en la ACL del handle."""
    provider = _mock_provider(service)
    try:
        value = provider.decrypt_for(request.handle, caller)
    except DecryptionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    return {"handle": request.handle, "value": value}
