"""
Endpoints de check-in: emisión de tokens QR, validación por el staff,
check-in manual, listado del día y WebSocket con los check-ins en vivo.
"""
from typing import List, Optional
import asyncio
import logging

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect, status
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from gymaccess.core.auth import get_current_user, get_user_from_token, UnauthenticatedException
from gymaccess.core.exceptions import AccessControlError
from gymaccess.db.redis_client import get_redis_client
from gymaccess.db.session import get_db
from gymaccess.middleware.rate_limit import limiter, RATE_LIMITS
from gymaccess.models.user import User
from gymaccess.realtime.subscriber import CheckinStreamSubscriber
from gymaccess.schemas.checkin import (
    Checkin, CheckinResult, CheckinTokenResponse, ManualCheckinRequest, ValidateTokenRequest
)
from gymaccess.services.checkin_fanout import serialize_checkin
from gymaccess.services.checkin_tokens import checkin_token_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/tokens", response_model=CheckinTokenResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMITS["token_issue"])
async def issue_checkin_token(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CheckinTokenResponse:
    """
    Genera un código QR de un solo uso para el miembro autenticado.

    El código anterior sin usar queda invalidado. Si la suscripción está
    restringida se responde 403 ACCESS_RESTRICTED.
    """
    return checkin_token_service.issue_token(db, current_user)


@router.post("/validate", response_model=CheckinResult)
@limiter.limit(RATE_LIMITS["token_validate"])
async def validate_checkin_token(
    request: Request,
    validation: ValidateTokenRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    redis_client: Redis = Depends(get_redis_client),
) -> CheckinResult:
    """
    [STAFF] Valida un código QR escaneado en la sede y registra el check-in.

    Args:
        request: Request (necesario para el rate limiting)
        validation: Token leído, sede y si se fuerza la entrada
        db: Sesión de base de datos
        current_user: Staff que escanea
        redis_client: Cliente Redis para la difusión en tiempo real

    Returns:
        CheckinResult con la decisión de acceso
    """
    return await checkin_token_service.validate_token(
        db,
        staff=current_user,
        token=validation.token,
        gym_id=validation.gym_id,
        override=validation.override,
        redis=redis_client,
    )


@router.post("/manual", response_model=CheckinResult)
async def manual_checkin(
    checkin_in: ManualCheckinRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    redis_client: Redis = Depends(get_redis_client),
) -> CheckinResult:
    """[STAFF] Registra una entrada sin QR."""
    return await checkin_token_service.manual_checkin(
        db,
        staff=current_user,
        member_id=checkin_in.member_id,
        gym_id=checkin_in.gym_id,
        redis=redis_client,
    )


@router.get("/today", response_model=List[Checkin])
async def read_today_checkins(
    gym_id: int = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[Checkin]:
    """Check-ins del día local de la sede, del más reciente al más antiguo."""
    checkins = checkin_token_service.list_today(db, viewer=current_user, gym_id=gym_id)
    return [Checkin.model_validate(c) for c in checkins]


@router.websocket("/ws")
async def checkins_websocket(
    websocket: WebSocket,
    gym_id: int = Query(...),
    access_token: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """
    WebSocket con los check-ins de una sede en tiempo real.

    Tras cada conexión al canal se reenvían los check-ins del día que el
    panel aún no había recibido; los duplicados se descartan por ID.
    """
    try:
        viewer = get_user_from_token(db, access_token)
        # Comprueba el permiso de lectura sobre la sede
        checkin_token_service.list_today(db, viewer=viewer, gym_id=gym_id)
    except (UnauthenticatedException, AccessControlError) as e:
        detail = e.detail if isinstance(e, UnauthenticatedException) else e.message
        logger.info(f"WebSocket de check-ins rechazado para sede {gym_id}: {detail}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(detail))
        return

    await websocket.accept()
    logger.info(f"WebSocket de check-ins conectado para sede {gym_id} (usuario {viewer.id})")

    async def send_checkin(record):
        await websocket.send_json({"type": "checkin", "data": record})

    async def refetch():
        db.expire_all()
        checkins = checkin_token_service.list_today(db, viewer=viewer, gym_id=gym_id)
        return [serialize_checkin(c) for c in checkins]

    subscriber = CheckinStreamSubscriber(gym_id, send_checkin, refetch)
    listener = asyncio.create_task(subscriber.run())

    try:
        await websocket.send_json({
            "type": "connection",
            "message": "Conectado a los check-ins en tiempo real",
            "gym_id": gym_id,
        })
        # El cliente no envía datos; solo se espera a que se desconecte
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"WebSocket de check-ins desconectado para sede {gym_id}")
    finally:
        subscriber.stop()
        listener.cancel()
        try:
            await listener
        except asyncio.CancelledError:
            pass
