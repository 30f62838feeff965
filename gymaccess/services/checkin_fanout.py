"""
Difusión en tiempo real de check-ins a los paneles del staff.

Cada check-in confirmado se publica en el canal Redis de su sede con el mismo
formato que un cambio de tabla: {"type": "INSERT", "table": "checkins",
"record": {...}}. Redis no guarda historial: un suscriptor que se reconecta
debe volver a consultar los check-ins del día.
"""
from typing import Any, Dict, Optional
import json
import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from gymaccess.core.timezone_utils import ensure_utc
from gymaccess.models.checkin import Checkin

logger = logging.getLogger(__name__)


def checkin_channel(gym_id: int) -> str:
    return f"gym:{gym_id}:checkins"


def serialize_checkin(checkin: Checkin) -> Dict[str, Any]:
    checked_in_at = ensure_utc(checkin.checked_in_at)
    return {
        "id": checkin.id,
        "member_id": checkin.member_id,
        "gym_id": checkin.gym_id,
        "checked_in_at": checked_in_at.isoformat() if checked_in_at else None,
        "source": checkin.source.value if checkin.source else None,
        "staff_user_id": checkin.staff_user_id,
        "access_decision": checkin.access_decision.value if checkin.access_decision else None,
        "decision_reason": checkin.decision_reason,
    }


def build_insert_event(checkin: Checkin) -> Dict[str, Any]:
    return {"type": "INSERT", "table": "checkins", "record": serialize_checkin(checkin)}


class RealtimeCheckinFanout:

    async def publish_checkin(self, redis: Optional[Redis], checkin: Checkin) -> bool:
        """
        Publica un check-in ya confirmado en el canal de su sede.

        Un fallo de publicación se registra pero nunca invalida el check-in:
        la consulta de check-ins del día es el respaldo.

        Args:
            redis: Cliente Redis (None si Redis no está disponible)
            checkin: Check-in confirmado

        Returns:
            True si se publicó
        """
        if redis is None:
            logger.warning(f"Redis no disponible; check-in {checkin.id} no se difunde en tiempo real")
            return False

        channel = checkin_channel(checkin.gym_id)
        try:
            receivers = await redis.publish(channel, json.dumps(build_insert_event(checkin)))
        except RedisError as e:
            logger.error(f"Error publicando check-in {checkin.id} en {channel}: {e}")
            return False

        logger.debug(f"Check-in {checkin.id} publicado en {channel} ({receivers} suscriptores)")
        return True


checkin_fanout = RealtimeCheckinFanout()
