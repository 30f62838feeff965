"""
Suscriptor del stream de check-ins de una sede.

Lo usan los procesos que alimentan paneles del staff (el WebSocket del API o
un proceso externo). Redis no reenvía lo publicado mientras el suscriptor
estaba desconectado, así que después de cada (re)conexión se vuelve a pedir la
lista de check-ins del día y se descartan duplicados por ID.
"""
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional
import asyncio
import inspect
import json
import logging

from redis.exceptions import RedisError

from gymaccess.core.config import get_settings
from gymaccess.db.redis_client import open_redis
from gymaccess.services.checkin_fanout import checkin_channel

logger = logging.getLogger(__name__)

CheckinRecord = Dict[str, Any]
InsertCallback = Callable[[CheckinRecord], Any]
RefetchCallback = Callable[[], Awaitable[List[CheckinRecord]]]

# Cantidad de IDs recordados para descartar entregas duplicadas
SEEN_IDS_LIMIT = 5000


class CheckinStreamSubscriber:

    def __init__(
        self,
        gym_id: int,
        on_insert: InsertCallback,
        refetch: Optional[RefetchCallback] = None,
        *,
        redis_factory=open_redis,
        reconnect_seconds: Optional[float] = None,
        sleep=asyncio.sleep,
    ):
        """
        Args:
            gym_id: Sede cuyo canal se escucha
            on_insert: Callback (sync o async) por cada check-in nuevo
            refetch: Corrutina que devuelve los check-ins del día; se llama tras
                cada conexión
            redis_factory: Context manager asíncrono que entrega un cliente Redis
            reconnect_seconds: Espera fija antes de reconectar
            sleep: Función de espera (sustituible en tests)
        """
        self.gym_id = gym_id
        self.channel = checkin_channel(gym_id)
        self.on_insert = on_insert
        self.refetch = refetch
        self.redis_factory = redis_factory
        self.reconnect_seconds = (
            reconnect_seconds if reconnect_seconds is not None
            else get_settings().REALTIME_RECONNECT_SECONDS
        )
        self._sleep = sleep
        self._seen: "OrderedDict[Any, None]" = OrderedDict()
        self._stopped = False
        self.connections = 0

    def stop(self) -> None:
        self._stopped = True

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def _deliver(self, record: CheckinRecord) -> bool:
        checkin_id = record.get("id")
        if checkin_id is not None:
            if checkin_id in self._seen:
                return False
            self._seen[checkin_id] = None
            if len(self._seen) > SEEN_IDS_LIMIT:
                self._seen.popitem(last=False)

        result = self.on_insert(record)
        if inspect.isawaitable(result):
            await result
        return True

    async def resync(self) -> int:
        """
        Vuelve a pedir los check-ins del día y entrega los que no se habían visto.

        Returns:
            Número de check-ins nuevos entregados
        """
        if self.refetch is None:
            return 0
        records = await self.refetch()
        delivered = 0
        # Entregar en orden cronológico aunque el listado venga del más reciente al más antiguo
        for record in sorted(records, key=lambda r: (r.get("checked_in_at") or "", r.get("id") or 0)):
            if await self._deliver(record):
                delivered += 1
        if delivered:
            logger.info(f"Resincronización de sede {self.gym_id}: {delivered} check-ins recuperados")
        return delivered

    async def handle_message(self, data: Any) -> bool:
        """Procesa un mensaje crudo del canal. Devuelve True si se entregó."""
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            event = json.loads(data)
        except (TypeError, ValueError) as e:
            logger.error(f"Mensaje inválido en {self.channel}: {e}")
            return False

        if not isinstance(event, dict):
            logger.error(f"Mensaje inválido en {self.channel}: se esperaba un objeto JSON")
            return False
        if event.get("type") != "INSERT" or event.get("table") != "checkins":
            return False
        record = event.get("record") or {}
        if not isinstance(record, dict):
            logger.error(f"Registro inválido en {self.channel}: {record!r}")
            return False
        return await self._deliver(record)

    async def _listen(self) -> None:
        async with self.redis_factory() as redis:
            pubsub = redis.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                self.connections += 1
                logger.info(f"Suscrito a {self.channel} (conexión #{self.connections})")
                await self.resync()

                while not self._stopped:
                    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    if message and message["type"] == "message":
                        await self.handle_message(message["data"])
            finally:
                try:
                    await pubsub.unsubscribe(self.channel)
                    await pubsub.aclose()
                except RedisError as e:
                    logger.debug(f"Error cerrando pubsub de {self.channel}: {e}")

    async def run(self) -> None:
        """
        Escucha el canal hasta stop(). Ante una caída de conexión espera un
        intervalo fijo y reconecta; nunca asume que Redis reenvía lo perdido.
        """
        while not self._stopped:
            try:
                await self._listen()
            except (RedisError, OSError) as e:
                logger.warning(
                    f"Conexión perdida con {self.channel}: {e}. Reintentando en {self.reconnect_seconds}s"
                )
            if not self._stopped:
                await self._sleep(self.reconnect_seconds)
