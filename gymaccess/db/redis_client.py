"""
Acceso a Redis para el stream de check-ins en tiempo real.

Redis solo transporta eventos efímeros; la base de datos es la fuente de
verdad. Un único pool compartido por proceso, y un cliente nuevo por request
(o por suscriptor) que se cierra al terminar para devolver la conexión.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
import logging

from fastapi import HTTPException, status
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from gymaccess.core.config import get_settings

logger = logging.getLogger(__name__)

REDIS_POOL: Optional[ConnectionPool] = None


async def initialize_redis_pool() -> ConnectionPool:
    """
    Crea el pool si aún no existe. Se llama desde el lifespan de la app y,
    de forma perezosa, desde las dependencias si el arranque falló.

    Raises:
        ValueError: Si REDIS_URL está vacía
    """
    global REDIS_POOL
    if REDIS_POOL is not None:
        return REDIS_POOL

    settings = get_settings()
    redis_url = (settings.REDIS_URL or "").strip()
    if not redis_url:
        raise ValueError("REDIS_URL está vacía")

    REDIS_POOL = ConnectionPool.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.REDIS_POOL_MAX_CONNECTIONS,
        socket_keepalive=settings.REDIS_POOL_SOCKET_KEEPALIVE,
        socket_timeout=settings.REDIS_POOL_SOCKET_TIMEOUT,
        health_check_interval=settings.REDIS_POOL_HEALTH_CHECK_INTERVAL,
        retry_on_timeout=settings.REDIS_POOL_RETRY_ON_TIMEOUT,
    )
    logger.info(f"Pool de Redis creado (max_connections={settings.REDIS_POOL_MAX_CONNECTIONS})")
    return REDIS_POOL


async def _close_client(client: Redis) -> None:
    try:
        await client.aclose()
    except RedisError as e:
        logger.warning(f"Error cerrando cliente Redis: {e}")


async def get_redis_client() -> AsyncIterator[Redis]:
    """
    Dependencia FastAPI: cliente Redis para publicar check-ins.

    El pool no abre conexiones al crearse, así que con Redis caído el cliente
    se entrega igual y la publicación falla más tarde sin afectar al check-in.
    """
    try:
        pool = await initialize_redis_pool()
    except ValueError as e:
        logger.error(f"Redis no configurado: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Redis no disponible")

    client = Redis(connection_pool=pool)
    try:
        yield client
    finally:
        await _close_client(client)


@asynccontextmanager
async def open_redis() -> AsyncIterator[Redis]:
    """Cliente Redis fuera de un request (suscriptores del stream de check-ins)."""
    pool = await initialize_redis_pool()
    client = Redis(connection_pool=pool)
    try:
        yield client
    finally:
        await _close_client(client)


async def close_redis_client() -> None:
    """Desconecta el pool al apagar la aplicación."""
    global REDIS_POOL
    if REDIS_POOL is not None:
        await REDIS_POOL.disconnect()
        REDIS_POOL = None
        logger.info("Pool de Redis cerrado")
