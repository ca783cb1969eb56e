"""Redis: registros efímeros en JSON con expiración (intenciones de registro)"""
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError
import json
from typing import Optional, Any
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None
redis_pool: Optional[ConnectionPool] = None


async def init_redis(redis_url: Optional[str] = None):
    """Crear el pool compartido; un Redis caído no impide iniciar la API"""
    global redis_client, redis_pool

    redis_pool = ConnectionPool.from_url(
        redis_url or settings.REDIS_URL,
        password=settings.REDIS_PASSWORD or None,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        decode_responses=True,
        socket_connect_timeout=5,
        health_check_interval=30,
    )
    redis_client = redis.Redis(connection_pool=redis_pool)

    try:
        await redis_client.ping()
        logger.info(f"Redis listo (max_connections={settings.REDIS_MAX_CONNECTIONS})")
    except RedisError as e:
        logger.error(f"Redis no disponible al iniciar: {e}")


async def get_redis() -> redis.Redis:
    if redis_client is None:
        await init_redis()
    return redis_client


async def close_redis():
    global redis_client, redis_pool
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
    if redis_pool is not None:
        await redis_pool.disconnect()
        redis_pool = None
    logger.info("Redis desconectado")


async def set_json(key: str, value: Any, ttl: int):
    """Guardar un valor serializable con expiración en segundos"""
    conn = await get_redis()
    await conn.set(key, json.dumps(value, default=str), ex=ttl)


async def pop_json(key: str) -> Optional[Any]:
    """
    Leer y borrar en una sola operación (GETDEL)

    Dos consumidores concurrentes de la misma clave: solo uno recibe el valor.
    """
    conn = await get_redis()
    raw = await conn.getdel(key)
    if raw is None:
        return None
    return json.loads(raw)
