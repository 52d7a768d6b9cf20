"""
Connessione Redis asincrona (cache dei risultati di ricerca per supplier).

Timeout brevi: con Redis irraggiungibile la cache viene saltata in fretta
invece di rallentare la ricerca.

Uso diretto:
    redis = await get_redis()
"""
import redis.asyncio as aioredis

from faremesh.config import settings

_client: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    """Client Redis condiviso, creato alla prima richiesta."""
    global _client
    if _client is None:
        _client = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.redis_timeout,
            socket_timeout=settings.redis_timeout,
        )
    return _client


async def close_redis() -> None:
    """Da chiamare nello shutdown del lifespan."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
