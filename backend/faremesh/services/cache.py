"""
Cache Redis dei risultati di ricerca per singolo supplier.

Flusso di utilizzo (da FlightSearchService):
    1. get()  → hit? restituisce le offerte senza chiamare il supplier
    2. save() → dopo ogni chiamata riuscita, salva le offerte normalizzate
    3. Il TTL è definito da SUPPLIERS__CACHE__TTL (minuti, default 5)

Chiave: prefix + sha1(codice supplier | richiesta serializzata).
Un errore Redis non deve mai far fallire la ricerca: viene loggato e la
cache viene semplicemente saltata.
"""
import hashlib
import json
import logging
from typing import Awaitable, Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from faremesh.config import CacheSettings
from faremesh.db.redis import get_redis
from faremesh.services.suppliers.base import NormalizedOffer, SearchRequest

logger = logging.getLogger(__name__)


class SearchCache:

    def __init__(
        self,
        config: CacheSettings,
        redis_getter: Callable[[], Awaitable[aioredis.Redis]] = get_redis,
    ) -> None:
        self.config = config
        self._redis_getter = redis_getter

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def key(self, supplier_code: str, request: SearchRequest) -> str:
        raw = f"{supplier_code}|{json.dumps(request.to_dict(), sort_keys=True)}"
        return self.config.prefix + hashlib.sha1(raw.encode()).hexdigest()

    async def get(self, supplier_code: str, request: SearchRequest) -> list[NormalizedOffer] | None:
        """Offerte in cache, oppure None se assenti/scadute/illeggibili."""
        try:
            redis = await self._redis_getter()
            raw = await redis.get(self.key(supplier_code, request))
        except (RedisError, OSError) as exc:
            logger.warning("Cache %s: lettura fallita: %s: %s", supplier_code, type(exc).__name__, exc)
            return None
        if raw is None:
            return None
        try:
            return [NormalizedOffer.from_dict(item) for item in json.loads(raw)]
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Cache %s: entry corrotta ignorata: %s", supplier_code, exc)
            return None

    async def save(self, supplier_code: str, request: SearchRequest, offers: list[NormalizedOffer]) -> None:
        payload = json.dumps([o.to_dict() for o in offers])
        try:
            redis = await self._redis_getter()
            await redis.set(self.key(supplier_code, request), payload, ex=self.config.ttl * 60)
        except (RedisError, OSError) as exc:
            logger.warning("Cache %s: scrittura fallita: %s: %s", supplier_code, type(exc).__name__, exc)
