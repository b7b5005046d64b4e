"""
Stockage clé-valeur « scopé » (panier, tentatives de paiement, index des références).

- MemoryStore: dictionnaire en mémoire (dev, fallback si Redis indisponible)
- RedisStore: client redis.asyncio (decode_responses=True), fakeredis.aioredis en tests
- ScopedStore: vue préfixée par session ("<prefix>:<scope>:<key>")
Toutes les opérations sont des coroutines: aucun appel Redis ne bloque la boucle d'événements.
Les erreurs de lecture/écriture remontent à l'appelant; c'est la couche panier qui
décide de les absorber (lecture défensive).
"""
import logging
import os
from typing import Dict, Optional

import redis.asyncio as aioredis
from fastapi import Request

from storefront.config import STORE_KEY_PREFIX, STORE_REDIS_URL

try:
    from fakeredis.aioredis import FakeRedis  # tests only
except Exception:
    FakeRedis = None

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"

class KeyValueStore:
    """Interface minimale: get/set/delete sur des valeurs texte."""
    backend: str = ""

    def __init__(self, prefix: str = STORE_KEY_PREFIX):
        self.prefix = prefix

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None

    def scope(self, name: str) -> "ScopedStore":
        return ScopedStore(self, name)


class MemoryStore(KeyValueStore):
    backend = "memory"

    def __init__(self, prefix: str = STORE_KEY_PREFIX):
        super().__init__(prefix)
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class RedisStore(KeyValueStore):
    backend = "redis"

    def __init__(self, client, prefix: str = STORE_KEY_PREFIX):
        super().__init__(prefix)
        self.client = client

    async def get(self, key: str) -> Optional[str]:
        value = await self.client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str) -> None:
        await self.client.set(key, value)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def close(self) -> None:
        await self.client.aclose()


class ScopedStore:
    """Vue d'un KeyValueStore limitée à un scope (ex: une session navigateur)."""

    def __init__(self, store: KeyValueStore, scope: str):
        if not scope:
            raise ValueError("scope is required")
        self.store = store
        self.scope = scope

    def _key(self, key: str) -> str:
        return f"{self.store.prefix}:{self.scope}:{key}"

    async def get(self, key: str) -> Optional[str]:
        return await self.store.get(self._key(key))

    async def set(self, key: str, value: str) -> None:
        await self.store.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self.store.delete(self._key(key))


async def build_store() -> KeyValueStore:
    """
    Construit le store selon l'environnement:
    - USE_FAKE_REDIS_FOR_TESTS=1: fakeredis (tests)
    - STORE_REDIS_URL défini: Redis (ping au démarrage)
    - sinon: MemoryStore (un seul process, perdu au redémarrage)
    """
    if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
        if not FakeRedis:
            raise RuntimeError("USE_FAKE_REDIS_FOR_TESTS=1 mais fakeredis n'est pas installé.")
        return RedisStore(FakeRedis(decode_responses=True))
    if STORE_REDIS_URL:
        client = aioredis.from_url(STORE_REDIS_URL, encoding="utf-8", decode_responses=True)
        await client.ping()
        return RedisStore(client)
    logger.warning("STORE_REDIS_URL absent: stockage panier en mémoire (non partagé entre workers)")
    return MemoryStore()

def get_store(request: Request) -> KeyValueStore:
    """Dépendance FastAPI: store initialisé par le lifespan."""
    return request.app.state.store
