"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Store clé-valeur (panier, tentatives), client HTTP du backend de commandes, workflow de paiement.
- Initialise FastAPILimiter (Redis) avec options de test (fakeredis).
- Variables d'environnement supportées:
  - DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: désactive complètement le rate limiting (tests)
  - USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis (tests)
  - LOCAL_RATE_LIMIT_FALLBACK=1: active un fallback local si l'init échoue
Les tests peuvent pré-remplir app.state.store et app.state.backend_transport.
"""
import os
import logging
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

from storefront.config import BACKEND_API_URL, BACKEND_TIMEOUT_SECONDS
from storefront.infra.kv_store import MemoryStore, build_store
from storefront.payments.orders import OrderSubmitter
from storefront.payments.verification import VerificationClient
from storefront.payments.workflow import CheckoutWorkflow

try:
    from fakeredis.aioredis import FakeRedis  # tests only
except Exception:
    FakeRedis = None

async def _init_rate_limiter(app: FastAPI, logger: logging.Logger) -> None:
    """
    Configure le rate limiting et gère les fallbacks.
    En cas d'échec de Redis et sans fallback, le rate limiting est désactivé proprement.
    """
    if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
        app.state.rate_limit_enabled = False
        logger.info("Rate limiting disabled by DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS")
        return
    try:
        if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
            if not FakeRedis:
                raise RuntimeError("USE_FAKE_REDIS_FOR_TESTS=1 mais fakeredis n'est pas installé.")
            r = FakeRedis(decode_responses=True)
        else:
            redis_url = os.getenv("RATE_LIMIT_REDIS_URL", "redis://127.0.0.1:6379/0")
            r = aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        await FastAPILimiter.init(r)
        app.state.rate_limit_enabled = True
        logger.info("Rate limiting enabled")
    except Exception as e:
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            app.state.rate_limit_enabled = True
            logger.warning(f"Rate limiting falling back to local in-memory due to init error: {e}")
        else:
            app.state.rate_limit_enabled = False
            logger.warning(f"Rate limiting disabled due to init error: {e}")

def build_workflow(store, http: httpx.AsyncClient) -> CheckoutWorkflow:
    return CheckoutWorkflow(store, VerificationClient(http), OrderSubmitter(http))

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("uvicorn.error")

    owns_store = getattr(app.state, "store", None) is None
    if owns_store:
        try:
            app.state.store = await build_store()
        except Exception as e:
            logger.warning(f"Store Redis indisponible, fallback mémoire: {e}")
            app.state.store = MemoryStore()
    logger.info("Store backend=%s", app.state.store.backend)

    http = httpx.AsyncClient(
        base_url=BACKEND_API_URL,
        timeout=BACKEND_TIMEOUT_SECONDS,
        transport=getattr(app.state, "backend_transport", None),
        headers={"Accept": "application/json"},
    )
    app.state.backend_client = http
    app.state.workflow = build_workflow(app.state.store, http)

    await _init_rate_limiter(app, logger)
    try:
        yield
    finally:
        await http.aclose()
        if owns_store:
            await app.state.store.close()
