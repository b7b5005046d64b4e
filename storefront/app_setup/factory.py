"""
Factory d'application recommandée pour les entrypoints (ex: storefront.asgi).
Ordonne les étapes d'initialisation de manière lisible et testable.
"""
from fastapi import FastAPI

from .exception_handlers import register_exception_handlers
from .lifespan import lifespan
from .middlewares import register_basic_middlewares, register_no_cache_middleware
from .routers import register_routers

def create_app() -> FastAPI:
    """
    Construit l'app FastAPI avec le lifespan et enregistre:
      - middlewares de base et no-cache
      - gestionnaires d'exceptions
      - tous les routers (API v1, health)
    """
    app = FastAPI(title="Storefront Checkout", lifespan=lifespan)
    register_basic_middlewares(app)
    register_no_cache_middleware(app)
    register_exception_handlers(app)
    register_routers(app)
    return app
