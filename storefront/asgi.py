"""
ASGI entrypoint: expose `app` pour les process managers (ex: uvicorn storefront.asgi:app).
Toute la configuration FastAPI est centralisée dans storefront.app_setup.factory.
"""

from storefront.app import app
