"""
Gestionnaires d'exceptions.
- CheckoutError (et sous-classes): {"detail": <message affichable>, "code": <code stable>} + statut métier.
- HTTPException: réponse JSON standard FastAPI.
"""
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from storefront.errors import CheckoutError

logger = logging.getLogger(__name__)

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CheckoutError)
    async def checkout_error(request: Request, exc: CheckoutError):
        logger.info("checkout_error path=%s code=%s status=%s", request.url.path, exc.code, exc.status_code)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))
