"""
Gestionnaires d'exceptions enregistrés par la factory.
- MarketplaceError: {"detail", "code", "retryable"} avec le statut HTTP propre à l'erreur.
- HTTPException: JSON {"detail"} (API uniquement, pas de pages HTML).
"""
import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from marketplace.errors import MarketplaceError

logger = logging.getLogger(__name__)

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(MarketplaceError)
    async def marketplace_error(request: Request, exc: MarketplaceError):
        if exc.status_code >= 500:
            logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.reason)
        else:
            logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.reason)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))
