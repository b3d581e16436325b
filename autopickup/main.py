from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# IMPORTANT:
# This imports ALL models so SQLAlchemy registers tables + FKs correctly
import autopickup.models  # noqa: F401
from autopickup.core.config import settings
from autopickup.core.db import create_all
from autopickup.core.errors import PickupError, RateLimited
from autopickup.core.logger import setup_logger
from autopickup.core.timeutil import utcnow
from autopickup.schemas.common import Envelope, ErrorItem

# Routers
from autopickup.routers.orders import router as orders_router
from autopickup.routers.pickup import router as pickup_router
from autopickup.routers.pickup_codes import router as pickup_codes_router
from autopickup.routers.redeem import router as redeem_router

setup_logger()
logger = logging.getLogger(__name__)


def _envelope_response(
    status_code: int,
    message: str,
    errors: list[ErrorItem] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = Envelope(success=False, message=message, errors=errors)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
        headers=headers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.DB_CREATE_ALL:
        await create_all()
    logger.info("autopickup started")
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="AutoPickup", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PickupError)
    async def _pickup_error(request: Request, exc: PickupError):
        headers = None
        if isinstance(exc, RateLimited):
            headers = {"Retry-After": str(exc.retry_after)}
            logger.warning("rate limited %s %s", request.method, request.url.path)
        errors = [ErrorItem(field=exc.field, message=exc.message)] if exc.field else None
        return _envelope_response(exc.status_code, exc.message, errors, headers)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return _envelope_response(exc.status_code, str(exc.detail), headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        errors = [
            ErrorItem(
                field=".".join(str(p) for p in err.get("loc", ()) if p != "body") or None,
                message=err.get("msg", "invalid value"),
            )
            for err in exc.errors()
        ]
        return _envelope_response(400, "Input validation failed", errors)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        message = f"Internal server error: {exc}" if settings.DEBUG else "Internal server error"
        return _envelope_response(500, message)

    # Redemption (customers)
    app.include_router(redeem_router)
    app.include_router(pickup_router)

    # Issuance (merchants)
    app.include_router(pickup_codes_router)
    app.include_router(orders_router)

    @app.get("/health", response_model=Envelope[dict])
    async def health():
        return Envelope(data={"status": "OK", "timestamp": utcnow().isoformat()})

    return app


app = create_app()
