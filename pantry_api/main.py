"""FastAPI application entrypoint for the Pantry API."""

from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import require_api_password
from .deps import get_engine
from .errors import PantryError
from .models import Base
from .routers import audit, barcode, chat, expiration, items, notifications, products, requests

logger = logging.getLogger("pantry-api")

app = FastAPI(title="Pantry API", version="0.1.0")

cors_origins_env = os.getenv(
    "PANTRY_API_CORS_ORIGINS",
    "http://localhost:8080,http://localhost:3000",
)
allow_origins = [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def _create_tables() -> None:
    """Ensure the database schema exists before serving requests."""

    async with get_engine().begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured")


@app.exception_handler(PantryError)
async def _pantry_error_handler(request: Request, exc: PantryError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
        headers=exc.headers,
    )


@app.exception_handler(HTTPException)
async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # pragma: no cover - integration glue
    detail = exc.detail
    if isinstance(detail, dict):
        payload: dict[str, Any] = {
            "detail": str(detail.get("detail", "Internal error")),
            "code": str(detail.get("code", f"http.{exc.status_code}")),
        }
    elif isinstance(detail, str):
        payload = {"detail": detail, "code": f"http.{exc.status_code}"}
    else:
        payload = {"detail": "Unexpected error", "code": "http.unexpected"}
    if exc.headers:
        return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)
    return JSONResponse(status_code=exc.status_code, content=payload)


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:  # pragma: no cover - integration glue
    payload = {"detail": "Validation error", "code": "validation_error", "errors": jsonable_errors(exc)}
    return JSONResponse(status_code=422, content=payload)


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [{key: value for key, value in error.items() if key in ("loc", "msg", "type")} for error in exc.errors()]


protected = [Depends(require_api_password)]

app.include_router(audit.router, prefix="/api/audit", tags=["audit"], dependencies=protected)
app.include_router(notifications.router, prefix="/api/notifications", tags=["notifications"], dependencies=protected)
app.include_router(chat.router, prefix="/api/chat", tags=["chat"], dependencies=protected)
app.include_router(barcode.router, prefix="/api/barcode", tags=["barcode"], dependencies=protected)
app.include_router(expiration.router, prefix="/api/expiration", tags=["expiration"], dependencies=protected)
app.include_router(requests.router, prefix="/api/requests", tags=["requests"], dependencies=protected)
app.include_router(items.router, prefix="/api/items", tags=["items"], dependencies=protected)
app.include_router(products.router, prefix="/api/products", tags=["products"], dependencies=protected)


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}
