from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.errors import GatewayError, InvalidRequest, ProvidersExhausted, utcnow_iso
from app.middlewares.body_limit import BodyLimitMiddleware
from app.routes.images import router as images_router

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logging.getLogger("uvicorn").setLevel(LOG_LEVEL)
logging.getLogger("uvicorn.error").setLevel(LOG_LEVEL)
logging.getLogger("uvicorn.access").setLevel(LOG_LEVEL)
logging.getLogger("ad-gateway").setLevel(LOG_LEVEL)

logger = logging.getLogger("ad-gateway")

settings = get_settings()

app = FastAPI(title="Marketing Image Gateway", version="1.0.0")


@app.get("/", include_in_schema=False)
def root() -> dict[str, Any]:
    return {"service": "ad-image-gateway", "ok": True}


@app.head("/", include_in_schema=False)
def root_head() -> Response:
    return Response(status_code=200)


@app.get("/health")
def health() -> dict[str, Any]:
    return {"ok": True, "timestamp": utcnow_iso()}


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "[api.error] path=%s code=%s status=%s message=%s",
        request.url.path,
        exc.code,
        exc.status_code,
        exc.message,
        extra={"attempts": len(exc.attempts) if isinstance(exc, ProvidersExhausted) else 0},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
        problems.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    error = InvalidRequest("; ".join(problems) or "Invalid request body")
    logger.warning("[api.invalid] path=%s %s", request.url.path, error.message)
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("[api.crash] path=%s %s", request.url.path, type(exc).__name__)
    message = "Internal server error"
    if not get_settings().is_production:
        message = f"{message}: {type(exc).__name__}"
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_ERROR", "message": message, "timestamp": utcnow_iso()},
    )


app.add_middleware(BodyLimitMiddleware, max_body_bytes=settings.max_body_bytes)

allow_all = "*" in settings.allowed_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all else settings.allowed_origins,
    allow_credentials=not allow_all,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,
)

app.include_router(images_router)

logger.info(
    "Gateway ready",
    extra={
        "environment": settings.environment,
        "primary_configured": settings.replicate.primary_configured,
        "backup_configured": settings.replicate.is_configured,
        "editor_configured": settings.photoroom.is_configured,
        "max_body_bytes": settings.max_body_bytes,
    },
)
