from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from sqlmodel import Session, func, select

from .api.srs_routes import create_srs_router
from .core.config import get_config
from .core.db import get_engine, init_db
from .core.exceptions import ConflictError, NotFoundError, ValidationError
from .core.logger import setup_logging
from .models.card import SRSCard

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"

setup_logging()
config = get_config()

_start_time = time.time()

limiter = Limiter(key_func=get_remote_address)
app = FastAPI(
    title="Cafe SRS API",
    version=APP_VERSION,
    description="Spaced repetition scheduling for vocabulary and conversation practice.",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(status_code=429, content={"error": "rate_limited", "detail": "Too many requests, please try again later"})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": exc.code, "detail": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    logger.info("Conflict on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=409, content={"error": exc.code, "detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": exc.code, "detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "internal_error", "detail": "An unexpected error occurred"})


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "SAMEORIGIN"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=config.security.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(create_srs_router())


@app.get("/health")
async def healthcheck() -> dict:
    uptime = int(time.time() - _start_time)
    with Session(get_engine()) as session:
        total_cards = session.exec(select(func.count(SRSCard.id))).one()
    return {
        "status": "ok",
        "version": APP_VERSION,
        "uptime_seconds": uptime,
        "total_cards": total_cards,
    }


@app.on_event("startup")
async def on_startup() -> None:
    init_db(get_engine())
