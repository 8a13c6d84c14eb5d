from __future__ import annotations
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from atsqueue.api import auth, health, jobs, metrics, queue, sources
from atsqueue.core.config import settings
from atsqueue.core.logging import setup_logging
from atsqueue.db.init_db import init_db

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    setup_logging(settings.log_level)
    init_db()
    logger.info("api started", extra={"env": settings.env})


@app.exception_handler(HTTPException)
async def http_error(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content={"success": False, "error": "invalid request", "detail": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("request failed", extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})


app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(auth.router, prefix=settings.api_prefix)
app.include_router(queue.router, prefix=settings.api_prefix)
app.include_router(jobs.router, prefix=settings.api_prefix)
app.include_router(sources.router, prefix=settings.api_prefix)
