from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
import time
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import Response
from starlette.middleware.cors import CORSMiddleware

from .config import settings
from .logging_utils import configure_logging
from .metrics import CONTENT_TYPE_LATEST, REQUESTS_TOTAL, generate_latest
from .routers.blog import router as blog_router
from .routers.contact import gate
from .routers.contact import router as contact_router

configure_logging()
logger = logging.getLogger("portfolio.app")

app = FastAPI(title="Portfolio API", version="1.0.0")
api_router = APIRouter(prefix="/api")

_sweep_task: Optional[asyncio.Task] = None


def sweep_gate_once() -> int:
    swept = gate.sweep_expired(int(time.time() * 1000))
    if swept:
        logger.info("Expired throttle entries removed", extra={"event": "gate_sweep", "swept": swept})
    return swept


async def _sweep_gate_periodically(interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            sweep_gate_once()
        except Exception:
            logger.exception("Throttle sweep failed", extra={"event": "gate_sweep_failed"})


@app.on_event("startup")
async def startup_event() -> None:
    global _sweep_task
    if settings.abuse_sweep_interval_seconds > 0:
        _sweep_task = asyncio.create_task(_sweep_gate_periodically(settings.abuse_sweep_interval_seconds))
    logger.info(
        "Backend startup complete",
        extra={
            "event": "startup",
            "reason": "origin_check_enabled" if settings.public_site_url else "origin_check_disabled",
        },
    )


@app.on_event("shutdown")
async def shutdown_event() -> None:
    global _sweep_task
    if _sweep_task is not None:
        _sweep_task.cancel()
        _sweep_task = None


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_metrics_middleware(request: Request, call_next):
    response = await call_next(request)
    REQUESTS_TOTAL.labels(method=request.method, path=request.url.path, status=str(response.status_code)).inc()
    return response


@api_router.get("/")
async def root() -> dict[str, str]:
    return {"message": "Portfolio API"}


@api_router.get("/health")
async def api_healthcheck() -> dict[str, str]:
    return {"status": "ok", "ts": datetime.now(timezone.utc).isoformat()}


@app.get("/health")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok", "ts": datetime.now(timezone.utc).isoformat()}


@app.get("/metrics")
async def metrics() -> Response:
    if not settings.enable_prometheus_metrics:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(api_router)
app.include_router(contact_router)
app.include_router(blog_router)
