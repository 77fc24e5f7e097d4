from __future__ import annotations

from datetime import datetime, timezone

from fastapi import FastAPI

from backoffice.api.routes import clickup, facturen, offerte_public, offertes
from backoffice.core.config import get_settings
from backoffice.core.database import db
from backoffice.core.logging import configure_logging, log_info
from backoffice.security.request_logger import RequestLoggingMiddleware
from backoffice.services.scheduler import scheduler_service

configure_logging()
settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    description=(
        "Back-office API for quotes and invoices with collision-free document numbering, "
        "plus a ClickUp CRM mirror kept current by polling and webhooks."
    ),
)

app.add_middleware(
    RequestLoggingMiddleware,
    exempt_paths=("/health",),
)

app.include_router(offertes.router)
app.include_router(offerte_public.router)
app.include_router(facturen.router)
app.include_router(clickup.router)


@app.get("/health")
async def health_check():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.on_event("startup")
async def on_startup() -> None:
    await db.connect()
    await db.run_migrations()
    await scheduler_service.start()
    log_info("Application started", environment=settings.environment)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await scheduler_service.stop()
    await db.disconnect()
    log_info("Application shutdown")
