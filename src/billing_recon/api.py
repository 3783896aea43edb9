"""FastAPI application exposing the reconciliation admin surface."""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .auth import limiter
from .database import init_db, close_db
from .reconciliation.api import router as reconciliation_router
from .reconciliation.gateway import get_billing_gateway
from .reconciliation.notifier import ReconciliationNotifier
from .reconciliation.scheduler import ReconciliationScheduler
from .reconciliation.settings import SettingsManager

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_PERIOD = 30.0


def embedded_scheduler_enabled() -> bool:
    return os.getenv("RECONCILIATION_EMBEDDED_SCHEDULER", "false").lower() in ("1", "true", "yes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    session_factory = await init_db()
    settings_manager = SettingsManager(session_factory)
    await settings_manager.load()

    scheduler = ReconciliationScheduler(
        session_factory,
        settings_manager,
        gateway=get_billing_gateway(),
        notifier=ReconciliationNotifier(),
        timezone=os.getenv("RECONCILIATION_TIMEZONE", "UTC"),
    )
    if embedded_scheduler_enabled():
        await scheduler.start()

    app.state.settings_manager = settings_manager
    app.state.scheduler = scheduler
    try:
        yield
    finally:
        scheduler.stop()
        await scheduler.wait_for_in_flight(SHUTDOWN_GRACE_PERIOD)
        await close_db()


app = FastAPI(title="Billing Reconciliation - Admin API", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.include_router(reconciliation_router)
