import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from coursepay.accounts.router import router as accounts_router
from coursepay.config import settings
from coursepay.core.cache import RedisCache
from coursepay.core.dependencies import Cache, DbSession
from coursepay.core.handlers import register_exception_handlers
from coursepay.db.session import engine
from coursepay.gateway.registry import close_gateway
from coursepay.invoices.router import router as invoices_router
from coursepay.logging_config import configure_logging
from coursepay.notifications.client import ServiceNotifier
from coursepay.notifications.dispatcher import OutboundDispatcher
from coursepay.payments.router import router as payments_router
from coursepay.reports.router import router as reports_router
from coursepay.statistics.router import router as statistics_router
from coursepay.webhooks.router import router as webhooks_router

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging(settings.log_level)
    app.state.cache = RedisCache(settings.redis_url)
    app.state.dispatcher = OutboundDispatcher()
    app.state.notifier = ServiceNotifier(
        user_service_url=settings.user_service_url,
        course_service_url=settings.course_service_url,
        progress_service_url=settings.progress_service_url,
        internal_api_key=settings.internal_api_key,
        timeout_seconds=settings.notification_timeout_seconds,
    )
    logger.info("Payment service started (%s, gateway=%s)", settings.environment, settings.gateway)
    yield
    # Outbound jobs may still be running against the notifier and the cache
    await app.state.dispatcher.drain()
    await app.state.notifier.close()
    await app.state.cache.close()
    await close_gateway()
    await engine.dispose()


app = FastAPI(
    title="Course Payment Service",
    version=VERSION,
    description="Course purchases, revenue split, refunds, invoices and financial analytics.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(payments_router, prefix=API_PREFIX)
app.include_router(invoices_router, prefix=API_PREFIX)
app.include_router(accounts_router, prefix=API_PREFIX)
app.include_router(reports_router, prefix=API_PREFIX)
app.include_router(statistics_router, prefix=API_PREFIX)
app.include_router(webhooks_router, prefix=API_PREFIX)


@app.get("/health")
async def health(db: DbSession, cache: Cache) -> dict:
    try:
        await db.execute(text("SELECT 1"))
        database = "up"
    except SQLAlchemyError as exc:
        logger.error("Health check database error: %s", exc)
        database = "down"
    cache_status = "up" if await cache.ping() else "down"
    return {
        "status": "ok" if database == "up" else "degraded",
        "version": VERSION,
        "database": database,
        "cache": cache_status,
    }
