# mclink/main.py
from __future__ import annotations

import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase

from .config import settings
from .core.clock import Clock, utcnow
from .dal import AccountDAL, MongoCodeStore, SecurityLogDAL, VolatileCodeMirror
from .db.mongodb import close_db, get_db
from .events.rabbit import RabbitEventSink
from .events.sink import EventSink, InMemoryEventSink
from .logging_conf import setup_logging
from .middleware.correlation import CorrelationIdMiddleware
from .routers import health_router, link_router
from .routers.link_routes import plugin_validation_handler
from .services.link_codes import LinkCodeManager
from .services.linker import LinkApplier
from .services.rank_sync import RankSync
from .services.sweeper import LinkCodeSweeper

setup_logging()
log = logging.getLogger("mclink")


def _default_sink() -> EventSink:
    if settings.RABBITMQ_URI:
        return RabbitEventSink(settings.RABBITMQ_URI, settings.RABBITMQ_EXCHANGE)
    log.info("RABBITMQ_URI not set; link events stay in process")
    return InMemoryEventSink()


async def init_state(
    app: FastAPI,
    db: AsyncIOMotorDatabase,
    *,
    event_sink: Optional[EventSink] = None,
    rank_sync: Optional[RankSync] = None,
    clock: Clock = utcnow,
) -> None:
    """Wire DALs and services onto app.state and make sure indexes exist."""
    app.state.mongo_db = db

    app.state.account_dal = AccountDAL(db)
    app.state.code_store = MongoCodeStore(db)
    app.state.security_log_dal = SecurityLogDAL(db)

    await app.state.account_dal.ensure_indexes()
    await app.state.code_store.ensure_indexes()
    await app.state.security_log_dal.ensure_indexes()

    # one mirror per process; evicted by the sweeper, never persisted
    app.state.code_mirror = VolatileCodeMirror()
    app.state.code_manager = LinkCodeManager(
        store=app.state.code_store,
        mirror=app.state.code_mirror,
        clock=clock,
    )
    app.state.event_sink = event_sink or _default_sink()
    app.state.linker = LinkApplier(
        codes=app.state.code_manager,
        accounts=app.state.account_dal,
        events=app.state.event_sink,
        audit=app.state.security_log_dal,
    )
    app.state.rank_sync = rank_sync or RankSync(
        accounts=app.state.account_dal,
        audit=app.state.security_log_dal,
        api_url=settings.LUCKPERMS_API_URL,
        timeout_seconds=settings.LUCKPERMS_TIMEOUT_SECONDS,
    )
    app.state.sweeper = LinkCodeSweeper(app.state.code_manager, settings.SWEEP_INTERVAL_SECONDS)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Minecraft Link Service",
        version="0.1.0",
        default_response_class=ORJSONResponse,
    )

    # Correlation-ID middleware (adds x-request-id/x-correlation-id)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(link_router)
    app.add_exception_handler(RequestValidationError, plugin_validation_handler)

    @app.on_event("startup")
    async def startup():
        if getattr(app.state, "code_manager", None) is None:
            log.info("startup begin mongo_db=%s", settings.MONGO_DB)
            await init_state(app, get_db())
        app.state.sweeper.start()
        log.info("startup complete")

    @app.on_event("shutdown")
    async def shutdown():
        sweeper = getattr(app.state, "sweeper", None)
        if sweeper:
            await sweeper.stop()
        sink = getattr(app.state, "event_sink", None)
        if sink:
            await sink.close()
        close_db()

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "mclink.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.ENV == "local",
    )
