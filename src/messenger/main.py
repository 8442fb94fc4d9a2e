"""
FastAPI application factory.

    uvicorn messenger.main:app

`create_app()` wires settings, logging, the realtime bus and the conversation
store. Tests pass their own store and bus; the lifespan then builds nothing.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from messenger.api.v1 import register_exception_handlers, router as v1_router
from messenger.config.settings import Settings, get_settings
from messenger.core.logging import CorrelationIdMiddleware, setup_logging, stop_queue_logging
from messenger.database.session import build_session_factory, create_schema, engine_from_settings
from messenger.realtime.bus import RealtimeBus, get_bus
from messenger.store.conversation_store import ConversationStore
from messenger.utils.logging import get_project_name, get_project_version

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    store: ConversationStore | None = None,
    bus: RealtimeBus | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    owns_bus = bus is None
    bus = bus if bus is not None else get_bus(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not settings.TESTING:
            setup_logging(settings)

        engine = None
        if app.state.store is None:
            engine = engine_from_settings(settings)
            await create_schema(engine)
            app.state.store = ConversationStore(
                build_session_factory(engine),
                app.state.bus,
                preview_length=settings.MESSAGE_PREVIEW_LENGTH,
                max_message_length=settings.MAX_MESSAGE_LENGTH,
            )
        logger.info("app.startup", extra={"env": settings.ENV, "realtime_backend": settings.REALTIME_BACKEND})
        try:
            yield
        finally:
            logger.info("app.shutdown")
            if owns_bus:
                await app.state.bus.close()
            if engine is not None:
                await engine.dispose()
            stop_queue_logging()

    app = FastAPI(
        title=get_project_name(),
        version=get_project_version(),
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.bus = bus
    app.state.store = store

    app.add_middleware(CorrelationIdMiddleware)
    register_exception_handlers(app)
    app.include_router(v1_router)
    return app


app = create_app()
