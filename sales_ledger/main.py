"""
Sales Ledger — FastAPI Application.

This is the entry point for the application. The lifespan hook
builds the ledger event service, loads the store and runs the
bootstrap duplicate cleanup before the first request is served.
All routers are registered here.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.orm import Session, sessionmaker

from sales_ledger.api.health import router as health_router
from sales_ledger.api.ledger_events import router as ledger_events_router
from sales_ledger.config import Settings, get_settings
from sales_ledger.logging_config import configure_logging
from sales_ledger.models import Base
from sales_ledger.models.base import SessionLocal
from sales_ledger.services.event_bus import AuditTrail, InProcessEventBus
from sales_ledger.services.event_store import SqlAlchemyEventBackend
from sales_ledger.services.ledger_service import LedgerEventService

logger = logging.getLogger(__name__)


def create_app(
    session_factory: sessionmaker[Session] = SessionLocal,
    settings: Settings | None = None,
) -> FastAPI:
    """
    Build the application around a database session factory.

    Tests pass their own factory to run against an isolated
    database.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.LOG_LEVEL)
        Base.metadata.create_all(bind=session_factory.kw["bind"])

        bus = InProcessEventBus()
        audit_trail = AuditTrail(session_factory)
        bus.subscribe(InProcessEventBus.WILDCARD, audit_trail)

        service = LedgerEventService.from_settings(
            SqlAlchemyEventBackend(session_factory),
            publisher=bus,
            settings=settings,
        )
        await service.initialize()
        logger.info(
            "event=app_started environment=%s ledger_events=%d",
            settings.ENVIRONMENT, len(service.store),
        )

        app.state.event_bus = bus
        app.state.ledger_service = service
        yield
        await service.shutdown()
        audit_trail.close()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Deduplication and consolidation of sales ledger events",
        lifespan=lifespan,
    )

    # Register routers
    app.include_router(health_router)
    app.include_router(ledger_events_router)
    return app


app = create_app()


def run() -> None:
    """Serve the default application with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "sales_ledger.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    run()
