# main.py
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from sqlalchemy.engine import Engine

from portfolio_tracker.config.logging_config import configure_logging
from portfolio_tracker.database import create_session_factory, engine as default_engine, init_db
from portfolio_tracker.middleware.request_logging import RequestLoggingMiddleware
from portfolio_tracker.routers.portfolio_routes import router as portfolio_router
from portfolio_tracker.services.repository import SqlLedgerRepository
from portfolio_tracker.services.session_registry import CoordinatorRegistry


def create_app(engine: Optional[Engine] = None) -> FastAPI:
    bind = engine or default_engine
    repository = SqlLedgerRepository(create_session_factory(bind))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        init_db(bind)
        yield
        # stop every price loop before the event loop goes away
        await app.state.registry.shutdown()

    app = FastAPI(lifespan=lifespan)
    app.state.repository = repository
    app.state.registry = CoordinatorRegistry(repository)

    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(portfolio_router, prefix="/api/portfolio")
    return app


app = create_app()
