"""Dance studio admin - FastAPI entrypoint for the attendance and ledger engine."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dance_admin.api import attendance, holidays, students
from dance_admin.api.errors import ErrorHandlerRegistry, default_registry
from dance_admin.config import Settings, get_settings
from dance_admin.db import db_shutdown, db_startup
from dance_admin.errors import Unavailable
from dance_admin.persistence.gateway import PersistenceGateway
from dance_admin.services.container import build_services

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    gateway: Optional[PersistenceGateway] = None,
    settings: Optional[Settings] = None,
    registry: Optional[ErrorHandlerRegistry] = None,
) -> FastAPI:
    """Build the app. Without a gateway, MongoDB is connected in the lifespan."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        store = gateway
        if store is None:
            try:
                owned = store = await db_startup(settings)
            except Unavailable as e:
                logger.error(
                    "MongoDB is not running. Start it with: docker compose up -d (from project root)"
                )
                raise RuntimeError(
                    "MongoDB connection failed. Start MongoDB (e.g. docker compose up -d)."
                ) from e
        app.state.services = build_services(store, settings)
        yield
        if owned is not None:
            await db_shutdown(owned)

    app = FastAPI(
        title=settings.app_name,
        description="Attendance fees, student balances and holiday credits for the dance studio",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": exc.errors()},
        )

    (registry or default_registry()).install(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # API routes
    app.include_router(attendance.router, prefix="/api/attendance", tags=["Attendance"])
    app.include_router(holidays.router, prefix="/api/holidays", tags=["Holidays"])
    app.include_router(students.router, prefix="/api/students", tags=["Students / Ledger"])

    @app.get("/health")
    def health():
        return {"status": "ok", "app": settings.app_name}

    return app


configure_logging(get_settings())
app = create_app()
