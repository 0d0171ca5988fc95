"""FastAPI application wiring for the back-office service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import AsyncConnectionPool

from .api.errors import register_exception_handlers
from .api.routes import router
from .config import get_settings
from .domain.service import BackofficeService
from .repository import PostgresRepository
from .security.tokens import CredentialVerifier

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


def build_verifier() -> CredentialVerifier:
    return CredentialVerifier(
        secret=settings.jwt_secret,
        issuer=settings.jwt_issuer,
        ttl_seconds=settings.jwt_ttl_seconds,
        default_role=settings.default_role,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
    pool = AsyncConnectionPool(settings.database_url, open=False)
    await pool.open()
    app.state.pool = pool
    app.state.backoffice_service = BackofficeService(PostgresRepository(pool), build_verifier())
    try:
        yield
    finally:
        await pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
register_exception_handlers(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(router)
