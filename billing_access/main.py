"""FastAPI application wiring for the billing access service."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import install_error_handlers, router as v1_router
from .config import Settings, get_settings
from .domain.authorizer import AccessGuard, RoleGate, ScopeAuthorizer
from .domain.directory import TenantDirectory
from .domain.generator import BillGenerator
from .domain.service import MembershipService
from .repository import (
    AccountRepository,
    MembershipRepository,
    ScheduleRepository,
    TenantRepository,
    build_pool,
)

settings = get_settings()


def wire_services(app: FastAPI, pool: ConnectionPool, settings: Settings) -> None:
    """Attach the repositories and services used by the routes to ``app.state``."""
    members = MembershipRepository(pool)
    accounts = AccountRepository(pool)
    authorizer = ScopeAuthorizer(members, accounts)
    app.state.tenant_directory = TenantDirectory(TenantRepository(pool))
    app.state.access_guard = AccessGuard(authorizer, RoleGate(members, settings.write_roles))
    app.state.membership_service = MembershipService(members, accounts)
    app.state.bill_generator = BillGenerator(
        ScheduleRepository(pool), horizon_days=settings.bill_generation_horizon_days
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
    pool = build_pool(settings)
    pool.open()
    app.state.pool = pool
    wire_services(app, pool, settings)
    try:
        yield
    finally:
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
install_error_handlers(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)
