"""FastAPI application wiring for the account service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from psycopg_pool import ConnectionPool

from .api.error_handlers import register_error_handlers
from .api.routes import router as rpc_router
from .config import Settings, configure_logging, get_settings
from .domain.contracts import RoleRegistry
from .domain.errors import DuplicateRoleError
from .domain.manager import AccountManager
from .domain.policy import PasswordPolicy
from .domain.service import AccountService
from .domain.token_flows import TokenFlowCoordinator
from .repository import AccountRepository, RoleRepository
from .security.passwords import Argon2CredentialHasher
from .security.tokens import JwtTokenCodec

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings.log_level)


def build_account_service(pool: ConnectionPool, settings: Settings) -> tuple[AccountService, RoleRepository]:
    """Assemble the façade and its orchestrators on top of the Postgres repositories."""
    accounts = AccountRepository(pool)
    roles = RoleRepository(pool)
    hasher = Argon2CredentialHasher()
    policy = PasswordPolicy(min_length=settings.password_min_length)
    manager = AccountManager(accounts, roles, hasher, policy=policy, default_role=settings.default_role)
    flows = TokenFlowCoordinator(
        accounts,
        JwtTokenCodec(settings.token_secret, settings.token_issuer),
        hasher,
        policy=policy,
        confirmation_ttl_seconds=settings.confirmation_token_ttl_seconds,
        password_reset_ttl_seconds=settings.password_reset_token_ttl_seconds,
        change_email_ttl_seconds=settings.change_email_token_ttl_seconds,
    )
    return AccountService(manager, flows), roles


def seed_roles(registry: RoleRegistry, tenant_id: str, names: list[str]) -> list[str]:
    """Create any missing role from ``names`` and return the ones created."""
    created: list[str] = []
    for name in names:
        if registry.role_exists(tenant_id, name):
            continue
        try:
            registry.create_role(tenant_id, name)
        except DuplicateRoleError:
            continue
        created.append(name)
    if created:
        logger.info("seeded roles %s for tenant %s", created, tenant_id)
    return created


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    app.state.pool = pool
    service, roles = build_account_service(pool, settings)
    seed_roles(roles, settings.default_tenant_id, settings.seed_role_names)
    app.state.account_service = service
    try:
        yield
    finally:
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


register_error_handlers(app)
app.include_router(rpc_router)


# Prometheus metrics endpoint for Prometheus scrapes
try:
    from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
except ImportError:  # pragma: no cover - metrics are optional in dev
    logger.debug("prometheus_client not installed; /metrics disabled")


def run() -> None:
    """Console entrypoint serving the app with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=settings.http_host, port=settings.http_port)
