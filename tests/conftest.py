from __future__ import annotations

from dataclasses import replace

import pytest
from argon2 import PasswordHasher, Type
from fastapi import FastAPI
from fastapi.testclient import TestClient

from account_service.api import routes
from account_service.api.error_handlers import register_error_handlers
from account_service.domain.account import Account, normalize
from account_service.domain.context import CallContext
from account_service.domain.errors import (
    DuplicateEmailError,
    DuplicateRoleError,
    DuplicateUserNameError,
    RepositoryError,
)
from account_service.domain.manager import AccountManager
from account_service.domain.service import AccountService
from account_service.domain.token_flows import TokenFlowCoordinator
from account_service.security.passwords import Argon2CredentialHasher
from account_service.security.rate_limiter import SlidingWindowRateLimiter
from account_service.security.tokens import JwtTokenCodec

TENANT = "tenant-1"


class FailureInjection:
    """Mixin letting tests make selected repository methods raise."""

    def __init__(self) -> None:
        self.failing: set[str] = set()
        self.calls: list[str] = []

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failing:
            raise RepositoryError("Database connection failed.")


class FakeAccountStore(FailureInjection):
    """In-memory account store mimicking the Postgres constraints and guarded writes."""

    WRITES = {"add", "update_phone_number", "confirm_email", "update_password", "update_email", "delete"}

    def __init__(self) -> None:
        super().__init__()
        self._accounts: dict[tuple[str, str], Account] = {}

    def add(self, account: Account) -> Account:
        self._enter("add")
        self._check_unique(account)
        self._accounts[(account.tenant_id, account.account_id)] = replace(account)
        return account

    def get(self, tenant_id: str, account_id: str) -> Account | None:
        self._enter("get")
        stored = self._accounts.get((tenant_id, account_id))
        return replace(stored) if stored else None

    def find_by_email(self, tenant_id: str, email: str) -> Account | None:
        self._enter("find_by_email")
        for stored in self._accounts.values():
            if stored.tenant_id == tenant_id and stored.normalized_email == normalize(email):
                return replace(stored)
        return None

    def find_by_user_name(self, tenant_id: str, user_name: str) -> Account | None:
        self._enter("find_by_user_name")
        for stored in self._accounts.values():
            if stored.tenant_id == tenant_id and stored.normalized_user_name == normalize(user_name):
                return replace(stored)
        return None

    def list(self, tenant_id: str) -> list[Account]:
        self._enter("list")
        return [replace(a) for a in self._accounts.values() if a.tenant_id == tenant_id]

    def update_phone_number(self, account: Account) -> bool:
        self._enter("update_phone_number")
        stored = self._accounts.get((account.tenant_id, account.account_id))
        if stored is None:
            return False
        stored.phone_number = account.phone_number
        stored.updated_at = account.updated_at
        return True

    def confirm_email(self, account: Account, expected_stamp: str) -> bool:
        self._enter("confirm_email")
        stored = self._matching(account, expected_stamp)
        if stored is None:
            return False
        stored.email_confirmed = True
        stored.updated_at = account.updated_at
        return True

    def update_password(self, account: Account, expected_stamp: str) -> bool:
        self._enter("update_password")
        stored = self._matching(account, expected_stamp)
        if stored is None:
            return False
        stored.password_hash = account.password_hash
        stored.security_stamp = account.security_stamp
        stored.updated_at = account.updated_at
        return True

    def update_email(self, account: Account, expected_stamp: str) -> bool:
        self._enter("update_email")
        stored = self._matching(account, expected_stamp)
        if stored is None:
            return False
        self._check_unique(account)
        stored.email = account.email
        stored.user_name = account.user_name
        stored.email_confirmed = account.email_confirmed
        stored.security_stamp = account.security_stamp
        stored.updated_at = account.updated_at
        return True

    def delete(self, tenant_id: str, account_id: str) -> bool:
        self._enter("delete")
        return self._accounts.pop((tenant_id, account_id), None) is not None

    def _matching(self, account: Account, expected_stamp: str) -> Account | None:
        stored = self._accounts.get((account.tenant_id, account.account_id))
        if stored is None or stored.security_stamp != expected_stamp:
            return None
        return stored

    def _check_unique(self, account: Account) -> None:
        for stored in self._accounts.values():
            if stored.tenant_id != account.tenant_id or stored.account_id == account.account_id:
                continue
            if stored.normalized_email == account.normalized_email:
                raise DuplicateEmailError(account.email)
            if stored.normalized_user_name == account.normalized_user_name:
                raise DuplicateUserNameError(account.user_name)

    def stored(self, account_id: str, tenant_id: str = TENANT) -> Account | None:
        return self._accounts.get((tenant_id, account_id))

    def writes(self) -> int:
        return sum(1 for name in self.calls if name in self.WRITES)


class FakeRoleRegistry(FailureInjection):
    def __init__(self, roles: tuple[str, ...] = ()) -> None:
        super().__init__()
        self._roles: dict[str, set[str]] = {}
        self._assignments: dict[tuple[str, str], list[str]] = {}
        for name in roles:
            self._roles.setdefault(TENANT, set()).add(name)

    def role_exists(self, tenant_id: str, name: str) -> bool:
        self._enter("role_exists")
        return name in self._roles.get(tenant_id, set())

    def create_role(self, tenant_id: str, name: str) -> None:
        self._enter("create_role")
        known = self._roles.setdefault(tenant_id, set())
        if name in known:
            raise DuplicateRoleError(name)
        known.add(name)

    def assign_role(self, tenant_id: str, account_id: str, role_name: str) -> None:
        self._enter("assign_role")
        if role_name not in self._roles.get(tenant_id, set()):
            raise RepositoryError(f"Role '{role_name}' does not exist.")
        assigned = self._assignments.setdefault((tenant_id, account_id), [])
        if role_name not in assigned:
            assigned.append(role_name)

    def remove_roles(self, tenant_id: str, account_id: str, role_names: list[str]) -> None:
        self._enter("remove_roles")
        assigned = self._assignments.get((tenant_id, account_id), [])
        self._assignments[(tenant_id, account_id)] = [r for r in assigned if r not in role_names]

    def roles_of(self, tenant_id: str, account_id: str) -> list[str]:
        self._enter("roles_of")
        return sorted(self._assignments.get((tenant_id, account_id), []))


@pytest.fixture
def ctx() -> CallContext:
    return CallContext.with_timeout(TENANT, 30, method="test")


@pytest.fixture
def store() -> FakeAccountStore:
    return FakeAccountStore()


@pytest.fixture
def roles() -> FakeRoleRegistry:
    return FakeRoleRegistry(roles=("Admin",))


@pytest.fixture(scope="session")
def hasher() -> Argon2CredentialHasher:
    # Cheap parameters keep the suite fast while exercising real argon2.
    return Argon2CredentialHasher(
        PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1, type=Type.ID)
    )


@pytest.fixture
def codec() -> JwtTokenCodec:
    return JwtTokenCodec("test-secret-key-for-account-service-suite", "test-issuer")


@pytest.fixture
def manager(store, roles, hasher) -> AccountManager:
    return AccountManager(store, roles, hasher)


@pytest.fixture
def flows(store, codec, hasher) -> TokenFlowCoordinator:
    return TokenFlowCoordinator(store, codec, hasher)


@pytest.fixture
def service(manager, flows) -> AccountService:
    return AccountService(manager, flows)


@pytest.fixture
def api_client(service):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    register_error_handlers(app)
    app.include_router(routes.router)
    app.state.account_service = service

    original_limiter = routes.rate_limiter
    routes.rate_limiter = SlidingWindowRateLimiter(max_requests=3, window_seconds=60)

    with TestClient(app, raise_server_exceptions=False) as client:
        yield client

    routes.rate_limiter = original_limiter
