"""Domain-level contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from .account import Account


class TokenPurpose(str, Enum):
    email_confirmation = "email-confirmation"
    password_reset = "password-reset"
    change_email = "change-email"


@dataclass(slots=True)
class CreateAccountInput:
    """Inputs required to create an account within a tenant."""

    email: str
    password: str
    email_confirmed: bool = False


class AccountStore(Protocol):
    """Durable mapping from account identity to account record.

    Writes touch only the columns of the operation at hand. The
    ``expected_stamp`` writes apply only while the stored security stamp
    still equals it; every write returns ``False`` when no row matched.
    """

    def add(self, account: Account) -> Account: ...

    def get(self, tenant_id: str, account_id: str) -> Account | None: ...

    def find_by_email(self, tenant_id: str, email: str) -> Account | None: ...

    def find_by_user_name(self, tenant_id: str, user_name: str) -> Account | None: ...

    def list(self, tenant_id: str) -> list[Account]: ...

    def update_phone_number(self, account: Account) -> bool: ...

    def confirm_email(self, account: Account, expected_stamp: str) -> bool: ...

    def update_password(self, account: Account, expected_stamp: str) -> bool: ...

    def update_email(self, account: Account, expected_stamp: str) -> bool: ...

    def delete(self, tenant_id: str, account_id: str) -> bool: ...


class RoleRegistry(Protocol):
    """Known role names and per-account role assignment."""

    def role_exists(self, tenant_id: str, name: str) -> bool: ...

    def create_role(self, tenant_id: str, name: str) -> None: ...

    def assign_role(self, tenant_id: str, account_id: str, role_name: str) -> None:
        """Assign an existing role; raise ``RepositoryError`` when the role is unknown."""
        ...

    def remove_roles(self, tenant_id: str, account_id: str, role_names: list[str]) -> None: ...

    def roles_of(self, tenant_id: str, account_id: str) -> list[str]: ...


class CredentialHasher(Protocol):
    def hash(self, password: str) -> str: ...

    def verify(self, password_hash: str, password: str) -> bool: ...

    def needs_rehash(self, password_hash: str) -> bool: ...


class TokenCodec(Protocol):
    def issue(
        self,
        purpose: TokenPurpose,
        subject: str,
        payload: dict[str, Any],
        ttl_seconds: int,
    ) -> str: ...

    def redeem(self, token: str, purpose: TokenPurpose, subject: str) -> dict[str, Any]:
        """Return the payload or raise ``InvalidTokenError``."""
        ...
