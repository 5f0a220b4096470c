from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone


def normalize(value: str) -> str:
    """Case-folded form used for uniqueness and equality checks on emails and user names."""
    return value.strip().lower()


def new_security_stamp() -> str:
    return secrets.token_hex(16)


@dataclass(slots=True)
class Account:
    """Aggregate root for a tenant-scoped identity."""

    account_id: str
    tenant_id: str
    email: str
    user_name: str
    password_hash: str
    phone_number: str | None = None
    email_confirmed: bool = False
    security_stamp: str = field(default_factory=new_security_stamp)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def normalized_email(self) -> str:
        return normalize(self.email)

    @property
    def normalized_user_name(self) -> str:
        return normalize(self.user_name)

    def rotate_security_stamp(self) -> None:
        """Invalidate every token issued against the previous credentials or email."""
        self.security_stamp = new_security_stamp()

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)


@dataclass(slots=True)
class AccountView:
    """Outward projection of an account; never carries credential material."""

    account_id: str
    user_name: str
    email: str
    phone_number: str | None = None
    role_name: str | None = None

    @classmethod
    def from_domain(cls, account: Account, roles: list[str]) -> "AccountView":
        """Build a view surfacing only the first assigned role."""
        return cls(
            account_id=account.account_id,
            user_name=account.user_name,
            email=account.email,
            phone_number=account.phone_number,
            role_name=roles[0] if roles else None,
        )
