"""Database repositories for account and role data."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import Account, normalize
from .domain.errors import DuplicateEmailError, DuplicateRoleError, DuplicateUserNameError, RepositoryError

logger = logging.getLogger(__name__)

_ACCOUNT_COLUMNS = """
    account_id, tenant_id, email, user_name, password_hash, phone_number,
    email_confirmed, security_stamp, created_at, updated_at
"""

# Constraint names from schema.sql.
_USER_NAME_CONSTRAINT = "accounts_tenant_user_name_key"


def _duplicate_error(exc: pg_errors.UniqueViolation, account: Account) -> RepositoryError:
    if exc.diag.constraint_name == _USER_NAME_CONSTRAINT:
        return DuplicateUserNameError(account.user_name)
    return DuplicateEmailError(account.email)


@contextmanager
def _tenant_cursor(pool: ConnectionPool, tenant_id: str) -> Iterator[tuple[psycopg.Connection, psycopg.Cursor]]:
    """Yield a connection and cursor scoped to ``tenant_id``, mapping driver errors to ``RepositoryError``."""
    try:
        with pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute("SELECT set_config('app.tenant_id', %s, true)", (tenant_id,))
                yield conn, cur
    except RepositoryError:
        raise
    except psycopg.OperationalError as exc:
        logger.error("database unavailable: %s", exc)
        raise RepositoryError("Database connection failed.") from exc
    except psycopg.Error as exc:
        logger.error("database operation failed: %s", exc)
        raise RepositoryError("Database operation failed.") from exc


class AccountRepository:
    """Postgres-backed account store; uniqueness is enforced by table constraints."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def add(self, account: Account) -> Account:
        """Insert ``account``; unique violations raise ``DuplicateEmailError`` or ``DuplicateUserNameError``."""
        with _tenant_cursor(self._pool, account.tenant_id) as (conn, cur):
            try:
                cur.execute(
                    """
                    INSERT INTO accounts (
                        account_id, tenant_id, email, normalized_email, user_name,
                        normalized_user_name, password_hash, phone_number,
                        email_confirmed, security_stamp, created_at, updated_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        account.account_id,
                        account.tenant_id,
                        account.email,
                        account.normalized_email,
                        account.user_name,
                        account.normalized_user_name,
                        account.password_hash,
                        account.phone_number,
                        account.email_confirmed,
                        account.security_stamp,
                        account.created_at,
                        account.updated_at,
                    ),
                )
            except pg_errors.UniqueViolation as exc:
                conn.rollback()
                raise _duplicate_error(exc, account) from exc
            conn.commit()
        return account

    def get(self, tenant_id: str, account_id: str) -> Account | None:
        """Fetch an account belonging to the specified tenant or return ``None``."""
        with _tenant_cursor(self._pool, tenant_id) as (_, cur):
            cur.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE account_id = %s AND tenant_id = %s",
                (account_id, tenant_id),
            )
            row = cur.fetchone()
        return self._map_record(row) if row else None

    def find_by_email(self, tenant_id: str, email: str) -> Account | None:
        with _tenant_cursor(self._pool, tenant_id) as (_, cur):
            cur.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE normalized_email = %s AND tenant_id = %s",
                (normalize(email), tenant_id),
            )
            row = cur.fetchone()
        return self._map_record(row) if row else None

    def find_by_user_name(self, tenant_id: str, user_name: str) -> Account | None:
        with _tenant_cursor(self._pool, tenant_id) as (_, cur):
            cur.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE normalized_user_name = %s AND tenant_id = %s",
                (normalize(user_name), tenant_id),
            )
            row = cur.fetchone()
        return self._map_record(row) if row else None

    def list(self, tenant_id: str) -> list[Account]:
        """Return every account of the tenant ordered by creation time."""
        with _tenant_cursor(self._pool, tenant_id) as (_, cur):
            cur.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE tenant_id = %s ORDER BY created_at, account_id",
                (tenant_id,),
            )
            rows = cur.fetchall()
        return [self._map_record(row) for row in rows]

    def update_phone_number(self, account: Account) -> bool:
        """Write only the phone number so concurrent credential changes survive."""
        return self._apply(
            account,
            """
            UPDATE accounts SET phone_number = %s, updated_at = %s
            WHERE account_id = %s AND tenant_id = %s
            """,
            (account.phone_number, account.updated_at, account.account_id, account.tenant_id),
        )

    def confirm_email(self, account: Account, expected_stamp: str) -> bool:
        return self._apply(
            account,
            """
            UPDATE accounts SET email_confirmed = TRUE, updated_at = %s
            WHERE account_id = %s AND tenant_id = %s AND security_stamp = %s
            """,
            (account.updated_at, account.account_id, account.tenant_id, expected_stamp),
        )

    def update_password(self, account: Account, expected_stamp: str) -> bool:
        """Store a new hash and stamp unless the stamp moved since ``account`` was read."""
        return self._apply(
            account,
            """
            UPDATE accounts SET password_hash = %s, security_stamp = %s, updated_at = %s
            WHERE account_id = %s AND tenant_id = %s AND security_stamp = %s
            """,
            (
                account.password_hash,
                account.security_stamp,
                account.updated_at,
                account.account_id,
                account.tenant_id,
                expected_stamp,
            ),
        )

    def update_email(self, account: Account, expected_stamp: str) -> bool:
        return self._apply(
            account,
            """
            UPDATE accounts
            SET email = %s,
                normalized_email = %s,
                user_name = %s,
                normalized_user_name = %s,
                email_confirmed = %s,
                security_stamp = %s,
                updated_at = %s
            WHERE account_id = %s AND tenant_id = %s AND security_stamp = %s
            """,
            (
                account.email,
                account.normalized_email,
                account.user_name,
                account.normalized_user_name,
                account.email_confirmed,
                account.security_stamp,
                account.updated_at,
                account.account_id,
                account.tenant_id,
                expected_stamp,
            ),
        )

    def _apply(self, account: Account, query: str, params: tuple) -> bool:
        with _tenant_cursor(self._pool, account.tenant_id) as (conn, cur):
            try:
                cur.execute(query, params)
            except pg_errors.UniqueViolation as exc:
                conn.rollback()
                raise _duplicate_error(exc, account) from exc
            applied = cur.rowcount > 0
            conn.commit()
        return applied

    def delete(self, tenant_id: str, account_id: str) -> bool:
        """Remove the account and its role assignments; return ``False`` when nothing matched."""
        with _tenant_cursor(self._pool, tenant_id) as (conn, cur):
            cur.execute(
                "DELETE FROM accounts WHERE account_id = %s AND tenant_id = %s",
                (account_id, tenant_id),
            )
            deleted = cur.rowcount > 0
            conn.commit()
        return deleted

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            tenant_id=row[1],
            email=row[2],
            user_name=row[3],
            password_hash=row[4],
            phone_number=row[5],
            email_confirmed=row[6],
            security_stamp=row[7],
            created_at=row[8],
            updated_at=row[9],
        )


class RoleRepository:
    """Postgres-backed role registry and per-account role assignment."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def role_exists(self, tenant_id: str, name: str) -> bool:
        with _tenant_cursor(self._pool, tenant_id) as (_, cur):
            cur.execute(
                "SELECT 1 FROM roles WHERE tenant_id = %s AND normalized_name = %s",
                (tenant_id, normalize(name)),
            )
            return cur.fetchone() is not None

    def create_role(self, tenant_id: str, name: str) -> None:
        """Insert a role; raises ``DuplicateRoleError`` if the name is already registered."""
        with _tenant_cursor(self._pool, tenant_id) as (conn, cur):
            try:
                cur.execute(
                    "INSERT INTO roles (tenant_id, name, normalized_name) VALUES (%s, %s, %s)",
                    (tenant_id, name, normalize(name)),
                )
            except pg_errors.UniqueViolation as exc:
                conn.rollback()
                raise DuplicateRoleError(name) from exc
            conn.commit()

    def assign_role(self, tenant_id: str, account_id: str, role_name: str) -> None:
        """Assign ``role_name``; an unknown role raises ``RepositoryError`` and nothing is committed."""
        with _tenant_cursor(self._pool, tenant_id) as (conn, cur):
            cur.execute(
                """
                INSERT INTO account_roles (tenant_id, account_id, role_name)
                SELECT tenant_id, %s, name FROM roles
                WHERE tenant_id = %s AND normalized_name = %s
                ON CONFLICT (tenant_id, account_id, role_name) DO NOTHING
                """,
                (account_id, tenant_id, normalize(role_name)),
            )
            if cur.rowcount == 0:
                # Zero rows is either an existing assignment or a missing role.
                cur.execute(
                    "SELECT 1 FROM roles WHERE tenant_id = %s AND normalized_name = %s",
                    (tenant_id, normalize(role_name)),
                )
                if cur.fetchone() is None:
                    conn.rollback()
                    logger.error("cannot assign unknown role %s to account %s", role_name, account_id)
                    raise RepositoryError(f"Role '{role_name}' does not exist.")
            conn.commit()

    def remove_roles(self, tenant_id: str, account_id: str, role_names: list[str]) -> None:
        if not role_names:
            return
        with _tenant_cursor(self._pool, tenant_id) as (conn, cur):
            cur.execute(
                """
                DELETE FROM account_roles
                WHERE tenant_id = %s AND account_id = %s AND role_name = ANY(%s)
                """,
                (tenant_id, account_id, list(role_names)),
            )
            conn.commit()

    def roles_of(self, tenant_id: str, account_id: str) -> list[str]:
        """Return role names assigned to the account, ordered by name."""
        with _tenant_cursor(self._pool, tenant_id) as (_, cur):
            cur.execute(
                """
                SELECT role_name FROM account_roles
                WHERE tenant_id = %s AND account_id = %s
                ORDER BY role_name
                """,
                (tenant_id, account_id),
            )
            return [row[0] for row in cur.fetchall()]
