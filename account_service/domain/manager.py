"""Account workflows: creation, lookup, credential checks, profile updates and roles."""

from __future__ import annotations

import logging
import uuid

from .account import Account, AccountView
from .context import CallContext
from .contracts import AccountStore, CreateAccountInput, CredentialHasher, RoleRegistry
from .errors import (
    MISSING_CREDENTIALS,
    AccountError,
    AuthenticationError,
    DuplicateEmailError,
    DuplicateRoleError,
    DuplicateUserNameError,
    NotFoundError,
    PartialFailureError,
    RepositoryError,
    ValidationError,
)
from .policy import PasswordPolicy

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "User"


def require_account(store: AccountStore, ctx: CallContext, account_id: str) -> Account:
    """Load an account of the calling tenant or raise ``NotFoundError``."""
    ctx.ensure_active()
    account = store.get(ctx.tenant_id, account_id) if account_id else None
    if account is None:
        raise NotFoundError()
    return account


class AccountManager:
    """Orchestrates the account store, role registry and credential hasher.

    Every method raises an :class:`AccountError` subclass for expected
    failures and lets :class:`RepositoryError` escape for persistence
    outages. Accounts hold at most one active role through this class.
    """

    def __init__(
        self,
        store: AccountStore,
        roles: RoleRegistry,
        hasher: CredentialHasher,
        *,
        policy: PasswordPolicy | None = None,
        default_role: str = DEFAULT_ROLE,
    ) -> None:
        self._store = store
        self._roles = roles
        self._hasher = hasher
        self._policy = policy or PasswordPolicy()
        self._default_role = default_role
        self._dummy_hash: str | None = None

    def create_account(self, ctx: CallContext, payload: CreateAccountInput) -> str:
        """Persist a new account and assign the default role, returning its id.

        The account is not rolled back when role assignment fails; the caller
        receives :class:`PartialFailureError` and the account stays unassigned.
        """
        email = payload.email.strip()
        errors: list[str] = []
        if not email or "@" not in email:
            errors.append(f"Email '{payload.email}' is invalid.")
        errors.extend(self._policy.violations(payload.password))
        if email:
            ctx.ensure_active()
            email_holder = self._store.find_by_email(ctx.tenant_id, email)
            if email_holder is not None:
                errors.append(f"Email '{email}' is already taken.")
            ctx.ensure_active()
            name_holder = self._store.find_by_user_name(ctx.tenant_id, email)
            if name_holder is not None and (
                email_holder is None or name_holder.account_id != email_holder.account_id
            ):
                errors.append(f"Username '{email}' is already taken.")
        if errors:
            raise ValidationError(errors=errors)

        account = Account(
            account_id=str(uuid.uuid4()),
            tenant_id=ctx.tenant_id,
            email=email,
            user_name=email,
            password_hash=self._hasher.hash(payload.password),
            email_confirmed=payload.email_confirmed,
        )
        ctx.ensure_active()
        try:
            self._store.add(account)
        except (DuplicateEmailError, DuplicateUserNameError) as exc:
            raise ValidationError(exc.message) from exc
        logger.info("account %s created for tenant %s", account.account_id, ctx.tenant_id)

        try:
            self._assign_default_role(ctx, account.account_id)
        except (AccountError, RepositoryError) as exc:
            logger.warning(
                "account %s created without role %s: %s", account.account_id, self._default_role, exc
            )
            raise PartialFailureError(
                f"Account was created but role '{self._default_role}' could not be assigned."
            ) from exc
        return account.account_id

    def _assign_default_role(self, ctx: CallContext, account_id: str) -> None:
        ctx.ensure_active()
        if not self._roles.role_exists(ctx.tenant_id, self._default_role):
            ctx.ensure_active()
            try:
                self._roles.create_role(ctx.tenant_id, self._default_role)
            except DuplicateRoleError:
                # Created by a concurrent request in the meantime.
                logger.debug("role %s already created", self._default_role)
        ctx.ensure_active()
        self._roles.assign_role(ctx.tenant_id, account_id, self._default_role)

    def get_account(self, ctx: CallContext, account_id: str) -> AccountView:
        account = require_account(self._store, ctx, account_id)
        ctx.ensure_active()
        return AccountView.from_domain(account, self._roles.roles_of(ctx.tenant_id, account_id))

    def list_accounts(self, ctx: CallContext) -> list[AccountView]:
        """Return every account of the tenant; a failed role lookup fails the whole listing."""
        ctx.ensure_active()
        views: list[AccountView] = []
        for account in self._store.list(ctx.tenant_id):
            ctx.ensure_active()
            roles = self._roles.roles_of(ctx.tenant_id, account.account_id)
            views.append(AccountView.from_domain(account, roles))
        return views

    def validate_credentials(self, ctx: CallContext, email: str, password: str) -> str:
        """Return the account id for matching credentials.

        Unknown emails and wrong passwords raise the same
        :class:`AuthenticationError` so callers cannot enumerate accounts.
        """
        if not email or not email.strip() or not password or not password.strip():
            raise ValidationError(MISSING_CREDENTIALS)

        ctx.ensure_active()
        account = self._store.find_by_email(ctx.tenant_id, email.strip())
        if account is None:
            # Spend comparable hashing time whether or not the account exists.
            self._hasher.verify(self._placeholder_hash(), password)
            logger.warning("credential check failed for unknown email in tenant %s", ctx.tenant_id)
            raise AuthenticationError()
        if not self._hasher.verify(account.password_hash, password):
            logger.warning("credential check failed for account %s", account.account_id)
            raise AuthenticationError()

        if self._hasher.needs_rehash(account.password_hash):
            self._rehash(ctx, account, password)
        return account.account_id

    def _placeholder_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash(uuid.uuid4().hex)
        return self._dummy_hash

    def _rehash(self, ctx: CallContext, account: Account, password: str) -> None:
        account.password_hash = self._hasher.hash(password)
        account.touch()
        try:
            ctx.ensure_active()
            # Same stamp in and out: a concurrent reset wins over the upgrade.
            if not self._store.update_password(account, account.security_stamp):
                logger.info("skipped hash upgrade for %s: credentials changed", account.account_id)
        except (AccountError, RepositoryError) as exc:
            logger.warning("could not upgrade password hash for %s: %s", account.account_id, exc)

    def update_phone_number(self, ctx: CallContext, account_id: str, phone_number: str | None) -> bool:
        """Overwrite the phone number; return ``False`` when it was already identical and nothing was written."""
        account = require_account(self._store, ctx, account_id)
        if account.phone_number == phone_number:
            return False
        account.phone_number = phone_number
        account.touch()
        ctx.ensure_active()
        if not self._store.update_phone_number(account):
            raise NotFoundError()
        return True

    def delete_account(self, ctx: CallContext, account_id: str) -> None:
        require_account(self._store, ctx, account_id)
        ctx.ensure_active()
        if not self._store.delete(ctx.tenant_id, account_id):
            raise NotFoundError()
        logger.info("account %s deleted", account_id)

    def change_user_role(self, ctx: CallContext, account_id: str, role_name: str) -> None:
        """Replace every assigned role with ``role_name``, which must already exist."""
        require_account(self._store, ctx, account_id)
        ctx.ensure_active()
        if not role_name or not self._roles.role_exists(ctx.tenant_id, role_name):
            raise ValidationError(f"Role '{role_name}' does not exist.")

        ctx.ensure_active()
        current = self._roles.roles_of(ctx.tenant_id, account_id)
        ctx.ensure_active()
        self._roles.remove_roles(ctx.tenant_id, account_id, current)
        try:
            ctx.ensure_active()
            self._roles.assign_role(ctx.tenant_id, account_id, role_name)
        except (AccountError, RepositoryError) as exc:
            logger.warning("account %s left without a role: %s", account_id, exc)
            raise PartialFailureError(
                f"Roles were removed but role '{role_name}' could not be assigned."
            ) from exc
        logger.info("account %s role changed from %s to %s", account_id, current, role_name)
