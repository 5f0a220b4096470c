"""Token-driven account flows: email confirmation, password reset and email change."""

from __future__ import annotations

import logging
from typing import Any

from .account import Account, normalize
from .context import CallContext
from .contracts import AccountStore, CredentialHasher, TokenCodec, TokenPurpose
from .errors import DuplicateEmailError, DuplicateUserNameError, InvalidTokenError, ValidationError
from .manager import require_account
from .policy import PasswordPolicy

logger = logging.getLogger(__name__)


class TokenFlowCoordinator:
    """Issue purpose-bound tokens and apply the account mutation they authorise.

    Tokens carry the account's security stamp. Resetting the password or
    changing the email rotates the stamp, so each reset or change token can
    be redeemed at most once.
    """

    def __init__(
        self,
        store: AccountStore,
        codec: TokenCodec,
        hasher: CredentialHasher,
        *,
        policy: PasswordPolicy | None = None,
        confirmation_ttl_seconds: int = 86400,
        password_reset_ttl_seconds: int = 3600,
        change_email_ttl_seconds: int = 86400,
    ) -> None:
        self._store = store
        self._codec = codec
        self._hasher = hasher
        self._policy = policy or PasswordPolicy()
        self._ttls = {
            TokenPurpose.email_confirmation: confirmation_ttl_seconds,
            TokenPurpose.password_reset: password_reset_ttl_seconds,
            TokenPurpose.change_email: change_email_ttl_seconds,
        }

    def _issue(self, account: Account, purpose: TokenPurpose, **payload: Any) -> str:
        return self._codec.issue(
            purpose,
            account.account_id,
            {"stamp": account.security_stamp, **payload},
            self._ttls[purpose],
        )

    def _redeem(self, account: Account, token: str, purpose: TokenPurpose) -> dict[str, Any]:
        try:
            if not token:
                raise InvalidTokenError("missing")
            payload = self._codec.redeem(token, purpose, account.account_id)
            if payload.get("stamp") != account.security_stamp:
                raise InvalidTokenError("stale")
        except InvalidTokenError as exc:
            logger.warning(
                "rejected %s token for account %s: %s", purpose.value, account.account_id, exc.reason
            )
            raise
        return payload

    def _stale(self, account: Account, purpose: TokenPurpose) -> InvalidTokenError:
        logger.warning(
            "rejected %s token for account %s: state changed during redemption", purpose.value, account.account_id
        )
        return InvalidTokenError("stale")

    def generate_confirmation_token(self, ctx: CallContext, account_id: str) -> str:
        account = require_account(self._store, ctx, account_id)
        return self._issue(account, TokenPurpose.email_confirmation)

    def confirm_account(self, ctx: CallContext, account_id: str, token: str) -> bool:
        """Mark the email confirmed; return ``True`` when it already was (token not checked)."""
        account = require_account(self._store, ctx, account_id)
        if account.email_confirmed:
            return True
        self._redeem(account, token, TokenPurpose.email_confirmation)
        account.email_confirmed = True
        account.touch()
        ctx.ensure_active()
        if not self._store.confirm_email(account, account.security_stamp):
            raise self._stale(account, TokenPurpose.email_confirmation)
        logger.info("account %s confirmed its email", account_id)
        return False

    def generate_password_reset_token(self, ctx: CallContext, account_id: str) -> str:
        account = require_account(self._store, ctx, account_id)
        return self._issue(account, TokenPurpose.password_reset)

    def reset_password(self, ctx: CallContext, account_id: str, token: str, new_password: str) -> None:
        """Replace the password; the write applies only if no other redemption got there first."""
        account = require_account(self._store, ctx, account_id)
        self._redeem(account, token, TokenPurpose.password_reset)
        violations = self._policy.violations(new_password or "")
        if violations:
            raise ValidationError(errors=violations)
        redeemed_stamp = account.security_stamp
        account.password_hash = self._hasher.hash(new_password)
        account.rotate_security_stamp()
        account.touch()
        ctx.ensure_active()
        if not self._store.update_password(account, redeemed_stamp):
            raise self._stale(account, TokenPurpose.password_reset)
        logger.info("password reset for account %s", account_id)

    def request_email_change(self, ctx: CallContext, account_id: str, new_email: str) -> str | None:
        """Return a change-email token, or ``None`` when ``new_email`` matches the current address."""
        account = require_account(self._store, ctx, account_id)
        new_email = (new_email or "").strip()
        if normalize(new_email) == account.normalized_email:
            return None
        if not new_email or "@" not in new_email:
            raise ValidationError(f"Email '{new_email}' is invalid.")
        return self._issue(account, TokenPurpose.change_email, new_email=new_email)

    def confirm_email_change(self, ctx: CallContext, account_id: str, new_email: str, token: str) -> None:
        account = require_account(self._store, ctx, account_id)
        payload = self._redeem(account, token, TokenPurpose.change_email)
        if payload.get("new_email") != new_email:
            logger.warning("change-email token for %s targets another address", account_id)
            raise InvalidTokenError("payload")

        ctx.ensure_active()
        holder = self._store.find_by_email(ctx.tenant_id, new_email)
        if holder is not None and holder.account_id != account_id:
            raise ValidationError(f"Email '{new_email}' is already taken.")

        # The user name follows the email only while it mirrors it.
        if account.normalized_user_name == account.normalized_email:
            ctx.ensure_active()
            holder = self._store.find_by_user_name(ctx.tenant_id, new_email)
            if holder is not None and holder.account_id != account_id:
                raise ValidationError(f"Username '{new_email}' is already taken.")
            account.user_name = new_email
        redeemed_stamp = account.security_stamp
        account.email = new_email
        account.email_confirmed = True
        account.rotate_security_stamp()
        account.touch()
        ctx.ensure_active()
        try:
            applied = self._store.update_email(account, redeemed_stamp)
        except (DuplicateEmailError, DuplicateUserNameError) as exc:
            raise ValidationError(exc.message) from exc
        if not applied:
            raise self._stale(account, TokenPurpose.change_email)
        logger.info("account %s changed its email", account_id)
