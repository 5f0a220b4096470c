"""Account service façade translating RPC calls into orchestration calls and replies."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from .account import AccountView
from .context import CallContext
from .contracts import CreateAccountInput
from .errors import AccountError, RepositoryError
from .manager import AccountManager
from .token_flows import TokenFlowCoordinator

logger = logging.getLogger(__name__)

UNEXPECTED_FAILURE = "An unexpected error occurred."


@dataclass(slots=True)
class Reply:
    """Outcome of one RPC; callers branch on ``succeeded``."""

    succeeded: bool
    message: str


@dataclass(slots=True)
class CreateAccountReply(Reply):
    account_id: str | None = None


@dataclass(slots=True)
class ValidateCredentialsReply(Reply):
    account_id: str | None = None


@dataclass(slots=True)
class AccountReply(Reply):
    account: AccountView | None = None


@dataclass(slots=True)
class AccountsReply(Reply):
    accounts: list[AccountView] = field(default_factory=list)


@dataclass(slots=True)
class TokenReply(Reply):
    token: str | None = None


R = TypeVar("R", bound=Reply)


class AccountService:
    """One method per RPC; each makes exactly one orchestration call and never raises."""

    def __init__(self, manager: AccountManager, flows: TokenFlowCoordinator) -> None:
        """Store the orchestrators every RPC delegates to."""
        self._manager = manager
        self._flows = flows

    def _guard(self, ctx: CallContext, reply_type: type[R], call: Callable[[], R]) -> R:
        try:
            return call()
        except AccountError as exc:
            return reply_type(succeeded=False, message=exc.message)
        except RepositoryError as exc:
            logger.error("%s failed in persistence: %s", ctx.method or "call", exc)
            return reply_type(succeeded=False, message=exc.message)
        except Exception:
            logger.exception("%s failed unexpectedly", ctx.method or "call")
            return reply_type(succeeded=False, message=UNEXPECTED_FAILURE)

    def create_account(
        self, ctx: CallContext, email: str, password: str, *, email_confirmed: bool = False
    ) -> CreateAccountReply:
        def call() -> CreateAccountReply:
            account_id = self._manager.create_account(
                ctx, CreateAccountInput(email=email, password=password, email_confirmed=email_confirmed)
            )
            return CreateAccountReply(True, "Account was created successfully.", account_id)

        return self._guard(ctx, CreateAccountReply, call)

    def get_accounts(self, ctx: CallContext) -> AccountsReply:
        def call() -> AccountsReply:
            accounts = self._manager.list_accounts(ctx)
            message = "Accounts were retrieved." if accounts else "No accounts found."
            return AccountsReply(True, message, accounts)

        return self._guard(ctx, AccountsReply, call)

    def get_account(self, ctx: CallContext, account_id: str) -> AccountReply:
        def call() -> AccountReply:
            return AccountReply(True, "Account was found.", self._manager.get_account(ctx, account_id))

        return self._guard(ctx, AccountReply, call)

    def validate_credentials(self, ctx: CallContext, email: str, password: str) -> ValidateCredentialsReply:
        def call() -> ValidateCredentialsReply:
            account_id = self._manager.validate_credentials(ctx, email, password)
            return ValidateCredentialsReply(True, "Login successful", account_id)

        return self._guard(ctx, ValidateCredentialsReply, call)

    def update_phone_number(self, ctx: CallContext, account_id: str, phone_number: str | None) -> Reply:
        def call() -> Reply:
            self._manager.update_phone_number(ctx, account_id, phone_number)
            return Reply(True, "Account was updated successfully.")

        return self._guard(ctx, Reply, call)

    def delete_account_by_id(self, ctx: CallContext, account_id: str) -> Reply:
        def call() -> Reply:
            self._manager.delete_account(ctx, account_id)
            return Reply(True, "Account was deleted successfully.")

        return self._guard(ctx, Reply, call)

    def change_user_role(self, ctx: CallContext, account_id: str, new_role: str) -> Reply:
        def call() -> Reply:
            self._manager.change_user_role(ctx, account_id, new_role)
            return Reply(True, f"Role changed to '{new_role}' successfully.")

        return self._guard(ctx, Reply, call)

    def confirm_account(self, ctx: CallContext, account_id: str, token: str) -> Reply:
        def call() -> Reply:
            if self._flows.confirm_account(ctx, account_id, token):
                return Reply(True, "Account is already confirmed.")
            return Reply(True, "Email confirmed successfully.")

        return self._guard(ctx, Reply, call)

    def update_email(self, ctx: CallContext, account_id: str, new_email: str) -> TokenReply:
        def call() -> TokenReply:
            token = self._flows.request_email_change(ctx, account_id, new_email)
            if token is None:
                return TokenReply(True, "Email is unchanged.")
            return TokenReply(True, "Token generated from email change.", token)

        return self._guard(ctx, TokenReply, call)

    def confirm_email_change(self, ctx: CallContext, account_id: str, new_email: str, token: str) -> Reply:
        def call() -> Reply:
            self._flows.confirm_email_change(ctx, account_id, new_email, token)
            return Reply(True, "Email confirmed successfully.")

        return self._guard(ctx, Reply, call)

    def reset_password(self, ctx: CallContext, account_id: str, token: str, new_password: str) -> Reply:
        def call() -> Reply:
            self._flows.reset_password(ctx, account_id, token, new_password)
            return Reply(True, "Password reset successfully.")

        return self._guard(ctx, Reply, call)

    def generate_email_confirmation_token(self, ctx: CallContext, account_id: str) -> TokenReply:
        def call() -> TokenReply:
            token = self._flows.generate_confirmation_token(ctx, account_id)
            return TokenReply(True, "Token generated successfully.", token)

        return self._guard(ctx, TokenReply, call)

    def generate_password_reset_token(self, ctx: CallContext, account_id: str) -> TokenReply:
        def call() -> TokenReply:
            token = self._flows.generate_password_reset_token(ctx, account_id)
            return TokenReply(True, "Password reset token generated.", token)

        return self._guard(ctx, TokenReply, call)
