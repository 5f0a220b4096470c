"""RPC route definitions for the account service.

Each RPC is exposed as ``POST /v1/rpc/<Method>``. Domain outcomes are
always HTTP 200 with ``succeeded``/``message`` in the body; only rate
limiting answers with 429.
"""

from __future__ import annotations

import hashlib
import logging

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..config import get_settings
from ..domain.account import AccountView
from ..domain.context import CallContext
from ..domain.service import AccountService
from ..security.rate_limiter import SlidingWindowRateLimiter
from ..security.redis_rate_limiter import RedisSlidingWindowRateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/rpc", tags=["accounts"])

RATE_LIMITED = "Too many requests."


class RpcModel(BaseModel):
    """Base model using camelCase names on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AccountModel(RpcModel):
    """Serialised representation of an `AccountView`."""

    account_id: str
    user_name: str
    email: str
    phone_number: str | None = None
    role_name: str | None = None

    @classmethod
    def from_domain(cls, view: AccountView) -> "AccountModel":
        """Build a response model from the domain view."""
        return cls(
            account_id=view.account_id,
            user_name=view.user_name,
            email=view.email,
            phone_number=view.phone_number,
            role_name=view.role_name,
        )


class ReplyModel(RpcModel):
    succeeded: bool
    message: str


class CreateAccountRequest(RpcModel):
    email: str = ""
    password: str = ""


class CreateAccountResponse(ReplyModel):
    account_id: str | None = None


class GetAccountsRequest(RpcModel):
    pass


class GetAccountsResponse(ReplyModel):
    accounts: list[AccountModel] = Field(default_factory=list)


class AccountIdRequest(RpcModel):
    """Body shared by the RPCs that only name an account."""

    account_id: str = ""


class GetAccountResponse(ReplyModel):
    account: AccountModel | None = None


class ValidateCredentialsRequest(RpcModel):
    email: str = ""
    password: str = ""


class ValidateCredentialsResponse(ReplyModel):
    account_id: str | None = None


class UpdatePhoneNumberRequest(RpcModel):
    account_id: str = ""
    phone_number: str | None = None


class ConfirmAccountRequest(RpcModel):
    account_id: str = ""
    token: str = ""


class UpdateEmailRequest(RpcModel):
    account_id: str = ""
    new_email: str = ""


class ConfirmEmailChangeRequest(RpcModel):
    account_id: str = ""
    new_email: str = ""
    token: str = ""


class ResetPasswordRequest(RpcModel):
    account_id: str = ""
    token: str = ""
    new_password: str = ""


class ChangeUserRoleRequest(RpcModel):
    account_id: str = ""
    new_role: str = ""


class TokenResponse(ReplyModel):
    token: str | None = None


settings = get_settings()


def _build_rate_limiter() -> SlidingWindowRateLimiter | RedisSlidingWindowRateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("rate limiter configured for redis backend at %s", settings.redis_url)
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
                key_prefix="accounts:rate",
            )
        except Exception as exc:  # pragma: no cover - redis optional in dev
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


rate_limiter = _build_rate_limiter()


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_call_context(
    request: Request,
    tenant_id: str | None = Header(default=None, alias="X-Tenant-ID"),
    timeout: float | None = Header(default=None, alias="X-Request-Timeout"),
) -> CallContext:
    """Build the per-call context from request headers and configured defaults."""
    return CallContext.with_timeout(
        tenant_id or settings.default_tenant_id,
        timeout if timeout is not None else settings.default_call_timeout_seconds,
        peer=request.client.host if request.client else None,
        method=request.url.path.rsplit("/", 1)[-1],
    )


def _rate_limited(key: str) -> JSONResponse | None:
    if rate_limiter.allow(key):
        return None
    logger.warning("rate limited %s", key)
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"succeeded": False, "message": RATE_LIMITED},
    )


def _fingerprint(value: str) -> str:
    return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()[:12]


def _account(view: AccountView | None) -> AccountModel | None:
    return AccountModel.from_domain(view) if view is not None else None


@router.post("/CreateAccount", response_model=CreateAccountResponse)
def create_account(
    payload: CreateAccountRequest,
    ctx: CallContext = Depends(get_call_context),
    service: AccountService = Depends(get_service),
):
    """Register an account and assign the default role."""
    limited = _rate_limited(f"create:{ctx.tenant_id}")
    if limited is not None:
        return limited
    reply = service.create_account(ctx, payload.email, payload.password)
    return CreateAccountResponse(succeeded=reply.succeeded, message=reply.message, account_id=reply.account_id)


@router.post("/GetAccounts", response_model=GetAccountsResponse)
def get_accounts(
    payload: GetAccountsRequest | None = None,
    ctx: CallContext = Depends(get_call_context),
    service: AccountService = Depends(get_service),
) -> GetAccountsResponse:
    reply = service.get_accounts(ctx)
    return GetAccountsResponse(
        succeeded=reply.succeeded,
        message=reply.message,
        accounts=[AccountModel.from_domain(view) for view in reply.accounts],
    )


@router.post("/GetAccount", response_model=GetAccountResponse)
def get_account(
    payload: AccountIdRequest,
    ctx: CallContext = Depends(get_call_context),
    service: AccountService = Depends(get_service),
) -> GetAccountResponse:
    reply = service.get_account(ctx, payload.account_id)
    return GetAccountResponse(succeeded=reply.succeeded, message=reply.message, account=_account(reply.account))


@router.post("/ValidateCredentials", response_model=ValidateCredentialsResponse)
def validate_credentials(
    payload: ValidateCredentialsRequest,
    ctx: CallContext = Depends(get_call_context),
    service: AccountService = Depends(get_service),
):
    """Check an email/password pair; failures never reveal whether the email exists."""
    rate_key = f"login:{ctx.tenant_id}:{_fingerprint(payload.email)}"
    limited = _rate_limited(rate_key)
    if limited is not None:
        return limited
    reply = service.validate_credentials(ctx, payload.email, payload.password)
    if reply.succeeded:
        rate_limiter.reset(rate_key)
    return ValidateCredentialsResponse(
        succeeded=reply.succeeded, message=reply.message, account_id=reply.account_id
    )


@router.post("/UpdatePhoneNumber", response_model=ReplyModel)
def update_phone_number(
    payload: UpdatePhoneNumberRequest,
    ctx: CallContext = Depends(get_call_context),
    service: AccountService = Depends(get_service),
) -> ReplyModel:
    reply = service.update_phone_number(ctx, payload.account_id, payload.phone_number)
    return ReplyModel(succeeded=reply.succeeded, message=reply.message)


@router.post("/DeleteAccountById", response_model=ReplyModel)
def delete_account_by_id(
    payload: AccountIdRequest,
    ctx: CallContext = Depends(get_call_context),
    service: AccountService = Depends(get_service),
) -> ReplyModel:
    reply = service.delete_account_by_id(ctx, payload.account_id)
    return ReplyModel(succeeded=reply.succeeded, message=reply.message)


@router.post("/ConfirmAccount", response_model=ReplyModel)
def confirm_account(
    payload: ConfirmAccountRequest,
    ctx: CallContext = Depends(get_call_context),
    service: AccountService = Depends(get_service),
) -> ReplyModel:
    reply = service.confirm_account(ctx, payload.account_id, payload.token)
    return ReplyModel(succeeded=reply.succeeded, message=reply.message)


@router.post("/UpdateEmail", response_model=TokenResponse)
def update_email(
    payload: UpdateEmailRequest,
    ctx: CallContext = Depends(get_call_context),
    service: AccountService = Depends(get_service),
) -> TokenResponse:
    reply = service.update_email(ctx, payload.account_id, payload.new_email)
    return TokenResponse(succeeded=reply.succeeded, message=reply.message, token=reply.token)


@router.post("/ConfirmEmailChange", response_model=ReplyModel)
def confirm_email_change(
    payload: ConfirmEmailChangeRequest,
    ctx: CallContext = Depends(get_call_context),
    service: AccountService = Depends(get_service),
) -> ReplyModel:
    reply = service.confirm_email_change(ctx, payload.account_id, payload.new_email, payload.token)
    return ReplyModel(succeeded=reply.succeeded, message=reply.message)


@router.post("/ResetPassword", response_model=ReplyModel)
def reset_password(
    payload: ResetPasswordRequest,
    ctx: CallContext = Depends(get_call_context),
    service: AccountService = Depends(get_service),
) -> ReplyModel:
    reply = service.reset_password(ctx, payload.account_id, payload.token, payload.new_password)
    return ReplyModel(succeeded=reply.succeeded, message=reply.message)


@router.post("/GenerateEmailConfirmationToken", response_model=TokenResponse)
def generate_email_confirmation_token(
    payload: AccountIdRequest,
    ctx: CallContext = Depends(get_call_context),
    service: AccountService = Depends(get_service),
) -> TokenResponse:
    reply = service.generate_email_confirmation_token(ctx, payload.account_id)
    return TokenResponse(succeeded=reply.succeeded, message=reply.message, token=reply.token)


@router.post("/GeneratePasswordResetToken", response_model=TokenResponse)
def generate_password_reset_token(
    payload: AccountIdRequest,
    ctx: CallContext = Depends(get_call_context),
    service: AccountService = Depends(get_service),
):
    limited = _rate_limited(f"reset:{ctx.tenant_id}:{payload.account_id}")
    if limited is not None:
        return limited
    reply = service.generate_password_reset_token(ctx, payload.account_id)
    return TokenResponse(succeeded=reply.succeeded, message=reply.message, token=reply.token)


@router.post("/ChangeUserRole", response_model=ReplyModel)
def change_user_role(
    payload: ChangeUserRoleRequest,
    ctx: CallContext = Depends(get_call_context),
    service: AccountService = Depends(get_service),
) -> ReplyModel:
    reply = service.change_user_role(ctx, payload.account_id, payload.new_role)
    return ReplyModel(succeeded=reply.succeeded, message=reply.message)
