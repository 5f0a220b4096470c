from __future__ import annotations

from dataclasses import replace

import pytest

from account_service.domain.account import Account
from account_service.domain.contracts import CreateAccountInput, TokenPurpose
from account_service.domain.errors import InvalidTokenError, NotFoundError, ValidationError
from account_service.domain.token_flows import TokenFlowCoordinator

PASSWORD = "Secret1!"


@pytest.fixture
def account_id(manager, ctx) -> str:
    return manager.create_account(ctx, CreateAccountInput(email="a@x.com", password=PASSWORD))


def test_confirmation_round_trip(flows, ctx, store, account_id):
    token = flows.generate_confirmation_token(ctx, account_id)
    assert store.stored(account_id).email_confirmed is False

    assert flows.confirm_account(ctx, account_id, token) is False
    assert store.stored(account_id).email_confirmed is True


def test_confirm_twice_short_circuits_without_validating(flows, ctx, store, account_id):
    token = flows.generate_confirmation_token(ctx, account_id)
    flows.confirm_account(ctx, account_id, token)
    writes = store.writes()

    assert flows.confirm_account(ctx, account_id, token) is True
    assert flows.confirm_account(ctx, account_id, "garbage") is True
    assert store.writes() == writes


def test_confirm_rejects_token_for_another_purpose(flows, ctx, store, account_id):
    reset_token = flows.generate_password_reset_token(ctx, account_id)

    with pytest.raises(InvalidTokenError) as excinfo:
        flows.confirm_account(ctx, account_id, reset_token)

    assert excinfo.value.message == "Invalid token."
    assert store.stored(account_id).email_confirmed is False


def test_confirm_rejects_token_for_another_account(flows, manager, ctx, account_id):
    other_id = manager.create_account(ctx, CreateAccountInput(email="b@x.com", password=PASSWORD))
    token = flows.generate_confirmation_token(ctx, other_id)

    with pytest.raises(InvalidTokenError):
        flows.confirm_account(ctx, account_id, token)


def test_confirm_rejects_expired_token(store, codec, hasher, ctx, account_id):
    short_lived = TokenFlowCoordinator(store, codec, hasher, confirmation_ttl_seconds=-60)
    token = short_lived.generate_confirmation_token(ctx, account_id)

    with pytest.raises(InvalidTokenError) as excinfo:
        short_lived.confirm_account(ctx, account_id, token)
    assert excinfo.value.reason == "expired"


@pytest.mark.parametrize("token", ["", "not-a-token", "a.b.c"])
def test_confirm_rejects_malformed_token(flows, ctx, account_id, token):
    with pytest.raises(InvalidTokenError):
        flows.confirm_account(ctx, account_id, token)


def test_generate_tokens_for_unknown_account(flows, ctx):
    with pytest.raises(NotFoundError):
        flows.generate_confirmation_token(ctx, "missing")
    with pytest.raises(NotFoundError):
        flows.generate_password_reset_token(ctx, "missing")
    with pytest.raises(NotFoundError):
        flows.confirm_account(ctx, "missing", "token")


def test_reset_password_replaces_credentials(flows, manager, ctx, account_id):
    token = flows.generate_password_reset_token(ctx, account_id)

    flows.reset_password(ctx, account_id, token, "N3w-Secret")

    assert manager.validate_credentials(ctx, "a@x.com", "N3w-Secret") == account_id


def test_reset_token_is_single_use(flows, ctx, account_id):
    token = flows.generate_password_reset_token(ctx, account_id)
    flows.reset_password(ctx, account_id, token, "N3w-Secret")

    with pytest.raises(InvalidTokenError) as excinfo:
        flows.reset_password(ctx, account_id, token, "An0ther-Secret")
    assert excinfo.value.reason == "stale"


def test_reset_password_with_bad_token_leaves_account_unchanged(flows, store, ctx, account_id):
    before = store.stored(account_id).password_hash

    with pytest.raises(InvalidTokenError):
        flows.reset_password(ctx, account_id, "bogus", "N3w-Secret")

    assert store.stored(account_id).password_hash == before


def test_reset_password_enforces_policy(flows, store, ctx, account_id):
    token = flows.generate_password_reset_token(ctx, account_id)
    before = store.stored(account_id).password_hash

    with pytest.raises(ValidationError):
        flows.reset_password(ctx, account_id, token, "weak")

    assert store.stored(account_id).password_hash == before


def test_reset_password_unknown_account(flows, ctx):
    with pytest.raises(NotFoundError):
        flows.reset_password(ctx, "missing", "token", "N3w-Secret")


def test_request_email_change_same_address_issues_no_token(flows, ctx, account_id):
    assert flows.request_email_change(ctx, account_id, "A@X.COM") is None


def test_email_change_round_trip(flows, store, ctx, account_id):
    token = flows.request_email_change(ctx, account_id, "new@x.com")

    flows.confirm_email_change(ctx, account_id, "new@x.com", token)

    account = store.stored(account_id)
    assert account.email == "new@x.com"
    assert account.user_name == "new@x.com"
    assert account.email_confirmed is True


def test_email_change_token_embeds_target_address(flows, codec, ctx, account_id):
    token = flows.request_email_change(ctx, account_id, "new@x.com")
    payload = codec.redeem(token, TokenPurpose.change_email, account_id)
    assert payload["new_email"] == "new@x.com"


def test_confirm_email_change_rejects_other_address(flows, store, ctx, account_id):
    token = flows.request_email_change(ctx, account_id, "new@x.com")

    with pytest.raises(InvalidTokenError) as excinfo:
        flows.confirm_email_change(ctx, account_id, "other@x.com", token)

    assert excinfo.value.reason == "payload"
    assert store.stored(account_id).email == "a@x.com"


def test_confirm_email_change_rejects_taken_address(flows, manager, store, ctx, account_id):
    token = flows.request_email_change(ctx, account_id, "b@x.com")
    manager.create_account(ctx, CreateAccountInput(email="b@x.com", password=PASSWORD))

    with pytest.raises(ValidationError) as excinfo:
        flows.confirm_email_change(ctx, account_id, "b@x.com", token)

    assert excinfo.value.message == "Email 'b@x.com' is already taken."
    assert store.stored(account_id).email == "a@x.com"


def test_email_change_token_is_single_use(flows, ctx, account_id):
    token = flows.request_email_change(ctx, account_id, "new@x.com")
    flows.confirm_email_change(ctx, account_id, "new@x.com", token)

    with pytest.raises(InvalidTokenError):
        flows.confirm_email_change(ctx, account_id, "new@x.com", token)


def test_email_change_unknown_account(flows, ctx):
    with pytest.raises(NotFoundError):
        flows.request_email_change(ctx, "missing", "new@x.com")
    with pytest.raises(NotFoundError):
        flows.confirm_email_change(ctx, "missing", "new@x.com", "token")


def test_phone_update_from_stale_read_keeps_password_reset(flows, manager, store, ctx, account_id, monkeypatch):
    token = flows.generate_password_reset_token(ctx, account_id)
    snapshot = store.get(ctx.tenant_id, account_id)
    flows.reset_password(ctx, account_id, token, "N3w-Secret")
    # The phone update read the row before the reset committed.
    monkeypatch.setattr(store, "get", lambda tenant_id, acc_id: replace(snapshot))

    manager.update_phone_number(ctx, account_id, "0701234567")
    monkeypatch.undo()

    assert store.stored(account_id).phone_number == "0701234567"
    assert manager.validate_credentials(ctx, "a@x.com", "N3w-Secret") == account_id
    with pytest.raises(InvalidTokenError) as excinfo:
        flows.reset_password(ctx, account_id, token, "An0ther-Secret")
    assert excinfo.value.reason == "stale"


def stamp_rotated_after_read(store, monkeypatch):
    """Make ``store.get`` return the current row, then rotate the stored stamp as a concurrent writer would."""
    real_get = store.get

    def get(tenant_id, account_id):
        account = real_get(tenant_id, account_id)
        if account is not None:
            store.stored(account_id, tenant_id).security_stamp = "rotated-concurrently"
        return account

    monkeypatch.setattr(store, "get", get)


def test_reset_password_losing_race_is_rejected(flows, store, ctx, account_id, monkeypatch):
    token = flows.generate_password_reset_token(ctx, account_id)
    before = store.stored(account_id).password_hash
    stamp_rotated_after_read(store, monkeypatch)

    with pytest.raises(InvalidTokenError) as excinfo:
        flows.reset_password(ctx, account_id, token, "N3w-Secret")

    assert excinfo.value.reason == "stale"
    assert store.stored(account_id).password_hash == before
    assert store.stored(account_id).security_stamp == "rotated-concurrently"


def test_confirm_account_losing_race_is_rejected(flows, store, ctx, account_id, monkeypatch):
    token = flows.generate_confirmation_token(ctx, account_id)
    stamp_rotated_after_read(store, monkeypatch)

    with pytest.raises(InvalidTokenError):
        flows.confirm_account(ctx, account_id, token)

    assert store.stored(account_id).email_confirmed is False


def test_email_change_losing_race_is_rejected(flows, store, ctx, account_id, monkeypatch):
    token = flows.request_email_change(ctx, account_id, "new@x.com")
    stamp_rotated_after_read(store, monkeypatch)

    with pytest.raises(InvalidTokenError) as excinfo:
        flows.confirm_email_change(ctx, account_id, "new@x.com", token)

    assert excinfo.value.reason == "stale"
    assert store.stored(account_id).email == "a@x.com"


def test_confirm_email_change_rejects_user_name_held_elsewhere(flows, store, ctx, account_id):
    token = flows.request_email_change(ctx, account_id, "new@x.com")
    store.add(
        Account(
            account_id="legacy",
            tenant_id=ctx.tenant_id,
            email="legacy@x.com",
            user_name="new@x.com",
            password_hash="hash",
        )
    )

    with pytest.raises(ValidationError) as excinfo:
        flows.confirm_email_change(ctx, account_id, "new@x.com", token)

    assert excinfo.value.message == "Username 'new@x.com' is already taken."
    assert store.stored(account_id).email == "a@x.com"
