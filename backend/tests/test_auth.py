from datetime import timedelta

import pytest

from notekeeper import security
from notekeeper.auth import AuthGate
from notekeeper.errors import AuthError, ConflictError, ValidationError


def test_register_issues_resolvable_token(gate):
    token, user = gate.register("Alice", "alice@example.com", "secret1")
    claims = gate.resolve(token)
    assert claims.user_id == user.id
    assert claims.email == "alice@example.com"
    assert claims.name == "Alice"
    assert user.password_hash != "secret1"


def test_token_claims(gate):
    token, user = gate.register("Alice", "alice@example.com", "secret1")
    payload = security.decode_access_token(token, secret_key="test-secret")
    assert payload["sub"] == user.id
    assert payload["exp"] - payload["iat"] == 24 * 60 * 60


def test_register_rejects_duplicate_email(gate):
    gate.register("Alice", "alice@example.com", "secret1")
    with pytest.raises(ConflictError) as excinfo:
        gate.register("Alice Again", "alice@example.com", "secret2")
    assert excinfo.value.message == "User with this email already exists"


@pytest.mark.parametrize(
    "name, email, password, field",
    [
        ("", "alice@example.com", "secret1", "name"),
        ("Alice", "alice.example.com", "secret1", "email"),
        ("Alice", "alice@example.com", "12345", "password"),
        ("Alice", "alice@example.com", "x" * 73, "password"),
    ],
)
def test_register_validates_input(gate, name, email, password, field):
    with pytest.raises(ValidationError) as excinfo:
        gate.register(name, email, password)
    assert excinfo.value.field == field


def test_password_limit_counts_utf8_bytes(gate):
    with pytest.raises(ValidationError) as excinfo:
        gate.register("Alice", "alice@example.com", "é" * 37)
    assert excinfo.value.field == "password"

    token, user = gate.register("Alice", "alice@example.com", "é" * 36)
    assert gate.resolve(token).user_id == user.id


def test_login_returns_token(gate):
    _, user = gate.register("Alice", "alice@example.com", "secret1")
    token, logged_in = gate.login("alice@example.com", "secret1")
    assert logged_in.id == user.id
    assert gate.resolve(token).user_id == user.id


def test_login_failures_share_one_message(gate):
    gate.register("Alice", "alice@example.com", "secret1")
    gate.store.create_user(name="Social", email="social@example.com", provider_ids={"google": "g-1"})

    messages = []
    for email, password in [
        ("alice@example.com", "wrong-password"),
        ("nobody@example.com", "secret1"),
        ("social@example.com", "anything"),
    ]:
        with pytest.raises(AuthError) as excinfo:
            gate.login(email, password)
        messages.append(str(excinfo.value))
    assert len(set(messages)) == 1
    assert messages[0].endswith(AuthError.INVALID_CREDENTIALS)


def test_resolve_rejects_foreign_signature(gate):
    _, user = gate.register("Alice", "alice@example.com", "secret1")
    forged = AuthGate(gate.store, secret_key="another-secret").issue_token(user)
    with pytest.raises(AuthError) as excinfo:
        gate.resolve(forged)
    assert excinfo.value.message == AuthError.INVALID_TOKEN


def test_resolve_rejects_expired_token(gate):
    _, user = gate.register("Alice", "alice@example.com", "secret1")
    expired = gate.issue_token(user, expires_delta=timedelta(seconds=-10))
    with pytest.raises(AuthError):
        gate.resolve(expired)


@pytest.mark.parametrize("token", [None, "", "not-a-jwt"])
def test_resolve_rejects_garbage(gate, token):
    with pytest.raises(AuthError):
        gate.resolve(token)


def test_resolve_rejects_token_without_subject(gate):
    token = security.create_access_token({"email": "alice@example.com"}, secret_key="test-secret")
    with pytest.raises(AuthError):
        gate.resolve(token)


def test_social_sign_in_creates_then_reuses_account(gate):
    profile = {"provider": "google", "provider_id": "g-42", "avatar_url": "https://img.example/a.png"}
    token, user = gate.social_sign_in(profile)
    assert user.email == "google_g-42@example.com"
    assert user.name == "Google User"
    assert user.avatar == "https://img.example/a.png"
    assert not user.has_password
    assert gate.resolve(token).user_id == user.id

    _, again = gate.social_sign_in(profile)
    assert again.id == user.id


def test_social_sign_in_links_existing_email(gate):
    _, registered = gate.register("Alice", "alice@example.com", "secret1")
    _, user = gate.social_sign_in(
        {
            "provider": "Facebook",
            "provider_id": "fb-1",
            "email": "alice@example.com",
            "display_name": "Alice F",
        }
    )
    assert user.id == registered.id
    assert user.provider_ids == {"facebook": "fb-1"}
    # The password credential survives the link.
    gate.login("alice@example.com", "secret1")


def test_social_sign_in_rejects_unknown_provider(gate):
    with pytest.raises(ValidationError):
        gate.social_sign_in({"provider": "myspace", "provider_id": "1"})
    with pytest.raises(ValidationError):
        gate.social_sign_in({"provider": "google", "provider_id": ""})


def test_social_sign_in_recovers_from_lost_race(gate, monkeypatch):
    winner = gate.store.create_user(
        name="Winner", email="winner@example.com", provider_ids={"google": "g-9"}
    )
    original = gate.store.get_user_by_provider
    calls = []

    def miss_first_lookup(provider, provider_id):
        calls.append(provider_id)
        if len(calls) == 1:
            return None
        return original(provider, provider_id)

    monkeypatch.setattr(gate.store, "get_user_by_provider", miss_first_lookup)
    _, user = gate.social_sign_in({"provider": "google", "provider_id": "g-9", "display_name": "Late"})
    assert user.id == winner.id
    assert len(calls) == 2
