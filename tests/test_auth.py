import pytest
from fastapi.security import HTTPBasicCredentials
from starlette.requests import Request

from tests.conftest import FakeClock, PASSWORD, USER

from minerweb.auth import SESSION_COOKIE, AuthGate, hash_password
from minerweb.errors import AuthError
from minerweb.sessions import SessionStore


TIMEOUT = 300


def make_request(token: str | None = None) -> Request:
    headers = []
    if token is not None:
        headers.append((b"cookie", f"{SESSION_COOKIE}={token}".encode("latin-1")))
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gate(password_hash, clock):
    return AuthGate(SessionStore(TIMEOUT, clock=clock), user=USER, password_hash=password_hash)


def test_login_with_correct_credentials_returns_token(gate):
    session, token = gate.login(USER, PASSWORD, client="10.0.0.5")

    assert session.user == USER
    assert gate.is_logged_in(make_request(token))


@pytest.mark.parametrize("user, password", [
    (USER, "wrong"),
    ("root", PASSWORD),
    ("", ""),
])
def test_login_with_wrong_credentials_fails_the_same_way(gate, user, password):
    with pytest.raises(AuthError) as excinfo:
        gate.login(user, password)

    assert str(excinfo.value) == "Invalid credentials"
    assert len(gate.store) == 0


def test_request_without_cookie_is_anonymous(gate):
    assert not gate.is_logged_in(make_request())


def test_forged_token_is_rejected(gate):
    _, token = gate.login(USER, PASSWORD)
    other = AuthGate(SessionStore(TIMEOUT), user=USER, password_hash=gate._password_hash)

    assert not other.is_logged_in(make_request(token))
    assert not gate.is_logged_in(make_request("not-a-jwt"))


def test_idle_session_expires(gate, clock):
    _, token = gate.login(USER, PASSWORD)

    clock.advance(TIMEOUT + 1)
    assert not gate.is_logged_in(make_request(token))
    assert len(gate.store) == 0


def test_is_logged_in_refreshes_the_session(gate, clock):
    _, token = gate.login(USER, PASSWORD)

    for _ in range(3):
        clock.advance(TIMEOUT - 1)
        assert gate.is_logged_in(make_request(token))


def test_logout_ends_session_and_is_idempotent(gate):
    _, token = gate.login(USER, PASSWORD)
    request = make_request(token)

    gate.logout(request)
    assert not gate.is_logged_in(request)

    gate.logout(request)
    gate.logout(make_request())


def test_relogin_replaces_previous_session(gate):
    old_session, old_token = gate.login(USER, PASSWORD)
    gate.login(USER, PASSWORD, replaces=old_session.session_id)

    assert not gate.is_logged_in(make_request(old_token))
    assert len(gate.store) == 1


def test_check_credentials_accepts_session_or_basic_auth(gate):
    _, token = gate.login(USER, PASSWORD)

    assert gate.check_credentials(make_request(token))
    assert gate.check_credentials(make_request(), HTTPBasicCredentials(username=USER, password=PASSWORD))
    assert not gate.check_credentials(make_request(), HTTPBasicCredentials(username=USER, password="x"))
    assert not gate.check_credentials(make_request())


def test_unconfigured_gate_lets_everything_through():
    gate = AuthGate(SessionStore(TIMEOUT), user=USER, password_hash=None)

    assert not gate.is_configured
    assert gate.is_logged_in(make_request())
    assert gate.check_credentials(make_request())


def test_long_wrong_password_is_a_plain_credential_failure(gate):
    assert not gate.verify_credentials(USER, "x" * 100)
    with pytest.raises(AuthError):
        gate.login(USER, "x" * 100)


def test_long_configured_password_is_accepted():
    password = "correct horse battery staple " * 4
    gate = AuthGate(SessionStore(TIMEOUT), user=USER, password_hash=hash_password(password, rounds=4))

    assert gate.verify_credentials(USER, password)
    assert not gate.verify_credentials(USER, "x" * 100)
