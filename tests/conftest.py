"""
Pytest fixtures shared by the minerweb tests.

The application is built against a temporary project directory holding its
own config.yaml and .env, with mocked Miner / Server collaborators, a fake
clock for session expiry and an httpx mock transport standing in for the
wallet and pool backends.
"""

from unittest.mock import MagicMock

import httpx
import pytest
import yaml
from fastapi.testclient import TestClient

from minerweb.auth import hash_password
from minerweb.main import create_app
from minerweb.proxy import ForwardProxy


USER = "admin"
PASSWORD = "secret"
SESSION_TIMEOUT = 600

MINING_INFO = {
    "height": 482113,
    "baseTarget": 70312,
    "generationSignature": "9a1f0c",
    "targetDeadline": 86400,
}


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Backend:
    """Records forwarded requests and answers them from a handler."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.fail = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(
            201,
            headers={"content-type": "application/json", "x-backend": request.url.host},
            stream=httpx.ByteStream(b'{"forwarded":true}'),
        )


@pytest.fixture(scope="session")
def password_hash() -> bytes:
    return hash_password(PASSWORD, rounds=4)


@pytest.fixture
def project_dir(tmp_path, monkeypatch, password_hash):
    monkeypatch.delenv("MINERWEB_PASSWORD", raising=False)
    monkeypatch.delenv("MINERWEB_PASSWORD_HASH", raising=False)

    config = {
        "web": {"user": USER, "session_timeout": SESSION_TIMEOUT, "title": "rig-01"},
        "miner": {"plot_dirs": [], "intensity": 2},
        "backends": {"wallet": "http://wallet.test", "pool": "http://pool.test"},
    }
    (tmp_path / "config.yaml").write_text(yaml.safe_dump(config), encoding="utf-8")
    (tmp_path / ".env").write_text(
        f"MINERWEB_PASSWORD_HASH='{password_hash.decode('utf-8')}'\n", encoding="utf-8",
    )
    return tmp_path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def miner():
    miner = MagicMock()
    miner.get_current_info.return_value = dict(MINING_INFO)
    miner.check_plot_file.return_value = True
    return miner


@pytest.fixture
def server():
    return MagicMock()


@pytest.fixture
def backend():
    return Backend()


@pytest.fixture
def app(project_dir, miner, server, backend, clock):
    proxy = ForwardProxy(
        {"wallet": "http://wallet.test", "pool": "http://pool.test"},
        client=httpx.AsyncClient(transport=httpx.MockTransport(backend)),
    )
    return create_app(str(project_dir), miner=miner, server=server, proxy=proxy, clock=clock)


@pytest.fixture
def client(app):
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def logged_in(client):
    response = client.post("/login", data={"user": USER, "password": PASSWORD})
    assert response.status_code == 303
    return client
