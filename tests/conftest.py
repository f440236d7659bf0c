from datetime import datetime, timezone

import pyotp
import pytest
from fastapi.testclient import TestClient

from authgate.core.secret_store import EnrollmentRecord, secret_store
from authgate.core.security import login_rate_limiter
from authgate.core.totp import provisioning_uri
from authgate.main import app


class FakeClock:
    def __init__(self, t: float = 1000.0) -> None:
        self.t = t

    def __call__(self) -> float:  # acts like time.monotonic
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


def wrong_code(secret: str) -> str:
    """A well-formed code that is not valid for the current or adjacent steps."""
    totp = pyotp.TOTP(secret)
    now = datetime.now(timezone.utc)
    valid = {totp.at(now, counter_offset=offset) for offset in (-2, -1, 0, 1, 2)}
    for i in range(1000000):
        candidate = str(i).zfill(6)
        if candidate not in valid:
            return candidate
    raise AssertionError("unreachable")


@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch):
    """Point the store at a temp file and start each test with a fresh limiter window."""
    monkeypatch.setattr(secret_store, "path", tmp_path / "authgate" / "secret.json")
    login_rate_limiter.reset()
    yield
    login_rate_limiter.reset()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def enrolled_secret():
    secret = pyotp.random_base32(length=32)
    secret_store.save(EnrollmentRecord(
        secret=secret,
        provisioning_uri=provisioning_uri(secret, secret_store.issuer, secret_store.account_name),
        issuer=secret_store.issuer,
        account_name=secret_store.account_name,
        enrolled=True,
        enrolled_at=datetime.now(timezone.utc).isoformat(),
    ))
    return secret


def login(client, secret):
    return client.post("/auth/login", data={"token": pyotp.TOTP(secret).now()}, follow_redirects=False)
