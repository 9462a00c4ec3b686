"""Shared fixtures for cloud backup client tests."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from cloud_backup.config import reset_settings
from cloud_backup.config.logging import clear_secrets
from cloud_backup.config.store import ConfigStore
from cloud_backup.credentials import ExchangeRequest, TemporaryCredentials

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

APP_CONFIG = {
    "cognito_user_pool_id": "us-east-1_AbC123",
    "cognito_app_client_id": "client123",
    "cognito_identity_pool_id": "us-east-1:11111111-2222-3333-4444-555555555555",
    "cognito_region": "us-east-1",
    "bucket_name": "company-backups",
}


def make_credentials(
    n: int = 1,
    expires_in: timedelta = timedelta(hours=1),
    now: datetime = NOW,
) -> TemporaryCredentials:
    return TemporaryCredentials(
        access_key_id=f"ASIAEXAMPLE{n}",
        secret_access_key=f"secret-key-{n}",
        session_token=f"session-token-{n}",
        expiration=now + expires_in,
        identity_id=f"us-east-1:identity-{n}",
    )


class FakeClock:
    """Settable clock for broker tests."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeExchange:
    """IdentityExchange double that counts calls.

    Each call hands out a new numbered credential set. ``gate`` holds the
    exchange open until set, so concurrent callers pile up on it.
    """

    def __init__(self, clock: FakeClock, expires_in: timedelta = timedelta(hours=1)) -> None:
        self.clock = clock
        self.expires_in = expires_in
        self.calls = 0
        self.requests: list[ExchangeRequest] = []
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None
        self.delay: float = 0

    async def exchange(self, request: ExchangeRequest) -> TemporaryCredentials:
        self.calls += 1
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return make_credentials(self.calls, self.expires_in, self.clock())


@pytest.fixture(autouse=True)
def reset_global():
    """Reset settings singleton and registered secrets between tests."""
    yield
    reset_settings()
    clear_secrets()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_exchange(clock):
    return FakeExchange(clock)


@pytest.fixture
def store(tmp_path):
    """A loaded store holding a valid app_config entry."""
    s = ConfigStore(tmp_path / "app_config.json")
    s.init(APP_CONFIG)
    s.load()
    return s


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """Point every settings path into tmp_path."""
    monkeypatch.setenv("CLOUD_BACKUP_CONFIG", str(tmp_path / "missing-settings.yaml"))
    monkeypatch.setenv("CLOUD_BACKUP_STORE__CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("CLOUD_BACKUP_STORAGE__RCLONE_CONFIG", str(tmp_path / "config" / "rclone.conf"))
    monkeypatch.delenv("CLOUD_BACKUP_ID_TOKEN", raising=False)
    reset_settings()
    return tmp_path


@pytest.fixture
def app_config_data():
    return dict(APP_CONFIG)


@pytest.fixture
def creds_factory():
    """Build numbered TemporaryCredentials."""
    return make_credentials
