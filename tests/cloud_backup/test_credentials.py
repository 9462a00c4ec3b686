"""Tests for the credential broker and the Cognito identity exchange."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import boto3
import pytest
from botocore import UNSIGNED
from botocore.config import Config
from botocore.exceptions import EndpointConnectionError
from botocore.stub import Stubber

from cloud_backup.config.logging import redact
from cloud_backup.credentials import (
    CognitoIdentityExchange,
    CredentialBroker,
    ExchangeRequest,
    TemporaryCredentials,
)
from cloud_backup.errors import ConfigurationError, CredentialExchangeError, ExchangeFailure

LOGIN_KEY = "cognito-idp.us-east-1.amazonaws.com/us-east-1_AbC123"
POOL_ID = "us-east-1:11111111-2222-3333-4444-555555555555"


@pytest.fixture
def broker(store, fake_exchange, clock):
    return CredentialBroker(store, fake_exchange, clock=clock)


class TestTemporaryCredentials:
    """Tests for the TemporaryCredentials value."""

    def test_requires_aware_expiration(self):
        with pytest.raises(ValueError):
            TemporaryCredentials("AKIA", "s", "t", datetime(2030, 1, 1))

    def test_expiration_normalized_to_utc(self):
        from datetime import timezone

        plus_two = timezone(timedelta(hours=2))
        creds = TemporaryCredentials("AKIA", "s", "t", datetime(2030, 1, 1, 14, 0, tzinfo=plus_two))
        assert creds.expiration == datetime(2030, 1, 1, 12, 0, tzinfo=UTC)
        assert creds.expiration.tzinfo is UTC

    def test_is_valid_honours_margin(self, creds_factory, clock):
        creds = creds_factory(expires_in=timedelta(seconds=90), now=clock.now)
        assert creds.is_valid(clock.now)
        assert creds.is_valid(clock.now, timedelta(seconds=60))
        assert not creds.is_valid(clock.now, timedelta(seconds=90))

    def test_repr_hides_secrets(self, creds_factory):
        text = repr(creds_factory())
        assert "ASIAEXAMPLE1" in text
        assert "secret-key-1" not in text
        assert "session-token-1" not in text

    def test_dict_uses_camel_case_keys(self, creds_factory):
        creds = creds_factory()
        data = creds.to_dict()
        assert set(data) == {"accessKeyId", "secretAccessKey", "sessionToken", "expiration"}
        restored = TemporaryCredentials.from_dict(data)
        assert restored.access_key_id == creds.access_key_id
        assert restored.expiration == creds.expiration

    def test_request_repr_hides_token(self, store):
        request = ExchangeRequest.for_token(store.app_config(), "my-id-token")
        assert request.logins == {LOGIN_KEY: "my-id-token"}
        assert "my-id-token" not in repr(request)


class TestCredentialBroker:
    """Tests for CredentialBroker caching and single-flight refresh."""

    @pytest.mark.asyncio
    async def test_first_call_exchanges(self, broker, fake_exchange):
        creds = await broker.get_credentials("id-token")
        assert creds.access_key_id == "ASIAEXAMPLE1"
        assert fake_exchange.calls == 1
        assert broker.exchange_count == 1

    @pytest.mark.asyncio
    async def test_request_carries_login_map(self, broker, fake_exchange):
        await broker.get_credentials("id-token")
        request = fake_exchange.requests[0]
        assert request.region == "us-east-1"
        assert request.identity_pool_id == POOL_ID
        assert dict(request.logins) == {LOGIN_KEY: "id-token"}

    @pytest.mark.asyncio
    async def test_cache_hit_skips_exchange(self, broker, fake_exchange, clock):
        first = await broker.get_credentials("id-token")
        clock.advance(timedelta(minutes=30))
        second = await broker.get_credentials("id-token")
        assert second is first
        assert fake_exchange.calls == 1

    @pytest.mark.asyncio
    async def test_refreshes_inside_safety_margin(self, broker, fake_exchange, clock):
        await broker.get_credentials("id-token")
        # 30s left, below the 60s margin but not yet expired
        clock.advance(timedelta(minutes=59, seconds=30))
        creds = await broker.get_credentials("id-token")
        assert creds.access_key_id == "ASIAEXAMPLE2"
        assert fake_exchange.calls == 2

    @pytest.mark.asyncio
    async def test_custom_safety_margin(self, store, fake_exchange, clock):
        broker = CredentialBroker(store, fake_exchange, clock=clock, safety_margin=timedelta(minutes=10))
        await broker.get_credentials("id-token")
        clock.advance(timedelta(minutes=51))
        await broker.get_credentials("id-token")
        assert fake_exchange.calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_exchange(self, broker, fake_exchange):
        fake_exchange.gate = asyncio.Event()
        tasks = [asyncio.create_task(broker.get_credentials("id-token")) for _ in range(20)]
        await asyncio.sleep(0.01)
        fake_exchange.gate.set()

        results = await asyncio.gather(*tasks)

        assert fake_exchange.calls == 1
        assert all(r is results[0] for r in results)

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_failure(self, broker, fake_exchange):
        fake_exchange.gate = asyncio.Event()
        fake_exchange.error = CredentialExchangeError("Token expired", kind=ExchangeFailure.REJECTED)
        tasks = [asyncio.create_task(broker.get_credentials("id-token")) for _ in range(5)]
        await asyncio.sleep(0.01)
        fake_exchange.gate.set()

        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert fake_exchange.calls == 1
        assert all(r is fake_exchange.error for r in results)

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_exchange(self, broker, fake_exchange):
        fake_exchange.gate = asyncio.Event()
        leaver = asyncio.create_task(broker.get_credentials("id-token"))
        stayer = asyncio.create_task(broker.get_credentials("id-token"))
        await asyncio.sleep(0.01)

        leaver.cancel()
        fake_exchange.gate.set()

        creds = await stayer
        assert creds.access_key_id == "ASIAEXAMPLE1"
        assert leaver.cancelled()
        assert fake_exchange.calls == 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_new_exchange(self, broker, fake_exchange):
        first = await broker.get_credentials("id-token")
        broker.invalidate()
        assert broker.cached is None

        second = await broker.get_credentials("id-token")
        assert second.access_key_id != first.access_key_id
        assert fake_exchange.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_on_empty_cache(self, broker, fake_exchange):
        broker.invalidate()
        await broker.get_credentials("id-token")
        assert fake_exchange.calls == 1

    @pytest.mark.asyncio
    async def test_timeout_releases_single_flight(self, store, fake_exchange, clock):
        broker = CredentialBroker(store, fake_exchange, clock=clock, timeout=0.05)
        fake_exchange.delay = 1

        with pytest.raises(CredentialExchangeError) as exc_info:
            await broker.get_credentials("id-token")
        assert exc_info.value.kind is ExchangeFailure.TIMEOUT
        assert exc_info.value.retryable
        assert broker.cached is None

        fake_exchange.delay = 0
        creds = await broker.get_credentials("id-token")
        assert creds.access_key_id == "ASIAEXAMPLE2"

    @pytest.mark.asyncio
    async def test_failure_keeps_unexpired_cache(self, broker, fake_exchange, clock):
        first = await broker.get_credentials("id-token")
        clock.advance(timedelta(minutes=59, seconds=30))
        fake_exchange.error = CredentialExchangeError("Provider down", kind=ExchangeFailure.NETWORK)

        with pytest.raises(CredentialExchangeError):
            await broker.get_credentials("id-token")

        assert broker.cached is first
        assert broker.exchange_count == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped_as_provider(self, broker, fake_exchange):
        fake_exchange.error = RuntimeError("boom")
        with pytest.raises(CredentialExchangeError) as exc_info:
            await broker.get_credentials("id-token")
        assert exc_info.value.kind is ExchangeFailure.PROVIDER
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_expired_credentials_rejected(self, broker, fake_exchange):
        fake_exchange.expires_in = timedelta(minutes=-1)
        with pytest.raises(CredentialExchangeError) as exc_info:
            await broker.get_credentials("id-token")
        assert exc_info.value.kind is ExchangeFailure.PROVIDER
        assert broker.cached is None

    @pytest.mark.asyncio
    async def test_short_lived_credentials_not_cached(self, broker, fake_exchange):
        fake_exchange.expires_in = timedelta(seconds=30)

        for _ in range(2):
            with pytest.raises(CredentialExchangeError) as exc_info:
                await broker.get_credentials("id-token")
            assert exc_info.value.kind is ExchangeFailure.PROVIDER
            assert exc_info.value.retryable

        assert broker.cached is None
        assert broker.exchange_count == 0
        assert redact("secret-key-1") == "secret-key-1"

    @pytest.mark.asyncio
    async def test_credentials_outlasting_margin_accepted(self, broker, fake_exchange):
        fake_exchange.expires_in = timedelta(seconds=61)
        creds = await broker.get_credentials("id-token")
        assert creds.is_valid(fake_exchange.clock(), broker.safety_margin)

    @pytest.mark.asyncio
    async def test_empty_token_rejected_without_exchange(self, broker, fake_exchange):
        with pytest.raises(CredentialExchangeError) as exc_info:
            await broker.get_credentials("")
        assert exc_info.value.kind is ExchangeFailure.REJECTED
        assert not exc_info.value.retryable
        assert fake_exchange.calls == 0

    @pytest.mark.asyncio
    async def test_cleared_configuration_raises(self, broker, store, fake_exchange):
        store.clear()
        with pytest.raises(ConfigurationError):
            await broker.get_credentials("id-token")
        assert fake_exchange.calls == 0
        assert broker.cached is None

    @pytest.mark.asyncio
    async def test_configuration_error_releases_single_flight(self, broker, store, fake_exchange, app_config_data):
        store.clear()
        with pytest.raises(ConfigurationError):
            await broker.get_credentials("id-token")

        store.init(app_config_data)
        creds = await broker.get_credentials("id-token")
        assert creds.access_key_id == "ASIAEXAMPLE1"

    @pytest.mark.asyncio
    async def test_secrets_registered_for_redaction(self, broker):
        await broker.get_credentials("id-token")
        assert redact("key=secret-key-1 token=session-token-1") == "key=*** token=***"

    @pytest.mark.asyncio
    async def test_cached_ignores_margin(self, broker, clock):
        creds = await broker.get_credentials("id-token")
        clock.advance(timedelta(minutes=59, seconds=30))
        assert broker.cached is creds
        clock.advance(timedelta(seconds=30))
        assert broker.cached is None

    def test_rejects_negative_margin(self, store, fake_exchange):
        with pytest.raises(ValueError):
            CredentialBroker(store, fake_exchange, safety_margin=timedelta(seconds=-1))

    def test_from_settings(self, store, fake_exchange):
        from cloud_backup.config import CloudBackupSettings

        settings = CloudBackupSettings(broker={"safety_margin_seconds": 120, "exchange_timeout_seconds": 5})
        broker = CredentialBroker.from_settings(store, settings, fake_exchange)
        assert broker.safety_margin == timedelta(seconds=120)


@pytest.fixture
def cognito_client():
    return boto3.client(
        "cognito-identity",
        region_name="us-east-1",
        config=Config(signature_version=UNSIGNED),
    )


@pytest.fixture
def request_():
    return ExchangeRequest(region="us-east-1", identity_pool_id=POOL_ID, logins={LOGIN_KEY: "id-token"})


class TestCognitoIdentityExchange:
    """Tests for the boto3-backed exchange."""

    def _stub_success(self, stubber, expiration):
        logins = {LOGIN_KEY: "id-token"}
        stubber.add_response(
            "get_id",
            {"IdentityId": "us-east-1:identity-abc"},
            {"IdentityPoolId": POOL_ID, "Logins": logins},
        )
        stubber.add_response(
            "get_credentials_for_identity",
            {
                "IdentityId": "us-east-1:identity-abc",
                "Credentials": {
                    "AccessKeyId": "ASIACOGNITO",
                    "SecretKey": "cognito-secret",
                    "SessionToken": "cognito-session",
                    "Expiration": expiration,
                },
            },
            {"IdentityId": "us-east-1:identity-abc", "Logins": logins},
        )

    def test_exchange_success(self, cognito_client, request_):
        exchange = CognitoIdentityExchange(client_factory=lambda region: cognito_client)
        with Stubber(cognito_client) as stubber:
            self._stub_success(stubber, datetime(2030, 1, 1, tzinfo=UTC))
            creds = exchange.exchange_sync(request_)
            stubber.assert_no_pending_responses()

        assert creds.access_key_id == "ASIACOGNITO"
        assert creds.secret_access_key == "cognito-secret"
        assert creds.session_token == "cognito-session"
        assert creds.identity_id == "us-east-1:identity-abc"
        assert creds.expiration == datetime(2030, 1, 1, tzinfo=UTC)

    def test_naive_expiration_treated_as_utc(self, cognito_client, request_):
        exchange = CognitoIdentityExchange(client_factory=lambda region: cognito_client)
        with Stubber(cognito_client) as stubber:
            self._stub_success(stubber, datetime(2030, 1, 1))
            creds = exchange.exchange_sync(request_)
        assert creds.expiration == datetime(2030, 1, 1, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_async_exchange(self, cognito_client, request_):
        exchange = CognitoIdentityExchange(client_factory=lambda region: cognito_client)
        with Stubber(cognito_client) as stubber:
            self._stub_success(stubber, datetime(2030, 1, 1, tzinfo=UTC))
            creds = await exchange.exchange(request_)
        assert creds.access_key_id == "ASIACOGNITO"

    def test_not_authorized_is_rejected(self, cognito_client, request_):
        exchange = CognitoIdentityExchange(client_factory=lambda region: cognito_client)
        with Stubber(cognito_client) as stubber:
            stubber.add_client_error("get_id", service_error_code="NotAuthorizedException", http_status_code=400)
            with pytest.raises(CredentialExchangeError) as exc_info:
                exchange.exchange_sync(request_)
        assert exc_info.value.kind is ExchangeFailure.REJECTED

    def test_service_error_is_provider(self, cognito_client, request_):
        exchange = CognitoIdentityExchange(client_factory=lambda region: cognito_client)
        with Stubber(cognito_client) as stubber:
            stubber.add_client_error("get_id", service_error_code="InternalErrorException", http_status_code=500)
            with pytest.raises(CredentialExchangeError) as exc_info:
                exchange.exchange_sync(request_)
        assert exc_info.value.kind is ExchangeFailure.PROVIDER

    def test_connection_error_is_network(self, request_):
        client = MagicMock()
        client.get_id.side_effect = EndpointConnectionError(endpoint_url="https://cognito-identity.us-east-1.amazonaws.com")
        exchange = CognitoIdentityExchange(client_factory=lambda region: client)
        with pytest.raises(CredentialExchangeError) as exc_info:
            exchange.exchange_sync(request_)
        assert exc_info.value.kind is ExchangeFailure.NETWORK

    def test_client_cached_per_region(self):
        factory = MagicMock(side_effect=lambda region: MagicMock(name=region))
        exchange = CognitoIdentityExchange(client_factory=factory)
        assert exchange._client("us-east-1") is exchange._client("us-east-1")
        exchange._client("eu-west-1")
        assert factory.call_count == 2
