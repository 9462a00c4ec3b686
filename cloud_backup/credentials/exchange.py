"""Cognito identity-pool exchange (boto3)."""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import UTC, datetime
from typing import Any, Callable, Protocol

import boto3
from botocore import UNSIGNED
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from cloud_backup.credentials.models import ExchangeRequest, TemporaryCredentials
from cloud_backup.errors import CredentialExchangeError, ExchangeFailure

logger = logging.getLogger(__name__)

# Service errors that mean the identity token itself was refused
REJECTED_CODES = frozenset({"NotAuthorizedException", "InvalidParameterException"})


class IdentityExchange(Protocol):
    """Trades an identity token for temporary credentials."""

    async def exchange(self, request: ExchangeRequest) -> TemporaryCredentials: ...


def _default_client_factory(region: str) -> Any:
    # GetId / GetCredentialsForIdentity are unauthenticated calls; the broker
    # owns retry policy, so botocore must not retry on its own.
    return boto3.client(
        "cognito-identity",
        region_name=region,
        config=Config(signature_version=UNSIGNED, retries={"max_attempts": 1, "mode": "standard"}),
    )


class CognitoIdentityExchange:
    """Exchange through the Cognito identity-pool API.

    Runs the blocking boto3 calls in a worker thread so the event loop keeps
    serving other storage operations while the exchange is in flight.
    """

    def __init__(self, client_factory: Callable[[str], Any] | None = None) -> None:
        self._client_factory = client_factory or _default_client_factory
        self._clients: dict[str, Any] = {}
        self._clients_lock = threading.Lock()

    def _client(self, region: str) -> Any:
        with self._clients_lock:
            if region not in self._clients:
                self._clients[region] = self._client_factory(region)
            return self._clients[region]

    async def exchange(self, request: ExchangeRequest) -> TemporaryCredentials:
        return await asyncio.to_thread(self.exchange_sync, request)

    def exchange_sync(self, request: ExchangeRequest) -> TemporaryCredentials:
        client = self._client(request.region)
        logins = dict(request.logins)
        logger.debug(f"GetId for pool {request.identity_pool_id} ({request.region})")

        try:
            identity = client.get_id(IdentityPoolId=request.identity_pool_id, Logins=logins)
            response = client.get_credentials_for_identity(IdentityId=identity["IdentityId"], Logins=logins)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            kind = ExchangeFailure.REJECTED if code in REJECTED_CODES else ExchangeFailure.PROVIDER
            raise CredentialExchangeError(f"Identity exchange failed ({code})", kind=kind) from e
        except BotoCoreError as e:
            raise CredentialExchangeError(f"Identity provider unreachable: {e}", kind=ExchangeFailure.NETWORK) from e

        creds = response["Credentials"]
        expiration = creds["Expiration"]
        if isinstance(expiration, datetime) and expiration.tzinfo is None:
            expiration = expiration.replace(tzinfo=UTC)

        return TemporaryCredentials(
            access_key_id=creds["AccessKeyId"],
            secret_access_key=creds["SecretKey"],
            session_token=creds.get("SessionToken", ""),
            expiration=expiration,
            identity_id=response.get("IdentityId") or identity["IdentityId"],
        )
