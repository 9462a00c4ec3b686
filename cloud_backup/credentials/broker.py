"""Credential broker: cached, single-flight federated credential exchange.

Every storage operation asks the broker for credentials first:

    broker = CredentialBroker(store)
    creds = await broker.get_credentials(id_token)

While a cached set is valid for longer than the safety margin it is handed
out without touching the network. Otherwise exactly one exchange runs; every
caller that arrives while it is in flight awaits that same exchange and sees
the identical result, success or failure.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Callable

from cloud_backup.config.logging import register_secret
from cloud_backup.credentials.exchange import CognitoIdentityExchange, IdentityExchange
from cloud_backup.credentials.models import ExchangeRequest, TemporaryCredentials
from cloud_backup.errors import CredentialExchangeError, ExchangeFailure

if TYPE_CHECKING:
    from cloud_backup.config._settings import CloudBackupSettings
    from cloud_backup.config.store import ConfigStore

logger = logging.getLogger(__name__)

DEFAULT_SAFETY_MARGIN = timedelta(seconds=60)
DEFAULT_EXCHANGE_TIMEOUT = 30.0


def utcnow() -> datetime:
    return datetime.now(UTC)


class CredentialBroker:
    """Hands out temporary credentials for one identity context."""

    def __init__(
        self,
        store: ConfigStore,
        exchange: IdentityExchange | None = None,
        *,
        safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
        timeout: float = DEFAULT_EXCHANGE_TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if safety_margin < timedelta(0):
            raise ValueError("safety_margin must not be negative")
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        self._store = store
        self._exchange = exchange or CognitoIdentityExchange()
        self._safety_margin = safety_margin
        self._timeout = timeout
        self._clock = clock

        self._cached: TemporaryCredentials | None = None
        self._inflight: asyncio.Task[TemporaryCredentials] | None = None
        self._lock = asyncio.Lock()
        self.exchange_count = 0

    @classmethod
    def from_settings(
        cls,
        store: ConfigStore,
        settings: CloudBackupSettings,
        exchange: IdentityExchange | None = None,
    ) -> CredentialBroker:
        return cls(
            store,
            exchange,
            safety_margin=settings.safety_margin,
            timeout=settings.broker.exchange_timeout_seconds,
        )

    @property
    def safety_margin(self) -> timedelta:
        return self._safety_margin

    @property
    def cached(self) -> TemporaryCredentials | None:
        """The cached set if it has not expired yet (margin not applied)."""
        cached = self._cached
        if cached is not None and cached.is_valid(self._clock()):
            return cached
        return None

    def _fresh(self) -> TemporaryCredentials | None:
        cached = self._cached
        if cached is not None and cached.is_valid(self._clock(), self._safety_margin):
            return cached
        return None

    async def get_credentials(self, identity_token: str) -> TemporaryCredentials:
        """Return credentials valid for at least the safety margin.

        Raises:
            ConfigurationError: the app configuration is missing or invalid.
            CredentialExchangeError: the exchange failed, was rejected or timed out.
        """
        if not identity_token:
            raise CredentialExchangeError("Identity token is empty", kind=ExchangeFailure.REJECTED)

        fresh = self._fresh()
        if fresh is not None:
            return fresh

        async with self._lock:
            fresh = self._fresh()
            if fresh is not None:
                return fresh
            if self._inflight is None:
                self._inflight = asyncio.create_task(self._refresh(identity_token))
            task = self._inflight

        # Shielded so a cancelled caller does not cancel the exchange for the others
        return await asyncio.shield(task)

    def invalidate(self) -> None:
        """Drop cached credentials so the next call re-exchanges."""
        if self._cached is not None:
            logger.info(f"Invalidating cached credentials {self._cached.access_key_id}")
        self._cached = None

    async def _refresh(self, identity_token: str) -> TemporaryCredentials:
        try:
            config = self._store.app_config()
            request = ExchangeRequest.for_token(config, identity_token)
            logger.info(f"Exchanging identity token via {config.login_provider}")

            try:
                credentials = await asyncio.wait_for(self._exchange.exchange(request), timeout=self._timeout)
            except TimeoutError:
                raise CredentialExchangeError(
                    f"Identity exchange timed out after {self._timeout:g}s", kind=ExchangeFailure.TIMEOUT
                ) from None
            except CredentialExchangeError as e:
                logger.warning(f"Identity exchange failed ({e.kind.value}): {e}")
                raise
            except Exception as e:
                raise CredentialExchangeError(f"Identity exchange failed: {e}") from e

            now = self._clock()
            if not credentials.is_valid(now):
                raise CredentialExchangeError("Identity provider returned expired credentials")
            if not credentials.is_valid(now, self._safety_margin):
                raise CredentialExchangeError(
                    f"Identity provider returned credentials expiring within the "
                    f"{self._safety_margin.total_seconds():g}s safety margin"
                )

            register_secret(credentials.secret_access_key)
            register_secret(credentials.session_token)
            self._cached = credentials
            self.exchange_count += 1
            logger.info(
                f"Obtained credentials {credentials.access_key_id} "
                f"valid until {credentials.expiration.isoformat()}"
            )
            return credentials
        finally:
            self._inflight = None
