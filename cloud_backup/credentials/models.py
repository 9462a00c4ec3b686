"""Temporary credential and exchange request types."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cloud_backup.config.store import AppConfig


@dataclass(frozen=True)
class TemporaryCredentials:
    """Short-lived, scoped AWS credentials.

    A set is usable only while ``now < expiration``. Secret fields are kept
    out of ``repr`` so they never leak through logging or tracebacks.
    """

    access_key_id: str
    secret_access_key: str = field(repr=False)
    session_token: str = field(repr=False)
    expiration: datetime
    identity_id: str | None = None

    def __post_init__(self) -> None:
        if self.expiration.tzinfo is None:
            raise ValueError("expiration must be timezone-aware")
        object.__setattr__(self, "expiration", self.expiration.astimezone(UTC))

    def expires_in(self, now: datetime) -> timedelta:
        return self.expiration - now

    def is_valid(self, now: datetime, margin: timedelta = timedelta(0)) -> bool:
        """True if still usable for at least ``margin`` past ``now``."""
        return now + margin < self.expiration

    def as_boto3_kwargs(self) -> dict[str, str]:
        return {
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
            "aws_session_token": self.session_token,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "accessKeyId": self.access_key_id,
            "secretAccessKey": self.secret_access_key,
            "sessionToken": self.session_token,
            "expiration": self.expiration.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TemporaryCredentials:
        return cls(
            access_key_id=data["accessKeyId"],
            secret_access_key=data["secretAccessKey"],
            session_token=data.get("sessionToken", ""),
            expiration=datetime.fromisoformat(data["expiration"]),
        )


@dataclass(frozen=True)
class ExchangeRequest:
    """One federated identity exchange: region, pool and login map."""

    region: str
    identity_pool_id: str
    logins: Mapping[str, str] = field(repr=False)

    @classmethod
    def for_token(cls, config: AppConfig, identity_token: str) -> ExchangeRequest:
        return cls(
            region=config.cognito_region,
            identity_pool_id=config.cognito_identity_pool_id,
            logins={config.login_provider: identity_token},
        )
