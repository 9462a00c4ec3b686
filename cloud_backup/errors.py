"""Error taxonomy for the cloud backup client."""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum


class CloudBackupError(Exception):
    """Base class for all cloud backup client errors."""


class ConfigurationError(CloudBackupError):
    """Local configuration is missing or invalid.

    Fatal for the calling operation. Never retried automatically.
    """


class ExchangeFailure(str, Enum):
    """Why a federated credential exchange failed."""

    TIMEOUT = "timeout"
    REJECTED = "rejected"  # invalid / expired identity token
    NETWORK = "network"
    PROVIDER = "provider"


class CredentialExchangeError(CloudBackupError):
    """The identity provider did not hand out credentials."""

    def __init__(self, message: str, kind: ExchangeFailure = ExchangeFailure.PROVIDER) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        """True when retrying with the same token may succeed."""
        return self.kind is not ExchangeFailure.REJECTED


class ScheduleValidationError(CloudBackupError, ValueError):
    """A schedule payload is out of range or malformed."""


class PreviewInvariantError(CloudBackupError):
    """A preview is malformed or lists the same path under more than one action."""

    def __init__(self, message: str, paths: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.paths = sorted(set(paths))


class OperationStateError(CloudBackupError):
    """A finished backup operation was asked to change."""


class StorageError(CloudBackupError):
    """The object store refused or failed a request."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code
