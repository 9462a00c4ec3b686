"""Config section models."""

from cloud_backup.config._sections.broker import BrokerSettings
from cloud_backup.config._sections.logging import LoggingSettings
from cloud_backup.config._sections.storage import StorageSettings
from cloud_backup.config._sections.store import StoreSettings

__all__ = [
    "BrokerSettings",
    "LoggingSettings",
    "StorageSettings",
    "StoreSettings",
]
