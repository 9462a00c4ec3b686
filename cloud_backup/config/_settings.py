"""Root CloudBackupSettings model."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from cloud_backup.config._loader import settings_file_source
from cloud_backup.config._sections import (
    BrokerSettings,
    LoggingSettings,
    StorageSettings,
    StoreSettings,
)


class CloudBackupSettings(BaseSettings):
    model_config = {
        "env_prefix": "CLOUD_BACKUP_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "extra": "ignore",
    }

    broker: BrokerSettings = Field(default_factory=BrokerSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def config_path(self) -> Path:
        """Absolute path of the persisted app config JSON."""
        return Path(self.store.config_dir).expanduser() / self.store.config_file

    @property
    def rclone_config_path(self) -> Path:
        return Path(self.storage.rclone_config).expanduser()

    @property
    def safety_margin(self) -> timedelta:
        return timedelta(seconds=self.broker.safety_margin_seconds)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            settings_file_source(settings_cls),
        )
