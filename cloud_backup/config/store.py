"""Persisted key/value app configuration.

The store is a single JSON object on disk. Each top-level key is an entry;
the ``app_config`` entry carries the identity-pool settings the credential
broker needs:

```json
{
  "app_config": {
    "cognito_user_pool_id": "us-east-1_XXXXX",
    "cognito_app_client_id": "xxxxxxxxx",
    "cognito_identity_pool_id": "us-east-1:xxxx-yyyy",
    "cognito_region": "us-east-1",
    "bucket_name": "company-backups"
  }
}
```
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError, model_validator

from cloud_backup.errors import ConfigurationError

if TYPE_CHECKING:
    from cloud_backup.config._settings import CloudBackupSettings

logger = logging.getLogger(__name__)

APP_CONFIG_KEY = "app_config"


class AppConfig(BaseModel):
    """Identity configuration consumed by the credential broker."""

    model_config = {"extra": "ignore", "frozen": True}

    cognito_user_pool_id: str = Field(min_length=1)
    cognito_identity_pool_id: str = Field(min_length=1)
    cognito_region: str = Field(min_length=1)
    cognito_app_client_id: str = ""
    bucket_name: str = ""

    @model_validator(mode="before")
    @classmethod
    def _derive_region(cls, data: Any) -> Any:
        # User pool ids look like "<region>_<suffix>"
        if isinstance(data, dict) and not data.get("cognito_region"):
            region, sep, _ = str(data.get("cognito_user_pool_id") or "").partition("_")
            if sep and region:
                data = {**data, "cognito_region": region}
        return data

    @property
    def issuer_host(self) -> str:
        return f"cognito-idp.{self.cognito_region}.amazonaws.com"

    @property
    def login_provider(self) -> str:
        """Login map key for the identity-pool exchange."""
        return f"{self.issuer_host}/{self.cognito_user_pool_id}"


class ConfigStore:
    """JSON-file backed key/value configuration with an explicit lifecycle.

    Usage:
        store = ConfigStore(path)
        store.load()                  # raises ConfigurationError if absent
        store.app_config()            # typed view of the app_config entry

        # first run
        store.init({"cognito_user_pool_id": ..., ...})
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()
        self._entries: dict[str, Any] | None = None

    @classmethod
    def from_settings(cls, settings: CloudBackupSettings) -> ConfigStore:
        return cls(settings.config_path)

    @property
    def loaded(self) -> bool:
        return self._entries is not None

    def load(self) -> None:
        """Read the persisted configuration from disk."""
        if not self.path.is_file():
            raise ConfigurationError(f"Configuration not found at {self.path}")

        try:
            content = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigurationError(f"Cannot read configuration at {self.path}: {e}") from e

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Configuration at {self.path} is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration at {self.path} must be a JSON object")

        self._entries = data
        logger.debug(f"Loaded {len(data)} config entries from {self.path}")

    def init(self, app_config: AppConfig | dict[str, Any]) -> AppConfig:
        """Validate and persist the app_config entry (first-run setup)."""
        if not isinstance(app_config, AppConfig):
            try:
                app_config = AppConfig.model_validate(app_config)
            except ValidationError as e:
                raise ConfigurationError(f"Invalid app configuration: {e}") from e

        if self._entries is None:
            self._entries = self._read_existing()
        self._entries[APP_CONFIG_KEY] = app_config.model_dump()
        self._save()
        logger.info(f"Initialized app configuration at {self.path}")
        return app_config

    def get(self, key: str, default: Any = None) -> Any:
        return self._require_entries().get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._require_entries()[key] = value
        self._save()

    def remove(self, key: str) -> None:
        entries = self._require_entries()
        if key in entries:
            del entries[key]
            self._save()

    def clear(self) -> None:
        """Delete the persisted configuration and every in-memory entry."""
        self.path.unlink(missing_ok=True)
        self._entries = {}
        logger.info(f"Cleared configuration at {self.path}")

    def app_config(self) -> AppConfig:
        """Typed view of the app_config entry."""
        raw = self._require_entries().get(APP_CONFIG_KEY)
        if raw is None:
            raise ConfigurationError(f"No '{APP_CONFIG_KEY}' entry in configuration")
        if not isinstance(raw, dict):
            raise ConfigurationError(f"'{APP_CONFIG_KEY}' entry must be a JSON object")
        try:
            return AppConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid '{APP_CONFIG_KEY}' entry: {e}") from e

    def _require_entries(self) -> dict[str, Any]:
        if self._entries is None:
            raise ConfigurationError("Configuration has not been loaded")
        return self._entries

    def _read_existing(self) -> dict[str, Any]:
        if not self.path.is_file():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            logger.warning(f"Replacing unreadable configuration at {self.path}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self) -> None:
        """Write atomically using a temp file + rename."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(self._entries, indent=2, sort_keys=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, self.path)
