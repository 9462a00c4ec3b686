"""Unified configuration for the cloud backup client.

Usage:
    from cloud_backup.config import get_settings

    s = get_settings()
    s.broker.safety_margin_seconds   # 60
    s.config_path                    # ~/.config/cloud-backup-app/app_config.json
"""

from __future__ import annotations

from cloud_backup.config._settings import CloudBackupSettings

_settings: CloudBackupSettings | None = None


def get_settings() -> CloudBackupSettings:
    """Return the singleton CloudBackupSettings instance (created on first call)."""
    global _settings
    if _settings is None:
        _settings = CloudBackupSettings()
    return _settings


def reset_settings() -> None:
    """Force re-creation of the settings singleton (useful for tests)."""
    global _settings
    _settings = None


__all__ = ["CloudBackupSettings", "get_settings", "reset_settings"]
