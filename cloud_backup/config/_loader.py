"""Locating and reading the optional YAML settings file."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings, InitSettingsSource

from cloud_backup.errors import ConfigurationError

logger = logging.getLogger(__name__)

SETTINGS_ENVVAR = "CLOUD_BACKUP_CONFIG"

# Checked in order when SETTINGS_ENVVAR is unset
SEARCH_PATHS = (
    Path("cloud-backup.yaml"),
    Path("cloud-backup.yml"),
    Path("~/.config/cloud-backup-app/settings.yaml"),
)


def find_settings_file() -> Path | None:
    """Return the settings file to use, if any.

    An explicit CLOUD_BACKUP_CONFIG path wins and turns off discovery, even
    when it does not exist; relative search paths resolve against the CWD.
    """
    explicit = os.environ.get(SETTINGS_ENVVAR)
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            logger.debug(f"{SETTINGS_ENVVAR} points at {path}, which does not exist")
            return None
        return path

    return next((p.expanduser() for p in SEARCH_PATHS if p.expanduser().is_file()), None)


def read_settings_file(path: Path) -> dict[str, Any]:
    """Parse a settings file into nested section dicts.

    Raises:
        ConfigurationError: the file cannot be read as a YAML mapping.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Cannot read settings file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Settings file {path} is not valid YAML: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {path} must hold a mapping of sections")
    return data


def settings_file_source(settings_cls: type[BaseSettings]) -> InitSettingsSource:
    """Settings source for the discovered YAML file (empty when there is none)."""
    path = find_settings_file()
    data: dict[str, Any] = {}
    if path is not None:
        data = read_settings_file(path)
        logger.debug(f"Loaded settings from {path}")
    return InitSettingsSource(settings_cls, init_kwargs=data)
