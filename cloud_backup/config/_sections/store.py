"""Persisted app config location."""

from pydantic import BaseModel


class StoreSettings(BaseModel):
    config_dir: str = "~/.config/cloud-backup-app"
    config_file: str = "app_config.json"
