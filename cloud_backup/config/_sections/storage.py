"""Object storage / rclone configuration models."""

from pydantic import BaseModel


class StorageSettings(BaseModel):
    rclone_config: str = "~/.config/cloud-backup-app/rclone.conf"
    remote_name: str = "aws"
