"""Object storage for backed-up files."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass
class CloudFile:
    """One entry of a bucket listing."""

    path: str  # Key relative to the listed prefix
    name: str  # Last path component
    size: int  # Bytes, 0 for directories
    mod_time: datetime | None
    is_dir: bool = False
    mime_type: str | None = None

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "name": self.name,
            "size": self.size,
            "mod_time": self.mod_time.isoformat() if self.mod_time else None,
            "is_dir": self.is_dir,
            "mime_type": self.mime_type,
        }


class ObjectStore(Protocol):
    """Protocol for credential-brokered object stores."""

    async def verify(self) -> None: ...

    async def list_files(self, prefix: str = "") -> list[CloudFile]: ...


__all__ = ["CloudFile", "ObjectStore"]
