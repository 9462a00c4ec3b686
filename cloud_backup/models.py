"""Backup profiles and operation records.

These are the shapes shared with the desktop UI and the transfer engine.
Their dict forms keep the persisted field names and variant tags, so a
profile written by one side loads unchanged on the other.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from cloud_backup.errors import OperationStateError
from cloud_backup.schedule import Schedule

DEFAULT_REMOTE = "aws"
DEFAULT_TRANSFER_FLAGS = ("--checksum", "--fast-list", "--transfers=8", "--checkers=32")


def _now() -> datetime:
    return datetime.now(UTC)


def _parse_dt(value: Any) -> datetime:
    return value if isinstance(value, datetime) else datetime.fromisoformat(value)


class ProfileType(str, Enum):
    ADMIN = "Admin"
    USER = "User"


class BackupMode(str, Enum):
    """Copy only adds and updates; Sync mirrors, including deletions."""

    COPY = "Copy"
    SYNC = "Sync"


def user_prefix(user_id: str, is_admin: bool = False) -> str:
    """Per-user key prefix inside the shared bucket."""
    if not user_id:
        raise ValueError("user_id must not be empty")
    return f"{'admins' if is_admin else 'users'}/{user_id}"


@dataclass(frozen=True)
class RemoteTarget:
    bucket: str
    prefix: str = ""
    remote: str = DEFAULT_REMOTE

    def destination(self) -> str:
        """rclone path, ``remote:bucket`` or ``remote:bucket/prefix``."""
        prefix = self.prefix.strip("/")
        if not prefix:
            return f"{self.remote}:{self.bucket}"
        return f"{self.remote}:{self.bucket}/{prefix}"


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    profile_type: ProfileType
    target: RemoteTarget
    sources: tuple[str, ...] = ()
    mode: BackupMode = BackupMode.COPY
    schedule: Schedule | None = None
    user_id: str | None = None
    transfer_flags: tuple[str, ...] = DEFAULT_TRANSFER_FLAGS
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @classmethod
    def create(
        cls,
        name: str,
        target: RemoteTarget,
        sources: Sequence[str] = (),
        *,
        profile_type: ProfileType = ProfileType.USER,
        mode: BackupMode = BackupMode.COPY,
        schedule: Schedule | None = None,
        user_id: str | None = None,
    ) -> Profile:
        now = _now()
        return cls(
            id=str(uuid.uuid4()),
            name=name,
            profile_type=profile_type,
            target=target,
            sources=tuple(sources),
            mode=mode,
            schedule=schedule,
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )

    @classmethod
    def for_user(cls, user_id: str, email: str, bucket: str, is_admin: bool = False) -> Profile:
        """Default profile for a signed-in user, writing under their own prefix."""
        return cls.create(
            name=email,
            target=RemoteTarget(bucket=bucket, prefix=user_prefix(user_id, is_admin)),
            profile_type=ProfileType.ADMIN if is_admin else ProfileType.USER,
            user_id=user_id,
        )

    def sync_user(self, is_admin: bool) -> Profile:
        """Re-derive type and prefix after the user's admin status changed.

        Returns ``self`` when nothing changed.
        """
        if not self.user_id:
            raise ValueError(f"Profile {self.id} is not bound to a user")
        profile_type = ProfileType.ADMIN if is_admin else ProfileType.USER
        prefix = user_prefix(self.user_id, is_admin)
        if profile_type is self.profile_type and prefix == self.target.prefix:
            return self
        return self.updated(profile_type=profile_type, target=replace(self.target, prefix=prefix))

    @property
    def requires_preview(self) -> bool:
        """Sync runs delete remote files, so the operator confirms a preview first."""
        return self.mode is BackupMode.SYNC

    def destination(self) -> str:
        return self.target.destination()

    def updated(self, **changes: Any) -> Profile:
        return replace(self, updated_at=_now(), **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "profile_type": self.profile_type.value,
            "remote": self.target.remote,
            "bucket": self.target.bucket,
            "prefix": self.target.prefix,
            "sources": list(self.sources),
            "mode": self.mode.value,
            "schedule": self.schedule.to_dict() if self.schedule else None,
            "rclone_flags": list(self.transfer_flags),
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Profile:
        schedule = data.get("schedule")
        return cls(
            id=data["id"],
            name=data["name"],
            profile_type=ProfileType(data["profile_type"]),
            target=RemoteTarget(
                bucket=data["bucket"],
                prefix=data.get("prefix", ""),
                remote=data.get("remote") or DEFAULT_REMOTE,
            ),
            sources=tuple(data.get("sources", ())),
            mode=BackupMode(data.get("mode", BackupMode.COPY.value)),
            schedule=Schedule.from_dict(schedule) if schedule else None,
            user_id=data.get("user_id"),
            transfer_flags=tuple(data.get("rclone_flags", DEFAULT_TRANSFER_FLAGS)),
            created_at=_parse_dt(data["created_at"]),
            updated_at=_parse_dt(data["updated_at"]),
        )


class OperationType(str, Enum):
    BACKUP = "Backup"
    RESTORE = "Restore"
    PREVIEW = "Preview"


class OperationStatus(str, Enum):
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not OperationStatus.RUNNING


@dataclass(frozen=True)
class BackupOperation:
    """One backup, restore or preview run.

    Starts as Running and ends in exactly one of Completed, Failed or
    Cancelled. A finished operation never changes again.
    """

    id: str
    profile_id: str
    operation_type: OperationType
    status: OperationStatus = OperationStatus.RUNNING
    started_at: datetime = field(default_factory=_now)
    completed_at: datetime | None = None
    files_transferred: int = 0
    bytes_transferred: int = 0
    error_message: str | None = None
    log_output: str = ""

    @classmethod
    def start(cls, profile_id: str, operation_type: OperationType, *, now: datetime | None = None) -> BackupOperation:
        return cls(
            id=str(uuid.uuid4()),
            profile_id=profile_id,
            operation_type=operation_type,
            started_at=now or _now(),
        )

    def _require_running(self, action: str) -> None:
        if self.status.is_terminal:
            raise OperationStateError(f"Cannot {action} operation {self.id}: already {self.status.value}")

    def record_progress(self, files: int = 0, bytes_: int = 0, log: str = "") -> BackupOperation:
        self._require_running("update")
        return replace(
            self,
            files_transferred=self.files_transferred + files,
            bytes_transferred=self.bytes_transferred + bytes_,
            log_output=self.log_output + log,
        )

    def complete(self, *, now: datetime | None = None) -> BackupOperation:
        self._require_running("complete")
        return replace(self, status=OperationStatus.COMPLETED, completed_at=now or _now())

    def fail(self, error: str, *, now: datetime | None = None) -> BackupOperation:
        self._require_running("fail")
        return replace(self, status=OperationStatus.FAILED, completed_at=now or _now(), error_message=error)

    def cancel(self, *, now: datetime | None = None) -> BackupOperation:
        self._require_running("cancel")
        return replace(self, status=OperationStatus.CANCELLED, completed_at=now or _now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "profile_id": self.profile_id,
            "operation_type": self.operation_type.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "files_transferred": self.files_transferred,
            "bytes_transferred": self.bytes_transferred,
            "error_message": self.error_message,
            "log_output": self.log_output,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BackupOperation:
        completed_at = data.get("completed_at")
        return cls(
            id=data["id"],
            profile_id=data["profile_id"],
            operation_type=OperationType(data["operation_type"]),
            status=OperationStatus(data["status"]),
            started_at=_parse_dt(data["started_at"]),
            completed_at=_parse_dt(completed_at) if completed_at else None,
            files_transferred=int(data.get("files_transferred", 0)),
            bytes_transferred=int(data.get("bytes_transferred", 0)),
            error_message=data.get("error_message"),
            log_output=data.get("log_output", ""),
        )
