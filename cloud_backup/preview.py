"""Sync previews: the planned effect of a destructive sync run.

A preview is a snapshot of the diff between a profile's sources and its
destination. Once shown to the operator it is the plan: the engine applies
exactly these actions rather than re-deriving the diff. The snapshot may go
stale if either side changes afterwards; that is accepted, not detected.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from cloud_backup.errors import PreviewInvariantError


class ChangeAction(str, Enum):
    COPY = "Copy"
    UPDATE = "Update"
    DELETE = "Delete"


@dataclass(frozen=True)
class FileChange:
    path: str
    action: ChangeAction
    size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "size": self.size, "action": self.action.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FileChange:
        if not isinstance(data, Mapping):
            raise PreviewInvariantError(f"Preview entry must be an object, got {type(data).__name__}")
        path = data.get("path")
        if not isinstance(path, str) or not path:
            raise PreviewInvariantError(f"Preview entry without a path: {dict(data)!r}")
        try:
            action = ChangeAction(data.get("action"))
        except ValueError as e:
            raise PreviewInvariantError(f"Unknown action {data.get('action')!r} for {path!r}", [path]) from e
        size = data.get("size", 0)
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise PreviewInvariantError(f"Invalid size {size!r} for {path!r}", [path])
        return cls(path=path, action=action, size=size)


@dataclass(frozen=True)
class PreviewSummary:
    to_copy: int
    to_update: int
    to_delete: int

    @property
    def total(self) -> int:
        return self.to_copy + self.to_update + self.to_delete

    @property
    def is_destructive(self) -> bool:
        return self.to_delete > 0


@dataclass(frozen=True)
class BackupPreview:
    """Three disjoint ordered sequences of planned file actions.

    Construction fails with PreviewInvariantError if any path is listed
    more than once or an entry sits under the wrong action.
    """

    files_to_copy: tuple[FileChange, ...] = ()
    files_to_update: tuple[FileChange, ...] = ()
    files_to_delete: tuple[FileChange, ...] = ()

    def __post_init__(self) -> None:
        sections = (
            ("files_to_copy", ChangeAction.COPY),
            ("files_to_update", ChangeAction.UPDATE),
            ("files_to_delete", ChangeAction.DELETE),
        )
        for name, expected in sections:
            entries = tuple(getattr(self, name))
            object.__setattr__(self, name, entries)
            misplaced = [c.path for c in entries if c.action is not expected]
            if misplaced:
                raise PreviewInvariantError(f"{name} holds entries that are not {expected.value}", misplaced)

        counts = Counter(c.path for c in self.actions())
        duplicated = [path for path, n in counts.items() if n > 1]
        if duplicated:
            raise PreviewInvariantError(
                f"{len(duplicated)} path(s) listed under more than one action",
                duplicated,
            )

    @classmethod
    def empty(cls) -> BackupPreview:
        return cls()

    @classmethod
    def from_changes(cls, changes: Iterable[FileChange]) -> BackupPreview:
        """Group a flat change list by action, keeping order within each group."""
        grouped: dict[ChangeAction, list[FileChange]] = {action: [] for action in ChangeAction}
        for change in changes:
            grouped[change.action].append(change)
        return cls(
            files_to_copy=tuple(grouped[ChangeAction.COPY]),
            files_to_update=tuple(grouped[ChangeAction.UPDATE]),
            files_to_delete=tuple(grouped[ChangeAction.DELETE]),
        )

    def actions(self) -> Iterator[FileChange]:
        """The plan in execution order: copies, then updates, then deletes."""
        yield from self.files_to_copy
        yield from self.files_to_update
        yield from self.files_to_delete

    @property
    def total_files(self) -> int:
        return len(self.files_to_copy) + len(self.files_to_update) + len(self.files_to_delete)

    @property
    def total_size(self) -> int:
        return sum(c.size for c in self.actions())

    @property
    def is_empty(self) -> bool:
        return self.total_files == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "files_to_copy": [c.to_dict() for c in self.files_to_copy],
            "files_to_update": [c.to_dict() for c in self.files_to_update],
            "files_to_delete": [c.to_dict() for c in self.files_to_delete],
            "total_files": self.total_files,
            "total_size": self.total_size,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BackupPreview:
        # total_files / total_size are derived; stored values are not trusted
        if not isinstance(data, Mapping):
            raise PreviewInvariantError(f"Preview must be an object, got {type(data).__name__}")

        def section(name: str) -> tuple[FileChange, ...]:
            entries = data.get(name) or ()
            if not isinstance(entries, list | tuple):
                raise PreviewInvariantError(f"{name} must be a list, got {type(entries).__name__}")
            return tuple(FileChange.from_dict(c) for c in entries)

        return cls(
            files_to_copy=section("files_to_copy"),
            files_to_update=section("files_to_update"),
            files_to_delete=section("files_to_delete"),
        )


def summarize(preview: BackupPreview) -> PreviewSummary:
    return PreviewSummary(
        to_copy=len(preview.files_to_copy),
        to_update=len(preview.files_to_update),
        to_delete=len(preview.files_to_delete),
    )
