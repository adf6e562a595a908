"""Conflict records gathered while committing a transaction.

Conflicts are values attached to a :class:`~submitrepo.transaction.Transaction`,
never raised, so a caller sees every conflict from one commit attempt at once.
"""

from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "Conflict",
    "FileExistsConflict",
    "FileDoesNotExistConflict",
    "FileOutOfSyncConflict",
    "RevisionOutOfSyncConflict",
]


@dataclass(frozen=True)
class Conflict:
    """An unspecified conflict on *path*."""

    path: str

    @property
    def message(self) -> str:
        return f"There was an unspecified conflict with file {self.path}"

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class FileExistsConflict(Conflict):
    """An ``add`` or ``add_path`` targeted a path that already exists."""

    @property
    def message(self) -> str:
        return (
            f"{self.path} could not be added - it already exists in the folder.  "
            "If you'd like to overwrite, try replacing the file instead."
        )


@dataclass(frozen=True)
class FileDoesNotExistConflict(Conflict):
    """A ``remove`` or ``replace`` targeted a path that is gone."""

    @property
    def message(self) -> str:
        return f"{self.path} could not be changed - it was deleted since you last saw it"


@dataclass(frozen=True)
class FileOutOfSyncConflict(Conflict):
    """The path was modified after the revision the caller last saw.

    Attributes:
        expected: Revision identifier the job was guarded by.
        actual: Revision identifier that last modified the path.
    """

    expected: object = None
    actual: object = None

    @property
    def message(self) -> str:
        return f"{self.path} has been updated since you last saw it, and could not be changed"


@dataclass(frozen=True)
class RevisionOutOfSyncConflict(Conflict):
    """The whole revision view the caller used is stale."""

    @property
    def message(self) -> str:
        return f"{self.path} was changed in a revision newer than the one you last saw"
