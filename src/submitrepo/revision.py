"""Revision: immutable read view of a repository at one revision."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Hashable

from ._paths import join_path
from .exceptions import UnimplementedCapability

__all__ = ["Revision", "RevisionFile", "RevisionDirectory"]


@dataclass(frozen=True)
class RevisionFile:
    """A file as it appears in one revision.

    Attributes:
        name: Entry name (no directory part).
        path: Normalized containing directory (``""`` for the root).
        last_modified_revision: Identifier of the revision that last changed it.
        last_modified_date: Timestamp of that revision.
        changed: True if the revision this record came from changed it.
        user_id: User who made the last change.
        from_revision: Identifier of the revision that produced this record.
        mime_type: MIME type recorded or guessed for the file.
    """

    name: str
    path: str
    last_modified_revision: Hashable
    last_modified_date: datetime | None
    changed: bool
    user_id: str | None
    from_revision: Hashable
    mime_type: str | None = None

    @property
    def full_path(self) -> str:
        return join_path(self.path, self.name)


@dataclass(frozen=True)
class RevisionDirectory:
    """A directory as it appears in one revision."""

    name: str
    path: str
    last_modified_revision: Hashable
    last_modified_date: datetime | None
    changed: bool
    user_id: str | None
    from_revision: Hashable

    @property
    def full_path(self) -> str:
        return join_path(self.path, self.name)


class Revision:
    """An immutable snapshot of repository content.

    Subclasses answer the four path queries against their own snapshot;
    none of them may observe commits made after the revision was created.
    """

    def __init__(
        self,
        revision_identifier: Hashable,
        *,
        timestamp: datetime | None = None,
        user_id: str | None = None,
        comment: str = "",
        revision_identifier_ui: str | None = None,
    ):
        self.revision_identifier = revision_identifier
        self.revision_identifier_ui = (
            revision_identifier_ui if revision_identifier_ui is not None else str(revision_identifier)
        )
        self.timestamp = timestamp
        self.user_id = user_id
        self.comment = comment
        # Assigned by the server after creation, independent of ``timestamp``.
        self.server_timestamp: datetime | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.revision_identifier_ui!r})"

    def __eq__(self, other):
        if isinstance(other, Revision):
            return type(self) is type(other) and self.revision_identifier == other.revision_identifier
        return NotImplemented

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.revision_identifier))

    def _unimplemented(self, capability: str) -> UnimplementedCapability:
        return UnimplementedCapability(type(self).__name__, capability)

    def path_exists(self, path: str | os.PathLike[str] | None) -> bool:
        """Return True if *path* is a file or directory in this revision."""
        raise self._unimplemented("path_exists")

    def changes_at_path(self, path: str | os.PathLike[str] | None) -> bool:
        """Return True if this revision changed anything at or under *path*."""
        raise self._unimplemented("changes_at_path")

    def files_at_path(self, path: str | os.PathLike[str] | None = None) -> dict[str, RevisionFile]:
        """Return the files directly in *path*, keyed by name."""
        raise self._unimplemented("files_at_path")

    def directories_at_path(self, path: str | os.PathLike[str] | None = None) -> dict[str, RevisionDirectory]:
        """Return the directories directly in *path*, keyed by name."""
        raise self._unimplemented("directories_at_path")
