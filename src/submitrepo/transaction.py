"""Transaction: a staged set of jobs committed atomically.

Usage::

    txn = repo.get_transaction("alice", "Submit assignment 1")
    txn.add_path("A1")
    txn.add("A1/main.py", b"print('hi')\\n", "text/x-python")
    repo.commit(txn)
    if txn.has_conflicts:
        for conflict in txn.conflicts:
            print(conflict)

A transaction with any conflict was not applied; a transaction without
conflicts was applied in full.
"""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Hashable, NamedTuple

from ._paths import normalize_path

if TYPE_CHECKING:
    from .conflicts import Conflict
    from .revision import Revision

__all__ = ["Transaction", "Job", "JobAction", "CommitResult"]


class JobAction(enum.Enum):
    ADD_PATH = "add_path"
    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"


@dataclass(frozen=True)
class Job:
    """A single staged operation."""

    action: JobAction
    path: str
    file_data: bytes | None = None
    mime_type: str | None = None
    expected_revision_identifier: Hashable | None = None

    @property
    def creates(self) -> bool:
        return self.action in (JobAction.ADD, JobAction.ADD_PATH)


class CommitResult(NamedTuple):
    """Outcome of a commit: applied in full, or not at all with conflicts."""

    applied: bool
    conflicts: tuple[Conflict, ...]
    revision: Revision | None


def _to_bytes(file_data: bytes | str | None) -> bytes | None:
    if isinstance(file_data, str):
        return file_data.encode("utf-8")
    return file_data


class Transaction:
    """Accumulates jobs for one user and comment; committed once."""

    def __init__(self, user_id: str, comment: str):
        self.user_id = user_id
        self.comment = comment
        self.jobs: list[Job] = []
        self.conflicts: list[Conflict] = []
        self.applied = False
        self.revision: Revision | None = None
        self._closed = False

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"Transaction(user_id={self.user_id!r}, jobs={len(self.jobs)}, {state})"

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Transaction is closed")

    def _push(self, job: Job) -> None:
        self._check_open()
        self.jobs.append(job)

    def add_path(self, path: str | os.PathLike[str]) -> None:
        """Stage creation of a directory."""
        self._push(Job(JobAction.ADD_PATH, normalize_path(path)))

    def add(
        self,
        path: str | os.PathLike[str],
        file_data: bytes | str | None = None,
        mime_type: str | None = None,
    ) -> None:
        """Stage creation of a file."""
        self._push(Job(JobAction.ADD, normalize_path(path), _to_bytes(file_data) or b"", mime_type))

    def remove(self, path: str | os.PathLike[str], expected_revision_identifier: Hashable) -> None:
        """Stage deletion of *path*, guarded by the revision that last changed it."""
        self._push(Job(
            JobAction.REMOVE,
            normalize_path(path),
            expected_revision_identifier=expected_revision_identifier,
        ))

    def replace(
        self,
        path: str | os.PathLike[str],
        file_data: bytes | str,
        mime_type: str | None,
        expected_revision_identifier: Hashable,
    ) -> None:
        """Stage overwrite of a file, guarded by the revision that last changed it."""
        self._push(Job(
            JobAction.REPLACE,
            normalize_path(path),
            _to_bytes(file_data),
            mime_type,
            expected_revision_identifier,
        ))

    def add_conflict(self, conflict: Conflict) -> None:
        self.conflicts.append(conflict)

    @property
    def has_conflicts(self) -> bool:
        return len(self.conflicts) > 0

    @property
    def has_jobs(self) -> bool:
        return len(self.jobs) > 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def result(self) -> CommitResult:
        return CommitResult(self.applied, tuple(self.conflicts), self.revision)

    def _finish(self, revision: Revision | None) -> None:
        """Mark the transaction committed (called by the backend)."""
        self._check_open()
        self.revision = revision
        self.applied = revision is not None and not self.conflicts
        self._closed = True
