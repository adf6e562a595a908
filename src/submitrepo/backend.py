"""RepositoryBackend: the contract every storage backend implements.

Backends subclass :class:`RepositoryBackend` and override the lifecycle
classmethods, the revision queries, and two hooks: ``_apply`` (write the
validated jobs of a transaction as a new revision) and ``_read_file`` (return
the bytes of one :class:`~submitrepo.revision.RevisionFile`).  Commit
validation, timestamp lookup, path expansion, and the transaction factory are
shared by all backends.

Anything a backend leaves out raises
:class:`~submitrepo.exceptions.UnimplementedCapability` at first use, and is
reported missing by :meth:`RepositoryBackend.capabilities` before that.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Hashable

from . import _paths
from ._lock import location_lock
from .conflicts import (
    Conflict,
    FileDoesNotExistConflict,
    FileExistsConflict,
    FileOutOfSyncConflict,
    RevisionOutOfSyncConflict,
)
from .exceptions import RepositoryClosedError, UnimplementedCapability
from .revision import Revision, RevisionDirectory, RevisionFile
from .transaction import Job, JobAction, Transaction

logger = logging.getLogger(__name__)

__all__ = ["RepositoryBackend", "validate_jobs", "CAPABILITY_HOOKS"]

# Contract operation -> attribute a backend must override to provide it.
CAPABILITY_HOOKS: dict[str, str] = {
    "exists": "exists",
    "open": "open",
    "create": "create",
    "delete": "delete",
    "get_checkout_command": "get_checkout_command",
    "publish_permissions": "publish_permissions",
    "stringify_files": "_read_file",
    "get_latest_revision": "get_latest_revision",
    "get_all_revisions": "get_all_revisions",
    "get_revision": "get_revision",
    "commit": "_apply",
}


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _entry_at(revision: Revision, path: str) -> RevisionFile | RevisionDirectory | None:
    """Return the file or directory record at normalized *path*, if any."""
    directory, name = _paths.split_path(path)
    if not revision.path_exists(directory):
        return None
    files = revision.files_at_path(directory)
    if name in files:
        return files[name]
    return revision.directories_at_path(directory).get(name)


def _file_ancestor(revision: Revision, path: str) -> str | None:
    """Return the first ancestor of *path* that is a file in *revision*."""
    for ancestor in _paths.parent_dirs(path):
        entry = _entry_at(revision, ancestor)
        if entry is None:
            return None
        if isinstance(entry, RevisionFile):
            return ancestor
    return None


def validate_jobs(latest: Revision, jobs: Iterable[Job]) -> list[Conflict]:
    """Check *jobs* against *latest* and return every conflict found.

    Jobs are checked in order, so a path created or removed by an earlier
    job of the same transaction counts as existing or missing for later ones.
    A directory also exists once an earlier job created something below it.
    """
    conflicts: list[Conflict] = []
    # Paths created by earlier jobs -> True for files, False for directories.
    created: dict[str, bool] = {}
    removed: set[str] = set()

    def exists(path: str) -> bool:
        if any(_paths.is_under(c, path) for c in created):
            return True
        if any(_paths.is_under(path, r) for r in removed):
            return False
        return latest.path_exists(path)

    def file_ancestor(path: str) -> str | None:
        for ancestor in _paths.parent_dirs(path):
            if created.get(ancestor):
                return ancestor
        blocker = _file_ancestor(latest, path)
        if blocker is not None and not any(_paths.is_under(blocker, r) for r in removed):
            return blocker
        return None

    def forget(path: str) -> None:
        for c in [c for c in created if _paths.is_under(c, path)]:
            del created[c]

    for job in jobs:
        path = job.path
        if job.creates:
            if not path or exists(path):
                conflicts.append(FileExistsConflict(path))
                continue
            blocker = file_ancestor(path)
            if blocker is not None:
                conflicts.append(FileExistsConflict(blocker))
                continue
            created[path] = job.action is JobAction.ADD
            continue

        if not path or not exists(path):
            conflicts.append(FileDoesNotExistConflict(path))
            continue
        if path in created or any(_paths.is_under(path, r) for r in removed):
            entry = None
        else:
            entry = _entry_at(latest, path)
        if entry is None:
            # Only exists because of earlier jobs; nothing older to guard against.
            if job.action is JobAction.REPLACE and not created.get(path):
                conflicts.append(Conflict(path))
            elif job.action is JobAction.REMOVE:
                forget(path)
            continue
        if isinstance(entry, RevisionDirectory):
            if job.action is JobAction.REPLACE:
                conflicts.append(Conflict(path))
                continue
            if entry.last_modified_revision != job.expected_revision_identifier:
                conflicts.append(RevisionOutOfSyncConflict(path))
                continue
        elif entry.last_modified_revision != job.expected_revision_identifier:
            conflicts.append(FileOutOfSyncConflict(
                path,
                expected=job.expected_revision_identifier,
                actual=entry.last_modified_revision,
            ))
            continue
        if job.action is JobAction.REMOVE:
            removed.add(path)
            forget(path)
    return conflicts


class RepositoryBackend:
    """Base class for repository backends.

    Instances are opened on one *location*.  Lifecycle operations are
    classmethods so callers can test for, create, and delete storage without
    an open backend.
    """

    def __init__(self, location: str | os.PathLike[str]):
        self._location = os.fspath(location)
        self._closed = False

    def __repr__(self) -> str:
        state = ", closed" if self._closed else ""
        return f"{type(self).__name__}({self._location!r}{state})"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @classmethod
    def _unimplemented(cls, capability: str) -> UnimplementedCapability:
        return UnimplementedCapability(cls.__name__, capability)

    # --- Capabilities ---

    @classmethod
    def capabilities(cls) -> frozenset[str]:
        """Names of the contract operations this backend provides."""
        provided = set()
        for capability, hook in CAPABILITY_HOOKS.items():
            for klass in cls.__mro__:
                if hook in klass.__dict__:
                    if klass is not RepositoryBackend:
                        provided.add(capability)
                    break
        return frozenset(provided)

    @classmethod
    def supports(cls, capability: str) -> bool:
        return capability in cls.capabilities()

    # --- Lifecycle ---

    @classmethod
    def exists(cls, location: str | os.PathLike[str]) -> bool:
        """Return True if a repository is stored at *location*."""
        raise cls._unimplemented("exists")

    @classmethod
    def open(cls, location: str | os.PathLike[str]) -> RepositoryBackend:
        """Open the repository at *location*.

        Raises:
            RepositoryConnectionError: If the storage cannot be reached.
        """
        raise cls._unimplemented("open")

    @classmethod
    def create(cls, location: str | os.PathLike[str]) -> RepositoryBackend:
        """Create and open a new repository at *location*.

        Raises:
            ExportRepositoryAlreadyExists: If storage already exists there.
        """
        raise cls._unimplemented("create")

    @classmethod
    def delete(cls, location: str | os.PathLike[str]) -> None:
        """Delete the repository at *location* and all of its history."""
        raise cls._unimplemented("delete")

    @classmethod
    @contextmanager
    def access(cls, location: str | os.PathLike[str]) -> Iterator[RepositoryBackend]:
        """Open the repository at *location*, yield it, and close it afterwards."""
        repo = cls.open(location)
        try:
            yield repo
        finally:
            repo.close()

    def close(self) -> None:
        """Close the backend.  Closing twice is harmless."""
        if not self._closed:
            self._release()
            self._closed = True

    def _release(self) -> None:
        """Release backend resources; called once by :meth:`close`."""

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise RepositoryClosedError(f"{self!r} is closed")

    @property
    def location(self) -> str:
        return self._location

    @property
    def repo_name(self) -> str:
        """Repository name: the last component of the location."""
        return os.path.basename(self._location.rstrip("/\\"))

    # --- Class-level helpers ---

    @classmethod
    def get_checkout_command(
        cls,
        external_repo_url: str,
        revision_identifier: Hashable,
        group_name: str,
        repo_folder: str | None = None,
    ) -> str:
        """Return a shell command that checks out the repository (or one folder)."""
        raise cls._unimplemented("get_checkout_command")

    @classmethod
    def internal_file_names(cls) -> frozenset[str]:
        """File names the backend uses for bookkeeping, never user content."""
        return frozenset()

    @classmethod
    def reserved_locations(cls) -> frozenset[str]:
        """Repository names that cannot be used; ``*`` means every repository."""
        return frozenset({"*"})

    @classmethod
    def publish_permissions(cls, permissions: Mapping[str, frozenset[str]], storage: str | None = None) -> None:
        """Replace the published authorization table with *permissions*.

        *permissions* is the complete merged table produced by
        :func:`~submitrepo.permissions.merge_permissions`; there is no
        partial update.
        """
        raise cls._unimplemented("publish_permissions")

    # --- Bulk read ---

    def _read_file(self, file: RevisionFile) -> bytes:
        """Return the contents of *file* at its ``from_revision``."""
        raise self._unimplemented("stringify_files")

    def stringify_files(self, files: RevisionFile | Iterable[RevisionFile]) -> bytes:
        """Return the content of one file, or of several concatenated in order.

        Raises:
            FileDoesNotExist: If any file is absent at its revision.
        """
        self._check_open()
        if isinstance(files, RevisionFile):
            return self._read_file(files)
        return b"".join(self._read_file(f) for f in files)

    download_as_string = stringify_files

    # --- Revisions ---

    def get_latest_revision(self) -> Revision:
        raise self._unimplemented("get_latest_revision")

    def get_all_revisions(self) -> list[Revision]:
        """Return every revision, oldest first."""
        raise self._unimplemented("get_all_revisions")

    def get_revision(self, revision_identifier: Hashable) -> Revision:
        """Return the revision with *revision_identifier*.

        Raises:
            RevisionDoesNotExist: If there is no such revision.
        """
        raise self._unimplemented("get_revision")

    def get_revision_by_timestamp(
        self,
        at_or_earlier_than: datetime,
        path: str | os.PathLike[str] | None = None,
        later_than: datetime | None = None,
    ) -> Revision | None:
        """Return the latest revision at or before *at_or_earlier_than*.

        Args:
            at_or_earlier_than: Upper bound (inclusive) on the revision timestamp.
            path: Only consider revisions that changed something under *path*.
            later_than: Lower bound (exclusive) on the revision timestamp.

        Revisions sharing a timestamp are ordered by their position in the
        history, so the later one wins.  Returns ``None`` if nothing matches.
        """
        self._check_open()
        upper = _utc(at_or_earlier_than)
        lower = _utc(later_than) if later_than is not None else None
        filter_path = None if path is None else _paths.normalize_path(path)
        for revision in reversed(self.get_all_revisions()):
            stamp = _utc(revision.timestamp)
            if stamp > upper:
                continue
            if lower is not None and stamp <= lower:
                continue
            if filter_path is not None and not revision.changes_at_path(filter_path):
                continue
            return revision
        return None

    def expand_path(self, file_name: str, dir_string: str = "/") -> str:
        """Resolve *file_name* against *dir_string* into an absolute path."""
        return _paths.expand_path(file_name, dir_string)

    # --- Writes ---

    def get_transaction(self, user_id: str, comment: str = "") -> Transaction:
        """Return a new, empty transaction.  Nothing is written until commit."""
        self._check_open()
        return Transaction(user_id, comment)

    @contextmanager
    def _commit_lock(self):
        """Serialize commits to this repository; backends may widen the scope."""
        with location_lock(self._location):
            yield

    def _apply(self, latest: Revision, transaction: Transaction) -> Revision:
        """Write the validated jobs of *transaction* on top of *latest*."""
        raise self._unimplemented("commit")

    def commit(self, transaction: Transaction) -> Transaction:
        """Commit *transaction*: apply every job, or none if any conflicts.

        Jobs are validated against the latest revision at commit time.
        Conflicts are recorded on the transaction, not raised.  Returns the
        same transaction, now closed, with ``applied`` and ``revision`` set.
        """
        self._check_open()
        if transaction.closed:
            raise RuntimeError("Transaction has already been committed")
        with self._commit_lock():
            latest = self.get_latest_revision()
            for conflict in validate_jobs(latest, transaction.jobs):
                transaction.add_conflict(conflict)
            if transaction.has_conflicts:
                logger.debug(
                    "%s: commit by %s rejected with %d conflict(s)",
                    self.repo_name, transaction.user_id, len(transaction.conflicts),
                )
                transaction._finish(None)
                return transaction
            if not transaction.has_jobs:
                transaction._finish(latest)
                return transaction
            revision = self._apply(latest, transaction)
            revision.server_timestamp = datetime.now(timezone.utc)
        logger.debug(
            "%s: committed %d job(s) as %s",
            self.repo_name, len(transaction.jobs), revision.revision_identifier_ui,
        )
        transaction._finish(revision)
        return transaction
