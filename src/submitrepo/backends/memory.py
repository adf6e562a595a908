"""MemoryRepository: an in-process backend for tests and development.

Repositories live in a process-wide table keyed by location, so opening the
same location twice yields two backends over the same history.  Revision
identifiers are consecutive integers; revision 0 is the empty repository.
"""

from __future__ import annotations

import logging
import mimetypes
import os
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Hashable

from .. import _paths
from ..backend import RepositoryBackend
from ..exceptions import (
    ExportRepositoryAlreadyExists,
    FileDoesNotExist,
    RepositoryConnectionError,
    RevisionDoesNotExist,
)
from ..revision import Revision, RevisionDirectory, RevisionFile
from ..transaction import JobAction, Transaction

logger = logging.getLogger(__name__)

__all__ = ["MemoryRepository", "MemoryRevision"]


@dataclass(frozen=True)
class _Entry:
    """Stored state of one path: last change plus file payload (None for dirs)."""

    revision: int
    date: datetime
    user_id: str | None
    data: bytes | None = None
    mime_type: str | None = None

    @property
    def is_dir(self) -> bool:
        return self.data is None


class MemoryRevision(Revision):
    """A frozen snapshot: the path table as it stood after one commit."""

    def __init__(
        self,
        revision_identifier: int,
        entries: Mapping[str, _Entry],
        changed_paths: frozenset[str],
        *,
        timestamp: datetime,
        user_id: str | None = None,
        comment: str = "",
    ):
        super().__init__(revision_identifier, timestamp=timestamp, user_id=user_id, comment=comment)
        self._entries = MappingProxyType(dict(entries))
        self._changed_paths = changed_paths

    def _children(self, path) -> list[tuple[str, _Entry]]:
        directory = _paths.normalize_path(path)
        if directory and not (directory in self._entries and self._entries[directory].is_dir):
            return []
        result = []
        for p, entry in self._entries.items():
            parent, name = _paths.split_path(p)
            if parent == directory:
                result.append((name, entry))
        return sorted(result)

    def path_exists(self, path) -> bool:
        path = _paths.normalize_path(path)
        return path == _paths.ROOT or path in self._entries

    def changes_at_path(self, path) -> bool:
        path = _paths.normalize_path(path)
        return any(_paths.is_under(p, path) for p in self._changed_paths)

    def files_at_path(self, path=None) -> dict[str, RevisionFile]:
        directory = _paths.normalize_path(path)
        return {
            name: RevisionFile(
                name=name,
                path=directory,
                last_modified_revision=entry.revision,
                last_modified_date=entry.date,
                changed=entry.revision == self.revision_identifier,
                user_id=entry.user_id,
                from_revision=self.revision_identifier,
                mime_type=entry.mime_type,
            )
            for name, entry in self._children(directory)
            if not entry.is_dir and name not in MemoryRepository.internal_file_names()
        }

    def directories_at_path(self, path=None) -> dict[str, RevisionDirectory]:
        directory = _paths.normalize_path(path)
        return {
            name: RevisionDirectory(
                name=name,
                path=directory,
                last_modified_revision=entry.revision,
                last_modified_date=entry.date,
                changed=entry.revision == self.revision_identifier,
                user_id=entry.user_id,
                from_revision=self.revision_identifier,
            )
            for name, entry in self._children(directory)
            if entry.is_dir
        }

    def _file_data(self, path: str) -> bytes:
        entry = self._entries.get(path)
        if entry is None or entry.is_dir:
            raise FileDoesNotExist(f"{path} does not exist at revision {self.revision_identifier}")
        return entry.data


class _MemoryStore:
    def __init__(self):
        self.revisions: list[MemoryRevision] = []


class MemoryRepository(RepositoryBackend):
    """Backend keeping every repository in process memory."""

    _repositories: dict[str, _MemoryStore] = {}
    _repositories_guard = threading.Lock()
    _permissions: Mapping[str, frozenset[str]] = MappingProxyType({})

    def __init__(self, location: str | os.PathLike[str]):
        super().__init__(location)
        with self._repositories_guard:
            try:
                self._store = self._repositories[self._location]
            except KeyError:
                raise RepositoryConnectionError(f"No repository at {self._location!r}") from None
        self.clock = lambda: datetime.now(timezone.utc)

    # --- Lifecycle ---

    @classmethod
    def exists(cls, location) -> bool:
        with cls._repositories_guard:
            return os.fspath(location) in cls._repositories

    @classmethod
    def open(cls, location) -> MemoryRepository:
        return cls(location)

    @classmethod
    def create(cls, location) -> MemoryRepository:
        location = os.fspath(location)
        if _paths.normalize_path(os.path.basename(location)) in cls.reserved_locations():
            raise ValueError(f"Reserved repository name: {location!r}")
        store = _MemoryStore()
        store.revisions.append(MemoryRevision(
            0, {}, frozenset(), timestamp=datetime.now(timezone.utc), comment="Initial revision",
        ))
        with cls._repositories_guard:
            if location in cls._repositories:
                raise ExportRepositoryAlreadyExists(f"Repository already exists: {location!r}")
            cls._repositories[location] = store
        logger.debug("created memory repository %s", location)
        return cls(location)

    @classmethod
    def delete(cls, location) -> None:
        location = os.fspath(location)
        with cls._repositories_guard:
            try:
                del cls._repositories[location]
            except KeyError:
                raise RepositoryConnectionError(f"No repository at {location!r}") from None
        logger.debug("deleted memory repository %s", location)

    @classmethod
    def get_checkout_command(cls, external_repo_url, revision_identifier, group_name, repo_folder=None) -> str:
        target = f"{external_repo_url}/{repo_folder}" if repo_folder else external_repo_url
        return f"# memory repository {target} at revision {revision_identifier} for {group_name}"

    @classmethod
    def publish_permissions(cls, permissions: Mapping[str, frozenset[str]], storage: str | None = None) -> None:
        cls._permissions = MappingProxyType(dict(permissions))

    @classmethod
    def published_permissions(cls) -> Mapping[str, frozenset[str]]:
        """Return the last table passed to :meth:`publish_permissions`."""
        return cls._permissions

    # --- Reads ---

    def get_latest_revision(self) -> MemoryRevision:
        self._check_open()
        return self._store.revisions[-1]

    def get_all_revisions(self) -> list[MemoryRevision]:
        self._check_open()
        return list(self._store.revisions)

    def get_revision(self, revision_identifier: Hashable) -> MemoryRevision:
        self._check_open()
        revisions = self._store.revisions
        if isinstance(revision_identifier, str) and revision_identifier.isdigit():
            revision_identifier = int(revision_identifier)
        if (
            isinstance(revision_identifier, bool)
            or not isinstance(revision_identifier, int)
            or not 0 <= revision_identifier < len(revisions)
        ):
            raise RevisionDoesNotExist(f"Revision {revision_identifier!r} does not exist")
        return revisions[revision_identifier]

    def _read_file(self, file: RevisionFile) -> bytes:
        try:
            revision = self.get_revision(file.from_revision)
        except RevisionDoesNotExist:
            raise FileDoesNotExist(f"{file.full_path}: revision {file.from_revision!r} does not exist") from None
        return revision._file_data(file.full_path)

    # --- Writes ---

    def _apply(self, latest: MemoryRevision, transaction: Transaction) -> MemoryRevision:
        number = latest.revision_identifier + 1
        now = self.clock()
        stamp = _Entry(number, now, transaction.user_id)
        entries = dict(latest._entries)
        changed: set[str] = set()

        def touch_parents(path: str) -> None:
            for parent in _paths.parent_dirs(path):
                entries[parent] = stamp

        for job in transaction.jobs:
            path = job.path
            if job.action is JobAction.ADD_PATH:
                entries[path] = stamp
            elif job.action in (JobAction.ADD, JobAction.REPLACE):
                mime_type = job.mime_type or mimetypes.guess_type(path)[0]
                entries[path] = _Entry(number, now, transaction.user_id, job.file_data or b"", mime_type)
            else:
                for p in [p for p in entries if _paths.is_under(p, path)]:
                    del entries[p]
            touch_parents(path)
            changed.add(path)

        revision = MemoryRevision(
            number, entries, frozenset(changed),
            timestamp=now, user_id=transaction.user_id, comment=transaction.comment,
        )
        self._store.revisions.append(revision)
        return revision
