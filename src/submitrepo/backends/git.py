"""GitRepository: a backend storing each repository as a bare git repository.

Revisions are the first-parent history of the ``master`` branch.  Every
revision identifier is a commit's hex SHA; the display form is its first
seven characters.  Git cannot store empty directories, so ``add_path``
writes a ``.gitkeep`` placeholder that is hidden from callers; parents of
every new path get one too, so directories outlive their last file.
"""

from __future__ import annotations

import json
import logging
import mimetypes
import os
import shlex
import shutil
import threading
from collections.abc import Mapping
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Hashable

from dulwich.errors import NotGitRepository
from dulwich.file import GitFile
from dulwich.objects import Commit
from dulwich.repo import Repo

from .. import _paths
from .._lock import repo_lock
from ..backend import RepositoryBackend
from ..exceptions import (
    ConfigurationError,
    ExportRepositoryAlreadyExists,
    FileDoesNotExist,
    RepositoryCollision,
    RepositoryConnectionError,
    RevisionDoesNotExist,
)
from ..revision import Revision, RevisionDirectory, RevisionFile
from ..transaction import JobAction, Transaction
from ._tree import (
    GIT_FILEMODE_TREE,
    changed_paths,
    create_blob,
    entry_at_path,
    list_entries_at_path,
    rebuild_tree,
)

logger = logging.getLogger(__name__)

__all__ = ["GitRepository", "GitRevision"]

BRANCH = b"refs/heads/master"
NOTES_REF = b"refs/notes/submitrepo"
PLACEHOLDER = ".gitkeep"
ACCESS_FILE = ".access"


def _identity(user_id: str | None) -> bytes:
    user = user_id or "submitrepo"
    return f"{user} <{user}@submitrepo>".encode()


def _user_from_identity(identity: bytes) -> str:
    name, _, _ = identity.decode().partition(" <")
    return name


def _commit_time(commit: Commit) -> datetime:
    tz = timezone(timedelta(seconds=commit.commit_timezone))
    return datetime.fromtimestamp(commit.commit_time, tz=tz)


class GitRevision(Revision):
    """A commit of the repository's first-parent history.

    *notes_tree* is the tree of the ``refs/notes/submitrepo`` tip, which maps
    each commit SHA to the job paths its transaction touched.  Commits without
    a note fall back to comparing trees with their parent.
    """

    def __init__(self, object_store, commit: Commit, notes_tree: bytes | None = None):
        super().__init__(
            commit.id.decode(),
            timestamp=_commit_time(commit),
            user_id=_user_from_identity(commit.author),
            comment=commit.message.decode().rstrip("\n"),
            revision_identifier_ui=commit.id.decode()[:7],
        )
        self._store = object_store
        self._commit = commit
        self._tree = commit.tree
        self._notes = object_store[notes_tree] if notes_tree is not None else None
        self._last_modified: dict[str, Commit] = {}

    def _touched(self, commit: Commit) -> frozenset[str] | None:
        """Paths recorded for *commit*, or None if it has no note."""
        if self._notes is None:
            return None
        try:
            _mode, sha = self._notes[commit.id]
        except KeyError:
            return None
        return frozenset(json.loads(self._store[sha].data))

    def _modifies(self, commit: Commit, path: str) -> bool:
        touched = self._touched(commit)
        if touched is not None:
            return any(_paths.is_under(p, path) for p in touched)
        if not commit.parents:
            return True
        parent = self._store[commit.parents[0]]
        return entry_at_path(self._store, commit.tree, path) != entry_at_path(self._store, parent.tree, path)

    def _last_modifying_commit(self, path: str) -> Commit:
        """Walk back from this commit to the one that last changed *path*."""
        try:
            return self._last_modified[path]
        except KeyError:
            pass
        current = self._commit
        while current.parents and not self._modifies(current, path):
            current = self._store[current.parents[0]]
        self._last_modified[path] = current
        return current

    def path_exists(self, path) -> bool:
        return entry_at_path(self._store, self._tree, _paths.normalize_path(path)) is not None

    def changes_at_path(self, path) -> bool:
        path = _paths.normalize_path(path)
        if self._commit.parents:
            return self._modifies(self._commit, path)
        return any(_paths.is_under(p, path) for p in changed_paths(self._store, None, self._tree))

    def _record_fields(self, directory: str, name: str) -> dict:
        commit = self._last_modifying_commit(_paths.join_path(directory, name))
        return {
            "name": name,
            "path": directory,
            "last_modified_revision": commit.id.decode(),
            "last_modified_date": _commit_time(commit),
            "changed": commit.id == self._commit.id,
            "user_id": _user_from_identity(commit.author),
            "from_revision": self.revision_identifier,
        }

    def files_at_path(self, path=None) -> dict[str, RevisionFile]:
        directory = _paths.normalize_path(path)
        internal = GitRepository.internal_file_names()
        return {
            item.name: RevisionFile(
                mime_type=mimetypes.guess_type(item.name)[0],
                **self._record_fields(directory, item.name),
            )
            for item in list_entries_at_path(self._store, self._tree, directory)
            if not item.is_dir and item.name not in internal
        }

    def directories_at_path(self, path=None) -> dict[str, RevisionDirectory]:
        directory = _paths.normalize_path(path)
        return {
            item.name: RevisionDirectory(**self._record_fields(directory, item.name))
            for item in list_entries_at_path(self._store, self._tree, directory)
            if item.is_dir
        }

    def _file_data(self, path: str) -> bytes:
        entry = entry_at_path(self._store, self._tree, path)
        if entry is None or entry[1] == GIT_FILEMODE_TREE:
            raise FileDoesNotExist(f"{path} does not exist at revision {self.revision_identifier_ui}")
        return self._store[entry[0]].data


class GitRepository(RepositoryBackend):
    """Backend over a bare git repository managed with dulwich."""

    def __init__(self, location: str | os.PathLike[str]):
        super().__init__(location)
        try:
            self._repo = Repo(self._location)
        except (NotGitRepository, FileNotFoundError, NotADirectoryError) as exc:
            raise RepositoryConnectionError(f"Cannot open git repository {self._location!r}: {exc}") from exc
        self.clock = lambda: datetime.now(timezone.utc)
        self._history_lock = threading.Lock()
        self._commits: list[Commit] = []
        self._index: dict[bytes, int] = {}

    # --- Lifecycle ---

    @classmethod
    def exists(cls, location) -> bool:
        try:
            Repo(os.fspath(location)).close()
        except (NotGitRepository, FileNotFoundError, NotADirectoryError):
            return False
        return True

    @classmethod
    def open(cls, location) -> GitRepository:
        return cls(location)

    @classmethod
    def create(cls, location) -> GitRepository:
        location = os.fspath(location)
        if os.path.basename(location.rstrip("/\\")) in cls.reserved_locations():
            raise ValueError(f"Reserved repository name: {location!r}")
        if os.path.exists(location):
            raise ExportRepositoryAlreadyExists(f"Repository already exists: {location!r}")
        repo = Repo.init_bare(location, mkdir=True)
        try:
            repo.refs.set_symbolic_ref(b"HEAD", BRANCH)
            commit = Commit()
            commit.tree = rebuild_tree(repo.object_store, None, {}, set())
            commit.parents = []
            _stamp(commit, None, "Initial revision", datetime.now(timezone.utc))
            repo.object_store.add_object(commit)
            repo.refs[BRANCH] = commit.id
        finally:
            repo.close()
        logger.debug("created git repository %s", location)
        return cls(location)

    @classmethod
    def delete(cls, location) -> None:
        location = os.fspath(location)
        if not cls.exists(location):
            raise RepositoryConnectionError(f"No git repository at {location!r}")
        shutil.rmtree(location)
        logger.debug("deleted git repository %s", location)

    def _release(self) -> None:
        self._repo.close()

    @classmethod
    def get_checkout_command(cls, external_repo_url, revision_identifier, group_name, repo_folder=None) -> str:
        url = shlex.quote(external_repo_url)
        group = shlex.quote(group_name)
        revision = shlex.quote(str(revision_identifier))
        if repo_folder is None:
            return f"git clone {url} {group} && cd {group} && git checkout -q {revision} && cd .."
        folder = shlex.quote(_paths.normalize_path(repo_folder))
        return (
            f"git clone --no-checkout {url} {group} && cd {group} && "
            f"git sparse-checkout set {folder} && git checkout -q {revision} && cd .."
        )

    @classmethod
    def internal_file_names(cls) -> frozenset[str]:
        return frozenset({PLACEHOLDER})

    @classmethod
    def publish_permissions(cls, permissions: Mapping[str, frozenset[str]], storage: str | None = None) -> None:
        """Atomically replace the ``.access`` file in the *storage* directory.

        One line per repository, ``name = user user ...``; the ``*`` line
        lists users with access to every repository.
        """
        if storage is None:
            raise ConfigurationError("Git permissions need a storage directory")
        lines = [
            f"{name} = {' '.join(sorted(users))}\n"
            for name, users in sorted(permissions.items(), key=lambda kv: (kv[0] != "*", kv[0]))
        ]
        os.makedirs(storage, exist_ok=True)
        with GitFile(os.path.join(storage, ACCESS_FILE), "wb") as f:
            f.write("".join(lines).encode("utf-8"))

    # --- Reads ---

    def _head(self) -> Commit:
        return self._repo.object_store[self._repo.refs[BRANCH]]

    def _notes_tree(self) -> bytes | None:
        try:
            tip = self._repo.refs[NOTES_REF]
        except KeyError:
            return None
        return self._repo.object_store[tip].tree

    def _history(self) -> list[Commit]:
        """First-parent history, oldest first, extended as the branch moves.

        Callers hold ``_history_lock``.
        """
        head = self._head()
        if self._commits and self._commits[-1].id == head.id:
            return self._commits
        store = self._repo.object_store
        new = [head]
        while new[-1].parents and new[-1].parents[0] not in self._index:
            new.append(store[new[-1].parents[0]])
        keep = self._index[new[-1].parents[0]] + 1 if new[-1].parents else 0
        for commit in self._commits[keep:]:
            del self._index[commit.id]
        del self._commits[keep:]
        for commit in reversed(new):
            self._index[commit.id] = len(self._commits)
            self._commits.append(commit)
        return self._commits

    def get_latest_revision(self) -> GitRevision:
        self._check_open()
        return GitRevision(self._repo.object_store, self._head(), self._notes_tree())

    def get_all_revisions(self) -> list[GitRevision]:
        self._check_open()
        store = self._repo.object_store
        notes = self._notes_tree()
        with self._history_lock:
            commits = list(self._history())
        return [GitRevision(store, commit, notes) for commit in commits]

    def get_revision(self, revision_identifier: Hashable) -> GitRevision:
        """Return the revision for a full SHA or an unambiguous SHA prefix."""
        self._check_open()
        ident = str(revision_identifier)
        commit = None
        with self._history_lock:
            commits = self._history()
            if len(ident) == 40:
                position = self._index.get(ident.encode())
                if position is not None:
                    commit = commits[position]
            elif len(ident) >= 4:
                matches = [c for c in commits if c.id.decode().startswith(ident)]
                if len(matches) == 1:
                    commit = matches[0]
        if commit is None:
            raise RevisionDoesNotExist(f"Revision {revision_identifier!r} does not exist")
        return GitRevision(self._repo.object_store, commit, self._notes_tree())

    def _read_file(self, file: RevisionFile) -> bytes:
        try:
            revision = self.get_revision(file.from_revision)
        except RevisionDoesNotExist:
            raise FileDoesNotExist(f"{file.full_path}: revision {file.from_revision!r} does not exist") from None
        return revision._file_data(file.full_path)

    # --- Writes ---

    @contextmanager
    def _commit_lock(self):
        with repo_lock(self._location):
            yield

    def _apply(self, latest: GitRevision, transaction: Transaction) -> GitRevision:
        store = self._repo.object_store
        placeholder = create_blob(store, b"")
        writes: dict[str, bytes] = {}
        removes: set[str] = set()
        for job in transaction.jobs:
            path = job.path
            if job.action is JobAction.REMOVE:
                for p in [p for p in writes if _paths.is_under(p, path)]:
                    del writes[p]
                removes.add(path)
                continue
            # Directories created implicitly outlive their last file.
            for parent in _paths.parent_dirs(path):
                writes[_paths.join_path(parent, PLACEHOLDER)] = placeholder
            if job.action is JobAction.ADD_PATH:
                path = _paths.join_path(path, PLACEHOLDER)
                blob = placeholder
            else:
                blob = create_blob(store, job.file_data or b"")
            removes.discard(path)
            writes[path] = blob

        commit = Commit()
        commit.tree = rebuild_tree(store, latest._tree, writes, removes)
        commit.parents = [latest._commit.id]
        _stamp(commit, transaction.user_id, transaction.comment, self.clock())
        store.add_object(commit)
        notes = self._record_touched(commit, [job.path for job in transaction.jobs])
        if not self._repo.refs.set_if_equals(BRANCH, latest._commit.id, commit.id):
            raise RepositoryCollision(f"{self.repo_name}: branch moved outside the commit lock")
        return GitRevision(store, commit, notes)

    def _record_touched(self, commit: Commit, paths: list[str]) -> bytes:
        """Note the paths *commit* touched and return the new notes tree.

        Identical-content writes leave the tree unchanged, so the note is
        what marks those paths as modified.
        """
        store = self._repo.object_store
        refs = self._repo.refs
        try:
            tip = refs[NOTES_REF]
        except KeyError:
            tip = None
        blob = create_blob(store, json.dumps(sorted(set(paths))).encode())
        note = Commit()
        note.tree = rebuild_tree(
            store, store[tip].tree if tip is not None else None, {commit.id.decode(): blob}, set(),
        )
        note.parents = [tip] if tip is not None else []
        _stamp(note, None, f"Paths touched by {commit.id.decode()[:7]}", self.clock())
        store.add_object(note)
        refs.set_if_equals(NOTES_REF, tip, note.id)
        return note.tree


def _stamp(commit: Commit, user_id: str | None, comment: str, when: datetime) -> None:
    commit.author = commit.committer = _identity(user_id)
    commit.author_time = commit.commit_time = int(when.timestamp())
    commit.author_timezone = commit.commit_timezone = 0
    commit.encoding = b"UTF-8"
    message = comment.encode()
    if not message.endswith(b"\n"):
        message += b"\n"
    commit.message = message
