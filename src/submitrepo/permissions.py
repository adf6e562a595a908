"""Permission coordination: recompute and publish the authorization table.

Many threads may ask for a refresh at once.  :class:`PermissionCoordinator`
lets every requester query the permission source without holding a lock,
and only the most recent requester publishes its result::

    coordinator = PermissionCoordinator(source, MemoryRepository.publish_permissions)

    coordinator.request_refresh()

    # Many permission-affecting changes, one publish afterwards:
    with coordinator.batch(only_if_requested=True):
        for group in groups:
            add_member(group, student)          # calls request_refresh()

A refresh whose query was overtaken by a later request is discarded rather
than published, so the published table is never older than the last
request that completed.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from types import MappingProxyType
from typing import Protocol, TypeVar, runtime_checkable

from .exceptions import NotAuthorityError, UserNotFound

logger = logging.getLogger(__name__)

__all__ = [
    "ALL_REPOSITORIES",
    "Permission",
    "PermissionCoordinator",
    "PermissionSource",
    "PermissionTable",
    "StaticPermissionSource",
    "merge_permissions",
]

T = TypeVar("T")

# Reserved key: applies to every repository.
ALL_REPOSITORIES = "*"

PermissionTable = Mapping[str, frozenset[str]]


class Permission:
    """Permission bits.  Every authorized user currently has READ_WRITE."""

    WRITE = 2
    READ = 4
    READ_WRITE = READ + WRITE
    ANY = READ


@runtime_checkable
class PermissionSource(Protocol):
    """Authoritative data on who may access which repository."""

    def get_all_permissions(self) -> Mapping[str, Iterable[str]]:
        """Return ``{repo_name: user_names}`` for every repository with members."""
        ...

    def get_full_access_users(self) -> Iterable[str]:
        """Return the users with access to every repository."""
        ...


class StaticPermissionSource:
    """A :class:`PermissionSource` over in-process data.

    The data can be replaced with :meth:`set`; each query returns a copy of
    the data current at the time of the call.
    """

    def __init__(
        self,
        permissions: Mapping[str, Iterable[str]] | None = None,
        full_access_users: Iterable[str] = (),
    ):
        self._lock = threading.Lock()
        self._permissions: dict[str, frozenset[str]] = {}
        self._full_access: frozenset[str] = frozenset()
        self.set(permissions or {}, full_access_users)

    def set(self, permissions: Mapping[str, Iterable[str]], full_access_users: Iterable[str] = ()) -> None:
        with self._lock:
            self._permissions = {name: frozenset(users) for name, users in permissions.items()}
            self._full_access = frozenset(full_access_users)

    def get_all_permissions(self) -> dict[str, frozenset[str]]:
        with self._lock:
            return dict(self._permissions)

    def get_full_access_users(self) -> frozenset[str]:
        with self._lock:
            return self._full_access


def merge_permissions(
    permissions: Mapping[str, Iterable[str]],
    full_access_users: Iterable[str],
) -> PermissionTable:
    """Build the table to publish.

    Every repository's users are merged with the full-access users, and the
    full-access users are listed under :data:`ALL_REPOSITORIES`.
    """
    full_access = frozenset(full_access_users)
    table = {name: frozenset(users) | full_access for name, users in permissions.items()}
    table[ALL_REPOSITORIES] = full_access | table.get(ALL_REPOSITORIES, frozenset())
    return MappingProxyType(table)


@dataclass
class _BatchState:
    depth: int = 0
    requested: bool = False


class PermissionCoordinator:
    """Single-flight coordinator for permission refreshes.

    Args:
        source: Where permissions are read from.
        publisher: Called with the merged table to replace the published one.
        authoritative: When False this process does not own the table;
            refresh requests are ignored and queries raise
            :class:`~submitrepo.exceptions.NotAuthorityError`.
    """

    def __init__(
        self,
        source: PermissionSource,
        publisher: Callable[[PermissionTable], None],
        *,
        authoritative: bool = True,
    ):
        self._source = source
        self._publisher = publisher
        self.authoritative = authoritative
        self._tickets = itertools.count(1)
        self._owner = 0
        self._owner_lock = threading.Lock()
        self._publish_lock = threading.Lock()
        self._published_ticket = 0
        self._published: PermissionTable | None = None
        self._publish_count = 0
        self._batches: dict[int, _BatchState] = {}
        self._batches_lock = threading.Lock()

    def __repr__(self) -> str:
        mode = "authoritative" if self.authoritative else "replica"
        return f"PermissionCoordinator({mode}, published={self._publish_count})"

    @property
    def published(self) -> PermissionTable | None:
        """The last table this coordinator published, or None."""
        return self._published

    @property
    def publish_count(self) -> int:
        return self._publish_count

    # --- Batch state, keyed by the calling thread ---

    def _batch_state(self) -> _BatchState | None:
        with self._batches_lock:
            return self._batches.get(threading.get_ident())

    def _enter_batch(self) -> _BatchState:
        ident = threading.get_ident()
        with self._batches_lock:
            state = self._batches.get(ident)
            if state is None:
                state = self._batches[ident] = _BatchState()
            state.depth += 1
            return state

    def _exit_batch(self, state: _BatchState) -> None:
        with self._batches_lock:
            state.depth -= 1
            if state.depth == 0:
                del self._batches[threading.get_ident()]

    # --- Refresh ---

    def request_refresh(self) -> None:
        """Recompute and publish the permission table.

        A no-op outside authoritative mode.  Inside a :meth:`batch` block on
        the same thread the request is only recorded; the block's exit
        performs the refresh.
        """
        if not self.authoritative:
            return
        state = self._batch_state()
        if state is not None:
            state.requested = True
            return
        self._refresh()

    def _refresh(self) -> None:
        with self._owner_lock:
            ticket = next(self._tickets)
            self._owner = ticket

        # Queried without the lock; the ticket decides who publishes.
        permissions = self._source.get_all_permissions()
        full_access_users = self._source.get_full_access_users()

        with self._owner_lock:
            superseded = self._owner != ticket
        if superseded:
            logger.debug("permission refresh %d superseded; discarding", ticket)
            return
        self._publish(ticket, merge_permissions(permissions, full_access_users))

    def _publish(self, ticket: int, table: PermissionTable) -> None:
        with self._publish_lock:
            if ticket <= self._published_ticket:
                logger.debug("permission refresh %d older than published %d; discarding",
                             ticket, self._published_ticket)
                return
            self._publisher(table)
            self._published_ticket = ticket
            self._published = table
            self._publish_count += 1
        logger.info("published permissions for %d repositories", len(table) - 1)

    @contextmanager
    def batch(self, only_if_requested: bool = False) -> Iterator[None]:
        """Defer refreshes requested in the block to a single one at its end.

        If *only_if_requested* is True the refresh happens only when the
        block called :meth:`request_refresh`.  Blocks nest: an inner block
        hands its refresh to the outermost one.  No refresh happens if the
        block raises.
        """
        state = self._enter_batch()
        saved = state.requested
        state.requested = False
        try:
            yield
        except BaseException:
            # Changes made before the failure still need a refresh from an
            # enclosing block, if there is one.
            state.requested = saved or state.requested
            self._exit_batch(state)
            raise
        requested = state.requested
        state.requested = saved
        nested = state.depth > 1
        self._exit_batch(state)
        if only_if_requested and not requested:
            return
        if nested:
            state.requested = True
        elif self.authoritative:
            self._refresh()

    def with_batch(self, only_if_requested: bool, fn: Callable[[], T]) -> T:
        """Call *fn* inside :meth:`batch` and return its result."""
        with self.batch(only_if_requested=only_if_requested):
            return fn()

    # --- Queries ---

    def _require_authority(self, action: str) -> None:
        if not self.authoritative:
            raise NotAuthorityError(f"Unable to {action}: not in authoritative mode")

    def users_for(self, repo_name: str) -> frozenset[str]:
        """Users allowed to access *repo_name*, full-access users included."""
        self._require_authority("get users")
        permissions = self._source.get_all_permissions()
        return frozenset(permissions.get(repo_name, ())) | frozenset(self._source.get_full_access_users())

    def permission_for(self, repo_name: str, user_name: str) -> int:
        """Return the permission bits *user_name* has on *repo_name*.

        Raises:
            UserNotFound: If the user has no access to the repository.
        """
        self._require_authority("get permissions")
        if user_name not in self.users_for(repo_name):
            raise UserNotFound(f"User {user_name} not found in {repo_name}")
        return Permission.READ_WRITE
