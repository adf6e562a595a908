"""Exceptions for submitrepo.

Commit conflicts are not exceptions; see :mod:`submitrepo.conflicts`.
"""

from __future__ import annotations


class RepositoryError(Exception):
    """Base class for operational repository errors."""


class RepositoryConnectionError(RepositoryError, ConnectionError):
    """Raised when a backend cannot reach the storage at a location."""


class RepositoryClosedError(RepositoryError):
    """Raised when an operation is attempted on a closed backend."""


class ExportRepositoryAlreadyExists(RepositoryError):
    """Raised by ``create`` when storage already exists at the location."""


class RepositoryCollision(RepositoryError):
    """Raised when creating or cloning would overwrite another repository."""


class RevisionDoesNotExist(RepositoryError):
    """Raised when a revision identifier is not present in the history."""


class FileDoesNotExist(RepositoryError):
    """Raised when a path is absent at the revision it was requested from."""


class FileOutOfDate(RepositoryError):
    """Raised when a caller requires a file view that is no longer current."""


class UserNotFound(RepositoryError):
    """Raised when a user has no access to the repository queried."""


class UserAlreadyExistent(RepositoryError):
    """Raised when adding a user who is already authorized."""


class NotAuthorityError(RepositoryError):
    """Raised when permissions are queried or changed outside authoritative mode."""


class ConfigurationError(RepositoryError):
    """Raised when a required setting is missing or invalid."""


class UnimplementedCapability(NotImplementedError):
    """Raised when a backend is asked for an operation it does not provide.

    This is a programming error in the backend, not an operational failure,
    so it derives from :class:`NotImplementedError` rather than
    :class:`RepositoryError`.
    """

    def __init__(self, backend: str, capability: str):
        super().__init__(f"{backend}.{capability}: not implemented")
        self.backend = backend
        self.capability = capability
