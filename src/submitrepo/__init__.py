"""submitrepo: version-controlled storage for student submissions."""

import logging

from .backend import RepositoryBackend
from .backends import GitRepository, MemoryRepository
from .config import RepositoryConfig
from .conflicts import (
    Conflict,
    FileDoesNotExistConflict,
    FileExistsConflict,
    FileOutOfSyncConflict,
    RevisionOutOfSyncConflict,
)
from .exceptions import (
    ConfigurationError,
    ExportRepositoryAlreadyExists,
    FileDoesNotExist,
    FileOutOfDate,
    NotAuthorityError,
    RepositoryClosedError,
    RepositoryCollision,
    RepositoryConnectionError,
    RepositoryError,
    RevisionDoesNotExist,
    UnimplementedCapability,
    UserAlreadyExistent,
    UserNotFound,
)
from .permissions import (
    ALL_REPOSITORIES,
    Permission,
    PermissionCoordinator,
    PermissionSource,
    StaticPermissionSource,
    merge_permissions,
)
from .registry import get_class
from .revision import Revision, RevisionDirectory, RevisionFile
from .transaction import CommitResult, Job, JobAction, Transaction

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "RepositoryBackend", "GitRepository", "MemoryRepository", "RepositoryConfig", "get_class",
    "Revision", "RevisionFile", "RevisionDirectory",
    "Transaction", "Job", "JobAction", "CommitResult",
    "Conflict", "FileExistsConflict", "FileDoesNotExistConflict",
    "FileOutOfSyncConflict", "RevisionOutOfSyncConflict",
    "ALL_REPOSITORIES", "Permission", "PermissionCoordinator", "PermissionSource",
    "StaticPermissionSource", "merge_permissions",
    "RepositoryError", "RepositoryConnectionError", "RepositoryClosedError",
    "ExportRepositoryAlreadyExists", "RepositoryCollision", "RevisionDoesNotExist",
    "FileDoesNotExist", "FileOutOfDate", "NotAuthorityError", "UserNotFound",
    "UserAlreadyExistent", "ConfigurationError", "UnimplementedCapability",
]
