"""Deployment settings for the repository layer.

Settings are read from the environment::

    SUBMITREPO_TYPE          backend name: "git" (default) or "memory"
    SUBMITREPO_STORAGE       directory holding one repository per group
    SUBMITREPO_IS_ADMIN      "true"/"false": this process owns the permission table
    SUBMITREPO_EXTERNAL_URL  base URL students clone from
"""

from __future__ import annotations

import functools
import os
from collections.abc import Mapping
from dataclasses import dataclass

from .exceptions import ConfigurationError

__all__ = ["RepositoryConfig"]

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class RepositoryConfig:
    """Which backend to use, where repositories live, and who owns permissions."""

    repo_type: str = "git"
    storage: str | None = None
    is_admin: bool = True
    external_url: str | None = None

    def __post_init__(self):
        if self.repo_type == "git" and not self.storage:
            raise ConfigurationError("The git backend requires a storage directory (SUBMITREPO_STORAGE)")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RepositoryConfig:
        """Build a config from ``SUBMITREPO_*`` variables.

        Raises:
            ConfigurationError: If a value is invalid or a required one is missing.
        """
        env = os.environ if environ is None else environ
        is_admin = env.get("SUBMITREPO_IS_ADMIN")
        return cls(
            repo_type=env.get("SUBMITREPO_TYPE", "git"),
            storage=env.get("SUBMITREPO_STORAGE") or None,
            is_admin=True if is_admin is None else _parse_bool("SUBMITREPO_IS_ADMIN", is_admin),
            external_url=env.get("SUBMITREPO_EXTERNAL_URL") or None,
        )

    def backend_class(self):
        """Return the configured backend class."""
        from .registry import get_class

        return get_class(self.repo_type)

    def location(self, repo_name: str) -> str:
        """Return the storage location of the repository named *repo_name*."""
        if repo_name in self.backend_class().reserved_locations():
            raise ValueError(f"Reserved repository name: {repo_name!r}")
        if self.storage is None:
            return repo_name
        return os.path.join(self.storage, repo_name)

    def external_repo_url(self, repo_name: str) -> str:
        """Return the URL a student clones *repo_name* from."""
        if not self.external_url:
            raise ConfigurationError("No external URL configured (SUBMITREPO_EXTERNAL_URL)")
        return f"{self.external_url.rstrip('/')}/{repo_name}"

    def checkout_command(self, repo_name: str, revision_identifier, group_name: str, repo_folder: str | None = None) -> str:
        return self.backend_class().get_checkout_command(
            self.external_repo_url(repo_name), revision_identifier, group_name, repo_folder,
        )

    def coordinator(self, source):
        """Return a :class:`~submitrepo.permissions.PermissionCoordinator` for this deployment."""
        from .permissions import PermissionCoordinator

        publisher = functools.partial(self.backend_class().publish_permissions, storage=self.storage)
        return PermissionCoordinator(source, publisher, authoritative=self.is_admin)
