"""Backend registry: map a repository type name to its backend class."""

from __future__ import annotations

from .backend import RepositoryBackend
from .exceptions import ConfigurationError, UnimplementedCapability

__all__ = ["REQUIRED_CAPABILITIES", "get_class", "register", "registered_types"]

# Operations a backend must provide before it can be registered.
REQUIRED_CAPABILITIES = frozenset({
    "exists",
    "open",
    "create",
    "delete",
    "get_latest_revision",
    "get_all_revisions",
    "get_revision",
    "commit",
    "stringify_files",
})

_backends: dict[str, type[RepositoryBackend]] = {}


def register(repo_type: str, backend: type[RepositoryBackend]) -> None:
    """Register *backend* under *repo_type*.

    Raises:
        UnimplementedCapability: If the backend lacks a required operation.
    """
    missing = sorted(REQUIRED_CAPABILITIES - backend.capabilities())
    if missing:
        raise UnimplementedCapability(backend.__name__, ", ".join(missing))
    _backends[repo_type] = backend


def registered_types() -> list[str]:
    return sorted(_backends)


def get_class(repo_type: str) -> type[RepositoryBackend]:
    """Return the backend class registered for *repo_type*.

    Raises:
        ConfigurationError: If no backend is registered under that name.
    """
    try:
        return _backends[repo_type]
    except KeyError:
        raise ConfigurationError(f"Repository implementation not found: {repo_type!r}") from None


def _register_builtin() -> None:
    from .backends.git import GitRepository
    from .backends.memory import MemoryRepository

    register("memory", MemoryRepository)
    register("git", GitRepository)


_register_builtin()
