"""Concrete repository backends."""

from .git import GitRepository, GitRevision
from .memory import MemoryRepository, MemoryRevision

__all__ = ["GitRepository", "GitRevision", "MemoryRepository", "MemoryRevision"]
