"""Repository path helpers shared by all backends.

Repository paths are POSIX-like.  The normalized form has no leading or
trailing slash and the root is the empty string.
"""

from __future__ import annotations

import os
import posixpath

ROOT = ""


def is_root_path(path: str | os.PathLike[str] | None) -> bool:
    """Return True if path represents the root (None, empty or only slashes)."""
    if path is None:
        return True
    return os.fspath(path).strip("/") == ""


def normalize_path(path: str | os.PathLike[str] | None) -> str:
    """Normalize a path: strip leading/trailing slashes, reject bad segments.

    The root normalizes to ``""``.
    """
    if is_root_path(path):
        return ROOT
    path = os.fspath(path).strip("/")
    segments = path.split("/")
    for seg in segments:
        if not seg:
            raise ValueError(f"Empty segment in path: {path!r}")
        if seg in (".", ".."):
            raise ValueError(f"Invalid path segment: {seg!r}")
    return "/".join(segments)


def join_path(directory: str, name: str) -> str:
    """Join a normalized directory and an entry name."""
    return f"{directory}/{name}" if directory else name


def split_path(path: str) -> tuple[str, str]:
    """Split a normalized path into ``(directory, name)``."""
    directory, _, name = path.rpartition("/")
    return directory, name


def is_under(path: str, directory: str) -> bool:
    """Return True if normalized *path* is *directory* or lies beneath it."""
    if not directory:
        return True
    return path == directory or path.startswith(directory + "/")


def parent_dirs(path: str) -> list[str]:
    """Return every ancestor directory of *path*, outermost first, root excluded."""
    parts = path.split("/")[:-1]
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]


def expand_path(file_name: str, dir_string: str = "/") -> str:
    """Resolve *file_name* against *dir_string* into an absolute repository path.

    Pure path arithmetic: ``..`` is collapsed, never escaping the root.
    """
    base = "/" + dir_string.strip("/")
    joined = posixpath.join(base, file_name)
    return posixpath.normpath(joined).replace("//", "/")
