"""Low-level git tree helpers for the git backend.

Provides recursive tree rebuild and path-based lookups on top of dulwich's
object store.  Paths are normalized repository paths (see
:mod:`submitrepo._paths`); SHAs are 40-char hex bytes.
"""

from __future__ import annotations

from collections import defaultdict
from typing import NamedTuple

from dulwich.objects import Blob, Tree

GIT_FILEMODE_TREE = 0o040000
GIT_FILEMODE_BLOB = 0o100644


class TreeItem(NamedTuple):
    """A direct child of a tree."""

    name: str
    sha: bytes
    mode: int

    @property
    def is_dir(self) -> bool:
        return self.mode == GIT_FILEMODE_TREE


def create_blob(object_store, data: bytes) -> bytes:
    blob = Blob.from_string(data)
    object_store.add_object(blob)
    return blob.id


def entry_at_path(object_store, tree_sha: bytes, path: str) -> tuple[bytes, int] | None:
    """Return ``(sha, filemode)`` of the entry at *path*, or None if missing."""
    if not path:
        return (tree_sha, GIT_FILEMODE_TREE)
    segments = path.split("/")
    tree = object_store[tree_sha]
    for i, seg in enumerate(segments):
        if not isinstance(tree, Tree):
            return None
        try:
            mode, sha = tree[seg.encode()]
        except KeyError:
            return None
        if i < len(segments) - 1:
            tree = object_store[sha]
        else:
            return (sha, mode)
    return None


def list_entries_at_path(object_store, tree_sha: bytes, path: str) -> list[TreeItem]:
    """List the direct children of *path*; empty if it is missing or a file."""
    entry = entry_at_path(object_store, tree_sha, path)
    if entry is None or entry[1] != GIT_FILEMODE_TREE:
        return []
    tree = object_store[entry[0]]
    return [TreeItem(e.path.decode(), e.sha, e.mode) for e in tree.iteritems()]


def collect_entries(object_store, tree_sha: bytes, prefix: str = "") -> dict[str, tuple[bytes, int]]:
    """Return ``{path: (sha, mode)}`` for every blob in the tree."""
    entries = {}
    for e in object_store[tree_sha].iteritems():
        name = e.path.decode()
        full_path = f"{prefix}/{name}" if prefix else name
        if e.mode == GIT_FILEMODE_TREE:
            entries.update(collect_entries(object_store, e.sha, full_path))
        else:
            entries[full_path] = (e.sha, e.mode)
    return entries


def changed_paths(object_store, old_tree_sha: bytes | None, new_tree_sha: bytes) -> frozenset[str]:
    """Return the blob paths added, modified or deleted between two trees."""
    old = collect_entries(object_store, old_tree_sha) if old_tree_sha is not None else {}
    new = collect_entries(object_store, new_tree_sha)
    changed = {p for p, v in new.items() if old.get(p) != v}
    changed.update(p for p in old if p not in new)
    return frozenset(changed)


def rebuild_tree(
    object_store,
    base_tree_sha: bytes | None,
    writes: dict[str, bytes],
    removes: set[str],
) -> bytes:
    """Rebuild a tree with writes and removes applied.

    Only the ancestor chain from changed leaves to root is rebuilt.
    Sibling subtrees are shared by hash reference.

    Args:
        object_store: The dulwich object store.
        base_tree_sha: SHA of the existing tree (or None for empty).
        writes: Mapping of normalized path to blob SHA.
        removes: Set of normalized paths to remove (files or whole subtrees).

    Returns:
        SHA of the new root tree.
    """
    # Group changes by first path segment
    sub_writes: dict[str, dict[str, bytes]] = defaultdict(dict)
    leaf_writes: dict[str, bytes] = {}
    sub_removes: dict[str, set[str]] = defaultdict(set)
    leaf_removes: set[str] = set()

    for path, sha in writes.items():
        parts = path.split("/", 1)
        if len(parts) == 1:
            leaf_writes[parts[0]] = sha
        else:
            sub_writes[parts[0]][parts[1]] = sha

    for path in removes:
        parts = path.split("/", 1)
        if len(parts) == 1:
            leaf_removes.add(parts[0])
        else:
            sub_removes[parts[0]].add(parts[1])

    tree = Tree()
    existing_subtrees: dict[str, bytes] = {}
    if base_tree_sha is not None:
        for e in object_store[base_tree_sha].iteritems():
            tree.add(e.path, e.mode, e.sha)
            if e.mode == GIT_FILEMODE_TREE:
                existing_subtrees[e.path.decode()] = e.sha

    # Apply leaf removes (missing names are ignored; callers validate first)
    for name in leaf_removes:
        key = name.encode()
        if key in tree:
            del tree[key]
        existing_subtrees.pop(name, None)

    for name, sha in leaf_writes.items():
        tree.add(name.encode(), GIT_FILEMODE_BLOB, sha)

    for subdir in set(sub_writes) | set(sub_removes):
        new_subtree_sha = rebuild_tree(
            object_store,
            existing_subtrees.get(subdir),
            sub_writes.get(subdir, {}),
            sub_removes.get(subdir, set()),
        )
        key = subdir.encode()
        # Prune empty directories
        if len(object_store[new_subtree_sha]) == 0:
            if key in tree:
                del tree[key]
        else:
            tree.add(key, GIT_FILEMODE_TREE, new_subtree_sha)

    object_store.add_object(tree)
    return tree.id
