"""Tests for the transaction commit protocol, run against every backend."""

import threading

import pytest

from submitrepo import (
    Conflict,
    FileDoesNotExistConflict,
    FileExistsConflict,
    FileOutOfSyncConflict,
    RepositoryClosedError,
    RevisionOutOfSyncConflict,
)


def _commit(repo, user="alice", comment="change", **jobs):
    txn = repo.get_transaction(user, comment)
    for path, data in jobs.get("add", {}).items():
        txn.add(path, data, "text/plain")
    for path in jobs.get("add_path", ()):
        txn.add_path(path)
    repo.commit(txn)
    return txn


@pytest.fixture
def repo_with_file(repo):
    """Repo whose latest revision added a.txt."""
    txn = _commit(repo, add={"a.txt": b"one"})
    assert txn.applied
    return repo, txn.revision


class TestAdd:
    def test_add_file(self, repo_with_file):
        repo, rev1 = repo_with_file
        files = repo.get_latest_revision().files_at_path("/")
        assert list(files) == ["a.txt"]
        entry = files["a.txt"]
        assert entry.changed is True
        assert entry.user_id == "alice"
        assert entry.last_modified_revision == rev1.revision_identifier
        assert entry.mime_type == "text/plain"

    def test_new_revision_metadata(self, repo_with_file):
        _, rev1 = repo_with_file
        assert rev1.user_id == "alice"
        assert rev1.comment == "change"
        assert rev1.server_timestamp is not None

    def test_add_existing_conflicts(self, repo_with_file):
        repo, rev1 = repo_with_file
        txn = _commit(repo, add={"a.txt": b"again"})
        assert not txn.applied
        assert txn.conflicts == [FileExistsConflict("a.txt")]
        assert repo.get_latest_revision() == rev1

    def test_add_path_and_file_in_one_transaction(self, repo):
        txn = repo.get_transaction("alice", "A1")
        txn.add_path("A1")
        txn.add("A1/main.py", b"print(1)\n")
        repo.commit(txn)
        assert txn.applied
        latest = repo.get_latest_revision()
        assert list(latest.directories_at_path("/")) == ["A1"]
        assert list(latest.files_at_path("A1")) == ["main.py"]
        assert latest.files_at_path("/") == {}

    def test_empty_directory_is_visible(self, repo):
        txn = _commit(repo, add_path=["empty"])
        assert txn.applied
        latest = repo.get_latest_revision()
        assert latest.path_exists("empty")
        assert latest.files_at_path("empty") == {}

    def test_add_path_twice_conflicts(self, repo):
        txn = repo.get_transaction("alice", "dup")
        txn.add_path("A1")
        txn.add_path("A1")
        repo.commit(txn)
        assert txn.conflicts == [FileExistsConflict("A1")]

    def test_add_below_file_conflicts(self, repo_with_file):
        repo, _ = repo_with_file
        txn = _commit(repo, add={"a.txt/b.txt": b"x"})
        assert txn.conflicts == [FileExistsConflict("a.txt")]

    def test_add_root_conflicts(self, repo):
        txn = repo.get_transaction("alice", "root")
        txn.add_path("/")
        repo.commit(txn)
        assert len(txn.conflicts) == 1
        assert isinstance(txn.conflicts[0], FileExistsConflict)

    @pytest.mark.parametrize("first, second", [
        ("x", "x/y"),
        ("x/y", "x"),
        ("x", "x/y/z"),
        ("x/y/z", "x"),
    ])
    def test_file_and_path_below_it_in_one_transaction(self, repo, first, second):
        txn = _commit(repo, add={first: b"1", second: b"2"})
        assert not txn.applied
        assert txn.conflicts == [FileExistsConflict("x")]
        assert not repo.get_latest_revision().path_exists("x")

    def test_add_path_over_file_added_in_same_transaction(self, repo):
        txn = repo.get_transaction("alice", "clash")
        txn.add("x", b"1")
        txn.add_path("x/y")
        repo.commit(txn)
        assert txn.conflicts == [FileExistsConflict("x")]


class TestReplace:
    def test_replace_with_current_guard(self, repo_with_file):
        repo, rev1 = repo_with_file
        txn = repo.get_transaction("bob", "fix")
        txn.replace("a.txt", b"two", "text/plain", rev1.revision_identifier)
        repo.commit(txn)
        assert txn.applied
        rev2 = txn.revision
        assert rev2.changes_at_path("/a.txt")
        entry = rev2.files_at_path("/")["a.txt"]
        assert entry.last_modified_revision == rev2.revision_identifier
        assert entry.user_id == "bob"
        assert repo.stringify_files(entry) == b"two"

    def test_replace_with_identical_content(self, repo_with_file):
        repo, rev1 = repo_with_file
        txn = repo.get_transaction("bob", "resubmit")
        txn.replace("a.txt", b"one", "text/plain", rev1.revision_identifier)
        repo.commit(txn)
        assert txn.applied
        rev2 = txn.revision
        assert rev2.changes_at_path("a.txt")
        entry = rev2.files_at_path("/")["a.txt"]
        assert entry.changed is True
        assert entry.last_modified_revision == rev2.revision_identifier
        assert entry.user_id == "bob"

    def test_second_replace_with_same_guard_conflicts(self, repo_with_file):
        repo, rev1 = repo_with_file
        first = repo.get_transaction("alice", "first")
        first.replace("a.txt", b"first", "text/plain", rev1.revision_identifier)
        second = repo.get_transaction("bob", "second")
        second.replace("a.txt", b"second", "text/plain", rev1.revision_identifier)
        second.add("b.txt", b"b")

        repo.commit(first)
        repo.commit(second)

        assert first.applied
        assert not second.applied
        assert second.revision is None
        assert len(second.conflicts) == 1
        conflict = second.conflicts[0]
        assert isinstance(conflict, FileOutOfSyncConflict)
        assert conflict.path == "a.txt"
        assert conflict.expected == rev1.revision_identifier
        assert conflict.actual == first.revision.revision_identifier

        latest = repo.get_latest_revision()
        assert latest == first.revision
        assert not latest.path_exists("b.txt")
        assert repo.stringify_files(latest.files_at_path("/")["a.txt"]) == b"first"

    def test_replace_missing_conflicts(self, repo_with_file):
        repo, rev1 = repo_with_file
        txn = repo.get_transaction("alice", "fix")
        txn.replace("nope.txt", b"x", "text/plain", rev1.revision_identifier)
        repo.commit(txn)
        assert txn.conflicts == [FileDoesNotExistConflict("nope.txt")]

    def test_replace_directory_conflicts(self, repo):
        created = _commit(repo, add_path=["A1"])
        txn = repo.get_transaction("alice", "bad")
        txn.replace("A1", b"x", "text/plain", created.revision.revision_identifier)
        repo.commit(txn)
        assert len(txn.conflicts) == 1
        assert type(txn.conflicts[0]) is Conflict


class TestRemove:
    def test_remove_file(self, repo_with_file):
        repo, rev1 = repo_with_file
        txn = repo.get_transaction("alice", "rm")
        txn.remove("a.txt", rev1.revision_identifier)
        repo.commit(txn)
        assert txn.applied
        assert not txn.revision.path_exists("a.txt")
        assert txn.revision.changes_at_path("a.txt")
        assert rev1.path_exists("a.txt")

    def test_remove_missing_conflicts(self, repo_with_file):
        repo, rev1 = repo_with_file
        txn = repo.get_transaction("alice", "rm")
        txn.remove("b.txt", rev1.revision_identifier)
        repo.commit(txn)
        assert txn.conflicts == [FileDoesNotExistConflict("b.txt")]

    def test_remove_then_add_same_path(self, repo_with_file):
        repo, rev1 = repo_with_file
        txn = repo.get_transaction("alice", "swap")
        txn.remove("a.txt", rev1.revision_identifier)
        txn.add("a.txt", b"fresh", "text/plain")
        repo.commit(txn)
        assert txn.applied
        entry = txn.revision.files_at_path("/")["a.txt"]
        assert repo.stringify_files(entry) == b"fresh"

    def test_remove_stale_directory_conflicts(self, repo):
        created = _commit(repo, add_path=["A1"])
        _commit(repo, add={"A1/x.py": b"x"})
        txn = repo.get_transaction("alice", "rm")
        txn.remove("A1", created.revision.revision_identifier)
        repo.commit(txn)
        assert txn.conflicts == [RevisionOutOfSyncConflict("A1")]

    def test_remove_directory(self, repo):
        _commit(repo, add_path=["A1"])
        filled = _commit(repo, add={"A1/x.py": b"x"})
        txn = repo.get_transaction("alice", "rm")
        txn.remove("A1", filled.revision.revision_identifier)
        repo.commit(txn)
        assert txn.applied
        assert not txn.revision.path_exists("A1")
        assert not txn.revision.path_exists("A1/x.py")

    def test_implicit_directory_outlives_its_last_file(self, repo):
        added = _commit(repo, add={"d/x": b"x"})
        txn = repo.get_transaction("alice", "rm")
        txn.remove("d/x", added.revision.revision_identifier)
        repo.commit(txn)
        assert txn.applied
        latest = txn.revision
        assert latest.path_exists("d")
        assert list(latest.directories_at_path("/")) == ["d"]
        assert latest.files_at_path("d") == {}

    def test_remove_directory_created_in_same_transaction(self, repo):
        txn = repo.get_transaction("alice", "undo")
        txn.add("d/x", b"x")
        txn.remove("d", None)
        txn.add("e.txt", b"e")
        repo.commit(txn)
        assert txn.applied
        assert not txn.revision.path_exists("d")
        assert txn.revision.path_exists("e.txt")


class TestAtomicity:
    def test_conflict_applies_nothing(self, repo_with_file):
        repo, rev1 = repo_with_file
        before = len(repo.get_all_revisions())
        txn = repo.get_transaction("alice", "mixed")
        txn.add("new.txt", b"new")
        txn.add_path("dir")
        txn.replace("a.txt", b"x", "text/plain", "not-a-revision")
        repo.commit(txn)
        assert txn.has_conflicts
        assert not txn.applied
        assert len(repo.get_all_revisions()) == before
        latest = repo.get_latest_revision()
        assert not latest.path_exists("new.txt")
        assert not latest.path_exists("dir")

    def test_all_conflicts_reported(self, repo_with_file):
        repo, rev1 = repo_with_file
        txn = repo.get_transaction("alice", "mixed")
        txn.add("a.txt", b"dup")
        txn.remove("gone.txt", rev1.revision_identifier)
        repo.commit(txn)
        assert txn.conflicts == [FileExistsConflict("a.txt"), FileDoesNotExistConflict("gone.txt")]
        assert txn.result.applied is False
        assert txn.result.conflicts == tuple(txn.conflicts)

    def test_empty_transaction(self, repo):
        before = repo.get_all_revisions()
        txn = repo.commit(repo.get_transaction("alice", "nothing"))
        assert txn.applied
        assert txn.revision == before[-1]
        assert len(repo.get_all_revisions()) == len(before)


class TestImmutability:
    def test_old_revision_unchanged_after_commit(self, repo_with_file):
        repo, rev1 = repo_with_file
        files_before = rev1.files_at_path("/")
        txn = repo.get_transaction("alice", "more")
        txn.replace("a.txt", b"two", "text/plain", rev1.revision_identifier)
        txn.add("b.txt", b"b")
        repo.commit(txn)
        assert txn.applied
        assert rev1.files_at_path("/") == files_before
        assert not rev1.path_exists("b.txt")
        assert repo.stringify_files(files_before["a.txt"]) == b"one"


class TestTransactionLifecycle:
    def test_commit_twice_raises(self, repo):
        txn = _commit(repo, add={"a.txt": b"a"})
        with pytest.raises(RuntimeError):
            repo.commit(txn)

    def test_stage_after_commit_raises(self, repo):
        txn = _commit(repo, add={"a.txt": b"a"})
        with pytest.raises(RuntimeError):
            txn.add("b.txt", b"b")

    def test_commit_on_closed_repo_raises(self, repo):
        txn = repo.get_transaction("alice", "late")
        txn.add("a.txt", b"a")
        repo.close()
        with pytest.raises(RepositoryClosedError):
            repo.commit(txn)


class TestConcurrentCommits:
    def test_only_one_guarded_replace_wins(self, repo_with_file):
        repo, rev1 = repo_with_file
        barrier = threading.Barrier(6)
        txns = []
        for i in range(6):
            txn = repo.get_transaction(f"user{i}", f"attempt {i}")
            txn.replace("a.txt", f"v{i}".encode(), "text/plain", rev1.revision_identifier)
            txns.append(txn)

        def worker(txn):
            barrier.wait()
            repo.commit(txn)

        threads = [threading.Thread(target=worker, args=(t,)) for t in txns]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(t.applied for t in txns) == 1
        losers = [t for t in txns if not t.applied]
        assert all(isinstance(t.conflicts[0], FileOutOfSyncConflict) for t in losers)
