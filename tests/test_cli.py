"""Tests for the submitrepo CLI."""

import pytest

from submitrepo import GitRepository, MemoryRepository
from submitrepo.cli import main


@pytest.fixture
def storage(tmp_path):
    path = tmp_path / "repos"
    path.mkdir()
    return str(path)


@pytest.fixture
def initialized(runner, storage):
    result = runner.invoke(main, ["-s", storage, "init", "g1"])
    assert result.exit_code == 0, result.output
    return storage


@pytest.fixture
def local_file(tmp_path):
    path = tmp_path / "main.py"
    path.write_bytes(b"print('hi')\n")
    return str(path)


def _add(runner, storage, local_file, repo_path, *extra):
    return runner.invoke(main, ["-s", storage, "add", "g1", local_file, repo_path, "-u", "alice", *extra])


class TestInit:
    def test_init(self, runner, storage):
        result = runner.invoke(main, ["-s", storage, "init", "g1"])
        assert result.exit_code == 0, result.output
        assert len(result.output.strip()) == 7
        assert GitRepository.exists(f"{storage}/g1")

    def test_init_twice(self, runner, initialized):
        result = runner.invoke(main, ["-s", initialized, "init", "g1"])
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_init_reserved(self, runner, storage):
        result = runner.invoke(main, ["-s", storage, "init", "*"])
        assert result.exit_code == 1
        assert "Reserved" in result.output

    def test_verbose(self, runner, storage):
        result = runner.invoke(main, ["-s", storage, "-v", "init", "g1"])
        assert result.exit_code == 0
        assert "Created" in result.output

    def test_git_needs_storage(self, runner):
        result = runner.invoke(main, ["init", "g1"], env={"SUBMITREPO_STORAGE": None, "SUBMITREPO_TYPE": None})
        assert result.exit_code == 1
        assert "SUBMITREPO_STORAGE" in result.output


class TestAddAndRead:
    def test_add_then_cat(self, runner, initialized, local_file):
        result = _add(runner, initialized, local_file, "A1/main.py")
        assert result.exit_code == 0, result.output
        result = runner.invoke(main, ["-s", initialized, "cat", "g1", "A1/main.py"])
        assert result.exit_code == 0
        assert result.output == "print('hi')\n"

    def test_add_existing_conflicts(self, runner, initialized, local_file):
        _add(runner, initialized, local_file, "main.py")
        result = _add(runner, initialized, local_file, "main.py")
        assert result.exit_code == 1
        assert "Conflict: main.py could not be added" in result.output

    def test_replace(self, runner, initialized, local_file, tmp_path):
        _add(runner, initialized, local_file, "main.py")
        newer = tmp_path / "newer.py"
        newer.write_bytes(b"print('bye')\n")
        result = _add(runner, initialized, str(newer), "main.py", "--replace")
        assert result.exit_code == 0, result.output
        result = runner.invoke(main, ["-s", initialized, "cat", "g1", "main.py"])
        assert result.output == "print('bye')\n"

    def test_cat_missing(self, runner, initialized):
        result = runner.invoke(main, ["-s", initialized, "cat", "g1", "nope.py"])
        assert result.exit_code == 1
        assert "no such file" in result.output

    def test_ls(self, runner, initialized, local_file):
        _add(runner, initialized, local_file, "A1/main.py")
        _add(runner, initialized, local_file, "top.py")
        result = runner.invoke(main, ["-s", initialized, "ls", "g1"])
        assert result.exit_code == 0
        assert result.output.splitlines() == ["A1/", "top.py*"]
        result = runner.invoke(main, ["-s", initialized, "ls", "g1", "A1"])
        assert result.output.splitlines() == ["main.py "]

    def test_ls_old_revision(self, runner, initialized, local_file):
        first = runner.invoke(main, ["-s", initialized, "log", "g1"]).output.split()[0]
        _add(runner, initialized, local_file, "main.py")
        result = runner.invoke(main, ["-s", initialized, "ls", "g1", "--revision", first])
        assert result.exit_code == 0
        assert result.output == ""

    def test_ls_missing_path(self, runner, initialized):
        result = runner.invoke(main, ["-s", initialized, "ls", "g1", "nope"])
        assert result.exit_code == 1
        assert "no such path" in result.output

    def test_unknown_revision(self, runner, initialized):
        result = runner.invoke(main, ["-s", initialized, "ls", "g1", "--revision", "ffffffff"])
        assert result.exit_code == 1
        assert "does not exist" in result.output

    def test_log(self, runner, initialized, local_file):
        added = _add(runner, initialized, local_file, "main.py", "-m", "First submission").output.strip()
        result = runner.invoke(main, ["-s", initialized, "log", "g1"])
        lines = result.output.splitlines()
        assert len(lines) == 2
        assert lines[0].startswith(added)
        assert lines[0].endswith("alice  First submission")
        assert lines[1].endswith("Initial revision")

    def test_missing_repository(self, runner, storage):
        result = runner.invoke(main, ["-s", storage, "log", "nope"])
        assert result.exit_code == 1
        assert "Cannot open" in result.output


class TestCheckoutCommand:
    def test_git(self, runner, storage):
        result = runner.invoke(main, [
            "-s", storage, "--external-url", "https://example.com/git",
            "checkout-command", "g1", "abc1234", "g1",
        ])
        assert result.exit_code == 0
        assert result.output.strip() == (
            "git clone https://example.com/git/g1 g1 && cd g1 && git checkout -q abc1234 && cd .."
        )

    def test_without_url(self, runner, storage):
        result = runner.invoke(
            main, ["-s", storage, "checkout-command", "g1", "abc1234", "g1"],
            env={"SUBMITREPO_EXTERNAL_URL": None},
        )
        assert result.exit_code == 1
        assert "external URL" in result.output


class TestMemoryBackend:
    @pytest.fixture
    def name(self, tmp_path):
        name = f"cli-{tmp_path.name}"
        yield name
        if MemoryRepository.exists(name):
            MemoryRepository.delete(name)

    def test_round_trip(self, runner, name, local_file):
        assert runner.invoke(main, ["-t", "memory", "init", name]).output.strip() == "0"
        result = runner.invoke(main, ["-t", "memory", "add", name, local_file, "main.py", "-u", "bob"])
        assert result.output.strip() == "1"
        result = runner.invoke(main, ["-t", "memory", "cat", name, "main.py"])
        assert result.output == "print('hi')\n"
