"""Shared fixtures for submitrepo tests."""

import pytest
from click.testing import CliRunner

from submitrepo import GitRepository, MemoryRepository


@pytest.fixture
def memory_repo(tmp_path):
    """An empty memory repository, deleted after the test."""
    location = str(tmp_path / "memory_repo")
    repo = MemoryRepository.create(location)
    yield repo
    repo.close()
    if MemoryRepository.exists(location):
        MemoryRepository.delete(location)


@pytest.fixture
def git_repo(tmp_path):
    """An empty bare git repository."""
    repo = GitRepository.create(str(tmp_path / "git_repo.git"))
    yield repo
    repo.close()


@pytest.fixture(params=["memory", "git"])
def repo(request):
    """Every backend, one at a time."""
    return request.getfixturevalue(f"{request.param}_repo")


@pytest.fixture
def runner():
    return CliRunner()
