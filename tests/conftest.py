"""Provide common pytest fixtures."""

import pytest

from git_remote_s3.config import RemoteSettings
from git_remote_s3.sync import SyncEngine

from . import TEST_URL, FakeGit, FakeGpg, FakeObjectStore


@pytest.fixture(name="settings")
def settings_fixture():
    """Settings for an ``origin`` remote, ignoring the process environment."""
    return RemoteSettings.from_url("origin", TEST_URL, env={})


@pytest.fixture(name="store")
def store_fixture():
    """Return an empty in-memory object store."""
    return FakeObjectStore()


@pytest.fixture(name="fake_git")
def fake_git_fixture():
    """Return a fake git with a user email configured."""
    git = FakeGit()
    git.config_values["user.email"] = ["test@example.com"]
    return git


@pytest.fixture(name="fake_gpg")
def fake_gpg_fixture():
    """Return a pass-through gpg."""
    return FakeGpg()


@pytest.fixture(name="engine")
def engine_fixture(settings, store, fake_git, fake_gpg, tmp_path):
    """Return a sync engine wired to the fakes."""
    return SyncEngine(settings, store, fake_git, fake_gpg, temp_dir=str(tmp_path))
