"""Tests against the real git binary, including a full round trip.

Bundles go through the in-memory object store and are stored unencrypted,
so neither S3 nor a gpg keyring is needed.
"""

import pytest

from git_remote_s3.config import RemoteSettings
from git_remote_s3.errors import GitError
from git_remote_s3.git import GitCLI
from git_remote_s3.gpg import GpgCLI
from git_remote_s3.refs import alias_name
from git_remote_s3.sync import SyncEngine

from . import (
    GIT_AVAILABLE,
    MAIN,
    TEST_URL,
    FakeObjectStore,
    init_repo,
    make_commit,
    run_git,
)

# All test coroutines will be treated as marked.
pytestmark = [
    pytest.mark.asyncio,
    pytest.mark.skipif(not GIT_AVAILABLE, reason="git is not installed"),
]


@pytest.fixture(name="repo")
def repo_fixture(tmp_path):
    """Return a repository with two commits on main."""
    repo = init_repo(tmp_path / "source")
    make_commit(repo, "README.md", "first\n")
    make_commit(repo, "README.md", "second\n")
    return repo


def create_engine(repo, store, tmp_path):
    settings = RemoteSettings.from_url("origin", TEST_URL, env={})
    git = GitCLI(cwd=str(repo), timeout=60)
    return SyncEngine(settings, store, git, GpgCLI(timeout=60), temp_dir=str(tmp_path))


async def test_rev_parse(repo):
    git = GitCLI(cwd=str(repo))
    assert await git.rev_parse(MAIN) == run_git(repo, "rev-parse", "HEAD")
    with pytest.raises(GitError) as exc_info:
        await git.rev_parse("refs/heads/missing")
    assert exc_info.value.returncode == 128


async def test_is_ancestor(repo):
    git = GitCLI(cwd=str(repo))
    head = run_git(repo, "rev-parse", "HEAD")
    parent = run_git(repo, "rev-parse", "HEAD~1")

    assert await git.is_ancestor(parent, head)
    assert await git.is_ancestor(head, head)
    assert not await git.is_ancestor(head, parent)
    assert not await git.is_ancestor("0" * 40, head)


async def test_config(repo):
    git = GitCLI(cwd=str(repo))
    run_git(repo, "config", "remote.origin.s3Region", "eu-west-1")
    assert await git.config("remote.origin.s3Region") == "eu-west-1"

    with pytest.raises(GitError) as exc_info:
        await git.config("remote.origin.s3Endpoint")
    assert exc_info.value.returncode == 1


async def test_config_all(repo):
    git = GitCLI(cwd=str(repo))
    key = "remote.origin.gpgRecipients"
    assert await git.config_all(key) is None

    run_git(repo, "config", key, "")
    assert await git.config_all(key) == [""]

    run_git(repo, "config", "--add", key, "a@example.com b@example.com")
    assert await git.config_all(key) == ["", "a@example.com b@example.com"]


async def test_bundle_and_unbundle(repo, tmp_path):
    head = run_git(repo, "rev-parse", "HEAD")
    bundle = tmp_path / "main.bundle"
    await GitCLI(cwd=str(repo)).create_bundle(str(bundle), MAIN)
    assert bundle.read_bytes().startswith(b"# v")

    clone = init_repo(tmp_path / "clone")
    await GitCLI(cwd=str(clone)).unbundle(str(bundle), MAIN)

    assert run_git(clone, "cat-file", "-t", head) == "commit"


async def test_missing_git_executable(repo):
    git = GitCLI(cwd=str(repo), executable="git-does-not-exist")
    with pytest.raises(GitError, match="not found"):
        await git.rev_parse(MAIN)


async def test_round_trip(repo, tmp_path):
    """Test push from one repository and fetch into a fresh one."""
    run_git(repo, "config", "remote.origin.gpgRecipients", "")
    store = FakeObjectStore()
    head = run_git(repo, "rev-parse", "HEAD")

    result = await create_engine(repo, store, tmp_path).push(MAIN, MAIN)
    assert result.to_line() == f"ok {MAIN}"

    clone = init_repo(tmp_path / "clone")
    engine = create_engine(clone, store, tmp_path)
    lines = await engine.list_lines()
    assert lines == [f"{head} {MAIN}", f"@{MAIN} HEAD"]

    await engine.fetch(head, MAIN)
    assert run_git(clone, "cat-file", "-t", head) == "commit"
    assert run_git(clone, "log", "--format=%H", head).splitlines() == run_git(
        repo, "log", "--format=%H", "HEAD"
    ).splitlines()


async def test_scenario_with_real_history(repo, tmp_path):
    """Test fast-forward, rejected and forced pushes on real commits."""
    run_git(repo, "config", "remote.origin.gpgRecipients", "")
    store = FakeObjectStore()
    engine = create_engine(repo, store, tmp_path)
    a = run_git(repo, "rev-parse", "HEAD")
    assert (await engine.push(MAIN, MAIN)).ok

    b = make_commit(repo, "README.md", "third\n")
    assert (await engine.push(MAIN, MAIN)).ok
    assert await engine.list_lines() == [f"{b} {MAIN}", f"@{MAIN} HEAD"]

    c = run_git(repo, "commit-tree", "HEAD^{tree}", "-m", "Unrelated history")
    run_git(repo, "update-ref", MAIN, c)
    result = await engine.push(MAIN, MAIN)
    assert result.to_line().startswith(f"error {MAIN} remote changed")
    assert await engine.list_lines() == [f"{b} {MAIN}", f"@{MAIN} HEAD"]

    assert (await engine.push(MAIN, MAIN, force=True)).ok
    lines = await engine.list_lines()
    assert f"{c} {MAIN}" in lines
    assert f"{b} {alias_name(MAIN, b)}" in lines
    assert a not in " ".join(lines)

    clone = init_repo(tmp_path / "clone")
    await create_engine(clone, store, tmp_path).fetch(b, alias_name(MAIN, b))
    assert run_git(clone, "cat-file", "-t", b) == "commit"
