"""Test the git_remote_s3 module."""

import hashlib
import shutil
import subprocess
from datetime import datetime, timedelta, timezone

from git_remote_s3.config import S3Key
from git_remote_s3.errors import GitError, ObjectNotFoundError, ObjectStoreError
from git_remote_s3.gpg import copy_file
from git_remote_s3.s3 import ObjectInfo

TEST_BUCKET = "test-bucket"
TEST_PREFIX = "project1.git"
TEST_URL = f"s3://{TEST_BUCKET}/{TEST_PREFIX}"
MAIN = "refs/heads/main"

GIT_AVAILABLE = shutil.which("git") is not None


def revision(label: str) -> str:
    """Return a stable 40 character revision for a label."""
    return hashlib.sha1(label.encode("utf-8")).hexdigest()


class FakeObjectStore:
    """In-memory object store with a monotonic last-modified clock.

    Copies get a fresh timestamp, like S3 ``copy_object`` does.
    """

    def __init__(self):
        self.objects = {}
        self.calls = []
        self.fail_on = set()
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _tick(self):
        self._clock += timedelta(seconds=1)
        return self._clock

    def _check(self, action, key):
        self.calls.append((action, key.key))
        if action in self.fail_on:
            raise ObjectStoreError(f"S3 {action} failed for {key}: injected")

    def add(self, key: S3Key, data: bytes = b"# v2 git bundle\n", updated=None):
        """Store an object directly, bypassing the call log."""
        self.objects[key.key] = (data, updated or self._tick())

    def keys(self):
        return sorted(self.objects)

    async def get(self, key, path):
        self._check("get", key)
        if key.key not in self.objects:
            raise ObjectNotFoundError(key)
        with open(path, "wb") as f:
            f.write(self.objects[key.key][0])

    async def put(self, path, key):
        self._check("put", key)
        with open(path, "rb") as f:
            self.objects[key.key] = (f.read(), self._tick())

    async def delete(self, key):
        self._check("delete", key)
        self.objects.pop(key.key, None)

    async def list(self, prefix):
        self._check("list", prefix)
        root = prefix.key.strip("/")
        list_prefix = f"{root}/" if root else ""
        return [
            ObjectInfo(key=S3Key(bucket=prefix.bucket, key=k), last_modified=updated)
            for k, (data, updated) in self.objects.items()
            if k.startswith(list_prefix)
        ]

    async def rename(self, src, dst):
        self._check("rename", src)
        if src.key not in self.objects:
            raise ObjectNotFoundError(src)
        data, _ = self.objects.pop(src.key)
        self.objects[dst.key] = (data, self._tick())


class FakeGit:
    """Commit graph and refs held in memory.

    Bundles are small text files naming the ref and revision they carry.
    """

    def __init__(self):
        self.parents = {}
        self.refs = {}
        self.config_values = {}
        self.unbundled = []

    def commit(self, label, *parent_labels):
        """Add a commit and return its revision."""
        rev = revision(label)
        self.parents[rev] = [revision(p) for p in parent_labels]
        return rev

    def set_ref(self, name, rev):
        self.refs[name] = rev

    async def create_bundle(self, bundle_path, ref_name):
        if ref_name not in self.refs:
            raise GitError(f"git bundle failed: unknown ref {ref_name}", returncode=128)
        with open(bundle_path, "w") as f:
            f.write(f"# v2 git bundle\n{self.refs[ref_name]} {ref_name}\n")

    async def unbundle(self, bundle_path, ref_name=""):
        with open(bundle_path) as f:
            lines = f.read().splitlines()
        rev, name = lines[1].split()
        self.unbundled.append((rev, name, ref_name))

    async def rev_parse(self, rev):
        if rev in self.refs:
            return self.refs[rev]
        raise GitError(f"git rev-parse failed: unknown revision {rev}", returncode=128)

    async def is_ancestor(self, ancestor, descendant):
        pending = [descendant]
        seen = set()
        while pending:
            current = pending.pop()
            if current == ancestor:
                return True
            if current in seen:
                continue
            seen.add(current)
            pending.extend(self.parents.get(current, []))
        return False

    async def config(self, key):
        values = self.config_values.get(key)
        if not values:
            raise GitError(f"git config {key} is not set", returncode=1)
        return values[-1]

    async def config_all(self, key):
        return self.config_values.get(key)


class FakeGpg:
    """Copy files through, recording the recipients of every encryption."""

    def __init__(self):
        self.encrypted_for = []

    async def encrypt(self, recipients, input_path, output_path):
        self.encrypted_for.append(list(recipients))
        await copy_file(input_path, output_path)

    async def decrypt(self, input_path, output_path):
        await copy_file(input_path, output_path)


def run_git(cwd, *args) -> str:
    """Run git synchronously in a test repository."""
    result = subprocess.run(
        ("git",) + args, cwd=cwd, check=True, capture_output=True, text=True
    )
    return result.stdout.strip()


def init_repo(path, email="test@example.com"):
    """Create a repository with ``main`` as its current branch."""
    path.mkdir(parents=True, exist_ok=True)
    run_git(path, "init", "-q")
    run_git(path, "symbolic-ref", "HEAD", MAIN)
    run_git(path, "config", "user.email", email)
    run_git(path, "config", "user.name", "Test User")
    run_git(path, "config", "commit.gpgsign", "false")
    return path


def make_commit(path, filename, content, message=None) -> str:
    """Write a file, commit it and return the new HEAD revision."""
    (path / filename).write_text(content)
    run_git(path, "add", filename)
    run_git(path, "commit", "-q", "-m", message or f"Update {filename}")
    return run_git(path, "rev-parse", "HEAD")
