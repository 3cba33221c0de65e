"""Push and fetch decisions for an S3 remote.

There is no lock around the bucket. A push reads a fresh listing, checks
that the stored ref is an ancestor of the revision being pushed and only then
uploads. Two writers that list before either uploads can both pass the check;
the version with the newer last-modified time then wins. This window is
accepted rather than closed with a coordination service.

Force pushes never delete history that is not contained in the new revision:
superseded versions that are not ancestors are moved to
``<ref>__<short-revision>`` where they stay fetchable.
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from git_remote_s3.config import RemoteSettings
from git_remote_s3.errors import AdapterError, GitRemoteS3Error, ObjectNotFoundError
from git_remote_s3.git import VersionControl
from git_remote_s3.gpg import Encryption
from git_remote_s3.refs import (
    GitRef,
    RefDirectory,
    RemoteRef,
    alias_name,
    strip_alias,
)
from git_remote_s3.s3 import ObjectStore

logger = logging.getLogger(__name__)

HEAD = "HEAD"
DEFAULT_BRANCHES = ("refs/heads/main", "refs/heads/master")
REMOTE_CHANGED = (
    "remote changed: force push to add new ref, "
    "the old ref will be kept until its merged"
)


class PushStatus(str, Enum):
    """Outcome of pushing one ref."""

    ok = "ok"
    rejected = "rejected"
    error = "error"


@dataclass(frozen=True)
class PushResult:
    """Result line for one ref of a push batch."""

    ref_name: str
    status: PushStatus
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status == PushStatus.ok

    def to_line(self) -> str:
        """Format the result as a remote helper protocol line."""
        if self.ok:
            return f"ok {self.ref_name}"
        reason = " ".join(self.reason.split()) or self.status.value
        return f"error {self.ref_name} {reason}"


class SyncEngine:
    """Translate helper commands into bundle operations on the object store.

    Usage:
        engine = SyncEngine(settings, S3ObjectStore(factory), GitCLI(), GpgCLI())
        result = await engine.push("refs/heads/main", "refs/heads/main")
    """

    def __init__(
        self,
        settings: RemoteSettings,
        store: ObjectStore,
        git: VersionControl,
        gpg: Encryption,
        temp_dir: Optional[str] = None,
    ):
        """Initialize the engine.

        Args:
            settings: Settings of the remote being served
            store: Object store adapter
            git: Version-control adapter for the local repository
            gpg: Encryption adapter
            temp_dir: Parent directory for per-operation scratch directories
        """
        self._settings = settings
        self._store = store
        self._git = git
        self._gpg = gpg
        self._temp_dir = temp_dir

    @property
    def settings(self) -> RemoteSettings:
        return self._settings

    async def list_refs(self) -> RefDirectory:
        """Build a ref directory from a fresh listing of the remote root."""
        listing = await self._store.list(self._settings.root)
        directory = RefDirectory.build(self._settings.root, listing)
        logger.debug(f"Found {len(directory)} refs under {self._settings.root}")
        return directory

    async def list_lines(self) -> List[str]:
        """Return the lines answering ``list`` and ``list for-push``.

        Stale versions are advertised as ``<ref>__<short-revision>`` so they
        can still be fetched.
        """
        directory = await self.list_refs()
        lines = []
        seen = set()
        for refs in directory:
            latest = refs.latest()
            entries = [(latest.revision, latest.name)]
            entries += [(r.revision, alias_name(r.name, r.revision)) for r in refs.stale()]
            for revision, name in entries:
                if name in seen:
                    logger.warning(f"Skipping duplicate listing for {name} at {revision}")
                    continue
                seen.add(name)
                lines.append(f"{revision} {name}")
        default_branch = self.default_branch(directory)
        if default_branch:
            lines.append(f"@{default_branch} {HEAD}")
        return lines

    @staticmethod
    def default_branch(directory: RefDirectory) -> Optional[str]:
        """Pick the ref HEAD should point at, if a conventional one exists."""
        for name in DEFAULT_BRANCHES:
            if name in directory:
                return name
        return None

    async def recipients(self) -> List[str]:
        """Return the gpg recipients for bundles of this remote.

        ``remote.<alias>.gpgRecipients`` (whitespace separated, may be given
        several times) wins; without it the user's own ``user.email`` is used.
        A key set to an empty value means bundles are stored unencrypted.
        """
        values = await self._git.config_all(self._settings.recipients_key)
        if values is None:
            return [await self._git.config("user.email")]
        return [r for value in values for r in value.split()]

    async def push(
        self, local_ref: str, remote_ref_name: str, force: bool = False
    ) -> PushResult:
        """Push ``local_ref`` to ``remote_ref_name``.

        Returns:
            PushResult; ``rejected`` for non-fast-forward pushes without force,
            ``error`` when a tool or the object store failed
        """
        if not local_ref:
            return PushResult(
                remote_ref_name, PushStatus.error, "deleting remote refs is not supported"
            )
        if local_ref != remote_ref_name:
            return PushResult(
                remote_ref_name,
                PushStatus.error,
                "source and destination refs must match",
            )
        try:
            return await self._push(local_ref, remote_ref_name, force)
        except GitRemoteS3Error as e:
            logger.error(f"Push of {local_ref} to {remote_ref_name} failed: {e}")
            return PushResult(remote_ref_name, PushStatus.error, str(e))

    async def _push(self, local_ref: str, remote_ref_name: str, force: bool) -> PushResult:
        local_revision = await self._git.rev_parse(local_ref)
        directory = await self.list_refs()
        prior = directory.latest(remote_ref_name)
        logger.info(
            f"Pushing {local_ref} at {local_revision} to {remote_ref_name} "
            f"(force={force}, remote={prior.revision if prior else None})"
        )

        if prior is not None and prior.revision == local_revision:
            logger.info(f"{remote_ref_name} is already at {local_revision}")
            return PushResult(remote_ref_name, PushStatus.ok)

        if not force and prior is not None:
            if not await self._git.is_ancestor(prior.revision, local_revision):
                logger.warning(
                    f"Rejecting non-fast-forward push of {remote_ref_name}: "
                    f"{prior.revision} is not an ancestor of {local_revision}"
                )
                return PushResult(remote_ref_name, PushStatus.rejected, REMOTE_CHANGED)

        pushed = GitRef(name=remote_ref_name, revision=local_revision)
        await self._upload(pushed)

        previous = directory.get(remote_ref_name)
        if previous is not None:
            try:
                await self._cleanup(pushed, list(previous), force)
            except AdapterError as e:
                # The new version is already stored; leftovers show up as stale.
                logger.warning(f"Cleanup after pushing {remote_ref_name} failed: {e}")
        return PushResult(remote_ref_name, PushStatus.ok)

    async def _upload(self, ref: GitRef) -> None:
        recipients = await self.recipients()
        key = ref.bundle_key(self._settings.root)
        with tempfile.TemporaryDirectory(prefix="git_remote_s3_push", dir=self._temp_dir) as tmp:
            bundle_file = os.path.join(tmp, "bundle")
            enc_file = os.path.join(tmp, "bundle_enc")
            await self._git.create_bundle(bundle_file, ref.name)
            await self._gpg.encrypt(recipients, bundle_file, enc_file)
            await self._store.put(enc_file, key)
        logger.info(f"Uploaded {ref.name} at {ref.revision} to {key}")

    async def _cleanup(
        self, pushed: GitRef, previous: Sequence[RemoteRef], force: bool
    ) -> None:
        """Remove or set aside versions superseded by ``pushed``."""
        new_key = pushed.bundle_key(self._settings.root)
        for remote_ref in previous:
            if remote_ref.key == new_key:
                continue
            if await self._git.is_ancestor(remote_ref.revision, pushed.revision):
                logger.info(f"Deleting superseded version {remote_ref.key}")
                await self._store.delete(remote_ref.key)
            elif force:
                recovery_key = remote_ref.reference.recovery_key(self._settings.root)
                logger.warning(
                    f"Force push replaced {remote_ref.name} at {remote_ref.revision}; "
                    f"keeping it as {alias_name(remote_ref.name, remote_ref.revision)}"
                )
                await self._store.rename(remote_ref.key, recovery_key)

    async def fetch(self, revision: str, ref_name: str) -> None:
        """Download, decrypt and unbundle one ref version.

        ``HEAD`` is skipped: it points at a ref that is fetched on its own.
        Aliases of stale versions (``<ref>__<short-revision>``) are resolved
        to the version stored under ``<ref>``.
        """
        if ref_name == HEAD:
            return
        bundle_ref_name = strip_alias(ref_name, revision)
        key = GitRef(name=ref_name, revision=revision).bundle_key(self._settings.root)
        logger.info(f"Fetching {ref_name} at {revision} from {key}")
        with tempfile.TemporaryDirectory(prefix="git_remote_s3_fetch", dir=self._temp_dir) as tmp:
            bundle_file = os.path.join(tmp, "bundle")
            enc_file = os.path.join(tmp, "bundle_enc")
            try:
                await self._store.get(key, enc_file)
            except ObjectNotFoundError:
                if bundle_ref_name == ref_name:
                    raise
                key = GitRef(name=bundle_ref_name, revision=revision).bundle_key(
                    self._settings.root
                )
                logger.debug(f"Fetching stale version of {bundle_ref_name} from {key}")
                await self._store.get(key, enc_file)
            await self._gpg.decrypt(enc_file, bundle_file)
            await self._git.unbundle(bundle_file, bundle_ref_name)
