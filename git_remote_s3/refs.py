"""Remote refs as stored in S3.

Every push stores one bundle object per ref version::

    <root>/<ref-name>/<revision>.bundle
    e.g. project1.git/refs/heads/features/fXXX/99d98906d65894a9eac5fda27b0c41d2cf372dd6.bundle

A ``RefDirectory`` is built from a single listing of ``<root>/`` and groups
these objects by ref name. Within a group the versions are ordered by the
object's last-modified time, newest first: the first one is the ref's
current value, the others are stale versions waiting to be cleaned up.

The directory is a snapshot. It is rebuilt for every command and never
reused, because other writers may have changed the bucket in between.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional

from git_remote_s3.config import S3Key

logger = logging.getLogger(__name__)

BUNDLE_SUFFIX = ".bundle"
SHORT_REVISION_LENGTH = 7
ALIAS_SEPARATOR = "__"


def short_revision(revision: str) -> str:
    """Return the abbreviated form of a revision used in aliases."""
    return revision[:SHORT_REVISION_LENGTH]


def alias_name(name: str, revision: str) -> str:
    """Return ``<name>__<short-revision>``.

    Used to list stale versions and as the ref name of recovery copies.
    """
    return f"{name}{ALIAS_SEPARATOR}{short_revision(revision)}"


def strip_alias(name: str, revision: str) -> str:
    """Return the ref name an alias was derived from, or ``name`` itself."""
    suffix = f"{ALIAS_SEPARATOR}{short_revision(revision)}"
    if revision and name.endswith(suffix) and len(name) > len(suffix):
        return name[: -len(suffix)]
    return name


@dataclass(frozen=True)
class GitRef:
    """A ref name pointing at a revision."""

    name: str
    revision: str

    def bundle_key(self, root: S3Key) -> S3Key:
        """Return the object key the bundle for this ref version lives at."""
        return root.join(self.name, f"{self.revision}{BUNDLE_SUFFIX}")

    def recovery_key(self, root: S3Key) -> S3Key:
        """Return the key a force-push-superseded version is moved to."""
        return root.join(alias_name(self.name, self.revision), f"{self.revision}{BUNDLE_SUFFIX}")


@dataclass(frozen=True)
class RemoteRef:
    """One stored version of a ref."""

    reference: GitRef
    key: S3Key
    updated: datetime

    @property
    def name(self) -> str:
        return self.reference.name

    @property
    def revision(self) -> str:
        return self.reference.revision


class RemoteRefs:
    """All stored versions of one ref, newest first."""

    def __init__(self, versions: Iterable[RemoteRef]):
        # sorted() is stable, so equal timestamps keep the listing order,
        # which S3 does not define.
        self._by_update_time: List[RemoteRef] = sorted(
            versions, key=lambda r: r.updated, reverse=True
        )
        if not self._by_update_time:
            raise ValueError("RemoteRefs requires at least one version")

    @property
    def name(self) -> str:
        return self._by_update_time[0].name

    def latest(self) -> RemoteRef:
        """Return the most recently written version."""
        return self._by_update_time[0]

    def stale(self) -> Iterator[RemoteRef]:
        """Iterate over every version except the latest."""
        return iter(self._by_update_time[1:])

    def __iter__(self) -> Iterator[RemoteRef]:
        return iter(list(self._by_update_time))

    def __len__(self) -> int:
        return len(self._by_update_time)

    def __repr__(self) -> str:
        return f"RemoteRefs({self.name!r}, {len(self)} versions)"


def parse_bundle_key(root: S3Key, key: str) -> Optional[GitRef]:
    """Extract ref name and revision from an object key.

    Returns None for keys outside ``root`` or not shaped like
    ``<root>/<ref-name>/<revision>.bundle``.
    """
    root_prefix = root.key.strip("/")
    if root_prefix:
        if not key.startswith(root_prefix + "/"):
            return None
        key = key[len(root_prefix) + 1 :]
    if not key.endswith(BUNDLE_SUFFIX):
        return None
    name, _, revision = key[: -len(BUNDLE_SUFFIX)].rpartition("/")
    name = name.strip("/")
    if not name or not revision:
        return None
    return GitRef(name=name, revision=revision)


class RefDirectory:
    """Map of ref name to its stored versions, built from one listing."""

    def __init__(self, refs: Optional[Dict[str, RemoteRefs]] = None):
        self._refs: Dict[str, RemoteRefs] = dict(refs or {})

    @classmethod
    def build(cls, root: S3Key, listing: Iterable) -> "RefDirectory":
        """Group listing entries (``ObjectInfo``-like objects) by ref name.

        Args:
            root: Root prefix of the remote
            listing: Entries with ``key`` (S3Key) and ``last_modified``

        Returns:
            RefDirectory reflecting exactly this listing
        """
        groups: Dict[str, List[RemoteRef]] = {}
        for info in listing:
            reference = parse_bundle_key(root, info.key.key)
            if reference is None:
                logger.debug(f"Skipping object that is not a ref bundle: {info.key}")
                continue
            groups.setdefault(reference.name, []).append(
                RemoteRef(reference=reference, key=info.key, updated=info.last_modified)
            )
        return cls({name: RemoteRefs(versions) for name, versions in groups.items()})

    def get(self, name: str) -> Optional[RemoteRefs]:
        return self._refs.get(name)

    def latest(self, name: str) -> Optional[RemoteRef]:
        """Return the current version of a ref, or None if it is absent."""
        refs = self._refs.get(name)
        return refs.latest() if refs is not None else None

    def stale(self, name: str) -> Iterator[RemoteRef]:
        """Iterate over the superseded versions of a ref."""
        refs = self._refs.get(name)
        return refs.stale() if refs is not None else iter(())

    def names(self) -> List[str]:
        """Return all ref names in sorted order."""
        return sorted(self._refs)

    def __contains__(self, name: str) -> bool:
        return name in self._refs

    def __iter__(self) -> Iterator[RemoteRefs]:
        return (self._refs[name] for name in self.names())

    def __len__(self) -> int:
        return len(self._refs)
