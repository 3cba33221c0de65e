"""Settings for a single S3 remote.

Git starts the helper with the remote alias and URL (``s3://bucket/prefix``).
Everything else (endpoint, region, retry and timeout policy) comes from the
process environment or from ``git config``; credentials are left to
botocore's default provider chain.
"""

import logging
import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from git_remote_s3.errors import ConfigurationError, GitError

logger = logging.getLogger(__name__)

URL_SCHEME = "s3://"
DEFAULT_REGION = "us-east-1"


class S3Key(BaseModel):
    """Identify an S3 object (or prefix) by bucket and key."""

    model_config = ConfigDict(frozen=True)

    bucket: str
    key: str = ""

    def join(self, *parts: str) -> "S3Key":
        """Return the key for a path below this one."""
        segments = [self.key.strip("/")] + [p.strip("/") for p in parts]
        return S3Key(bucket=self.bucket, key="/".join(s for s in segments if s))

    def __str__(self) -> str:
        return f"{URL_SCHEME}{self.bucket}/{self.key}"


def parse_remote_url(url: str) -> S3Key:
    """Split an ``s3://bucket/path-prefix`` URL into bucket and root prefix."""
    if not url or not url.startswith(URL_SCHEME):
        raise ConfigurationError(f"Remote URL must start with {URL_SCHEME}: {url!r}")
    bucket, _, prefix = url[len(URL_SCHEME) :].partition("/")
    if not bucket:
        raise ConfigurationError(f"Remote URL has no bucket: {url!r}")
    return S3Key(bucket=bucket, key=prefix.strip("/"))


def _env_number(env: Mapping[str, str], name: str, default, cast=float):
    value = env.get(name)
    if value is None or value == "":
        return default
    try:
        return cast(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e


class RemoteSettings(BaseModel):
    """Represent the configuration of the remote being served."""

    remote_alias: str
    url: str
    root: S3Key
    endpoint_url: Optional[str] = None
    region_name: Optional[str] = None
    max_attempts: int = Field(default=3, ge=1)
    connect_timeout: float = Field(default=10.0, gt=0)
    read_timeout: float = Field(default=30.0, gt=0)
    command_timeout: float = Field(default=300.0, gt=0)
    command_attempts: int = Field(default=2, ge=1)

    @property
    def recipients_key(self) -> str:
        """Git config key listing the gpg recipients for this remote."""
        return f"remote.{self.remote_alias}.gpgRecipients"

    @classmethod
    def from_url(
        cls, remote_alias: str, url: str, env: Optional[Mapping[str, str]] = None
    ) -> "RemoteSettings":
        """Build settings from the helper arguments and the environment.

        Args:
            remote_alias: Remote name as passed by git (may equal the URL for
                          anonymous remotes such as ``git clone s3://...``);
                          ``REMOTE_ALIAS`` in the environment replaces it
            url: Remote URL of the form ``s3://bucket/path-prefix``
            env: Environment mapping, defaults to ``os.environ``

        Returns:
            RemoteSettings with environment overrides applied
        """
        env = os.environ if env is None else env
        remote_alias = env.get("REMOTE_ALIAS") or remote_alias
        if not remote_alias:
            raise ConfigurationError("A remote alias is required")
        root = parse_remote_url(url)
        root = S3Key(
            bucket=env.get("S3_BUCKET") or root.bucket,
            key=(env.get("S3_KEY") or root.key).strip("/"),
        )
        return cls(
            remote_alias=remote_alias,
            url=url,
            root=root,
            endpoint_url=env.get("S3_ENDPOINT") or None,
            region_name=env.get("AWS_REGION") or None,
            max_attempts=_env_number(env, "GIT_REMOTE_S3_MAX_ATTEMPTS", 3, int),
            connect_timeout=_env_number(env, "GIT_REMOTE_S3_CONNECT_TIMEOUT", 10.0),
            read_timeout=_env_number(env, "GIT_REMOTE_S3_READ_TIMEOUT", 30.0),
            command_timeout=_env_number(env, "GIT_REMOTE_S3_COMMAND_TIMEOUT", 300.0),
            command_attempts=_env_number(env, "GIT_REMOTE_S3_COMMAND_ATTEMPTS", 2, int),
        )

    async def with_git_config(self, git) -> "RemoteSettings":
        """Fill endpoint and region from ``remote.<alias>.s3Endpoint/s3Region``.

        Values already set from the environment take precedence.
        """
        update = {}
        if self.endpoint_url is None:
            endpoint = await _optional_config(git, f"remote.{self.remote_alias}.s3Endpoint")
            if endpoint:
                update["endpoint_url"] = endpoint
        if self.region_name is None:
            region = await _optional_config(git, f"remote.{self.remote_alias}.s3Region")
            update["region_name"] = region or DEFAULT_REGION
        if not update:
            return self
        logger.debug(f"Settings from git config: {update}")
        return self.model_copy(update=update)


async def _optional_config(git, key: str) -> Optional[str]:
    try:
        return await git.config(key)
    except GitError:
        return None
