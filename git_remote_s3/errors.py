"""Exceptions raised by the remote helper."""

import errno
from typing import Optional


class GitRemoteS3Error(Exception):
    """Base exception for remote helper errors."""

    pass


class ConfigurationError(GitRemoteS3Error):
    """Raised when the remote alias, URL or settings are invalid."""

    pass


class AdapterError(GitRemoteS3Error):
    """Raised when an external tool or the object store fails."""

    pass


class GitError(AdapterError):
    """Raised when a git command exits with an error."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class EncryptionError(AdapterError):
    """Raised when gpg fails to encrypt or decrypt a bundle."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ObjectStoreError(AdapterError):
    """Raised when an S3 call fails after retries."""

    pass


class ObjectNotFoundError(ObjectStoreError):
    """Raised when an S3 object does not exist."""

    def __init__(self, key):
        super().__init__(f"Object not found: {key}")
        self.key = key


def is_broken_pipe(error: BaseException) -> bool:
    """Return True if the error (or one of its causes) is a closed pipe."""
    seen = set()
    while error is not None and id(error) not in seen:
        seen.add(id(error))
        if isinstance(error, BrokenPipeError):
            return True
        if isinstance(error, OSError) and error.errno == errno.EPIPE:
            return True
        error = error.__cause__ or error.__context__
    return False
