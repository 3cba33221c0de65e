"""Encryption adapter over the ``gpg`` binary."""

import logging
from typing import Optional, Protocol, Sequence

import aiofiles

from git_remote_s3.errors import EncryptionError
from git_remote_s3.utils import format_command, run_command

logger = logging.getLogger(__name__)

# First line of an unencrypted git bundle (v2 and v3 formats).
BUNDLE_SIGNATURES = (b"# v2 git bundle\n", b"# v3 git bundle\n")
COPY_CHUNK_SIZE = 1024 * 1024


class Encryption(Protocol):
    """Operations the synchronization engine needs for bundles at rest."""

    async def encrypt(
        self, recipients: Sequence[str], input_path: str, output_path: str
    ) -> None:
        ...

    async def decrypt(self, input_path: str, output_path: str) -> None:
        ...


async def copy_file(input_path: str, output_path: str) -> None:
    """Copy a file without blocking the event loop."""
    async with aiofiles.open(input_path, "rb") as src:
        async with aiofiles.open(output_path, "wb") as dst:
            while True:
                chunk = await src.read(COPY_CHUNK_SIZE)
                if not chunk:
                    break
                await dst.write(chunk)


async def is_plain_bundle(path: str) -> bool:
    """Check whether a file starts with a git bundle signature."""
    async with aiofiles.open(path, "rb") as f:
        head = await f.read(max(len(s) for s in BUNDLE_SIGNATURES))
    return any(head.startswith(s) for s in BUNDLE_SIGNATURES)


class GpgCLI:
    """Encrypt and decrypt bundles with gpg.

    An empty recipient list stores the bundle in cleartext; decrypt passes
    cleartext bundles through unchanged so both kinds can be fetched.
    """

    def __init__(
        self,
        timeout: Optional[float] = 300.0,
        executable: str = "gpg",
        attempts: int = 2,
    ):
        self._timeout = timeout
        self._executable = executable
        self._attempts = attempts

    async def _gpg(self, *args: str) -> None:
        command = (self._executable, "--batch", "--yes") + args
        try:
            result = await run_command(
                command, timeout=self._timeout, attempts=self._attempts
            )
        except FileNotFoundError as e:
            raise EncryptionError(f"gpg executable not found: {self._executable}") from e
        except TimeoutError as e:
            raise EncryptionError(str(e)) from e
        if not result.ok:
            logger.error(
                f"{format_command(result.args)} failed "
                f"({result.returncode}): {result.stderr_text()}"
            )
            raise EncryptionError(
                f"gpg failed: {result.stderr_text() or result.returncode}",
                returncode=result.returncode,
                stderr=result.stderr_text(),
            )

    async def encrypt(
        self, recipients: Sequence[str], input_path: str, output_path: str
    ) -> None:
        """Encrypt ``input_path`` for every recipient into ``output_path``."""
        if not recipients:
            logger.debug("No GPG recipients specified, copying file without encryption")
            await copy_file(input_path, output_path)
            return
        args = ["--output", str(output_path), "--encrypt"]
        for recipient in recipients:
            args += ["--recipient", recipient]
        args.append(str(input_path))
        await self._gpg(*args)

    async def decrypt(self, input_path: str, output_path: str) -> None:
        """Decrypt ``input_path`` into ``output_path``."""
        if await is_plain_bundle(input_path):
            logger.debug("Bundle is not encrypted, copying file without decryption")
            await copy_file(input_path, output_path)
            return
        await self._gpg("--output", str(output_path), "--decrypt", str(input_path))
