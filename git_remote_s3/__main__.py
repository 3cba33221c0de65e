"""Main module for git-remote-s3.

Git runs ``git-remote-s3 <alias> <url>`` for ``s3://`` remotes and speaks the
remote helper protocol on stdin/stdout.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Mapping, Optional, TextIO

from dotenv import find_dotenv, load_dotenv

from git_remote_s3 import __version__
from git_remote_s3.config import RemoteSettings
from git_remote_s3.errors import ConfigurationError, GitError, is_broken_pipe
from git_remote_s3.git import GitCLI
from git_remote_s3.gpg import GpgCLI
from git_remote_s3.log import setup_logging
from git_remote_s3.protocol import ProtocolDriver
from git_remote_s3.s3 import S3ObjectStore, create_s3_client_factory
from git_remote_s3.sync import SyncEngine

logger = logging.getLogger("git_remote_s3.main")


def get_argparser(add_help=True):
    """Return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="git-remote-s3",
        description="Git remote helper for S3 buckets (invoked by git)",
        add_help=add_help,
    )
    parser.add_argument(
        "remote_alias",
        type=str,
        help="name of the remote, or the URL itself for anonymous remotes",
    )
    parser.add_argument(
        "url",
        type=str,
        nargs="?",
        default=None,
        help="remote URL of the form s3://bucket/path-prefix "
        "(default: git config remote.<alias>.url)",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser


async def create_engine(
    remote_alias: str, url: Optional[str], env: Optional[Mapping[str, str]] = None
) -> SyncEngine:
    """Resolve settings and wire the adapters for one remote."""
    env = os.environ if env is None else env
    git = GitCLI()
    if url is None:
        try:
            url = await git.config(f"remote.{remote_alias}.url")
        except GitError as e:
            raise ConfigurationError(
                f"No URL given and remote.{remote_alias}.url is not set"
            ) from e
    settings = RemoteSettings.from_url(remote_alias, url, env)
    git = GitCLI(timeout=settings.command_timeout, attempts=settings.command_attempts)
    settings = await settings.with_git_config(git)
    logger.debug(f"Serving {settings.root} for remote {settings.remote_alias}")
    store = S3ObjectStore(create_s3_client_factory(settings))
    gpg = GpgCLI(timeout=settings.command_timeout, attempts=settings.command_attempts)
    return SyncEngine(settings, store, git, gpg)


async def serve(
    remote_alias: str,
    url: Optional[str],
    input_stream: TextIO,
    output_stream: TextIO,
    env: Optional[Mapping[str, str]] = None,
) -> None:
    """Run one helper session."""
    engine = await create_engine(remote_alias, url, env)
    await ProtocolDriver(engine, input_stream, output_stream).run()


def _silence_stdout():
    # git closed its end; make the interpreter's final flush a no-op
    devnull = os.open(os.devnull, os.O_WRONLY)
    try:
        os.dup2(devnull, sys.stdout.fileno())
    except (OSError, ValueError):
        pass
    finally:
        os.close(devnull)


def main(argv=None) -> int:
    """Main entry point for the helper."""
    env_file = find_dotenv(usecwd=True)
    if env_file:
        load_dotenv(env_file)
    setup_logging()

    args = get_argparser().parse_args(argv)
    try:
        asyncio.run(serve(args.remote_alias, args.url, sys.stdin, sys.stdout))
    except ConfigurationError as e:
        print(f"fatal: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        if is_broken_pipe(e):
            logger.debug("Output pipe closed by git, exiting")
            _silence_stdout()
            return 0
        logger.error(
            f"Remote helper failed: {e}", exc_info=logger.isEnabledFor(logging.DEBUG)
        )
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
