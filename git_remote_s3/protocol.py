"""Remote helper protocol driver.

Git talks to the helper over stdin/stdout, one command per line (see
gitremote-helpers(7)). Supported commands::

    capabilities            -> *push, *fetch
    list [for-push]         -> "<revision> <ref>" lines, "@<ref> HEAD"
    push [+]<src>:<dst>     -> "ok <dst>" / "error <dst> <reason>"
    fetch <revision> <ref>  -> (nothing per ref)

``push`` and ``fetch`` come in batches terminated by a blank line; the
responses of a batch are followed by a single blank line. A blank line
outside a batch, or the end of input, ends the session.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, TextIO, Union

from git_remote_s3.sync import SyncEngine

logger = logging.getLogger(__name__)

CAPABILITIES = ("*push", "*fetch")


@dataclass(frozen=True)
class Capabilities:
    pass


@dataclass(frozen=True)
class ListRefs:
    for_push: bool = False


@dataclass(frozen=True)
class Push:
    src: str
    dst: str
    force: bool = False


@dataclass(frozen=True)
class Fetch:
    revision: str
    ref_name: str


@dataclass(frozen=True)
class Blank:
    pass


@dataclass(frozen=True)
class Unknown:
    line: str
    reason: str = "unrecognized command"


Command = Union[Capabilities, ListRefs, Push, Fetch, Blank, Unknown]


def parse_push_spec(spec: str) -> Optional[Push]:
    """Parse ``[+]<src>:<dst>``; returns None if there is no destination."""
    force = spec.startswith("+")
    if force:
        spec = spec[1:]
    src, sep, dst = spec.partition(":")
    if not sep or not dst:
        return None
    return Push(src=src, dst=dst, force=force)


def parse_command(line: str) -> Command:
    """Parse one protocol line into a command."""
    tokens = line.split()
    if not tokens:
        return Blank()
    name, args = tokens[0], tokens[1:]
    if name == "capabilities":
        if args:
            return Unknown(line, "capabilities takes no arguments")
        return Capabilities()
    if name == "list":
        if not args:
            return ListRefs()
        if args == ["for-push"]:
            return ListRefs(for_push=True)
        return Unknown(line, f"unsupported list option: {' '.join(args)}")
    if name == "push":
        if len(args) != 1:
            return Unknown(line, "push expects exactly one refspec")
        push = parse_push_spec(args[0])
        if push is None:
            return Unknown(line, f"malformed refspec: {args[0]}")
        return push
    if name == "fetch":
        if len(args) != 2:
            return Unknown(line, "fetch expects a revision and a ref name")
        return Fetch(revision=args[0], ref_name=args[1])
    return Unknown(line)


class ProtocolDriver:
    """Read commands from git and answer them, one at a time."""

    def __init__(self, engine: SyncEngine, input_stream: TextIO, output_stream: TextIO):
        """Initialize the driver.

        Args:
            engine: Synchronization engine executing the commands
            input_stream: Stream git writes commands to (stdin)
            output_stream: Stream git reads responses from (stdout)
        """
        self._engine = engine
        self._input = input_stream
        self._output = output_stream
        self._pending: Optional[Command] = None

    async def _read_command(self) -> Optional[Command]:
        """Return the next command, or None at end of input."""
        if self._pending is not None:
            command, self._pending = self._pending, None
            return command
        line = await asyncio.to_thread(self._input.readline)
        if line == "":
            return None
        logger.debug(f"< {line.rstrip()}")
        return parse_command(line)

    def _respond(self, lines: List[str]) -> None:
        """Write response lines followed by the blank terminator."""
        for line in lines:
            logger.debug(f"> {line}")
            self._output.write(line + "\n")
        self._output.write("\n")
        self._output.flush()

    async def run(self) -> None:
        """Serve commands until a blank line or the end of input."""
        while True:
            command = await self._read_command()
            if command is None or isinstance(command, Blank):
                logger.debug("Session closed")
                return
            await self.dispatch(command)

    async def dispatch(self, command: Command) -> None:
        """Execute one command and write its response."""
        if isinstance(command, Capabilities):
            self._respond(list(CAPABILITIES))
        elif isinstance(command, ListRefs):
            self._respond(await self._engine.list_lines())
        elif isinstance(command, Push):
            await self._push_batch(await self._collect_batch(command))
        elif isinstance(command, Fetch):
            await self._fetch_batch(await self._collect_batch(command))
        elif isinstance(command, Unknown):
            logger.warning(f"Unknown command {command.line.strip()!r}: {command.reason}")
            self._respond(["unknown command"])
        else:
            raise AssertionError(f"Unhandled command: {command!r}")

    async def _collect_batch(self, first: Command) -> list:
        """Gather the commands of a batch up to its blank line.

        A command of another kind ends the batch early and is kept for the
        next read.
        """
        batch = [first]
        while True:
            command = await self._read_command()
            if command is None or isinstance(command, Blank):
                return batch
            if type(command) is not type(first):
                self._pending = command
                return batch
            batch.append(command)

    async def _push_batch(self, batch: List[Push]) -> None:
        lines = []
        for push in batch:
            result = await self._engine.push(push.src, push.dst, force=push.force)
            lines.append(result.to_line())
        self._respond(lines)

    async def _fetch_batch(self, batch: List[Fetch]) -> None:
        for fetch in batch:
            await self._engine.fetch(fetch.revision, fetch.ref_name)
        self._respond([])
