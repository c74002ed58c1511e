"""Candidate sources feeding the scorer.

Every source is an async generator of raw candidate strings. A SourceStream
runs one source in a background task and hands its items to the scorer
through a bounded queue, so slow producers never block the controller and
fast producers cannot run ahead of the scorer by more than the queue size.
"""

import asyncio
import os
import signal
from abc import ABC, abstractmethod
from collections import deque
from contextlib import aclosing
from typing import Any, AsyncIterator, Iterable, List, Optional, Tuple

from loguru import logger

from .cancellation import CancellationToken
from .channel import EventChannel
from .config import FinderConfig, FinderOptions, collapse_home
from .errors import ChannelError, ErrorSeverity, ErrorTracker, SourceError
from .ignore import IgnoreRules, read_local

# Longest line accepted from an external process
PROCESS_LINE_LIMIT = 16 * 1024 * 1024

DirEntry = Tuple[str, bool]


class CandidateSource(ABC):
    """Produces raw candidate strings for one session."""

    name = "source"

    def __init__(self, errors: Optional[ErrorTracker] = None):
        self.errors = errors or ErrorTracker()

    @abstractmethod
    def produce(self, token: CancellationToken) -> AsyncIterator[str]:
        """Yield candidates until exhausted or ``token`` is cancelled."""


class StaticListSource(CandidateSource):
    """Replays a literal list in order."""

    name = "static"

    def __init__(self, items: Iterable[str], errors: Optional[ErrorTracker] = None):
        super().__init__(errors)
        self.items = list(items)

    async def produce(self, token: CancellationToken) -> AsyncIterator[str]:
        for item in self.items:
            if token.cancelled:
                return
            yield item


class ProcessSource(CandidateSource):
    """
    Streams the standard output lines of a shell command.

    Lines are yielded as soon as they are complete, long before the command
    exits. The process (and its process group) is killed when the stream is
    closed early.
    """

    name = "process"

    def __init__(
        self,
        command: str,
        shell: str = "bash",
        cwd: Optional[str] = None,
        errors: Optional[ErrorTracker] = None
    ):
        super().__init__(errors)
        self.command = command
        self.shell = shell
        self.cwd = cwd or None

    async def produce(self, token: CancellationToken) -> AsyncIterator[str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.shell, "-c", self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                cwd=self.cwd,
                limit=PROCESS_LINE_LIMIT,
                start_new_session=(os.name == "posix")
            )
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to spawn '{self.command}': {e}")
            self.errors.record(
                "source.process",
                SourceError(f"cannot spawn {self.shell}: {e}"),
                ErrorSeverity.MEDIUM,
                command=self.command
            )
            return

        logger.debug(f"Spawned pid {proc.pid}: {self.command}")
        try:
            while not token.cancelled:
                try:
                    line = await proc.stdout.readline()
                except ValueError as e:
                    # Line longer than the stream limit
                    self.errors.record("source.process", e, command=self.command)
                    break
                if not line:
                    break
                # A last line without newline is still a candidate
                if line.endswith(b"\n"):
                    line = line[:-1]
                yield line.decode("utf-8", errors="replace")
        finally:
            await self._terminate(proc)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                if os.name == "posix":
                    os.killpg(proc.pid, signal.SIGKILL)
                else:
                    proc.kill()
            except (ProcessLookupError, PermissionError):
                pass
        await proc.wait()
        logger.debug(f"Process {proc.pid} exited with {proc.returncode}")


class DirectoryWalkSource(CandidateSource):
    """
    Breadth-first walk emitting file paths.

    All files of a directory are emitted before the next queued directory
    is opened. Version control directories and ignored entries are pruned.
    Unreadable directories are skipped.
    """

    def __init__(
        self,
        root: str = ".",
        home: Optional[str] = None,
        errors: Optional[ErrorTracker] = None
    ):
        super().__init__(errors)
        self.root = os.path.normpath(root) if root else "."
        self.home = home

    @abstractmethod
    async def list_dir(self, directory: str) -> List[DirEntry]:
        """Entries of ``directory`` as (name, is_dir) pairs."""

    @abstractmethod
    def make_ignore_rules(self) -> IgnoreRules:
        ...

    def display_path(self, path: str) -> str:
        if self.home:
            return collapse_home(path, self.home)
        return path

    async def produce(self, token: CancellationToken) -> AsyncIterator[str]:
        rules = self.make_ignore_rules()
        folders = deque([self.root])

        while folders:
            directory = folders.popleft()
            try:
                entries = await self.list_dir(directory)
            except (OSError, ChannelError) as e:
                self.errors.record(f"source.{self.name}", e, path=directory)
                continue
            if not entries:
                continue
            await rules.load(directory)

            for name, is_dir in entries:
                if token.cancelled:
                    return
                path = os.path.normpath(os.path.join(directory, name))
                if rules.is_ignored(path, is_dir):
                    continue
                if is_dir:
                    folders.append(path)
                    continue
                yield self.display_path(path)


class FilesystemSource(DirectoryWalkSource):
    """Walks the local disk. Relative roots are resolved against ``cwd``."""

    name = "filesystem"

    def __init__(
        self,
        root: str = ".",
        cwd: Optional[str] = None,
        home: Optional[str] = None,
        errors: Optional[ErrorTracker] = None
    ):
        super().__init__(root, home if home is not None else os.path.expanduser("~"), errors)
        self.cwd = cwd or None

    def _io_path(self, path: str) -> str:
        if self.cwd and not os.path.isabs(path):
            return os.path.join(self.cwd, path)
        return path

    async def list_dir(self, directory: str) -> List[DirEntry]:
        return await asyncio.to_thread(self._scan, self._io_path(directory))

    def _scan(self, directory: str) -> List[DirEntry]:
        entries = []
        with os.scandir(directory) as it:
            for entry in it:
                try:
                    entries.append((entry.name, entry.is_dir(follow_symlinks=False)))
                except OSError as e:
                    self.errors.record("source.filesystem", e, path=entry.path)
        entries.sort()
        return entries

    def make_ignore_rules(self) -> IgnoreRules:
        async def loader(path: str) -> Optional[str]:
            return await read_local(self._io_path(path))
        return IgnoreRules(self.root, loader)


class RemoteSource(DirectoryWalkSource):
    """
    Walks a directory tree on the editor's host.

    Listings come from the ``list_dir`` request of the event channel.
    Ignore files are fetched with ``read_file`` when the host supports it
    and silently skipped otherwise.
    """

    name = "remote"

    def __init__(
        self,
        channel: EventChannel,
        root: str = ".",
        home: Optional[str] = None,
        errors: Optional[ErrorTracker] = None
    ):
        super().__init__(root, home, errors)
        self.channel = channel

    async def list_dir(self, directory: str) -> List[DirEntry]:
        raw = await self.channel.request("list_dir", directory)
        entries = []
        for item in raw or []:
            entry = parse_remote_entry(item)
            if entry is not None:
                entries.append(entry)
        entries.sort()
        return entries

    def make_ignore_rules(self) -> IgnoreRules:
        async def loader(path: str) -> Optional[str]:
            try:
                content = await self.channel.request("read_file", path)
            except ChannelError:
                return None
            return content if isinstance(content, str) else None
        return IgnoreRules(self.root, loader)


def parse_remote_entry(item: Any) -> Optional[DirEntry]:
    """Accept ``{"name", "is_dir"}`` maps, ``[name, is_dir]`` pairs or names
    with a trailing slash for directories."""
    if isinstance(item, dict):
        name = item.get("name")
        if isinstance(name, str) and name:
            return name, bool(item.get("is_dir", False))
    elif isinstance(item, (list, tuple)) and len(item) == 2 and isinstance(item[0], str):
        return item[0], bool(item[1])
    elif isinstance(item, str) and item:
        if item.endswith("/"):
            return item.rstrip("/"), True
        return item, False
    return None


def build_source(
    options: FinderOptions,
    config: FinderConfig,
    channel: Optional[EventChannel] = None,
    errors: Optional[ErrorTracker] = None
) -> CandidateSource:
    """Pick the source variant described by ``options``."""
    if isinstance(options.source, list):
        return StaticListSource(options.source, errors)
    if isinstance(options.source, str):
        return ProcessSource(options.source, config.shell, options.pwd, errors)
    if options.remote and channel is not None:
        return RemoteSource(channel, options.base_dir, errors=errors)
    return FilesystemSource(options.base_dir, options.pwd, errors=errors)


# Marks the end of a source stream in the queue
END = object()


class SourceStream:
    """
    Runs a source in a background task and buffers its output.

    The stream is lazy, finite and not restartable. ``get`` returns the next
    candidate or END once the source is exhausted.
    """

    def __init__(
        self,
        source: CandidateSource,
        token: CancellationToken,
        capacity: int = 1000
    ):
        self.source = source
        self.token = token
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self.exhausted = False
        self.produced = 0
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = self.token.attach(asyncio.create_task(self._pump()))

    async def _pump(self) -> None:
        try:
            async with aclosing(self.source.produce(self.token)) as items:
                async for item in items:
                    if self.token.cancelled:
                        return
                    # Suspends while the scorer is behind; cancellable here
                    await self.queue.put(item)
                    self.produced += 1
        except asyncio.CancelledError:
            logger.debug(f"{self.source.name} source cancelled after {self.produced} items")
            raise
        except Exception as e:
            logger.error(f"{self.source.name} source failed: {e}")
            self.source.errors.record(f"source.{self.source.name}", e, ErrorSeverity.HIGH)

        logger.debug(f"{self.source.name} source exhausted after {self.produced} items")
        await self.queue.put(END)

    async def get(self, timeout: float) -> Any:
        """Next item, END when exhausted. Raises asyncio.TimeoutError."""
        if self.exhausted:
            return END
        item = await asyncio.wait_for(self.queue.get(), timeout=timeout)
        if item is END:
            self.exhausted = True
        return item

    async def close(self, timeout: float = 1.0) -> bool:
        """Cancel the producer and wait (bounded) for it to release resources."""
        self.token.cancel()
        if self._task is None or self._task.done():
            return True
        _, pending = await asyncio.wait({self._task}, timeout=timeout)
        return not pending
