"""Process runners streaming toolchain output line by line."""

from __future__ import annotations

import asyncio
import codecs
from collections.abc import Callable, Mapping, Sequence
import logging
from pathlib import Path
import subprocess
from typing import Protocol, runtime_checkable


_log = logging.getLogger(__name__)

OutputCallback = Callable[[str], None]
ExitCallback = Callable[[int], None]

SPAWN_FAILURE_CODE = 127
CHUNK_SIZE = 4096


@runtime_checkable
class ProcessHandle(Protocol):
    """Handle on a spawned toolchain process."""

    argv: list[str]

    @property
    def returncode(self) -> int | None: ...

    def kill(self) -> None: ...


@runtime_checkable
class ProcessRunner(Protocol):
    """Spawn executables and report their output and exit status via callbacks.

    Output is delivered in chunks as soon as the process writes it; chunks are
    not aligned on line boundaries.

    ``concurrent`` tells whether two spawned processes may run at the same time;
    blocking runners return only after ``on_exit`` fired.
    """

    concurrent: bool

    def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        on_output: OutputCallback,
        on_exit: ExitCallback,
    ) -> ProcessHandle: ...


def _decoder() -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder("utf-8")(errors="replace")


class _AsyncioProcess:
    def __init__(self, argv: Sequence[str]) -> None:
        self.argv = list(argv)
        self.process: asyncio.subprocess.Process | None = None
        self.task: asyncio.Task[None] | None = None
        self._killed = False

    @property
    def returncode(self) -> int | None:
        return self.process.returncode if self.process is not None else None

    def kill(self) -> None:
        self._killed = True
        if self.process is not None and self.process.returncode is None:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass

    @property
    def killed(self) -> bool:
        return self._killed


class AsyncioProcessRunner:
    """Runner dispatching process callbacks on an asyncio event loop."""

    concurrent = True

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        on_output: OutputCallback,
        on_exit: ExitCallback,
    ) -> _AsyncioProcess:
        handle = _AsyncioProcess(argv)
        task = self.loop.create_task(self._run(handle, cwd, env, on_output, on_exit))
        handle.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return handle

    @property
    def running(self) -> int:
        return len(self._tasks)

    async def wait(self) -> None:
        """Wait until every spawned process has reported its exit."""
        while self._tasks:
            results = await asyncio.gather(*list(self._tasks), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    raise result

    async def _run(
        self,
        handle: _AsyncioProcess,
        cwd: Path,
        env: Mapping[str, str],
        on_output: OutputCallback,
        on_exit: ExitCallback,
    ) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *handle.argv,
                cwd=str(cwd),
                env=dict(env),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            _log.debug("unable to spawn %s: %s", handle.argv[0], exc)
            on_output(f"{handle.argv[0]}: {exc}\n")
            on_exit(SPAWN_FAILURE_CODE)
            return

        handle.process = process
        if handle.killed:
            handle.kill()
        stream = process.stdout
        if stream is not None:
            decoder = _decoder()
            while True:
                raw = await stream.read(CHUNK_SIZE)
                if not raw:
                    break
                text = decoder.decode(raw)
                if text:
                    on_output(text)
            tail = decoder.decode(b"", final=True)
            if tail:
                on_output(tail)
        returncode = await process.wait()
        on_exit(returncode)


class _CompletedProcess:
    def __init__(self, argv: Sequence[str], returncode: int) -> None:
        self.argv = list(argv)
        self._returncode = returncode

    @property
    def returncode(self) -> int | None:
        return self._returncode

    def kill(self) -> None:
        return


class SubprocessRunner:
    """Blocking runner for hosts without an event loop.

    Standard error is merged into standard output, which is forwarded to
    ``on_output`` chunk by chunk as it is produced; ``spawn`` returns once
    ``on_exit`` has been called.
    """

    concurrent = False

    def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        on_output: OutputCallback,
        on_exit: ExitCallback,
    ) -> _CompletedProcess:
        try:
            process = subprocess.Popen(
                list(argv),
                cwd=str(cwd),
                env=dict(env),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as exc:
            _log.debug("unable to spawn %s: %s", argv[0], exc)
            on_output(f"{argv[0]}: {exc}\n")
            on_exit(SPAWN_FAILURE_CODE)
            return _CompletedProcess(argv, SPAWN_FAILURE_CODE)

        with process:
            stream = process.stdout
            if stream is not None:
                decoder = _decoder()
                while True:
                    raw = stream.read1(CHUNK_SIZE)
                    if not raw:
                        break
                    text = decoder.decode(raw)
                    if text:
                        on_output(text)
                tail = decoder.decode(b"", final=True)
                if tail:
                    on_output(tail)
            returncode = process.wait()

        on_exit(returncode)
        return _CompletedProcess(argv, returncode)


__all__ = [
    "AsyncioProcessRunner",
    "CHUNK_SIZE",
    "ExitCallback",
    "OutputCallback",
    "ProcessHandle",
    "ProcessRunner",
    "SPAWN_FAILURE_CODE",
    "SubprocessRunner",
]
