# Spawn a measured binary, parse its three reported values and reap it
import os
import subprocess
import sys
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence, Tuple

import numpy as np

from numparse import StreamingNumberParser
from utils import MEASUREMENT_SLOTS, READ_SIZE
from utils.prof import PROFILER


class HarnessError(RuntimeError):
    """Base class for failures of the spawn/measure protocol."""


class SpawnError(HarnessError):
    """The measured binary could not be started (pipe, redirection or exec)."""


@dataclass(frozen=True)
class MeasurementResult:
    """Values reported by one run of a measured binary.

    Slots are filled in arrival order.  Slots never reached keep ``0.0``;
    a slot whose line could not be parsed holds ``None``.
    """

    values: Tuple[Optional[float], ...] = (0.0,) * MEASUREMENT_SLOTS
    filled: int = 0
    read_error: Optional[str] = None
    status: Optional[int] = None

    @property
    def complete(self) -> bool:
        return self.filled == MEASUREMENT_SLOTS and self.read_error is None

    @property
    def poisoned(self) -> int:
        return sum(1 for v in self.values if v is None)

    def as_array(self) -> np.ndarray:
        return np.array([np.nan if v is None else v for v in self.values], dtype=float)


class ChildHandle:
    """A running child plus the read end of its merged stdout/stderr pipe."""

    def __init__(self, pid: int, fd: int) -> None:
        self.pid = pid
        self.fd = fd
        self.status: Optional[int] = None

    @property
    def closed(self) -> bool:
        return self.fd < 0

    @property
    def reaped(self) -> bool:
        return self.status is not None

    def read(self, size: int) -> bytes:
        return os.read(self.fd, size)

    def reap(self) -> int:
        if self.status is None:
            _, status = os.waitpid(self.pid, 0)
            self.status = os.waitstatus_to_exitcode(status)
        return self.status

    def close(self) -> None:
        if self.fd >= 0:
            fd, self.fd = self.fd, -1
            os.close(fd)


class _PopenHandle(ChildHandle):
    def __init__(self, proc: subprocess.Popen) -> None:
        super().__init__(proc.pid, proc.stdout.fileno())
        self._proc = proc

    def reap(self) -> int:
        if self.status is None:
            self.status = self._proc.wait()
        return self.status

    def close(self) -> None:
        if self.fd >= 0:
            self.fd = -1
            self._proc.stdout.close()


class Spawner:
    """Starts ``argv`` with stdout and stderr merged into one readable pipe.

    Implementations must close the parent's copy of the write end before
    returning so end-of-stream is seen once the child exits, and raise
    :class:`SpawnError` when the child cannot be started.
    """

    name = "abstract"

    def spawn(self, argv: Sequence[str], env: Mapping[str, str]) -> ChildHandle:
        raise NotImplementedError


class SubprocessSpawner(Spawner):
    name = "subprocess"

    def spawn(self, argv: Sequence[str], env: Mapping[str, str]) -> ChildHandle:
        try:
            proc = subprocess.Popen(
                list(argv),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                bufsize=0,
                env=dict(env),
            )
        except OSError as e:
            raise SpawnError(f"Unable to start program '{argv[0]}': {e}") from e
        return _PopenHandle(proc)


class PosixSpawner(Spawner):
    """``os.posix_spawn`` with the pipe wired up through file actions."""

    name = "posix"

    def spawn(self, argv: Sequence[str], env: Mapping[str, str]) -> ChildHandle:
        if not hasattr(os, "posix_spawn"):
            raise SpawnError("posix_spawn is not available on this platform")
        try:
            rfd, wfd = os.pipe()
        except OSError as e:
            raise SpawnError(f"Unable to open pipes: {e}") from e
        actions = [
            (os.POSIX_SPAWN_DUP2, wfd, 1),
            (os.POSIX_SPAWN_DUP2, wfd, 2),
            (os.POSIX_SPAWN_CLOSE, rfd),
            (os.POSIX_SPAWN_CLOSE, wfd),
        ]
        try:
            pid = os.posix_spawn(argv[0], list(argv), dict(env), file_actions=actions)
        except OSError as e:
            os.close(rfd)
            raise SpawnError(f"Unable to start program '{argv[0]}': {e}") from e
        finally:
            os.close(wfd)
        return ChildHandle(pid, rfd)


SPAWNERS = {cls.name: cls for cls in (SubprocessSpawner, PosixSpawner)}


def make_spawner(name: str) -> Spawner:
    try:
        return SPAWNERS[name]()
    except KeyError:
        raise ValueError(f"unknown spawner '{name}' (choose from {', '.join(sorted(SPAWNERS))})") from None


@dataclass
class ProcessHarness:
    """One spawn/measure/reap cycle of ``program``.

    ``run`` starts the child for a sweep point, ``wait`` collects its three
    values and reaps it.  The pipe is released by ``close`` (or leaving the
    ``with`` block) on every path.  Without ``env`` the child gets an empty
    environment.
    """

    program: str
    spawner: Spawner = field(default_factory=SubprocessSpawner)
    env: Optional[Mapping[str, str]] = None
    skip_poisoned: bool = False
    _child: Optional[ChildHandle] = field(default=None, init=False, repr=False)

    def __enter__(self) -> "ProcessHarness":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def child(self) -> Optional[ChildHandle]:
        return self._child

    def command(self, point) -> List[str]:
        return [self.program, *point.arguments()]

    def run(self, point) -> None:
        if self._child is not None:
            raise HarnessError("harness already ran; use a fresh instance per repetition")
        argv = self.command(point)
        with PROFILER.section("spawn"):
            self._child = self.spawner.spawn(argv, {} if self.env is None else self.env)

    def wait(self) -> MeasurementResult:
        child = self._child
        if child is None:
            raise HarnessError("wait() called before run()")
        values: List[Optional[float]] = [0.0] * MEASUREMENT_SLOTS
        filled = 0
        read_error = None
        parser = StreamingNumberParser()
        with PROFILER.section("wait"):
            while filled < MEASUREMENT_SLOTS:
                try:
                    chunk = child.read(READ_SIZE)
                except OSError as e:
                    read_error = f"Unable to read pipe: {e}"
                    print(f"WARNING: {read_error}", file=sys.stderr)
                    break
                if not chunk:
                    break
                pos = parser.push(chunk)
                while pos:
                    value = parser.reset()
                    if value is not None or not self.skip_poisoned:
                        values[filled] = value
                        filled += 1
                        if filled >= MEASUREMENT_SLOTS:
                            break
                    if pos >= len(chunk):
                        break
                    pos = parser.push(chunk, pos)
            if filled >= MEASUREMENT_SLOTS:
                self._drain(child)
            status = child.reap()
        return MeasurementResult(tuple(values), filled, read_error, status)

    def close(self) -> None:
        child = self._child
        if child is None:
            return
        child.close()
        if not child.reaped:
            child.reap()

    @staticmethod
    def _drain(child: ChildHandle) -> None:
        # discard trailing output so the child never blocks on a full pipe
        try:
            while child.read(READ_SIZE):
                pass
        except OSError as e:
            print(f"WARNING: Unable to drain pipe: {e}", file=sys.stderr)
