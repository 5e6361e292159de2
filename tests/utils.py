from pathlib import Path
import os
import sys
import textwrap
from typing import List, Optional, Sequence

from harness import ChildHandle, SpawnError, Spawner

# Pause between writes of a fake binary so each write lands in its own read.
WRITE_GAP_S = 0.05

HAVE_POSIX_SPAWN = hasattr(os, "posix_spawn")


def write_fake_bench(workdir: Path, body: str, name: str = "fake_bench") -> Path:
    """Write an executable Python script standing in for a measured binary.

    The interpreter path is absolute so the script also starts with the
    empty environment the harness uses by default.  ``os``, ``sys`` and
    ``time`` are imported for the body.
    """
    path = workdir / name
    header = f"#!{sys.executable}\nimport os, sys, time\n"
    path.write_text(header + textwrap.dedent(body))
    path.chmod(0o755)
    return path


def printing_bench(workdir: Path, *lines: str, name: str = "fake_bench") -> Path:
    """Fake binary writing ``lines`` (each newline-terminated) to stdout."""
    data = "".join(f"{line}\n" for line in lines)
    return write_fake_bench(workdir, f"os.write(1, {data.encode()!r})\n", name=name)


def argv_echo_bench(workdir: Path, name: str = "echo_bench") -> Path:
    """Fake binary reporting the values following its 1st, 2nd and 3rd flags."""
    return write_fake_bench(
        workdir,
        """
        values = [sys.argv[i] for i in (2, 4, 6)]
        os.write(1, ("\\n".join(values) + "\\n").encode())
        """,
        name=name,
    )


class ScriptedChild(ChildHandle):
    """In-memory child: ``read`` returns the scripted chunks in order.

    An exception instance in the script is raised by the read that reaches it.
    """

    def __init__(self, chunks: Sequence, status: int = 0) -> None:
        super().__init__(pid=0, fd=1000)
        self._chunks = list(chunks)
        self._exit_status = status
        self.reads = 0

    def read(self, size: int) -> bytes:
        self.reads += 1
        if not self._chunks:
            return b""
        item = self._chunks.pop(0)
        if isinstance(item, BaseException):
            raise item
        assert len(item) <= size
        return item

    def reap(self) -> int:
        self.status = self._exit_status
        return self.status

    def close(self) -> None:
        self.fd = -1


class ScriptedSpawner(Spawner):
    """Hands out one :class:`ScriptedChild` per spawn; fails once exhausted."""

    name = "scripted"

    def __init__(self, runs: Sequence[Sequence]) -> None:
        self.runs = list(runs)
        self.argvs: List[List[str]] = []
        self.envs: List[dict] = []
        self.children: List[ScriptedChild] = []

    def spawn(self, argv, env) -> ChildHandle:
        if not self.runs:
            raise SpawnError(f"Unable to start program '{argv[0]}': scripted runs exhausted")
        self.argvs.append(list(argv))
        self.envs.append(dict(env))
        child = ScriptedChild(self.runs.pop(0))
        self.children.append(child)
        return child


def scripted_values(*values: float, repeat: int = 1, lines: Optional[str] = None) -> List[List[bytes]]:
    """Scripted runs each printing ``values`` (or the raw ``lines``) in one chunk."""
    text = lines if lines is not None else "".join(f"{v}\n" for v in values)
    return [[text.encode()] for _ in range(repeat)]
