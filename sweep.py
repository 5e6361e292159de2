# Sweep coordinates, repetition averaging and result tables
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Mapping, Optional, Sequence, TextIO, Tuple

import numpy as np

from harness import MeasurementResult, ProcessHarness, Spawner, SubprocessSpawner
from utils import DEFAULT_REPETITIONS, MEASUREMENT_SLOTS, decimal_text

# Ways of folding a poisoned (unparsable) slot into the repetition mean:
#   exclude - average the slot over the repetitions where it parsed
#   zero    - count the poisoned slot as 0, like a missing value
#   nan     - let it propagate, the row then shows nan
POISON_POLICIES = ("exclude", "zero", "nan")
DEFAULT_POISON_POLICY = "exclude"


@dataclass(frozen=True)
class ChannelPoint:
    """Channel micro-benchmark invocation: ``-m mode -s servers -c clients -o``."""

    mode: int
    servers: int
    clients: int

    def arguments(self) -> List[str]:
        return [
            "-m", decimal_text(self.mode),
            "-s", decimal_text(self.servers),
            "-c", decimal_text(self.clients),
            "-o",
        ]


@dataclass(frozen=True)
class LoadPoint:
    """Data-structure latency invocation: ``-n cores -u update -p put -o``.

    Half of the updates are puts.
    """

    cores: int
    update: int

    @property
    def put(self) -> int:
        return self.update // 2

    def arguments(self) -> List[str]:
        return [
            "-n", decimal_text(self.cores),
            "-u", decimal_text(self.update),
            "-p", decimal_text(self.put),
            "-o",
        ]


def sweep_coordinates(total: int, divisions: int) -> List[int]:
    """Return the unit counts visited when ``total`` is split ``divisions`` ways.

    The single-unit point always comes first; any later division that would
    also land on one unit is skipped.

    >>> sweep_coordinates(8, 4)
    [1, 2, 4, 6, 8]
    """
    if total < 1 or divisions < 0:
        raise ValueError(f"invalid sweep: total={total} divisions={divisions}")
    coords = [1]
    for d in range(1, divisions + 1):
        n = total * d // divisions
        if n == 1:
            continue
        coords.append(n)
    return coords


def clamp_divisions(total: int, divisions: int) -> int:
    """Cap ``divisions`` so no two divisions of ``total`` share a unit count."""
    return min(divisions, total)


class RunningMean:
    """Per-slot arithmetic mean accumulated as ``sum(value / repetitions)``.

    Under the ``exclude`` policy a slot poisoned in some repetitions is
    averaged as ``sum(value / valid)`` over the repetitions where it parsed.
    """

    def __init__(self, repetitions: int, policy: str = DEFAULT_POISON_POLICY) -> None:
        if repetitions < 1:
            raise ValueError("repetitions must be at least 1")
        if policy not in POISON_POLICIES:
            raise ValueError(f"unknown poison policy '{policy}'")
        self.repetitions = repetitions
        self.policy = policy
        self._sum = np.zeros(MEASUREMENT_SLOTS)
        self._samples: List[np.ndarray] = []
        self.poisoned = 0

    def add(self, values: np.ndarray) -> None:
        values = np.asarray(values, dtype=float)
        bad = np.isnan(values)
        self.poisoned += int(bad.sum())
        if self.policy == "zero":
            values = np.where(bad, 0.0, values)
        self._sum += values / self.repetitions
        self._samples.append(values)

    def mean(self) -> np.ndarray:
        if self.policy != "exclude" or not self.poisoned:
            return self._sum.copy()
        samples = np.vstack(self._samples)
        valid = ~np.isnan(samples)
        counts = valid.sum(axis=0)
        out = self._sum.copy()
        for i in np.flatnonzero(counts < len(samples)):
            if not counts[i]:
                out[i] = np.nan
                continue
            total = 0.0
            for value in samples[valid[:, i], i]:
                total += value / counts[i]
            out[i] = total
        return out


def channel_metrics(means: np.ndarray, clients: int) -> List[float]:
    """Turn ``(message size, exchanges, duration ns)`` means into table columns.

    Returns exchanged messages, global throughput (MB/s) and the latency of
    one message for one client (µs).
    """
    size, exchanges, duration = (float(v) for v in means)
    with np.errstate(divide="ignore", invalid="ignore"):
        throughput = np.float64(exchanges) * 1000.0 / np.float64(duration) * size
        latency = np.float64(duration) / 1000.0 / np.float64(exchanges) * clients
    return [exchanges, float(throughput), float(latency)]


def latency_metrics(means: np.ndarray) -> List[float]:
    return [float(v) for v in means]


def format_cell(value) -> str:
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    if isinstance(value, str):
        return value
    return format(float(value), "g")


class ResultTable:
    """Tab-separated output file: ``#`` header then one row per sweep point."""

    def __init__(self, path: Path, header: Sequence[str]) -> None:
        self.path = Path(path)
        self._fh: Optional[TextIO] = self.path.open("w", encoding="utf-8")
        self.rows = 0
        self._write(header)

    def __enter__(self) -> "ResultTable":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def write_row(self, cells: Sequence) -> None:
        self._write([format_cell(c) for c in cells])
        self.rows += 1

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def _write(self, cells: Sequence[str]) -> None:
        self._fh.write("\t".join(cells) + "\n")
        self._fh.flush()


# (label, program, point, derive) measured for one table row
Cell = Tuple[str, str, object, Callable[[np.ndarray], List[float]]]


class SweepController:
    """Drives repetitions of the harness over sweep points into result tables.

    Exactly one child runs at a time.  A :class:`harness.SpawnError` raised
    by any repetition aborts the sweep; rows already written stay on disk.
    """

    def __init__(
        self,
        *,
        repetitions: int = DEFAULT_REPETITIONS,
        spawner: Optional[Spawner] = None,
        env: Optional[Mapping[str, str]] = None,
        skip_poisoned: bool = False,
        policy: str = DEFAULT_POISON_POLICY,
        out: TextIO = sys.stdout,
    ) -> None:
        if policy not in POISON_POLICIES:
            raise ValueError(f"unknown poison policy '{policy}'")
        self.repetitions = repetitions
        self.spawner = spawner if spawner is not None else SubprocessSpawner()
        self.env = env
        self.skip_poisoned = skip_poisoned
        self.policy = policy
        self.out = out
        self.runs = 0
        self.incomplete = 0

    def measure_once(self, program: str, point) -> MeasurementResult:
        with ProcessHarness(program, self.spawner, self.env, self.skip_poisoned) as test:
            test.run(point)
            result = test.wait()
        self.runs += 1
        if not result.complete:
            self.incomplete += 1
        return result

    def measure(self, program: str, point) -> np.ndarray:
        acc = RunningMean(self.repetitions, self.policy)
        for _ in range(self.repetitions):
            acc.add(self.measure_once(program, point).as_array())
        return acc.mean()

    def write_table(
        self,
        path: Path,
        header: Sequence[str],
        coordinates: Iterable[int],
        cells: Callable[[int], Iterable[Cell]],
        unit: str,
    ) -> int:
        """Measure every coordinate and write one row each; return the row count."""
        with ResultTable(path, header) as table:
            self._echo(f"Output file '{table.path}'\n")
            for coord in coordinates:
                self._echo(f"  With {coord} {unit}(s): ")
                row: List = [coord]
                for i, (label, program, point, derive) in enumerate(cells(coord)):
                    self._echo((", " if i else "") + label)
                    row.extend(derive(self.measure(program, point)))
                self._echo("\n")
                table.write_row(row)
            return table.rows

    def _echo(self, text: str) -> None:
        self.out.write(text)
        self.out.flush()
