"""Data-structure operation latency sweep.

For every update load, writes one table whose rows sweep the number of
cores.  Each measured binary prints the mean get, put and remove latency;
the row carries those three values for every binary in command-line order.
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from benchmarks.common import add_common_arguments, check_common_arguments, run_guarded
from sweep import LoadPoint, SweepController, latency_metrics, sweep_coordinates
from utils import host_name, parse_int_list, processor_count

DEFAULT_LOADS = (0, 20, 50, 100)
CORE_DIVISIONS = 32


def main(argv: Optional[List[str]] = None) -> int:
    parser = _make_parser()
    args = parser.parse_args(argv)
    if args.name is None or not args.binaries:
        parser.print_usage(sys.stderr)
        return 0
    for load in args.loads:
        if not 0 <= load <= 100:
            parser.error(f"load must be a percentage, got {load}")
    if args.core_divisions < 0:
        parser.error("--core-divisions must not be negative")
    check_common_arguments(parser, args)

    def sweep(controller: SweepController, out_dir: Path) -> None:
        cmd_sweep(
            controller,
            name=args.name,
            binaries=args.binaries,
            out_dir=out_dir,
            loads=args.loads,
            division_limit=args.core_divisions,
        )

    return run_guarded(args, sweep)


def _make_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="sweepbench-latency", description="Operation latency sweep over cores")
    p.add_argument("name", nargs="?", help="Group name used in output file names")
    p.add_argument("binaries", nargs="*", help="Benchmark binaries, one column group each")
    p.add_argument(
        "--loads",
        type=parse_int_list,
        default=list(DEFAULT_LOADS),
        help="Comma-separated update percentages, one table each",
    )
    p.add_argument("--core-divisions", type=int, default=CORE_DIVISIONS)
    add_common_arguments(p)
    return p


def core_count(processors: int) -> int:
    # oversubscribe to see latencies rise past the physical cores
    return processors * 4 // 3


def core_divisions(cores: int, limit: int = CORE_DIVISIONS) -> int:
    return cores - 1 if limit >= cores else limit


def table_name(host: str, name: str, load: int) -> str:
    return f"{host}.{name}.u{load}.dat"


def table_header(binaries: Sequence[str]) -> List[str]:
    header = ["#cores"]
    for binary in binaries:
        header.extend([binary, "", ""])
    return header


def cmd_sweep(
    controller: SweepController,
    *,
    name: str,
    binaries: Sequence[str],
    out_dir: Path,
    loads: Sequence[int] = DEFAULT_LOADS,
    division_limit: int = CORE_DIVISIONS,
) -> List[Path]:
    host = host_name()
    cores = core_count(processor_count())
    coords = sweep_coordinates(cores, core_divisions(cores, division_limit))
    header = table_header(binaries)

    out_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for load in loads:
        path = out_dir / table_name(host, name, load)

        def cells(cores_in_use: int, load=load):
            point = LoadPoint(cores_in_use, load)
            return [(binary, binary, point, latency_metrics) for binary in binaries]

        controller.write_table(path, header, coords, cells, unit="core")
        written.append(path)
    return written
