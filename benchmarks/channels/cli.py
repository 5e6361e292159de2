"""Channel communication sweep.

For every communication mode and server count, writes one table whose rows
sweep the client count.  The measured binary prints the message size in
bytes, the number of exchanged messages and the test duration in
nanoseconds; the table holds messages, throughput (MB/s) and per-client
latency (µs).
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from benchmarks.common import add_common_arguments, check_common_arguments, run_guarded
from sweep import ChannelPoint, SweepController, channel_metrics, clamp_divisions, sweep_coordinates
from utils import host_name, parse_int_list, processor_count

MODE_NAMES = ("random", "round-robin", "shared")
DEFAULT_MODES = (0, 2)
SERVER_DIVISIONS = 4
CLIENT_DIVISIONS = 16
# Clients swept up to this multiple of the processor count.
CLIENTS_PER_PROCESSOR = 2

HEADER = ["#clients", "#messages", "throughput (MB/s)", "latency (µs)"]


def main(argv: Optional[List[str]] = None) -> int:
    parser = _make_parser()
    args = parser.parse_args(argv)
    if args.binary is None:
        parser.print_usage(sys.stderr)
        return 0
    for mode in args.modes:
        if not 0 <= mode < len(MODE_NAMES):
            parser.error(f"unknown mode {mode}")
    if args.server_divisions < 0 or args.client_divisions < 0:
        parser.error("division counts must not be negative")
    check_common_arguments(parser, args)

    def sweep(controller: SweepController, out_dir: Path) -> None:
        cmd_sweep(
            controller,
            binary=args.binary,
            out_dir=out_dir,
            modes=args.modes,
            server_divisions=args.server_divisions,
            client_divisions=args.client_divisions,
        )

    return run_guarded(args, sweep)


def _make_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="sweepbench-channels", description="Channel throughput/latency sweep")
    p.add_argument("binary", nargs="?", help="Channel benchmark binary")
    p.add_argument(
        "--modes",
        type=parse_int_list,
        default=list(DEFAULT_MODES),
        help="Comma-separated mode ids (0 random, 1 round-robin, 2 shared)",
    )
    p.add_argument("--server-divisions", type=int, default=SERVER_DIVISIONS)
    p.add_argument("--client-divisions", type=int, default=CLIENT_DIVISIONS)
    add_common_arguments(p)
    return p


def table_name(host: str, mode: int, servers: int) -> str:
    return f"{host}.{MODE_NAMES[mode]}.s{servers}.dat"


def cmd_sweep(
    controller: SweepController,
    *,
    binary: str,
    out_dir: Path,
    modes: Sequence[int] = DEFAULT_MODES,
    server_divisions: int = SERVER_DIVISIONS,
    client_divisions: int = CLIENT_DIVISIONS,
) -> List[Path]:
    host = host_name()
    servers = processor_count()
    clients = servers * CLIENTS_PER_PROCESSOR
    server_coords = sweep_coordinates(servers, clamp_divisions(servers, server_divisions))
    client_coords = sweep_coordinates(clients, clamp_divisions(clients, client_divisions))

    out_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for mode in modes:
        for servers_in_use in server_coords:
            path = out_dir / table_name(host, mode, servers_in_use)

            def cells(clients_in_use: int, mode=mode, servers_in_use=servers_in_use):
                point = ChannelPoint(mode, servers_in_use, clients_in_use)
                derive = lambda means: channel_metrics(means, clients_in_use)  # noqa: E731
                return [(MODE_NAMES[mode], binary, point, derive)]

            controller.write_table(path, HEADER, client_coords, cells, unit="client")
            written.append(path)
    return written
