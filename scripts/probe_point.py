#!/usr/bin/env python3
"""Measure a single sweep point several times and print a JSON summary.

Useful to check a benchmark binary's output contract and run-to-run spread
before launching a full sweep.
"""
import argparse
import json
import os
import platform
import sys
from statistics import mean, median

from harness import SPAWNERS, SpawnError, make_spawner
from sweep import ChannelPoint, LoadPoint, SweepController
from utils import env_int, host_name


def build_point(args: argparse.Namespace):
    if args.variant == "channels":
        return ChannelPoint(args.mode, args.servers, args.clients)
    return LoadPoint(args.cores, args.update)


def summarize(column):
    valid = [v for v in column if v is not None]
    if not valid:
        return {"mean": None, "median": None, "min": None, "max": None, "poisoned": len(column)}
    return {
        "mean": mean(valid),
        "median": median(valid),
        "min": min(valid),
        "max": max(valid),
        "poisoned": len(column) - len(valid),
    }


def main():
    ap = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    ap.add_argument("binary")
    ap.add_argument("--variant", choices=["channels", "latency"], default="channels")
    ap.add_argument("--repeats", type=int, default=env_int("SWEEPBENCH_REPS", 5))
    ap.add_argument("--spawner", choices=sorted(SPAWNERS), default="subprocess")
    ap.add_argument("--inherit-env", action="store_true")
    ap.add_argument("--mode", type=int, default=0)
    ap.add_argument("--servers", type=int, default=1)
    ap.add_argument("--clients", type=int, default=1)
    ap.add_argument("--cores", type=int, default=1)
    ap.add_argument("--update", type=int, default=20)
    args = ap.parse_args()

    point = build_point(args)
    controller = SweepController(
        repetitions=1,
        spawner=make_spawner(args.spawner),
        env=dict(os.environ) if args.inherit_env else None,
    )
    runs = []
    try:
        for _ in range(max(1, args.repeats)):
            runs.append(controller.measure_once(args.binary, point))
    except SpawnError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    out = {
        "binary": args.binary,
        "arguments": point.arguments(),
        "repeats": len(runs),
        "incomplete": sum(1 for r in runs if not r.complete),
        "slots": [summarize([r.values[i] for r in runs]) for i in range(len(runs[0].values))],
        "host": host_name(),
        "python": platform.python_version(),
    }
    print(json.dumps(out))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
