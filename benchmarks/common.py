"""Options and error handling shared by the sweep drivers."""

import argparse
import os
import sys
from pathlib import Path
from typing import Callable

from harness import SPAWNERS, HarnessError, make_spawner
from sweep import DEFAULT_POISON_POLICY, POISON_POLICIES, SweepController
from utils import DEFAULT_REPETITIONS, EnvironmentFault, env_flag, env_int, env_str
from utils.prof import PROFILER


def add_common_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--reps",
        type=int,
        default=env_int("SWEEPBENCH_REPS", DEFAULT_REPETITIONS),
        help="Repetitions averaged per sweep point",
    )
    p.add_argument(
        "--out-dir",
        default=env_str("SWEEPBENCH_OUT_DIR", "."),
        help="Directory receiving the .dat tables",
    )
    p.add_argument(
        "--spawner",
        choices=sorted(SPAWNERS),
        default=env_str("SWEEPBENCH_SPAWNER", "subprocess"),
        help="Process spawning backend",
    )
    p.add_argument(
        "--poison",
        choices=POISON_POLICIES,
        default=env_str("SWEEPBENCH_POISON", DEFAULT_POISON_POLICY),
        help="How unparsable result lines enter the average",
    )
    p.add_argument(
        "--skip-text-lines",
        action="store_true",
        default=env_flag("SWEEPBENCH_SKIP_TEXT"),
        help="Ignore non-numeric output lines instead of giving them a result slot",
    )
    p.add_argument(
        "--inherit-env",
        action="store_true",
        help="Pass this process' environment to the measured binary (default: empty)",
    )
    p.add_argument("--profile-json", default="", help="Optional path to write spawn/wait timings")


def check_common_arguments(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    # argparse does not check env-derived defaults against choices
    if args.reps < 1:
        parser.error("--reps must be at least 1")
    if args.spawner not in SPAWNERS:
        parser.error(f"unknown spawner '{args.spawner}' (choose from {', '.join(sorted(SPAWNERS))})")
    if args.poison not in POISON_POLICIES:
        parser.error(f"unknown poison policy '{args.poison}' (choose from {', '.join(POISON_POLICIES)})")


def make_controller(args: argparse.Namespace) -> SweepController:
    return SweepController(
        repetitions=args.reps,
        spawner=make_spawner(args.spawner),
        env=dict(os.environ) if args.inherit_env else None,
        skip_poisoned=args.skip_text_lines,
        policy=args.poison,
    )


def run_guarded(args: argparse.Namespace, sweep: Callable[[SweepController, Path], None]) -> int:
    """Run ``sweep`` and turn operational faults into exit code 1."""
    controller = make_controller(args)
    out_dir = Path(args.out_dir)
    if args.profile_json:
        PROFILER.enable()
    try:
        sweep(controller, out_dir)
    except EnvironmentFault as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except HarnessError as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"ERROR: Unable to write file '{e.filename}': {e.strerror}", file=sys.stderr)
        return 1
    finally:
        if args.profile_json:
            PROFILER.dump_json(args.profile_json)
    if controller.incomplete:
        print(
            f"WARNING: {controller.incomplete}/{controller.runs} runs reported fewer than three values",
            file=sys.stderr,
        )
    return 0
