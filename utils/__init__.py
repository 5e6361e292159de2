import os
import socket
from typing import List, Optional

# Number of full spawn/measure/reap cycles averaged for every sweep point.
DEFAULT_REPETITIONS = 5

# Number of newline-terminated values a measured binary reports.  The
# harness never records more than this many values per run.
MEASUREMENT_SLOTS = 3

# Size of each read issued on the child's output pipe.  Values routinely
# straddle read boundaries; the parser keeps its state across reads.
READ_SIZE = 256

# Widest decimal argument (in digits) the harness will put on a child's
# command line.  Anything wider is a bug in the sweep definition.
DECIMAL_WIDTH = 15

# Host names are truncated to this many characters when building output
# file names.
HOSTNAME_MAX = 16

_FALSE_VALUES = ("0", "", "false", "False", "no")


class EnvironmentFault(RuntimeError):
    """The host could not report a property the sweep depends on."""


def env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip() not in _FALSE_VALUES


def env_str(name: str, default: str) -> str:
    raw = os.getenv(name, "").strip()
    return raw or default


def decimal_text(value: int, width: int = DECIMAL_WIDTH) -> str:
    """Return ``value`` as unsigned decimal ASCII.

    Raises ``ValueError`` for negative values or when the representation
    needs more than ``width`` digits.
    """
    if isinstance(value, bool) or int(value) != value:
        raise ValueError(f"not an integer: {value!r}")
    value = int(value)
    if value < 0:
        raise ValueError(f"negative value {value} has no unsigned decimal form")
    digits = str(value)
    if len(digits) > width:
        raise ValueError(f"{value} needs {len(digits)} digits, limit is {width}")
    return digits


def parse_int_list(value: str) -> List[int]:
    """Return a list of integers parsed from a comma-separated string."""
    return [int(x) for x in value.strip("[]").split(",") if x.strip()]


def host_name(limit: int = HOSTNAME_MAX) -> str:
    """Return the host name used to prefix output files."""
    try:
        name = socket.gethostname()
    except OSError as e:
        raise EnvironmentFault(f"Unable to get the host name: {e}") from e
    if not name:
        raise EnvironmentFault("Unable to get the host name")
    return name[:limit]


def processor_count(override: Optional[int] = None) -> int:
    """Return the number of online processors.

    ``SWEEPBENCH_CPUS`` (or ``override``) replaces the detected count, which
    keeps sweeps reproducible across machines.
    """
    if override is None:
        override = env_int("SWEEPBENCH_CPUS", 0)
    if override > 0:
        return override
    count = os.cpu_count()
    if not count:
        raise EnvironmentFault("Unable to determine the processor count")
    return count


__all__ = [
    "DEFAULT_REPETITIONS",
    "MEASUREMENT_SLOTS",
    "READ_SIZE",
    "DECIMAL_WIDTH",
    "HOSTNAME_MAX",
    "EnvironmentFault",
    "env_int",
    "env_flag",
    "env_str",
    "decimal_text",
    "parse_int_list",
    "host_name",
    "processor_count",
]
