import json
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict

from utils import env_flag


@dataclass
class _Section:
    total_s: float = 0.0
    count: int = 0
    worst_s: float = 0.0

    def add(self, elapsed: float) -> None:
        self.total_s += elapsed
        self.count += 1
        self.worst_s = max(self.worst_s, elapsed)


class Profiler:
    """Wall-clock timing of harness sections (``spawn``, ``wait``).

    Disabled unless ``SWEEPBENCH_PROFILE=1`` is set or a driver calls
    :meth:`enable`; a disabled profiler only costs one attribute check::

        from utils.prof import PROFILER
        with PROFILER.section("spawn"):
            ...
    """

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled
        self._sections: Dict[str, _Section] = {}

    def enable(self) -> None:
        self.enabled = True

    def clear(self) -> None:
        self._sections.clear()

    @contextmanager
    def section(self, name: str):
        if not self.enabled:
            yield
            return
        start = time.perf_counter()
        try:
            yield
        finally:
            self._sections.setdefault(name, _Section()).add(time.perf_counter() - start)

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        out: Dict[str, Dict[str, float]] = {}
        for name, sec in self._sections.items():
            avg = sec.total_s / sec.count if sec.count else 0.0
            out[name] = {
                "total_s": sec.total_s,
                "count": sec.count,
                "avg_ms": avg * 1000.0,
                "max_ms": sec.worst_s * 1000.0,
            }
        return out

    def dump_json(self, path: str) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.snapshot(), f, indent=2, sort_keys=True)


PROFILER = Profiler(enabled=env_flag("SWEEPBENCH_PROFILE"))
