import os

import pytest

from utils.prof import PROFILER


def pytest_configure(config):
    # Count real child processes started through the fake_bench fixture
    config._sweepbench_metrics = {"benches": 0}


def pytest_collection_modifyitems(config, items):
    if os.name == "posix":
        return
    skip = pytest.mark.skip(reason="requires a POSIX host to spawn fake benchmark scripts")
    for item in items:
        if "posix" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def fake_bench(tmp_path, request):
    """Factory writing executable fake benchmark scripts into ``tmp_path``."""
    from tests.utils import write_fake_bench

    metrics = request.config._sweepbench_metrics

    def make(body: str, name: str = "fake_bench"):
        metrics["benches"] += 1
        return write_fake_bench(tmp_path, body, name=name)

    return make


@pytest.fixture(autouse=True)
def _isolated_profiler():
    enabled = PROFILER.enabled
    PROFILER.clear()
    yield
    PROFILER.enabled = enabled
    PROFILER.clear()


def pytest_terminal_summary(terminalreporter, exitstatus, config):
    metrics = getattr(config, "_sweepbench_metrics", None)
    if not metrics or not metrics.get("benches"):
        return
    terminalreporter.write_sep("=", f"sweepbench: {metrics['benches']} fake benchmark binaries written")
