import errno
import math
import os

import pytest

from harness import (
    HarnessError,
    MeasurementResult,
    PosixSpawner,
    ProcessHarness,
    SpawnError,
    SubprocessSpawner,
    make_spawner,
)
from sweep import ChannelPoint, LoadPoint
from tests.utils import (
    HAVE_POSIX_SPAWN,
    ScriptedSpawner,
    argv_echo_bench,
    printing_bench,
)

POINT = LoadPoint(cores=1, update=20)

SPAWNER_NAMES = [
    "subprocess",
    pytest.param(
        "posix",
        marks=pytest.mark.skipif(not HAVE_POSIX_SPAWN, reason="os.posix_spawn unavailable"),
    ),
]

pytestmark = pytest.mark.posix


def measure(program, spawner_name, point=POINT, **kwargs):
    with ProcessHarness(str(program), make_spawner(spawner_name), **kwargs) as test:
        test.run(point)
        child = test.child
        fd = child.fd
        result = test.wait()
    return result, child, fd


def assert_released(child, fd):
    assert child.closed
    with pytest.raises(OSError) as excinfo:
        os.fstat(fd)
    assert excinfo.value.errno == errno.EBADF
    assert child.reaped
    with pytest.raises(ChildProcessError):
        os.waitpid(child.pid, os.WNOHANG)


@pytest.mark.parametrize("spawner_name", SPAWNER_NAMES)
def test_three_values(tmp_path, spawner_name):
    bench = printing_bench(tmp_path, "1", "2", "3")
    result, child, fd = measure(bench, spawner_name)
    assert result.values == (1.0, 2.0, 3.0)
    assert result.filled == 3
    assert result.complete
    assert result.status == 0
    assert_released(child, fd)


@pytest.mark.parametrize("spawner_name", SPAWNER_NAMES)
def test_early_end_of_stream_keeps_default_slots(tmp_path, spawner_name):
    bench = printing_bench(tmp_path, "1", "2")
    result, child, fd = measure(bench, spawner_name)
    assert result.values == (1.0, 2.0, 0.0)
    assert result.filled == 2
    assert not result.complete
    assert result.read_error is None
    assert_released(child, fd)


@pytest.mark.parametrize("spawner_name", SPAWNER_NAMES)
def test_stdout_and_stderr_fragments_are_merged(fake_bench, spawner_name):
    bench = fake_bench(
        """
        for fd, part in ((1, b"12"), (2, b".5\\n3"), (1, b",25\\n"), (2, b"7\\n")):
            os.write(fd, part)
            time.sleep(0.05)
        """
    )
    result, child, fd = measure(bench, spawner_name)
    assert result.values == (12.5, 3.25, 7.0)
    assert_released(child, fd)


@pytest.mark.parametrize("spawner_name", SPAWNER_NAMES)
def test_extra_output_is_drained_not_recorded(fake_bench, spawner_name):
    # far more than a pipe buffer after the values
    bench = fake_bench(
        """
        os.write(1, b"1\\n2\\n3\\n4\\n5\\n")
        for _ in range(64):
            os.write(2, b"x" * 8192)
        """
    )
    result, child, fd = measure(bench, spawner_name)
    assert result.values == (1.0, 2.0, 3.0)
    assert result.status == 0
    assert_released(child, fd)


@pytest.mark.parametrize("spawner_name", SPAWNER_NAMES)
def test_arguments_are_decimal_positional_flags(tmp_path, spawner_name):
    bench = argv_echo_bench(tmp_path)
    result, *_ = measure(bench, spawner_name, point=ChannelPoint(mode=2, servers=3, clients=16))
    assert result.values == (2.0, 3.0, 16.0)
    harness = ProcessHarness(str(bench))
    assert harness.command(LoadPoint(cores=4, update=50)) == [
        str(bench), "-n", "4", "-u", "50", "-p", "25", "-o",
    ]


@pytest.mark.parametrize("spawner_name", SPAWNER_NAMES)
def test_child_environment_is_empty_unless_given(fake_bench, monkeypatch, spawner_name):
    monkeypatch.setenv("SWEEPBENCH_MARKER", "7")
    bench = fake_bench(
        """
        marker = os.environ.get("SWEEPBENCH_MARKER", "0")
        os.write(1, (marker + "\\n1\\n2\\n").encode())
        """
    )
    result, *_ = measure(bench, spawner_name)
    assert result.values[0] == 0.0
    result, *_ = measure(bench, spawner_name, env=dict(os.environ))
    assert result.values[0] == 7.0


def test_poisoned_lines_take_a_slot_by_default(tmp_path):
    bench = printing_bench(tmp_path, "Running...", "1", "2", "3")
    result, *_ = measure(bench, "subprocess")
    assert result.values == (None, 1.0, 2.0)
    assert result.poisoned == 1
    arr = result.as_array()
    assert math.isnan(arr[0]) and list(arr[1:]) == [1.0, 2.0]


def test_skip_poisoned_ignores_text_lines(tmp_path):
    bench = printing_bench(tmp_path, "** limiting put rate", "1", "Net latency: 3 ns", "2", "3")
    result, *_ = measure(bench, "subprocess", skip_poisoned=True)
    assert result.values == (1.0, 2.0, 3.0)
    assert result.complete


@pytest.mark.parametrize("spawner_name", SPAWNER_NAMES)
def test_missing_binary_fails_to_spawn(tmp_path, spawner_name):
    with ProcessHarness(str(tmp_path / "missing"), make_spawner(spawner_name)) as test:
        with pytest.raises(SpawnError):
            test.run(POINT)
        assert test.child is None


@pytest.mark.parametrize("spawner_name", SPAWNER_NAMES)
def test_non_executable_binary_fails_to_spawn(tmp_path, spawner_name):
    bench = printing_bench(tmp_path, "1", "2", "3")
    bench.chmod(0o644)
    with pytest.raises(SpawnError):
        with ProcessHarness(str(bench), make_spawner(spawner_name)) as test:
            test.run(POINT)


def test_read_error_keeps_partial_result_and_reaps(capsys):
    spawner = ScriptedSpawner([[b"1\n2", OSError(5, "Input/output error")]])
    with ProcessHarness("bench", spawner) as test:
        test.run(POINT)
        result = test.wait()
    child = spawner.children[0]
    assert result.values == (1.0, 0.0, 0.0)
    assert result.filled == 1
    assert "Input/output error" in result.read_error
    assert not result.complete
    assert child.reaped and child.closed
    assert "WARNING: Unable to read pipe" in capsys.readouterr().err


def test_several_lines_in_one_read_and_split_values():
    spawner = ScriptedSpawner([[b"10\n2", b"0.5\n30\n40\n"]])
    with ProcessHarness("bench", spawner) as test:
        test.run(POINT)
        result = test.wait()
    assert result.values == (10.0, 20.5, 30.0)
    # trailing "40" is drained, then end-of-stream
    assert spawner.children[0].reads == 3


def test_close_without_wait_reaps_child():
    spawner = ScriptedSpawner([[b"1\n"]])
    test = ProcessHarness("bench", spawner)
    test.run(POINT)
    test.close()
    child = spawner.children[0]
    assert child.closed and child.reaped


def test_protocol_misuse_raises():
    test = ProcessHarness("bench", ScriptedSpawner([[b"1\n"], [b"1\n"]]))
    with pytest.raises(HarnessError):
        test.wait()
    test.run(POINT)
    with pytest.raises(HarnessError):
        test.run(POINT)
    test.close()


def test_make_spawner():
    assert isinstance(make_spawner("subprocess"), SubprocessSpawner)
    assert isinstance(make_spawner("posix"), PosixSpawner)
    with pytest.raises(ValueError):
        make_spawner("fork-bomb")


def test_default_result_is_zeroed():
    result = MeasurementResult()
    assert result.values == (0.0, 0.0, 0.0)
    assert not result.complete
    assert result.poisoned == 0


def test_overlong_number_line_stays_in_its_slot():
    spawner = ScriptedSpawner([[b"9" * 200, b"9" * 200 + b"\n2\n3\n"]])
    with ProcessHarness("bench", spawner) as test:
        test.run(POINT)
        result = test.wait()
    assert result.values == (math.inf, 2.0, 3.0)
    assert result.complete


@pytest.mark.skipif(not os.path.isdir("/proc/self/fd"), reason="needs /proc/self/fd")
@pytest.mark.parametrize("spawner_name", SPAWNER_NAMES)
def test_repeated_runs_leave_no_descriptors_open(tmp_path, spawner_name):
    bench = printing_bench(tmp_path, "1", "2", "3", "4")
    missing = str(tmp_path / "missing")
    before = len(os.listdir("/proc/self/fd"))
    for _ in range(5):
        measure(bench, spawner_name)
        with ProcessHarness(missing, make_spawner(spawner_name)) as test:
            with pytest.raises(SpawnError):
                test.run(POINT)
    assert len(os.listdir("/proc/self/fd")) == before
