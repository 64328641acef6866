import datetime
import os
import sys

import pytest

from gwplugins.utils import (
    Command,
    Duration,
    cast_to_primitive_types,
    new_command,
    verify,
)


def test_verify():
    assert verify({"test": "test"}, {"test": "test"}) is True


@pytest.mark.parametrize(
    "params, return_val",
    [
        ({"test": "test"}, {"test": "test", "test2": "test2"}),
        ({"test": "test", "test2": "test2"}, {"test": "test"}),
        ({"test": "test", "test2": "test2"}, {"test": "test", "test3": "test3"}),
    ],
)
def test_verify_fail(params, return_val):
    assert verify(params, return_val) is False


def test_verify_nil():
    assert verify(None, None) is True


def test_verify_nil_equals_empty():
    assert verify(None, {}) is True
    assert verify({"test": "test"}, None) is False


def test_new_command():
    cmd = new_command("/test", ["--test"], ["test=123"])
    assert cmd.path == "/test"
    assert cmd.args == ["/test", "--test"]
    assert cmd.env == ["test=123"]


def test_new_command_without_env_inherits():
    cmd = new_command("/test", [], [])
    assert cmd.env is None
    assert cmd.args == ["/test"]


def test_command_start_passes_args_and_env():
    env = ["GW_VALUE=hello"]
    if "SYSTEMROOT" in os.environ:
        env.append(f"SYSTEMROOT={os.environ['SYSTEMROOT']}")
    cmd = Command(
        path=sys.executable,
        args=[sys.executable, "-c", "import os, sys; print(os.environ['GW_VALUE'], sys.argv[1])", "arg"],
        env=env,
    )
    proc = cmd.start()
    out, _ = proc.communicate(timeout=30)
    assert proc.returncode == 0
    assert out.decode().split() == ["hello", "arg"]


def test_cast_to_primitive_types():
    actual = {
        "string": "test",
        "int": 123,
        "bool": True,
        "map": {"test": "test"},
        "duration": Duration(123),
        "array": ["test", 123, True, {"test": "test"}, Duration(123)],
    }
    expected = {
        "string": "test",
        "int": 123,
        "bool": True,
        "map": {"test": "test"},
        "duration": "123ns",
        "array": ["test", 123, True, {"test": "test"}, "123ns"],
    }
    assert cast_to_primitive_types(actual) == expected


def test_cast_nested_map_and_timedelta():
    casted = cast_to_primitive_types(
        {"outer": {"inner": Duration(123)}, "delta": datetime.timedelta(seconds=1.5)}
    )
    assert casted == {"outer": {"inner": "123ns"}, "delta": "1.5s"}


@pytest.mark.parametrize(
    "nanos, text",
    [
        (0, "0s"),
        (123, "123ns"),
        (1_000, "1\u00b5s"),
        (1_500_000_000, "1.5s"),
        (90_000_000_000, "1m30s"),
        (3_600_000_000_000, "1h0m0s"),
        (4_530_918_273_645, "1h15m30.918273645s"),
        (-123, "-123ns"),
    ],
)
def test_duration_string(nanos, text):
    assert str(Duration(nanos)) == text


def test_duration_from_timedelta():
    assert Duration.from_timedelta(datetime.timedelta(minutes=1, seconds=30)) == Duration(90_000_000_000)