"""Helpers for running plugin hooks and starting plugin processes."""

from __future__ import annotations

import datetime
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Any

_MICROSECOND = 1_000
_MILLISECOND = 1_000_000
_SECOND = 1_000_000_000


def _split_fraction(value: int, precision: int) -> tuple[int, str]:
    """Divide by 10**precision, rendering the remainder without trailing zeros."""
    whole, frac = divmod(value, 10**precision)
    if precision == 0 or frac == 0:
        return whole, ""
    return whole, "." + str(frac).rjust(precision, "0").rstrip("0")


class Duration(int):
    """A span of time in nanoseconds, rendered like ``1h2m3.5s``."""

    @classmethod
    def from_timedelta(cls, delta: datetime.timedelta) -> Duration:
        return cls(
            (delta.days * 86_400 + delta.seconds) * _SECOND + delta.microseconds * _MICROSECOND
        )

    def __str__(self) -> str:
        total = abs(int(self))
        if total < _SECOND:
            if total == 0:
                return "0s"
            if total < _MICROSECOND:
                precision, unit = 0, "ns"
            elif total < _MILLISECOND:
                precision, unit = 3, "\u00b5s"
            else:
                precision, unit = 6, "ms"
            whole, frac = _split_fraction(total, precision)
            text = f"{whole}{frac}{unit}"
        else:
            whole, frac = _split_fraction(total, 9)
            text = f"{whole % 60}{frac}s"
            minutes = whole // 60
            if minutes:
                text = f"{minutes % 60}m{text}"
                hours = minutes // 60
                if hours:
                    text = f"{hours}h{text}"
        return "-" + text if self < 0 else text

    def __repr__(self) -> str:
        return f"Duration({int(self)})"


def _to_primitive(value: Any) -> Any:
    if isinstance(value, Duration):
        return str(value)
    if isinstance(value, datetime.timedelta):
        return str(Duration.from_timedelta(value))
    return value


def verify(params: dict[str, Any] | None, return_val: dict[str, Any] | None) -> bool:
    """Return True if both hook payloads hold the same keys and values."""
    return (params or {}) == (return_val or {})


@dataclass
class Command:
    """A prepared external command: executable path, argv and environment."""

    path: str
    args: list[str] = field(default_factory=list)
    env: list[str] | None = None

    def _environment(self) -> dict[str, str] | None:
        if self.env is None:
            return None
        pairs = (item.partition("=") for item in self.env)
        return {name: value for name, _, value in pairs}

    def start(self) -> subprocess.Popen:
        """Start the command with piped output and return the running process."""
        return subprocess.Popen(
            self.args,
            executable=self.path,
            env=self._environment(),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )


def new_command(cmd: str, args: list[str] | None, env: list[str] | None) -> Command:
    """Build a command; a bare name is looked up on PATH, an empty env inherits the parent's."""
    path = cmd
    if os.path.basename(cmd) == cmd:
        path = shutil.which(cmd) or cmd
    return Command(path=path, args=[cmd, *(args or [])], env=list(env) if env else None)


def cast_to_primitive_types(args: dict[str, Any]) -> dict[str, Any]:
    """Replace durations with their string form, in place, and return the mapping.

    Nested mappings are handled recursively; lists are handled one level deep.
    """
    for key, value in args.items():
        if isinstance(value, dict):
            args[key] = cast_to_primitive_types(value)
        elif isinstance(value, list):
            args[key] = [_to_primitive(item) for item in value]
        else:
            args[key] = _to_primitive(value)
    return args