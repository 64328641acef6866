"""Hook registration and chained execution of hooks by priority."""

from __future__ import annotations

import base64
import copy
import enum
import logging
from collections.abc import Callable, Mapping
from typing import Any

from gwplugins.utils import cast_to_primitive_types, verify

HookMethod = Callable[..., "dict[str, Any] | None"]

_LOG = logging.getLogger(__name__)


class HookName(enum.IntEnum):
    """Well-known hook names. Plugins may also register custom integer hooks."""

    UNSPECIFIED = 0
    ON_CONFIG_LOADED = 1
    ON_NEW_LOGGER = 2
    ON_NEW_POOL = 3
    ON_NEW_CLIENT = 4
    ON_NEW_PROXY = 5
    ON_NEW_SERVER = 6
    ON_SIGNAL = 7
    ON_RUN = 8
    ON_BOOTING = 9
    ON_BOOTED = 10
    ON_OPENING = 11
    ON_OPENED = 12
    ON_CLOSING = 13
    ON_CLOSED = 14
    ON_TRAFFIC = 15
    ON_TRAFFIC_FROM_CLIENT = 16
    ON_TRAFFIC_TO_SERVER = 17
    ON_TRAFFIC_FROM_SERVER = 18
    ON_TRAFFIC_TO_CLIENT = 19
    ON_SHUTDOWN = 20
    ON_TICK = 21
    ON_HOOK = 22

    def __str__(self) -> str:
        return f"HOOK_NAME_{self.name}"


class VerificationPolicy(str, enum.Enum):
    """What to do when a hook returns a payload that differs from its input."""

    PASS_DOWN = "passdown"
    IGNORE = "ignore"
    ABORT = "abort"
    REMOVE = "remove"


class TerminationPolicy(str, enum.Enum):
    """Whether a hook may stop the chain by setting ``terminate``."""

    CONTINUE = "continue"
    STOP = "stop"


class CastError(Exception):
    """Raised when hook arguments cannot be turned into a hook payload."""


def _hook_label(hook_name: int) -> str:
    return str(hook_name)


def _to_value(value: Any, path: str) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Mapping):
        return _to_struct(value, path)
    if isinstance(value, (list, tuple)):
        return [_to_value(item, f"{path}[{idx}]") for idx, item in enumerate(value)]
    raise CastError(f"invalid type {type(value).__name__} at {path or 'root'}")


def _to_struct(mapping: Mapping[Any, Any], path: str = "") -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in mapping.items():
        if not isinstance(key, str):
            raise CastError(f"invalid key {key!r} at {path or 'root'}")
        result[key] = _to_value(value, f"{path}.{key}" if path else key)
    return result


class HookRegistry:
    """Holds hook methods per hook name and priority, and runs them in a chain."""

    def __init__(
        self,
        verification: VerificationPolicy = VerificationPolicy.PASS_DOWN,
        termination: TerminationPolicy = TerminationPolicy.STOP,
        logger: logging.Logger | None = None,
    ) -> None:
        self._hooks: dict[int, dict[int, HookMethod]] = {}
        self.verification = verification
        self.termination = termination
        self.logger = logger or _LOG

    def hooks(self) -> dict[int, dict[int, HookMethod]]:
        """Return the hooks mapping: hook name to priority to method."""
        return self._hooks

    def add_hook(self, hook_name: int, priority: int, method: HookMethod) -> None:
        """Register ``method`` for ``hook_name`` at ``priority``, replacing any existing one."""
        by_priority = self._hooks.get(hook_name)
        if not by_priority:
            self._hooks[hook_name] = {priority: method}
            return
        if priority in by_priority:
            self.logger.warning(
                "Hook is replaced (hookName=%s, priority=%s)", _hook_label(hook_name), priority
            )
        by_priority[priority] = method

    def run(self, args: dict[str, Any] | None, hook_name: int, *opts: Any) -> dict[str, Any]:
        """Run the hooks of ``hook_name`` in priority order, chaining their results.

        The first hook receives the arguments; each later hook receives the last
        accepted result. Results that differ from the arguments are handled
        according to the verification policy. Extra ``opts`` are passed to every hook.
        """
        args = cast_to_primitive_types(args if args is not None else {})
        params: dict[str, Any] = _to_struct(args) if args else {}

        by_priority = self._hooks.get(hook_name, {})
        priorities = sorted(by_priority)

        return_val: dict[str, Any] | None = {}
        remove_list: list[int] = []

        for idx, priority in enumerate(priorities):
            method = by_priority[priority]
            payload = params if idx == 0 else return_val
            try:
                result = method(payload, *opts)
            except Exception as err:  # a failing hook is handled like an invalid result
                self.logger.error(
                    "Hook returned an error (hookName=%s, priority=%s): %s",
                    _hook_label(hook_name),
                    priority,
                    err,
                )
                result = None

            if verify(params, result) or self.verification == VerificationPolicy.PASS_DOWN:
                return_val = result
                if (
                    self.termination == TerminationPolicy.STOP
                    and result is not None
                    and result.get("terminate") is True
                ):
                    break
                continue

            if self.verification == VerificationPolicy.IGNORE:
                if idx == 0:
                    return_val = params
            elif self.verification == VerificationPolicy.ABORT:
                if idx == 0:
                    return args
                return copy.deepcopy(return_val or {})
            elif self.verification == VerificationPolicy.REMOVE:
                remove_list.append(priority)
                if idx == 0:
                    return_val = params
            else:
                return_val = result

        for priority in remove_list:
            by_priority.pop(priority, None)

        return copy.deepcopy(return_val or {})