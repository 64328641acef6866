"""Usage report messages and the length rules their fields must satisfy."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field


class ValidationError(Exception):
    """One field of a message breaks one of its rules."""

    def __init__(
        self,
        message_name: str,
        field: str,
        reason: str,
        cause: BaseException | None = None,
        key: bool = False,
    ) -> None:
        self.message_name = message_name
        self.field = field
        self.reason = reason
        self.cause = cause
        self.key = key
        super().__init__(str(self))

    @property
    def error_name(self) -> str:
        """Name of the error kind, such as ``PluginValidationError``."""
        return f"{self.message_name}ValidationError"

    def __str__(self) -> str:
        caused = f" | caused by: {self.cause}" if self.cause is not None else ""
        key = "key for " if self.key else ""
        return f"invalid {key}{self.message_name}.{self.field}: {self.reason}{caused}"


class MultiValidationError(Exception):
    """Every rule violation found in one message."""

    def __init__(self, errors: list[BaseException]) -> None:
        self.errors = list(errors)
        super().__init__(str(self))

    def __str__(self) -> str:
        return "; ".join(str(err) for err in self.errors)


def _min_length(value: str, minimum: int) -> bool:
    return len(value) >= minimum


def _raise_all(errors: list[BaseException]) -> None:
    if errors:
        raise MultiValidationError(errors)


@dataclass
class UsageReportPlugin:
    """A plugin as described in a usage report."""

    name: str = ""
    version: str = ""
    checksum: str = ""

    _MESSAGE = "Plugin"

    def _violations(self) -> Iterator[ValidationError]:
        if not _min_length(self.name, 5):
            yield ValidationError(self._MESSAGE, "Name", "value length must be at least 5 runes")
        if not _min_length(self.version, 5):
            yield ValidationError(
                self._MESSAGE, "Version", "value length must be at least 5 runes"
            )
        if not 5 <= len(self.checksum) <= 64:
            yield ValidationError(
                self._MESSAGE,
                "Checksum",
                "value length must be between 5 and 64 runes, inclusive",
            )

    def validate(self) -> None:
        """Raise the first rule violation found, if any."""
        for err in self._violations():
            raise err

    def validate_all(self) -> None:
        """Raise a MultiValidationError holding every rule violation, if any."""
        _raise_all(list(self._violations()))


@dataclass
class UsageReportRequest:
    """A usage report sent by a running service."""

    version: str = ""
    runtime_version: str = ""
    goos: str = ""
    goarch: str = ""
    service: str = ""
    dev_mode: bool = False
    plugins: list[UsageReportPlugin] = field(default_factory=list)

    _MESSAGE = "UsageReportRequest"

    def _violations(self, collect_all: bool) -> Iterator[ValidationError]:
        if not _min_length(self.version, 5):
            yield ValidationError(
                self._MESSAGE, "Version", "value length must be at least 5 runes"
            )
        for label, value in (
            ("RuntimeVersion", self.runtime_version),
            ("Goos", self.goos),
            ("Goarch", self.goarch),
            ("Service", self.service),
        ):
            if not _min_length(value, 1):
                yield ValidationError(
                    self._MESSAGE, label, "value length must be at least 1 runes"
                )
        for idx, plugin in enumerate(self.plugins):
            try:
                if collect_all:
                    plugin.validate_all()
                else:
                    plugin.validate()
            except (ValidationError, MultiValidationError) as err:
                yield ValidationError(
                    self._MESSAGE,
                    f"Plugins[{idx}]",
                    "embedded message failed validation",
                    cause=err,
                )

    def validate(self) -> None:
        """Raise the first rule violation found, if any."""
        for err in self._violations(collect_all=False):
            raise err

    def validate_all(self) -> None:
        """Raise a MultiValidationError holding every rule violation, if any."""
        _raise_all(list(self._violations(collect_all=True)))