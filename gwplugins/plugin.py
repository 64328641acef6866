"""A plugin handle: identity, metadata and the client that runs it."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

_SERVICE_METHOD = "get_plugin_config"


class PluginError(Exception):
    """Base class for plugin errors."""


class PluginStartError(PluginError):
    """Raised when a plugin process cannot be started."""


class RPCClientError(PluginError):
    """Raised when the RPC client of a plugin cannot be obtained."""


class DispenseError(PluginError):
    """Raised when a plugin cannot be dispensed."""


class PluginNotReadyError(PluginError):
    """Raised when a dispensed plugin does not offer the plugin service."""


class PingError(PluginError):
    """Raised when a plugin does not answer a ping."""


@dataclass(frozen=True)
class Identifier:
    """What identifies a plugin."""

    name: str = ""
    version: str = ""
    remote_url: str = ""
    checksum: str = ""


@dataclass
class Plugin:
    """A plugin and the client that controls its process.

    The client offers ``start()`` returning an address, ``kill()`` and
    ``client()`` returning an RPC client with ``dispense(name)`` and ``ping()``.
    """

    id: Identifier = field(default_factory=Identifier)
    priority: int = 0
    enabled: bool = False
    local_path: str = ""
    args: list[str] = field(default_factory=list)
    env: list[str] = field(default_factory=list)
    requires: list[Identifier] = field(default_factory=list)
    description: str = ""
    license: str = ""
    project_url: str = ""
    authors: list[str] = field(default_factory=list)
    hooks: list[Any] = field(default_factory=list)
    config: dict[str, str] = field(default_factory=dict)
    client: Any = None

    def _rpc_client(self) -> Any:
        if self.client is None:
            raise RPCClientError("plugin has no client")
        try:
            return self.client.client()
        except Exception as err:
            raise RPCClientError("failed to get RPC client") from err

    def start(self) -> Any:
        """Start the plugin process and return its address."""
        if self.client is None:
            raise PluginStartError("plugin has no client")
        try:
            return self.client.start()
        except Exception as err:
            raise PluginStartError("failed to start plugin") from err

    def stop(self) -> None:
        """Kill the plugin process."""
        if self.client is not None:
            self.client.kill()

    def dispense(self) -> Any:
        """Return the plugin's service client."""
        rpc = self._rpc_client()
        try:
            raw = rpc.dispense(self.id.name)
        except Exception as err:
            raise DispenseError("failed to dispense plugin") from err
        if callable(getattr(raw, _SERVICE_METHOD, None)):
            return raw
        raise PluginNotReadyError("plugin is not ready")

    def ping(self) -> None:
        """Check that the plugin answers."""
        rpc = self._rpc_client()
        try:
            rpc.ping()
        except Exception as err:
            raise PingError("failed to ping plugin") from err