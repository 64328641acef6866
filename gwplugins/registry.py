"""The plugin registry: loads plugins, keeps them by identity and wires their hooks."""

from __future__ import annotations

import binascii
import dataclasses
import enum
import hashlib
import logging
import queue
import subprocess
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import semver

from gwplugins.hooks import HookName, HookRegistry, TerminationPolicy, VerificationPolicy
from gwplugins.plugin import Identifier, Plugin, PluginError
from gwplugins.pool import Pool, PoolError
from gwplugins.utils import Command, new_command

PLUGIN_PRIORITY_START = 1000
SHA256_SIZE = 32
_DEFAULT_START_TIMEOUT = 60.0
_KILL_GRACE = 5.0

ClientFactory = Callable[[Command, "bytes | None", float], Any]
RPCConnector = Callable[[Any], Any]


class CompatibilityPolicy(str, enum.Enum):
    """What to do when a plugin's requirements are not met."""

    STRICT = "strict"
    LOOSE = "loose"


class AcceptancePolicy(str, enum.Enum):
    """Whether hooks that are not well known are registered."""

    ACCEPT = "accept"
    REJECT = "reject"


@dataclass
class PluginConfig:
    """How a plugin is listed in the configuration."""

    name: str
    enabled: bool = False
    local_path: str = ""
    args: list[str] = field(default_factory=list)
    env: list[str] = field(default_factory=list)
    checksum: str = ""


def _parse_handshake(line: str) -> Any:
    parts = line.split("|")
    if len(parts) < 4:
        raise ValueError(f"invalid plugin handshake: {line!r}")
    network, address = parts[2], parts[3]
    if len(parts) >= 5 and parts[4] and parts[4] != "grpc":
        raise ValueError(f"unsupported plugin protocol: {parts[4]!r}")
    if network == "tcp":
        host, _, port = address.rpartition(":")
        return host, int(port)
    if network == "unix":
        return address
    raise ValueError(f"unsupported plugin network: {network!r}")


class _ProcessClient:
    """Runs a plugin process, verifies its checksum and reads its handshake line."""

    def __init__(
        self,
        command: Command,
        checksum: bytes | None,
        start_timeout: float,
        connector: RPCConnector | None,
        logger: logging.Logger,
    ) -> None:
        self._command = command
        self._checksum = checksum
        self._start_timeout = start_timeout if start_timeout > 0 else _DEFAULT_START_TIMEOUT
        self._connector = connector
        self._logger = logger
        self._process: subprocess.Popen | None = None
        self._address: Any = None
        self._rpc: Any = None

    def _verify_checksum(self) -> None:
        digest = hashlib.sha256()
        with open(self._command.path, "rb") as handle:
            for chunk in iter(lambda: handle.read(65536), b""):
                digest.update(chunk)
        if digest.digest() != self._checksum:
            raise ValueError("plugin checksum mismatch")

    def _drain_stderr(self, process: subprocess.Popen) -> None:
        for raw in process.stderr:
            self._logger.debug("plugin: %s", raw.decode("utf-8", "replace").rstrip())

    def start(self) -> Any:
        if self._address is not None:
            return self._address
        if self._checksum is not None:
            self._verify_checksum()
        process = self._command.start()
        self._process = process
        threading.Thread(target=self._drain_stderr, args=(process,), daemon=True).start()
        lines: queue.Queue[bytes] = queue.Queue(maxsize=1)
        threading.Thread(
            target=lambda: lines.put(process.stdout.readline()), daemon=True
        ).start()
        try:
            raw = lines.get(timeout=self._start_timeout)
        except queue.Empty:
            self.kill()
            raise TimeoutError("timed out waiting for plugin handshake") from None
        line = raw.decode("utf-8", "replace").strip()
        if not line:
            self.kill()
            raise RuntimeError("plugin exited before handshake")
        try:
            self._address = _parse_handshake(line)
        except ValueError:
            self.kill()
            raise
        return self._address

    def kill(self) -> None:
        process = self._process
        if process is None or process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=_KILL_GRACE)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def client(self) -> Any:
        if self._address is None:
            raise RuntimeError("plugin is not started")
        if self._connector is None:
            raise RuntimeError("no RPC connector configured")
        if self._rpc is None:
            self._rpc = self._connector(self._address)
        return self._rpc


def _parse_version(text: str) -> semver.Version:
    return semver.Version.parse(text.strip().lstrip("vV"), optional_minor_and_patch=True)


def _string(value: Any) -> str:
    return value if isinstance(value, str) else ""


_IDENTIFIER_FIELDS = {
    "name": "name",
    "version": "version",
    "remoteurl": "remote_url",
    "checksum": "checksum",
}


def _decode_identifiers(items: list[Any]) -> list[Identifier]:
    result = []
    for item in items:
        if not isinstance(item, Mapping):
            raise ValueError(f"expected a map, got {type(item).__name__}")
        values: dict[str, str] = {}
        for key, value in item.items():
            target = _IDENTIFIER_FIELDS.get(str(key).lower())
            if target is None:
                continue
            if not isinstance(value, str):
                raise ValueError(f"field {key!r} must be a string")
            values[target] = value
        result.append(Identifier(**values))
    return result


def _decode_strings(items: list[Any]) -> list[str]:
    if not all(isinstance(item, str) for item in items):
        raise ValueError("expected a list of strings")
    return list(items)


def _decode_hooks(items: list[Any]) -> list[int]:
    hooks: list[int] = []
    for item in items:
        if isinstance(item, bool) or not isinstance(item, (int, float)):
            raise ValueError(f"invalid hook value {item!r}")
        number = int(item)
        try:
            hooks.append(HookName(number))
        except ValueError:
            hooks.append(number)
    return hooks


class Registry(HookRegistry):
    """Holds plugins by identifier together with the hooks they register."""

    def __init__(
        self,
        compatibility: CompatibilityPolicy = CompatibilityPolicy.LOOSE,
        verification: VerificationPolicy = VerificationPolicy.PASS_DOWN,
        acceptance: AcceptancePolicy = AcceptancePolicy.ACCEPT,
        termination: TerminationPolicy = TerminationPolicy.STOP,
        logger: logging.Logger | None = None,
        dev_mode: bool = False,
        *,
        client_factory: ClientFactory | None = None,
        rpc_connector: RPCConnector | None = None,
    ) -> None:
        super().__init__(verification=verification, termination=termination, logger=logger)
        self._plugins = Pool()
        self.compatibility = compatibility
        self.acceptance = acceptance
        self.dev_mode = dev_mode
        self.rpc_connector = rpc_connector
        self._client_factory = client_factory or self._default_client

    def _default_client(
        self, command: Command, checksum: bytes | None, start_timeout: float
    ) -> _ProcessClient:
        return _ProcessClient(command, checksum, start_timeout, self.rpc_connector, self.logger)

    def add(self, plugin: Plugin) -> bool:
        """Add a plugin; return True if one was already stored under its identifier."""
        try:
            _, loaded = self._plugins.get_or_put(plugin.id, plugin)
        except PoolError as err:
            self.logger.error("Failed to add plugin to registry: %s", err)
            return False
        return loaded

    def get(self, plugin_id: Identifier) -> Plugin | None:
        """Return the plugin stored under ``plugin_id``, or None."""
        plugin = self._plugins.get(plugin_id)
        return plugin if isinstance(plugin, Plugin) else None

    def list(self) -> list[Identifier]:
        """Return the identifiers of all plugins."""
        return [key for key in self._plugins.keys() if isinstance(key, Identifier)]

    def size(self) -> int:
        """Return the number of plugins."""
        return self._plugins.size()

    def exists(self, name: str, version: str, remote_url: str) -> bool:
        """Return True if a plugin with this name and URL has at least ``version``."""
        for plugin_id in self.list():
            if plugin_id.name != name or plugin_id.remote_url != remote_url:
                continue
            try:
                supplied = _parse_version(version)
            except ValueError as err:
                self.logger.error("Failed to parse supplied plugin version: %s", err)
                return False
            try:
                registered = _parse_version(plugin_id.version)
            except ValueError as err:
                self.logger.error("Failed to parse plugin version in registry: %s", err)
                return False
            if supplied.compare(registered) <= 0:
                return True
            self.logger.debug(
                "Supplied plugin version is greater than the version in registry "
                "(name=%s, version=%s)",
                name,
                version,
            )
            return False
        return False

    def for_each(self, function: Callable[[Identifier, Plugin], Any]) -> None:
        """Call ``function(identifier, plugin)`` for every plugin."""

        def visit(key: Any, value: Any) -> bool:
            if isinstance(key, Identifier) and isinstance(value, Plugin):
                function(key, value)
            return True

        self._plugins.for_each(visit)

    def remove(self, plugin_id: Identifier) -> None:
        """Remove the plugin's hooks and then the plugin itself."""
        plugin = self.get(plugin_id)
        if plugin is None:
            raise KeyError(plugin_id)
        for by_priority in self.hooks().values():
            by_priority.pop(plugin.priority, None)
        self._plugins.remove(plugin_id)

    def shutdown(self) -> None:
        """Stop every plugin and remove it from the registry."""

        def stop(plugin_id: Identifier, plugin: Plugin) -> None:
            plugin.stop()
            self.remove(plugin_id)

        self.for_each(stop)

    def load_plugins(self, plugins: list[PluginConfig], start_timeout: float) -> None:
        """Start, inspect and register every enabled plugin of the configuration.

        A plugin's priority is its position in the list plus ``PLUGIN_PRIORITY_START``.
        Plugins that cannot be loaded are skipped.
        """
        for index, cfg in enumerate(plugins):
            self.logger.debug("Loading plugin (name=%s)", cfg.name)
            plugin = Plugin(
                id=Identifier(name=cfg.name, checksum=cfg.checksum),
                enabled=cfg.enabled,
                local_path=cfg.local_path,
                args=list(cfg.args),
                env=list(cfg.env),
            )
            if plugin.enabled:
                self._load_plugin(plugin, index, start_timeout)
            else:
                self.logger.debug("Plugin is disabled (name=%s)", plugin.id.name)

    def _load_plugin(self, plugin: Plugin, index: int, start_timeout: float) -> None:
        name = plugin.id.name
        if not plugin.local_path:
            self.logger.debug("Local file of the plugin doesn't exist or is not set (name=%s)", name)
            return

        checksum: bytes | None = None
        if not self.dev_mode:
            if not plugin.id.checksum:
                self.logger.debug("Checksum of plugin doesn't exist or is not set (name=%s)", name)
                return
            try:
                checksum = binascii.unhexlify(plugin.id.checksum)
            except (binascii.Error, ValueError) as err:
                self.logger.debug("Failed to decode checksum (name=%s): %s", name, err)
                return
            if len(checksum) != SHA256_SIZE:
                self.logger.debug("Invalid checksum length (name=%s)", name)
                return

        plugin.priority = PLUGIN_PRIORITY_START + index
        command = new_command(plugin.local_path, plugin.args, plugin.env)
        plugin.client = self._client_factory(command, checksum, start_timeout)

        try:
            plugin.start()
        except PluginError as err:
            self.logger.debug("Failed to start plugin (name=%s): %s", name, err)
            plugin.stop()
            return

        try:
            service = plugin.dispense()
        except PluginError as err:
            self.logger.debug("Failed to dispense plugin (name=%s): %s", name, err)
            plugin.stop()
            return

        try:
            metadata = service.get_plugin_config({})
        except Exception as err:
            self.logger.debug("Failed to get plugin metadata (name=%s): %s", name, err)
            return
        if not isinstance(metadata, Mapping):
            self.logger.debug("Failed to get plugin metadata (name=%s)", name)
            return

        requires = metadata.get("requires")
        if isinstance(requires, list):
            try:
                plugin.requires = _decode_identifiers(requires)
            except ValueError as err:
                self.logger.debug("Failed to decode plugin requirements: %s", err)
        else:
            self.logger.debug("Plugin doesn't have any requirements (name=%s)", name)

        if len(plugin.requires) > self.size():
            self.logger.debug(
                "The plugin has too many requirements, and not enough of them "
                "exist in the registry, so it won't work properly"
            )

        for req in plugin.requires:
            if self.exists(req.name, req.version, req.remote_url):
                continue
            self.logger.debug(
                "The plugin requirement is not met (name=%s, requirement=%s)", name, req.name
            )
            if self.compatibility == CompatibilityPolicy.STRICT:
                self.logger.debug(
                    "Registry is in strict compatibility mode, so the plugin won't be "
                    "loaded (name=%s)",
                    name,
                )
                plugin.stop()
                return
            self.logger.debug(
                "Registry is in loose compatibility mode, so the plugin will be loaded "
                "anyway (name=%s, requirement=%s)",
                name,
                req.name,
            )

        ident = metadata.get("id")
        ident = ident if isinstance(ident, Mapping) else {}
        plugin.id = dataclasses.replace(
            plugin.id,
            remote_url=_string(ident.get("remoteUrl")),
            version=_string(ident.get("version")),
        )
        plugin.description = _string(metadata.get("description"))
        plugin.license = _string(metadata.get("license"))
        plugin.project_url = _string(metadata.get("projectUrl"))

        authors = metadata.get("authors")
        if isinstance(authors, list):
            try:
                plugin.authors = _decode_strings(authors)
            except ValueError as err:
                self.logger.debug("Failed to decode plugin authors: %s", err)
        else:
            self.logger.debug("Plugin doesn't have any authors (name=%s)", name)

        hooks = metadata.get("hooks")
        if isinstance(hooks, list):
            try:
                plugin.hooks = _decode_hooks(hooks)
            except ValueError as err:
                self.logger.debug("Failed to decode plugin hooks: %s", err)
        else:
            self.logger.debug("Plugin doesn't attach to any hooks (name=%s)", name)

        plugin.config = {}
        config = metadata.get("config")
        if isinstance(config, Mapping):
            for key, value in config.items():
                if isinstance(value, str):
                    plugin.config[key] = value
                else:
                    self.logger.debug("Failed to decode plugin config (key=%s)", key)
        else:
            self.logger.debug("Plugin doesn't have any config (name=%s)", name)

        self.add(plugin)
        self.logger.debug("Plugin metadata loaded (name=%s)", name)
        self.register_hooks(plugin.id)
        self.logger.info("Plugin is ready (name=%s)", name)

    def register_hooks(self, plugin_id: Identifier) -> None:
        """Register the hook methods of a stored plugin at the plugin's priority."""
        plugin = self.get(plugin_id)
        if plugin is None:
            raise KeyError(plugin_id)
        name = plugin.id.name
        self.logger.debug("Registering hooks for plugin (name=%s)", name)
        try:
            service = plugin.dispense()
        except PluginError as err:
            self.logger.debug("Failed to dispense plugin (name=%s): %s", name, err)
            return

        for hook_name in plugin.hooks:
            if hook_name == HookName.UNSPECIFIED:
                self.logger.debug(
                    "Plugin hook is unspecified or invalid, so it won't work properly (name=%s)",
                    name,
                )
                continue
            if isinstance(hook_name, HookName) and hook_name != HookName.ON_HOOK:
                method = getattr(service, hook_name.name.lower())
                self.logger.debug(
                    "Registering hook (hook=%s, priority=%s, name=%s)",
                    hook_name,
                    plugin.priority,
                    name,
                )
                self.add_hook(hook_name, plugin.priority, method)
                continue
            if self.acceptance == AcceptancePolicy.REJECT:
                self.logger.warning(
                    "Unknown hook, skipping (hook=%s, priority=%s, name=%s)",
                    hook_name,
                    plugin.priority,
                    name,
                )
                continue
            self.logger.debug(
                "Registering a custom hook (hook=%s, priority=%s, name=%s)",
                hook_name,
                plugin.priority,
                name,
            )
            self.add_hook(hook_name, plugin.priority, service.on_hook)