# gwplugins

A small framework for hosting plugins in a gateway application.

## What is in it

- `gwplugins.pool.Pool`: a thread-safe keyed store. A capacity of zero or
  less means the pool has no limit. `put` and `get_or_put` raise
  `PoolExhaustedError` when a bounded pool is full and `NilValueError` when
  the value is `None`. Both are subclasses of `PoolError`. `get_or_put`
  returns `(value, loaded)`. `loaded` is `True` when the key was already
  present. `get` and `pop` return `None` for a missing key. `for_each(callback)`
  stops at the first callback that returns a false value. `keys` returns a
  snapshot of the keys.
- `gwplugins.utils`:
  - `Duration`: an `int` of nanoseconds that prints like `1h2m3.5s` or
    `123ns`.
  - `cast_to_primitive_types(args)`: turns `Duration` and
    `datetime.timedelta` values into those strings, in place. It recurses
    into nested dicts and goes one level into lists.
  - `verify(params, return_val)`: compares two payloads and treats `None` as
    empty.
  - `new_command(cmd, args, env)`: builds a `Command`. A bare name is looked
    up on `PATH`. `Command.start()` launches the process with piped stdout
    and stderr.
- `gwplugins.plugin`:
  - `Identifier`: a frozen dataclass of name, version, remote URL and
    checksum.
  - `Plugin`: holds the metadata and a client object. The client must offer
    `start()`, `kill()` and `client()`. `start`, `stop`, `dispense` and `ping`
    raise subclasses of `PluginError` when they fail: `PluginStartError`,
    `RPCClientError`, `DispenseError`, `PluginNotReadyError` and `PingError`.
    `dispense` accepts only a service that has a callable `get_plugin_config`.
- `gwplugins.hooks.HookRegistry`: hooks are keyed by hook name (a `HookName`
  or any integer) and by priority.
  - `run(args, hook_name, *opts)` calls the hooks in ascending priority. The
    first hook gets the arguments. Each later hook gets the last accepted
    result.
  - Numbers in the arguments become floats. Bytes become base64 strings.
    Values that cannot be converted raise `CastError`.
  - A hook that raises is treated like one that returned an invalid result.
  - `VerificationPolicy` decides what happens when a result differs from the
    arguments: `PASS_DOWN`, `IGNORE`, `ABORT` or `REMOVE`.
  - With `TerminationPolicy.STOP`, a result with `"terminate": True` ends the
    chain.
- `gwplugins.registry.Registry`: a `HookRegistry` that also holds plugins by
  `Identifier`.
  - It offers `add`, `get`, `list`, `size`, `exists`, `for_each`, `remove`
    and `shutdown`.
  - `exists` is true when a plugin with the same name and URL is stored at
    the given semantic version or a newer one.
  - `load_plugins(plugins, start_timeout)` takes `PluginConfig` entries and
    skips disabled ones. Outside `dev_mode` it checks the SHA-256 checksum of
    the executable.
  - It starts each plugin and waits `start_timeout` seconds (60 when zero or
    less) for a handshake line `a|b|network|address[|grpc]` on stdout. The
    network is `tcp` or `unix`.
  - It then reads the plugin's metadata through `get_plugin_config` and
    checks its requirements. With `CompatibilityPolicy.STRICT`, unmet
    requirements stop the load.
  - The plugin's priority is `1000 +` its position in the list.
  - `register_hooks` binds each well-known hook to the service method of the
    same lower-case name, for example `on_new_logger`. Other hooks go to
    `on_hook` unless `AcceptancePolicy.REJECT` is set.
- `gwplugins.usagereport`: `UsageReportRequest` and `UsageReportPlugin`
  records.
  - `validate()` raises the first `ValidationError`.
  - `validate_all()` raises one `MultiValidationError` that holds every
    violation.

## Installation

```
pip install gwplugins
```

## Example

```python
from gwplugins.hooks import HookName, HookRegistry, VerificationPolicy

registry = HookRegistry(verification=VerificationPolicy.PASS_DOWN)

def add_greeting(args, *options):
    return {**args, "greeting": "hello"}

registry.add_hook(HookName.ON_NEW_LOGGER, 0, add_greeting)
print(registry.run({"name": "gateway"}, HookName.ON_NEW_LOGGER))
# {'name': 'gateway', 'greeting': 'hello'}
```

## What it does not do

- There is no RPC transport. To talk to plugin processes, pass
  `rpc_connector` to `Registry`. It is a callable that takes the address from
  the handshake and returns an object with `dispense(name)` and `ping()`.
  Alternatively, pass `client_factory` to supply your own plugin clients.
- Usage reports are only validated, not sent anywhere.
- There is no command-line program.

## Running the tests

```
pip install -e .[test]
pytest
```