"""
Host-side plugin client and process lifecycle.

new_host_client() spawns a plugin binary, completes the handshake,
connects over gRPC and dispenses the service bundle. The returned
HostClient owns the subprocess: kill() (or leaving a ``with`` block)
shuts it down.

    with client.new_host_client(path) as host:
        caps = host.client.plugin.get_capabilities()

Plugin stdout after the handshake line and all of its stderr are
drained on daemon threads and relayed to debug logging.
"""

from __future__ import annotations

import logging as _logging
import os as _os
import pathlib as _pathlib
import queue as _queue
import subprocess as _subprocess
import threading as _threading
import typing as _typing

import grpc as _grpc

import tmplugin.constants as constants
import tmplugin.rpc.errors as errors
import tmplugin.rpc.handshake as handshake
import tmplugin.rpc.services as services

if _typing.TYPE_CHECKING:
    import tmplugin.config as _config
    import tmplugin.plugins as _plugins

_logger = _logging.getLogger(__name__)


def _relay_lines(
    stream: _typing.IO[bytes],
    label: str,
    first_line: _queue.Queue[str | None] | None = None,
) -> None:
    """Read a pipe to EOF, relaying each line to debug logging.

    When first_line is given, the first line is delivered to it instead
    (None on EOF before any line).
    """
    with stream:
        for raw in iter(stream.readline, b""):
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if first_line is not None:
                first_line.put(line)
                first_line = None
                continue
            _logger.debug("[%s] %s", label, line)
    if first_line is not None:
        first_line.put(None)


def _start_relay(
    stream: _typing.IO[bytes],
    label: str,
    first_line: _queue.Queue[str | None] | None = None,
) -> None:
    thread = _threading.Thread(
        target=_relay_lines,
        args=(stream, label, first_line),
        name=f"tmplugin-relay-{label}",
        daemon=True,
    )
    thread.start()


def _stop_process(process: _subprocess.Popen[bytes], *, graceful: bool = False) -> None:
    """Terminate a plugin process, escalating to kill after the grace period."""
    if graceful:
        try:
            process.wait(timeout=constants.KILL_GRACE_PERIOD)
            return
        except _subprocess.TimeoutExpired:
            _logger.debug("Plugin pid %d ignored shutdown", process.pid)

    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=constants.KILL_GRACE_PERIOD)
    except _subprocess.TimeoutExpired:
        _logger.debug("Plugin pid %d ignored terminate, killing", process.pid)
        process.kill()
        process.wait()


class HostClient:
    """A running plugin subprocess and the typed clients to talk to it."""

    def __init__(
        self,
        process: _subprocess.Popen[bytes],
        channel: _grpc.Channel,
        client: services.PluginClient,
        *,
        name: str = "",
    ) -> None:
        self._process = process
        self._channel = channel
        self._client = client
        self._name = name
        self._lock = _threading.Lock()
        self._killed = False

    @property
    def client(self) -> services.PluginClient:
        """Typed service clients (plugin, command, hcl_schema, lifecycle, generate)."""
        return self._client

    @property
    def process(self) -> _subprocess.Popen[bytes]:
        return self._process

    @property
    def name(self) -> str:
        return self._name

    @property
    def killed(self) -> bool:
        return self._killed

    def kill(self) -> None:
        """
        Shut the plugin down. Idempotent; never raises.

        Asks the plugin to shut down, closes the channel, then
        terminates the process and kills it if it does not exit within
        the grace period.
        """
        with self._lock:
            if self._killed:
                return
            self._killed = True

        graceful = False
        if self._process.poll() is None:
            try:
                self._client.plugin.shutdown(timeout=constants.SHUTDOWN_CALL_TIMEOUT)
                graceful = True
            except errors.RPCError as e:
                _logger.debug("Shutdown of plugin %s failed: %s", self._name, e)

        try:
            self._channel.close()
        except Exception as e:
            _logger.debug("Closing channel of plugin %s failed: %s", self._name, e)

        try:
            _stop_process(self._process, graceful=graceful)
        except OSError as e:
            _logger.debug("Stopping plugin %s failed: %s", self._name, e)

        _logger.debug("Plugin %s stopped (exit code %s)", self._name, self._process.returncode)

    def __enter__(self) -> HostClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.kill()


def kill(client: HostClient | None) -> None:
    """Kill a host client; None is accepted."""
    if client is not None:
        client.kill()


def _read_handshake(
    process: _subprocess.Popen[bytes],
    first_line: _queue.Queue[str | None],
    timeout: float,
) -> handshake.HandshakeInfo:
    try:
        line = first_line.get(timeout=timeout)
    except _queue.Empty:
        raise errors.HandshakeError(
            f"timed out after {timeout}s waiting for plugin handshake"
        ) from None

    if line is None:
        try:
            code = process.wait(timeout=constants.KILL_GRACE_PERIOD)
        except _subprocess.TimeoutExpired:
            code = None
        raise errors.HandshakeError(f"plugin exited before handshake (exit code {code})")

    return handshake.parse_handshake_line(line)


def new_host_client_with_env(
    binary_path: str | _os.PathLike[str],
    extra_env: _typing.Mapping[str, str] | None = None,
    *,
    start_timeout: float = constants.DEFAULT_START_TIMEOUT,
    call_timeout: float | None = constants.DEFAULT_CALL_TIMEOUT,
    cwd: str | _os.PathLike[str] | None = None,
) -> HostClient:
    """
    Spawn a plugin and connect to it.

    Args:
        binary_path: Plugin executable.
        extra_env: Extra environment entries (override the inherited ones).
        start_timeout: Seconds allowed for handshake and connection.
        call_timeout: Default deadline for unary calls.
        cwd: Working directory of the plugin process.

    Returns:
        Connected client; the caller must kill() it.

    Raises:
        PluginStartError: If the binary cannot be executed.
        HandshakeError: If the plugin exits, times out or advertises an
            incompatible handshake.
        DispenseError: If the plugin does not serve the expected bundle.
    """
    path = _pathlib.Path(binary_path)
    name = path.name

    env = dict(_os.environ)
    env.update(handshake.cookie_env())
    if extra_env:
        env.update(extra_env)

    try:
        process = _subprocess.Popen(
            [str(path)],
            env=env,
            cwd=cwd,
            stdin=_subprocess.DEVNULL,
            stdout=_subprocess.PIPE,
            stderr=_subprocess.PIPE,
        )
    except OSError as e:
        raise errors.PluginStartError(f"failed to start plugin {path}: {e}") from e

    _logger.debug("Spawned plugin %s (pid %d)", path, process.pid)

    assert process.stdout is not None and process.stderr is not None
    first_line: _queue.Queue[str | None] = _queue.Queue(maxsize=1)
    _start_relay(process.stderr, f"{name} stderr")
    _start_relay(process.stdout, f"{name} stdout", first_line)

    try:
        info = _read_handshake(process, first_line, start_timeout)
    except errors.HandshakeError:
        _stop_process(process)
        raise

    channel = _grpc.insecure_channel(info.address)
    try:
        _grpc.channel_ready_future(channel).result(timeout=start_timeout)
    except _grpc.FutureTimeoutError:
        channel.close()
        _stop_process(process)
        raise errors.HandshakeError(
            f"plugin {name} did not accept connections on {info.address}"
        ) from None

    try:
        response = services.BrokerClient(channel, timeout=call_timeout).dispense(
            constants.PLUGIN_SET_NAME
        )
    except errors.RPCError as e:
        channel.close()
        _stop_process(process)
        raise errors.DispenseError(f"plugin {name} failed to dispense: {e}") from e

    if response.name != constants.PLUGIN_SET_NAME:
        channel.close()
        _stop_process(process)
        raise errors.DispenseError(
            f"plugin {name} dispensed {response.name!r}, expected {constants.PLUGIN_SET_NAME!r}"
        )

    _logger.debug("Connected to plugin %s at %s", name, info.address)
    return HostClient(
        process,
        channel,
        services.PluginClient.from_channel(channel, timeout=call_timeout),
        name=name,
    )


def new_host_client(
    binary_path: str | _os.PathLike[str],
    *,
    start_timeout: float = constants.DEFAULT_START_TIMEOUT,
    call_timeout: float | None = constants.DEFAULT_CALL_TIMEOUT,
) -> HostClient:
    """Spawn a plugin with the default environment. See new_host_client_with_env()."""
    return new_host_client_with_env(
        binary_path, None, start_timeout=start_timeout, call_timeout=call_timeout
    )


def launch_plugin(
    plugin: _plugins.InstalledPlugin,
    settings: _config.Settings,
    extra_env: _typing.Mapping[str, str] | None = None,
) -> HostClient:
    """Spawn an installed plugin using the configured timeouts."""
    return new_host_client_with_env(
        plugin.binary_path,
        extra_env,
        start_timeout=settings.plugin_start_timeout,
        call_timeout=settings.plugin_call_timeout,
    )
