"""
Plugin-side server adapter.

A plugin binary builds a PluginServer from the services it implements
and hands it to serve():

    import tmplugin.rpc.server as server

    def main() -> None:
        server.main(server.PluginServer(info=INFO, hcl_schema=MySchema()))

serve() only runs when launched by a host (magic cookie present). It
listens on 127.0.0.1, prints the handshake line and blocks until the
host calls Shutdown or terminates the process.
"""

from __future__ import annotations

import concurrent.futures as _futures
import dataclasses as _dataclasses
import logging as _logging
import sys as _sys
import threading as _threading
import typing as _typing

import grpc as _grpc

import tmplugin.constants as constants
import tmplugin.rpc.errors as errors
import tmplugin.rpc.handshake as handshake
import tmplugin.rpc.messages as messages
import tmplugin.rpc.services as services

_logger = _logging.getLogger(__name__)

STOP_GRACE = 0.5
"""Seconds in-flight calls get to finish once Shutdown was requested."""


@_dataclasses.dataclass
class PluginServer:
    """Services a plugin provides. Every service is optional."""

    info: messages.PluginInfo = _dataclasses.field(default_factory=messages.PluginInfo)
    """Identity answered by the default PluginService."""

    plugin: services.PluginServiceBase | None = None
    """Custom PluginService; replaces the default one when set."""

    command: services.CommandServiceBase | None = None
    hcl_schema: services.HCLSchemaServiceBase | None = None
    lifecycle: services.LifecycleServiceBase | None = None
    generate: services.GenerateServiceBase | None = None

    def capabilities(self) -> messages.Capabilities:
        """Capabilities derived from which services are present."""
        return messages.Capabilities(
            has_commands=self.command is not None,
            has_hcl_schema=self.hcl_schema is not None,
            has_post_init_hooks=self.lifecycle is not None,
            has_generate_override=self.generate is not None,
        )

    def optional_services(self) -> list[tuple[services.ServiceSpec, object]]:
        """Present optional services with their descriptors."""
        present: list[tuple[services.ServiceSpec, object | None]] = [
            (services.COMMAND_SERVICE, self.command),
            (services.HCL_SCHEMA_SERVICE, self.hcl_schema),
            (services.LIFECYCLE_SERVICE, self.lifecycle),
            (services.GENERATE_SERVICE, self.generate),
        ]
        return [(spec, impl) for spec, impl in present if impl is not None]


class DefaultPluginService(services.PluginServiceBase):
    """PluginService answering from the PluginServer configuration."""

    def __init__(self, plugin_server: PluginServer) -> None:
        self._server = plugin_server

    def get_plugin_info(self, request: messages.Empty) -> messages.PluginInfo:
        return self._server.info

    def get_capabilities(self, request: messages.Empty) -> messages.Capabilities:
        return self._server.capabilities()


class _ShutdownHook(services.PluginServiceBase):
    """Wraps a PluginService so Shutdown also stops the server."""

    def __init__(
        self, inner: services.PluginServiceBase, on_shutdown: _typing.Callable[[], None]
    ) -> None:
        self._inner = inner
        self._on_shutdown = on_shutdown

    def get_plugin_info(self, request: messages.Empty) -> messages.PluginInfo:
        return self._inner.get_plugin_info(request)

    def get_capabilities(self, request: messages.Empty) -> messages.Capabilities:
        return self._inner.get_capabilities(request)

    def shutdown(self, request: messages.Empty) -> messages.Empty:
        try:
            return self._inner.shutdown(request)
        finally:
            self._on_shutdown()


class Broker:
    """Dispenses the plugin's service bundle by name."""

    def __init__(self, service_names: list[str]) -> None:
        self._service_names = service_names

    def dispense(self, request: messages.DispenseRequest) -> messages.DispenseResponse:
        if request.name != constants.PLUGIN_SET_NAME:
            raise errors.not_found(f"unknown plugin set {request.name!r}")
        return messages.DispenseResponse(name=request.name, services=self._service_names)


def register(
    grpc_server: _grpc.Server,
    plugin_server: PluginServer,
    *,
    on_shutdown: _typing.Callable[[], None] | None = None,
) -> list[str]:
    """
    Register the broker and every present service on a gRPC server.

    Args:
        grpc_server: Server to register on (not yet started).
        plugin_server: Plugin services.
        on_shutdown: Called after the Shutdown RPC has been handled.

    Returns:
        Fully-qualified names of the registered plugin services.
    """
    plugin_impl: services.PluginServiceBase = plugin_server.plugin or DefaultPluginService(
        plugin_server
    )
    if on_shutdown is not None:
        plugin_impl = _ShutdownHook(plugin_impl, on_shutdown)

    registered: list[tuple[services.ServiceSpec, object]] = [
        (services.PLUGIN_SERVICE, plugin_impl),
        *plugin_server.optional_services(),
    ]
    names = [spec.name for spec, _ in registered]

    handlers = [services.generic_handler(services.BROKER, Broker(names))]
    handlers.extend(services.generic_handler(spec, impl) for spec, impl in registered)
    grpc_server.add_generic_rpc_handlers(tuple(handlers))
    return names


def serve(
    plugin_server: PluginServer,
    *,
    environ: _typing.Mapping[str, str] | None = None,
    stdout: _typing.TextIO | None = None,
    stderr: _typing.TextIO | None = None,
    max_workers: int = 8,
) -> int:
    """
    Serve a plugin until the host shuts it down.

    Args:
        plugin_server: Plugin services.
        environ: Environment to check for the magic cookie.
        stdout: Stream receiving the handshake line.
        stderr: Stream receiving the refusal message.
        max_workers: Size of the server thread pool.

    Returns:
        Process exit code: 1 when not launched by a host, else 0.
    """
    out = stdout or _sys.stdout
    err = stderr or _sys.stderr

    if not handshake.is_plugin_env(environ):
        err.write(
            "This binary is a plugin. It is not meant to be executed directly.\n"
            "Install it into the user plugin directory and run it through the host.\n"
        )
        err.flush()
        return 1

    stopped = _threading.Event()
    grpc_server = _grpc.server(_futures.ThreadPoolExecutor(max_workers=max_workers))
    register(grpc_server, plugin_server, on_shutdown=stopped.set)
    port = grpc_server.add_insecure_port("127.0.0.1:0")
    grpc_server.start()

    address = f"127.0.0.1:{port}"
    _logger.debug("Plugin %s listening on %s", plugin_server.info.name, address)
    out.write(handshake.format_handshake_line(address) + "\n")
    out.flush()

    try:
        stopped.wait()
    except KeyboardInterrupt:
        _logger.debug("Interrupted")
    finally:
        grpc_server.stop(STOP_GRACE).wait()
    return 0


def main(plugin_server: PluginServer) -> _typing.NoReturn:
    """Serve and exit the process with serve()'s exit code."""
    _sys.exit(serve(plugin_server))
