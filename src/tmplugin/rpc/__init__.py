"""
gRPC plugin protocol: handshake, host client, plugin server and services.

Host side:
    client.new_host_client(binary) -> HostClient (owns the subprocess)
    host_service.start_host_service(root, user_dir) -> RunningHostService
    hcl_adapter.hcl_options_from_schema(...) -> parser options

Plugin side:
    server.serve(PluginServer(...))
    host_service.host_client_from_env() -> HostServiceClient | None
"""

from tmplugin.rpc.client import (
    HostClient,
    kill,
    launch_plugin,
    new_host_client,
    new_host_client_with_env,
)
from tmplugin.rpc.errors import (
    DispenseError,
    HandshakeError,
    PluginStartError,
    RPCError,
)
from tmplugin.rpc.handshake import HANDSHAKE, HandshakeConfig, cookie_env, is_plugin_env
from tmplugin.rpc.hcl_adapter import (
    DiagnosticsError,
    HCLExternalData,
    diagnostics_error,
    hcl_options_from_schema,
)
from tmplugin.rpc.host_service import (
    HostService,
    RunningHostService,
    dial_host_service,
    host_client_from_env,
    start_host_service,
)
from tmplugin.rpc.server import PluginServer, serve
from tmplugin.rpc.services import (
    CommandServiceBase,
    GenerateServiceBase,
    HCLSchemaServiceBase,
    HostServiceClient,
    LifecycleServiceBase,
    PluginClient,
    PluginServiceBase,
)

__all__ = [
    # Errors
    "DispenseError",
    "HandshakeError",
    "PluginStartError",
    "RPCError",
    # Handshake
    "HANDSHAKE",
    "HandshakeConfig",
    "cookie_env",
    "is_plugin_env",
    # Host side
    "HostClient",
    "kill",
    "launch_plugin",
    "new_host_client",
    "new_host_client_with_env",
    "HostService",
    "RunningHostService",
    "start_host_service",
    # HCL
    "DiagnosticsError",
    "HCLExternalData",
    "diagnostics_error",
    "hcl_options_from_schema",
    # Plugin side
    "CommandServiceBase",
    "GenerateServiceBase",
    "HCLSchemaServiceBase",
    "LifecycleServiceBase",
    "PluginServiceBase",
    "PluginServer",
    "serve",
    "HostServiceClient",
    "PluginClient",
    "dial_host_service",
    "host_client_from_env",
]
