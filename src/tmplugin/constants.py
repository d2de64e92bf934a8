"""
Shared constants for tmplugin.

This module provides a single source of truth for names and default
values used by both the host and plugin sides of the protocol.
"""

# Environment variables
ENV_DISABLE_GRPC_PLUGINS = "TM_DISABLE_GRPC_PLUGINS"
"""Any non-empty value other than "0"/"false" disables plugin discovery."""

HOST_ADDR_ENV = "TM_PLUGIN_HOST_ADDR"
"""Address of the host service, injected into plugins that may call back."""

# Plugin layout
PLUGINS_DIR_NAME = "plugins"
"""Subdirectory of the user terramate directory holding installed plugins."""

MANIFEST_FILE = "manifest.json"
"""Manifest file name inside each plugin directory."""

# Protocol
PLUGIN_SET_NAME = "terramate"
"""Name of the multi-service bundle a plugin must dispense."""

CORE_PROTOCOL_VERSION = 1
"""Version of the handshake line format itself."""

SERVICE_PREFIX = "tmplugin.v1"
"""Package prefix for fully-qualified gRPC service names."""

# Timeouts (seconds)
DEFAULT_START_TIMEOUT = 10.0
"""Deadline for spawning a plugin and completing the handshake."""

DEFAULT_CALL_TIMEOUT = 60.0
"""Deadline for a single unary RPC to a plugin."""

DEFAULT_POST_INIT_TIMEOUT = 60.0
"""Deadline for a plugin's post-init hook."""

DEFAULT_GENERATE_TIMEOUT = 900.0
"""Deadline for a plugin's generate override (15 minutes)."""

KILL_GRACE_PERIOD = 2.0
"""Time a plugin gets to exit after shutdown/terminate before it is killed."""

SHUTDOWN_CALL_TIMEOUT = 1.0
"""Deadline for the best-effort Shutdown call issued during kill."""

# File defaults
DEFAULT_FILE_MODE = 0o644
"""Mode used for files written on behalf of a plugin when none is given."""

DEFAULT_DIR_MODE = 0o755
"""Mode used for parent directories created on behalf of a plugin."""
