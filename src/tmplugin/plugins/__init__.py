"""
Plugin manifests and discovery.

Plugin discovery location:
    <user terramate dir>/plugins/<name>/manifest.json

Only plugins that declare the gRPC protocol and ship a CLI binary are
returned by discovery.
"""

from tmplugin.plugins.discovery import (
    InstalledPlugin,
    discover_enabled,
    discover_installed,
    find_plugin,
)
from tmplugin.plugins.manifest import (
    Binary,
    BinaryKind,
    Manifest,
    ManifestError,
    PluginType,
    Protocol,
    list_manifests,
    load_manifest,
    plugin_dir,
    plugins_root,
    save_manifest,
)

__all__ = [
    # Manifest
    "Binary",
    "BinaryKind",
    "Manifest",
    "ManifestError",
    "PluginType",
    "Protocol",
    "list_manifests",
    "load_manifest",
    "plugin_dir",
    "plugins_root",
    "save_manifest",
    # Discovery
    "InstalledPlugin",
    "discover_enabled",
    "discover_installed",
    "find_plugin",
]
