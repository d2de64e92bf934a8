"""
Discovery of installed gRPC plugins.

Plugins are discovered from the user plugin directory:

    <user terramate dir>/plugins/<name>/manifest.json

A plugin qualifies when its manifest declares the gRPC protocol (or
carries the legacy metadata marker) and ships a CLI binary at a relative
path inside its own directory.
"""

from __future__ import annotations

import dataclasses as _dataclasses
import logging as _logging
import pathlib as _pathlib
import typing as _typing

import tmplugin.plugins.manifest as manifest
import tmplugin.project.paths as paths

if _typing.TYPE_CHECKING:
    import tmplugin.config as _config

_logger = _logging.getLogger(__name__)


@_dataclasses.dataclass(frozen=True)
class InstalledPlugin:
    """
    An installed plugin ready to be spawned.

    Derived from the manifest on every discovery pass; never cached.
    """

    manifest: manifest.Manifest
    """Parsed manifest."""

    plugin_dir: _pathlib.Path
    """Directory the plugin is installed in."""

    binary_path: _pathlib.Path
    """Absolute path of the CLI binary."""

    @property
    def name(self) -> str:
        """Plugin name from manifest."""
        return self.manifest.name

    @property
    def version(self) -> str:
        """Plugin version from manifest."""
        return self.manifest.version


def discover_installed(user_dir: _pathlib.Path) -> list[InstalledPlugin]:
    """
    Discover installed plugins that speak the gRPC protocol.

    Args:
        user_dir: User terramate directory.

    Returns:
        Qualifying plugins in directory-name order (possibly empty).

    Raises:
        ManifestError: If any manifest cannot be read. The whole call
            fails; callers may continue without plugins.
    """
    installed: list[InstalledPlugin] = []

    for directory, plugin_manifest in manifest.list_manifests(user_dir):
        if not plugin_manifest.is_grpc():
            _logger.debug("Skipping plugin %s: not a gRPC plugin", plugin_manifest.name)
            continue

        binary = plugin_manifest.cli_binary()
        if binary is None or not binary.path:
            _logger.debug("Skipping plugin %s: no CLI binary", plugin_manifest.name)
            continue

        if _pathlib.PurePath(binary.path).is_absolute():
            _logger.debug("Skipping plugin %s: absolute binary path", plugin_manifest.name)
            continue

        plugin_dir = directory.resolve()
        if not paths.is_within(plugin_dir, plugin_dir / binary.path):
            _logger.debug(
                "Skipping plugin %s: binary outside plugin directory", plugin_manifest.name
            )
            continue

        installed.append(
            InstalledPlugin(
                manifest=plugin_manifest,
                plugin_dir=plugin_dir,
                binary_path=plugin_dir / binary.path,
            )
        )

    return installed


def discover_enabled(settings: _config.Settings) -> list[InstalledPlugin]:
    """
    Discover plugins unless TM_DISABLE_GRPC_PLUGINS turns them off.

    Args:
        settings: Loaded settings.

    Returns:
        Qualifying plugins, or an empty list when plugins are disabled.
    """
    if settings.plugins_disabled:
        _logger.debug("gRPC plugins disabled by environment")
        return []
    return discover_installed(settings.user_terramate_dir)


def find_plugin(settings: _config.Settings, name: str) -> InstalledPlugin | None:
    """
    Find an installed gRPC plugin by name.

    Args:
        settings: Loaded settings.
        name: Plugin name.

    Returns:
        The plugin, or None if it is not installed or plugins are disabled.
    """
    for plugin in discover_enabled(settings):
        if plugin.name == name:
            return plugin
    return None
