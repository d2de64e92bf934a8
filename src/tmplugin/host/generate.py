"""
Code generation override.

The first enabled plugin advertising a generate override takes over
code generation: its Generate stream is relayed to the terminal and its
file writes are applied inside the project root.
"""

from __future__ import annotations

import dataclasses as _dataclasses
import logging as _logging
import typing as _typing

import tmplugin.config as config
import tmplugin.host.schema as schema
import tmplugin.host.streams as streams
import tmplugin.plugins as plugins
import tmplugin.project.tree as tree
import tmplugin.rpc.client as client
import tmplugin.rpc.errors as errors
import tmplugin.rpc.host_service as host_service
import tmplugin.rpc.messages as messages

_logger = _logging.getLogger(__name__)


@_dataclasses.dataclass(frozen=True)
class GenerateOverride:
    """Outcome of a generate override attempt."""

    handled: bool
    """Whether a plugin took over generation."""

    exit_code: int = 0
    plugin: str = ""


def run_generate_override(
    root: tree.ConfigRoot,
    settings: config.Settings,
    *,
    stdout: _typing.BinaryIO,
    stderr: _typing.BinaryIO,
    detailed_exit_code: bool = False,
    launcher: schema.Launcher = client.launch_plugin,
) -> GenerateOverride:
    """
    Let a plugin handle code generation.

    Plugins are tried in discovery order. One that fails to start,
    answer or stream is logged and the next one is tried. A host service
    over the loaded root is served meanwhile and advertised in
    TM_PLUGIN_HOST_ADDR.

    Args:
        root: Loaded project configuration.
        settings: Loaded settings.
        stdout: Receives the plugin's stdout chunks.
        stderr: Receives the plugin's stderr chunks.
        detailed_exit_code: Forwarded to the plugin.
        launcher: Spawns a plugin.

    Returns:
        handled=False when no plugin overrides generation.

    Raises:
        ManifestError: If an installed manifest is unreadable.
    """
    enabled = plugins.discover_enabled(settings)
    if not enabled:
        return GenerateOverride(handled=False)

    root_dir = root.host_dir()
    with host_service.serving(root, settings.user_terramate_dir) as running:
        extra_env = host_service.host_env(running)
        for plugin in enabled:
            try:
                with launcher(plugin, settings, extra_env) as host:
                    caps = host.client.plugin.get_capabilities()
                    if not caps.has_generate_override:
                        continue
                    events = host.client.generate.generate(
                        messages.GenerateRequest(
                            root_dir=root_dir, detailed_exit_code=detailed_exit_code
                        ),
                        timeout=settings.generate_timeout,
                    )
                    exit_code = streams.consume_output(
                        events, stdout=stdout, stderr=stderr, base_dir=root_dir, confine_to=root_dir
                    )
            except (errors.PluginStartError, errors.RPCError, streams.OutputError, OSError) as e:
                _logger.error("Generate override of plugin %s failed: %s", plugin.name, e)
                continue

            _logger.debug("Plugin %s handled generate (exit code %d)", plugin.name, exit_code)
            return GenerateOverride(handled=True, exit_code=exit_code, plugin=plugin.name)

    return GenerateOverride(handled=False)
