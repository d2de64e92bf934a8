"""
Collection of plugin-declared configuration blocks.
"""

from __future__ import annotations

import functools as _functools
import logging as _logging
import typing as _typing

import tmplugin.config as config
import tmplugin.constants as constants
import tmplugin.hcl.parser as parser
import tmplugin.plugins as plugins
import tmplugin.rpc.client as client
import tmplugin.rpc.errors as errors
import tmplugin.rpc.hcl_adapter as hcl_adapter

_logger = _logging.getLogger(__name__)

Launcher = _typing.Callable[..., client.HostClient]
"""Spawns an installed plugin: launcher(plugin, settings, extra_env=None)."""


def load_hcl_options(
    settings: config.Settings,
    *,
    launcher: Launcher = client.launch_plugin,
    client_factory: hcl_adapter.ClientFactory | None = None,
    host_addr: str = "",
) -> list[parser.Option]:
    """
    Build parser options for every enabled plugin that declares blocks.

    Each plugin is spawned once to read its capabilities and schema,
    then killed. A plugin that fails to start or answer is logged and
    skipped.

    Args:
        settings: Loaded settings.
        launcher: Spawns a plugin for the schema query.
        client_factory: Spawns a plugin per dispatched block (defaults
            to new_host_client_with_env with the configured timeouts).
        host_addr: Address of a running host service, advertised to
            every spawned plugin in TM_PLUGIN_HOST_ADDR.

    Returns:
        Parser options from all plugins, in discovery order.

    Raises:
        ManifestError: If an installed manifest is unreadable.
    """
    extra_env = {constants.HOST_ADDR_ENV: host_addr} if host_addr else {}
    factory = client_factory or _functools.partial(
        client.new_host_client_with_env,
        extra_env=extra_env,
        start_timeout=settings.plugin_start_timeout,
        call_timeout=settings.plugin_call_timeout,
    )

    options: list[parser.Option] = []
    for plugin in plugins.discover_enabled(settings):
        try:
            with launcher(plugin, settings, extra_env) as host:
                caps = host.client.plugin.get_capabilities()
                if not caps.has_hcl_schema:
                    continue
                schema = host.client.hcl_schema.get_hcl_schema()
        except (errors.PluginStartError, errors.RPCError) as e:
            _logger.warning("Skipping plugin %s: %s", plugin.name, e)
            continue

        _logger.debug("Plugin %s declares %d block(s)", plugin.name, len(schema.blocks))
        options.extend(
            hcl_adapter.hcl_options_from_schema(
                plugin.name, plugin.binary_path, schema.blocks, client_factory=factory
            )
        )
    return options
