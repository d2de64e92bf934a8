"""
Plugin-provided CLI commands and plugin introspection.
"""

from __future__ import annotations

import contextlib as _contextlib
import dataclasses as _dataclasses
import logging as _logging
import os as _os
import typing as _typing

import tmplugin.config as config
import tmplugin.host.schema as schema
import tmplugin.host.streams as streams
import tmplugin.plugins as plugins
import tmplugin.project.tree as tree
import tmplugin.rpc.client as client
import tmplugin.rpc.host_service as host_service
import tmplugin.rpc.messages as messages

_logger = _logging.getLogger(__name__)


@_dataclasses.dataclass(frozen=True)
class PluginDescription:
    info: messages.PluginInfo
    capabilities: messages.Capabilities
    commands: list[messages.CommandSpec]


def describe_plugin(
    plugin: plugins.InstalledPlugin,
    settings: config.Settings,
    *,
    launcher: schema.Launcher = client.launch_plugin,
) -> PluginDescription:
    """
    Ask a plugin for its identity, capabilities and commands.

    Raises:
        PluginStartError: If the plugin cannot be started.
        RPCError: If a call fails.
    """
    with launcher(plugin, settings) as host:
        info = host.client.plugin.get_plugin_info()
        caps = host.client.plugin.get_capabilities()
        commands = host.client.command.get_commands().commands if caps.has_commands else []
    return PluginDescription(info=info, capabilities=caps, commands=commands)


def execute_plugin_command(
    plugin: plugins.InstalledPlugin,
    request: messages.CommandRequest,
    *,
    root: tree.ConfigRoot | None,
    settings: config.Settings,
    stdout: _typing.BinaryIO,
    stderr: _typing.BinaryIO,
    launcher: schema.Launcher = client.launch_plugin,
) -> int:
    """
    Run a plugin command and relay its output.

    When a project root is given, a host service is started for the
    duration of the command and its address is passed to the plugin in
    TM_PLUGIN_HOST_ADDR. File writes are resolved against the request's
    working directory.

    Args:
        plugin: Installed plugin.
        request: Command invocation; root_dir and working_dir are
            filled in when empty.
        root: Loaded project, or None outside a project.
        settings: Loaded settings.
        stdout: Receives the plugin's stdout chunks.
        stderr: Receives the plugin's stderr chunks.
        launcher: Spawns a plugin.

    Returns:
        The command's exit code.

    Raises:
        ValueError: If no command is named.
        PluginStartError: If the plugin cannot be started.
        RPCError: If the command fails (including an unknown command).
        OutputError: If a file write cannot be applied.
    """
    if not request.command:
        raise ValueError("plugin command is required")

    working_dir = request.working_dir or _os.getcwd()
    request = request.model_copy(
        update={
            "working_dir": working_dir,
            "root_dir": request.root_dir or (root.host_dir() if root is not None else ""),
        }
    )

    serving: _typing.ContextManager[host_service.RunningHostService | None] = (
        host_service.serving(root, settings.user_terramate_dir)
        if root is not None
        else _contextlib.nullcontext()
    )
    with serving as running:
        with launcher(plugin, settings, host_service.host_env(running)) as host:
            events = host.client.command.execute_command(request)
            exit_code = streams.consume_output(
                events, stdout=stdout, stderr=stderr, base_dir=working_dir
            )

    _logger.debug("Plugin %s command %s exited with %d", plugin.name, request.command, exit_code)
    return exit_code
