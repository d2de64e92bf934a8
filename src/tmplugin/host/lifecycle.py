"""
Post-init lifecycle hooks.

After the project configuration is loaded, every plugin advertising
post-init hooks is asked to inspect the project. Its answer can:

- report diagnostics (errors skip the rest of that plugin's answer)
- update stack metadata (applied through the host service)
- patch configuration nodes with opaque plugin data
"""

from __future__ import annotations

import json as _json
import logging as _logging
import typing as _typing

import tmplugin.config as config
import tmplugin.host.schema as schema
import tmplugin.plugins as plugins
import tmplugin.project.paths as paths
import tmplugin.project.tree as tree
import tmplugin.rpc.client as client
import tmplugin.rpc.errors as errors
import tmplugin.rpc.hcl_adapter as hcl_adapter
import tmplugin.rpc.host_service as host_service
import tmplugin.rpc.messages as messages

_logger = _logging.getLogger(__name__)

DEFAULT_PATCH_BLOCK_TYPE = "post_init"
"""Block type a config patch is stored under when its payload names none."""


class PostInitError(Exception):
    """A post-init answer could not be applied."""

    pass


def plugin_data_block_type(data: bytes) -> str:
    """Block type named by a JSON payload's "block_type" key ("" if none)."""
    if not data:
        return ""
    try:
        payload = _json.loads(data)
    except ValueError:
        return ""
    if not isinstance(payload, dict):
        return ""
    block_type = payload.get("block_type")
    return block_type if isinstance(block_type, str) else ""


def apply_stack_updates(
    service: host_service.HostService | None,
    updates: _typing.Sequence[messages.StackMetadataUpdate],
) -> None:
    """
    Apply stack metadata updates through the host service.

    Raises:
        PostInitError: If there are updates but no host service.
        RPCError: If an update targets an unknown path.
    """
    if not updates:
        return
    if service is None:
        raise PostInitError("host service is not initialized")
    for update in updates:
        service.set_stack_metadata(
            messages.SetStackRequest(path=update.path, metadata=update.metadata, merge=update.merge)
        )


def apply_config_patch(root: tree.ConfigRoot, plugin_name: str, patch: messages.ConfigPatch) -> None:
    """
    Append a config patch to the external data of its target node.

    Raises:
        PostInitError: If the path is empty or unknown, or the node
            holds external data of another type.
    """
    if not patch.path:
        raise PostInitError("config patch path is required")

    node = root.lookup(paths.to_project_path(root.host_dir(), patch.path))
    if node is None:
        raise PostInitError(f"config path not found: {patch.path}")

    if node.external is None:
        node.external = hcl_adapter.HCLExternalData()
    if not isinstance(node.external, hcl_adapter.HCLExternalData):
        raise PostInitError(f"unexpected external data type {type(node.external).__name__}")

    block_type = plugin_data_block_type(patch.plugin_data) or DEFAULT_PATCH_BLOCK_TYPE
    node.external.append(plugin_name, block_type, patch.plugin_data)


def apply_config_patches(
    root: tree.ConfigRoot, plugin_name: str, patches: _typing.Sequence[messages.ConfigPatch]
) -> None:
    """Apply config patches; patches without data are skipped."""
    for patch in patches:
        if not patch.plugin_data:
            continue
        apply_config_patch(root, plugin_name, patch)


def _post_init(
    plugin: plugins.InstalledPlugin,
    root: tree.ConfigRoot,
    settings: config.Settings,
    launcher: schema.Launcher,
    extra_env: dict[str, str],
) -> messages.PostInitResponse | None:
    with launcher(plugin, settings, extra_env) as host:
        caps = host.client.plugin.get_capabilities()
        if not caps.has_post_init_hooks:
            return None
        return host.client.lifecycle.post_init(
            messages.PostInitRequest(root_dir=root.host_dir()),
            timeout=settings.post_init_timeout,
        )


def run_post_init_plugins(
    root: tree.ConfigRoot,
    settings: config.Settings,
    *,
    launcher: schema.Launcher = client.launch_plugin,
) -> list[str]:
    """
    Run the post-init hook of every enabled plugin.

    A host service over the loaded root is served while the hooks run
    and advertised to each plugin in TM_PLUGIN_HOST_ADDR. Plugins run
    one after another; a failing plugin is logged and the next one runs.

    Args:
        root: Loaded project configuration (patched in place).
        settings: Loaded settings.
        launcher: Spawns a plugin.

    Returns:
        Names of the plugins whose answer was fully applied.

    Raises:
        ManifestError: If an installed manifest is unreadable.
    """
    enabled = plugins.discover_enabled(settings)
    if not enabled:
        return []

    applied: list[str] = []
    with host_service.serving(root, settings.user_terramate_dir) as running:
        extra_env = host_service.host_env(running)
        for plugin in enabled:
            try:
                response = _post_init(plugin, root, settings, launcher, extra_env)
            except (errors.PluginStartError, errors.RPCError) as e:
                _logger.error("Post-init hook of plugin %s failed: %s", plugin.name, e)
                continue
            if response is None:
                continue

            error = hcl_adapter.diagnostics_error(response.diagnostics)
            if error is not None:
                _logger.error("Post-init diagnostics from plugin %s: %s", plugin.name, error)
                continue

            try:
                apply_stack_updates(running.service, response.stack_updates)
            except (PostInitError, errors.RPCError) as e:
                _logger.error("Post-init stack update from plugin %s failed: %s", plugin.name, e)
                continue

            try:
                apply_config_patches(root, plugin.name, response.config_patches)
            except PostInitError as e:
                _logger.error("Post-init config patch from plugin %s failed: %s", plugin.name, e)
                continue

            applied.append(plugin.name)
    return applied
