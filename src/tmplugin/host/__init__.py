"""
Host-side flows driving installed plugins.

- load_hcl_options: parser options for plugin-declared blocks
- run_post_init_plugins: post-init hooks (stack updates, config patches)
- run_generate_override: let a plugin take over code generation
- execute_plugin_command: run a plugin CLI command
"""

from tmplugin.host.commands import PluginDescription, describe_plugin, execute_plugin_command
from tmplugin.host.generate import GenerateOverride, run_generate_override
from tmplugin.host.lifecycle import (
    PostInitError,
    apply_config_patches,
    apply_stack_updates,
    run_post_init_plugins,
)
from tmplugin.host.schema import load_hcl_options
from tmplugin.host.streams import OutputError, consume_output, write_file_event

__all__ = [
    "GenerateOverride",
    "OutputError",
    "PluginDescription",
    "PostInitError",
    "apply_config_patches",
    "apply_stack_updates",
    "consume_output",
    "describe_plugin",
    "execute_plugin_command",
    "load_hcl_options",
    "run_generate_override",
    "run_post_init_plugins",
    "write_file_event",
]
