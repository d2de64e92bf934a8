"""
Main CLI entry point for tmplugin.

Provides the command-line interface using Click: inspecting installed
plugins, running their commands and driving the host flows (generate
override, post-init hooks) against a project directory.
"""

import json as _json
import logging as _logging
import pathlib as _pathlib
import sys as _sys
import typing as _typing

import click as _click

import tmplugin
import tmplugin.config as config
import tmplugin.host as host
import tmplugin.plugins as plugins
import tmplugin.project as project
import tmplugin.rpc as rpc
import tmplugin.rpc.host_service as host_service
import tmplugin.rpc.messages as messages

# Custom Click context settings for better help formatting
CONTEXT_SETTINGS: dict[str, _typing.Any] = {
    "help_option_names": ["-h", "--help"],
    "max_content_width": 100,
}

# Errors reported as a one-line message and exit code 1
_HANDLED_ERRORS = (
    plugins.ManifestError,
    rpc.PluginStartError,
    rpc.RPCError,
    host.OutputError,
    NotADirectoryError,
    ValueError,
)


def _fail(message: str) -> _typing.NoReturn:
    _click.echo(f"Error: {message}", err=True)
    raise SystemExit(1)


def _settings(ctx: _click.Context) -> config.Settings:
    settings: config.Settings = ctx.obj["settings"]
    return settings


def _require_plugin(settings: config.Settings, name: str) -> plugins.InstalledPlugin:
    try:
        plugin = plugins.find_plugin(settings, name)
    except plugins.ManifestError as e:
        _fail(str(e))
    if plugin is None:
        _fail(f"plugin '{name}' not found")
    return plugin


def _parse_pairs(values: _typing.Iterable[str], what: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise _click.BadParameter(f"expected KEY=VALUE, got {value!r}", param_hint=what)
        pairs[key] = val
    return pairs


def _parse_args(values: _typing.Iterable[str]) -> dict[str, str]:
    """KEY=VALUE arguments by name, bare arguments by position."""
    args: dict[str, str] = {}
    for index, value in enumerate(values):
        key, sep, val = value.partition("=")
        if sep and key:
            args[key] = val
        else:
            args[str(index)] = value
    return args


@_click.group(context_settings=CONTEXT_SETTINGS)
@_click.version_option(tmplugin.__version__, "-v", "--version", prog_name="tmplugin")
@_click.option(
    "--log-level",
    type=_click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Logging level (default: TM_LOG_LEVEL or WARNING)",
)
@_click.option(
    "--user-dir",
    type=_click.Path(file_okay=False, path_type=_pathlib.Path),
    default=None,
    help="User terramate directory (default: TM_USER_TERRAMATE_DIR or ~/.terramate)",
)
@_click.pass_context
def cli(ctx: _click.Context, log_level: str | None, user_dir: _pathlib.Path | None) -> None:
    """
    tmplugin - gRPC plugins for the stack orchestrator.

    \b
    Examples:
        tmplugin plugins list                    # Installed gRPC plugins
        tmplugin plugins info myplugin           # Identity and capabilities
        tmplugin plugins exec myplugin hello     # Run a plugin command
        tmplugin generate --root .               # Generate override
        tmplugin post-init --root .              # Run post-init hooks
    """
    overrides: dict[str, _typing.Any] = {}
    if log_level:
        overrides["log_level"] = log_level
    if user_dir:
        overrides["user_terramate_dir"] = user_dir
    settings = config.Settings(**overrides)

    _logging.basicConfig(
        level=settings.log_level,
        stream=_sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


# =============================================================================
# Plugin Commands
# =============================================================================


@cli.group(name="plugins")
def plugins_group() -> None:
    """Installed plugin commands."""
    pass


@plugins_group.command(name="list")
@_click.option("--json", "json_output", is_flag=True, help="JSON output")
@_click.pass_context
def plugins_list(ctx: _click.Context, json_output: bool) -> None:
    """List installed gRPC plugins."""
    settings = _settings(ctx)
    try:
        installed = plugins.discover_enabled(settings)
    except plugins.ManifestError as e:
        _fail(str(e))

    if json_output:
        data = [
            {"name": p.name, "version": p.version, "binary": str(p.binary_path)}
            for p in installed
        ]
        _click.echo(_json.dumps(data, indent=2))
        return

    if settings.plugins_disabled:
        _click.echo("gRPC plugins are disabled (TM_DISABLE_GRPC_PLUGINS).")
        return
    if not installed:
        _click.echo(f"No gRPC plugins installed in {settings.plugins_dir}.")
        return

    _click.echo(f"{'Name':<25} {'Version':<10} {'Binary'}")
    _click.echo("-" * 70)
    for p in installed:
        _click.echo(f"{p.name:<25} {p.version:<10} {p.binary_path}")


@plugins_group.command(name="info")
@_click.argument("name")
@_click.option("--json", "json_output", is_flag=True, help="JSON output")
@_click.pass_context
def plugins_info(ctx: _click.Context, name: str, json_output: bool) -> None:
    """Show identity and capabilities reported by a plugin."""
    settings = _settings(ctx)
    plugin = _require_plugin(settings, name)
    try:
        description = host.describe_plugin(plugin, settings)
    except _HANDLED_ERRORS as e:
        _fail(str(e))

    if json_output:
        data = {
            "info": description.info.model_dump(),
            "capabilities": description.capabilities.model_dump(),
            "commands": [c.model_dump() for c in description.commands],
        }
        _click.echo(_json.dumps(data, indent=2))
        return

    info = description.info
    caps = description.capabilities
    _click.echo(f"Plugin: {info.name or plugin.name}")
    _click.echo(f"  Version: {info.version or plugin.version}")
    _click.echo(f"  Description: {info.description or '(none)'}")
    _click.echo(f"  Compatible with: {info.compatible_with or '(any)'}")
    _click.echo(f"  Binary: {plugin.binary_path}")
    _click.echo()
    _click.echo("Capabilities:")
    _click.echo(f"  Commands: {'yes' if caps.has_commands else 'no'}")
    _click.echo(f"  HCL schema: {'yes' if caps.has_hcl_schema else 'no'}")
    _click.echo(f"  Post-init hooks: {'yes' if caps.has_post_init_hooks else 'no'}")
    _click.echo(f"  Generate override: {'yes' if caps.has_generate_override else 'no'}")


@plugins_group.command(name="commands")
@_click.argument("name")
@_click.pass_context
def plugins_commands(ctx: _click.Context, name: str) -> None:
    """List the commands a plugin provides."""
    settings = _settings(ctx)
    plugin = _require_plugin(settings, name)
    try:
        description = host.describe_plugin(plugin, settings)
    except _HANDLED_ERRORS as e:
        _fail(str(e))

    if not description.commands:
        _click.echo(f"Plugin '{name}' provides no commands.")
        return
    for command in description.commands:
        _click.echo(f"{command.name:<20} {command.help}")


@plugins_group.command(name="exec", context_settings={"ignore_unknown_options": True})
@_click.argument("name")
@_click.argument("command")
@_click.argument("args", nargs=-1, type=_click.UNPROCESSED)
@_click.option(
    "--root",
    type=_click.Path(exists=True, file_okay=False, path_type=_pathlib.Path),
    default=None,
    help="Project root; enables the host service for the plugin",
)
@_click.option("--flag", "flags", multiple=True, help="Command flag as KEY=VALUE (repeatable)")
@_click.pass_context
def plugins_exec(
    ctx: _click.Context,
    name: str,
    command: str,
    args: tuple[str, ...],
    root: _pathlib.Path | None,
    flags: tuple[str, ...],
) -> None:
    """Run COMMAND of plugin NAME; exits with the command's exit code."""
    settings = _settings(ctx)
    plugin = _require_plugin(settings, name)

    request = messages.CommandRequest(
        command=command,
        args=_parse_args(args),
        flags=_parse_pairs(flags, "--flag"),
        working_dir=str(_pathlib.Path.cwd()),
    )
    try:
        config_root = project.load_root(root) if root is not None else None
        exit_code = host.execute_plugin_command(
            plugin,
            request,
            root=config_root,
            settings=settings,
            stdout=_click.get_binary_stream("stdout"),
            stderr=_click.get_binary_stream("stderr"),
        )
    except _HANDLED_ERRORS as e:
        _fail(str(e))

    if exit_code != 0:
        raise SystemExit(exit_code)


# =============================================================================
# Host Flows
# =============================================================================


_root_option = _click.option(
    "--root",
    type=_click.Path(exists=True, file_okay=False, path_type=_pathlib.Path),
    default=".",
    show_default=True,
    help="Project root directory",
)


@cli.command(name="generate")
@_root_option
@_click.option(
    "--detailed-exit-code",
    is_flag=True,
    help="Ask the plugin to report changes through its exit code",
)
@_click.pass_context
def generate(ctx: _click.Context, root: _pathlib.Path, detailed_exit_code: bool) -> None:
    """Let a plugin override code generation."""
    settings = _settings(ctx)
    try:
        result = host.run_generate_override(
            project.load_root(root),
            settings,
            stdout=_click.get_binary_stream("stdout"),
            stderr=_click.get_binary_stream("stderr"),
            detailed_exit_code=detailed_exit_code,
        )
    except _HANDLED_ERRORS as e:
        _fail(str(e))

    if not result.handled:
        _click.echo("No plugin overrides code generation.", err=True)
        return
    if result.exit_code != 0:
        raise SystemExit(result.exit_code)


@cli.command(name="post-init")
@_root_option
@_click.option("--json", "json_output", is_flag=True, help="JSON output")
@_click.pass_context
def post_init(ctx: _click.Context, root: _pathlib.Path, json_output: bool) -> None:
    """Run plugin post-init hooks and show the resulting stacks."""
    settings = _settings(ctx)
    try:
        config_root = project.load_root(root)
        applied = host.run_post_init_plugins(config_root, settings)
    except _HANDLED_ERRORS as e:
        _fail(str(e))

    stacks = {
        node.dir: host_service.stack_metadata(node).model_dump()
        for node in config_root.stacks()
    }

    if json_output:
        _click.echo(_json.dumps({"plugins": applied, "stacks": stacks}, indent=2))
        return

    _click.echo(f"Post-init hooks applied: {', '.join(applied) or '(none)'}")
    for path, meta in stacks.items():
        tags = ", ".join(meta["tags"]) or "-"
        _click.echo(f"  {path}: {meta['name']} [tags: {tags}]")


def main() -> None:
    """Main entry point with correct program name."""
    cli(prog_name="tmplugin")


if __name__ == "__main__":
    main()
