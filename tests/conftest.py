"""
Shared pytest fixtures for tmplugin tests.

This file is automatically loaded by pytest. Fixtures defined here are
available to all test files without explicit imports.
"""

import concurrent.futures as _futures
import os as _os
import pathlib as _pathlib
import shlex as _shlex
import stat as _stat
import sys as _sys
import typing as _typing
import unittest.mock as _mock

import grpc as _grpc
import pytest as _pytest

import tmplugin.config as config
import tmplugin.plugins.discovery as discovery
import tmplugin.plugins.manifest as manifest
import tmplugin.project as project

TESTS_DIR = _pathlib.Path(__file__).parent
SRC_DIR = TESTS_DIR.parent / "src"
ECHO_PLUGIN = TESTS_DIR / "fixtures" / "plugins" / "echo_plugin.py"

ALL_ECHO_SERVICES = ("command", "hcl", "lifecycle", "generate")

# Environment prefixes that should be cleared for isolated tests
ENV_PREFIXES_TO_CLEAR = ("TM_",)


# =============================================================================
# Environment and settings
# =============================================================================


@_pytest.fixture
def clean_env() -> dict[str, str]:
    """
    Return environment dict with TM_* keys removed.

    Use with mock.patch.dict to isolate tests from the actual environment.
    """
    return {k: v for k, v in _os.environ.items() if not k.startswith(ENV_PREFIXES_TO_CLEAR)}


@_pytest.fixture
def isolated_env(clean_env: dict[str, str]) -> _typing.Any:
    """
    Context manager that isolates tests from environment variables.

    Usage:
        def test_something(isolated_env):
            with isolated_env:
                settings = config.Settings.construct_without_dotenv()
    """
    return _mock.patch.dict(_os.environ, clean_env, clear=True)


@_pytest.fixture
def user_dir(tmp_path: _pathlib.Path) -> _pathlib.Path:
    """Empty user terramate directory."""
    directory = tmp_path / "terramate-home"
    directory.mkdir()
    return directory


@_pytest.fixture
def settings(isolated_env: _typing.Any, user_dir: _pathlib.Path) -> config.Settings:
    """
    Settings isolated from environment and .env file, rooted at user_dir.

    Timeouts are kept short so a misbehaving plugin fails the test quickly.
    """
    with isolated_env:
        return config.Settings.construct_without_dotenv(
            user_terramate_dir=user_dir,
            plugin_start_timeout=15.0,
            plugin_call_timeout=15.0,
            post_init_timeout=15.0,
            generate_timeout=15.0,
        )


# =============================================================================
# Projects
# =============================================================================


@_pytest.fixture
def project_dir(tmp_path: _pathlib.Path) -> _pathlib.Path:
    """
    A small project on disk.

    Layout:
        terramate.tm.hcl
        stack-a/stack.tm        (stack "Stack A")
        stack-b/stack.tm.hcl    (stack named after its directory)
        modules/vpc/main.tf     (plain directory)
        .git/config             (hidden, never loaded)
    """
    root = tmp_path / "project"
    (root / "stack-a").mkdir(parents=True)
    (root / "stack-b").mkdir()
    (root / "modules" / "vpc").mkdir(parents=True)
    (root / ".git").mkdir()

    (root / "terramate.tm.hcl").write_text("terramate {\n}\n")
    (root / "stack-a" / "stack.tm").write_text(
        'stack {\n  name        = "Stack A"\n  description = "first stack"\n}\n'
    )
    (root / "stack-b" / "stack.tm.hcl").write_text("stack {\n}\n")
    (root / "modules" / "vpc" / "main.tf").write_text('resource "null" "vpc" {}\n')
    (root / ".git" / "config").write_text("[core]\n")
    return root.resolve()


@_pytest.fixture
def config_root(project_dir: _pathlib.Path) -> project.ConfigRoot:
    """Loaded configuration of project_dir."""
    return project.load_root(project_dir)


# =============================================================================
# Plugin executables
# =============================================================================


@_pytest.fixture
def make_shim() -> _typing.Callable[[_pathlib.Path, str], _pathlib.Path]:
    """
    Factory writing an executable /bin/sh script.

    Usage:
        def test_something(make_shim, tmp_path):
            path = make_shim(tmp_path / "plugin", "exit 3")
    """

    def make(path: _pathlib.Path, body: str) -> _pathlib.Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"#!/bin/sh\n{body}\n")
        path.chmod(path.stat().st_mode | _stat.S_IXUSR | _stat.S_IXGRP | _stat.S_IXOTH)
        return path

    return make


def _echo_command(name: str, services: _typing.Sequence[str]) -> str:
    pythonpath = _shlex.quote(str(SRC_DIR))
    return (
        f"PYTHONPATH={pythonpath}${{PYTHONPATH:+:$PYTHONPATH}} "
        f"ECHO_PLUGIN_NAME={_shlex.quote(name)} "
        f"ECHO_PLUGIN_SERVICES={_shlex.quote(','.join(services))} "
        f'exec {_shlex.quote(_sys.executable)} {_shlex.quote(str(ECHO_PLUGIN))} "$@"'
    )


@_pytest.fixture
def echo_binary(
    tmp_path: _pathlib.Path,
    make_shim: _typing.Callable[[_pathlib.Path, str], _pathlib.Path],
) -> _typing.Callable[..., _pathlib.Path]:
    """
    Factory for echo plugin executables outside any plugin directory.

    Usage:
        path = echo_binary(services=("hcl",))
    """

    def make(name: str = "echo", services: _typing.Sequence[str] = ALL_ECHO_SERVICES) -> _pathlib.Path:
        return make_shim(tmp_path / "bin" / f"{name}-plugin", _echo_command(name, services))

    return make


@_pytest.fixture
def install_echo_plugin(
    user_dir: _pathlib.Path,
    make_shim: _typing.Callable[[_pathlib.Path, str], _pathlib.Path],
) -> _typing.Callable[..., discovery.InstalledPlugin]:
    """
    Factory installing the echo plugin into user_dir.

    Writes <user_dir>/plugins/<name>/manifest.json plus an executable
    shim under bin/ that runs tests/fixtures/plugins/echo_plugin.py with
    the requested services, then returns the discovered plugin.

    Usage:
        def test_something(install_echo_plugin):
            plugin = install_echo_plugin("echo", services=("hcl",))
    """

    def install(
        name: str = "echo", services: _typing.Sequence[str] = ALL_ECHO_SERVICES
    ) -> discovery.InstalledPlugin:
        directory = manifest.plugin_dir(user_dir, name)
        make_shim(directory / "bin" / name, _echo_command(name, services))
        manifest.save_manifest(
            directory,
            manifest.Manifest(
                name=name,
                version="local",
                type=manifest.PluginType.GRPC,
                protocol=manifest.Protocol.GRPC,
                binaries={manifest.BinaryKind.CLI: manifest.Binary(path=f"bin/{name}")},
            ),
        )
        for plugin in discovery.discover_installed(user_dir):
            if plugin.name == name:
                return plugin
        raise AssertionError(f"installed plugin {name} was not discovered")

    return install


# =============================================================================
# In-process gRPC
# =============================================================================


@_pytest.fixture
def grpc_channel() -> _typing.Iterator[_typing.Callable[..., _grpc.Channel]]:
    """
    Factory serving handlers in-process and returning a connected channel.

    Usage:
        def test_something(grpc_channel):
            channel = grpc_channel(lambda server: server.add_generic_rpc_handlers(...))
    """
    started: list[tuple[_grpc.Server, _grpc.Channel]] = []

    def serve(register: _typing.Callable[[_grpc.Server], object]) -> _grpc.Channel:
        server = _grpc.server(_futures.ThreadPoolExecutor(max_workers=4))
        register(server)
        port = server.add_insecure_port("127.0.0.1:0")
        server.start()
        channel = _grpc.insecure_channel(f"127.0.0.1:{port}")
        started.append((server, channel))
        return channel

    yield serve

    for server, channel in started:
        channel.close()
        server.stop(None)
