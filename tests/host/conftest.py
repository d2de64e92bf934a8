"""
Fixtures for host flow tests.

Host flows spawn plugins through a launcher. These fixtures replace the
subprocess with an in-process gRPC server per launch, so flows still
talk to their plugins over the wire.
"""

import pathlib as _pathlib
import typing as _typing

import grpc as _grpc
import pytest as _pytest

import tmplugin.config as config
import tmplugin.plugins as plugins
import tmplugin.rpc.server as server
import tmplugin.rpc.services as services


class FakeHost:
    """Stands in for HostClient: real typed clients, no subprocess."""

    def __init__(self, client: services.PluginClient) -> None:
        self.client = client
        self.killed = False

    def kill(self) -> None:
        self.killed = True

    def __enter__(self) -> "FakeHost":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.kill()


class FakeLauncher:
    """
    Launcher serving installed plugins from in-process PluginServers.

    install() writes a manifest (so discovery finds the plugin) and
    registers the services the launcher will serve for it.
    """

    def __init__(
        self,
        user_dir: _pathlib.Path,
        grpc_channel: _typing.Callable[..., _grpc.Channel],
    ) -> None:
        self._user_dir = user_dir
        self._grpc_channel = grpc_channel
        self._servers: dict[str, server.PluginServer] = {}
        self._failures: dict[str, Exception] = {}
        self.launched: list[tuple[str, dict[str, str]]] = []
        self.hosts: list[FakeHost] = []

    def install(
        self, name: str, plugin_server: server.PluginServer | None = None
    ) -> plugins.InstalledPlugin:
        plugins.save_manifest(
            plugins.plugin_dir(self._user_dir, name),
            plugins.Manifest(
                name=name,
                version="1.0.0",
                protocol=plugins.Protocol.GRPC,
                binaries={plugins.BinaryKind.CLI: plugins.Binary(path=f"bin/{name}")},
            ),
        )
        self._servers[name] = plugin_server or server.PluginServer()
        for plugin in plugins.discover_installed(self._user_dir):
            if plugin.name == name:
                return plugin
        raise AssertionError(name)

    def fail(self, name: str, error: Exception) -> None:
        """Make launching the named plugin raise error."""
        self._failures[name] = error

    def __call__(
        self,
        plugin: plugins.InstalledPlugin,
        settings: config.Settings,
        extra_env: _typing.Mapping[str, str] | None = None,
    ) -> FakeHost:
        self.launched.append((plugin.name, dict(extra_env or {})))
        if plugin.name in self._failures:
            raise self._failures[plugin.name]
        plugin_server = self._servers[plugin.name]
        channel = self._grpc_channel(lambda s: server.register(s, plugin_server))
        host = FakeHost(services.PluginClient.from_channel(channel, timeout=5))
        self.hosts.append(host)
        return host


@_pytest.fixture
def launcher(
    user_dir: _pathlib.Path, grpc_channel: _typing.Callable[..., _grpc.Channel]
) -> FakeLauncher:
    return FakeLauncher(user_dir, grpc_channel)
