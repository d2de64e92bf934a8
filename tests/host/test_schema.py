"""Tests for collecting plugin-declared blocks into parser options."""

import typing as _typing

import pytest as _pytest

import tmplugin.config as config
import tmplugin.constants as constants
import tmplugin.hcl as hcl
import tmplugin.host.schema as schema
import tmplugin.rpc.client as client
import tmplugin.rpc.errors as errors
import tmplugin.rpc.hcl_adapter as hcl_adapter
import tmplugin.rpc.messages as messages
import tmplugin.rpc.server as server
import tmplugin.rpc.services as services


class _Schema(services.HCLSchemaServiceBase):
    def __init__(self, *names: str) -> None:
        self._names = names

    def get_hcl_schema(self, request: messages.Empty) -> messages.HCLSchemaList:
        return messages.HCLSchemaList(blocks=[messages.HCLBlockSchema(name=n) for n in self._names])


class _BrokenSchema(services.HCLSchemaServiceBase):
    def get_hcl_schema(self, request: messages.Empty) -> messages.HCLSchemaList:
        raise errors.unavailable("schema backend down")


def _names(options: list[hcl.Option]) -> list[str]:
    collected = hcl.ParserOptions()
    for option in options:
        option(collected)
    return [ctor().name() for ctor in collected.unmerged]


class TestLoadHclOptions:
    def test_no_plugins(self, settings: config.Settings, launcher: _typing.Any) -> None:
        assert schema.load_hcl_options(settings, launcher=launcher) == []
        assert launcher.launched == []

    def test_collects_in_discovery_order(
        self, settings: config.Settings, launcher: _typing.Any
    ) -> None:
        launcher.install("beta", server.PluginServer(hcl_schema=_Schema("b1")))
        launcher.install("alpha", server.PluginServer(hcl_schema=_Schema("a1", "a2")))

        options = schema.load_hcl_options(settings, launcher=launcher, client_factory=_no_spawn)

        assert _names(options) == ["a1", "a2", "b1"]
        assert all(host.killed for host in launcher.hosts)

    def test_skips_plugins_without_schema(
        self, settings: config.Settings, launcher: _typing.Any
    ) -> None:
        launcher.install("nohcl", server.PluginServer())
        options = schema.load_hcl_options(settings, launcher=launcher, client_factory=_no_spawn)
        assert options == []
        assert [name for name, _ in launcher.launched] == ["nohcl"]

    def test_failing_plugins_skipped(
        self, settings: config.Settings, launcher: _typing.Any, caplog: _pytest.LogCaptureFixture
    ) -> None:
        launcher.install("broken", server.PluginServer(hcl_schema=_BrokenSchema()))
        launcher.install("crashes", server.PluginServer(hcl_schema=_Schema("x")))
        launcher.fail("crashes", errors.HandshakeError("plugin exited before handshake"))
        launcher.install("good", server.PluginServer(hcl_schema=_Schema("ok")))

        with caplog.at_level("WARNING"):
            options = schema.load_hcl_options(settings, launcher=launcher, client_factory=_no_spawn)

        assert _names(options) == ["ok"]
        assert "Skipping plugin broken" in caplog.text
        assert "Skipping plugin crashes" in caplog.text

    def test_disabled(self, settings: config.Settings, launcher: _typing.Any) -> None:
        launcher.install("alpha", server.PluginServer(hcl_schema=_Schema("a")))
        disabled = settings.model_copy(update={"disable_grpc_plugins": "1"})
        assert schema.load_hcl_options(disabled, launcher=launcher) == []
        assert launcher.launched == []

    def test_host_addr_reaches_every_spawn(
        self,
        settings: config.Settings,
        launcher: _typing.Any,
        monkeypatch: _pytest.MonkeyPatch,
    ) -> None:
        """Schema query and per-block clients both see TM_PLUGIN_HOST_ADDR."""
        spawned: list[tuple[str, _typing.Any]] = []
        factories: list[hcl_adapter.ClientFactory] = []

        def fake_spawn(
            binary_path: str, extra_env: _typing.Any = None, **kwargs: _typing.Any
        ) -> _typing.Any:
            spawned.append((binary_path, extra_env))
            return None

        def capture(
            *args: _typing.Any, client_factory: hcl_adapter.ClientFactory
        ) -> list[hcl.Option]:
            factories.append(client_factory)
            return []

        monkeypatch.setattr(client, "new_host_client_with_env", fake_spawn)
        monkeypatch.setattr(hcl_adapter, "hcl_options_from_schema", capture)
        plugin = launcher.install("alpha", server.PluginServer(hcl_schema=_Schema("a")))

        schema.load_hcl_options(settings, launcher=launcher, host_addr="127.0.0.1:4242")
        factories[0](plugin.binary_path)

        expected = {constants.HOST_ADDR_ENV: "127.0.0.1:4242"}
        assert launcher.launched == [("alpha", expected)]
        assert spawned == [(plugin.binary_path, expected)]

    def test_no_host_addr_by_default(
        self, settings: config.Settings, launcher: _typing.Any
    ) -> None:
        launcher.install("alpha", server.PluginServer(hcl_schema=_Schema("a")))
        schema.load_hcl_options(settings, launcher=launcher, client_factory=_no_spawn)
        assert launcher.launched == [("alpha", {})]


def _no_spawn(binary_path: str) -> _typing.Any:
    raise AssertionError(f"unexpected spawn of {binary_path}")
