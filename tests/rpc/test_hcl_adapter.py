"""
Tests for plugin-backed configuration block handlers.

The plugin process is replaced by a fake client factory that records
every spawned client and every request it received.
"""

import dataclasses as _dataclasses
import types as _types
import typing as _typing

import pytest as _pytest

import tmplugin.hcl as hcl
import tmplugin.rpc.hcl_adapter as hcl_adapter
import tmplugin.rpc.messages as messages


@_dataclasses.dataclass
class _FakeHost:
    """Stands in for a HostClient: records requests and kills."""

    response: messages.ParsedBlocksResponse | Exception
    requests: list[messages.ParsedBlocksRequest] = _dataclasses.field(default_factory=list)
    killed: bool = False

    def __post_init__(self) -> None:
        self.client = _types.SimpleNamespace(
            hcl_schema=_types.SimpleNamespace(process_parsed_blocks=self._process)
        )

    def _process(self, request: messages.ParsedBlocksRequest) -> messages.ParsedBlocksResponse:
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    def kill(self) -> None:
        self.killed = True


class _Factory:
    def __init__(self, response: messages.ParsedBlocksResponse | Exception) -> None:
        self.response = response
        self.spawned: list[tuple[str, _FakeHost]] = []

    def __call__(self, binary_path: str) -> _typing.Any:
        host = _FakeHost(self.response)
        self.spawned.append((binary_path, host))
        return host

    @property
    def requests(self) -> list[messages.ParsedBlocksRequest]:
        return [req for _, host in self.spawned for req in host.requests]


def _attr(name: str, source: str, value: _typing.Any = None, known: bool = False) -> hcl.Attribute:
    return hcl.Attribute(name=name, expr=hcl.Expression(source=source, value=value, known=known))


def _block(block_type: str, *labels: str, path: str = "/prj/a.tm", **attrs: str) -> hcl.Block:
    return hcl.Block(
        type=block_type,
        labels=list(labels),
        attributes={name: _attr(name, source) for name, source in attrs.items()},
        range=hcl.Range(filename="a.tm", line=1, column=1, host_path=path),
    )


def _parser(
    factory: _Factory, *schemas: messages.HCLBlockSchema, plugin: str = "echo"
) -> hcl.Parser:
    options = hcl_adapter.hcl_options_from_schema(
        plugin, "/plugins/echo/bin/echo", list(schemas), client_factory=factory
    )
    return hcl.Parser(*options)


OK = messages.ParsedBlocksResponse(plugin_data=b"blob")


class TestAttributeValue:
    @_pytest.mark.parametrize(
        ("source", "expected"),
        [
            (' "hello"', messages.StringAttr(value="hello")),
            ("true", messages.BoolAttr(value=True)),
            ("false", messages.BoolAttr(value=False)),
            ("42", messages.IntAttr(value=42)),
            ("-7", messages.IntAttr(value=-7)),
            ("2.0", messages.IntAttr(value=2)),
            ("1.5", messages.FloatAttr(value=1.5)),
            ("1e3", messages.IntAttr(value=1000)),
            ("9223372036854775808", messages.FloatAttr(value=9223372036854775808.0)),
            ('"a\\nb"', messages.StringAttr(value="a\nb")),
        ],
    )
    def test_literals(self, source: str, expected: messages.Message) -> None:
        assert hcl_adapter.attribute_value(_attr("x", source)) == expected

    def test_expression_keeps_source(self) -> None:
        """Non-literals travel verbatim, minus leading blanks."""
        value = hcl_adapter.attribute_value(_attr("x", " \tvar.region"))
        assert value == messages.ExpressionAttr(text="var.region")

    def test_template_is_expression(self) -> None:
        value = hcl_adapter.attribute_value(_attr("x", '"${var.a}-b"'))
        assert value == messages.ExpressionAttr(text='"${var.a}-b"')

    def test_heredoc_keeps_trailing_newline(self) -> None:
        source = " <<EOT\nline\nEOT\n"
        value = hcl_adapter.attribute_value(_attr("x", source))
        assert value == messages.ExpressionAttr(text="<<EOT\nline\nEOT\n")

    def test_known_value_used(self) -> None:
        """A constant-evaluable expression is sent as its value."""
        assert hcl_adapter.attribute_value(_attr("x", "1 + 2", value=3, known=True)) == (
            messages.IntAttr(value=3)
        )
        assert hcl_adapter.attribute_value(_attr("x", "upper(\"a\")", value="A", known=True)) == (
            messages.StringAttr(value="A")
        )

    def test_known_non_scalar_is_expression(self) -> None:
        value = hcl_adapter.attribute_value(_attr("x", "[1, 2]", value=[1, 2], known=True))
        assert value == messages.ExpressionAttr(text="[1, 2]")

    def test_missing_expression(self) -> None:
        assert hcl_adapter.attribute_value(None) == messages.ExpressionAttr(text="")
        assert hcl_adapter.attribute_value(hcl.Attribute(name="x", expr=None)) == (
            messages.ExpressionAttr(text="")
        )


class TestLabelsFromLabelType:
    def test_counted_labels(self) -> None:
        label_type = hcl.LabelBlockType(type="t", num_labels=1, labels=("a", "b"))
        assert hcl_adapter.labels_from_label_type(label_type) == ["a"]

    def test_zero_count_stops_at_empty(self) -> None:
        label_type = hcl.LabelBlockType(type="t", num_labels=0, labels=("a", "b", "", "c"))
        assert hcl_adapter.labels_from_label_type(label_type) == ["a", "b"]

    def test_no_labels(self) -> None:
        assert hcl_adapter.labels_from_label_type(hcl.new_empty_label_block_type("t")) == []


class TestConversion:
    def test_block(self) -> None:
        block = _block("echo", "one", message='"hi"')
        block.blocks.append(_block("inner", path="/prj/a.tm", size="3"))

        parsed = hcl_adapter.parsed_block_from_block(block)

        assert parsed.file_path == "/prj/a.tm"
        assert parsed.block_type == "echo"
        assert parsed.labels == ["one"]
        assert parsed.attributes == {"message": messages.StringAttr(value="hi")}
        assert parsed.nested_blocks[0].block_type == "inner"
        assert parsed.nested_blocks[0].attributes == {"size": messages.IntAttr(value=3)}

    def test_merged_block(self) -> None:
        """Nested merged blocks take type and labels from their key."""
        first = _block("settings", path="/prj/a.tm", a="1")
        first.blocks.append(_block("rule", "r1", path="/prj/a.tm", x="true"))
        second = _block("settings", path="/prj/b.tm", b="2")
        merged = hcl.merge_blocks([first, second])

        parsed = hcl_adapter.parsed_block_from_merged(merged)

        assert parsed.file_path == "/prj/a.tm"
        assert set(parsed.attributes) == {"a", "b"}
        assert len(parsed.nested_blocks) == 1
        nested = parsed.nested_blocks[0]
        assert nested.block_type == "rule"
        assert nested.labels == ["r1"]
        assert nested.attributes == {"x": messages.BoolAttr(value=True)}

    def test_merged_block_two_levels_deep(self) -> None:
        """Type, labels and attributes survive at depth 2 across origin files."""
        first = _block("settings", path="/prj/a.tm")
        policy_a = _block("policy", path="/prj/a.tm", mode='"strict"')
        policy_a.blocks.append(_block("rule", "r1", path="/prj/a.tm", x="true"))
        first.blocks.append(policy_a)
        second = _block("settings", path="/prj/b.tm")
        policy_b = _block("policy", path="/prj/b.tm", level="2")
        policy_b.blocks.append(_block("rule", "r1", path="/prj/b.tm", y='"z"'))
        second.blocks.append(policy_b)

        parsed = hcl_adapter.parsed_block_from_merged(hcl.merge_blocks([first, second]))

        (policy,) = parsed.nested_blocks
        assert policy.block_type == "policy"
        assert policy.labels == []
        assert policy.attributes == {
            "mode": messages.StringAttr(value="strict"),
            "level": messages.IntAttr(value=2),
        }
        (rule,) = policy.nested_blocks
        assert rule.block_type == "rule"
        assert rule.labels == ["r1"]
        assert rule.file_path == "/prj/a.tm"
        assert rule.attributes == {
            "x": messages.BoolAttr(value=True),
            "y": messages.StringAttr(value="z"),
        }
        assert rule.nested_blocks == []

    def test_merged_without_origins(self) -> None:
        parsed = hcl_adapter.parsed_block_from_merged(hcl.MergedBlock(type="t"))
        assert parsed.file_path == ""


class TestDiagnosticsError:
    def test_only_errors_count(self) -> None:
        diags = [
            messages.Diagnostic(severity=messages.Severity.WARNING, summary="meh"),
            messages.Diagnostic(severity=messages.Severity.INFO, summary="fyi"),
        ]
        assert hcl_adapter.diagnostics_error(diags) is None
        assert hcl_adapter.diagnostics_error([]) is None

    def test_omitted_severity_is_not_an_error(self) -> None:
        codec = messages.Codec(messages.ParsedBlocksResponse)
        response = codec.decode(b'{"diagnostics": [{"summary": "note"}]}')
        assert response.diagnostics[0].severity == messages.Severity.UNSPECIFIED
        assert hcl_adapter.diagnostics_error(response.diagnostics) is None

    def test_message_format(self) -> None:
        diags = [
            messages.Diagnostic(
                severity=messages.Severity.ERROR,
                summary="bad value",
                detail="must be positive",
                file="a.tm",
                line=3,
                column=5,
            ),
            messages.Diagnostic(severity=messages.Severity.WARNING, summary="ignored"),
            messages.Diagnostic(severity=messages.Severity.ERROR, summary="second"),
        ]
        error = hcl_adapter.diagnostics_error(diags)
        assert error is not None
        assert str(error) == "bad value: must be positive (a.tm:3:5); second"
        assert len(error.diagnostics) == 2


class TestExternalData:
    def test_append_and_get(self) -> None:
        data = hcl_adapter.HCLExternalData()
        data.append("p", "b", b"1")
        data.append("p", "b", b"2")
        assert data.get("p", "b") == [b"1", b"2"]
        assert data.get("p", "other") == []
        assert data.get("q", "b") == []

    def test_store_ignores_empty_and_missing_parser(self) -> None:
        parser = hcl.Parser()
        hcl_adapter.store_plugin_data(parser, "p", "b", b"")
        hcl_adapter.store_plugin_data(None, "p", "b", b"x")
        assert parser.parsed_config.external is None

    def test_store_rejects_foreign_external_data(self) -> None:
        parser = hcl.Parser()
        parser.parsed_config.external = {"someone": "else"}
        with _pytest.raises(hcl_adapter.ExternalDataError):
            hcl_adapter.store_plugin_data(parser, "p", "b", b"x")


class TestHclOptionsFromSchema:
    def test_empty_inputs(self) -> None:
        factory = _Factory(OK)
        schema = [messages.HCLBlockSchema(name="echo")]
        assert hcl_adapter.hcl_options_from_schema("p", "/bin/p", [], client_factory=factory) == []
        assert hcl_adapter.hcl_options_from_schema("p", "", schema, client_factory=factory) == []

    def test_one_option_per_kind(self) -> None:
        schemas = [
            messages.HCLBlockSchema(name="u1", kind=messages.BlockKind.UNMERGED),
            messages.HCLBlockSchema(name="q", kind=messages.BlockKind.UNIQUE),
            messages.HCLBlockSchema(name="u2", kind=messages.BlockKind.UNMERGED),
            messages.HCLBlockSchema(name="m", kind=messages.BlockKind.MERGED),
        ]
        options = hcl_adapter.hcl_options_from_schema(
            "p", "/bin/p", schemas, client_factory=_Factory(OK)
        )
        assert len(options) == 3

        collected = hcl.ParserOptions()
        for option in options:
            option(collected)
        assert [c().name() for c in collected.unmerged] == ["u1", "u2"]
        assert [c().name() for c in collected.merged] == ["m"]
        assert collected.merged_labels == []
        assert [c().name() for c in collected.unique] == ["q"]

    def test_no_plugin_spawned_until_dispatch(self) -> None:
        factory = _Factory(OK)
        _parser(factory, messages.HCLBlockSchema(name="echo"))
        assert factory.spawned == []


class TestDispatch:
    def test_unmerged_spawns_per_block(self) -> None:
        """Each block gets its own plugin process, killed afterwards."""
        factory = _Factory(OK)
        parser = _parser(factory, messages.HCLBlockSchema(name="echo", label_count=1))

        config = parser.parse_blocks([_block("echo", "a"), _block("echo", "b")])

        assert len(factory.spawned) == 2
        assert all(path == "/plugins/echo/bin/echo" for path, _ in factory.spawned)
        assert all(host.killed for _, host in factory.spawned)
        requests = factory.requests
        assert [r.block_type for r in requests] == ["echo", "echo"]
        assert [r.blocks[0].labels for r in requests] == [["a"], ["b"]]
        assert all(len(r.blocks) == 1 for r in requests)

        assert isinstance(config.external, hcl_adapter.HCLExternalData)
        assert config.external.get("echo", "echo") == [b"blob", b"blob"]

    def test_unique(self) -> None:
        factory = _Factory(OK)
        parser = _parser(
            factory, messages.HCLBlockSchema(name="only", kind=messages.BlockKind.UNIQUE)
        )
        parser.parse_blocks([_block("only")])
        with _pytest.raises(hcl.ParseError, match="must be unique"):
            parser.parse_blocks([_block("only")])
        assert len(factory.spawned) == 1

    def test_merged(self) -> None:
        factory = _Factory(OK)
        parser = _parser(
            factory, messages.HCLBlockSchema(name="settings", kind=messages.BlockKind.MERGED)
        )
        parser.parse_blocks(
            [_block("settings", a="1"), _block("settings", path="/prj/b.tm", b="2")]
        )
        assert len(factory.spawned) == 1
        sent = factory.requests[0].blocks[0]
        assert set(sent.attributes) == {"a", "b"}

    def test_merged_labels(self) -> None:
        """One dispatch per label set; labels come from the label key."""
        factory = _Factory(OK)
        parser = _parser(
            factory,
            messages.HCLBlockSchema(
                name="env", kind=messages.BlockKind.MERGED_LABELS, label_count=1
            ),
        )
        parser.parse_blocks(
            [_block("env", "dev", a="1"), _block("env", "prod", a="2"), _block("env", "dev", b="3")]
        )
        sent = sorted(
            (r.blocks[0].labels, sorted(r.blocks[0].attributes)) for r in factory.requests
        )
        assert sent == [(["dev"], ["a", "b"]), (["prod"], ["a"])]

    def test_error_diagnostics_fail_and_store_nothing(self) -> None:
        factory = _Factory(
            messages.ParsedBlocksResponse(
                diagnostics=[
                    messages.Diagnostic(
                        severity=messages.Severity.ERROR,
                        summary="nope",
                        file="a.tm",
                        line=1,
                        column=2,
                    )
                ],
                plugin_data=b"ignored",
            )
        )
        parser = _parser(factory, messages.HCLBlockSchema(name="echo"))
        with _pytest.raises(hcl_adapter.DiagnosticsError, match=r"nope \(a.tm:1:2\)"):
            parser.parse_blocks([_block("echo")])
        assert parser.parsed_config.external is None
        assert factory.spawned[0][1].killed

    def test_warnings_do_not_fail(self) -> None:
        factory = _Factory(
            messages.ParsedBlocksResponse(
                diagnostics=[messages.Diagnostic(severity=messages.Severity.WARNING, summary="w")],
                plugin_data=b"data",
            )
        )
        parser = _parser(factory, messages.HCLBlockSchema(name="echo"))
        config = parser.parse_blocks([_block("echo")])
        assert config.external.get("echo", "echo") == [b"data"]

    def test_rpc_failure_still_kills(self) -> None:
        factory = _Factory(RuntimeError("plugin crashed"))
        parser = _parser(factory, messages.HCLBlockSchema(name="echo"))
        with _pytest.raises(RuntimeError, match="plugin crashed"):
            parser.parse_blocks([_block("echo")])
        assert factory.spawned[0][1].killed

    def test_empty_data_not_stored(self) -> None:
        factory = _Factory(messages.ParsedBlocksResponse())
        parser = _parser(factory, messages.HCLBlockSchema(name="echo"))
        assert parser.parse_blocks([_block("echo")]).external is None

    def test_plugins_share_external_data(self) -> None:
        """Two plugins' blocks land under their own names in one HCLExternalData."""
        first = _Factory(messages.ParsedBlocksResponse(plugin_data=b"1"))
        second = _Factory(messages.ParsedBlocksResponse(plugin_data=b"2"))
        options = [
            *hcl_adapter.hcl_options_from_schema(
                "alpha", "/a", [messages.HCLBlockSchema(name="a")], client_factory=first
            ),
            *hcl_adapter.hcl_options_from_schema(
                "beta", "/b", [messages.HCLBlockSchema(name="b")], client_factory=second
            ),
        ]
        config = hcl.Parser(*options).parse_blocks([_block("a"), _block("b")])
        assert config.external.plugins == {"alpha": {"a": [b"1"]}, "beta": {"b": [b"2"]}}
