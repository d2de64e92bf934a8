"""
Plugin-backed configuration block handlers.

A plugin declares custom block shapes through GetHCLSchema. For every
declared block this module builds a parser handler of the matching
kind. When the parser hands a block to one of these handlers, the
handler:

1. converts the block to its wire form (ParsedBlock)
2. spawns a fresh plugin process
3. sends exactly that one block through ProcessParsedBlocks
4. turns error diagnostics into a DiagnosticsError
5. appends the returned opaque data to the parsed config's
   HCLExternalData under (plugin name, block type)
6. kills the plugin, on every path

Plugin processes are never shared between blocks.
"""

from __future__ import annotations

import dataclasses as _dataclasses
import logging as _logging
import os as _os
import typing as _typing

import tmplugin.hcl.ast as ast
import tmplugin.hcl.parser as parser
import tmplugin.rpc.client as client
import tmplugin.rpc.messages as messages

_logger = _logging.getLogger(__name__)

ClientFactory = _typing.Callable[[str], client.HostClient]
"""Spawns a connected plugin from its binary path."""


class DiagnosticsError(Exception):
    """A plugin reported error-severity diagnostics."""

    def __init__(self, message: str, diagnostics: list[messages.Diagnostic]) -> None:
        super().__init__(message)
        self.diagnostics = diagnostics


class ExternalDataError(Exception):
    """The parsed config already holds external data of another type."""

    pass


@_dataclasses.dataclass
class HCLExternalData:
    """Opaque plugin data: plugin name -> block type -> blobs in arrival order."""

    plugins: dict[str, dict[str, list[bytes]]] = _dataclasses.field(default_factory=dict)

    def append(self, plugin_name: str, block_type: str, data: bytes) -> None:
        self.plugins.setdefault(plugin_name, {}).setdefault(block_type, []).append(data)

    def get(self, plugin_name: str, block_type: str) -> list[bytes]:
        return list(self.plugins.get(plugin_name, {}).get(block_type, []))


# =============================================================================
# Conversion to wire form
# =============================================================================


def _typed_value(value: _typing.Any) -> messages.AttributeValue | None:
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return messages.BoolAttr(value=value)
    if isinstance(value, int):
        if ast.INT64_MIN <= value <= ast.INT64_MAX:
            return messages.IntAttr(value=value)
        return messages.FloatAttr(value=float(value))
    if isinstance(value, float):
        if value.is_integer() and ast.INT64_MIN <= value <= ast.INT64_MAX:
            return messages.IntAttr(value=int(value))
        return messages.FloatAttr(value=value)
    if isinstance(value, str):
        return messages.StringAttr(value=value)
    return None


def attribute_value(attr: ast.Attribute | None) -> messages.AttributeValue:
    """
    Convert an attribute to its wire value.

    Literal and constant-evaluable values become typed variants.
    Anything else is sent as its source text with leading spaces and
    tabs removed; trailing newlines are kept since heredocs need them.
    """
    if attr is None or attr.expr is None:
        return messages.ExpressionAttr(text="")

    expr = attr.expr
    is_literal, literal = ast.parse_literal(expr.source)
    if is_literal:
        typed = _typed_value(literal)
        if typed is not None:
            return typed

    if expr.known:
        typed = _typed_value(expr.value)
        if typed is not None:
            return typed

    return messages.ExpressionAttr(text=expr.source.lstrip(" \t"))


def labels_from_label_type(label_type: ast.LabelBlockType) -> list[str]:
    """
    Labels carried by a label-block-type key.

    With num_labels == 0 the labels run up to the first empty entry;
    otherwise exactly the first num_labels entries are taken.
    """
    if label_type.num_labels == 0:
        labels: list[str] = []
        for label in label_type.labels:
            if not label:
                break
            labels.append(label)
        return labels
    return list(label_type.labels[: label_type.num_labels])


def parsed_block_from_block(block: ast.Block) -> messages.ParsedBlock:
    return messages.ParsedBlock(
        file_path=block.range.host_path,
        block_type=block.type,
        labels=list(block.labels),
        attributes={name: attribute_value(attr) for name, attr in block.attributes.items()},
        nested_blocks=[parsed_block_from_block(child) for child in block.blocks],
    )


def parsed_block_from_merged(block: ast.MergedBlock) -> messages.ParsedBlock:
    """
    Convert a merged block.

    The file path comes from the first raw origin. A nested block takes
    its type from its LabelBlockType key and, when it has no labels of
    its own, its labels from the key as well.
    """
    nested: list[messages.ParsedBlock] = []
    for label_type, child in block.blocks.items():
        child_parsed = parsed_block_from_merged(child)
        child_parsed.block_type = label_type.type
        if not child_parsed.labels:
            child_parsed.labels = labels_from_label_type(label_type)
        nested.append(child_parsed)

    return messages.ParsedBlock(
        file_path=block.raw_origins[0].range.host_path if block.raw_origins else "",
        block_type=block.type,
        labels=list(block.labels),
        attributes={name: attribute_value(attr) for name, attr in block.attributes.items()},
        nested_blocks=nested,
    )


# =============================================================================
# Results
# =============================================================================


def diagnostics_error(diagnostics: _typing.Sequence[messages.Diagnostic]) -> DiagnosticsError | None:
    """
    Aggregate error-severity diagnostics into one error.

    Each diagnostic renders as ``summary[: detail][ (file:line:col)]``;
    entries are joined with "; ". Warnings and infos are ignored.

    Returns:
        The error, or None when there are no error diagnostics.
    """
    errors: list[messages.Diagnostic] = []
    parts: list[str] = []
    for diag in diagnostics:
        if diag.severity != messages.Severity.ERROR:
            continue
        msg = diag.summary
        if diag.detail:
            msg = f"{msg}: {diag.detail}"
        if diag.file:
            msg = f"{msg} ({diag.file}:{diag.line}:{diag.column})"
        errors.append(diag)
        parts.append(msg)
    if not parts:
        return None
    return DiagnosticsError("; ".join(parts), errors)


def store_plugin_data(
    hcl_parser: parser.Parser | None, plugin_name: str, block_type: str, data: bytes
) -> None:
    """
    Append plugin data to the parsed config's external data.

    Empty data and a missing parser are ignored. The external data is
    created on first use.

    Raises:
        ExternalDataError: If the parsed config holds external data of
            another type.
    """
    if not data or hcl_parser is None:
        return
    config = hcl_parser.parsed_config
    if config.external is None:
        config.external = HCLExternalData()
    if not isinstance(config.external, HCLExternalData):
        raise ExternalDataError("plugin external data already set to incompatible type")
    config.external.append(plugin_name, block_type, data)


# =============================================================================
# Handlers
# =============================================================================


class _PluginBlockHandler:
    """State and dispatch path shared by the four handler kinds."""

    def __init__(
        self,
        plugin_name: str,
        binary_path: str,
        schema: messages.HCLBlockSchema,
        client_factory: ClientFactory,
    ) -> None:
        self._plugin_name = plugin_name
        self._binary_path = binary_path
        self._schema = schema
        self._client_factory = client_factory

    def name(self) -> str:
        return self._schema.name

    def _dispatch(self, hcl_parser: parser.Parser, parsed: messages.ParsedBlock) -> None:
        host = self._client_factory(self._binary_path)
        try:
            response = host.client.hcl_schema.process_parsed_blocks(
                messages.ParsedBlocksRequest(block_type=self._schema.name, blocks=[parsed])
            )
        finally:
            host.kill()

        error = diagnostics_error(response.diagnostics)
        if error is not None:
            raise error
        store_plugin_data(hcl_parser, self._plugin_name, self._schema.name, response.plugin_data)
        _logger.debug(
            "Plugin %s processed %s block (%d bytes)",
            self._plugin_name,
            self._schema.name,
            len(response.plugin_data),
        )


class UnmergedHandler(_PluginBlockHandler):
    def parse(self, hcl_parser: parser.Parser, block: ast.Block) -> None:
        self._dispatch(hcl_parser, parsed_block_from_block(block))


class UniqueHandler(_PluginBlockHandler):
    def parse(self, hcl_parser: parser.Parser, block: ast.Block) -> None:
        self._dispatch(hcl_parser, parsed_block_from_block(block))


class MergedHandler(_PluginBlockHandler):
    def parse(self, hcl_parser: parser.Parser, block: ast.MergedBlock) -> None:
        self._dispatch(hcl_parser, parsed_block_from_merged(block))

    def validate(self, hcl_parser: parser.Parser) -> None:
        pass


class MergedLabelsHandler(_PluginBlockHandler):
    def parse(
        self,
        hcl_parser: parser.Parser,
        label_type: ast.LabelBlockType,
        block: ast.MergedBlock,
    ) -> None:
        parsed = parsed_block_from_merged(block)
        parsed.labels = labels_from_label_type(label_type)
        self._dispatch(hcl_parser, parsed)

    def validate(self, hcl_parser: parser.Parser) -> None:
        pass


_HANDLER_KINDS: dict[messages.BlockKind, type[_PluginBlockHandler]] = {
    messages.BlockKind.UNMERGED: UnmergedHandler,
    messages.BlockKind.MERGED: MergedHandler,
    messages.BlockKind.MERGED_LABELS: MergedLabelsHandler,
    messages.BlockKind.UNIQUE: UniqueHandler,
}

_OPTION_BUILDERS: dict[messages.BlockKind, _typing.Callable[..., parser.Option]] = {
    messages.BlockKind.UNMERGED: parser.with_unmerged_block_handlers,
    messages.BlockKind.MERGED: parser.with_merged_block_handlers,
    messages.BlockKind.MERGED_LABELS: parser.with_merged_labels_block_handlers,
    messages.BlockKind.UNIQUE: parser.with_unique_block_handlers,
}


def _constructor(
    kind: messages.BlockKind,
    plugin_name: str,
    binary_path: str,
    schema: messages.HCLBlockSchema,
    client_factory: ClientFactory,
) -> _typing.Callable[[], _PluginBlockHandler]:
    def construct() -> _PluginBlockHandler:
        return _HANDLER_KINDS[kind](plugin_name, binary_path, schema, client_factory)

    return construct


def hcl_options_from_schema(
    plugin_name: str,
    binary_path: str | _os.PathLike[str],
    schemas: _typing.Sequence[messages.HCLBlockSchema],
    *,
    client_factory: ClientFactory = client.new_host_client,
) -> list[parser.Option]:
    """
    Build parser options for the blocks a plugin declares.

    Args:
        plugin_name: Plugin name, used as the external data key.
        binary_path: Plugin executable, spawned once per dispatched block.
        schemas: Block schemas from GetHCLSchema.
        client_factory: Spawns a connected plugin from its binary path.

    Returns:
        At most one option per block kind, in the order unmerged,
        merged, merged labels, unique. Empty when there are no schemas
        or no binary path.
    """
    path = _os.fspath(binary_path)
    if not schemas or not path:
        return []

    constructors: dict[messages.BlockKind, list[_typing.Callable[[], _PluginBlockHandler]]] = {
        kind: [] for kind in _HANDLER_KINDS
    }
    for schema in schemas:
        constructors[schema.kind].append(
            _constructor(schema.kind, plugin_name, path, schema, client_factory)
        )

    return [
        _OPTION_BUILDERS[kind](*ctors) for kind, ctors in constructors.items() if ctors
    ]
