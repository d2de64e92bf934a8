"""
Block handler registry and dispatch.

The configuration parser delegates block types it does not know to
handlers installed through options:

    parser = Parser(
        with_unmerged_block_handlers(MyHandler),
        with_unique_block_handlers(MyUniqueHandler),
    )
    parser.parse_blocks(blocks)

Handlers come in four kinds:
- unmerged: called once per occurrence
- merged: occurrences are merged, called once with the MergedBlock
- merged labels: merged per distinct label set
- unique: called once; a second occurrence is an error

Handlers may attach data to ``parser.parsed_config.external``.
"""

from __future__ import annotations

import dataclasses as _dataclasses
import logging as _logging
import typing as _typing

import tmplugin.hcl.ast as ast

_logger = _logging.getLogger(__name__)


class ParseError(Exception):
    """Raised when blocks cannot be dispatched or merged."""

    pass


class UnmergedBlockHandler(_typing.Protocol):
    def name(self) -> str: ...

    def parse(self, parser: Parser, block: ast.Block) -> None: ...


class UniqueBlockHandler(_typing.Protocol):
    def name(self) -> str: ...

    def parse(self, parser: Parser, block: ast.Block) -> None: ...


class MergedBlockHandler(_typing.Protocol):
    def name(self) -> str: ...

    def parse(self, parser: Parser, block: ast.MergedBlock) -> None: ...

    def validate(self, parser: Parser) -> None: ...


class MergedLabelsBlockHandler(_typing.Protocol):
    def name(self) -> str: ...

    def parse(
        self, parser: Parser, label_type: ast.LabelBlockType, block: ast.MergedBlock
    ) -> None: ...

    def validate(self, parser: Parser) -> None: ...


UnmergedBlockHandlerConstructor = _typing.Callable[[], UnmergedBlockHandler]
UniqueBlockHandlerConstructor = _typing.Callable[[], UniqueBlockHandler]
MergedBlockHandlerConstructor = _typing.Callable[[], MergedBlockHandler]
MergedLabelsBlockHandlerConstructor = _typing.Callable[[], MergedLabelsBlockHandler]


@_dataclasses.dataclass
class ParserOptions:
    """Handler constructors collected from options."""

    unmerged: list[UnmergedBlockHandlerConstructor] = _dataclasses.field(default_factory=list)
    merged: list[MergedBlockHandlerConstructor] = _dataclasses.field(default_factory=list)
    merged_labels: list[MergedLabelsBlockHandlerConstructor] = _dataclasses.field(
        default_factory=list
    )
    unique: list[UniqueBlockHandlerConstructor] = _dataclasses.field(default_factory=list)


Option = _typing.Callable[[ParserOptions], None]


def with_unmerged_block_handlers(*constructors: UnmergedBlockHandlerConstructor) -> Option:
    def apply(options: ParserOptions) -> None:
        options.unmerged.extend(constructors)

    return apply


def with_merged_block_handlers(*constructors: MergedBlockHandlerConstructor) -> Option:
    def apply(options: ParserOptions) -> None:
        options.merged.extend(constructors)

    return apply


def with_merged_labels_block_handlers(
    *constructors: MergedLabelsBlockHandlerConstructor,
) -> Option:
    def apply(options: ParserOptions) -> None:
        options.merged_labels.extend(constructors)

    return apply


def with_unique_block_handlers(*constructors: UniqueBlockHandlerConstructor) -> Option:
    def apply(options: ParserOptions) -> None:
        options.unique.extend(constructors)

    return apply


@_dataclasses.dataclass
class ParsedConfig:
    """Result of parsing, shared with handlers."""

    external: _typing.Any = None
    """Data attached by handlers (plugins use HCLExternalData)."""


def _label_key(block: ast.Block) -> ast.LabelBlockType:
    if block.labels:
        return ast.new_label_block_type(block.type, block.labels)
    return ast.new_empty_label_block_type(block.type)


def merge_blocks(
    blocks: _typing.Sequence[ast.Block], labels: _typing.Sequence[str] = ()
) -> ast.MergedBlock:
    """
    Merge occurrences of one block type.

    Attributes are unioned (redefinition is an error); nested blocks
    are merged recursively per type and label set.

    Raises:
        ParseError: If blocks is empty or an attribute is defined twice.
    """
    if not blocks:
        raise ParseError("nothing to merge")

    merged = ast.MergedBlock(type=blocks[0].type, labels=list(labels))
    for block in blocks:
        merged.raw_origins.append(block)
        for name, attr in block.attributes.items():
            if name in merged.attributes:
                raise ParseError(
                    f"attribute {block.type}.{name} redefined at {block.range.file_path()}"
                )
            merged.attributes[name] = attr

    children: dict[ast.LabelBlockType, list[ast.Block]] = {}
    for block in blocks:
        for child in block.blocks:
            children.setdefault(_label_key(child), []).append(child)
    for key, group in children.items():
        merged.blocks[key] = merge_blocks(group, key.labels[: key.num_labels])

    return merged


class Parser:
    """Dispatches configuration blocks to installed handlers."""

    def __init__(self, *options: Option) -> None:
        opts = ParserOptions()
        for option in options:
            option(opts)

        self.parsed_config = ParsedConfig()
        self._names: set[str] = set()
        self._unmerged = self._install(opts.unmerged)
        self._merged = self._install(opts.merged)
        self._merged_labels = self._install(opts.merged_labels)
        self._unique = self._install(opts.unique)
        self._unique_seen: set[str] = set()

    def _install(
        self, constructors: _typing.Sequence[_typing.Callable[[], _typing.Any]]
    ) -> dict[str, _typing.Any]:
        handlers: dict[str, _typing.Any] = {}
        for constructor in constructors:
            handler = constructor()
            if handler.name() in self._names:
                raise ParseError(f"duplicate handler for block {handler.name()!r}")
            handlers[handler.name()] = handler
            self._names.add(handler.name())
        return handlers

    def handles(self, block_type: str) -> bool:
        """Whether a handler is installed for a block type."""
        return block_type in self._names

    def parse_blocks(self, blocks: _typing.Iterable[ast.Block]) -> ParsedConfig:
        """
        Dispatch blocks to their handlers.

        Unmerged and unique blocks are dispatched in order of appearance;
        merged kinds are merged first and dispatched afterwards, then
        merged handlers are validated.

        Raises:
            ParseError: For an unknown block type or a repeated unique block.
            Exception: Whatever a handler raises.
        """
        merged: dict[str, list[ast.Block]] = {}
        merged_labels: dict[str, dict[ast.LabelBlockType, list[ast.Block]]] = {}

        for block in blocks:
            if block.type in self._unmerged:
                self._unmerged[block.type].parse(self, block)
            elif block.type in self._unique:
                if block.type in self._unique_seen:
                    raise ParseError(
                        f"block {block.type!r} must be unique, found again at "
                        f"{block.range.file_path()}"
                    )
                self._unique_seen.add(block.type)
                self._unique[block.type].parse(self, block)
            elif block.type in self._merged:
                merged.setdefault(block.type, []).append(block)
            elif block.type in self._merged_labels:
                groups = merged_labels.setdefault(block.type, {})
                groups.setdefault(_label_key(block), []).append(block)
            else:
                raise ParseError(f"unrecognized block {block.type!r}")

        for block_type, group in merged.items():
            self._merged[block_type].parse(self, merge_blocks(group))

        for block_type, label_groups in merged_labels.items():
            handler = self._merged_labels[block_type]
            for label_type, group in label_groups.items():
                labels = label_type.labels[: label_type.num_labels]
                handler.parse(self, label_type, merge_blocks(group, labels))

        for handler in (*self._merged.values(), *self._merged_labels.values()):
            handler.validate(self)

        _logger.debug(
            "Dispatched blocks (external data: %s)", type(self.parsed_config.external).__name__
        )
        return self.parsed_config
