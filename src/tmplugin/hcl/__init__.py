"""
Configuration block interfaces shared by the parser and block handlers.
"""

from tmplugin.hcl.ast import (
    Attribute,
    Block,
    Expression,
    LabelBlockType,
    MergedBlock,
    Range,
    new_empty_label_block_type,
    new_label_block_type,
    parse_literal,
)
from tmplugin.hcl.parser import (
    Option,
    ParseError,
    ParsedConfig,
    Parser,
    ParserOptions,
    merge_blocks,
    with_merged_block_handlers,
    with_merged_labels_block_handlers,
    with_unique_block_handlers,
    with_unmerged_block_handlers,
)

__all__ = [
    # AST
    "Attribute",
    "Block",
    "Expression",
    "LabelBlockType",
    "MergedBlock",
    "Range",
    "new_empty_label_block_type",
    "new_label_block_type",
    "parse_literal",
    # Parser
    "Option",
    "ParseError",
    "ParsedConfig",
    "Parser",
    "ParserOptions",
    "merge_blocks",
    "with_merged_block_handlers",
    "with_merged_labels_block_handlers",
    "with_unique_block_handlers",
    "with_unmerged_block_handlers",
]
