"""
Syntax tree of configuration blocks as seen by block handlers.

These types are the interface between the configuration parser and
block handlers (including plugin-backed ones):

- Block: one occurrence of a block in one file
- MergedBlock: all occurrences of a block merged across files,
  nested blocks keyed by their LabelBlockType
- Expression: verbatim source text plus, when the parser could
  evaluate it, its known value
"""

from __future__ import annotations

import dataclasses as _dataclasses
import decimal as _decimal
import re as _re
import string as _string
import typing as _typing

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_NUMBER = _re.compile(r"^-?\d+(\.\d+)?([eE][+-]?\d+)?$")
_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", '"': '"', "\\": "\\"}


@_dataclasses.dataclass(frozen=True)
class Range:
    """Source location of a syntax element."""

    filename: str = ""
    line: int = 0
    column: int = 0
    host_path: str = ""
    """Absolute host path of the file (empty when unknown)."""

    def file_path(self) -> str:
        """Host path if known, else the file name."""
        return self.host_path or self.filename


@_dataclasses.dataclass
class Expression:
    """An attribute expression."""

    source: str
    """Verbatim source text, including any leading whitespace."""

    value: _typing.Any = None
    """Evaluated value (meaningful only when known is True)."""

    known: bool = False
    """Whether the parser evaluated the expression to a constant."""


@_dataclasses.dataclass
class Attribute:
    name: str
    expr: Expression | None
    range: Range = _dataclasses.field(default_factory=Range)


@_dataclasses.dataclass
class Block:
    """One block occurrence in one file."""

    type: str
    labels: list[str] = _dataclasses.field(default_factory=list)
    attributes: dict[str, Attribute] = _dataclasses.field(default_factory=dict)
    blocks: list[Block] = _dataclasses.field(default_factory=list)
    range: Range = _dataclasses.field(default_factory=Range)


@_dataclasses.dataclass(frozen=True)
class LabelBlockType:
    """
    Key of a nested merged block: its type plus its labels.

    num_labels is the number of significant entries in labels. Keys
    built with num_labels == 0 may still carry labels, terminated by
    the first empty entry.
    """

    type: str
    num_labels: int = 0
    labels: tuple[str, ...] = ()


def new_label_block_type(block_type: str, labels: _typing.Sequence[str]) -> LabelBlockType:
    return LabelBlockType(type=block_type, num_labels=len(labels), labels=tuple(labels))


def new_empty_label_block_type(block_type: str) -> LabelBlockType:
    return LabelBlockType(type=block_type)


@_dataclasses.dataclass
class MergedBlock:
    """All occurrences of a block merged into one logical block."""

    type: str
    labels: list[str] = _dataclasses.field(default_factory=list)
    attributes: dict[str, Attribute] = _dataclasses.field(default_factory=dict)
    blocks: dict[LabelBlockType, MergedBlock] = _dataclasses.field(default_factory=dict)
    raw_origins: list[Block] = _dataclasses.field(default_factory=list)
    """Original blocks in merge order."""


# =============================================================================
# Literal values
# =============================================================================


def _parse_string(text: str) -> str | None:
    """Decode a quoted string literal, or None if text is not one.

    Templates (``${`` / ``%{``) are not literals; ``$${`` and ``%%{``
    are their escaped forms.
    """
    if len(text) < 2 or text[0] != '"' or text[-1] != '"':
        return None

    body = text[1:-1]
    out: list[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\":
            nxt = body[i + 1 : i + 2]
            if nxt in _ESCAPES:
                out.append(_ESCAPES[nxt])
                i += 2
                continue
            if nxt in ("u", "U"):
                width = 4 if nxt == "u" else 8
                digits = body[i + 2 : i + 2 + width]
                if len(digits) != width or any(c not in _string.hexdigits for c in digits):
                    return None
                try:
                    out.append(chr(int(digits, 16)))
                except ValueError:
                    return None
                i += 2 + width
                continue
            return None
        if ch in "\"\n":
            return None
        if ch in "$%":
            if body[i + 1 : i + 2] == "{":
                return None
            if body[i + 1 : i + 3] == ch + "{":
                out.append(ch + "{")
                i += 3
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def _parse_number(text: str) -> int | float | None:
    if not _NUMBER.match(text):
        return None
    number = _decimal.Decimal(text)
    if number == number.to_integral_value() and INT64_MIN <= number <= INT64_MAX:
        return int(number)
    return float(number)


def parse_literal(source: str) -> tuple[bool, _typing.Any]:
    """
    Evaluate source text that is a plain literal.

    Recognizes quoted strings without templates, true/false and
    numbers. Integral numbers within int64 range become int.

    Returns:
        (True, value) for a literal, (False, None) otherwise.
    """
    text = source.strip()
    if text == "true":
        return True, True
    if text == "false":
        return True, False

    number = _parse_number(text)
    if number is not None:
        return True, number

    string_value = _parse_string(text)
    if string_value is not None:
        return True, string_value

    return False, None

