"""
Wire messages for the plugin protocol.

Every message is a pydantic model serialized as JSON on the wire (bytes
fields as base64). Values that are "exactly one of" several cases
(attribute values, command and generate output events) are
discriminated unions, so a value can never carry two cases at once.
"""

from __future__ import annotations

import enum as _enum
import typing as _typing

import pydantic as _pydantic


class Message(_pydantic.BaseModel):
    """Base class for all wire messages."""

    model_config = _pydantic.ConfigDict(
        extra="ignore",
        ser_json_bytes="base64",
        val_json_bytes="base64",
    )


class Empty(Message):
    pass


class StringValue(Message):
    value: str = ""


# =============================================================================
# Plugin service
# =============================================================================


class PluginInfo(Message):
    """Static identity of a plugin."""

    name: str = ""
    version: str = ""
    product_name: str = ""
    product_pretty_name: str = ""
    description: str = ""
    compatible_with: str = ""


class Capabilities(Message):
    """Optional services a plugin actually backs."""

    has_commands: bool = False
    has_hcl_schema: bool = False
    has_post_init_hooks: bool = False
    has_generate_override: bool = False


class DispenseRequest(Message):
    name: str


class DispenseResponse(Message):
    name: str
    services: list[str] = _pydantic.Field(default_factory=list)


# =============================================================================
# Shared output events
# =============================================================================


class FileWrite(Message):
    """A file the plugin asks the host to write."""

    path: str
    content: bytes = b""
    mode: int = 0


class StdoutChunk(Message):
    kind: _typing.Literal["stdout"] = "stdout"
    data: bytes = b""


class StderrChunk(Message):
    kind: _typing.Literal["stderr"] = "stderr"
    data: bytes = b""


class FileWriteEvent(Message):
    kind: _typing.Literal["file_write"] = "file_write"
    file: FileWrite


class ExitCode(Message):
    """Terminal event of a command or generate stream."""

    kind: _typing.Literal["exit_code"] = "exit_code"
    code: int = 0


CommandOutput = _typing.Annotated[
    StdoutChunk | StderrChunk | FileWriteEvent | ExitCode,
    _pydantic.Field(discriminator="kind"),
]
"""One event of an ExecuteCommand stream."""

GenerateOutput = _typing.Annotated[
    StdoutChunk | StderrChunk | FileWriteEvent | ExitCode,
    _pydantic.Field(discriminator="kind"),
]
"""One event of a Generate stream."""


# =============================================================================
# Command service
# =============================================================================


class CommandSpec(Message):
    name: str
    help: str = ""


class CommandList(Message):
    commands: list[CommandSpec] = _pydantic.Field(default_factory=list)


class CommandRequest(Message):
    command: str
    args: dict[str, str] = _pydantic.Field(default_factory=dict)
    flags: dict[str, str] = _pydantic.Field(default_factory=dict)
    working_dir: str = ""
    root_dir: str = ""


# =============================================================================
# HCL schema service
# =============================================================================


class BlockKind(str, _enum.Enum):
    """How the parser collects occurrences of a custom block."""

    UNMERGED = "unmerged"
    """Each occurrence is dispatched on its own."""

    MERGED = "merged"
    """Occurrences across the tree are merged into one logical block."""

    MERGED_LABELS = "merged_labels"
    """Merged per distinct label set; labels travel with the block."""

    UNIQUE = "unique"
    """At most one occurrence may exist."""


class HCLAttributeSchema(Message):
    name: str
    type: str = ""
    required: bool = False


class HCLBlockSchema(Message):
    name: str
    kind: BlockKind = BlockKind.UNMERGED
    label_count: int = 0
    attributes: list[HCLAttributeSchema] = _pydantic.Field(default_factory=list)


class HCLSchemaList(Message):
    blocks: list[HCLBlockSchema] = _pydantic.Field(default_factory=list)


class StringAttr(Message):
    kind: _typing.Literal["string"] = "string"
    value: str


class BoolAttr(Message):
    kind: _typing.Literal["bool"] = "bool"
    value: bool


class IntAttr(Message):
    kind: _typing.Literal["int"] = "int"
    value: int


class FloatAttr(Message):
    kind: _typing.Literal["float"] = "float"
    value: float


class ExpressionAttr(Message):
    """Non-literal attribute, carried as its verbatim source text."""

    kind: _typing.Literal["expression"] = "expression"
    text: str = ""


AttributeValue = _typing.Annotated[
    StringAttr | BoolAttr | IntAttr | FloatAttr | ExpressionAttr,
    _pydantic.Field(discriminator="kind"),
]
"""Value of one attribute of a parsed block."""


class ParsedBlock(Message):
    """A configuration block converted for the wire."""

    file_path: str = ""
    block_type: str = ""
    labels: list[str] = _pydantic.Field(default_factory=list)
    attributes: dict[str, AttributeValue] = _pydantic.Field(default_factory=dict)
    nested_blocks: list[ParsedBlock] = _pydantic.Field(default_factory=list)


class Severity(str, _enum.Enum):
    UNSPECIFIED = "unspecified"
    """Zero value: a plugin that omits the severity. Not an error."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Diagnostic(Message):
    severity: Severity = Severity.UNSPECIFIED
    summary: str = ""
    detail: str = ""
    file: str = ""
    line: int = 0
    column: int = 0


class ParsedBlocksRequest(Message):
    block_type: str
    blocks: list[ParsedBlock] = _pydantic.Field(default_factory=list)


class ParsedBlocksResponse(Message):
    diagnostics: list[Diagnostic] = _pydantic.Field(default_factory=list)
    plugin_data: bytes = b""


# =============================================================================
# Lifecycle service
# =============================================================================


class StackMetadata(Message):
    name: str = ""
    description: str = ""
    tags: list[str] = _pydantic.Field(default_factory=list)
    after: list[str] = _pydantic.Field(default_factory=list)
    before: list[str] = _pydantic.Field(default_factory=list)
    wants: list[str] = _pydantic.Field(default_factory=list)
    wanted_by: list[str] = _pydantic.Field(default_factory=list)
    watch: list[str] = _pydantic.Field(default_factory=list)


class StackMetadataUpdate(Message):
    path: str
    metadata: StackMetadata | None = None
    merge: bool = False


class ConfigPatch(Message):
    path: str = ""
    plugin_data: bytes = b""


class PostInitRequest(Message):
    root_dir: str = ""


class PostInitResponse(Message):
    diagnostics: list[Diagnostic] = _pydantic.Field(default_factory=list)
    stack_updates: list[StackMetadataUpdate] = _pydantic.Field(default_factory=list)
    config_patches: list[ConfigPatch] = _pydantic.Field(default_factory=list)


# =============================================================================
# Generate service
# =============================================================================


class GenerateRequest(Message):
    root_dir: str = ""
    detailed_exit_code: bool = False


# =============================================================================
# Host service
# =============================================================================


class ReadFileRequest(Message):
    path: str = ""


class ReadFileResponse(Message):
    content: bytes = b""


class WriteFileRequest(Message):
    path: str = ""
    content: bytes = b""
    mode: int = 0


class WalkDirRequest(Message):
    root: str = ""
    pattern: str = ""


class DirEntry(Message):
    path: str
    is_dir: bool = False


class GetConfigTreeRequest(Message):
    path: str = ""


class ConfigTreeNode(Message):
    dir: str
    is_stack: bool = False
    stack: StackMetadata = _pydantic.Field(default_factory=StackMetadata)


class GetStackRequest(Message):
    path: str = ""


class SetStackRequest(Message):
    path: str = ""
    metadata: StackMetadata | None = None
    merge: bool = False


ParsedBlock.model_rebuild()


class Codec:
    """JSON codec for one wire type (model or discriminated union)."""

    def __init__(self, tp: _typing.Any) -> None:
        self._adapter: _pydantic.TypeAdapter[_typing.Any] = _pydantic.TypeAdapter(tp)

    def encode(self, value: _typing.Any) -> bytes:
        return self._adapter.dump_json(value)

    def decode(self, data: bytes) -> _typing.Any:
        return self._adapter.validate_json(data)
