"""Shader interface layout generator.

Compiles a declarative description of a shader stage (vertex inputs/outputs,
descriptor bindings, push constants) into a queryable pipeline layout,
fixed-layout record types for buffer-backed data, and a generated Python
module embedding the compiled SPIR-V words.

Usage:
    python shadergen.py shaders/gui.twshader --output-dir generated
    python shadergen.py shaders/*.twshader --inspect
"""

import argparse
import ctypes
import json
import keyword
import math
import os
import re
import shutil
import struct
import subprocess
import tempfile
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple, TypeVar

__version__ = "0.1.0"

DEFAULT_OUTPUT_DIR = Path("generated")
DEFAULT_COMPILER = "glslc"
COMPILER_ENV_VAR = "GLSLC"

T = TypeVar("T")


# ===--- Constants ---=== #

SHADER_KIND_VERTEX = "vertex"
SHADER_KIND_FRAGMENT = "fragment"

# Vulkan VkShaderStageFlagBits values.
STAGE_VERTEX = 0x00000001
STAGE_FRAGMENT = 0x00000010
STAGE_ALL = 0x7FFFFFFF

SHADER_STAGE_MASKS = {
    SHADER_KIND_VERTEX: STAGE_VERTEX,
    SHADER_KIND_FRAGMENT: STAGE_FRAGMENT,
}

COMPILER_STAGE_FLAGS = {
    SHADER_KIND_VERTEX: "vert",
    SHADER_KIND_FRAGMENT: "frag",
}

ORDER_REVERSE = "reverse"
ORDER_FORWARD = "forward"
VALID_ORDERS = {ORDER_REVERSE, ORDER_FORWARD}

COLLISION_OVERRIDE = "override"
COLLISION_WARN = "warn"
COLLISION_REJECT = "reject"
VALID_COLLISION_POLICIES = {COLLISION_OVERRIDE, COLLISION_WARN, COLLISION_REJECT}

DESCRIPTOR_BUFFER = "buffer"
DESCRIPTOR_COMBINED_IMAGE_SAMPLER = "combined_image_sampler"

FLOAT_SIZE = 4
SPIRV_MAGIC = 0x07230203

# VkPushConstantRange.size is a uint32_t.
MAX_PUSH_CONSTANT_BYTES = 0xFFFFFFFF

# Module-level names of a generated module; record classes must not shadow them.
GENERATED_MODULE_NAMES = frozenset(
    {
        "ctypes",
        "CompiledLayout",
        "DescriptorMeta",
        "InterfaceDef",
        "InterfaceEntry",
        "PipelineLayout",
        "PushConstantRange",
        "compile_file_to_bytecode",
        "SOURCE_PATH",
        "SOURCE_FILE",
        "STAGE",
        "STAGE_MASK",
        "SPIRV_WORDS",
        "MAIN_INPUT",
        "MAIN_OUTPUT",
        "MAIN_LAYOUT",
        "recompile",
    }
)


class ScalarType(NamedTuple):
    tag: str
    shape: tuple[int, ...]

    @property
    def component_count(self) -> int:
        return math.prod(self.shape)

    @property
    def size(self) -> int:
        return self.component_count * FLOAT_SIZE


SCALAR_TYPES = {
    "float": ScalarType("float", ()),
    "vec2": ScalarType("vec2", (2,)),
    "vec3": ScalarType("vec3", (3,)),
    "vec4": ScalarType("vec4", (4,)),
    "mat2": ScalarType("mat2", (2, 2)),
    "mat3": ScalarType("mat3", (3, 3)),
    "mat4": ScalarType("mat4", (4, 4)),
}


# ===--- Specification errors ---=== #


VALID_SPEC_ERROR_CODES = {
    "MALFORMED_SCOPE",
    "UNEXPECTED_TOKEN",
    "DUPLICATE_KEY",
    "UNKNOWN_KEY",
    "MISSING_FIELD",
    "MISSING_DATA",
    "UNSUPPORTED_DESCRIPTOR_KIND",
    "UNSUPPORTED_SCALAR_TYPE",
    "UNSUPPORTED_SHADER_KIND",
    "DUPLICATE_RECORD",
    "DUPLICATE_BINDING",
    "RESERVED_RECORD_NAME",
    "COMPONENT_COUNT_OUT_OF_RANGE",
}


class SpecError(Exception):
    """Base class for every error raised while parsing or compiling a spec.

    Attributes:
        code: Machine-readable error code from VALID_SPEC_ERROR_CODES.
        message: Human-readable description without location prefix.
        line: 1-based line of the offending token, or None.
        column: 1-based column of the offending token, or None.
        source: Specification file the error came from. Filled in by
            load_specification; None for errors raised on plain text.
    """

    code = ""

    def __init__(self, message: str, token: "Token | None" = None):
        if self.code not in VALID_SPEC_ERROR_CODES:
            raise ValueError(f"Unknown spec error code: {self.code}")
        super().__init__(message)
        self.message = message
        self.line = token.line if token is not None else None
        self.column = token.column if token is not None else None
        self.source: str | None = None

    def location(self) -> str:
        parts = [part for part in (self.source, self.line, self.column) if part]
        return ":".join(str(part) for part in parts)

    def __str__(self) -> str:
        location = self.location()
        if location:
            return f"{location}: {self.message}"
        return self.message


class MalformedScopeError(SpecError):
    code = "MALFORMED_SCOPE"


class UnexpectedTokenError(SpecError):
    code = "UNEXPECTED_TOKEN"


class DuplicateKeyError(SpecError):
    code = "DUPLICATE_KEY"

    def __init__(self, key: str, record: str, token: "Token | None" = None):
        super().__init__(f"'{key}' is defined twice in {record}", token)
        self.key = key


class UnknownKeyError(SpecError):
    code = "UNKNOWN_KEY"

    def __init__(self, key: str, record: str, token: "Token | None" = None):
        super().__init__(f"unknown key '{key}' in {record}", token)
        self.key = key


class MissingFieldError(SpecError):
    code = "MISSING_FIELD"

    def __init__(self, key: str, record: str, token: "Token | None" = None):
        super().__init__(f"{record} is missing required key '{key}'", token)
        self.key = key


class MissingDataError(SpecError):
    code = "MISSING_DATA"

    def __init__(self, descriptor: str, token: "Token | None" = None):
        super().__init__(
            f"Buffer descriptor '{descriptor}' requires a 'data' field list", token
        )
        self.descriptor = descriptor


class UnsupportedDescriptorKindError(SpecError):
    code = "UNSUPPORTED_DESCRIPTOR_KIND"

    def __init__(self, ty_name: str, token: "Token | None" = None):
        super().__init__(
            f"descriptor type '{ty_name}' is not supported "
            "(expected Buffer or SampledImage)",
            token,
        )
        self.ty_name = ty_name


class UnsupportedScalarTypeError(SpecError):
    code = "UNSUPPORTED_SCALAR_TYPE"

    def __init__(self, tag: str, token: "Token | None" = None):
        supported = ", ".join(SCALAR_TYPES)
        super().__init__(
            f"field type '{tag}' is not supported (expected one of: {supported})",
            token,
        )
        self.tag = tag


class UnsupportedShaderKindError(SpecError):
    code = "UNSUPPORTED_SHADER_KIND"

    def __init__(self, kind: str, token: "Token | None" = None):
        super().__init__(
            f"shader kind '{kind}' is not supported (expected vertex or fragment)",
            token,
        )
        self.kind = kind


class DuplicateRecordError(SpecError):
    code = "DUPLICATE_RECORD"

    def __init__(self, name: str):
        super().__init__(f"record type '{name}' is declared more than once")
        self.name = name


class ReservedRecordNameError(SpecError):
    code = "RESERVED_RECORD_NAME"

    def __init__(self, name: str):
        super().__init__(
            f"record type '{name}' clashes with a name the generated module defines"
        )
        self.name = name


class ComponentCountError(SpecError):
    code = "COMPONENT_COUNT_OUT_OF_RANGE"

    def __init__(self, field: str, token: "Token | None" = None):
        super().__init__(
            f"push constant field '{field}' makes the block larger than "
            f"{MAX_PUSH_CONSTANT_BYTES} bytes",
            token,
        )
        self.field = field


class DuplicateBindingError(SpecError):
    code = "DUPLICATE_BINDING"

    def __init__(self, set_index: int, binding: int, name: str):
        super().__init__(
            f"descriptor '{name}' reuses set {set_index}, binding {binding}"
        )
        self.set_index = set_index
        self.binding = binding
        self.name = name


# ===--- Tokens ---=== #


class Token(NamedTuple):
    kind: str
    value: str | int
    line: int
    column: int


OPEN_DELIMITERS = {"[": "]", "{": "}", "(": ")"}
CLOSE_DELIMITERS = {"]", "}", ")"}

_TOKEN_RE = re.compile(
    r"""
      (?P<space>\s+)
    | (?P<line_comment>//[^\n]*)
    | (?P<block_comment>/\*.*?\*/)
    | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    | (?P<int>(?:0[xX][0-9A-Fa-f][0-9A-Fa-f_]*|[0-9][0-9_]*)(?:usize|u32)?)
    | (?P<string>"(?:[^"\\\n]|\\.)*")
    | (?P<punct>[:,\[\]{}()])
    """,
    re.VERBOSE | re.DOTALL,
)

_STRING_ESCAPES = {"\\": "\\", '"': '"', "n": "\n", "t": "\t", "r": "\r", "0": "\0"}


def _parse_int_literal(raw: str) -> int:
    digits = re.sub(r"(usize|u32)$", "", raw).replace("_", "")
    if digits[:2].lower() == "0x":
        return int(digits[2:], 16)
    return int(digits, 10)


def _unescape_string(body: str, token: Token) -> str:
    chars: list[str] = []
    index = 0
    while index < len(body):
        char = body[index]
        if char == "\\":
            escaped = body[index + 1]
            if escaped not in _STRING_ESCAPES:
                raise UnexpectedTokenError(
                    f"unknown escape sequence '\\{escaped}' in string literal", token
                )
            chars.append(_STRING_ESCAPES[escaped])
            index += 2
            continue
        chars.append(char)
        index += 1
    return "".join(chars)


def tokenize(text: str) -> list[Token]:
    """Split specification text into tokens, ending with an 'eof' token."""
    tokens: list[Token] = []
    pos = 0
    line = 1
    line_start = 0
    while pos < len(text):
        column = pos - line_start + 1
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            bad = Token("char", text[pos], line, column)
            if text.startswith('"', pos):
                raise UnexpectedTokenError("unterminated string literal", bad)
            if text.startswith("/*", pos):
                raise UnexpectedTokenError("unterminated block comment", bad)
            raise UnexpectedTokenError(f"unexpected character {text[pos]!r}", bad)

        kind = match.lastgroup
        raw = match.group()
        if kind == "ident" or kind == "punct":
            tokens.append(Token(kind, raw, line, column))
        elif kind == "int":
            tokens.append(Token("int", _parse_int_literal(raw), line, column))
        elif kind == "string":
            token = Token("string", raw, line, column)
            tokens.append(token._replace(value=_unescape_string(raw[1:-1], token)))

        newlines = raw.count("\n")
        if newlines:
            line += newlines
            line_start = pos + raw.rfind("\n") + 1
        pos = match.end()

    tokens.append(Token("eof", "", line, pos - line_start + 1))
    return tokens


def describe_token(token: Token) -> str:
    if token.kind == "eof":
        return "end of input"
    if token.kind == "string":
        return f"string {json.dumps(token.value)}"
    if token.kind == "int":
        return f"integer {token.value}"
    return f"'{token.value}'"


# ===--- Nested-scope reader ---=== #


def _find_closing(tokens: list[Token], open_index: int, limit: int) -> int:
    stack: list[Token] = []
    for index in range(open_index, limit):
        token = tokens[index]
        if token.kind != "punct":
            continue
        if token.value in OPEN_DELIMITERS:
            stack.append(token)
        elif token.value in CLOSE_DELIMITERS:
            opener = stack.pop()
            expected = OPEN_DELIMITERS[opener.value]
            if token.value != expected:
                raise MalformedScopeError(
                    f"found '{token.value}' where '{expected}' was expected to close "
                    f"'{opener.value}' from line {opener.line}, column {opener.column}",
                    token,
                )
            if not stack:
                return index
    opener = tokens[open_index]
    raise MalformedScopeError(
        f"'{opener.value}' is never closed (expected '{OPEN_DELIMITERS[opener.value]}')",
        opener,
    )


class TokenCursor:
    """Cursor over the tokens between two indices of a shared token list.

    The token at `end` is never consumed: it is the closing delimiter of the
    scope (or 'eof' for the root cursor) and serves as the error location when
    the scope runs out.
    """

    def __init__(self, tokens: list[Token], start: int = 0, end: int | None = None):
        self.tokens = tokens
        self.pos = start
        self.end = len(tokens) - 1 if end is None else end

    def is_empty(self) -> bool:
        return self.pos >= self.end

    def peek(self) -> Token:
        if self.is_empty():
            return self.tokens[self.end]
        return self.tokens[self.pos]

    def expect(self, kind: str, what: str) -> Token:
        token = self.peek()
        if self.is_empty() or token.kind != kind:
            raise UnexpectedTokenError(
                f"expected {what}, found {describe_token(token)}", token
            )
        self.pos += 1
        return token

    def expect_punct(self, char: str) -> Token:
        token = self.peek()
        if self.is_empty() or token.kind != "punct" or token.value != char:
            raise UnexpectedTokenError(
                f"expected '{char}', found {describe_token(token)}", token
            )
        self.pos += 1
        return token

    def expect_ident(self) -> str:
        return self.expect("ident", "identifier").value

    def expect_string(self) -> str:
        return self.expect("string", "string literal").value

    def expect_int(self) -> int:
        return self.expect("int", "integer literal").value

    def expect_separator(self) -> None:
        # The comma is only required while content remains, so a trailing comma
        # before the closing delimiter is accepted.
        if not self.is_empty():
            self.expect_punct(",")

    def scoped(self, open_char: str) -> "TokenCursor":
        """Return a cursor over the content of the next delimited scope.

        The outer cursor is advanced past the matching closing delimiter.

        Raises:
            MalformedScopeError: The next token is not `open_char`, or the
                delimiter is unmatched or closed by the wrong delimiter.
        """
        opening = self.peek()
        if self.is_empty() or opening.kind != "punct" or opening.value != open_char:
            raise MalformedScopeError(
                f"expected '{open_char}', found {describe_token(opening)}", opening
            )
        close_index = _find_closing(self.tokens, self.pos, self.end)
        inner = TokenCursor(self.tokens, self.pos + 1, close_index)
        self.pos = close_index + 1
        return inner

    def parse_list(
        self, open_char: str, parse_item: Callable[["TokenCursor"], T]
    ) -> list[T]:
        inner = self.scoped(open_char)
        items: list[T] = []
        while not inner.is_empty():
            items.append(parse_item(inner))
            inner.expect_separator()
        return items

    def parse_tuple(self, *parsers: Callable[["TokenCursor"], object]) -> tuple:
        inner = self.scoped("(")
        values = []
        for index, parse in enumerate(parsers):
            if index:
                inner.expect_punct(",")
            values.append(parse(inner))
        inner.expect_separator()
        if not inner.is_empty():
            raise UnexpectedTokenError(
                f"expected a {len(parsers)}-element tuple, "
                f"found extra {describe_token(inner.peek())}",
                inner.peek(),
            )
        return tuple(values)


# ===--- Declarative record parsing ---=== #


class FieldRule(NamedTuple):
    parse: Callable[[TokenCursor], object]
    required: bool = False


def parse_entries(
    cursor: TokenCursor, rules: dict[str, FieldRule], record: str
) -> dict[str, object]:
    """Parse `key: value` pairs until the cursor is exhausted.

    Each key may appear at most once. Values are parsed by the key's rule;
    required keys are checked once the scope is exhausted.

    Raises:
        UnknownKeyError: A key that has no rule.
        DuplicateKeyError: A key seen twice.
        MissingFieldError: A required key that never appeared.
    """
    values: dict[str, object] = {}
    while not cursor.is_empty():
        key_token = cursor.expect("ident", f"{record} key")
        key = key_token.value
        if key not in rules:
            raise UnknownKeyError(key, record, key_token)
        if key in values:
            raise DuplicateKeyError(key, record, key_token)
        cursor.expect_punct(":")
        values[key] = rules[key].parse(cursor)
        cursor.expect_separator()

    for key, rule in rules.items():
        if rule.required and key not in values:
            raise MissingFieldError(key, record, cursor.peek())
    return values


def parse_record(
    cursor: TokenCursor, rules: dict[str, FieldRule], record: str
) -> dict[str, object]:
    return parse_entries(cursor.scoped("{"), rules, record)


# ===--- Specification data model ---=== #


class InterfaceElement(NamedTuple):
    format: str
    name: str


@dataclass(frozen=True)
class PushConstantBlock:
    type_name: str
    ranges: tuple[tuple[str, int], ...]


@dataclass(frozen=True)
class BufferKind:
    fields: tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class SampledImageKind:
    pass


@dataclass(frozen=True)
class DescriptorDeclaration:
    name: str
    kind: BufferKind | SampledImageKind
    binding: int
    set: int


@dataclass(frozen=True)
class ShaderSpecification:
    """Parsed shader specification. Immutable once built."""

    source_path: str
    stage: str
    inputs: tuple[InterfaceElement, ...] = ()
    outputs: tuple[InterfaceElement, ...] = ()
    push_constants: PushConstantBlock | None = None
    descriptors: tuple[DescriptorDeclaration, ...] = ()


# ===--- Declaration parsers ---=== #


INTERFACE_ELEMENT_RULES = {
    "format": FieldRule(TokenCursor.expect_ident, required=True),
    "name": FieldRule(TokenCursor.expect_string, required=True),
}


def parse_interface_element(cursor: TokenCursor) -> InterfaceElement:
    values = parse_record(cursor, INTERFACE_ELEMENT_RULES, "interface element")
    return InterfaceElement(format=values["format"], name=values["name"])


def _ident_token(cursor: TokenCursor) -> Token:
    return cursor.expect("ident", "identifier")


def _check_unique_fields(names: Iterable[Token], record: str) -> None:
    seen: set[str] = set()
    for token in names:
        if token.value in seen:
            raise DuplicateKeyError(token.value, record, token)
        seen.add(token.value)


def _int_token(cursor: TokenCursor) -> Token:
    return cursor.expect("int", "integer literal")


def _parse_push_constant_ranges(cursor: TokenCursor) -> list[tuple[Token, int]]:
    ranges = cursor.parse_list(
        "[", lambda item: item.parse_tuple(_ident_token, _int_token)
    )
    _check_unique_fields((name for name, _count in ranges), "push constant ranges")
    total = 0
    for name, count in ranges:
        total += count.value * FLOAT_SIZE
        if total > MAX_PUSH_CONSTANT_BYTES:
            raise ComponentCountError(name.value, count)
    return [(name, count.value) for name, count in ranges]


PUSH_CONSTANT_RULES = {
    "name": FieldRule(TokenCursor.expect_ident, required=True),
    "ranges": FieldRule(_parse_push_constant_ranges, required=True),
}


def parse_push_constants(cursor: TokenCursor) -> PushConstantBlock:
    """Parse `{ name: Ident, ranges: [(field, count), ...] }`."""
    values = parse_record(cursor, PUSH_CONSTANT_RULES, "push constants")
    return PushConstantBlock(
        type_name=values["name"],
        ranges=tuple((name.value, count) for name, count in values["ranges"]),
    )


def _string_token(cursor: TokenCursor) -> Token:
    return cursor.expect("string", "field type string")


def parse_buffer_fields(data: TokenCursor, descriptor: str) -> tuple[tuple[str, str], ...]:
    """Decode the content of a `data: [(field, "tag"), ...]` list."""
    fields: list[tuple[Token, Token]] = []
    while not data.is_empty():
        name, tag = data.parse_tuple(_ident_token, _string_token)
        if tag.value not in SCALAR_TYPES:
            raise UnsupportedScalarTypeError(tag.value, tag)
        fields.append((name, tag))
        data.expect_separator()
    _check_unique_fields((name for name, _tag in fields), f"buffer '{descriptor}'")
    return tuple((name.value, tag.value) for name, tag in fields)


DESCRIPTOR_RULES = {
    "name": FieldRule(TokenCursor.expect_ident, required=True),
    "ty": FieldRule(_ident_token, required=True),
    # Only the delimiters are checked here; the content is decoded once `ty`
    # is known, so a SampledImage never looks at it.
    "data": FieldRule(lambda cursor: cursor.scoped("[")),
    "binding": FieldRule(TokenCursor.expect_int, required=True),
    "set": FieldRule(TokenCursor.expect_int, required=True),
}


def parse_descriptor(cursor: TokenCursor) -> DescriptorDeclaration:
    values = parse_record(cursor, DESCRIPTOR_RULES, "descriptor")
    name = values["name"]
    ty_token = values["ty"]

    if ty_token.value == "Buffer":
        data = values.get("data")
        if data is None:
            raise MissingDataError(name, ty_token)
        kind = BufferKind(fields=parse_buffer_fields(data, name))
    elif ty_token.value == "SampledImage":
        kind = SampledImageKind()
    else:
        raise UnsupportedDescriptorKindError(ty_token.value, ty_token)

    return DescriptorDeclaration(
        name=name,
        kind=kind,
        binding=values["binding"],
        set=values["set"],
    )


def _parse_shader_kind(cursor: TokenCursor) -> str:
    token = cursor.expect("string", "shader kind string")
    if token.value not in SHADER_STAGE_MASKS:
        raise UnsupportedShaderKindError(token.value, token)
    return token.value


SPECIFICATION_RULES = {
    "path": FieldRule(TokenCursor.expect_string, required=True),
    "kind": FieldRule(_parse_shader_kind, required=True),
    "input": FieldRule(lambda cursor: cursor.parse_list("[", parse_interface_element)),
    "output": FieldRule(lambda cursor: cursor.parse_list("[", parse_interface_element)),
    "push_constants": FieldRule(parse_push_constants),
    "descriptors": FieldRule(lambda cursor: cursor.parse_list("[", parse_descriptor)),
}


def check_record_names(spec: ShaderSpecification) -> None:
    names: list[str] = []
    if spec.push_constants is not None:
        names.append(spec.push_constants.type_name)
    names.extend(
        desc.name for desc in spec.descriptors if isinstance(desc.kind, BufferKind)
    )
    # Compared as emitted, so "class" and "class_" collide.
    seen: set[str] = set()
    for name in names:
        emitted = python_identifier(name)
        if emitted in GENERATED_MODULE_NAMES:
            raise ReservedRecordNameError(name)
        if emitted in seen:
            raise DuplicateRecordError(name)
        seen.add(emitted)


def parse_shader_specification(text: str) -> ShaderSpecification:
    """Parse the body of a shader specification.

    The body is a bare list of top-level `key: value` pairs:

        path: "gui.frag",
        kind: "fragment",
        input: [{ format: R32G32Sfloat, name: "position" }],
        push_constants: { name: PushConstants, ranges: [(color, 4)] },
        descriptors: [{ name: Globals, ty: Buffer, data: [(view, "mat4")],
                        binding: 0, set: 0 }],

    Raises:
        SpecError: The first error encountered; nothing is recovered.
    """
    cursor = TokenCursor(tokenize(text))
    values = parse_entries(cursor, SPECIFICATION_RULES, "shader specification")
    spec = ShaderSpecification(
        source_path=values["path"],
        stage=values["kind"],
        inputs=tuple(values.get("input", ())),
        outputs=tuple(values.get("output", ())),
        push_constants=values.get("push_constants"),
        descriptors=tuple(values.get("descriptors", ())),
    )
    check_record_names(spec)
    return spec


# ===--- Compiled layout ---=== #


@dataclass(frozen=True)
class BufferDescriptor:
    dynamic: bool = False
    storage: bool = False


@dataclass(frozen=True)
class ImageDescriptor:
    sampled: bool = True
    dimensions: str = "2d"
    format: str | None = None
    multisampled: bool = False
    arrayed: bool = False


@dataclass(frozen=True)
class DescriptorMeta:
    """What is bound at one (set, binding) slot."""

    ty: str
    stages: int
    buffer: BufferDescriptor | None = None
    image: ImageDescriptor | None = None
    array_count: int = 1
    readonly: bool = True

    @classmethod
    def uniform_buffer(cls, stages: int) -> "DescriptorMeta":
        return cls(ty=DESCRIPTOR_BUFFER, stages=stages, buffer=BufferDescriptor())

    @classmethod
    def sampled_image(cls, stages: int) -> "DescriptorMeta":
        return cls(
            ty=DESCRIPTOR_COMBINED_IMAGE_SAMPLER,
            stages=stages,
            image=ImageDescriptor(),
        )


class PushConstantRange(NamedTuple):
    offset: int
    size: int
    stages: int


@dataclass(frozen=True)
class CompiledLayout:
    """Derived pipeline layout tables.

    Attributes:
        set_count: Number of distinct descriptor set indices.
        bindings_per_set: set index -> number of distinct binding indices,
            keyed in ascending set order.
        descriptors: (set, binding) -> DescriptorMeta, in declaration order.
        push_constant_ranges: Zero or one range covering the whole block.
    """

    set_count: int
    bindings_per_set: dict[int, int]
    descriptors: dict[tuple[int, int], DescriptorMeta]
    push_constant_ranges: tuple[PushConstantRange, ...]


class RecordField(NamedTuple):
    name: str
    type_tag: str
    shape: tuple[int, ...]
    offset: int
    size: int


@dataclass(frozen=True)
class RecordSchema:
    """Fixed-layout record: fields packed back to back, no alignment padding."""

    name: str
    fields: tuple[RecordField, ...]

    @property
    def size(self) -> int:
        return sum(f.size for f in self.fields)


class InterfaceEntry(NamedTuple):
    location: range
    format: str
    name: str


@dataclass(frozen=True)
class CompiledShader:
    stage: str
    stage_mask: int
    layout: CompiledLayout
    push_constants: RecordSchema | None
    buffers: tuple[RecordSchema, ...]
    inputs: tuple[InterfaceEntry, ...]
    outputs: tuple[InterfaceEntry, ...]

    @property
    def records(self) -> tuple[RecordSchema, ...]:
        if self.push_constants is None:
            return self.buffers
        return (self.push_constants, *self.buffers)


# ===--- Layout compiler ---=== #


def aggregate_bindings(
    descriptors: Iterable[DescriptorDeclaration],
) -> dict[int, frozenset[int]]:
    bindings: dict[int, set[int]] = {}
    for desc in descriptors:
        bindings.setdefault(desc.set, set()).add(desc.binding)
    return {set_index: frozenset(bindings[set_index]) for set_index in sorted(bindings)}


def descriptor_meta_for(desc: DescriptorDeclaration, stage_mask: int) -> DescriptorMeta:
    if isinstance(desc.kind, BufferKind):
        return DescriptorMeta.uniform_buffer(stage_mask)
    return DescriptorMeta.sampled_image(stage_mask)


def collect_descriptors(
    descriptors: Iterable[DescriptorDeclaration],
    stage_mask: int,
    collision_policy: str = COLLISION_OVERRIDE,
) -> dict[tuple[int, int], DescriptorMeta]:
    """Map (set, binding) to descriptor metadata under a collision policy.

    override: a later descriptor on the same slot replaces the earlier one.
    warn: as override, printing a warning line.
    reject: raise DuplicateBindingError on the first reused slot.
    """
    if collision_policy not in VALID_COLLISION_POLICIES:
        raise ValueError(f"Unknown collision policy: {collision_policy}")

    result: dict[tuple[int, int], DescriptorMeta] = {}
    owners: dict[tuple[int, int], str] = {}
    for desc in descriptors:
        slot = (desc.set, desc.binding)
        if slot in result:
            if collision_policy == COLLISION_REJECT:
                raise DuplicateBindingError(desc.set, desc.binding, desc.name)
            if collision_policy == COLLISION_WARN:
                print(
                    f"    Warning: descriptor {desc.name} replaces {owners[slot]} "
                    f"at set {desc.set}, binding {desc.binding}"
                )
        result[slot] = descriptor_meta_for(desc, stage_mask)
        owners[slot] = desc.name
    return result


def compute_push_constant_ranges(
    block: PushConstantBlock | None,
) -> tuple[PushConstantRange, ...]:
    if block is None:
        return ()
    size = sum(count * FLOAT_SIZE for _name, count in block.ranges)
    return (PushConstantRange(offset=0, size=size, stages=STAGE_ALL),)


def compute_push_constant_record(block: PushConstantBlock) -> RecordSchema:
    fields: list[RecordField] = []
    offset = 0
    for name, count in block.ranges:
        size = count * FLOAT_SIZE
        fields.append(RecordField(name, f"float[{count}]", (count,), offset, size))
        offset += size
    return RecordSchema(name=block.type_name, fields=tuple(fields))


def compute_buffer_record(desc: DescriptorDeclaration) -> RecordSchema:
    if not isinstance(desc.kind, BufferKind):
        raise ValueError(f"Descriptor {desc.name} is not a buffer")
    fields: list[RecordField] = []
    offset = 0
    for name, tag in desc.kind.fields:
        scalar = SCALAR_TYPES[tag]
        fields.append(RecordField(name, tag, scalar.shape, offset, scalar.size))
        offset += scalar.size
    return RecordSchema(name=desc.name, fields=tuple(fields))


def assign_interface_locations(
    elements: Iterable[InterfaceElement],
) -> tuple[InterfaceEntry, ...]:
    """Assign location range [i, i+1) to the element declared at index i."""
    return tuple(
        InterfaceEntry(range(index, index + 1), element.format, element.name)
        for index, element in enumerate(elements)
    )


def compile_layout(
    spec: ShaderSpecification, collision_policy: str = COLLISION_OVERRIDE
) -> CompiledLayout:
    stage_mask = SHADER_STAGE_MASKS[spec.stage]
    bindings = aggregate_bindings(spec.descriptors)
    return CompiledLayout(
        set_count=len(bindings),
        bindings_per_set={
            set_index: len(slots) for set_index, slots in bindings.items()
        },
        descriptors=collect_descriptors(
            spec.descriptors, stage_mask, collision_policy
        ),
        push_constant_ranges=compute_push_constant_ranges(spec.push_constants),
    )


def compile_shader(
    spec: ShaderSpecification, collision_policy: str = COLLISION_OVERRIDE
) -> CompiledShader:
    push_constants = (
        compute_push_constant_record(spec.push_constants)
        if spec.push_constants is not None
        else None
    )
    return CompiledShader(
        stage=spec.stage,
        stage_mask=SHADER_STAGE_MASKS[spec.stage],
        layout=compile_layout(spec, collision_policy),
        push_constants=push_constants,
        buffers=tuple(
            compute_buffer_record(desc)
            for desc in spec.descriptors
            if isinstance(desc.kind, BufferKind)
        ),
        inputs=assign_interface_locations(spec.inputs),
        outputs=assign_interface_locations(spec.outputs),
    )


# ===--- Emitter: layout query object ---=== #


class PipelineLayout:
    """Read-only queries over a CompiledLayout, for the host rendering API."""

    def __init__(self, layout: CompiledLayout):
        self.compiled = layout

    def set_count(self) -> int:
        return self.compiled.set_count

    def binding_count(self, set_index: int) -> int | None:
        return self.compiled.bindings_per_set.get(set_index)

    def descriptor(self, set_index: int, binding: int) -> DescriptorMeta | None:
        return self.compiled.descriptors.get((set_index, binding))

    def push_constant_range_count(self) -> int:
        return len(self.compiled.push_constant_ranges)

    def push_constant_range(self, index: int) -> PushConstantRange | None:
        if 0 <= index < len(self.compiled.push_constant_ranges):
            return self.compiled.push_constant_ranges[index]
        return None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PipelineLayout):
            return NotImplemented
        return self.compiled == other.compiled

    def __repr__(self) -> str:
        return f"PipelineLayout({self.compiled!r})"


# ===--- Emitter: interface sequences ---=== #


class InterfaceIter:
    """Single-pass cursor over interface entries.

    len() is the number of entries still to come; a new cursor is needed to
    enumerate again.
    """

    def __init__(self, entries: tuple[InterfaceEntry, ...], order: str):
        self._entries = entries
        self._reverse = order == ORDER_REVERSE
        self._position = 0

    def __iter__(self) -> "InterfaceIter":
        return self

    def __next__(self) -> InterfaceEntry:
        count = len(self._entries)
        if self._position >= count:
            raise StopIteration
        index = count - 1 - self._position if self._reverse else self._position
        self._position += 1
        return self._entries[index]

    def __len__(self) -> int:
        return len(self._entries) - self._position


@dataclass(frozen=True)
class InterfaceDef:
    """Interface entries in declaration order plus the enumeration policy.

    With order="reverse" a fresh cursor yields the last declared element first;
    the location ranges still follow declaration order.
    """

    entries: tuple[InterfaceEntry, ...]
    order: str = ORDER_REVERSE

    def __post_init__(self):
        if self.order not in VALID_ORDERS:
            raise ValueError(f"Unknown enumeration order: {self.order}")

    def elements(self) -> InterfaceIter:
        return InterfaceIter(self.entries, self.order)

    def __iter__(self) -> InterfaceIter:
        return self.elements()

    def __len__(self) -> int:
        return len(self.entries)


# ===--- Emitter: record types ---=== #


def python_identifier(name: str) -> str:
    if keyword.iskeyword(name):
        return name + "_"
    return name


def ctypes_field_type(shape: tuple[int, ...]) -> type:
    field_type = ctypes.c_float
    for dim in reversed(shape):
        field_type = field_type * dim
    return field_type


def build_record_type(schema: RecordSchema) -> type[ctypes.LittleEndianStructure]:
    """Create a little-endian ctypes structure matching the record schema.

    Every field is a float or float array, so natural alignment adds no
    padding and the ctypes offsets equal the schema offsets.
    """
    return type(
        python_identifier(schema.name),
        (ctypes.LittleEndianStructure,),
        {"_fields_": [(f.name, ctypes_field_type(f.shape)) for f in schema.fields]},
    )


@dataclass(frozen=True)
class ShaderArtifacts:
    """The three outputs handed to the host rendering API.

    Attributes:
        layout: Layout-query object.
        records: Record schemas: push constants first (if any), then one per
            Buffer descriptor in declaration order.
        record_types: Record name -> ctypes structure built from the schema.
        inputs: Vertex input interface definition.
        outputs: Stage output interface definition.
    """

    layout: PipelineLayout
    records: tuple[RecordSchema, ...]
    record_types: dict[str, type]
    inputs: InterfaceDef
    outputs: InterfaceDef


def emit_artifacts(compiled: CompiledShader, order: str = ORDER_REVERSE) -> ShaderArtifacts:
    return ShaderArtifacts(
        layout=PipelineLayout(compiled.layout),
        records=compiled.records,
        record_types={
            schema.name: build_record_type(schema) for schema in compiled.records
        },
        inputs=InterfaceDef(compiled.inputs, order),
        outputs=InterfaceDef(compiled.outputs, order),
    )


def build_shader_interface(
    text: str,
    order: str = ORDER_REVERSE,
    collision_policy: str = COLLISION_OVERRIDE,
) -> ShaderArtifacts:
    """Parse, compile and emit in one call. Pure: no files, no compiler."""
    spec = parse_shader_specification(text)
    return emit_artifacts(compile_shader(spec, collision_policy), order)


# ===--- Bytecode compiler ---=== #


class ShaderCompileError(Exception):
    """The external GLSL compiler rejected the source or could not run.

    Attributes:
        message: One-line summary.
        diagnostics: Compiler output (stderr), empty when not available.
    """

    def __init__(self, message: str, diagnostics: str = ""):
        super().__init__(message)
        self.message = message
        self.diagnostics = diagnostics


def decode_spirv_words(blob: bytes) -> tuple[int, ...]:
    if len(blob) % 4 != 0:
        raise ShaderCompileError(
            f"Compiler output is {len(blob)} bytes, not a whole number of words"
        )
    words = struct.unpack(f"<{len(blob) // 4}I", blob)
    if not words or words[0] != SPIRV_MAGIC:
        raise ShaderCompileError("Compiler output does not start with the SPIR-V magic number")
    return words


def compile_to_bytecode(
    source_text: str,
    stage: str,
    compiler: str = DEFAULT_COMPILER,
    source_name: str = "shader.glsl",
) -> tuple[int, ...]:
    """Compile GLSL source to SPIR-V words with a glslc-compatible compiler.

    Args:
        source_text: GLSL source.
        stage: "vertex" or "fragment".
        compiler: Executable name or path.
        source_name: File name used for the temporary source (shows up in
            compiler diagnostics).

    Returns:
        SPIR-V as a tuple of 32-bit words.

    Raises:
        ValueError: Unknown stage.
        ShaderCompileError: Compiler missing, compilation failed, or output
            is not SPIR-V.
    """
    if stage not in COMPILER_STAGE_FLAGS:
        raise ValueError(f"Unknown shader stage: {stage}")

    with tempfile.TemporaryDirectory(prefix="shadergen-") as work_dir:
        source_file = Path(work_dir) / Path(source_name).name
        output_file = Path(work_dir) / "out.spv"
        source_file.write_text(source_text, encoding="utf-8")
        try:
            subprocess.run(
                [
                    compiler,
                    f"-fshader-stage={COMPILER_STAGE_FLAGS[stage]}",
                    "-o",
                    str(output_file),
                    str(source_file),
                ],
                check=True,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as err:
            raise ShaderCompileError(f"Shader compiler not found: {compiler}") from err
        except subprocess.CalledProcessError as err:
            diagnostics = (err.stderr or err.stdout or "").strip()
            raise ShaderCompileError(
                f"{source_name}: compilation failed (exit {err.returncode})",
                diagnostics,
            ) from err

        if not output_file.exists():
            raise ShaderCompileError(f"{source_name}: compiler produced no output")
        blob = output_file.read_bytes()

    return decode_spirv_words(blob)


def compile_file_to_bytecode(
    path: str | Path, stage: str, compiler: str = DEFAULT_COMPILER
) -> tuple[int, ...]:
    path = Path(path)
    source_text = path.read_text(encoding="utf-8")
    return compile_to_bytecode(source_text, stage, compiler, source_name=path.name)


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class GenerateConfig:
    specs: tuple[Path, ...]
    output_dir: Path
    compiler: str | None
    order: str
    collision_policy: str
    jobs: int


@dataclass(frozen=True)
class InspectConfig:
    specs: tuple[Path, ...]
    order: str
    collision_policy: str


VALID_ERROR_CODES = {
    "PATH_NOT_FOUND",
    "INVALID_ORDER",
    "INVALID_COLLISION_POLICY",
    "INVALID_JOBS",
    "COMPILER_NOT_FOUND",
    "CONFLICT_INSPECT_FLAGS",
    "DUPLICATE_MODULE_NAME",
}


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def validate_path_exists(
    path: Path | None, flag: str, suggestion: str | None = None
) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/resource",
        )
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing path for this flag.",
    )


def validate_order(raw: str) -> str:
    if raw in VALID_ORDERS:
        return raw
    raise ConfigError(
        "INVALID_ORDER",
        f"Unsupported interface enumeration order: {raw}",
        "Use one of: reverse, forward.",
    )


def validate_collision_policy(raw: str) -> str:
    if raw in VALID_COLLISION_POLICIES:
        return raw
    raise ConfigError(
        "INVALID_COLLISION_POLICY",
        f"Unsupported duplicate-binding policy: {raw}",
        "Use one of: override, warn, reject.",
    )


def validate_jobs(raw: int | None) -> int:
    if raw is None:
        return 1
    if raw >= 1:
        return raw
    raise ConfigError(
        "INVALID_JOBS",
        f"--jobs must be at least 1, got {raw}",
        "Pass --jobs 1 to compile sequentially.",
    )


def resolve_compiler(explicit: str | None) -> str:
    candidate = explicit or os.environ.get(COMPILER_ENV_VAR) or DEFAULT_COMPILER
    resolved = shutil.which(candidate)
    if resolved is not None:
        return resolved
    raise ConfigError(
        "COMPILER_NOT_FOUND",
        f"Shader compiler not found: {candidate}",
        "Install the Vulkan SDK (glslc), set GLSLC, pass --compiler /path/to/glslc, "
        "or use --skip-compile.",
    )


def module_name_for_spec(path: Path) -> str:
    """Derive the generated module name from a spec file name.

    "gui.frag.twshader" -> "gui_frag"; leading digits and keywords are
    made importable.
    """
    stem = re.sub(r"[^0-9A-Za-z_]", "_", path.stem).lower()
    if not stem or stem[0].isdigit():
        stem = "_" + stem
    return python_identifier(stem)


def validate_module_names(specs: tuple[Path, ...]) -> None:
    seen: dict[str, Path] = {}
    for spec_path in specs:
        name = module_name_for_spec(spec_path)
        if name in seen:
            raise ConfigError(
                "DUPLICATE_MODULE_NAME",
                f"{seen[name]} and {spec_path} both generate module '{name}'",
                "Rename one of the specification files.",
            )
        seen[name] = spec_path


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shadergen",
        description="Generate pipeline layouts and record types from shader specifications",
    )

    parser.add_argument("specs", nargs="+", type=Path)
    parser.add_argument("--output-dir", type=Path, default=DEFAULT_OUTPUT_DIR)

    compile_group = parser.add_mutually_exclusive_group()
    compile_group.add_argument("--compiler", type=str, default=None)
    compile_group.add_argument("--skip-compile", action="store_true", default=False)

    parser.add_argument("--order", type=str, default=ORDER_REVERSE)
    parser.add_argument(
        "--on-duplicate-binding",
        dest="collision_policy",
        type=str,
        default=COLLISION_OVERRIDE,
    )
    parser.add_argument("--jobs", type=int, default=None)
    parser.add_argument("--inspect", action="store_true", default=False)
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> GenerateConfig | InspectConfig:
    specs = tuple(
        validate_path_exists(Path(spec), "SPEC", "Pass paths to existing .twshader files.")
        for spec in args.specs
    )
    validate_module_names(specs)
    order = validate_order(args.order)
    collision_policy = validate_collision_policy(args.collision_policy)

    if args.inspect:
        if args.compiler is not None or args.skip_compile or args.jobs is not None:
            raise ConfigError(
                "CONFLICT_INSPECT_FLAGS",
                "--inspect cannot be combined with --compiler, --skip-compile or --jobs.",
                "Inspect mode never compiles shaders; drop the compile flags.",
            )
        return InspectConfig(specs=specs, order=order, collision_policy=collision_policy)

    jobs = validate_jobs(args.jobs)
    compiler = None if args.skip_compile else resolve_compiler(args.compiler)

    return GenerateConfig(
        specs=specs,
        output_dir=args.output_dir,
        compiler=compiler,
        order=order,
        collision_policy=collision_policy,
        jobs=jobs,
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig | InspectConfig:
    return validate_config(parse_args(argv))


# ===--- Module writer ---=== #


@dataclass(frozen=True)
class WriteConfig:
    """Metadata embedded in one generated module's header.

    Attributes:
        spec_name: Specification file name, e.g. "gui.twshader".
        source_path: Shader source path as written in the specification.
        stage: "vertex" or "fragment".
        compiled: False when the run used --skip-compile (no SPIR-V embedded).
    """

    spec_name: str
    source_path: str
    stage: str
    compiled: bool = True


@dataclass(frozen=True)
class ImportSpec:
    """One import line in a generated module.

    Renders as `import <module>` when names is empty, otherwise
    `from <module> import <names>` (parenthesised one per line when the
    single-line form would exceed MAX_LINE_LENGTH).
    """

    module: str
    names: tuple[str, ...] = ()


@dataclass(frozen=True)
class ModuleSpec:
    """Complete input for one generated .py module file (not __init__.py).

    Attributes:
        filename: Output filename including .py extension, e.g. "gui.py".
        stdlib_imports: Standard library imports, first group.
        project_imports: shadergen runtime imports, second group.
        content_lines: Module body lines without trailing newlines.
    """

    filename: str
    stdlib_imports: tuple[ImportSpec, ...]
    project_imports: tuple[ImportSpec, ...]
    content_lines: tuple[str, ...]


@dataclass(frozen=True)
class InitModuleSpec:
    """Generated package __init__.py: imports every generated module in order."""

    modules: tuple[str, ...]


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing a single generated file.

    Attributes:
        filename: Filename written, e.g. "gui.py" or "__init__.py".
        path: Absolute path of the written file.
        line_count: Number of newline characters in the written content.
        byte_count: Number of bytes written (UTF-8 encoded).
    """

    filename: str
    path: Path
    line_count: int
    byte_count: int


@dataclass(frozen=True)
class PackageWriteResult:
    """Result of writing the generated package.

    files is ordered: module files first (in input order), __init__.py last.
    """

    output_dir: Path
    files: tuple[FileWriteResult, ...]

    @property
    def total_lines(self) -> int:
        return sum(f.line_count for f in self.files)


MAX_LINE_LENGTH = 88

_HEADER_BORDER: str = "# x-------------------------------------------x #"


def format_file_header(config: WriteConfig) -> list[str]:
    """Return comment-block lines for a generated module header.

    Output format:
        # x-------------------------------------------x #
        # | Shader interface for gui.frag (fragment)
        # | Generated by shadergen 0.1.0 -- do not edit
        # | Source: gui.twshader
        # | SPIR-V: not compiled (--skip-compile)
        # x-------------------------------------------x #

    The SPIR-V line is only present when compilation was skipped.

    Raises:
        ValueError: If config.spec_name is empty.
    """
    if not config.spec_name:
        raise ValueError("spec_name must not be empty")

    lines: list[str] = [
        _HEADER_BORDER,
        f"# | Shader interface for {config.source_path} ({config.stage})",
        f"# | Generated by shadergen {__version__} -- do not edit",
        f"# | Source: {config.spec_name}",
    ]
    if not config.compiled:
        lines.append("# | SPIR-V: not compiled (--skip-compile)")
    lines.append(_HEADER_BORDER)
    return lines


def format_import(imp: ImportSpec) -> list[str]:
    if not imp.names:
        return [f"import {imp.module}"]
    single = f"from {imp.module} import {', '.join(imp.names)}"
    if len(single) <= MAX_LINE_LENGTH:
        return [single]
    return [f"from {imp.module} import ("] + [f"    {name}," for name in imp.names] + [")"]


def format_import_block(
    stdlib_imports: tuple[ImportSpec, ...],
    project_imports: tuple[ImportSpec, ...],
) -> list[str]:
    """Return import lines: stdlib group, blank line, project group.

    No blank line is emitted when only one group is non-empty; both empty
    returns an empty list.
    """
    lines: list[str] = []
    for imp in stdlib_imports:
        lines.extend(format_import(imp))
    if stdlib_imports and project_imports:
        lines.append("")
    for imp in project_imports:
        lines.extend(format_import(imp))
    return lines


def assemble_module_source(config: WriteConfig, spec: ModuleSpec) -> str:
    """Assemble a complete .py module source string from a ModuleSpec.

    File structure:
        <header comment block>
                                    <- blank line
        <import block>              <- omitted with its blank line if empty
                                    <- blank line
        <content lines>
                                    <- trailing newline

    Raises:
        ValueError: If spec.filename is empty or does not end with ".py".
    """
    if not spec.filename or not spec.filename.endswith(".py"):
        raise ValueError(
            f"spec.filename must be non-empty and end with '.py', got {spec.filename!r}"
        )

    parts: list[str] = list(format_file_header(config))

    if spec.stdlib_imports or spec.project_imports:
        parts.append("")
        parts.extend(format_import_block(spec.stdlib_imports, spec.project_imports))

    if spec.content_lines:
        parts.append("")
        parts.extend(spec.content_lines)

    return "\n".join(parts) + "\n"


def assemble_init_source(init_spec: InitModuleSpec) -> str:
    docstring = f'"""Shader interface modules generated by shadergen {__version__}."""'
    parts: list[str] = [docstring, ""]
    if init_spec.modules:
        parts.append(f"from . import {', '.join(init_spec.modules)}")
        parts.append("")
        names = ", ".join(json.dumps(name) for name in init_spec.modules)
        parts.append(f"__all__ = [{names}]")
    return "\n".join(parts) + "\n"


def _write_text(file_path: Path, content: str) -> FileWriteResult:
    file_path.write_text(content, encoding="utf-8")
    resolved = file_path.resolve()
    return FileWriteResult(
        filename=file_path.name,
        path=resolved,
        line_count=content.count("\n"),
        byte_count=len(resolved.read_bytes()),
    )


def write_module(output_dir: Path, config: WriteConfig, spec: ModuleSpec) -> FileWriteResult:
    """Write one generated module, creating output_dir if needed.

    Raises:
        ValueError: Propagated from assemble_module_source on invalid spec.
        OSError: Propagated directly if the filesystem write fails.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    content = assemble_module_source(config, spec)
    return _write_text(output_dir / spec.filename, content)


def write_init_module(output_dir: Path, init_spec: InitModuleSpec) -> FileWriteResult:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    return _write_text(output_dir / "__init__.py", assemble_init_source(init_spec))


def write_package(
    output_dir: Path,
    modules: tuple[tuple[WriteConfig, ModuleSpec], ...],
    init_spec: InitModuleSpec,
) -> PackageWriteResult:
    """Write all generated modules, then __init__.py last.

    Propagates any OSError immediately; earlier files stay on disk.
    """
    files: list[FileWriteResult] = []
    for config, spec in modules:
        files.append(write_module(output_dir, config, spec))
    files.append(write_init_module(output_dir, init_spec))
    return PackageWriteResult(output_dir=Path(output_dir), files=tuple(files))


# ===--- Python source emission ---=== #


WORDS_PER_LINE = 8


def format_stage_mask(mask: int) -> str:
    return f"0x{mask:08X}"


def format_spirv_words(words: tuple[int, ...]) -> list[str]:
    if not words:
        return ["SPIRV_WORDS: tuple[int, ...] = ()"]
    lines = ["SPIRV_WORDS: tuple[int, ...] = ("]
    for start in range(0, len(words), WORDS_PER_LINE):
        chunk = words[start : start + WORDS_PER_LINE]
        lines.append("    " + " ".join(f"0x{word:08X}," for word in chunk))
    lines.append(")")
    return lines


def format_ctypes_type(shape: tuple[int, ...]) -> str:
    expr = "ctypes.c_float"
    for index, dim in enumerate(reversed(shape)):
        if index:
            expr = f"({expr})"
        expr = f"{expr} * {dim}"
    return expr


def format_record_class(schema: RecordSchema) -> list[str]:
    lines = [
        f"class {python_identifier(schema.name)}(ctypes.LittleEndianStructure):",
        f'    """{schema.size} bytes, fields packed in declaration order."""',
        "",
    ]
    if not schema.fields:
        lines.append("    _fields_ = []")
        return lines
    lines.append("    _fields_ = [")
    for f in schema.fields:
        lines.append(f"        ({json.dumps(f.name)}, {format_ctypes_type(f.shape)}),")
    lines.append("    ]")
    return lines


def format_interface_def(
    constant: str, entries: tuple[InterfaceEntry, ...], order: str
) -> list[str]:
    if not entries:
        return [f"{constant} = InterfaceDef((), order={json.dumps(order)})"]
    lines = [f"{constant} = InterfaceDef(", "    ("]
    for entry in entries:
        lines.append(
            f"        InterfaceEntry(range({entry.location.start}, {entry.location.stop}), "
            f"{json.dumps(entry.format)}, {json.dumps(entry.name)}),"
        )
    lines.append("    ),")
    lines.append(f"    order={json.dumps(order)},")
    lines.append(")")
    return lines


def format_descriptor_meta(meta: DescriptorMeta) -> str:
    if meta.ty == DESCRIPTOR_BUFFER:
        factory = "uniform_buffer"
    else:
        factory = "sampled_image"
    return f"DescriptorMeta.{factory}(stages={format_stage_mask(meta.stages)})"


def format_layout_constant(constant: str, layout: CompiledLayout) -> list[str]:
    lines = [
        f"{constant} = PipelineLayout(",
        "    CompiledLayout(",
        f"        set_count={layout.set_count},",
    ]
    bindings = ", ".join(
        f"{set_index}: {count}" for set_index, count in layout.bindings_per_set.items()
    )
    lines.append(f"        bindings_per_set={{{bindings}}},")

    if layout.descriptors:
        lines.append("        descriptors={")
        for (set_index, binding), meta in layout.descriptors.items():
            lines.append(
                f"            ({set_index}, {binding}): {format_descriptor_meta(meta)},"
            )
        lines.append("        },")
    else:
        lines.append("        descriptors={},")

    if layout.push_constant_ranges:
        lines.append("        push_constant_ranges=(")
        for pc_range in layout.push_constant_ranges:
            lines.append(
                f"            PushConstantRange(offset={pc_range.offset}, "
                f"size={pc_range.size}, stages={format_stage_mask(pc_range.stages)}),"
            )
        lines.append("        ),")
    else:
        lines.append("        push_constant_ranges=(),")

    lines.append("    )")
    lines.append(")")
    return lines


def format_recompile_function() -> list[str]:
    return [
        f'def recompile(compiler: str = "{DEFAULT_COMPILER}") -> tuple[int, ...]:',
        '    """Re-read SOURCE_FILE and compile it to SPIR-V words again."""',
        "    return compile_file_to_bytecode(SOURCE_FILE, STAGE, compiler)",
    ]


def project_import_names(compiled: CompiledShader) -> tuple[str, ...]:
    names = {
        "CompiledLayout",
        "InterfaceDef",
        "PipelineLayout",
        "compile_file_to_bytecode",
    }
    if compiled.inputs or compiled.outputs:
        names.add("InterfaceEntry")
    if compiled.layout.descriptors:
        names.add("DescriptorMeta")
    if compiled.layout.push_constant_ranges:
        names.add("PushConstantRange")
    return tuple(sorted(names))


def build_module_content(
    spec: ShaderSpecification,
    compiled: CompiledShader,
    words: tuple[int, ...],
    source_file: Path,
    order: str,
) -> tuple[str, ...]:
    lines: list[str] = [
        f"SOURCE_PATH = {json.dumps(spec.source_path)}",
        f"SOURCE_FILE = {json.dumps(str(source_file))}",
        f"STAGE = {json.dumps(compiled.stage)}",
        f"STAGE_MASK = {format_stage_mask(compiled.stage_mask)}",
        "",
    ]
    lines.extend(format_spirv_words(words))

    for schema in compiled.records:
        lines.extend(["", ""])
        lines.extend(format_record_class(schema))

    lines.extend(["", ""])
    lines.extend(format_interface_def("MAIN_INPUT", compiled.inputs, order))
    lines.extend(format_interface_def("MAIN_OUTPUT", compiled.outputs, order))
    lines.append("")
    lines.extend(format_layout_constant("MAIN_LAYOUT", compiled.layout))
    lines.extend(["", ""])
    lines.extend(format_recompile_function())
    return tuple(lines)


# ===--- Pipeline stage boundaries ---=== #


@dataclass(frozen=True)
class LoadedSpecification:
    """One parsed specification file.

    Attributes:
        spec_path: Specification file as given on the command line.
        module_name: Generated module name from module_name_for_spec.
        spec: Parsed specification.
        source_file: Shader source resolved against the spec file's directory.
    """

    spec_path: Path
    module_name: str
    spec: ShaderSpecification
    source_file: Path


@dataclass(frozen=True)
class ShaderBuild:
    """Compiled layout and SPIR-V for one loaded specification.

    words is empty when compilation was skipped.
    """

    loaded: LoadedSpecification
    compiled: CompiledShader
    words: tuple[int, ...]


# ===--- Pipeline stage functions ---=== #


def load_specification(spec_path: Path) -> LoadedSpecification:
    """Read and parse one specification file.

    Raises:
        OSError: File not readable.
        SpecError: Parse failure; err.source is set to spec_path.
    """
    text = Path(spec_path).read_text(encoding="utf-8")
    try:
        spec = parse_shader_specification(text)
    except SpecError as err:
        err.source = str(spec_path)
        raise
    return LoadedSpecification(
        spec_path=Path(spec_path),
        module_name=module_name_for_spec(Path(spec_path)),
        spec=spec,
        source_file=(Path(spec_path).parent / spec.source_path).resolve(),
    )


def build_shader(
    loaded: LoadedSpecification,
    compiler: str | None,
    collision_policy: str = COLLISION_OVERRIDE,
) -> ShaderBuild:
    """Compile the layout and, unless compiler is None, the SPIR-V.

    Raises:
        SpecError: DuplicateBindingError under the reject policy.
        OSError: Shader source not readable.
        ShaderCompileError: Propagated unchanged from the compiler.
    """
    try:
        compiled = compile_shader(loaded.spec, collision_policy)
    except SpecError as err:
        err.source = str(loaded.spec_path)
        raise
    words: tuple[int, ...] = ()
    if compiler is not None:
        words = compile_file_to_bytecode(loaded.source_file, loaded.spec.stage, compiler)
    return ShaderBuild(loaded=loaded, compiled=compiled, words=words)


def build_all(
    loaded: list[LoadedSpecification],
    compiler: str | None,
    collision_policy: str,
    jobs: int = 1,
) -> list[ShaderBuild]:
    """Build every specification, in parallel when jobs > 1.

    Results keep input order. The first failure in input order is raised.
    """
    if jobs == 1 or len(loaded) < 2:
        return [build_shader(item, compiler, collision_policy) for item in loaded]

    with ThreadPoolExecutor(max_workers=jobs, thread_name_prefix="shadergen") as executor:
        futures = [
            executor.submit(build_shader, item, compiler, collision_policy)
            for item in loaded
        ]
        return [future.result() for future in futures]


def build_module_spec(build: ShaderBuild, order: str) -> tuple[WriteConfig, ModuleSpec]:
    loaded = build.loaded
    write_config = WriteConfig(
        spec_name=loaded.spec_path.name,
        source_path=loaded.spec.source_path,
        stage=loaded.spec.stage,
        compiled=bool(build.words),
    )
    stdlib_imports = (ImportSpec("ctypes"),) if build.compiled.records else ()
    module_spec = ModuleSpec(
        filename=f"{loaded.module_name}.py",
        stdlib_imports=stdlib_imports,
        project_imports=(ImportSpec("shadergen", project_import_names(build.compiled)),),
        content_lines=build_module_content(
            loaded.spec, build.compiled, build.words, loaded.source_file, order
        ),
    )
    return write_config, module_spec


def run_generate(config: GenerateConfig) -> PackageWriteResult:
    """Execute the generation pipeline for a GenerateConfig.

    Stages: load + parse -> compile layouts and SPIR-V -> assemble module
    specs -> write package -> print summary.

    Raises:
        OSError: Spec or shader source unreadable, or write failure.
        SpecError: Invalid specification.
        ShaderCompileError: Compiler failure.
    """
    loaded: list[LoadedSpecification] = []
    for spec_path in config.specs:
        print(f"Parsing: {spec_path}")
        item = load_specification(spec_path)
        print(
            f"  {item.spec.stage} shader {item.spec.source_path}: "
            f"{len(item.spec.inputs)} inputs, {len(item.spec.outputs)} outputs, "
            f"{len(item.spec.descriptors)} descriptors"
        )
        loaded.append(item)

    if config.compiler is None:
        print(f"  Compiling: {len(loaded)} layouts (SPIR-V skipped)")
    else:
        print(f"  Compiling: {len(loaded)} shaders with {config.compiler}")
    builds = build_all(loaded, config.compiler, config.collision_policy, config.jobs)

    modules = tuple(build_module_spec(build, config.order) for build in builds)
    init_spec = InitModuleSpec(modules=tuple(item.module_name for item in loaded))
    result = write_package(config.output_dir, modules, init_spec)
    print(
        f"  Written: {len(result.files)} files, "
        f"{result.total_lines} lines to {result.output_dir}"
    )

    summary = build_generation_summary(builds, result, compiled=config.compiler is not None)
    print_generation_summary(summary)
    return result


# ===--- Inspect report ---=== #


def format_layout_report(
    loaded: LoadedSpecification, compiled: CompiledShader, order: str
) -> str:
    """Render one compiled specification as a human-readable report."""
    layout = PipelineLayout(compiled.layout)
    lines: list[str] = [
        f"{loaded.spec_path.name} -> {loaded.module_name}",
        f"  Source: {loaded.spec.source_path} ({compiled.stage}, "
        f"stages {format_stage_mask(compiled.stage_mask)})",
        "",
        f"  Descriptor sets: {layout.set_count()}",
    ]
    for set_index, count in compiled.layout.bindings_per_set.items():
        lines.append(f"    set {set_index}: {count} bindings")
    for (set_index, binding), meta in compiled.layout.descriptors.items():
        lines.append(f"    ({set_index}, {binding})  {meta.ty}")

    lines.append("")
    lines.append(f"  Push constant ranges: {layout.push_constant_range_count()}")
    for pc_range in compiled.layout.push_constant_ranges:
        lines.append(
            f"    offset {pc_range.offset:>4}  size {pc_range.size:>4}  "
            f"stages {format_stage_mask(pc_range.stages)}"
        )

    for schema in compiled.records:
        lines.append("")
        lines.append(f"  Record {schema.name} ({schema.size} bytes)")
        for f in schema.fields:
            lines.append(f"    {f.offset:>4}  {f.size:>3}  {f.type_tag:<10} {f.name}")

    for label, entries in (("Inputs", compiled.inputs), ("Outputs", compiled.outputs)):
        lines.append("")
        lines.append(f"  {label} ({order} order): {len(entries)}")
        for entry in InterfaceDef(entries, order):
            lines.append(
                f"    location {entry.location.start:>2}  {entry.format:<22} {entry.name}"
            )

    lines.append("")
    return "\n".join(lines)


def run_inspect(config: InspectConfig) -> None:
    """Print the compiled layout of every specification. Writes nothing."""
    for spec_path in config.specs:
        loaded = load_specification(spec_path)
        build = build_shader(loaded, None, config.collision_policy)
        print(format_layout_report(loaded, build.compiled, config.order), end="")


# ===--- Summary report ---=== #


@dataclass(frozen=True)
class ShaderSummary:
    """Per-shader row of the generation summary."""

    module_name: str
    stage: str
    set_count: int
    binding_count: int
    push_constant_bytes: int
    record_count: int
    input_count: int
    output_count: int
    word_count: int


@dataclass(frozen=True)
class GenerationSummary:
    """Complete, immutable data for the post-generation console report.

    Attributes:
        output_dir: Output directory as string.
        shaders: One row per generated module, in input order.
        files: Write results, in write order.
        compiled: False when SPIR-V compilation was skipped.
    """

    output_dir: str
    shaders: tuple[ShaderSummary, ...]
    files: tuple[FileWriteResult, ...]
    compiled: bool


def build_shader_summary(build: ShaderBuild) -> ShaderSummary:
    layout = build.compiled.layout
    return ShaderSummary(
        module_name=build.loaded.module_name,
        stage=build.compiled.stage,
        set_count=layout.set_count,
        binding_count=sum(layout.bindings_per_set.values()),
        push_constant_bytes=sum(r.size for r in layout.push_constant_ranges),
        record_count=len(build.compiled.records),
        input_count=len(build.compiled.inputs),
        output_count=len(build.compiled.outputs),
        word_count=len(build.words),
    )


def build_generation_summary(
    builds: list[ShaderBuild],
    write_result: PackageWriteResult,
    compiled: bool = True,
) -> GenerationSummary:
    return GenerationSummary(
        output_dir=str(write_result.output_dir),
        shaders=tuple(build_shader_summary(build) for build in builds),
        files=write_result.files,
        compiled=compiled,
    )


def format_generation_summary(summary: GenerationSummary) -> str:
    """Render a GenerationSummary as the console report.

    Returns a string with exactly one trailing newline.
    """
    count = len(summary.shaders)
    noun = "shader" if count == 1 else "shaders"
    lines: list[str] = [f"{count} {noun} generated:", ""]
    lines.append(f"  Output:     {summary.output_dir}")
    lines.append(f"  SPIR-V:     {'compiled' if summary.compiled else 'skipped'}")
    lines.append("")
    lines.append(
        f"    {'Module':<20}{'Stage':<10}{'Sets':>5}{'Bind':>6}{'PC bytes':>10}"
        f"{'Records':>9}{'In':>4}{'Out':>5}{'Words':>8}"
    )
    for row in summary.shaders:
        lines.append(
            f"    {row.module_name:<20}{row.stage:<10}{row.set_count:>5}"
            f"{row.binding_count:>6}{row.push_constant_bytes:>10}{row.record_count:>9}"
            f"{row.input_count:>4}{row.output_count:>5}{row.word_count:>8,}"
        )

    lines.append("")
    lines.append("  Files written:")
    for file_result in summary.files:
        lines.append(f"    {file_result.filename:<28} {file_result.line_count:>6,} lines")

    total_lines = sum(f.line_count for f in summary.files)
    lines.append("")
    lines.append(f"  Total: {total_lines:,} lines across {len(summary.files)} files")
    lines.append("")
    return "\n".join(lines)


def print_generation_summary(summary: GenerationSummary) -> None:
    print(format_generation_summary(summary), end="")


# ===--- Main ---=== #


def main(argv: list[str] | None = None) -> None:
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    try:
        if isinstance(config, InspectConfig):
            run_inspect(config)
        else:
            run_generate(config)
    except SpecError as err:
        print(f"Specification error [{err.code}]: {err}")
        raise SystemExit(1) from err
    except ShaderCompileError as err:
        print(f"Compile error: {err.message}")
        if err.diagnostics:
            print(err.diagnostics)
        raise SystemExit(1) from err
    except OSError as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err
    except (RuntimeError, ValueError) as err:
        print(f"Internal error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
