"""Normalized structural model of an account-model program.

The IR is produced by an external source parser and consumed by the fact
extractor. Only the node kinds the detectors reason about are modelled:
arithmetic, cross-program calls, field assignments, guard conditions and
plain calls. Everything is frozen once validated.

Expressions accept a string shorthand so IR documents stay readable::

    Expr.model_validate("vault.authority == authority.key()")
    # Expr(kind="binary", op="==", lhs=path(vault.authority), rhs=path(authority.key()))
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Iterator, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


# ── Expressions ──────────────────────────────────────────────────────────────


_PATH_RE = re.compile(
    r"^[A-Za-z_]\w*(?:\(\))?(?:(?:\.|::)[A-Za-z_]\w*(?:\(\))?)*$"
)
_NUMBER_RE = re.compile(r"^-?\d[\d_]*(u8|u16|u32|u64|u128|i8|i16|i32|i64|i128|usize)?$")
_BYTES_RE = re.compile(r'^b?"[^"]*"$')
_CALL_RE = re.compile(r"^([A-Za-z_][\w:.<>]*)\((.*)\)$", re.DOTALL)

# Lowest precedence first; arithmetic groups split at the last occurrence.
_OPERATOR_GROUPS: tuple[tuple[tuple[str, ...], bool], ...] = (
    (("||",), False),
    (("&&",), False),
    (("==", "!=", ">=", "<=", ">", "<"), False),
    (("+", "-"), True),
    (("*", "/", "%"), True),
)
_OPENERS = {"(": ")", "[": "]", "{": "}"}
_PREFIX_OPERATORS = set("=!<>+-*/%&|(,")


def _is_operator_at(text: str, i: int, op: str) -> bool:
    if not text.startswith(op, i):
        return False
    before = text[:i].rstrip()
    after = text[i + len(op):]
    if not before:
        return False
    if op in ("<", ">"):
        if after[:1] in ("=", "<", ">") or before[-1:] in ("-", "=", "<", ">"):
            return False
    if op in ("-", "*", "/", "%", "+"):
        if before[-1] in _PREFIX_OPERATORS or after[:1] in ("=", ">"):
            return False
        if op == "/" and after[:1] == "/":
            return False
    return True


def _split_top(text: str, ops: tuple[str, ...], last: bool) -> tuple[int, str]:
    """Find an operator outside brackets and quotes; return (index, op) or (-1, "")."""
    found = (-1, "")
    stack: list[str] = []
    in_string = False
    ordered = sorted(ops, key=len, reverse=True)
    i = 0
    while i < len(text):
        ch = text[i]
        if in_string:
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in _OPENERS:
            stack.append(_OPENERS[ch])
        elif stack and ch == stack[-1]:
            stack.pop()
        elif not stack:
            for op in ordered:
                if _is_operator_at(text, i, op):
                    found = (i, op)
                    if not last:
                        return found
                    i += len(op) - 1
                    break
        i += 1
    return found


def _strip_parens(text: str) -> str:
    while text.startswith("(") and text.endswith(")"):
        depth = 0
        for i, ch in enumerate(text):
            depth += ch == "("
            depth -= ch == ")"
            if depth == 0 and i < len(text) - 1:
                return text
        text = text[1:-1].strip()
    return text


def _split_args(text: str) -> list[str]:
    args: list[str] = []
    depth = 0
    in_string = False
    current = ""
    for i, ch in enumerate(text):
        if in_string:
            in_string = ch != '"' or text[i - 1] == "\\"
        elif ch == '"':
            in_string = True
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        if ch == "," and depth == 0 and not in_string:
            args.append(current)
            current = ""
        else:
            current += ch
    if current.strip():
        args.append(current)
    return args


def parse_expression(text: str) -> dict[str, Any]:
    """Turn shorthand expression text into the dict form of :class:`Expr`."""
    raw = text
    text = _strip_parens(text.strip())
    for prefix in ("&mut ", "&"):
        text = text.removeprefix(prefix).strip()
    text = _strip_parens(text)
    if not text:
        return {"kind": "unknown", "raw": raw}
    if text in ("true", "false"):
        return {"kind": "literal", "value": text == "true"}
    number = _NUMBER_RE.match(text)
    if number:
        digits = text[: number.start(1)] if number.group(1) else text
        return {"kind": "literal", "value": int(digits.replace("_", ""))}
    if _BYTES_RE.match(text):
        return {"kind": "literal", "value": text}
    if _PATH_RE.match(text):
        return {"kind": "path", "path": text}

    for ops, last in _OPERATOR_GROUPS:
        index, op = _split_top(text, ops, last)
        if index >= 0:
            return {
                "kind": "binary",
                "op": op,
                "lhs": parse_expression(text[:index]),
                "rhs": parse_expression(text[index + len(op):]),
            }

    if text.startswith("!") and len(text) > 1:
        return {"kind": "unary", "op": "!", "lhs": parse_expression(text[1:])}

    call = _CALL_RE.match(text)
    if call and _closes_at_end(text, len(call.group(1))):
        return {
            "kind": "call",
            "func": call.group(1),
            "args": [parse_expression(a) for a in _split_args(call.group(2))],
        }

    opener = _trailing_bracket(text)
    if opener == 0:
        # seed arrays: [b"vault", authority.key().as_ref(), &[bump]]
        return {"kind": "array", "args": [parse_expression(a) for a in _split_args(text[1:-1])]}
    if opener > 0:
        inner = text[opener + 1:-1].strip()
        bounds = inner.split("..") if ".." in inner else [inner]
        return {
            "kind": "index",
            "lhs": parse_expression(text[:opener]),
            "args": [parse_expression(b) for b in bounds if b.strip()],
            "raw": inner,
        }
    return {"kind": "unknown", "raw": raw}


def _trailing_bracket(text: str) -> int:
    """Index of the ``[`` whose ``]`` ends ``text``, or -1."""
    stack: list[tuple[str, int]] = []
    in_string = False
    for i, ch in enumerate(text):
        if in_string:
            in_string = ch != '"' or text[i - 1] == "\\"
        elif ch == '"':
            in_string = True
        elif ch in _OPENERS:
            stack.append((_OPENERS[ch], i))
        elif stack and ch == stack[-1][0]:
            closer, start = stack.pop()
            if i == len(text) - 1 and closer == "]":
                return start
    return -1


def _closes_at_end(text: str, open_index: int) -> bool:
    depth = 0
    for i in range(open_index, len(text)):
        depth += text[i] == "("
        depth -= text[i] == ")"
        if depth == 0:
            return i == len(text) - 1
    return False


class Expr(BaseModel):
    """A normalized expression node."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["path", "literal", "unary", "binary", "call", "array", "index", "unknown"]
    path: str = ""
    value: Any = None
    op: str = ""
    lhs: Expr | None = None
    rhs: Expr | None = None
    func: str = ""
    args: tuple[Expr, ...] = ()
    raw: str = ""

    @model_validator(mode="before")
    @classmethod
    def _coerce_shorthand(cls, data: Any) -> Any:
        if isinstance(data, str):
            return parse_expression(data)
        if isinstance(data, (bool, int, float)):
            return {"kind": "literal", "value": data}
        return data

    # ── Path helpers ─────────────────────────────────────────────────────

    @property
    def segments(self) -> list[str]:
        """Path segments with ``ctx.accounts.`` removed and ``()`` stripped."""
        if self.kind != "path":
            return []
        path = self.path.removeprefix("ctx.accounts.")
        return [seg.removesuffix("()") for seg in path.split(".")]

    @property
    def root(self) -> str:
        segments = self.segments
        return segments[0] if segments else ""

    @property
    def is_constant(self) -> bool:
        """True for literals and constant-looking paths (``crate::ID``, ``ADMIN``)."""
        if self.kind == "literal":
            return True
        if self.kind != "path":
            return False
        if "::" in self.path:
            return True
        root = self.root
        return root.isupper() and any(ch.isalpha() for ch in root)

    def walk(self) -> Iterator[Expr]:
        yield self
        for child in (self.lhs, self.rhs):
            if child is not None:
                yield from child.walk()
        for arg in self.args:
            yield from arg.walk()

    def paths(self) -> list[Expr]:
        return [node for node in self.walk() if node.kind == "path"]

    @property
    def has_unknown(self) -> bool:
        return any(node.kind == "unknown" for node in self.walk())

    def __str__(self) -> str:
        if self.kind == "path":
            return self.path
        if self.kind == "literal":
            return str(self.value)
        if self.kind == "unary":
            return f"{self.op}{self.lhs}"
        if self.kind == "binary":
            return f"{self.lhs} {self.op} {self.rhs}"
        if self.kind == "call":
            return f"{self.func}({', '.join(str(a) for a in self.args)})"
        if self.kind == "array":
            return f"[{', '.join(str(a) for a in self.args)}]"
        if self.kind == "index":
            return f"{self.lhs}[{self.raw}]"
        return self.raw


# ── Locations ────────────────────────────────────────────────────────────────


class Span(BaseModel):
    """Byte range in a source file; ``file`` defaults to the unit's file."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0)
    end: int = Field(ge=0)
    file: str = ""

    @model_validator(mode="after")
    def _check_order(self) -> Span:
        if self.end < self.start:
            raise ValueError(f"span end {self.end} precedes start {self.start}")
        return self


# ── Handler body nodes ───────────────────────────────────────────────────────


class ArithmeticNode(BaseModel):
    """Binary arithmetic; ``wrapper`` names a method form such as ``checked_sub``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["arith"] = "arith"
    span: Span
    op: str
    lhs: Expr
    rhs: Expr
    wrapper: str | None = None


class CpiNode(BaseModel):
    """Cross-program invocation (``invoke``, ``invoke_signed``, ``CpiContext``)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["cpi"] = "cpi"
    span: Span
    program: Expr
    signed: bool = False


class AssignNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["assign"] = "assign"
    span: Span
    target: Expr
    value: Expr


class CheckNode(BaseModel):
    """A guard condition (``require!``, ``assert!``, early error return)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["check"] = "check"
    span: Span
    condition: Expr


class CallNode(BaseModel):
    """A plain call; ``type_name`` is the receiver type for ``T::func(..)`` forms."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["call"] = "call"
    span: Span
    func: str
    type_name: str = ""
    args: tuple[Expr, ...] = ()


BodyNode = Annotated[
    Union[ArithmeticNode, CpiNode, AssignNode, CheckNode, CallNode],
    Field(discriminator="kind"),
]


# ── Declarations ─────────────────────────────────────────────────────────────


_TYPE_HEAD_RE = re.compile(r"^\s*([\w:]+)\s*(?:<(.*)>)?\s*$", re.DOTALL)


class AccountParam(BaseModel):
    """One account declared by an instruction handler."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    type_tag: str = Field(validation_alias=AliasChoices("type_tag", "type"))
    mut: bool = False
    attributes: dict[str, Any] = Field(default_factory=dict)
    span: Span

    @property
    def type_kind(self) -> str:
        """Outer type name without generics, e.g. ``Account`` or ``Signer``."""
        match = _TYPE_HEAD_RE.match(self.type_tag)
        head = match.group(1) if match else self.type_tag.strip()
        return head.split("::")[-1]

    @property
    def inner_type(self) -> str | None:
        """Last non-lifetime generic argument, e.g. ``Vault`` in ``Account<'info, Vault>``."""
        match = _TYPE_HEAD_RE.match(self.type_tag)
        if not match or not match.group(2):
            return None
        generics = [g.strip() for g in match.group(2).split(",")]
        generics = [g for g in generics if g and not g.startswith("'")]
        return generics[-1].split("::")[-1] if generics else None


class InstructionArg(BaseModel):
    """Instruction data argument supplied by the caller."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    type_tag: str = Field(default="", validation_alias=AliasChoices("type_tag", "type"))


class InstructionHandler(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    span: Span
    params: tuple[AccountParam, ...] = ()
    args: tuple[InstructionArg, ...] = ()
    body: tuple[BodyNode, ...] = ()

    @model_validator(mode="after")
    def _unique_params(self) -> InstructionHandler:
        seen: set[str] = set()
        for param in self.params:
            if param.name in seen:
                raise ValueError(f"handler {self.name!r} declares account {param.name!r} twice")
            seen.add(param.name)
        return self


_PRIMITIVE_SIZES = {
    "bool": 1, "u8": 1, "i8": 1,
    "u16": 2, "i16": 2,
    "u32": 4, "i32": 4, "f32": 4,
    "u64": 8, "i64": 8, "f64": 8,
    "u128": 16, "i128": 16,
    "Pubkey": 32,
}
_ARRAY_RE = re.compile(r"^\[\s*(.+?)\s*;\s*(\d+)\s*\]$")
_OPTION_RE = re.compile(r"^Option\s*<\s*(.+)\s*>$")


def serialized_size(type_tag: str) -> int | None:
    """Borsh size of a fixed-size type, or None when it is variable or unknown."""
    type_tag = type_tag.strip()
    if type_tag in _PRIMITIVE_SIZES:
        return _PRIMITIVE_SIZES[type_tag]
    array = _ARRAY_RE.match(type_tag)
    if array:
        inner = serialized_size(array.group(1))
        return None if inner is None else inner * int(array.group(2))
    option = _OPTION_RE.match(type_tag)
    if option:
        inner = serialized_size(option.group(1))
        return None if inner is None else inner + 1
    return None


class StructField(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    type_tag: str = Field(validation_alias=AliasChoices("type_tag", "type"))


class StructDecl(BaseModel):
    """A declared account data layout."""

    model_config = ConfigDict(frozen=True)

    name: str
    fields: tuple[StructField, ...] = ()
    size: int | None = None
    discriminator: bool = False
    span: Span | None = None

    @property
    def serialized_size(self) -> int | None:
        if self.size is not None:
            return self.size
        total = 8 if self.discriminator else 0
        for f in self.fields:
            size = serialized_size(f.type_tag)
            if size is None:
                return None
            total += size
        return total


class ProgramUnit(BaseModel):
    """One compiled module: its handlers, declared structs and source text."""

    model_config = ConfigDict(frozen=True)

    name: str
    file: str
    program_id: str = ""
    source: str = ""
    sources: dict[str, str] = Field(default_factory=dict)
    handlers: tuple[InstructionHandler, ...] = ()
    structs: tuple[StructDecl, ...] = ()

    @model_validator(mode="after")
    def _unique_handlers(self) -> ProgramUnit:
        seen: set[str] = set()
        for handler in self.handlers:
            if handler.name in seen:
                raise ValueError(f"unit {self.name!r} declares handler {handler.name!r} twice")
            seen.add(handler.name)
        return self

    def source_for(self, file: str) -> str:
        if file == self.file and self.source:
            return self.source
        return self.sources.get(file, "")

    def files(self) -> set[str]:
        return {self.file, *self.sources}

    def line_of(self, file: str, offset: int) -> int | None:
        text = self.source_for(file)
        if not text:
            return None
        return text.count("\n", 0, offset) + 1
