"""Fact extraction — turns a ProgramUnit into an immutable, queryable fact base.

The extractor walks each handler once and:

  * resolves every account attribute into a :class:`ResolvedValue`, turning
    names of sibling accounts into indices into the handler's param arena;
  * classifies body nodes into CPI sites, arithmetic sites, guard checks,
    plain calls and field assignments, each tagged with its body position;
  * records anything it cannot resolve as ``UNRESOLVED`` and emits one
    informational ``SOL-IR-001`` finding per construct instead of guessing.

Detectors only ever see the resulting :class:`FactBase`; all containers in
it are tuples, frozen dataclasses or read-only mappings.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from acctscan.core.types import FindingSchema, Location, Severity
from acctscan.ir.model import (
    AccountParam,
    ArithmeticNode,
    AssignNode,
    CallNode,
    CheckNode,
    CpiNode,
    Expr,
    InstructionHandler,
    ProgramUnit,
    Span,
)

logger = logging.getLogger(__name__)

UNRESOLVED_CLASS_ID = "SOL-IR-001"
UNRESOLVED_REMEDIATION_ID = "IR-UNRESOLVED"

BOOLEAN_KINDS = frozenset({"signer", "mut", "init", "init_if_needed", "zero", "executable"})
REFERENCE_KINDS = frozenset({"has_one", "close", "payer"})

COMPARISON_OPS = frozenset({"==", "!=", ">=", "<=", ">", "<"})
RANGE_OPS = frozenset({">=", "<=", ">", "<"})
SAFE_WRAPPER_PREFIXES = ("checked_", "saturating_")

_IDENT_RE = re.compile(r"[A-Za-z_]\w*")


# ── Resolved values ──────────────────────────────────────────────────────────


class ValueKind(str, enum.Enum):
    """Tag of a resolved attribute value."""

    ADDRESS_REF = "address_ref"
    BOOLEAN = "boolean"
    EXPRESSION = "expression"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class ResolvedValue:
    """Tagged union over the shapes an account attribute can resolve to.

    ``refs`` holds param indices for ``ADDRESS_REF`` targets and for params
    mentioned by an ``EXPRESSION``. For ``UNRESOLVED`` values ``refs`` lists
    params whose names merely appear in the unparsed text.
    """

    kind: ValueKind
    flag: bool | None = None
    refs: tuple[int, ...] = ()
    exprs: tuple[Expr, ...] = ()
    reason: str = ""

    @property
    def is_unknown(self) -> bool:
        return self.kind is ValueKind.UNRESOLVED

    @property
    def is_true(self) -> bool:
        return self.kind is ValueKind.BOOLEAN and bool(self.flag)


# ── Facts ────────────────────────────────────────────────────────────────────


class Provenance(str, enum.Enum):
    """Where an arithmetic operand's value comes from."""

    LITERAL = "literal"
    ACCOUNT_FIELD = "account_field"
    PARAMETER = "parameter"
    LOCAL = "local"


def path_key(expr: Expr) -> str:
    """Normalized dotted form of a path expression (``ctx.accounts.`` and ``()`` removed)."""
    return ".".join(expr.segments)


@dataclass(frozen=True)
class ParamFact:
    index: int
    name: str
    handler: str
    type_tag: str
    type_kind: str
    inner_type: str | None
    is_mut: bool
    is_signer: bool
    attributes: Mapping[str, ResolvedValue]
    location: Location

    def attr(self, kind: str) -> ResolvedValue | None:
        return self.attributes.get(kind)

    def has(self, kind: str) -> bool:
        return kind in self.attributes

    @property
    def unresolved_kinds(self) -> tuple[str, ...]:
        return tuple(k for k, v in self.attributes.items() if v.is_unknown)


@dataclass(frozen=True)
class CheckFact:
    """A guard condition in a handler body."""

    seq: int
    location: Location
    condition: Expr
    refs: frozenset[int]
    paths: tuple[str, ...]
    ops: frozenset[str]
    unknown: bool = False

    def references(self, *indices: int) -> bool:
        return all(i in self.refs for i in indices)


@dataclass(frozen=True)
class CallFact:
    seq: int
    location: Location
    func: str
    type_name: str
    args: tuple[Expr, ...]
    refs: frozenset[int]
    arg_roots: frozenset[str]

    @property
    def short_name(self) -> str:
        return self.func.split("::")[-1].split(".")[-1]


@dataclass(frozen=True)
class AssignFact:
    seq: int
    location: Location
    target: Expr
    value: Expr
    target_ref: int | None

    @property
    def target_path(self) -> str:
        return path_key(self.target)


@dataclass(frozen=True)
class Operand:
    expr: Expr
    provenance: Provenance
    ref: int | None = None


@dataclass(frozen=True)
class ArithmeticSite:
    handler: str
    seq: int
    location: Location
    op: str
    operands: tuple[Operand, ...]
    wrapper: str | None
    checked: bool
    guarded: bool

    @property
    def has_non_literal_operand(self) -> bool:
        return any(o.provenance is not Provenance.LITERAL for o in self.operands)


@dataclass(frozen=True)
class CpiCallSite:
    handler: str
    seq: int
    location: Location
    target: Expr
    is_constant: bool
    target_ref: int | None
    signed: bool = False


@dataclass(frozen=True)
class HandlerFacts:
    name: str
    location: Location
    params: tuple[ParamFact, ...]
    index: Mapping[str, int]
    args: Mapping[str, str]
    cpi_sites: tuple[CpiCallSite, ...] = ()
    arithmetic_sites: tuple[ArithmeticSite, ...] = ()
    checks: tuple[CheckFact, ...] = ()
    calls: tuple[CallFact, ...] = ()
    assignments: tuple[AssignFact, ...] = ()

    def param(self, key: str | int) -> ParamFact | None:
        if isinstance(key, int):
            return self.params[key] if 0 <= key < len(self.params) else None
        idx = self.index.get(key)
        return None if idx is None else self.params[idx]

    @property
    def signers(self) -> tuple[ParamFact, ...]:
        return tuple(p for p in self.params if p.is_signer)

    def constraint_values(self) -> Iterable[tuple[ParamFact, ResolvedValue]]:
        """Every ``constraint`` attribute in the handler with its owning param."""
        for param in self.params:
            value = param.attr("constraint")
            if value is not None:
                yield param, value

    def checks_before(self, seq: int) -> tuple[CheckFact, ...]:
        return tuple(c for c in self.checks if c.seq < seq)

    def calls_named(self, *names: str) -> tuple[CallFact, ...]:
        return tuple(c for c in self.calls if c.short_name in names)


@dataclass(frozen=True)
class StructFact:
    name: str
    size: int | None
    discriminator: bool
    fields: tuple[str, ...]


@dataclass(frozen=True)
class FactBase:
    """Immutable per-unit facts shared by every detector."""

    unit: str
    file: str
    handlers: tuple[HandlerFacts, ...]
    structs: Mapping[str, StructFact]
    size_groups: Mapping[int, tuple[str, ...]]
    diagnostics: tuple[FindingSchema, ...] = field(default=())

    def handler(self, name: str) -> HandlerFacts | None:
        for handler in self.handlers:
            if handler.name == name:
                return handler
        return None

    def colliding_structs(self, name: str) -> tuple[str, ...]:
        """Other declared structs with the same serialized length as ``name``."""
        struct = self.structs.get(name)
        if struct is None or struct.size is None:
            return ()
        return tuple(n for n in self.size_groups.get(struct.size, ()) if n != name)


# ── Extractor ────────────────────────────────────────────────────────────────


class FactExtractor:
    """Build a :class:`FactBase` for one ProgramUnit."""

    def __init__(self, unit: ProgramUnit) -> None:
        self.unit = unit
        self._diagnostics: list[FindingSchema] = []

    def extract(self) -> FactBase:
        handlers = tuple(self._extract_handler(h) for h in self.unit.handlers)

        structs: dict[str, StructFact] = {}
        groups: dict[int, list[str]] = {}
        for decl in self.unit.structs:
            size = decl.serialized_size
            structs[decl.name] = StructFact(
                name=decl.name,
                size=size,
                discriminator=decl.discriminator,
                fields=tuple(f.name for f in decl.fields),
            )
            if size is not None:
                groups.setdefault(size, []).append(decl.name)

        facts = FactBase(
            unit=self.unit.name,
            file=self.unit.file,
            handlers=handlers,
            structs=MappingProxyType(structs),
            size_groups=MappingProxyType(
                {size: tuple(names) for size, names in groups.items() if len(names) > 1}
            ),
            diagnostics=tuple(self._diagnostics),
        )
        logger.debug(
            "Extracted facts for %s: %d handler(s), %d diagnostic(s)",
            self.unit.name, len(handlers), len(self._diagnostics),
            extra={"unit": self.unit.name},
        )
        return facts

    # ── Locations ────────────────────────────────────────────────────────

    def _location(self, span: Span) -> Location:
        file = span.file or self.unit.file
        return Location(
            file_path=file,
            start_offset=span.start,
            end_offset=span.end,
            start_line=self.unit.line_of(file, span.start),
        )

    def _report_unresolved(self, location: Location, handler: str, what: str) -> None:
        self._diagnostics.append(FindingSchema(
            class_id=UNRESOLVED_CLASS_ID,
            title="Unresolved construct",
            message=f"{what}; treated as unknown, neither safe nor unsafe.",
            severity=Severity.INFORMATIONAL,
            location=location,
            remediation_id=UNRESOLVED_REMEDIATION_ID,
            handler=handler,
            category="analysis",
        ))

    # ── Handlers ─────────────────────────────────────────────────────────

    def _extract_handler(self, handler: InstructionHandler) -> HandlerFacts:
        index = {p.name: i for i, p in enumerate(handler.params)}
        args = {a.name: a.type_tag for a in handler.args}

        params = tuple(
            self._extract_param(handler, i, p, index) for i, p in enumerate(handler.params)
        )

        cpi_sites: list[CpiCallSite] = []
        arithmetic: list[tuple[int, ArithmeticNode]] = []
        checks: list[CheckFact] = []
        calls: list[CallFact] = []
        assignments: list[AssignFact] = []

        for seq, node in enumerate(handler.body):
            location = self._location(node.span)
            if isinstance(node, CpiNode):
                cpi_sites.append(self._cpi_site(handler.name, seq, location, node, index))
            elif isinstance(node, ArithmeticNode):
                arithmetic.append((seq, node))
            elif isinstance(node, CheckNode):
                check = self._check(seq, location, node.condition, index)
                if check.unknown:
                    self._report_unresolved(
                        location, handler.name,
                        f"{handler.name}: guard condition `{node.condition}` could not be resolved",
                    )
                checks.append(check)
            elif isinstance(node, CallNode):
                calls.append(self._call(handler.name, seq, location, node, index))
            elif isinstance(node, AssignNode):
                root = node.target.root
                assignments.append(AssignFact(
                    seq=seq,
                    location=location,
                    target=node.target,
                    value=node.value,
                    target_ref=index.get(root),
                ))

        # Range assertions can only be matched once every check is known.
        sites = tuple(
            self._arithmetic_site(handler.name, seq, node, index, args, checks)
            for seq, node in arithmetic
        )

        return HandlerFacts(
            name=handler.name,
            location=self._location(handler.span),
            params=params,
            index=MappingProxyType(index),
            args=MappingProxyType(args),
            cpi_sites=tuple(cpi_sites),
            arithmetic_sites=sites,
            checks=tuple(checks),
            calls=tuple(calls),
            assignments=tuple(assignments),
        )

    # ── Params & attributes ──────────────────────────────────────────────

    def _extract_param(
        self,
        handler: InstructionHandler,
        position: int,
        param: AccountParam,
        index: dict[str, int],
    ) -> ParamFact:
        attributes = {
            kind: self._resolve_attribute(kind, raw, index)
            for kind, raw in param.attributes.items()
        }
        location = self._location(param.span)

        unresolved = [(k, v) for k, v in attributes.items() if v.is_unknown]
        if unresolved:
            detail = ", ".join(f"`{k}` ({v.reason})" for k, v in unresolved)
            self._report_unresolved(
                location, handler.name,
                f"{handler.name}.{param.name}: attribute(s) {detail} could not be resolved",
            )

        mut_attr = attributes.get("mut")
        init_attr = attributes.get("init")
        signer_attr = attributes.get("signer")
        return ParamFact(
            index=position,
            name=param.name,
            handler=handler.name,
            type_tag=param.type_tag,
            type_kind=param.type_kind,
            inner_type=param.inner_type,
            is_mut=param.mut
            or (mut_attr is not None and mut_attr.is_true)
            or (init_attr is not None and init_attr.is_true),
            is_signer=param.type_kind == "Signer" or (signer_attr is not None and signer_attr.is_true),
            attributes=MappingProxyType(attributes),
            location=location,
        )

    def _resolve_attribute(self, kind: str, raw: Any, index: dict[str, int]) -> ResolvedValue:
        if kind in BOOLEAN_KINDS:
            if raw is None or isinstance(raw, bool):
                return ResolvedValue(ValueKind.BOOLEAN, flag=True if raw is None else raw)
            return self._unresolved(raw, index, f"expected a flag, got {type(raw).__name__}")

        if kind in REFERENCE_KINDS:
            names = raw if isinstance(raw, list) else [raw]
            if not names or not all(isinstance(n, str) for n in names):
                return self._unresolved(raw, index, "expected account name(s)")
            refs: list[int] = []
            for name in names:
                target = Expr.model_validate(name.split(" @ ", 1)[0])
                if target.kind != "path" or target.root not in index:
                    return self._unresolved(raw, index, f"parameter {name!r} not found")
                refs.append(index[target.root])
            return ResolvedValue(ValueKind.ADDRESS_REF, refs=tuple(refs))

        if raw is None or isinstance(raw, bool):
            return ResolvedValue(ValueKind.BOOLEAN, flag=True if raw is None else raw)

        items = raw if isinstance(raw, list) else [raw]
        exprs: list[Expr] = []
        for item in items:
            if isinstance(item, str) and " @ " in item:
                # custom error annotation: `a == b @ ErrorCode::Unauthorized`
                item = item.split(" @ ", 1)[0]
            try:
                expr = Expr.model_validate(item)
            except ValidationError:
                return self._unresolved(raw, index, "malformed expression")
            if expr.has_unknown:
                return self._unresolved(raw, index, f"unrecognized expression `{item}`")
            exprs.append(expr)
        refs_set: set[int] = set()
        for expr in exprs:
            refs_set.update(self._refs(expr, index))
        return ResolvedValue(ValueKind.EXPRESSION, exprs=tuple(exprs), refs=tuple(sorted(refs_set)))

    @staticmethod
    def _unresolved(raw: Any, index: dict[str, int], reason: str) -> ResolvedValue:
        mentioned = {index[w] for w in _IDENT_RE.findall(str(raw)) if w in index}
        return ResolvedValue(ValueKind.UNRESOLVED, refs=tuple(sorted(mentioned)), reason=reason)

    @staticmethod
    def _refs(expr: Expr, index: Mapping[str, int]) -> set[int]:
        return {index[p.root] for p in expr.paths() if p.root in index}

    # ── Body nodes ───────────────────────────────────────────────────────

    def _check(self, seq: int, location: Location, condition: Expr, index: dict[str, int]) -> CheckFact:
        refs = self._refs(condition, index)
        unknown = condition.has_unknown
        if unknown:
            for node in condition.walk():
                if node.kind == "unknown":
                    refs.update(index[w] for w in _IDENT_RE.findall(node.raw) if w in index)
        return CheckFact(
            seq=seq,
            location=location,
            condition=condition,
            refs=frozenset(refs),
            paths=tuple(path_key(p) for p in condition.paths()),
            ops=frozenset(n.op for n in condition.walk() if n.kind in ("binary", "unary")),
            unknown=unknown,
        )

    def _call(
        self, handler: str, seq: int, location: Location, node: CallNode, index: dict[str, int],
    ) -> CallFact:
        refs: set[int] = set()
        roots: set[str] = set()
        for arg in node.args:
            refs.update(self._refs(arg, index))
            roots.update(p.root for p in arg.paths())
        unknown = [n for a in node.args for n in a.walk() if n.kind == "unknown"]
        if unknown:
            # identifiers in unparsed text still count as references
            for n in unknown:
                words = _IDENT_RE.findall(n.raw)
                roots.update(words)
                refs.update(index[w] for w in words if w in index)
            self._report_unresolved(
                location, handler,
                f"{handler}: argument(s) of `{node.func}` could not be resolved: "
                + ", ".join(f"`{n.raw}`" for n in unknown),
            )
        return CallFact(
            seq=seq,
            location=location,
            func=node.func,
            type_name=node.type_name,
            args=node.args,
            refs=frozenset(refs),
            arg_roots=frozenset(roots),
        )

    def _cpi_site(
        self, handler: str, seq: int, location: Location, node: CpiNode, index: dict[str, int],
    ) -> CpiCallSite:
        target = node.program
        target_ref: int | None = None
        is_constant = False
        if target.kind == "path":
            if target.root in index:
                target_ref = index[target.root]
            else:
                is_constant = target.is_constant
        elif target.kind == "call":
            # spl_token::id(), system_program::ID.key()
            is_constant = "::" in target.func and target.func.lower().endswith("id") and not target.args
        elif target.kind == "literal":
            is_constant = True
        return CpiCallSite(
            handler=handler,
            seq=seq,
            location=location,
            target=target,
            is_constant=is_constant,
            target_ref=target_ref,
            signed=node.signed,
        )

    def _provenance(self, expr: Expr, index: Mapping[str, int], args: Mapping[str, str]) -> Operand:
        if expr.kind == "literal" or expr.is_constant:
            return Operand(expr, Provenance.LITERAL)
        if expr.kind == "path":
            if expr.root in index:
                return Operand(expr, Provenance.ACCOUNT_FIELD, index[expr.root])
            if expr.root in args:
                return Operand(expr, Provenance.PARAMETER)
        return Operand(expr, Provenance.LOCAL)

    def _arithmetic_site(
        self,
        handler: str,
        seq: int,
        node: ArithmeticNode,
        index: Mapping[str, int],
        args: Mapping[str, str],
        checks: list[CheckFact],
    ) -> ArithmeticSite:
        operands = (self._provenance(node.lhs, index, args), self._provenance(node.rhs, index, args))
        checked = bool(node.wrapper) and node.wrapper.startswith(SAFE_WRAPPER_PREFIXES)

        needed = {
            path_key(o.expr) for o in operands
            if o.provenance is not Provenance.LITERAL and o.expr.kind == "path"
        }
        opaque = any(
            o.provenance is not Provenance.LITERAL and o.expr.kind != "path" for o in operands
        )
        guarded = not opaque and bool(needed) and any(
            c.seq < seq and c.ops & RANGE_OPS and needed <= set(c.paths) for c in checks
        )

        return ArithmeticSite(
            handler=handler,
            seq=seq,
            location=self._location(node.span),
            op=node.op,
            operands=operands,
            wrapper=node.wrapper,
            checked=checked,
            guarded=guarded,
        )


def extract_facts(unit: ProgramUnit) -> FactBase:
    """Build the immutable fact base for ``unit``."""
    return FactExtractor(unit).extract()
