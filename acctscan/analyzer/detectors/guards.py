"""Guard queries shared by detectors.

A "guard" is positive evidence that a handler constrains an account:
declarative constraints on any account in the handler, or guard checks in
its body. Both are normalized here to ``Evidence`` records so detectors ask
one question regardless of where the guard was written.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from acctscan.analyzer.facts import HandlerFacts, ParamFact, path_key
from acctscan.ir.model import Expr

EQUALITY_OPS = frozenset({"==", "!="})


@dataclass(frozen=True)
class Evidence:
    """One constraint or check, flattened."""

    seq: int  # -1 for declarative constraints, which hold before the body runs
    refs: frozenset[int]
    exprs: tuple[Expr, ...]
    unknown: bool

    @property
    def ops(self) -> frozenset[str]:
        return frozenset(
            node.op for expr in self.exprs for node in expr.walk() if node.kind in ("binary", "unary")
        )

    @property
    def paths(self) -> tuple[tuple[str, ...], ...]:
        return tuple(tuple(path_key(p).split(".")) for e in self.exprs for p in e.paths())

    @property
    def has_constant(self) -> bool:
        return any(node.is_constant for e in self.exprs for node in e.walk())

    def touches(self, param: ParamFact, segments: frozenset[str]) -> bool:
        """True if some path rooted at ``param`` contains one of ``segments``."""
        return any(p[0] == param.name and segments.intersection(p[1:]) for p in self.paths)


def evidence(handler: HandlerFacts, before: int | None = None) -> Iterator[Evidence]:
    """Yield constraints, then body checks preceding body position ``before``."""
    for _param, value in handler.constraint_values():
        yield Evidence(
            seq=-1,
            refs=frozenset(value.refs),
            exprs=value.exprs,
            unknown=value.is_unknown,
        )
    for check in handler.checks:
        if before is not None and check.seq >= before:
            continue
        yield Evidence(
            seq=check.seq,
            refs=check.refs,
            exprs=(check.condition,),
            unknown=check.unknown,
        )


def links(handler: HandlerFacts, index: int, others: set[int], ops: frozenset[str] = EQUALITY_OPS) -> bool:
    """True if a resolved guard relates param ``index`` to any of ``others`` via ``ops``."""
    for ev in evidence(handler):
        if ev.unknown or index not in ev.refs:
            continue
        if ev.refs & (others - {index}) and ev.ops & ops:
            return True
    return False


def possibly_guarded(handler: HandlerFacts, param: ParamFact) -> bool:
    """True if an unresolved attribute or check in the handler mentions ``param``.

    Detectors that must not fire on guards written in an unrecognized form
    treat this as "maybe guarded".
    """
    if param.unresolved_kinds:
        return True
    for other in handler.params:
        for value in other.attributes.values():
            if value.is_unknown and param.index in value.refs:
                return True
    return any(c.unknown and param.index in c.refs for c in handler.checks)
