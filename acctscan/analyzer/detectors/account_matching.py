"""Account matching detectors — SOL-007 and SOL-008.

Both classes are about the runtime accepting an account that is not the one
the handler thinks it is: a struct of another type with the same byte
length, or the same account passed twice under two names.
"""

from __future__ import annotations

import itertools

from acctscan.analyzer.base_detector import BaseDetector
from acctscan.analyzer.detectors.access_control import CREATION_KINDS
from acctscan.analyzer.detectors.guards import evidence, possibly_guarded
from acctscan.analyzer.facts import CallFact, FactBase, HandlerFacts, ParamFact
from acctscan.core.types import FindingSchema, Severity
from acctscan.ir.model import ProgramUnit

DESERIALIZE_FUNCS = (
    "try_from_slice",
    "try_from_slice_unchecked",
    "deserialize",
    "try_deserialize_unchecked",
    "from_bytes",
    "unpack",
    "unpack_unchecked",
    "load_unchecked",
)
DISCRIMINATOR_SEGMENTS = frozenset({"discriminator", "account_type", "kind", "tag"})
DISCRIMINATOR_CALLS = ("verify_discriminator", "check_discriminator")
UNGROUPED_KINDS = frozenset({"Signer", "Program", "Sysvar", "Interface"})


class TypeDiscriminatorConfusionDetector(BaseDetector):
    """Detect raw deserialization that a same-sized struct could satisfy."""

    CLASS_ID = "SOL-007"
    NAME = "Type Cosplay / Discriminator Confusion"
    DESCRIPTION = (
        "Detects generic byte-to-struct deserialization of an account with no "
        "preceding discriminator check, when the target struct has the same "
        "serialized length as another declared struct."
    )
    SEVERITY = Severity.HIGH
    CATEGORY = "account_matching"
    REMEDIATION_ID = "DISC-001"
    CONFIDENCE = 0.6

    def detect(self, unit: ProgramUnit, facts: FactBase) -> list[FindingSchema]:
        findings: list[FindingSchema] = []
        for handler in facts.handlers:
            for call in handler.calls_named(*DESERIALIZE_FUNCS):
                if not call.refs:
                    continue
                struct = self._target_struct(call)
                collisions = facts.colliding_structs(struct)
                if not collisions:
                    continue
                if self._discriminator_checked(handler, call):
                    continue
                if any(possibly_guarded(handler, handler.param(i)) for i in call.refs):
                    continue

                accounts = sorted(handler.param(i).name for i in call.refs)
                findings.append(self._make_finding(
                    title=f"Unchecked deserialization into `{struct}`",
                    message=(
                        f"`{handler.name}` deserializes `{', '.join(accounts)}` into `{struct}` "
                        f"without checking a discriminator, and {', '.join(collisions)} "
                        f"serialize{'s' if len(collisions) == 1 else ''} to the same length. "
                        "An account of the other type would be accepted."
                    ),
                    location=call.location,
                    handler=handler.name,
                    metadata={"struct": struct, "collides_with": list(collisions), "accounts": accounts},
                ))
        return findings

    @staticmethod
    def _target_struct(call: CallFact) -> str:
        name = call.type_name
        if not name and "::" in call.func:
            name = call.func.split("::")[-2]
        return name.split("<")[0].split("::")[-1].strip()

    @staticmethod
    def _discriminator_checked(handler: HandlerFacts, call: CallFact) -> bool:
        for check in handler.checks_before(call.seq):
            for path in check.paths:
                segments = {s.split("::")[-1].lower() for s in path.split(".")}
                if DISCRIMINATOR_SEGMENTS & segments:
                    return True
        return any(c.seq < call.seq for c in handler.calls_named(*DISCRIMINATOR_CALLS))


class DuplicateMutableAccountsDetector(BaseDetector):
    """Detect same-typed mutable accounts that may alias each other."""

    CLASS_ID = "SOL-008"
    NAME = "Duplicate Mutable Accounts"
    DESCRIPTION = (
        "Detects two or more mutable accounts of the same declared type in one "
        "handler where some pair is never constrained to differ."
    )
    SEVERITY = Severity.MEDIUM
    CATEGORY = "account_matching"
    REMEDIATION_ID = "DUP-001"
    CONFIDENCE = 0.75

    def detect(self, unit: ProgramUnit, facts: FactBase) -> list[FindingSchema]:
        findings: list[FindingSchema] = []
        for handler in facts.handlers:
            for group in self._groups(handler):
                uncovered = [
                    (a, b) for a, b in itertools.combinations(group, 2)
                    if not self._distinct(handler, a, b)
                ]
                if not uncovered:
                    continue
                names = [p.name for p in group]
                findings.append(self._make_finding(
                    title=f"Duplicate mutable accounts: {', '.join(names)}",
                    message=(
                        f"`{handler.name}` takes {len(group)} mutable `{group[0].type_tag}` accounts "
                        f"({', '.join(names)}) but never requires "
                        + ", ".join(f"`{a.name} != {b.name}`" for a, b in uncovered)
                        + ". Passing the same account twice lets one write clobber the other."
                    ),
                    location=group[0].location,
                    handler=handler.name,
                    metadata={"params": names, "uncovered_pairs": [[a.name, b.name] for a, b in uncovered]},
                ))
        return findings

    @staticmethod
    def _groups(handler: HandlerFacts) -> list[list[ParamFact]]:
        groups: dict[tuple[str, str | None], list[ParamFact]] = {}
        for param in handler.params:
            if not param.is_mut or param.is_signer or param.type_kind in UNGROUPED_KINDS:
                continue
            if any(param.has(kind) for kind in CREATION_KINDS):
                continue
            groups.setdefault((param.type_kind, param.inner_type), []).append(param)
        return [g for g in groups.values() if len(g) > 1]

    @staticmethod
    def _distinct(handler: HandlerFacts, a: ParamFact, b: ParamFact) -> bool:
        if possibly_guarded(handler, a) or possibly_guarded(handler, b):
            return True
        for ev in evidence(handler):
            if ev.unknown or "!=" not in ev.ops:
                continue
            if a.index in ev.refs and b.index in ev.refs:
                return True
        return False
