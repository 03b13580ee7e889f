"""Program-derived address detectors — SOL-004.

A seeds-derived address is only unique when derived with the canonical
(highest valid) bump. Accepting the bump from instruction data lets a caller
pick any other valid bump and address a different account.
"""

from __future__ import annotations

from typing import Iterable

from acctscan.analyzer.base_detector import BaseDetector
from acctscan.analyzer.detectors.guards import EQUALITY_OPS
from acctscan.analyzer.facts import FactBase, HandlerFacts, ParamFact, ValueKind
from acctscan.core.types import FindingSchema, Severity
from acctscan.ir.model import Expr, ProgramUnit

RECOMPUTE_CALLS = ("find_program_address", "try_find_program_address")
RAW_DERIVE_CALLS = ("create_program_address",)


class NonCanonicalAddressDerivationDetector(BaseDetector):
    """Detect derived addresses that trust a caller-supplied bump."""

    CLASS_ID = "SOL-004"
    NAME = "Non-Canonical Bump"
    DESCRIPTION = (
        "Detects seeds + bump derivations whose bump comes from instruction data "
        "without recomputing the canonical bump or comparing against it."
    )
    SEVERITY = Severity.HIGH
    CATEGORY = "pda"
    REMEDIATION_ID = "PDA-001"
    CONFIDENCE = 0.8

    def detect(self, unit: ProgramUnit, facts: FactBase) -> list[FindingSchema]:
        findings: list[FindingSchema] = []
        for handler in facts.handlers:
            for param in handler.params:
                if not param.has("seeds"):
                    continue
                bump = param.attr("bump")
                if bump is None or bump.kind is not ValueKind.EXPRESSION:
                    continue
                supplied = sorted(
                    {p.root for e in bump.exprs for p in e.paths() if p.root in handler.args}
                )
                if not supplied or self._canonical_enforced(handler, supplied, self._seeds(param)):
                    continue

                findings.append(self._make_finding(
                    title=f"Caller-supplied bump for `{param.name}`",
                    message=(
                        f"`{param.name}` in `{handler.name}` is derived from seeds with bump "
                        f"`{supplied[0]}` taken from instruction data, and the canonical bump is "
                        "never recomputed or compared."
                    ),
                    location=param.location,
                    handler=handler.name,
                    metadata={"param": param.name, "bump_args": supplied},
                ))

            for call in handler.calls_named(*RAW_DERIVE_CALLS):
                supplied = sorted(call.arg_roots.intersection(handler.args))
                seeds = call.args[:1]
                if not supplied or self._canonical_enforced(handler, supplied, seeds, before=call.seq):
                    continue
                findings.append(self._make_finding(
                    title="Address derived with caller-supplied bump",
                    message=(
                        f"`{call.func}` in `{handler.name}` derives an address from instruction "
                        f"argument(s) {', '.join(supplied)} without canonical bump validation."
                    ),
                    location=call.location,
                    handler=handler.name,
                    metadata={"bump_args": supplied},
                ))
        return findings

    @staticmethod
    def _seeds(param: ParamFact) -> tuple[Expr, ...]:
        seeds = param.attr("seeds")
        return seeds.exprs if seeds is not None else ()

    @staticmethod
    def _canonical_enforced(
        handler: HandlerFacts,
        supplied: list[str],
        seeds: Iterable[Expr],
        before: int | None = None,
    ) -> bool:
        """True if the canonical bump is recomputed from the same seeds or compared.

        ``before`` limits both to body positions preceding a raw derivation.
        Declarative derivations (``before`` is None) accept either anywhere in
        the body.
        """
        wanted = _seed_tokens(seeds, supplied)
        for call in handler.calls_named(*RECOMPUTE_CALLS):
            if before is not None and call.seq >= before:
                continue
            if wanted & _seed_tokens(call.args[:1], supplied):
                return True
        for check in handler.checks:
            if before is not None and check.seq >= before:
                continue
            roots = {p.split(".")[0] for p in check.paths}
            if roots.intersection(supplied) and check.ops & EQUALITY_OPS and len(set(check.paths)) >= 2:
                return True
        return False


def _seed_tokens(seeds: Iterable[Expr], supplied: list[str]) -> frozenset[str]:
    """Literal seeds and account roots, ignoring the caller-supplied bump itself."""
    tokens: set[str] = set()
    for expr in seeds:
        for node in expr.walk():
            if node.kind == "literal":
                tokens.add(str(node.value))
            elif node.kind == "path" and node.root not in supplied:
                tokens.add(node.root)
    return frozenset(tokens)
