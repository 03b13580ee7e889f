"""Arithmetic detectors — SOL-003.

Detect raw integer operators on caller-influenced values. Release builds of
on-chain programs wrap silently on overflow, so a bare ``-`` on a balance is
an underflow waiting to happen.
"""

from __future__ import annotations

from acctscan.analyzer.base_detector import BaseDetector
from acctscan.analyzer.facts import FactBase, Provenance
from acctscan.core.types import FindingSchema, Severity
from acctscan.ir.model import ProgramUnit


class UncheckedArithmeticDetector(BaseDetector):
    """Detect overflow-prone arithmetic without checked/saturating forms."""

    CLASS_ID = "SOL-003"
    NAME = "Unchecked Arithmetic"
    DESCRIPTION = (
        "Detects +, -, *, ** and << on non-literal operands that are neither "
        "wrapped in checked_/saturating_ methods nor preceded by a range assertion."
    )
    SEVERITY = Severity.MEDIUM
    CATEGORY = "arithmetic"
    REMEDIATION_ID = "ARITH-001"
    CONFIDENCE = 0.75

    # Division and remainder cannot overflow unsigned values.
    OVERFLOWING_OPS = frozenset({"+", "-", "*", "**", "<<"})

    def detect(self, unit: ProgramUnit, facts: FactBase) -> list[FindingSchema]:
        findings: list[FindingSchema] = []
        for handler in facts.handlers:
            for site in handler.arithmetic_sites:
                if site.op not in self.OVERFLOWING_OPS:
                    continue
                # checked_*, saturating_* and explicit wrapping_* forms are all deliberate
                if site.wrapper or site.checked:
                    continue
                if not site.has_non_literal_operand or site.guarded:
                    continue

                lhs, rhs = (str(o.expr) for o in site.operands)
                provenance = sorted(
                    {o.provenance.value for o in site.operands if o.provenance is not Provenance.LITERAL}
                )
                findings.append(self._make_finding(
                    title="Unchecked arithmetic",
                    message=(
                        f"`{lhs} {site.op} {rhs}` in `{handler.name}` uses a raw operator on "
                        f"{'/'.join(provenance)} values with no overflow check or prior range "
                        "assertion."
                    ),
                    location=site.location,
                    handler=handler.name,
                    metadata={"op": site.op, "operands": [lhs, rhs]},
                ))
        return findings
