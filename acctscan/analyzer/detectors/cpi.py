"""Cross-program invocation detectors — SOL-005."""

from __future__ import annotations

from acctscan.analyzer.base_detector import BaseDetector
from acctscan.analyzer.detectors.guards import EQUALITY_OPS, evidence
from acctscan.analyzer.facts import CpiCallSite, FactBase, HandlerFacts, path_key
from acctscan.core.types import FindingSchema, Severity
from acctscan.ir.model import ProgramUnit

PROGRAM_KINDS = frozenset({"Program", "Interface"})


class ArbitraryCpiDetector(BaseDetector):
    """Detect CPIs whose target program is not pinned."""

    CLASS_ID = "SOL-005"
    NAME = "Arbitrary Cross-Program Invocation"
    DESCRIPTION = (
        "Detects invoke / invoke_signed / CpiContext calls whose target program "
        "is neither a compile-time constant nor a Program<> account, and is not "
        "compared with a known program id first."
    )
    SEVERITY = Severity.CRITICAL
    CATEGORY = "cpi"
    REMEDIATION_ID = "CPI-001"
    CONFIDENCE = 0.8

    def detect(self, unit: ProgramUnit, facts: FactBase) -> list[FindingSchema]:
        findings: list[FindingSchema] = []
        for handler in facts.handlers:
            for site in handler.cpi_sites:
                if self._is_pinned(handler, site):
                    continue
                target = str(site.target) or "<unknown>"
                findings.append(self._make_finding(
                    title="Arbitrary cross-program invocation",
                    message=(
                        f"`{handler.name}` invokes program `{target}`, which is not provably a "
                        "known program. A caller can substitute a malicious program that "
                        "receives the forwarded accounts and signer privileges."
                    ),
                    location=site.location,
                    handler=handler.name,
                    metadata={"target": target, "signed": site.signed},
                ))
        return findings

    @staticmethod
    def _is_pinned(handler: HandlerFacts, site: CpiCallSite) -> bool:
        if site.is_constant:
            return True
        # Unknown or computed targets are treated as attacker-controlled.
        if site.target.kind != "path":
            return False

        if site.target_ref is not None:
            param = handler.param(site.target_ref)
            if param.type_kind in PROGRAM_KINDS:
                return True
            address = param.attr("address")
            if address is not None and not address.is_unknown:
                return True

        key = path_key(site.target).split(".")[0]
        for ev in evidence(handler, before=site.seq):
            if ev.unknown or not ev.ops & EQUALITY_OPS or not ev.has_constant:
                continue
            if site.target_ref is not None and site.target_ref in ev.refs:
                return True
            if any(p[0] == key for p in ev.paths):
                return True
        return False
