"""Access control detectors — SOL-001 and SOL-002.

Detect privileged accounts that no signer vouches for, and raw accounts
whose owning program is never verified.
"""

from __future__ import annotations

from acctscan.analyzer.base_detector import BaseDetector
from acctscan.analyzer.detectors.guards import evidence, links, possibly_guarded
from acctscan.analyzer.facts import FactBase, HandlerFacts, ParamFact, ValueKind
from acctscan.core.types import FindingSchema, Severity
from acctscan.ir.model import ProgramUnit

AUTHORITY_KEYWORDS = ("authority", "admin", "owner", "manager", "governor", "operator")
RAW_ACCOUNT_KINDS = frozenset({"AccountInfo", "UncheckedAccount"})
NON_DATA_KINDS = frozenset({"Signer", "Program", "Interface", "Sysvar"})
CREATION_KINDS = ("init", "init_if_needed", "zero")
SIGNER_SEGMENTS = frozenset({"is_signer"})


def _is_authority_name(name: str) -> bool:
    lowered = name.lower()
    return any(kw in lowered for kw in AUTHORITY_KEYWORDS)


class SignerAuthorizationDetector(BaseDetector):
    """Detect mutable authority accounts with no signer tied to them."""

    CLASS_ID = "SOL-001"
    NAME = "Missing Signer Authorization"
    DESCRIPTION = (
        "Detects mutable authority-like accounts that are not signers themselves "
        "and are not bound to a signer through has_one, a constraint, or an "
        "in-body key comparison."
    )
    SEVERITY = Severity.CRITICAL
    CATEGORY = "access_control"
    REMEDIATION_ID = "SIGNER-001"
    CONFIDENCE = 0.85

    def detect(self, unit: ProgramUnit, facts: FactBase) -> list[FindingSchema]:
        findings: list[FindingSchema] = []
        for handler in facts.handlers:
            signers = {p.index for p in handler.signers}
            for param in handler.params:
                if not self._is_candidate(param, facts):
                    continue
                if self._is_guarded(handler, param, signers):
                    continue
                if possibly_guarded(handler, param):
                    continue

                findings.append(self._make_finding(
                    title=f"Missing signer authorization on `{param.name}`",
                    message=(
                        f"Instruction `{handler.name}` accepts the mutable authority account "
                        f"`{param.name}` ({param.type_tag}) but nothing ties it to a signer. "
                        "Any caller can pass an arbitrary account in its place."
                    ),
                    location=param.location,
                    handler=handler.name,
                    metadata={"param": param.name, "signers": sorted(p.name for p in handler.signers)},
                ))
        return findings

    @staticmethod
    def _is_candidate(param: ParamFact, facts: FactBase) -> bool:
        if param.is_signer or not param.is_mut or param.type_kind in NON_DATA_KINDS:
            return False
        if any(param.has(kind) for kind in CREATION_KINDS):
            return False
        if _is_authority_name(param.name):
            return True
        struct = facts.structs.get(param.inner_type or "")
        return struct is not None and any(_is_authority_name(f) for f in struct.fields)

    @staticmethod
    def _is_guarded(handler: HandlerFacts, param: ParamFact, signers: set[int]) -> bool:
        has_one = param.attr("has_one")
        if has_one is not None and has_one.kind is ValueKind.ADDRESS_REF:
            if signers.intersection(has_one.refs):
                return True
        # require!(authority.is_signer) or `constraint = authority.is_signer`
        if any(not ev.unknown and ev.touches(param, SIGNER_SEGMENTS) for ev in evidence(handler)):
            return True
        return bool(signers) and links(handler, param.index, signers)


class OwnerProgramCheckDetector(BaseDetector):
    """Detect raw accounts whose owner program is never validated."""

    CLASS_ID = "SOL-002"
    NAME = "Missing Owner Program Check"
    DESCRIPTION = (
        "Detects AccountInfo / UncheckedAccount parameters with no owner, address "
        "or seeds constraint and no in-body check of the account's owner."
    )
    SEVERITY = Severity.HIGH
    CATEGORY = "access_control"
    REMEDIATION_ID = "OWNER-001"
    CONFIDENCE = 0.8

    VALIDATING_ATTRIBUTES = ("owner", "address", "seeds")

    def detect(self, unit: ProgramUnit, facts: FactBase) -> list[FindingSchema]:
        findings: list[FindingSchema] = []
        for handler in facts.handlers:
            exempt = self._exempt_indices(handler)
            for param in handler.params:
                if param.type_kind not in RAW_ACCOUNT_KINDS or param.is_signer:
                    continue
                if param.index in exempt:
                    continue
                if any(param.has(kind) for kind in self.VALIDATING_ATTRIBUTES):
                    continue
                if any(ev.touches(param, frozenset({"owner"})) for ev in evidence(handler)):
                    continue
                if possibly_guarded(handler, param):
                    continue

                findings.append(self._make_finding(
                    title=f"Missing owner check on `{param.name}`",
                    message=(
                        f"Account `{param.name}` in `{handler.name}` is a `{param.type_kind}` "
                        "and its owning program is never verified. An attacker can pass an "
                        "account with spoofed data owned by a different program."
                    ),
                    location=param.location,
                    handler=handler.name,
                    metadata={"param": param.name},
                ))
        return findings

    @staticmethod
    def _exempt_indices(handler: HandlerFacts) -> set[int]:
        """CPI targets and lamport destinations are validated elsewhere or hold no data."""
        exempt = {s.target_ref for s in handler.cpi_sites if s.target_ref is not None}
        for param in handler.params:
            for kind in ("close", "payer"):
                value = param.attr(kind)
                if value is not None and value.kind is ValueKind.ADDRESS_REF:
                    exempt.update(value.refs)
        return exempt
