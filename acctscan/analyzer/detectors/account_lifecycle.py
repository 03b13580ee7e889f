"""Account lifecycle detectors — SOL-006 and SOL-009.

Creation: accounts that can be initialized twice, or global singletons that
whoever calls first gets to configure. Destruction: accounts drained of
lamports by hand while their data stays readable.
"""

from __future__ import annotations

from acctscan.analyzer.base_detector import BaseDetector
from acctscan.analyzer.detectors.access_control import CREATION_KINDS, NON_DATA_KINDS
from acctscan.analyzer.detectors.guards import evidence, possibly_guarded
from acctscan.analyzer.facts import FactBase, HandlerFacts, ParamFact, ValueKind
from acctscan.core.types import FindingSchema, Location, Severity
from acctscan.ir.model import ProgramUnit

INIT_FLAG_SEGMENTS = frozenset({"is_initialized", "initialized", "is_init"})
UPGRADE_AUTHORITY_SEGMENT = "upgrade_authority_address"


def _checks_init_flag(handler: HandlerFacts, param: ParamFact) -> bool:
    return any(ev.touches(param, INIT_FLAG_SEGMENTS) for ev in evidence(handler))


class ReinitializationAndFrontrunDetector(BaseDetector):
    """Detect re-initialization and front-runnable global initialization."""

    CLASS_ID = "SOL-006"
    NAME = "Reinitialization / Initialization Front-Running"
    DESCRIPTION = (
        "Detects init_if_needed or hand-written initializers with no "
        "initialized-flag check, and init of literal-seeded singleton accounts "
        "with no authority constraint."
    )
    SEVERITY = Severity.MEDIUM
    CATEGORY = "lifecycle"
    REMEDIATION_ID = "INIT-001"
    CONFIDENCE = 0.7

    def detect(self, unit: ProgramUnit, facts: FactBase) -> list[FindingSchema]:
        findings: list[FindingSchema] = []
        for handler in facts.handlers:
            for param in handler.params:
                if param.has("init_if_needed"):
                    finding = self._check_init_if_needed(handler, param)
                elif param.has("init"):
                    finding = self._check_singleton(handler, param)
                else:
                    continue
                if finding is not None:
                    findings.append(finding)
            findings.extend(self._check_manual_initializer(handler))
        return findings

    def _check_init_if_needed(self, handler: HandlerFacts, param: ParamFact) -> FindingSchema | None:
        if _checks_init_flag(handler, param) or possibly_guarded(handler, param):
            return None
        return self._make_finding(
            title=f"Re-initialization via init_if_needed on `{param.name}`",
            message=(
                f"`{param.name}` in `{handler.name}` uses init_if_needed and the handler never "
                "checks an initialized flag, so a second call overwrites existing state."
            ),
            location=param.location,
            handler=handler.name,
            metadata={"param": param.name, "pattern": "init_if_needed"},
        )

    def _check_manual_initializer(self, handler: HandlerFacts) -> list[FindingSchema]:
        if "init" not in handler.name.lower():
            return []
        written: dict[int, Location] = {}
        for assign in handler.assignments:
            if assign.target_ref is None or len(assign.target.segments) < 2:
                continue
            if "lamports" in assign.target.segments:
                continue
            written.setdefault(assign.target_ref, assign.location)

        findings: list[FindingSchema] = []
        for index, location in written.items():
            param = handler.param(index)
            if not param.is_mut or param.type_kind in NON_DATA_KINDS:
                continue
            if any(param.has(kind) for kind in CREATION_KINDS):
                continue
            if _checks_init_flag(handler, param) or possibly_guarded(handler, param):
                continue
            findings.append(self._make_finding(
                title=f"Initializer rewrites existing account `{param.name}`",
                message=(
                    f"`{handler.name}` writes fields of the pre-existing account `{param.name}` "
                    "without checking whether it was already initialized."
                ),
                location=location,
                handler=handler.name,
                metadata={"param": param.name, "pattern": "manual_initializer"},
            ))
        return findings

    def _check_singleton(self, handler: HandlerFacts, param: ParamFact) -> FindingSchema | None:
        seeds = param.attr("seeds")
        if seeds is None or seeds.kind is not ValueKind.EXPRESSION or not seeds.exprs:
            return None
        leaves = (node for e in seeds.exprs for node in e.walk() if node.kind not in ("call", "array"))
        if not all(node.is_constant for node in leaves):
            return None
        if possibly_guarded(handler, param) or self._has_authority_constraint(handler):
            return None
        return self._make_finding(
            title=f"Front-runnable global initialization of `{param.name}`",
            message=(
                f"`{param.name}` in `{handler.name}` is a singleton derived from constant seeds "
                "and created with no authority constraint. The first caller to reach it after "
                "deployment controls its initial configuration."
            ),
            location=param.location,
            handler=handler.name,
            severity=Severity.CRITICAL,
            metadata={"param": param.name, "pattern": "global_singleton"},
        )

    @staticmethod
    def _has_authority_constraint(handler: HandlerFacts) -> bool:
        signers = {p.index for p in handler.signers}
        for signer in handler.signers:
            address = signer.attr("address")
            if address is not None and not address.is_unknown:
                return True
        for ev in evidence(handler):
            if ev.unknown:
                return True
            if any(UPGRADE_AUTHORITY_SEGMENT in p for p in ev.paths):
                return True
            if signers & ev.refs and ev.has_constant:
                return True
        return False


class InsecureAccountCloseDetector(BaseDetector):
    """Detect accounts closed by draining lamports by hand."""

    CLASS_ID = "SOL-009"
    NAME = "Insecure Account Close"
    DESCRIPTION = (
        "Detects handlers that drain an account's lamports without the close "
        "attribute and without clearing its data or discriminator."
    )
    SEVERITY = Severity.MEDIUM
    CATEGORY = "lifecycle"
    REMEDIATION_ID = "CLOSE-001"
    CONFIDENCE = 0.7

    DRAIN_CALLS = ("sub_lamports",)
    CLEARING_SEGMENTS = frozenset({"data", "discriminator"})
    CLEARING_CALLS = ("fill", "realloc", "assign", "close", "close_account")

    def detect(self, unit: ProgramUnit, facts: FactBase) -> list[FindingSchema]:
        findings: list[FindingSchema] = []
        for handler in facts.handlers:
            for index, location in self._drained(handler).items():
                param = handler.param(index)
                if param.is_signer or param.has("close"):
                    continue
                if self._clears_data(handler, param):
                    continue
                findings.append(self._make_finding(
                    title=f"Account `{param.name}` closed without clearing data",
                    message=(
                        f"`{handler.name}` drains the lamports of `{param.name}` by hand but "
                        "leaves its data in place. Within the same transaction the account can "
                        "be refunded and reused as if it were still live."
                    ),
                    location=location,
                    handler=handler.name,
                    metadata={"param": param.name},
                ))
        return findings

    def _drained(self, handler: HandlerFacts) -> dict[int, Location]:
        """Params whose lamports are zeroed or decreased, with the first drain site."""
        drained: list[tuple[int, int, Location]] = []
        for assign in handler.assignments:
            if assign.target_ref is None or "lamports" not in assign.target.segments:
                continue
            value = assign.value
            if (value.kind == "literal" and value.value == 0) or (value.kind == "binary" and value.op == "-"):
                drained.append((assign.seq, assign.target_ref, assign.location))
        for call in handler.calls_named(*self.DRAIN_CALLS):
            receiver = call.func.removeprefix("ctx.accounts.").split(".")[0]
            if receiver in handler.index:
                drained.append((call.seq, handler.index[receiver], call.location))

        result: dict[int, Location] = {}
        for _seq, index, location in sorted(drained, key=lambda d: d[0]):
            result.setdefault(index, location)
        return result

    def _clears_data(self, handler: HandlerFacts, param: ParamFact) -> bool:
        for assign in handler.assignments:
            if assign.target_ref == param.index and self.CLEARING_SEGMENTS.intersection(assign.target.segments):
                return True
        for call in handler.calls_named(*self.CLEARING_CALLS):
            receiver = call.func.removeprefix("ctx.accounts.").split(".")[0]
            if receiver == param.name or param.index in call.refs:
                return True
        return False
