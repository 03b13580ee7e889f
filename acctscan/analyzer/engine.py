"""Detector engine — runs every registered detector over one unit's fact base.

Pipeline per unit:
  1. Extract the immutable fact base (diagnostics become findings)
  2. Run each enabled detector, sequentially or on a bounded thread pool
  3. Wait for all detectors, then deduplicate on (class id, location)
  4. Apply severity overrides and suppressions
  5. Sort by (class id, location)

A detector that raises is reported as an informational finding under its own
class id; the remaining detectors still run.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor

from acctscan.analyzer.base_detector import BaseDetector
from acctscan.analyzer.facts import FactBase, extract_facts
from acctscan.analyzer.registry import DetectorRegistry, registry as global_registry
from acctscan.core.config import Settings, get_settings
from acctscan.core.types import FindingSchema, Location, Severity
from acctscan.ir.model import ProgramUnit

logger = logging.getLogger(__name__)

FAILURE_REMEDIATION_ID = "ENGINE-FAILURE"


class DetectorEngine:
    """Run detectors against ProgramUnits and reduce their findings.

    Usage::

        engine = DetectorEngine(settings=load_settings("acctscan.yaml"))
        findings = engine.run(unit)
    """

    def __init__(
        self,
        registry: DetectorRegistry | None = None,
        settings: Settings | None = None,
    ) -> None:
        if registry is None:
            global_registry.discover()
            registry = global_registry
        self._registry = registry
        self._settings = settings or get_settings()

    @property
    def registry(self) -> DetectorRegistry:
        return self._registry

    @property
    def settings(self) -> Settings:
        return self._settings

    def run(self, unit: ProgramUnit, max_workers: int | None = None) -> list[FindingSchema]:
        """Analyze one unit and return its sorted, deduplicated findings.

        ``max_workers`` caps the detector pool below ``max_concurrency``; the
        orchestrator passes it so parallel units share one thread budget.
        """
        facts = extract_facts(unit)
        return self.run_facts(unit, facts, max_workers)

    def run_facts(
        self, unit: ProgramUnit, facts: FactBase, max_workers: int | None = None,
    ) -> list[FindingSchema]:
        """Run detectors over an already extracted fact base."""
        start = time.monotonic()
        detectors = [d for d in self._registry.get_all() if self._settings.is_enabled(d.CLASS_ID)]

        per_detector = self._execute(detectors, unit, facts, max_workers)

        collected: list[FindingSchema] = list(facts.diagnostics)
        for findings in per_detector:
            collected.extend(findings)

        reduced = self._reduce(collected)
        logger.info(
            "Analyzed %s with %d detector(s): %d finding(s)",
            unit.name, len(detectors), len(reduced),
            extra={
                "unit": unit.name,
                "findings": len(reduced),
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
            },
        )
        return reduced

    # ── Execution ────────────────────────────────────────────────────────

    def _execute(
        self,
        detectors: list[BaseDetector],
        unit: ProgramUnit,
        facts: FactBase,
        max_workers: int | None = None,
    ) -> list[list[FindingSchema]]:
        """Return each detector's findings, in registration order."""
        limit = self._settings.max_concurrency
        if max_workers is not None:
            limit = min(limit, max_workers)
        workers = min(limit, len(detectors))
        if workers <= 1:
            return [self._run_one(d, unit, facts) for d in detectors]

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="detector") as pool:
            futures = [pool.submit(self._run_one, d, unit, facts) for d in detectors]
            return [f.result() for f in futures]

    def _run_one(self, detector: BaseDetector, unit: ProgramUnit, facts: FactBase) -> list[FindingSchema]:
        start = time.monotonic()
        try:
            findings = list(detector.detect(unit, facts))
            files = unit.files()
            for finding in findings:
                if finding.location.file_path not in files:
                    raise ValueError(
                        f"finding location {finding.location} is outside unit {unit.name!r}"
                    )
        except Exception as exc:
            logger.exception(
                "Detector %s failed on %s", detector.CLASS_ID, unit.name,
                extra={"unit": unit.name, "class_id": detector.CLASS_ID},
            )
            return [self._failure_finding(detector, unit, exc)]

        logger.debug(
            "Detector %s produced %d finding(s)", detector.CLASS_ID, len(findings),
            extra={
                "unit": unit.name,
                "class_id": detector.CLASS_ID,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
            },
        )
        return findings

    @staticmethod
    def _failure_finding(detector: BaseDetector, unit: ProgramUnit, exc: Exception) -> FindingSchema:
        return FindingSchema(
            class_id=detector.CLASS_ID,
            title=f"Detector {detector.NAME or detector.CLASS_ID} failed",
            message=(
                f"Detector {detector.CLASS_ID} raised {type(exc).__name__}: {exc}. "
                f"Results for this class are incomplete for unit {unit.name}."
            ),
            severity=Severity.INFORMATIONAL,
            location=Location(file_path=unit.file, start_offset=0, end_offset=0),
            remediation_id=FAILURE_REMEDIATION_ID,
            category="analysis",
            metadata={"detector_failed": True, "error_type": type(exc).__name__},
        )

    # ── Reduction ────────────────────────────────────────────────────────

    def _reduce(self, findings: list[FindingSchema]) -> list[FindingSchema]:
        seen: set[tuple[str, tuple[str, int, int]]] = set()
        unique: list[FindingSchema] = []
        for finding in findings:
            if finding.dedup_key in seen:
                continue
            seen.add(finding.dedup_key)
            unique.append(finding)

        result: list[FindingSchema] = []
        for finding in unique:
            if not finding.metadata.get("detector_failed"):
                severity = self._settings.severity_for(finding.class_id, finding.severity)
                if severity is not finding.severity:
                    finding = finding.model_copy(update={"severity": severity})
            if self._settings.is_suppressed(finding):
                logger.debug("Suppressed %s at %s", finding.class_id, finding.location)
                continue
            result.append(finding)

        result.sort(key=lambda f: f.sort_key)
        return result
