"""Scan orchestrator — coordinates IR building and analysis across units.

Scan flow per path:
1. BUILD — Load the ProgramUnit in a worker thread, bounded by the unit timeout
2. ANALYZE — Run the detector engine over the unit
3. COLLECT — Merge findings; builder failures become SOL-IR-002 findings

Units are independent and analyzed concurrently, at most ``max_concurrency``
at a time, and detector threads per unit shrink so the total stays within
``max_concurrency``. Once the scan deadline passes no further units are
started. A builder that times out cannot be interrupted: its worker thread
runs until the builder returns and the result is discarded.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any

from acctscan.analyzer.engine import DetectorEngine
from acctscan.core.config import Settings, get_settings
from acctscan.core.errors import UnitTimeoutError, UnparseableUnitError
from acctscan.core.types import FindingSchema, Location, ScanResult, Severity
from acctscan.ir.loader import IRBuilder, discover_ir_files, load_program_unit
from acctscan.ir.model import ProgramUnit

logger = logging.getLogger(__name__)

UNPARSEABLE_CLASS_ID = "SOL-IR-002"
UNPARSEABLE_REMEDIATION_ID = "IR-UNPARSEABLE"


class _UnitOutcome:
    __slots__ = ("path", "unit", "findings", "failed", "skipped")

    def __init__(self, path: str) -> None:
        self.path = path
        self.unit: ProgramUnit | None = None
        self.findings: list[FindingSchema] = []
        self.failed = False
        self.skipped = False


class ScanOrchestrator:
    """Coordinates a scan over many IR documents.

    Usage::

        orchestrator = ScanOrchestrator(settings=load_settings("acctscan.yaml"))
        result = await orchestrator.scan(["target/ir/"])
    """

    def __init__(
        self,
        engine: DetectorEngine | None = None,
        builder: IRBuilder = load_program_unit,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or (engine.settings if engine else get_settings())
        self._engine = engine or DetectorEngine(settings=self._settings)
        self._builder = builder

    async def scan(self, paths: list[str | Path]) -> ScanResult:
        """Scan files and directories of IR documents."""
        start = time.monotonic()
        files = discover_ir_files(paths)
        deadline = (
            start + self._settings.scan_timeout_seconds
            if self._settings.scan_timeout_seconds
            else None
        )
        semaphore = asyncio.Semaphore(self._settings.max_concurrency)
        # units in flight times detector workers stays within max_concurrency
        in_flight = max(1, min(self._settings.max_concurrency, len(files)))
        detector_workers = max(1, self._settings.max_concurrency // in_flight)

        logger.info("Scanning %d unit(s)", len(files))
        outcomes = await asyncio.gather(
            *(self._scan_unit(path, semaphore, deadline, detector_workers) for path in files)
        )

        result = ScanResult(scan_duration_seconds=round(time.monotonic() - start, 3))
        findings: list[FindingSchema] = []
        for outcome in outcomes:
            findings.extend(outcome.findings)
            if outcome.skipped:
                result.units_skipped.append(outcome.path)
            elif outcome.failed:
                result.units_failed.append(outcome.path)
            else:
                result.units_scanned.append(outcome.path)
            if outcome.unit is not None:
                result.units[outcome.path] = outcome.unit

        findings.sort(key=lambda f: f.sort_key)
        result.findings = findings
        result.metadata["severity_breakdown"] = result.severity_breakdown()

        if result.units_skipped:
            logger.warning(
                "Scan deadline of %.1fs reached; skipped %d unit(s)",
                self._settings.scan_timeout_seconds, len(result.units_skipped),
            )
        logger.info(
            "Scan complete: %d scanned, %d failed, %d skipped, %d finding(s)",
            len(result.units_scanned), len(result.units_failed),
            len(result.units_skipped), len(findings),
            extra={"findings": len(findings), "duration_ms": round(result.scan_duration_seconds * 1000, 2)},
        )
        return result

    def scan_sync(self, paths: list[str | Path]) -> ScanResult:
        """Blocking convenience wrapper around :meth:`scan`."""
        return asyncio.run(self.scan(paths))

    # ── Per-unit pipeline ────────────────────────────────────────────────

    async def _scan_unit(
        self,
        path: Path,
        semaphore: asyncio.Semaphore,
        deadline: float | None,
        detector_workers: int | None = None,
    ) -> _UnitOutcome:
        outcome = _UnitOutcome(str(path))
        async with semaphore:
            if deadline is not None and time.monotonic() >= deadline:
                outcome.skipped = True
                return outcome

            try:
                outcome.unit = await self._build(path)
            except UnparseableUnitError as exc:
                logger.warning("%s: %s", exc.code.value, exc, extra={"unit": str(path)})
                outcome.failed = True
                outcome.findings = self._reportable(
                    self._unparseable_finding(str(path), exc.reason, exc.to_dict())
                )
                return outcome

            unit = outcome.unit
            try:
                outcome.findings = await asyncio.to_thread(self._engine.run, unit, detector_workers)
            except Exception as exc:
                logger.exception("Analysis of %s failed", unit.name, extra={"unit": unit.name})
                outcome.failed = True
                outcome.findings = self._reportable(
                    self._unparseable_finding(
                        unit.file,
                        f"analysis failed: {type(exc).__name__}: {exc}",
                        {"error_type": type(exc).__name__},
                    )
                )
        return outcome

    async def _build(self, path: Path) -> ProgramUnit:
        timeout = self._settings.unit_timeout_seconds
        try:
            return await asyncio.wait_for(asyncio.to_thread(self._builder, path), timeout)
        except asyncio.TimeoutError as exc:
            raise UnitTimeoutError(str(path), timeout) from exc
        except UnparseableUnitError:
            raise
        except Exception as exc:
            raise UnparseableUnitError(str(path), f"{type(exc).__name__}: {exc}") from exc

    def _reportable(self, finding: FindingSchema) -> list[FindingSchema]:
        return [] if self._settings.is_suppressed(finding) else [finding]

    @staticmethod
    def _unparseable_finding(file: str, reason: str, metadata: dict[str, Any]) -> FindingSchema:
        return FindingSchema(
            class_id=UNPARSEABLE_CLASS_ID,
            title="Unparseable program unit",
            message=f"{file} was not analyzed: {reason}.",
            severity=Severity.INFORMATIONAL,
            location=Location(file_path=file, start_offset=0, end_offset=0),
            remediation_id=UNPARSEABLE_REMEDIATION_ID,
            metadata=metadata,
            category="analysis",
        )
