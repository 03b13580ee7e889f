"""Base detector class — all vulnerability detectors inherit from this."""

from __future__ import annotations

import abc
from typing import Any

from acctscan.analyzer.facts import FactBase
from acctscan.core.types import FindingSchema, Location, Severity
from acctscan.ir.model import ProgramUnit


class BaseDetector(abc.ABC):
    """Abstract base class for all account-model vulnerability detectors.

    Each detector implements ``detect()``, a pure function of the unit and
    its fact base. It reports structural matches only; absence of a match
    produces nothing.

    Detector metadata:
        - CLASS_ID: Stable vulnerability class identifier (e.g., "SOL-001")
        - NAME: Human-readable detector name
        - DESCRIPTION: What this detector looks for
        - SEVERITY: Default severity level
        - CATEGORY: High-level category for grouping
        - REMEDIATION_ID: Key into the remediation template table
        - CONFIDENCE: Default confidence score (0.0–1.0)
    """

    CLASS_ID: str = ""
    NAME: str = ""
    DESCRIPTION: str = ""
    SEVERITY: Severity = Severity.MEDIUM
    CATEGORY: str = ""
    REMEDIATION_ID: str = ""
    CONFIDENCE: float = 0.8

    @abc.abstractmethod
    def detect(self, unit: ProgramUnit, facts: FactBase) -> list[FindingSchema]:
        """Run the detector against one unit.

        Args:
            unit: The ProgramUnit being analyzed
            facts: Its immutable fact base; must not be modified

        Returns:
            List of findings detected. Empty if no issues found.
        """
        ...

    def _make_finding(
        self,
        title: str,
        message: str,
        location: Location,
        handler: str = "",
        severity: Severity | None = None,
        confidence: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> FindingSchema:
        """Helper to create a FindingSchema with this detector's metadata."""
        return FindingSchema(
            class_id=self.CLASS_ID,
            title=title,
            message=message,
            severity=severity or self.SEVERITY,
            location=location,
            remediation_id=self.REMEDIATION_ID,
            handler=handler,
            confidence=confidence if confidence is not None else self.CONFIDENCE,
            category=self.CATEGORY,
            metadata={
                "detector_name": self.NAME,
                **(metadata or {}),
            },
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.CLASS_ID}>"
