"""Shared enums and types used across the engine."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from acctscan.ir.model import ProgramUnit


# ── Enums ────────────────────────────────────────────────────────────────────


class Severity(str, enum.Enum):
    """Vulnerability severity level."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFORMATIONAL = "informational"

    @property
    def rank(self) -> int:
        """0 for critical, increasing towards informational."""
        return _SEVERITY_ORDER.index(self)

    def at_least(self, other: "Severity") -> bool:
        """True if this severity is as severe as ``other`` or more."""
        return self.rank <= other.rank

    @classmethod
    def parse(cls, value: str | "Severity") -> "Severity":
        if isinstance(value, Severity):
            return value
        normalized = value.strip().lower()
        if normalized == "info":
            normalized = "informational"
        return cls(normalized)


_SEVERITY_ORDER = [
    Severity.CRITICAL,
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
    Severity.INFORMATIONAL,
]


# ── Shared Schemas ───────────────────────────────────────────────────────────


class Location(BaseModel):
    """Code location of a finding, as byte offsets into a source file."""

    model_config = ConfigDict(frozen=True)

    file_path: str
    start_offset: int
    end_offset: int
    start_line: int | None = None

    @property
    def key(self) -> tuple[str, int, int]:
        return (self.file_path, self.start_offset, self.end_offset)

    def __str__(self) -> str:
        return f"{self.file_path}:{self.start_offset}-{self.end_offset}"


class FindingRecord(BaseModel):
    """Flat output record handed to report and CLI layers."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    class_id: str
    severity: Severity
    file: str
    start_offset: int
    end_offset: int
    message: str
    remediation_id: str


class FindingSchema(BaseModel):
    """One structural match reported by a detector."""

    model_config = ConfigDict(frozen=True)

    class_id: str
    title: str
    message: str
    severity: Severity
    location: Location
    remediation_id: str = ""
    handler: str = ""
    confidence: float = 1.0
    category: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def sort_key(self) -> tuple[str, tuple[str, int, int]]:
        return (self.class_id, self.location.key)

    @property
    def dedup_key(self) -> tuple[str, tuple[str, int, int]]:
        return self.sort_key

    def to_record(self) -> FindingRecord:
        return FindingRecord(
            class_id=self.class_id,
            severity=self.severity,
            file=self.location.file_path,
            start_offset=self.location.start_offset,
            end_offset=self.location.end_offset,
            message=self.message,
            remediation_id=self.remediation_id,
        )


class ScanResult(BaseModel):
    """Result of scanning a set of program units."""

    findings: list[FindingSchema] = Field(default_factory=list)
    units_scanned: list[str] = Field(default_factory=list)
    units_failed: list[str] = Field(default_factory=list)
    units_skipped: list[str] = Field(default_factory=list)
    scan_duration_seconds: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)
    # Loaded units by path, for excerpting; never serialized.
    units: dict[str, ProgramUnit] = Field(default_factory=dict, exclude=True)

    def severity_breakdown(self) -> dict[str, int]:
        breakdown: dict[str, int] = {}
        for finding in self.findings:
            sev_name = finding.severity.value
            breakdown[sev_name] = breakdown.get(sev_name, 0) + 1
        return breakdown

    def reaches(self, threshold: Severity) -> bool:
        """True if any finding is at least as severe as ``threshold``."""
        return any(f.severity.at_least(threshold) for f in self.findings)
