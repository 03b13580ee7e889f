"""Report assembler — groups findings per class and renders output formats.

Consumes the sorted, deduplicated finding list and the program units it came
from. Performs no detection logic: names come from the detector registry,
fix guidance from the static remediation table.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field

from acctscan import __version__
from acctscan.analyzer.registry import DetectorRegistry
from acctscan.core.types import FindingSchema, ScanResult, Severity
from acctscan.ir.model import ProgramUnit
from acctscan.remediator.templates import get_template

ENGINE_CLASS_NAMES = {
    "SOL-IR-001": "Unresolved Construct",
    "SOL-IR-002": "Unparseable Program Unit",
}

EXCERPT_LIMIT = 400


class AffectedLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    file: str
    start_offset: int
    end_offset: int
    start_line: int | None = None
    handler: str = ""


class ClassReport(BaseModel):
    """Everything the audit report says about one vulnerability class."""

    class_id: str
    name: str
    severity: Severity
    affected: list[AffectedLocation] = Field(default_factory=list)
    excerpts: dict[str, str] = Field(default_factory=dict)
    messages: list[str] = Field(default_factory=list)
    remediation_id: str = ""
    remediation_title: str = ""
    remediation: str = ""
    fix_template: str = ""


class ReportAssembler:
    """Turn findings into per-class reports, JSON records or SARIF."""

    def __init__(self, registry: DetectorRegistry | None = None) -> None:
        self._registry = registry

    def class_name(self, class_id: str) -> str:
        if class_id in ENGINE_CLASS_NAMES:
            return ENGINE_CLASS_NAMES[class_id]
        detector = self._registry.get_by_id(class_id) if self._registry else None
        return detector.NAME if detector and detector.NAME else class_id

    # ── Per-class reports ────────────────────────────────────────────────

    def assemble(
        self,
        findings: list[FindingSchema],
        units: Mapping[str, ProgramUnit] | Iterable[ProgramUnit] = (),
    ) -> list[ClassReport]:
        """Build one ClassReport per class id present, in class id order."""
        if isinstance(units, Mapping):
            units = units.values()
        by_file: dict[str, ProgramUnit] = {}
        for unit in units:
            for file in unit.files():
                by_file.setdefault(file, unit)

        reports: dict[str, ClassReport] = {}
        for finding in sorted(findings, key=lambda f: f.sort_key):
            report = reports.get(finding.class_id)
            if report is None:
                template = get_template(finding.remediation_id)
                report = ClassReport(
                    class_id=finding.class_id,
                    name=self.class_name(finding.class_id),
                    severity=finding.severity,
                    remediation_id=finding.remediation_id,
                    remediation_title=template.title if template else "",
                    remediation=template.description if template else "",
                    fix_template=template.fix_template if template else "",
                )
                reports[finding.class_id] = report
            elif finding.severity.rank < report.severity.rank:
                report.severity = finding.severity

            loc = finding.location
            report.affected.append(AffectedLocation(
                file=loc.file_path,
                start_offset=loc.start_offset,
                end_offset=loc.end_offset,
                start_line=loc.start_line,
                handler=finding.handler,
            ))
            report.messages.append(finding.message)

            unit = by_file.get(loc.file_path)
            if unit is not None:
                text = unit.source_for(loc.file_path)[loc.start_offset:loc.end_offset]
                if text:
                    report.excerpts[f"{loc.start_offset}-{loc.end_offset}"] = text[:EXCERPT_LIMIT]

        return list(reports.values())

    # ── Machine-readable formats ─────────────────────────────────────────

    @staticmethod
    def to_records(findings: list[FindingSchema]) -> list[dict]:
        return [f.to_record().model_dump(mode="json", by_alias=True) for f in findings]

    def to_json(self, findings: list[FindingSchema]) -> str:
        """The ordered ``{classId, severity, file, ...}`` record list."""
        return json.dumps(self.to_records(findings), indent=2)

    def to_sarif(self, findings: list[FindingSchema]) -> str:
        """Generate SARIF 2.1.0 for code-scanning integrations."""
        rules: dict[str, dict] = {}
        results = []

        for f in findings:
            if f.class_id not in rules:
                template = get_template(f.remediation_id)
                tags = ["security", f.category] if f.category else ["security"]
                properties: dict = {"security-severity": str(self._severity_to_score(f.severity))}
                if template:
                    tags += [t for t in template.tags if t not in tags]
                    properties["references"] = list(template.references)
                    properties["fixStrategy"] = template.strategy.value
                properties["tags"] = tags
                rules[f.class_id] = {
                    "id": f.class_id,
                    "name": self.class_name(f.class_id).replace(" ", ""),
                    "shortDescription": {"text": self.class_name(f.class_id)},
                    "fullDescription": {"text": template.description if template else f.title},
                    "defaultConfiguration": {"level": self._severity_to_sarif_level(f.severity)},
                    "properties": properties,
                }

            region: dict[str, int] = {
                "charOffset": f.location.start_offset,
                "charLength": f.location.end_offset - f.location.start_offset,
            }
            if f.location.start_line is not None:
                region["startLine"] = f.location.start_line
            results.append({
                "ruleId": f.class_id,
                "message": {"text": f.message},
                "level": self._severity_to_sarif_level(f.severity),
                "locations": [
                    {
                        "physicalLocation": {
                            "artifactLocation": {"uri": f.location.file_path},
                            "region": region,
                        }
                    }
                ],
                "properties": {"remediationId": f.remediation_id, "handler": f.handler},
            })

        sarif = {
            "$schema": "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/Schemata/sarif-schema-2.1.0.json",
            "version": "2.1.0",
            "runs": [
                {
                    "tool": {
                        "driver": {
                            "name": "acctscan",
                            "version": __version__,
                            "rules": list(rules.values()),
                        }
                    },
                    "results": results,
                }
            ],
        }
        return json.dumps(sarif, indent=2)

    # ── Human-readable report ────────────────────────────────────────────

    def to_markdown(self, result: ScanResult, units: Iterable[ProgramUnit] = ()) -> str:
        """Render an audit-style Markdown report for a whole scan."""
        reports = self.assemble(result.findings, units)
        breakdown = result.severity_breakdown()
        lines = [
            "# Account-Model Security Scan",
            "",
            f"Generated {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')} "
            f"by acctscan {__version__}.",
            "",
            f"- Units scanned: {len(result.units_scanned)}",
            f"- Units failed: {len(result.units_failed)}",
            f"- Units skipped: {len(result.units_skipped)}",
            f"- Findings: {len(result.findings)} "
            + "(" + ", ".join(f"{s.value}: {breakdown.get(s.value, 0)}" for s in Severity) + ")",
            "",
        ]
        for report in sorted(reports, key=lambda r: (r.severity.rank, r.class_id)):
            lines += [
                f"## {report.class_id} {report.name} [{report.severity.value.upper()}]",
                "",
            ]
            for affected, message in zip(report.affected, report.messages):
                where = f"{affected.file}:{affected.start_line or affected.start_offset}"
                lines.append(f"- `{where}` {message}")
                excerpt = report.excerpts.get(f"{affected.start_offset}-{affected.end_offset}")
                if excerpt:
                    lines += ["", "  ```rust", *("  " + ln for ln in excerpt.splitlines()), "  ```"]
            if report.remediation:
                lines += ["", f"**Remediation ({report.remediation_id}): {report.remediation_title}**", "",
                          report.remediation]
                if report.fix_template:
                    lines += ["", "```rust", report.fix_template.rstrip(), "```"]
            lines.append("")
        return "\n".join(lines)

    @staticmethod
    def _severity_to_sarif_level(severity: Severity) -> str:
        return {
            Severity.CRITICAL: "error",
            Severity.HIGH: "error",
            Severity.MEDIUM: "warning",
            Severity.LOW: "note",
            Severity.INFORMATIONAL: "note",
        }.get(severity, "note")

    @staticmethod
    def _severity_to_score(severity: Severity) -> float:
        return {
            Severity.CRITICAL: 9.5,
            Severity.HIGH: 7.5,
            Severity.MEDIUM: 5.5,
            Severity.LOW: 3.5,
            Severity.INFORMATIONAL: 1.0,
        }.get(severity, 1.0)
