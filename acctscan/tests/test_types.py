"""Tests for acctscan.core.types — severities, locations and finding records."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from acctscan.core.types import FindingSchema, Location, ScanResult, Severity


class TestSeverity:
    def test_rank_orders_critical_first(self):
        ranks = [s.rank for s in Severity]
        assert ranks == sorted(ranks)
        assert Severity.CRITICAL.rank == 0

    def test_at_least(self):
        assert Severity.CRITICAL.at_least(Severity.HIGH)
        assert Severity.HIGH.at_least(Severity.HIGH)
        assert not Severity.MEDIUM.at_least(Severity.HIGH)

    @pytest.mark.parametrize("text,expected", [
        ("high", Severity.HIGH),
        ("  CRITICAL ", Severity.CRITICAL),
        ("info", Severity.INFORMATIONAL),
        ("informational", Severity.INFORMATIONAL),
    ])
    def test_parse(self, text, expected):
        assert Severity.parse(text) is expected

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValueError):
            Severity.parse("catastrophic")


class TestLocation:
    def test_str_is_file_and_offsets(self):
        loc = Location(file_path="src/lib.rs", start_offset=10, end_offset=42, start_line=3)
        assert str(loc) == "src/lib.rs:10-42"
        assert loc.key == ("src/lib.rs", 10, 42)

    def test_frozen(self):
        loc = Location(file_path="src/lib.rs", start_offset=0, end_offset=1)
        with pytest.raises(ValidationError):
            loc.start_offset = 5


class TestFindingSchema:
    def test_record_uses_camel_case_aliases(self, sample_finding: FindingSchema):
        record = sample_finding.to_record().model_dump(by_alias=True, mode="json")
        assert record == {
            "classId": "SOL-003",
            "severity": "medium",
            "file": "programs/vault/src/lib.rs",
            "startOffset": 120,
            "endOffset": 148,
            "message": "`vault.balance - amount` uses a raw operator.",
            "remediationId": "ARITH-001",
        }

    def test_sort_key_is_class_then_location(self, sample_finding: FindingSchema):
        earlier = sample_finding.model_copy(
            update={"location": Location(file_path="a.rs", start_offset=999, end_offset=999)}
        )
        other_class = sample_finding.model_copy(update={"class_id": "SOL-001"})
        ordered = sorted([sample_finding, earlier, other_class], key=lambda f: f.sort_key)
        assert ordered == [other_class, earlier, sample_finding]

    def test_dedup_key_ignores_message(self, sample_finding: FindingSchema):
        reworded = sample_finding.model_copy(update={"message": "different"})
        assert reworded.dedup_key == sample_finding.dedup_key


class TestScanResult:
    def test_severity_breakdown_and_threshold(self, sample_finding: FindingSchema):
        result = ScanResult(findings=[sample_finding])
        assert result.severity_breakdown() == {"medium": 1}
        assert result.reaches(Severity.MEDIUM)
        assert result.reaches(Severity.LOW)
        assert not result.reaches(Severity.HIGH)

    def test_empty_result_reaches_nothing(self):
        assert not ScanResult().reaches(Severity.INFORMATIONAL)
