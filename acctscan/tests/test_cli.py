"""Tests for the acctscan CLI (acctscan/cli/main.py).

Covers:
- Argument parsing (scan, detectors, config, version)
- Output formats (table, json, sarif, report)
- Exit status against --fail-on
- Usage errors
"""

from __future__ import annotations

import json

import pytest

from acctscan import __version__
from acctscan.cli.main import build_parser, main


@pytest.fixture
def clean_ir(tmp_path):
    path = tmp_path / "clean.json"
    path.write_text(json.dumps({
        "name": "clean",
        "file": "clean.rs",
        "handlers": [{
            "name": "ping",
            "span": {"start": 0, "end": 10},
            "params": [{"name": "user", "type": "Signer<'info>", "span": {"start": 1, "end": 5}}],
        }],
    }), encoding="utf-8")
    return path


class TestParser:
    def test_scan_defaults(self):
        args = build_parser().parse_args(["scan", "a.json", "b/"])
        assert args.paths == ["a.json", "b/"]
        assert args.format == "table"
        assert args.fail_on is None
        assert args.output is None

    def test_scan_options(self):
        args = build_parser().parse_args([
            "scan", "ir/", "--format", "sarif", "--fail-on", "medium", "-o", "out.sarif",
            "--max-concurrency", "2", "--enable", "SOL-001", "--enable", "SOL-005",
        ])
        assert args.format == "sarif"
        assert args.fail_on == "medium"
        assert args.max_concurrency == 2
        assert args.enable == ["SOL-001", "SOL-005"]


class TestMain:
    def test_version(self, capsys):
        assert main(["--version"]) == 0
        assert __version__ in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_scan_without_paths_is_usage_error(self):
        assert main(["scan"]) == 2

    def test_missing_path_is_usage_error(self, tmp_path):
        assert main(["-q", "scan", str(tmp_path / "missing.json")]) == 2

    def test_bad_config_is_usage_error(self, tmp_path, ir_file):
        config = tmp_path / "acctscan.yaml"
        config.write_text("maxConcurrency: 0\n", encoding="utf-8")
        assert main(["scan", str(ir_file), "--config", str(config)]) == 2

    def test_json_output_and_failing_exit(self, ir_file, capsys):
        code = main(["-q", "scan", str(ir_file), "--format", "json"])
        assert code == 1
        records = json.loads(capsys.readouterr().out)
        assert {"SOL-001", "SOL-003", "SOL-004"} <= {r["classId"] for r in records}
        assert all(set(r) == {"classId", "severity", "file", "startOffset", "endOffset", "message", "remediationId"}
                   for r in records)

    def test_fail_on_threshold(self, ir_file):
        assert main(["-q", "scan", str(ir_file), "--format", "json", "--enable", "SOL-003"]) == 0
        assert main(["-q", "scan", str(ir_file), "--format", "json", "--enable", "SOL-003",
                     "--fail-on", "medium"]) == 1

    def test_clean_unit_exits_zero(self, clean_ir, capsys):
        assert main(["scan", str(clean_ir)]) == 0
        assert "No findings" in capsys.readouterr().out

    def test_table_output(self, ir_file, capsys):
        main(["scan", str(ir_file)])
        out = capsys.readouterr().out
        assert "SOL-001" in out
        assert "CRITICAL" in out

    def test_sarif_written_to_file(self, ir_file, tmp_path):
        out = tmp_path / "results.sarif"
        main(["-q", "scan", str(ir_file), "--format", "sarif", "-o", str(out)])
        sarif = json.loads(out.read_text(encoding="utf-8"))
        assert sarif["runs"][0]["tool"]["driver"]["name"] == "acctscan"

    def test_report_format(self, ir_file, capsys):
        main(["-q", "scan", str(ir_file), "--format", "report"])
        out = capsys.readouterr().out
        assert "# Account-Model Security Scan" in out
        assert "SOL-004" in out

    def test_detectors_command(self, capsys):
        assert main(["detectors"]) == 0
        out = capsys.readouterr().out
        for i in range(1, 10):
            assert f"SOL-00{i}" in out

    def test_config_command(self, capsys):
        assert main(["config"]) == 0
        out = capsys.readouterr().out
        assert "max_concurrency" in out
        assert "fail_on" in out
