"""acctscan CLI — local structural scanner for account-model programs.

Usage:
    acctscan scan PATH...           Scan IR documents (files or directories)
    acctscan detectors              List registered detectors
    acctscan config                 Show effective configuration
    acctscan --version              Print version

Examples:
    acctscan scan target/ir/
    acctscan scan target/ir/vault.json --fail-on medium --format sarif -o results.sarif
    acctscan scan target/ir/ --config acctscan.yaml --format report -o AUDIT.md
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from acctscan import __version__
from acctscan.core.config import Settings, load_settings
from acctscan.core.errors import ConfigError
from acctscan.core.logging import setup_logging
from acctscan.core.types import FindingSchema, ScanResult, Severity


# ── Coloured output helpers ──────────────────────────────────────────────────

_RESET = "\033[0m"
_BOLD = "\033[1m"
_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"

_SEV_COLOR = {
    "critical": _RED,
    "high": "\033[38;5;208m",  # orange
    "medium": _YELLOW,
    "low": _CYAN,
    "informational": _DIM,
}

_SEVERITY_CHOICES = ["critical", "high", "medium", "low", "info", "informational"]


def _c(text: str, code: str) -> str:
    return f"{code}{text}{_RESET}"


# ── CLI argument parser ─────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acctscan",
        description="acctscan — structural vulnerability scanner for account-model programs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--quiet", "-q", action="store_true", help="Minimal output")
    parser.add_argument("--config", "-c", help="YAML configuration file")

    sub = parser.add_subparsers(dest="command")

    # ── scan ─────────────────────────────────────────────────────────────────
    scan_p = sub.add_parser("scan", help="Scan IR documents")
    scan_p.add_argument("paths", nargs="+", help="IR files (.json/.yaml) or directories")
    scan_p.add_argument("--config", "-c", dest="scan_config", help="YAML configuration file")
    scan_p.add_argument(
        "--format",
        "-f",
        default="table",
        choices=["table", "json", "sarif", "report"],
        help="Output format (default: table)",
    )
    scan_p.add_argument(
        "--fail-on",
        choices=_SEVERITY_CHOICES,
        help="Exit non-zero when a finding is at least this severe (default: from config, high)",
    )
    scan_p.add_argument("--max-concurrency", type=int, help="Units and detectors analyzed in parallel")
    scan_p.add_argument("--enable", action="append", metavar="CLASS_ID", help="Only run these classes")
    scan_p.add_argument("--output", "-o", help="Write output to file instead of stdout")

    # ── detectors ────────────────────────────────────────────────────────────
    sub.add_parser("detectors", help="List registered detectors")

    # ── config ───────────────────────────────────────────────────────────────
    sub.add_parser("config", help="Show effective configuration")

    return parser


# ── Scan command ─────────────────────────────────────────────────────────────


def _print_table(result: ScanResult, quiet: bool = False) -> None:
    """Pretty-print findings as a coloured table."""
    findings: list[FindingSchema] = sorted(
        result.findings, key=lambda f: (f.severity.rank, f.sort_key)
    )
    if not quiet:
        print(f"\n{_BOLD}Scan complete{_RESET}")
        print(
            f"  Units: {len(result.units_scanned)} scanned"
            f"  |  {len(result.units_failed)} failed"
            f"  |  {len(result.units_skipped)} skipped"
            f"  |  Duration: {result.scan_duration_seconds:.1f}s\n"
        )

    if not findings:
        print(_c("  ✓ No findings.", _GREEN))
        return

    by_sev = result.severity_breakdown()
    summary_parts = []
    for sev in Severity:
        count = by_sev.get(sev.value, 0)
        if count > 0:
            summary_parts.append(f"{_SEV_COLOR.get(sev.value, '')}{count} {sev.value.upper()}{_RESET}")
    print(f"  {' · '.join(summary_parts)}\n")

    for i, f in enumerate(findings, 1):
        sev_col = _SEV_COLOR.get(f.severity.value, "")
        badge = _c(f" {f.severity.value.upper()} ", sev_col + _BOLD)
        title = _c(f"[{f.class_id}] {f.title}", _BOLD)
        line = f.location.start_line if f.location.start_line is not None else f.location.start_offset
        loc = _c(f"  {f.location.file_path}:{line}", _DIM)

        print(f"  {_DIM}{i:>3}.{_RESET} {badge} {title}{loc}")

        if not quiet:
            msg = f.message[:200]
            if len(f.message) > 200:
                msg += "…"
            print(f"       {_DIM}{msg}{_RESET}")
            if f.remediation_id:
                print(f"       {_DIM}Fix: {f.remediation_id}{_RESET}")

        print()


def _scan_settings(args: argparse.Namespace) -> Settings:
    overrides = {
        "max_concurrency": args.max_concurrency,
        "fail_on": args.fail_on,
        "enabled_classes": set(args.enable) if args.enable else None,
    }
    return load_settings(args.scan_config or args.config, **overrides)


async def _run_scan(args: argparse.Namespace, settings: Settings) -> int:
    """Execute a scan and print results."""
    from acctscan.analyzer.engine import DetectorEngine
    from acctscan.analyzer.registry import default_registry
    from acctscan.pipeline.orchestrator import ScanOrchestrator
    from acctscan.reports.assembler import ReportAssembler

    missing = [p for p in args.paths if not Path(p).exists()]
    if missing:
        print(_c(f"Error: path '{missing[0]}' does not exist.", _RED), file=sys.stderr)
        return 2

    registry = default_registry()
    engine = DetectorEngine(registry=registry, settings=settings)
    orchestrator = ScanOrchestrator(engine=engine, settings=settings)

    if not args.quiet:
        print(f"  Scanning {_c(', '.join(args.paths), _CYAN)}…", file=sys.stderr)
    result = await orchestrator.scan(args.paths)

    fmt = args.format
    reporter = ReportAssembler(registry)

    if fmt == "table":
        _print_table(result, quiet=args.quiet)
        output = None
    elif fmt == "json":
        output = reporter.to_json(result.findings)
    elif fmt == "sarif":
        output = reporter.to_sarif(result.findings)
    else:
        output = reporter.to_markdown(result, result.units.values())

    if output:
        if args.output:
            Path(args.output).write_text(output, encoding="utf-8")
            if not args.quiet:
                print(f"  Written to {_c(args.output, _CYAN)}", file=sys.stderr)
        else:
            print(output)

    return 1 if result.reaches(settings.fail_on) else 0


# ── Detectors command ────────────────────────────────────────────────────────


def _run_detectors() -> int:
    """List every registered detector."""
    from acctscan.analyzer.registry import default_registry

    registry = default_registry()
    print(f"\n{_BOLD}Registered detectors ({len(registry)}){_RESET}\n")
    for detector in registry:
        sev = detector.SEVERITY.value
        print(
            f"  {_c(detector.CLASS_ID, _BOLD)}  "
            f"{_c(sev.upper(), _SEV_COLOR.get(sev, ''))}  {detector.NAME}"
        )
        print(f"       {_DIM}{detector.DESCRIPTION}{_RESET}")
    print()
    return 0


# ── Config command ───────────────────────────────────────────────────────────


def _run_config(settings: Settings) -> int:
    """Print effective settings."""
    print(f"\n{_BOLD}acctscan Configuration{_RESET}\n")
    for field_name in sorted(type(settings).model_fields.keys()):
        val = getattr(settings, field_name, "")
        if isinstance(val, Severity):
            val = val.value
        print(f"  {_DIM}{field_name}:{_RESET}  {val}")
    print()
    return 0


# ── Entrypoint ───────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else 2

    if args.version:
        print(f"acctscan {__version__}")
        return 0

    if not args.command:
        parser.print_help()
        return 0

    try:
        if args.command == "scan":
            settings = _scan_settings(args)
        else:
            settings = load_settings(args.config)
    except ConfigError as exc:
        print(_c(f"Error: {exc}", _RED), file=sys.stderr)
        return 2

    setup_logging(settings.app_env, "WARNING" if args.quiet else settings.log_level)

    if args.command == "config":
        return _run_config(settings)

    if args.command == "detectors":
        return _run_detectors()

    if args.command == "scan":
        return asyncio.run(_run_scan(args, settings))

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
