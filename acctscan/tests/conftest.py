"""Shared fixtures for the acctscan test suite."""

from __future__ import annotations

import copy
import itertools
import json
from pathlib import Path
from typing import Any, Callable

import pytest

from acctscan.analyzer.engine import DetectorEngine
from acctscan.analyzer.registry import default_registry
from acctscan.core.config import Settings
from acctscan.core.types import FindingSchema, Location, Severity
from acctscan.ir.model import ProgramUnit

FILE = "programs/vault/src/lib.rs"

VAULT_STRUCT = {"name": "Vault", "discriminator": True, "fields": [
    {"name": "balance", "type": "u64"},
    {"name": "bump", "type": "u8"},
]}


# ── IR Builders ──────────────────────────────────────────────────────────────


def _with_spans(document: dict[str, Any]) -> dict[str, Any]:
    """Give every handler, param and body node without a span a distinct one."""
    counter = itertools.count()

    def span() -> dict[str, int]:
        n = next(counter)
        return {"start": n * 10, "end": n * 10 + 8}

    doc = copy.deepcopy(document)
    for handler in doc.get("handlers", []):
        handler.setdefault("span", span())
        for param in handler.get("params", []):
            param.setdefault("span", span())
        for node in handler.get("body", []):
            node.setdefault("span", span())
    return doc


def unit_document(handlers: list[dict], structs: list[dict] | None = None, **fields: Any) -> dict[str, Any]:
    document = {
        "name": "vault",
        "file": FILE,
        "handlers": handlers,
        "structs": [VAULT_STRUCT] if structs is None else structs,
        **fields,
    }
    return _with_spans(document)


def build_unit(handlers: list[dict], structs: list[dict] | None = None, **fields: Any) -> ProgramUnit:
    return ProgramUnit.model_validate(unit_document(handlers, structs, **fields))


def by_class(findings: list[FindingSchema], class_id: str) -> list[FindingSchema]:
    return [f for f in findings if f.class_id == class_id]


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def make_unit() -> Callable[..., ProgramUnit]:
    return build_unit


@pytest.fixture
def settings() -> Settings:
    return Settings(max_concurrency=1)


@pytest.fixture
def engine(settings: Settings) -> DetectorEngine:
    return DetectorEngine(registry=default_registry(), settings=settings)


@pytest.fixture
def sample_finding() -> FindingSchema:
    return FindingSchema(
        class_id="SOL-003",
        title="Unchecked arithmetic",
        message="`vault.balance - amount` uses a raw operator.",
        severity=Severity.MEDIUM,
        location=Location(file_path=FILE, start_offset=120, end_offset=148, start_line=7),
        remediation_id="ARITH-001",
        handler="withdraw",
        category="arithmetic",
    )


@pytest.fixture
def withdraw_handler() -> dict[str, Any]:
    """Withdraw with a missing signer, raw subtraction and a caller-supplied bump."""
    return {
        "name": "withdraw",
        "args": [{"name": "amount", "type": "u64"}, {"name": "bump", "type": "u8"}],
        "params": [
            {
                "name": "vault",
                "type": "Account<'info, Vault>",
                "mut": True,
                "attributes": {"seeds": ['b"vault"', "authority.key().as_ref()"], "bump": "bump"},
            },
            {"name": "authority", "type": "AccountInfo<'info>", "mut": True},
        ],
        "body": [
            {"kind": "arith", "op": "-", "lhs": "vault.balance", "rhs": "amount"},
        ],
    }


@pytest.fixture
def vulnerable_unit(withdraw_handler: dict[str, Any]) -> ProgramUnit:
    return build_unit([withdraw_handler])


@pytest.fixture
def ir_file(tmp_path: Path, withdraw_handler: dict[str, Any]) -> Path:
    """The vulnerable unit written to disk as a JSON IR document, with its source."""
    source = tmp_path / "lib.rs"
    source.write_text("// vault program\n" + "x" * 400 + "\n", encoding="utf-8")
    document = unit_document([withdraw_handler], file="lib.rs")
    path = tmp_path / "vault.json"
    path.write_text(json.dumps(document), encoding="utf-8")
    return path
