"""Tests for acctscan.ir — expression shorthand, model validation and the loader."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from acctscan.core.errors import ErrorCode, UnparseableUnitError
from acctscan.ir.loader import discover_ir_files, load_program_unit, parse_program_unit
from acctscan.ir.model import AccountParam, Expr, Span, StructDecl, serialized_size


# ── Expressions ──────────────────────────────────────────────────────────────


class TestExpr:
    def test_path(self):
        e = Expr.model_validate("ctx.accounts.vault.authority")
        assert e.kind == "path"
        assert e.segments == ["vault", "authority"]
        assert e.root == "vault"

    def test_method_calls_stay_paths(self):
        e = Expr.model_validate("authority.key().as_ref()")
        assert e.kind == "path"
        assert e.segments == ["authority", "key", "as_ref"]

    def test_comparison(self):
        e = Expr.model_validate("vault.authority == authority.key()")
        assert e.kind == "binary"
        assert e.op == "=="
        assert str(e.lhs) == "vault.authority"
        assert str(e.rhs) == "authority.key()"

    def test_logical_operators_bind_loosest(self):
        e = Expr.model_validate("a.x > 0 && b.key() != c.key()")
        assert e.op == "&&"
        assert e.lhs.op == ">"
        assert e.rhs.op == "!="

    def test_subtraction_splits_at_last_operator(self):
        e = Expr.model_validate("a - b - c")
        assert e.op == "-"
        assert str(e.rhs) == "c"
        assert e.lhs.op == "-"

    def test_unary_not(self):
        e = Expr.model_validate("!vault.is_initialized")
        assert e.kind == "unary"
        assert e.lhs.segments == ["vault", "is_initialized"]

    def test_reference_prefix_and_parens_are_stripped(self):
        assert Expr.model_validate("&mut (vault.balance)").path == "vault.balance"

    @pytest.mark.parametrize("text,value", [
        ("true", True),
        ("1_000u64", 1000),
        ("42", 42),
        ('b"vault"', 'b"vault"'),
    ])
    def test_literals(self, text, value):
        e = Expr.model_validate(text)
        assert e.kind == "literal"
        assert e.value == value
        assert e.is_constant

    def test_call_with_args(self):
        e = Expr.model_validate("Some(authority.key())")
        assert e.kind == "call"
        assert e.func == "Some"
        assert [str(a) for a in e.args] == ["authority.key()"]

    def test_unrecognized_text_is_unknown(self):
        e = Expr.model_validate("weird!!syntax((")
        assert e.kind == "unknown"
        assert e.has_unknown
        assert e.raw == "weird!!syntax(("

    @pytest.mark.parametrize("text,constant", [
        ("spl_token::ID", True),
        ("ADMIN_PUBKEY", True),
        ("token_program", False),
        ("token_program.key()", False),
    ])
    def test_is_constant(self, text, constant):
        assert Expr.model_validate(text).is_constant is constant

    def test_paths_walks_whole_tree(self):
        e = Expr.model_validate("a.x + b.y >= c")
        assert [str(p) for p in e.paths()] == ["a.x", "b.y", "c"]

    def test_seed_array(self):
        e = Expr.model_validate('&[b"vault", authority.key().as_ref(), &[bump]]')
        assert e.kind == "array"
        assert [a.kind for a in e.args] == ["literal", "path", "array"]
        assert [p.root for p in e.paths()] == ["authority", "bump"]
        assert not e.has_unknown
        assert str(e) == '[b"vault", authority.key().as_ref(), [bump]]'

    @pytest.mark.parametrize("text,bounds", [
        ("&user.data.borrow()[..]", []),
        ("data[8..]", ["8"]),
        ("data[..len]", ["len"]),
        ("accounts[0]", ["0"]),
    ])
    def test_postfix_index(self, text, bounds):
        e = Expr.model_validate(text)
        assert e.kind == "index"
        assert e.lhs.kind == "path"
        assert [str(a) for a in e.args] == bounds
        assert not e.has_unknown

    def test_sliced_borrow_keeps_account_root(self):
        e = Expr.model_validate("&user.data.borrow()[..]")
        assert e.lhs.root == "user"
        assert str(e) == "user.data.borrow()[..]"

    def test_brackets_inside_strings_are_ignored(self):
        e = Expr.model_validate('[b"]", x]')
        assert e.kind == "array"
        assert [str(a) for a in e.args] == ['b"]"', "x"]


# ── Model ────────────────────────────────────────────────────────────────────


class TestModel:
    def test_span_order(self):
        with pytest.raises(ValidationError):
            Span(start=10, end=5)

    def test_account_param_type_parts(self):
        p = AccountParam.model_validate(
            {"name": "vault", "type": "Account<'info, Vault>", "span": {"start": 0, "end": 1}}
        )
        assert p.type_kind == "Account"
        assert p.inner_type == "Vault"

    def test_qualified_type_kind(self):
        p = AccountParam.model_validate(
            {"name": "cfg", "type": "anchor_lang::prelude::AccountInfo<'info>", "span": {"start": 0, "end": 1}}
        )
        assert p.type_kind == "AccountInfo"
        assert p.inner_type is None

    def test_duplicate_params_rejected(self, make_unit):
        with pytest.raises(ValidationError):
            make_unit([{"name": "h", "params": [
                {"name": "a", "type": "Signer<'info>"},
                {"name": "a", "type": "Signer<'info>"},
            ]}])

    def test_duplicate_handlers_rejected(self, make_unit):
        with pytest.raises(ValidationError):
            make_unit([{"name": "h"}, {"name": "h"}])

    def test_body_nodes_discriminated_by_kind(self, make_unit):
        unit = make_unit([{"name": "h", "body": [
            {"kind": "arith", "op": "+", "lhs": "a", "rhs": "1"},
            {"kind": "cpi", "program": "spl_token::ID"},
            {"kind": "check", "condition": "a > 1"},
        ]}])
        assert [n.kind for n in unit.handlers[0].body] == ["arith", "cpi", "check"]

    @pytest.mark.parametrize("type_tag,size", [
        ("u64", 8),
        ("Pubkey", 32),
        ("[u8; 16]", 16),
        ("Option<u32>", 5),
        ("String", None),
        ("Vec<u8>", None),
    ])
    def test_serialized_size(self, type_tag, size):
        assert serialized_size(type_tag) == size

    def test_struct_size_counts_discriminator(self):
        decl = StructDecl.model_validate(
            {"name": "A", "discriminator": True, "fields": [{"name": "x", "type": "u64"}]}
        )
        assert decl.serialized_size == 16

    def test_explicit_struct_size_wins(self):
        assert StructDecl(name="A", size=100).serialized_size == 100

    def test_line_of(self, make_unit):
        unit = make_unit([], source="line one\nline two\n")
        assert unit.line_of(unit.file, 0) == 1
        assert unit.line_of(unit.file, 10) == 2
        assert unit.line_of("other.rs", 0) is None


# ── Loader ───────────────────────────────────────────────────────────────────


class TestLoader:
    def test_load_json_reads_source_file(self, ir_file):
        unit = load_program_unit(ir_file)
        assert unit.name == "vault"
        assert unit.source.startswith("// vault program")
        assert [h.name for h in unit.handlers] == ["withdraw"]

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "unit.yaml"
        path.write_text(
            "name: counter\n"
            "file: src/lib.rs\n"
            "handlers:\n"
            "  - name: bump\n"
            "    span: {start: 0, end: 10}\n",
            encoding="utf-8",
        )
        unit = load_program_unit(path)
        assert unit.name == "counter"
        assert unit.source == ""

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "lib.rs"
        path.write_text("fn main() {}", encoding="utf-8")
        with pytest.raises(UnparseableUnitError) as exc_info:
            load_program_unit(path)
        assert exc_info.value.code is ErrorCode.UNPARSEABLE_UNIT

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(UnparseableUnitError, match="malformed"):
            load_program_unit(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(UnparseableUnitError, match="cannot read"):
            load_program_unit(tmp_path / "missing.json")

    def test_validation_error_is_summarized(self):
        with pytest.raises(UnparseableUnitError, match="validation error"):
            parse_program_unit({"name": "x"}, origin="x.json")

    def test_non_mapping_document(self):
        with pytest.raises(UnparseableUnitError, match="mapping"):
            parse_program_unit(["not", "a", "unit"])

    def test_discover_ir_files(self, tmp_path):
        (tmp_path / "nested").mkdir()
        (tmp_path / "a.json").write_text(json.dumps({}), encoding="utf-8")
        (tmp_path / "nested" / "b.yaml").write_text("{}", encoding="utf-8")
        (tmp_path / "notes.txt").write_text("", encoding="utf-8")
        found = discover_ir_files([tmp_path])
        assert [p.name for p in found] == ["a.json", "b.yaml"]
