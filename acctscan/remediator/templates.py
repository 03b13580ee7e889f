"""Remediation templates for account-model program vulnerability classes.

Each template maps a finding's ``remediation_id`` to a structured fix
strategy with an Anchor-flavoured example of the corrected code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class FixStrategy(str, Enum):
    """How the fix should be applied."""

    ADD_CONSTRAINT = "add_constraint"
    CHANGE_TYPE = "change_type"
    INSERT_CHECK = "insert_check"
    PATTERN_REPLACE = "pattern_replace"
    RESTRUCTURE = "restructure"
    NONE = "none"


@dataclass(frozen=True)
class RemediationTemplate:
    """A single remediation template for a vulnerability class."""

    id: str
    category: str
    title: str
    description: str
    strategy: FixStrategy
    fix_template: str = ""      # Rust/Anchor snippet with {{placeholders}}
    references: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)


# ─────────────────────────────────────────────────────────────────────────────
# Built-in remediation templates
# ─────────────────────────────────────────────────────────────────────────────

TEMPLATES: list[RemediationTemplate] = [
    # ── Access control ───────────────────────────────────────────────────
    RemediationTemplate(
        id="SIGNER-001",
        category="access_control",
        title="Bind the authority to a signer",
        description=(
            "Require the authority account to sign, or tie it to a signer with "
            "has_one / constraint so a caller cannot substitute an arbitrary key."
        ),
        strategy=FixStrategy.ADD_CONSTRAINT,
        fix_template="""\
#[account(mut, has_one = {{authority}})]
pub {{account}}: Account<'info, {{Type}}>,
pub {{authority}}: Signer<'info>,
""",
        references=["CWE-862", "sealevel-attacks/0-signer-authorization"],
        tags=["signer", "authorization"],
    ),
    RemediationTemplate(
        id="OWNER-001",
        category="access_control",
        title="Verify the owning program",
        description=(
            "Use a typed Account<'info, T> (which checks the owner), or add an "
            "owner = <program> constraint, or compare account.owner in the body."
        ),
        strategy=FixStrategy.CHANGE_TYPE,
        fix_template="""\
#[account(owner = {{program}}::ID)]
/// CHECK: owner verified by constraint
pub {{account}}: UncheckedAccount<'info>,
""",
        references=["CWE-345", "sealevel-attacks/2-owner-checks"],
        tags=["owner", "account-validation"],
    ),
    # ── Arithmetic ───────────────────────────────────────────────────────
    RemediationTemplate(
        id="ARITH-001",
        category="arithmetic",
        title="Use checked arithmetic",
        description=(
            "Release builds wrap on overflow. Replace raw operators with "
            "checked_* (returning an error on overflow) or saturating_* forms, "
            "or assert the range before computing."
        ),
        strategy=FixStrategy.PATTERN_REPLACE,
        fix_template="""\
{{target}} = {{lhs}}
    .checked_{{op_name}}({{rhs}})
    .ok_or(ErrorCode::MathOverflow)?;
""",
        references=["CWE-190", "CWE-191"],
        tags=["overflow", "arithmetic"],
    ),
    # ── PDAs ─────────────────────────────────────────────────────────────
    RemediationTemplate(
        id="PDA-001",
        category="pda",
        title="Use the canonical bump",
        description=(
            "Let the framework derive the canonical bump (bump without a value) "
            "or store it at creation and compare against the stored value; "
            "never accept the bump from instruction data."
        ),
        strategy=FixStrategy.ADD_CONSTRAINT,
        fix_template="""\
#[account(seeds = [{{seeds}}], bump = {{account}}.bump)]
pub {{account}}: Account<'info, {{Type}}>,
""",
        references=["sealevel-attacks/7-bump-seed-canonicalization"],
        tags=["pda", "bump"],
    ),
    # ── CPI ──────────────────────────────────────────────────────────────
    RemediationTemplate(
        id="CPI-001",
        category="cpi",
        title="Pin the invoked program",
        description=(
            "Declare the target as Program<'info, T> or compare its key with the "
            "expected program id before invoking."
        ),
        strategy=FixStrategy.CHANGE_TYPE,
        fix_template="""\
pub {{program}}: Program<'info, Token>,
// or, for raw invoke:
require_keys_eq!({{program}}.key(), spl_token::ID, ErrorCode::InvalidProgram);
""",
        references=["CWE-829", "sealevel-attacks/5-arbitrary-cpi"],
        tags=["cpi", "program-id"],
    ),
    # ── Lifecycle ────────────────────────────────────────────────────────
    RemediationTemplate(
        id="INIT-001",
        category="lifecycle",
        title="Guard initialization",
        description=(
            "Prefer init over init_if_needed. Where re-entry is intended, check an "
            "is_initialized flag first. Constrain singleton initializers to a "
            "known authority such as the program's upgrade authority."
        ),
        strategy=FixStrategy.INSERT_CHECK,
        fix_template="""\
require!(!{{account}}.is_initialized, ErrorCode::AlreadyInitialized);
{{account}}.is_initialized = true;
""",
        references=["CWE-665", "sealevel-attacks/4-initialization"],
        tags=["initialization", "frontrunning"],
    ),
    RemediationTemplate(
        id="CLOSE-001",
        category="lifecycle",
        title="Close accounts with the close constraint",
        description=(
            "Use #[account(mut, close = destination)], which zeroes the data and "
            "writes the closed-account discriminator, instead of moving lamports "
            "by hand."
        ),
        strategy=FixStrategy.ADD_CONSTRAINT,
        fix_template="""\
#[account(mut, close = {{destination}})]
pub {{account}}: Account<'info, {{Type}}>,
""",
        references=["sealevel-attacks/9-closing-accounts"],
        tags=["close", "revival"],
    ),
    # ── Account matching ─────────────────────────────────────────────────
    RemediationTemplate(
        id="DISC-001",
        category="account_matching",
        title="Check the account discriminator",
        description=(
            "Deserialize through Account<'info, T> / try_deserialize, which verify "
            "the 8-byte discriminator, or compare it explicitly before using "
            "unchecked deserialization."
        ),
        strategy=FixStrategy.INSERT_CHECK,
        fix_template="""\
let data = {{account}}.try_borrow_data()?;
require!(data[..8] == {{Type}}::DISCRIMINATOR, ErrorCode::InvalidAccountType);
let parsed = {{Type}}::try_deserialize(&mut &data[..])?;
""",
        references=["sealevel-attacks/3-type-cosplay"],
        tags=["discriminator", "type-cosplay"],
    ),
    RemediationTemplate(
        id="DUP-001",
        category="account_matching",
        title="Require distinct mutable accounts",
        description=(
            "Add a pairwise key inequality constraint for every pair of mutable "
            "accounts of the same type."
        ),
        strategy=FixStrategy.ADD_CONSTRAINT,
        fix_template="""\
#[account(mut, constraint = {{first}}.key() != {{second}}.key())]
pub {{first}}: Account<'info, {{Type}}>,
""",
        references=["sealevel-attacks/6-duplicate-mutable-accounts"],
        tags=["duplicate", "aliasing"],
    ),
    # ── Analysis diagnostics ─────────────────────────────────────────────
    RemediationTemplate(
        id="IR-UNRESOLVED",
        category="analysis",
        title="Review unresolved construct manually",
        description=(
            "The analyzer could not resolve this attribute or guard. Detectors "
            "treat it as unknown; verify by hand what it enforces."
        ),
        strategy=FixStrategy.NONE,
        tags=["diagnostic"],
    ),
    RemediationTemplate(
        id="IR-UNPARSEABLE",
        category="analysis",
        title="Fix the IR document",
        description=(
            "The program unit could not be loaded or timed out, so none of its "
            "handlers were analyzed. Regenerate the IR or raise the unit timeout."
        ),
        strategy=FixStrategy.NONE,
        tags=["diagnostic"],
    ),
    RemediationTemplate(
        id="ENGINE-FAILURE",
        category="analysis",
        title="Detector failed",
        description=(
            "A detector raised while analyzing this unit; results for its class "
            "are incomplete. See the log for the traceback."
        ),
        strategy=FixStrategy.NONE,
        tags=["diagnostic"],
    ),
]


# ── Template Registry ────────────────────────────────────────────────────────


def get_template(template_id: str) -> RemediationTemplate | None:
    """Look up a template by ID."""
    for t in TEMPLATES:
        if t.id == template_id:
            return t
    return None


def get_templates_for_category(category: str) -> list[RemediationTemplate]:
    """Return all templates matching a vulnerability category."""
    return [t for t in TEMPLATES if t.category == category]
