"""Scanner configuration.

Settings come from environment variables (``ACCTSCAN_`` prefix), an optional
``.env`` file, and an optional YAML file passed to :func:`load_settings`.
YAML keys may be written in snake_case or camelCase::

    enabledClasses: [SOL-001, SOL-005]
    severityOverrides:
      SOL-003: low
    suppressions:
      - class_id: SOL-003
        location: "programs/vault/src/lib.rs:*"
    maxConcurrency: 8
"""

from __future__ import annotations

import re
from fnmatch import fnmatchcase
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from acctscan.core.errors import ConfigError
from acctscan.core.types import FindingSchema, Severity


class Suppression(BaseModel):
    """A (class id, location pattern) pair that silences matching findings.

    Both parts are shell-style patterns; the location is matched against
    ``file:start-end`` of the finding.
    """

    model_config = ConfigDict(frozen=True)

    class_id: str
    location: str = "*"

    def matches(self, finding: FindingSchema) -> bool:
        return fnmatchcase(finding.class_id, self.class_id) and fnmatchcase(
            str(finding.location), self.location
        )


class Settings(BaseSettings):
    """Scanner settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="ACCTSCAN_",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Runtime ──────────────────────────────────────────────────────────
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # ── Detection ────────────────────────────────────────────────────────
    enabled_classes: set[str] | None = None  # None means every registered class
    severity_overrides: dict[str, Severity] = Field(default_factory=dict)
    suppressions: list[Suppression] = Field(default_factory=list)

    # ── Scheduling ───────────────────────────────────────────────────────
    max_concurrency: int = Field(default=4, ge=1)
    unit_timeout_seconds: float = Field(default=30.0, gt=0)
    scan_timeout_seconds: float | None = None

    # ── Exit status ──────────────────────────────────────────────────────
    fail_on: Severity = Severity.HIGH

    @field_validator("severity_overrides", mode="before")
    @classmethod
    def _normalize_overrides(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: Severity.parse(v) if isinstance(v, str) else v for k, v in value.items()}
        return value

    @field_validator("fail_on", mode="before")
    @classmethod
    def _normalize_fail_on(cls, value: Any) -> Any:
        return Severity.parse(value) if isinstance(value, str) else value

    def is_enabled(self, class_id: str) -> bool:
        return self.enabled_classes is None or class_id in self.enabled_classes

    def is_suppressed(self, finding: FindingSchema) -> bool:
        return any(s.matches(finding) for s in self.suppressions)

    def severity_for(self, class_id: str, default: Severity) -> Severity:
        return self.severity_overrides.get(class_id, default)


_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake_keys(data: dict[str, Any]) -> dict[str, Any]:
    return {_CAMEL_RE.sub("_", key).lower(): value for key, value in data.items()}


def load_settings(path: str | Path | None = None, **overrides: Any) -> Settings:
    """Build settings from the environment, a YAML file, and keyword overrides.

    Values in the YAML file take precedence over the environment; keyword
    overrides take precedence over both.
    """
    data: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        try:
            loaded = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"cannot read config file {config_path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigError(f"config file {config_path} must contain a mapping")
        data.update(_snake_keys(loaded))
    data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return Settings(**data)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
