"""Error types raised across the analysis pipeline.

Every error carries an ``ErrorCode`` so the orchestrator and CLI can turn
failures into findings or exit statuses without string matching:

    try:
        unit = load_program_unit(path)
    except UnparseableUnitError as exc:
        logger.warning("%s: %s", exc.code.value, exc)
"""

from __future__ import annotations

from enum import Enum
from typing import Any


# ── Error Codes ──────────────────────────────────────────────────────────────


class ErrorCode(str, Enum):
    """Standard error codes attached to pipeline errors."""

    UNPARSEABLE_UNIT = "UNPARSEABLE_UNIT"
    UNIT_TIMEOUT = "UNIT_TIMEOUT"
    DUPLICATE_DETECTOR = "DUPLICATE_DETECTOR"
    CONFIG_ERROR = "CONFIG_ERROR"


# ── Exceptions ───────────────────────────────────────────────────────────────


class AcctScanError(Exception):
    """Base class for all acctscan errors."""

    code: ErrorCode = ErrorCode.UNPARSEABLE_UNIT

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class UnparseableUnitError(AcctScanError):
    """The IR builder could not produce a ProgramUnit for a source."""

    code = ErrorCode.UNPARSEABLE_UNIT

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"cannot build program unit from {path}: {reason}", {"path": path})
        self.path = path
        self.reason = reason


class UnitTimeoutError(UnparseableUnitError):
    """The IR builder did not return within the per-unit timeout."""

    code = ErrorCode.UNIT_TIMEOUT

    def __init__(self, path: str, timeout: float) -> None:
        super().__init__(path, f"timed out after {timeout:.1f}s")
        self.timeout = timeout


class DuplicateDetectorError(AcctScanError):
    """A detector was registered under a class id that is already taken."""

    code = ErrorCode.DUPLICATE_DETECTOR

    def __init__(self, class_id: str) -> None:
        super().__init__(f"detector class id {class_id!r} is already registered", {"class_id": class_id})
        self.class_id = class_id


class ConfigError(AcctScanError):
    """Configuration could not be loaded or validated."""

    code = ErrorCode.CONFIG_ERROR
