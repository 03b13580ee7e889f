"""Default IR builder: reads ProgramUnit documents emitted by a source parser.

IR documents are JSON or YAML files holding one ``ProgramUnit`` tree. When
the document does not embed the program text, the loader reads the file
named by ``file`` (relative to the document) so findings can carry
excerpts.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable

import yaml
from pydantic import ValidationError

from acctscan.core.errors import UnparseableUnitError
from acctscan.ir.model import ProgramUnit

logger = logging.getLogger(__name__)

IR_SUFFIXES = (".json", ".yaml", ".yml")

# Any callable turning a path into a ProgramUnit can stand in for the loader.
IRBuilder = Callable[[Path], ProgramUnit]


def _read_document(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def parse_program_unit(document: Any, origin: str = "<memory>") -> ProgramUnit:
    """Validate an already-decoded IR document."""
    if not isinstance(document, dict):
        raise UnparseableUnitError(origin, "IR document must be a mapping")
    try:
        return ProgramUnit.model_validate(document)
    except ValidationError as exc:
        first = exc.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ()))
        raise UnparseableUnitError(
            origin, f"{exc.error_count()} validation error(s), first at {where}: {first.get('msg')}"
        ) from exc


def load_program_unit(path: str | Path) -> ProgramUnit:
    """Read and validate one IR document from disk."""
    path = Path(path)
    if path.suffix not in IR_SUFFIXES:
        raise UnparseableUnitError(str(path), f"unsupported IR format {path.suffix!r}")
    try:
        document = _read_document(path)
    except (OSError, UnicodeDecodeError) as exc:
        raise UnparseableUnitError(str(path), f"cannot read file: {exc}") from exc
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise UnparseableUnitError(str(path), f"malformed document: {exc}") from exc

    if isinstance(document, dict) and not document.get("source") and document.get("file"):
        source_path = path.parent / document["file"]
        if source_path.is_file():
            try:
                document = {**document, "source": source_path.read_text(encoding="utf-8")}
            except (OSError, UnicodeDecodeError) as exc:
                logger.debug("Source text for %s unavailable: %s", path, exc)

    unit = parse_program_unit(document, origin=str(path))
    logger.debug(
        "Loaded unit %s: %d handler(s), %d struct(s)",
        unit.name, len(unit.handlers), len(unit.structs),
        extra={"unit": unit.name},
    )
    return unit


def discover_ir_files(paths: list[str | Path]) -> list[Path]:
    """Expand files and directories into a sorted list of IR documents."""
    found: list[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            for suffix in IR_SUFFIXES:
                found.extend(p for p in path.rglob(f"*{suffix}") if p.is_file())
        else:
            found.append(path)
    return sorted(set(found))
