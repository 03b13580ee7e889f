"""Detector registry — discovers and holds one detector per class id."""

from __future__ import annotations

import importlib
import logging
import pkgutil
from typing import Iterator

from acctscan.analyzer.base_detector import BaseDetector
from acctscan.core.errors import DuplicateDetectorError

logger = logging.getLogger(__name__)


class DetectorRegistry:
    """Registry of vulnerability detectors keyed by stable class id.

    Registration order is preserved; the engine runs detectors and breaks
    duplicate-finding ties in that order.
    """

    def __init__(self) -> None:
        self._detectors: dict[str, BaseDetector] = {}
        self._loaded = False

    def register(self, detector: BaseDetector | type[BaseDetector]) -> BaseDetector:
        """Add a detector (instance or class) under its CLASS_ID."""
        if isinstance(detector, type):
            detector = detector()
        class_id = detector.CLASS_ID
        if not class_id:
            raise ValueError(f"{type(detector).__name__} has no CLASS_ID")
        if class_id in self._detectors:
            raise DuplicateDetectorError(class_id)
        self._detectors[class_id] = detector
        return detector

    def unregister(self, class_id: str) -> BaseDetector | None:
        return self._detectors.pop(class_id, None)

    def discover(self) -> None:
        """Auto-discover all detector classes from the detectors package."""
        if self._loaded:
            return

        import acctscan.analyzer.detectors as detectors_pkg

        found: dict[str, type[BaseDetector]] = {}
        for _finder, module_name, _is_pkg in pkgutil.walk_packages(
            detectors_pkg.__path__,
            prefix=detectors_pkg.__name__ + ".",
        ):
            try:
                module = importlib.import_module(module_name)
            except ImportError as exc:
                logger.warning("Failed to load detector module %s: %s", module_name, exc)
                continue
            for attr_name in dir(module):
                attr = getattr(module, attr_name)
                if (
                    isinstance(attr, type)
                    and issubclass(attr, BaseDetector)
                    and attr is not BaseDetector
                    and attr.CLASS_ID  # Must have an ID
                ):
                    found[attr.CLASS_ID] = attr

        for class_id in sorted(found):
            if class_id not in self._detectors:
                self.register(found[class_id])

        self._loaded = True
        logger.debug("Discovered %d detector(s)", len(self._detectors))

    def get_all(self) -> list[BaseDetector]:
        """Return all registered detectors in registration order."""
        return list(self._detectors.values())

    def get_by_id(self, class_id: str) -> BaseDetector | None:
        return self._detectors.get(class_id)

    def get_by_category(self, category: str) -> list[BaseDetector]:
        return [d for d in self._detectors.values() if d.CATEGORY == category]

    def class_ids(self) -> list[str]:
        return list(self._detectors)

    def count(self) -> int:
        return len(self._detectors)

    def categories(self) -> list[str]:
        return sorted(set(d.CATEGORY for d in self._detectors.values() if d.CATEGORY))

    def __iter__(self) -> Iterator[BaseDetector]:
        return iter(self.get_all())

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, class_id: object) -> bool:
        return class_id in self._detectors


def default_registry() -> DetectorRegistry:
    """Return a fresh registry holding every built-in detector."""
    reg = DetectorRegistry()
    reg.discover()
    return reg


# Global registry singleton
registry = DetectorRegistry()
