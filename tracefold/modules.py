"""Module classification: which distribution a Python module ships in."""

from __future__ import annotations

import importlib.metadata
import logging
import platform
import sys
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

STDLIB_DISTRIBUTION = "python"


@dataclass(frozen=True)
class ModuleInfo:
    """Distribution name, version and loader type of one module; any part may be unknown."""

    name: str | None = None
    version: str | None = None
    loader: str | None = None


@runtime_checkable
class ModuleClassifier(Protocol):
    def classify(self, module_name: str) -> ModuleInfo | None: ...


def _loader_name(module_name: str) -> str | None:
    module = sys.modules.get(module_name)
    spec = getattr(module, "__spec__", None)
    loader = getattr(spec, "loader", None)
    if loader is None:
        return None
    if isinstance(loader, type):
        return loader.__name__
    return type(loader).__name__


class DistributionClassifier:
    """Maps a module's top-level package to its installed distribution.

    Standard-library and built-in modules map to ``python`` with the running
    interpreter's version. Unknown packages (scripts, ``__main__``, code
    compiled from strings) map to no distribution.
    """

    def __init__(self, maxsize: int = 1024) -> None:
        self.classify = lru_cache(maxsize=maxsize)(self._classify)

    @staticmethod
    @lru_cache(maxsize=1)
    def _package_table() -> dict[str, list[str]]:
        return dict(importlib.metadata.packages_distributions())

    def _classify(self, module_name: str) -> ModuleInfo | None:
        if not module_name:
            return None
        top = module_name.partition(".")[0]
        loader = _loader_name(module_name)
        if top in sys.stdlib_module_names or top in sys.builtin_module_names:
            return ModuleInfo(STDLIB_DISTRIBUTION, platform.python_version(), loader)
        distributions = self._package_table().get(top)
        if not distributions:
            return ModuleInfo(None, None, loader) if loader else None
        name = distributions[0]
        try:
            version = importlib.metadata.version(name)
        except importlib.metadata.PackageNotFoundError:
            logger.debug("distribution %s listed for %s has no metadata", name, top)
            version = None
        return ModuleInfo(name, version, loader)

    def refresh(self) -> None:
        """Forget cached lookups, e.g. after installing packages at runtime."""
        self.classify.cache_clear()
        self._package_table.cache_clear()


_classifier: ModuleClassifier = DistributionClassifier()


def get_module_classifier() -> ModuleClassifier:
    return _classifier


def set_module_classifier(classifier: ModuleClassifier | None) -> None:
    """Replace the classifier; ``None`` restores a fresh ``DistributionClassifier``."""
    global _classifier
    if classifier is None:
        classifier = DistributionClassifier()
    elif not isinstance(classifier, ModuleClassifier):
        raise TypeError(f"classifier must provide classify(module_name), got {type(classifier).__name__}")
    _classifier = classifier


def classify(module_name: str | None) -> ModuleInfo:
    if not module_name:
        return ModuleInfo()
    return _classifier.classify(module_name) or ModuleInfo()


__all__ = [
    "STDLIB_DISTRIBUTION",
    "DistributionClassifier",
    "ModuleClassifier",
    "ModuleInfo",
    "classify",
    "get_module_classifier",
    "set_module_classifier",
]
