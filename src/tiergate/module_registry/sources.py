"""
Module Sources - where feature modules are discovered from.

Each source lists candidates; a candidate is imported lazily and must expose
an explicit factory:
- a callable `create_module()` returning one module or a sequence of modules, or
- a module-level `MODULES` sequence of modules or zero-argument factories.
Entry points resolve directly to such a factory.
"""

from __future__ import annotations

import hashlib
import importlib
import importlib.util
import logging
import pkgutil
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from importlib.metadata import entry_points
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Iterable, List

logger = logging.getLogger(__name__)

FACTORY_NAME = "create_module"
MODULES_ATTR = "MODULES"


@dataclass
class ModuleCandidate:
    """One importable unit that may yield feature modules."""

    label: str
    load: Callable[[], Any]


class ModuleSource(ABC):
    @property
    @abstractmethod
    def label(self) -> str:
        """Human readable location used in errors and logs."""

    @abstractmethod
    def candidates(self) -> Iterable[ModuleCandidate]:
        """Lists the candidates in a stable order."""


class DirectorySource(ModuleSource):
    """
    Every `*.py` file (not starting with `_`) and every sub-directory holding
    `main.py` or `__init__.py` is one candidate. A missing directory is empty.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    @property
    def label(self) -> str:
        return str(self.path)

    def candidates(self) -> Iterable[ModuleCandidate]:
        if not self.path.is_dir():
            logger.debug(f"Module directory not found, skipping: {self.path}")
            return []

        found: List[ModuleCandidate] = []
        for item in sorted(self.path.iterdir()):
            if item.name.startswith(("_", ".")):
                continue
            if item.is_file() and item.suffix == ".py":
                found.append(self._candidate(item.stem, item))
            elif item.is_dir():
                for entry in ("main.py", "__init__.py"):
                    entry_path = item / entry
                    if entry_path.exists():
                        found.append(self._candidate(item.name, entry_path))
                        break
        return found

    def _candidate(self, name: str, module_path: Path) -> ModuleCandidate:
        return ModuleCandidate(
            label=str(module_path),
            load=lambda: import_module_file(name, module_path),
        )


class PackageSource(ModuleSource):
    """Every direct sub-module of an importable package."""

    def __init__(self, package: str):
        self.package = package

    @property
    def label(self) -> str:
        return self.package

    def candidates(self) -> Iterable[ModuleCandidate]:
        pkg = importlib.import_module(self.package)
        search_path = getattr(pkg, "__path__", None)
        if search_path is None:
            # A plain module is its own single candidate
            return [ModuleCandidate(label=self.package, load=lambda: pkg)]

        found: List[ModuleCandidate] = []
        for info in sorted(pkgutil.iter_modules(search_path), key=lambda i: i.name):
            if info.name.startswith("_"):
                continue
            dotted = f"{self.package}.{info.name}"
            found.append(
                ModuleCandidate(label=dotted, load=lambda d=dotted: importlib.import_module(d))
            )
        return found


class EntryPointSource(ModuleSource):
    """Installed distributions contributing modules through an entry point group."""

    def __init__(self, group: str = "tiergate.modules"):
        self.group = group

    @property
    def label(self) -> str:
        return f"entry-points:{self.group}"

    def candidates(self) -> Iterable[ModuleCandidate]:
        eps = sorted(entry_points(group=self.group), key=lambda ep: ep.name)
        return [
            ModuleCandidate(label=f"{self.group}:{ep.name}", load=ep.load) for ep in eps
        ]


def module_name_for(name: str, module_path: Path) -> str:
    """Import name for a file-based module, unique per source path."""
    digest = hashlib.sha1(str(Path(module_path).resolve()).encode("utf-8")).hexdigest()[:10]
    return f"tiergate_module_{name.replace('-', '_').replace(' ', '_')}_{digest}"


def import_module_file(name: str, module_path: Path) -> ModuleType:
    module_name = module_name_for(name, module_path)
    spec = importlib.util.spec_from_file_location(module_name, module_path)
    if not spec or not spec.loader:
        raise ImportError(f"Cannot build import spec for {module_path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception:
        sys.modules.pop(module_name, None)
        raise
    return module


def instantiate(loaded: Any) -> List[Any]:
    """
    Turns whatever a candidate loaded into module instances using the
    explicit factory convention. Raises LookupError when there is none.
    """
    if isinstance(loaded, ModuleType):
        factory = getattr(loaded, FACTORY_NAME, None)
        if callable(factory):
            return _as_list(factory())
        declared = getattr(loaded, MODULES_ATTR, None)
        if declared is not None:
            return [_build(item) for item in _as_list(declared)]
        raise LookupError(
            f"no {FACTORY_NAME}() factory or {MODULES_ATTR} sequence in {loaded.__name__}"
        )

    if hasattr(loaded, "describe") and not isinstance(loaded, type):
        return [loaded]
    if callable(loaded):
        return _as_list(loaded())
    raise LookupError(f"unsupported module factory: {loaded!r}")


def _build(item: Any) -> Any:
    # classes and bare factories are called; ready instances pass through
    if isinstance(item, type) or (callable(item) and not hasattr(item, "describe")):
        return item()
    return item


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]
