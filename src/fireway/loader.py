"""Loading migration modules and preload plugins."""

from __future__ import annotations

import importlib
import importlib.machinery
import importlib.util
import re
import sys
from collections.abc import Callable
from pathlib import Path
from types import ModuleType
from typing import Any

from fireway.errors import MigrationLoadError, PluginLoadError
from fireway.logging import get_logger
from fireway.scanner import MigrationFile

logger = get_logger(__name__)

ENTRY_POINT = "migrate"


def _module_name(prefix: str, path: Path) -> str:
    return f"{prefix}_{re.sub(r'[^0-9a-zA-Z_]', '_', path.stem)}"


def load_source(name: str, path: Path) -> ModuleType:
    """Execute *path* as Python source under module *name*, whatever its extension."""
    loader = importlib.machinery.SourceFileLoader(name, str(path))
    spec = importlib.util.spec_from_loader(name, loader)
    if spec is None:
        raise ImportError(f"Cannot build a module spec for {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    try:
        loader.exec_module(module)
    except BaseException:
        sys.modules.pop(name, None)
        raise
    return module


def load_migration(file: MigrationFile) -> Callable[..., Any]:
    """Return the ``migrate`` entry point of *file*.

    Every call evaluates the file afresh.

    Raises:
        MigrationLoadError: the module raised while loading or has no entry point
    """
    name = _module_name("fireway_migrations", file.path)
    sys.modules.pop(name, None)
    try:
        module = load_source(name, file.path)
    except Exception as exc:
        raise MigrationLoadError(
            f"Could not load {file.filename}: {exc}", cause=exc
        ).with_context(filename=file.filename, version=str(file.version)) from exc

    entry = getattr(module, ENTRY_POINT, None)
    if not callable(entry):
        raise MigrationLoadError(
            f"{file.filename} does not define a callable '{ENTRY_POINT}'"
        ).with_context(filename=file.filename, version=str(file.version))
    return entry


def load_plugin(target: str) -> ModuleType:
    """Load *target* for its side effects.

    A path to an existing file is executed as source; anything else is
    imported as a dotted module name.

    Raises:
        PluginLoadError: the module could not be found or raised while loading
    """
    path = Path(target)
    try:
        if path.is_file():
            module = load_source(_module_name("fireway_plugins", path), path.resolve())
        else:
            module = importlib.import_module(target)
    except Exception as exc:
        logger.error("plugin.load_failed", target=target, exc_info=exc)
        raise PluginLoadError(target, cause=exc) from exc
    logger.debug("plugin.loaded", target=target)
    return module


__all__ = ["ENTRY_POINT", "load_migration", "load_plugin", "load_source"]
