"""
Asset registry for legacy action callbacks and custom operations.

Actions are callables invoked by ``run`` steps and ``handler`` actions as
``callback(context, body)``. Operations are callables invoked by
``manipulate: {operation: "custom:<name>"}`` as ``operation(context, args)``.
Both may be coroutine functions.

Assets are registered explicitly, loaded from a module exposing
``register_assets(registry)``, or loaded from a directory of ``*.py`` files
(``app/actions``, ``app/operations``) where each file provides a callable
named after the file, or ``main`` / ``run``.

Lookups use the base name, so ``"app/actions/addItem.py"`` and ``"addItem"``
resolve to the same callback.

Example:
    >>> registry = AssetRegistry()
    >>> registry.register_action("filterPositions", filter_positions)
    >>> registry.get_action("actions/filterPositions.js") is filter_positions
    True
"""

import importlib
import importlib.util
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .exceptions import ActionNotFoundError


logger = logging.getLogger(__name__)


def base_name(name: str) -> str:
    """Strip directories and extension from an asset name."""
    return os.path.splitext(os.path.basename(str(name)))[0]


class AssetRegistry:
    def __init__(self) -> None:
        self.actions: Dict[str, Callable[..., Any]] = {}
        self.operations: Dict[str, Callable[..., Any]] = {}

    def register_action(self, name: str, callback: Callable[..., Any]) -> None:
        if not callable(callback):
            raise TypeError(f"Action '{name}' is not callable")
        self.actions[base_name(name)] = callback

    def register_operation(self, name: str, callback: Callable[..., Any]) -> None:
        if not callable(callback):
            raise TypeError(f"Operation '{name}' is not callable")
        self.operations[base_name(name)] = callback

    def get_action(self, name: str) -> Callable[..., Any]:
        """
        Raises:
            ActionNotFoundError: If no action is registered under the base name.
        """
        key = base_name(name)
        if key not in self.actions:
            raise ActionNotFoundError(
                f"Action callback '{key}' not found. "
                f"Available: [{', '.join(sorted(self.actions))}]"
            )
        return self.actions[key]

    def get_operation(self, name: str) -> Callable[..., Any]:
        """
        Raises:
            ActionNotFoundError: If no operation is registered under the base name.
        """
        key = base_name(name)
        if key not in self.operations:
            raise ActionNotFoundError(f"Custom operation '{key}' not found.")
        return self.operations[key]

    def load_module(self, module_path: str) -> None:
        """Import ``module_path`` and call its ``register_assets(registry)``."""
        module = importlib.import_module(module_path)
        if not hasattr(module, "register_assets"):
            raise ImportError(
                f"Module '{module_path}' must define a register_assets(registry) function"
            )
        module.register_assets(self)

    def load_directory(self, directory: Union[str, Path], kind: str = "actions") -> List[str]:
        """
        Load every ``*.py`` file in ``directory`` as an action or operation.

        Args:
            directory: Directory to scan; a missing directory loads nothing.
            kind: ``"actions"`` or ``"operations"``.

        Returns:
            Names registered from this directory.
        """
        directory = Path(directory)
        if not directory.is_dir():
            return []
        register = self.register_action if kind == "actions" else self.register_operation
        loaded = []
        for path in sorted(directory.glob("*.py")):
            if path.name.startswith("_"):
                continue
            spec = importlib.util.spec_from_file_location(f"serverokey_{kind}_{path.stem}", path)
            if spec is None or spec.loader is None:
                raise ImportError(f"Cannot load module spec from file: {path}")
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
            callback = _find_callable(module, path.stem)
            if callback is None:
                logger.warning(f"No callable '{path.stem}', 'main' or 'run' in {path}")
                continue
            register(path.stem, callback)
            loaded.append(path.stem)
        logger.info(f"Loaded {len(loaded)} {kind} from {directory}")
        return loaded

    @classmethod
    def from_app(cls, app_path: Union[str, Path]) -> "AssetRegistry":
        """Load ``<app>/app/actions`` and ``<app>/app/operations``."""
        registry = cls()
        registry.load_directory(Path(app_path) / "app" / "actions", "actions")
        registry.load_directory(Path(app_path) / "app" / "operations", "operations")
        return registry


def _find_callable(module: Any, stem: str) -> Optional[Callable[..., Any]]:
    for attribute in (stem, "main", "run"):
        candidate = getattr(module, attribute, None)
        if callable(candidate):
            return candidate
    return None
