"""
Declarative array manipulation for ``manipulate`` actions.

Built-in operations work on arrays addressed by dotted paths into the
context (resolved with jmespath):

    push               copy the first ``source`` element whose ``findBy`` key
                       matches into ``target``
    removeFirstWhere   remove the first ``target`` element whose ``match`` key
                       matches
    custom:<name>      call a registered operation with resolved ``args``

Keys are compared as strings, so ``body.id == "3"`` matches an item with
``id: 3``.

Example:
    manipulate:
      operation: push
      target: data.receipt.items
      source: data.positions.items
      findBy: {id: body.id}
"""

import copy
import inspect
import logging
from typing import Any, Dict, List, Optional

import jmespath

from .assets import AssetRegistry
from .exceptions import ActionNotFoundError, ServerokeyError
from .manifest import ManipulateConfig


logger = logging.getLogger(__name__)


class OperationError(ServerokeyError):
    """A manipulate operation is misconfigured or its target is not an array."""


def get_value(context: Dict[str, Any], path: Optional[str]) -> Any:
    """Resolve a dotted path; missing segments yield None."""
    if not path:
        return None
    quoted = ".".join(f'"{segment}"' for segment in path.split("."))
    return jmespath.search(quoted, context)


def _key(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class OperationHandler:
    def __init__(self, context: Dict[str, Any], assets: Optional[AssetRegistry] = None):
        self.context = context
        self.assets = assets

    async def execute(self, config: ManipulateConfig) -> Any:
        """
        Run one manipulate operation against the context.

        Raises:
            OperationError: If the configuration is incomplete or a path does
                not address an array.
            ActionNotFoundError: If a custom operation is not registered.
        """
        operation = config.operation

        if operation.startswith("custom:"):
            name = operation[len("custom:"):]
            if self.assets is None:
                raise ActionNotFoundError(f"Custom operation '{name}' not found.")
            callback = self.assets.get_operation(name)
            args = {key: get_value(self.context, path) for key, path in (config.args or {}).items()}
            result = callback(self.context, args)
            if inspect.isawaitable(result):
                result = await result
            return result

        target = get_value(self.context, config.target)
        if not isinstance(target, list):
            raise OperationError(f'Target "{config.target}" is not an array.')

        if operation == "push":
            self._push(target, config)
        elif operation == "removeFirstWhere":
            self._remove_first_where(target, config)
        else:
            raise OperationError(f'Unknown built-in operation "{operation}".')
        return None

    def _push(self, target: List[Any], config: ManipulateConfig) -> None:
        if not config.source or not config.find_by:
            raise OperationError('"push" operation requires "source" and "findBy".')
        source = get_value(self.context, config.source)
        if not isinstance(source, list):
            raise OperationError(f'Source "{config.source}" is not an array.')

        key, path = next(iter(config.find_by.items()))
        wanted = _key(get_value(self.context, path))
        for item in source:
            if isinstance(item, dict) and _key(item.get(key)) == wanted:
                target.append(copy.deepcopy(item))
                return
        logger.debug(f"push: no item in '{config.source}' with {key} == {wanted}")

    def _remove_first_where(self, target: List[Any], config: ManipulateConfig) -> None:
        if not config.match:
            raise OperationError('"removeFirstWhere" operation requires "match".')
        key, path = next(iter(config.match.items()))
        wanted = _key(get_value(self.context, path))
        for index, item in enumerate(target):
            if isinstance(item, dict) and _key(item.get(key)) == wanted:
                del target[index]
                return
