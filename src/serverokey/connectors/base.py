"""
Connector interface and type registry.

A connector is a named source of one JSON value with uniform async
``read()`` / ``write(value)``. ``read()`` returns an independent deep copy;
``write()`` fully replaces the persisted value.

Implementations register themselves by manifest type name:

    register_connector("in-memory", InMemoryConnector)
    connector = create_connector("viewState", config, app_path=".", store=None)
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Type

from ..computed import ComputedFields
from ..exceptions import ConnectorError
from ..expressions import Evaluator
from ..manifest import ConnectorConfig


logger = logging.getLogger(__name__)


class Connector(ABC):
    """
    Abstract base class for connectors.

    Each connector serializes its own writes with an asyncio.Lock. Reads are
    not isolated from concurrent writes (last writer wins across actions).

    Attributes:
        name: Connector name from the manifest
        config: Validated connector configuration
    """

    def __init__(
        self,
        name: str,
        config: ConnectorConfig,
        evaluator: Optional[Evaluator] = None,
        **resources: Any,
    ):
        self.name = name
        self.config = config
        self._write_lock = asyncio.Lock()
        self._computed = ComputedFields(config.computed, evaluator)

    @abstractmethod
    async def read(self) -> Any:
        """Return a deep copy of the current value."""
        pass

    @abstractmethod
    async def write(self, value: Any) -> None:
        """Replace the persisted value."""
        pass

    async def close(self) -> None:
        """Release resources held by this connector."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


# =============================================================================
# CONNECTOR REGISTRY
# =============================================================================

_CONNECTOR_REGISTRY: Dict[str, Type[Connector]] = {}


def register_connector(type_name: str, connector_class: Type[Connector]) -> None:
    """
    Register a connector class under a manifest type name.

    Raises:
        TypeError: If connector_class is not a Connector subclass.
    """
    if not isinstance(connector_class, type) or not issubclass(connector_class, Connector):
        raise TypeError(f"{connector_class!r} is not a Connector subclass")
    _CONNECTOR_REGISTRY[type_name.lower()] = connector_class


def get_registered_connectors() -> List[str]:
    return sorted(_CONNECTOR_REGISTRY)


def create_connector(name: str, config: ConnectorConfig, **resources: Any) -> Connector:
    """
    Instantiate the connector registered for ``config.type``.

    Args:
        name: Connector name.
        config: Connector configuration.
        **resources: Shared resources (``app_path``, ``store``, ``evaluator``,
            ``settings``); each implementation picks what it needs.

    Raises:
        ConnectorError: If the type is not registered.
    """
    type_name = config.type.lower()
    if type_name not in _CONNECTOR_REGISTRY:
        available = ", ".join(get_registered_connectors()) or "none"
        raise ConnectorError(
            f"Unknown connector type '{config.type}' for connector '{name}'. "
            f"Available types: {available}"
        )
    return _CONNECTOR_REGISTRY[type_name](name, config, **resources)
