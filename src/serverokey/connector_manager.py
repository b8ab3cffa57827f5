"""
Connector manager: resolves connectors by name and builds read contexts.

Example:
    >>> manager = ConnectorManager("./kassa", manifest)
    >>> await manager.load_all()
    >>> data = await manager.get_context(["receipt", "positions"])
    >>> data["receipt"]["items"]
    []
    >>> await manager.close()
"""

import logging
import os
from typing import Any, Dict, Iterable, Optional

from .config import EngineSettings
from .connectors import Connector, create_connector
from .exceptions import ConnectorNotFoundError
from .expressions import Evaluator
from .manifest import Manifest
from .store import DocumentStore


logger = logging.getLogger(__name__)

_STORE_TYPES = ("collection", "wise-json", "session")


class ConnectorManager:
    """
    Own the connectors declared by a manifest.

    Args:
        app_path: Application root; relative data paths resolve against it.
        manifest: Validated manifest.
        store: Document store to inject into collection connectors. When
            omitted, one is created lazily at ``<app>/<settings.store_path>``
            and closed by ``close()``.
        evaluator: Evaluator shared with computed-field formulas.
        settings: Engine settings (defaults resolved from the manifest).
    """

    def __init__(
        self,
        app_path: str,
        manifest: Manifest,
        store: Optional[DocumentStore] = None,
        evaluator: Optional[Evaluator] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.app_path = app_path
        self.manifest = manifest
        self.settings = settings or EngineSettings.resolve(manifest.settings)
        self.evaluator = evaluator or Evaluator(verbose=self.settings.verbose)
        self.connectors: Dict[str, Connector] = {}
        self._store = store
        self._owns_store = False

    @property
    def store(self) -> DocumentStore:
        if self._store is None:
            path = self.settings.store_path
            if path != ":memory:":
                path = os.path.join(self.app_path, path)
            self._store = DocumentStore(path)
            self._owns_store = True
            logger.info(f"Opened document store at {path}")
        return self._store

    async def load_all(self) -> None:
        """
        Instantiate every declared connector.

        Raises:
            ConnectorError: If a connector type is unknown.
        """
        logger.info("Initializing connectors...")
        for name, config in self.manifest.connectors.items():
            resources: Dict[str, Any] = {
                "app_path": self.app_path,
                "settings": self.settings,
            }
            if config.type in _STORE_TYPES:
                resources["store"] = self.store
            self.connectors[name] = create_connector(
                name, config, evaluator=self.evaluator, **resources
            )
            logger.info(f"Initialized '{config.type}' connector for '{name}'")

    def get_connector(self, name: str) -> Connector:
        """
        Raises:
            ConnectorNotFoundError: If no connector has this name; the error
                lists the available names.
        """
        try:
            return self.connectors[name]
        except KeyError:
            raise ConnectorNotFoundError(name, self.connectors) from None

    async def get_context(self, names: Iterable[str]) -> Dict[str, Any]:
        """Read each named connector into a ``{name: value}`` mapping."""
        context: Dict[str, Any] = {}
        for name in names:
            context[name] = await self.get_connector(name).read()
        return context

    async def close(self) -> None:
        for connector in self.connectors.values():
            await connector.close()
        if self._owns_store and self._store is not None:
            self._store.close()
            self._store = None
            self._owns_store = False
