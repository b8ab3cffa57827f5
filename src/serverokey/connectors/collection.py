"""
Document-store backed connectors (types ``collection`` / ``wise-json`` and ``session``).

A collection connector exposes one logical value,
``{**collection_fields, "items": [documents]}``, stored as one document per
item plus a reserved metadata document (``_id == "_meta"``) holding every
non-item field. Writes replace the whole collection in a single transaction.

The session connector stores one document per login session. Its ``read``
returns the raw document list and direct writes are refused; sessions are
managed through ``create`` / ``get`` / ``remove``.
"""

import asyncio
import copy
import logging
from typing import Any, Dict, List, Optional

from ..exceptions import ConnectorError
from ..migrations import Migrator
from ..store import DocumentStore
from .base import Connector, register_connector


logger = logging.getLogger(__name__)

META_ID = "_meta"


class CollectionConnector(Connector):
    """
    Transactional collection connector.

    Read pipeline: load documents, merge initial state and metadata, migrate
    (persisting the upgrade when anything changed), run the computed pass.
    """

    def __init__(self, name, config, evaluator=None, store: Optional[DocumentStore] = None, **resources):
        super().__init__(name, config, evaluator)
        if store is None:
            raise ConnectorError(f"Connector '{name}' requires a document store")
        self.store = store
        self.collection_name = config.collection or name
        self._migrator = Migrator(config.migrations)

    async def _load(self) -> Dict[str, Any]:
        documents = await asyncio.to_thread(self.store.collection(self.collection_name).get_all)
        meta: Dict[str, Any] = {}
        items: List[Dict[str, Any]] = []
        for document in documents:
            if document.get("_id") == META_ID:
                meta = {k: v for k, v in document.items() if k != "_id"}
            else:
                items.append(document)
        initial = copy.deepcopy(self.config.initial_state) if isinstance(self.config.initial_state, dict) else {}
        return {**initial, **meta, "items": items}

    async def read(self) -> Dict[str, Any]:
        data = await self._load()
        data, changed = self._migrator.migrate(data)
        if changed:
            logger.info(f"Persisting migrated data for '{self.name}'")
            await self.write(data)
        return self._computed.apply(data)

    async def write(self, value: Dict[str, Any]) -> None:
        if not isinstance(value, dict):
            raise ConnectorError(
                f"Connector '{self.name}' expects an object, got {type(value).__name__}"
            )
        fields = self._computed.apply(copy.deepcopy(value))
        items = fields.pop("items", None) or []
        fields.pop("_id", None)

        async with self._write_lock:
            txn = self.store.begin_transaction()
            try:
                collection = txn.collection(self.collection_name)
                collection.clear()
                if items:
                    collection.insert_many(items)
                if fields:
                    collection.insert({"_id": META_ID, **fields})
                await asyncio.to_thread(txn.commit)
            except Exception as e:
                logger.error(f"Transaction failed for collection '{self.collection_name}': {e}")
                txn.rollback()
                raise ConnectorError(
                    f"Write to '{self.name}' failed: {e}"
                ) from e


class SessionConnector(CollectionConnector):
    """Login session documents; direct writes are refused."""

    async def read(self) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self.store.collection(self.collection_name).get_all)

    async def write(self, value: Any) -> None:
        logger.warning(
            f"Direct write to session connector '{self.name}' is not supported. Use auth actions."
        )

    async def create(self, document: Dict[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self.store.collection(self.collection_name).insert, document)

    async def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self.store.collection(self.collection_name).get_by_id, session_id)

    async def remove(self, session_id: str) -> bool:
        return await asyncio.to_thread(self.store.collection(self.collection_name).remove, session_id)


register_connector("collection", CollectionConnector)
register_connector("wise-json", CollectionConnector)
register_connector("session", SessionConnector)
