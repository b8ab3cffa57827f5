"""
Flat-file JSON connector (type ``json``).

Data lives in ``<app>/app/data/<name>.json`` unless the connector config
names an explicit ``path``. Files are accessed through fsspec, so ``path``
may be any fsspec URL (``memory://``, ``s3://``, ...). Blocking I/O runs in
a worker thread.

Behavior:
    - First access creates the file from ``initialState`` when it is absent
    - An unreadable file falls back to ``initialState`` (logged as an error)
    - ``write`` runs the computed pass, then saves pretty-printed (indent 2)
"""

import asyncio
import copy
import json
import logging
import os
import posixpath
from typing import Any, Optional

import fsspec

from ..exceptions import ConnectorError
from .base import Connector, register_connector


logger = logging.getLogger(__name__)


def _normalize_path(path: str) -> str:
    if path.startswith("file://"):
        return path[7:]
    return path


class JsonFileConnector(Connector):
    """
    Example:
        >>> connector = JsonFileConnector("positions", config, app_path="./kassa")
        >>> await connector.read()
        {'items': []}
    """

    def __init__(self, name, config, evaluator=None, app_path: str = ".", settings=None, **resources):
        super().__init__(name, config, evaluator)
        data_dir = settings.data_dir if settings is not None else os.path.join("app", "data")
        self.file_path = _normalize_path(
            config.path or os.path.join(app_path, data_dir, f"{name}.json")
        )
        self._data: Any = None
        self._loaded = False
        self._load_lock = asyncio.Lock()

    def _initial_state(self) -> Any:
        initial = self.config.initial_state
        return copy.deepcopy(initial) if initial is not None else {}

    def _load_sync(self) -> Any:
        fs, fs_path = fsspec.core.url_to_fs(self.file_path)
        if not fs.exists(fs_path):
            logger.info(f"File not found for '{self.name}', creating with initial state")
            data = self._initial_state()
            self._save_sync(data)
            return data
        with fs.open(fs_path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _save_sync(self, data: Any) -> None:
        fs, fs_path = fsspec.core.url_to_fs(self.file_path)
        parent = posixpath.dirname(fs_path)
        if parent:
            fs.makedirs(parent, exist_ok=True)
        with fs.open(fs_path, "w", encoding="utf-8") as f:
            f.write(json.dumps(data, indent=2, ensure_ascii=False))

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        async with self._load_lock:
            if self._loaded:
                return
            try:
                self._data = await asyncio.to_thread(self._load_sync)
            except (OSError, ValueError) as e:
                logger.error(
                    f"Error loading '{self.file_path}' for '{self.name}', "
                    f"using initial state: {e}"
                )
                self._data = self._initial_state()
            self._loaded = True

    async def read(self) -> Any:
        await self._ensure_loaded()
        return copy.deepcopy(self._data)

    async def write(self, value: Any) -> None:
        await self._ensure_loaded()
        async with self._write_lock:
            data = self._computed.apply(copy.deepcopy(value))
            try:
                await asyncio.to_thread(self._save_sync, data)
            except OSError as e:
                raise ConnectorError(
                    f"Failed to save data for '{self.name}' to '{self.file_path}': {e}"
                ) from e
            self._data = data
        logger.info(f"Data source '{self.name}' saved to {self.file_path}")


register_connector("json", JsonFileConnector)
