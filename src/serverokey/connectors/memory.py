"""
Ephemeral in-process connector (type ``in-memory``).

State starts as a deep copy of ``initialState`` and is lost on restart.
Used for UI scratch state such as a search query.
"""

import copy
import logging
from typing import Any

from .base import Connector, register_connector


logger = logging.getLogger(__name__)


class InMemoryConnector(Connector):
    def __init__(self, name, config, evaluator=None, **resources):
        super().__init__(name, config, evaluator)
        initial = config.initial_state if config.initial_state is not None else {}
        self._data = copy.deepcopy(initial)

    async def read(self) -> Any:
        return copy.deepcopy(self._data)

    async def write(self, value: Any) -> None:
        async with self._write_lock:
            self._data = copy.deepcopy(value)
        logger.debug(f"In-memory connector '{self.name}' updated")


register_connector("in-memory", InMemoryConnector)
