"""
Connectors: uniform async read/write over named JSON values.

Importing this package registers the built-in connector types:

    in-memory            InMemoryConnector
    json                 JsonFileConnector
    collection/wise-json CollectionConnector
    session              SessionConnector
"""

from .base import (
    Connector,
    create_connector,
    get_registered_connectors,
    register_connector,
)
from .memory import InMemoryConnector
from .json_file import JsonFileConnector
from .collection import META_ID, CollectionConnector, SessionConnector

__all__ = [
    "Connector",
    "create_connector",
    "get_registered_connectors",
    "register_connector",
    "InMemoryConnector",
    "JsonFileConnector",
    "CollectionConnector",
    "SessionConnector",
    "META_ID",
]
