"""
Shared fixtures for serverokey tests.

Provides:
- evaluator: a quiet Evaluator
- store: an in-memory DocumentStore, closed after the test
- make_manager: builds a loaded ConnectorManager from a manifest mapping
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from serverokey.config import EngineSettings
from serverokey.connector_manager import ConnectorManager
from serverokey.expressions import Evaluator
from serverokey.manifest import parse_manifest
from serverokey.store import DocumentStore


@pytest.fixture
def evaluator():
    return Evaluator()


@pytest.fixture
def store():
    document_store = DocumentStore(":memory:")
    yield document_store
    document_store.close()


@pytest.fixture
def make_manager(tmp_path, store):
    """Factory: ``await make_manager(manifest_dict, **settings)`` -> (manifest, manager)."""

    async def _make(manifest_data, **settings):
        manifest = parse_manifest(manifest_data)
        manager = ConnectorManager(
            str(tmp_path),
            manifest,
            store=store,
            settings=EngineSettings.resolve(manifest.settings, environ={}, **settings),
        )
        await manager.load_all()
        return manifest, manager

    return _make
