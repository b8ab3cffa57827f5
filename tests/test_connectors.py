"""
Tests for connectors and the connector manager.
"""

import json
import uuid

import pytest

from serverokey.config import EngineSettings
from serverokey.connectors import (
    CollectionConnector,
    InMemoryConnector,
    JsonFileConnector,
    SessionConnector,
    create_connector,
)
from serverokey.exceptions import ConnectorError, ConnectorNotFoundError
from serverokey.manifest import ConnectorConfig

pytest_plugins = ("pytest_asyncio",)


def config(**kwargs):
    return ConnectorConfig.model_validate(kwargs)


class TestInMemoryConnector:
    @pytest.mark.asyncio
    async def test_read_returns_independent_copy(self):
        connector = InMemoryConnector("view", config(type="in-memory", initialState={"query": ""}))
        value = await connector.read()
        value["query"] = "changed"
        assert await connector.read() == {"query": ""}

    @pytest.mark.asyncio
    async def test_write_replaces_value(self):
        connector = InMemoryConnector("view", config(type="in-memory", initialState={"query": ""}))
        new_value = {"query": "tea", "filtered": [1]}
        await connector.write(new_value)
        new_value["filtered"].append(2)
        assert await connector.read() == {"query": "tea", "filtered": [1]}

    @pytest.mark.asyncio
    async def test_defaults_to_empty_object(self):
        connector = InMemoryConnector("view", config(type="in-memory"))
        assert await connector.read() == {}


class TestJsonFileConnector:
    @pytest.mark.asyncio
    async def test_first_read_creates_file(self, tmp_path):
        connector = JsonFileConnector(
            "positions", config(type="json", initialState={"items": []}), app_path=str(tmp_path)
        )
        assert await connector.read() == {"items": []}
        path = tmp_path / "app" / "data" / "positions.json"
        assert json.loads(path.read_text()) == {"items": []}

    @pytest.mark.asyncio
    async def test_write_runs_computed_and_pretty_prints(self, tmp_path):
        connector = JsonFileConnector(
            "receipt",
            config(
                type="json",
                initialState={"items": []},
                computed=[{"target": "total", "formula": "sum(items, 'price')", "format": "toFixed(2)"}],
            ),
            app_path=str(tmp_path),
        )
        await connector.write({"items": [{"price": 10}, {"price": "2.5"}]})
        text = (tmp_path / "app" / "data" / "receipt.json").read_text()
        assert '\n  "items"' in text
        assert json.loads(text)["total"] == "12.50"
        assert (await connector.read())["total"] == "12.50"

    @pytest.mark.asyncio
    async def test_persisted_data_is_reloaded(self, tmp_path):
        cfg = config(type="json", initialState={"count": 0})
        await JsonFileConnector("counter", cfg, app_path=str(tmp_path)).write({"count": 5})
        reopened = JsonFileConnector("counter", cfg, app_path=str(tmp_path))
        assert await reopened.read() == {"count": 5}

    @pytest.mark.asyncio
    async def test_unreadable_file_falls_back_to_initial_state(self, tmp_path):
        path = tmp_path / "app" / "data" / "broken.json"
        path.parent.mkdir(parents=True)
        path.write_text("{not json")
        connector = JsonFileConnector(
            "broken", config(type="json", initialState={"ok": True}), app_path=str(tmp_path)
        )
        assert await connector.read() == {"ok": True}

    @pytest.mark.asyncio
    async def test_custom_data_dir(self, tmp_path):
        settings = EngineSettings(data_dir="state")
        connector = JsonFileConnector(
            "x", config(type="json"), app_path=str(tmp_path), settings=settings
        )
        await connector.read()
        assert (tmp_path / "state" / "x.json").exists()

    @pytest.mark.asyncio
    async def test_fsspec_url_path(self):
        url = f"memory://serverokey-tests/{uuid.uuid4().hex}/data.json"
        connector = JsonFileConnector("remote", config(type="json", path=url, initialState=[1]))
        assert await connector.read() == [1]
        await connector.write([1, 2])
        reopened = JsonFileConnector("remote", config(type="json", path=url))
        assert await reopened.read() == [1, 2]


class TestCollectionConnector:
    def make(self, store, **kwargs):
        kwargs.setdefault("type", "collection")
        kwargs.setdefault("initialState", {"items": [], "total": 0, "note": ""})
        return CollectionConnector("receipt", config(**kwargs), store=store)

    @pytest.mark.asyncio
    async def test_read_of_empty_collection_uses_initial_state(self, store):
        assert await self.make(store).read() == {"items": [], "total": 0, "note": ""}

    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        connector = self.make(store)
        await connector.write({"items": [{"name": "Tea"}, {"name": "Bun"}], "total": 3, "note": "hi"})
        first = await connector.read()
        assert [item["name"] for item in first["items"]] == ["Tea", "Bun"]
        assert first["total"] == 3 and first["note"] == "hi"

        await connector.write(first)
        assert await connector.read() == first

    @pytest.mark.asyncio
    async def test_metadata_document_layout(self, store):
        await self.make(store).write({"items": [{"_id": "a"}], "total": 1})
        documents = store.collection("receipt").get_all()
        assert documents == [{"_id": "a"}, {"_id": "_meta", "total": 1}]

    @pytest.mark.asyncio
    async def test_collection_name_override(self, store):
        connector = self.make(store, collection="receipts_v2")
        await connector.write({"items": [{"_id": "a"}]})
        assert store.collection("receipts_v2").get_by_id("a") == {"_id": "a"}

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back(self, store):
        connector = self.make(store)
        await connector.write({"items": [{"_id": "keep"}], "total": 1})
        with pytest.raises(ConnectorError) as exc_info:
            await connector.write({"items": [{"_id": "dup"}, {"_id": "dup"}], "total": 2})
        assert exc_info.value.__cause__ is not None
        data = await connector.read()
        assert [item["_id"] for item in data["items"]] == ["keep"]
        assert data["total"] == 1

    @pytest.mark.asyncio
    async def test_write_rejects_non_object(self, store):
        with pytest.raises(ConnectorError):
            await self.make(store).write([1, 2])

    @pytest.mark.asyncio
    async def test_read_runs_computed(self, store):
        connector = self.make(
            store, computed=[{"target": "total", "formula": "sum(items, 'price')"}]
        )
        await connector.write({"items": [{"price": 10}, {"price": 2.5}], "total": 0})
        assert (await connector.read())["total"] == 12.5

    @pytest.mark.asyncio
    async def test_write_persists_computed(self, store):
        connector = self.make(
            store, computed=[{"target": "total", "formula": "sum(items, 'price')"}]
        )
        await connector.write({"items": [{"_id": "a", "price": 5}, {"_id": "b", "price": 7.5}]})
        meta = store.collection("receipt").get_by_id("_meta")
        assert meta["total"] == 12.5

    @pytest.mark.asyncio
    async def test_write_persists_default_for_non_numeric_result(self, store):
        connector = self.make(
            store,
            computed=[
                {"target": "ratio", "formula": "'nan' | float", "defaultValue": -1},
                {"target": "average", "formula": "total / items | length", "defaultValue": 0},
            ],
        )
        await connector.write({"items": [], "total": 0})
        meta = store.collection("receipt").get_by_id("_meta")
        assert meta["ratio"] == -1
        assert meta["average"] == 0
        data = await connector.read()
        assert data["ratio"] == -1
        assert data["average"] == 0

    @pytest.mark.asyncio
    async def test_read_migrates_and_persists(self, store):
        store.collection("receipt").insert_many([{"_id": "a", "name": "Tea"}, {"_id": "b", "qty": 4}])
        connector = self.make(store, migrations=[{"if_not_exists": "qty", "set": {"qty": 1}}])
        data = await connector.read()
        assert [item["qty"] for item in data["items"]] == [1, 4]
        assert store.collection("receipt").get_by_id("a")["qty"] == 1

    def test_requires_store(self):
        with pytest.raises(ConnectorError):
            CollectionConnector("receipt", config(type="collection"))


class TestSessionConnector:
    @pytest.mark.asyncio
    async def test_session_lifecycle(self, store):
        sessions = SessionConnector("session", config(type="session", collection="sessions"), store=store)
        await sessions.create({"_id": "s1", "userId": "u1"})
        assert await sessions.get("s1") == {"_id": "s1", "userId": "u1"}
        assert await sessions.read() == [{"_id": "s1", "userId": "u1"}]
        assert await sessions.remove("s1") is True
        assert await sessions.get("s1") is None

    @pytest.mark.asyncio
    async def test_direct_write_is_refused(self, store, caplog):
        sessions = SessionConnector("session", config(type="session"), store=store)
        await sessions.create({"_id": "s1"})
        with caplog.at_level("WARNING", logger="serverokey.connectors.collection"):
            await sessions.write([])
        assert "not supported" in caplog.text
        assert await sessions.read() == [{"_id": "s1"}]


class TestRegistry:
    def test_wise_json_alias(self, store):
        connector = create_connector("receipt", config(type="wise-json"), store=store)
        assert isinstance(connector, CollectionConnector)

    def test_unknown_type(self):
        cfg = ConnectorConfig.model_construct(type="redis", computed=[], migrations=[])
        with pytest.raises(ConnectorError) as exc_info:
            create_connector("cache", cfg)
        assert "redis" in str(exc_info.value)


class TestConnectorManager:
    MANIFEST = {
        "connectors": {
            "receipt": {"type": "collection", "initialState": {"items": [], "total": 0}},
            "viewState": {"type": "in-memory", "initialState": {"query": ""}},
            "positions": {"type": "json", "initialState": {"items": [{"id": 1}]}},
        }
    }

    @pytest.mark.asyncio
    async def test_get_context(self, make_manager):
        _, manager = await make_manager(self.MANIFEST)
        context = await manager.get_context(["viewState", "positions"])
        assert context == {"viewState": {"query": ""}, "positions": {"items": [{"id": 1}]}}

    @pytest.mark.asyncio
    async def test_unknown_connector_lists_available(self, make_manager):
        _, manager = await make_manager(self.MANIFEST)
        with pytest.raises(ConnectorNotFoundError) as exc_info:
            manager.get_connector("nope")
        message = str(exc_info.value)
        assert "nope" in message
        for name in ("positions", "receipt", "viewState"):
            assert name in message

    @pytest.mark.asyncio
    async def test_owned_store_is_created_lazily_and_closed(self, tmp_path):
        from serverokey.connector_manager import ConnectorManager
        from serverokey.manifest import parse_manifest

        manager = ConnectorManager(
            str(tmp_path), parse_manifest(self.MANIFEST), settings=EngineSettings()
        )
        await manager.load_all()
        await manager.get_connector("receipt").write({"items": [{"_id": "a"}], "total": 1})
        assert (tmp_path / "app" / "data" / "serverokey.db").exists()
        await manager.close()
        assert manager._store is None
