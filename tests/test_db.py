"""Tests for the Mongo client holder and collection accessors."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI

from multimodal_search import db
from multimodal_search.config import Settings


@pytest.fixture
def mongo_settings(monkeypatch) -> Settings:
    config = Settings(
        mongo_url="mongodb://localhost:27017",
        db_name="rag",
        text_collection_name="passages",
        image_collection_name="figures",
        cache_collection_name="search_cache",
    )
    monkeypatch.setattr(db, "settings", config)
    return config


@pytest.fixture
def client(monkeypatch):
    database = MagicMock()
    database.__getitem__.side_effect = lambda name: f"collection:{name}"
    database.command = AsyncMock(return_value={"ok": 1})
    fake = MagicMock()
    fake.__getitem__.return_value = database
    monkeypatch.setattr(db.mongo, "client", fake)
    return fake


class TestCollectionAccessors:
    def test_uninitialized_client_raises(self, monkeypatch) -> None:
        monkeypatch.setattr(db.mongo, "client", None)

        with pytest.raises(RuntimeError, match="not initialized"):
            db.text_collection()

    def test_accessors_use_configured_names(self, mongo_settings, client) -> None:
        assert db.text_collection() == "collection:passages"
        assert db.image_collection() == "collection:figures"
        assert db.cache_collection() == "collection:search_cache"
        client.__getitem__.assert_called_with("rag")

    @pytest.mark.asyncio
    async def test_ping_issues_server_command(self, mongo_settings, client) -> None:
        await db.ping()

        client["rag"].command.assert_awaited_once_with("ping")


class TestConnectionLifecycle:
    @pytest.mark.asyncio
    async def test_connect_requires_url(self, monkeypatch) -> None:
        monkeypatch.setattr(db, "settings", Settings(mongo_url=None))

        with pytest.raises(RuntimeError, match="MONGO_URL"):
            await db.connect_to_mongo(FastAPI())

    @pytest.mark.asyncio
    async def test_close_releases_client(self, client) -> None:
        app = FastAPI()
        app.state.mongo_client = client

        await db.close_mongo_connection(app)

        client.close.assert_called_once()
        assert db.mongo.client is None
        assert app.state.mongo_client is None
