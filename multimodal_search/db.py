from typing import Optional

from fastapi import FastAPI
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase

from .config import settings


class MongoDB:
    client: Optional[AsyncIOMotorClient] = None


mongo = MongoDB()


def mongo_configured() -> bool:
    return settings.mongo_url is not None


async def connect_to_mongo(app: FastAPI) -> None:
    """Create Motor client and attach to app.state for reuse."""
    if not mongo_configured():
        raise RuntimeError("MONGO_URL is required to serve searches")
    mongo.client = AsyncIOMotorClient(
        str(settings.mongo_url),
        maxPoolSize=settings.mongo_max_pool_size,
        serverSelectionTimeoutMS=settings.mongo_server_selection_timeout_ms,
        tz_aware=True,
    )
    app.state.mongo_client = mongo.client


async def close_mongo_connection(app: FastAPI) -> None:
    if mongo.client:
        mongo.client.close()
        mongo.client = None
        app.state.mongo_client = None


def get_database() -> AsyncIOMotorDatabase:
    if not mongo.client:
        raise RuntimeError("MongoDB client is not initialized")
    return mongo.client[settings.db_name]


def text_collection() -> AsyncIOMotorCollection:
    """Text passages with their embeddings, searched by the text vector index."""
    return get_database()[settings.text_collection_name]


def image_collection() -> AsyncIOMotorCollection:
    """Image descriptions with their embeddings."""
    return get_database()[settings.image_collection_name]


def cache_collection() -> AsyncIOMotorCollection:
    return get_database()[settings.cache_collection_name]


async def ping() -> None:
    """Round trip to the server; raises when it is unreachable."""
    await get_database().command("ping")
