from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from leave_portal.core.config import settings

_client: AsyncIOMotorClient | None = None


def get_client() -> AsyncIOMotorClient:
    """
    Lazily created MongoDB client shared by the whole process.
    """
    global _client
    if _client is None:
        _client = AsyncIOMotorClient(
            settings.MONGODB_URI,
            serverSelectionTimeoutMS=int(settings.GATEWAY_TIMEOUT_SECONDS * 1000),
        )
    return _client


def get_database() -> AsyncIOMotorDatabase:
    return get_client()[settings.MONGODB_DB_NAME]


def close_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
