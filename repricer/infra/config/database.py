from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from typing import List, Optional


class DatabaseConfig:
    """Lazily connected Motor client for one repricer database."""

    def __init__(self, database_name: Optional[str] = None):
        self._database_url: Optional[str] = None
        self._database_name = database_name
        self._client: Optional[AsyncIOMotorClient] = None

    @property
    def database_url(self) -> Optional[str]:
        return self._database_url

    @database_url.setter
    def database_url(self, value: str):
        if self._client is not None:
            raise RuntimeError("Cannot change the database URL of an open connection")
        self._database_url = value

    @property
    def client(self) -> AsyncIOMotorClient:
        if self._client is None:
            self._client = AsyncIOMotorClient(self._database_url, tz_aware=False)
        return self._client

    @property
    def database(self) -> AsyncIOMotorDatabase:
        return self.client[self._database_name]

    def check(self) -> List[str]:
        errors = []
        if not self._database_url:
            errors.append("Database URL is not set")
        if not self._database_name:
            errors.append("Database name is not set")
        return errors

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None
