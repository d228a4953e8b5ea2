"""
MongoDB connection management using the async motor driver.

A `MongoConnection` is built once at application start-up and handed to the
repositories. It connects lazily on first use and memoizes the database
handle; the driver pools sockets internally, so one handle is shared by all
concurrent requests.
"""

import asyncio
import logging
import os
from typing import Any, Callable, Optional

from dotenv import load_dotenv
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from compete.database.errors import ConfigurationError, DatabaseConnectionError

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_DB_NAME = "compete"
DEFAULT_SERVER_SELECTION_TIMEOUT_MS = 5000


class MongoConnection:
    """Lazily established, memoized connection to one MongoDB database."""

    def __init__(
        self,
        uri: Optional[str] = None,
        db_name: Optional[str] = None,
        client_factory: Optional[Callable[..., Any]] = None,
    ):
        """
        Args:
            uri: Connection string (defaults to MONGODB_URI)
            db_name: Database name (defaults to MONGODB_DB, then "compete")
            client_factory: Callable building the driver client; tests swap it
        """
        self._uri = uri
        self._db_name = db_name
        self._client_factory = client_factory or AsyncIOMotorClient
        self._client = None
        self._db = None
        self._lock = asyncio.Lock()
        self.supports_transactions = False

    @property
    def is_connected(self) -> bool:
        return self._db is not None

    @property
    def client(self):
        return self._client

    async def connect(self):
        """
        Return the database handle, connecting on the first call.

        Returns:
            Database handle (memoized)

        Raises:
            ConfigurationError: If no connection string is configured
            DatabaseConnectionError: If the handshake with the server fails
        """
        if self._db is not None:
            return self._db

        async with self._lock:
            # Another coroutine may have connected while we waited
            if self._db is not None:
                return self._db

            uri = self._uri or os.getenv("MONGODB_URI")
            if not uri:
                raise ConfigurationError(
                    "MONGODB_URI is not set; cannot connect to the database"
                )
            db_name = self._db_name or os.getenv("MONGODB_DB") or DEFAULT_DB_NAME
            timeout_ms = int(
                os.getenv(
                    "MONGODB_SERVER_SELECTION_TIMEOUT_MS",
                    str(DEFAULT_SERVER_SELECTION_TIMEOUT_MS),
                )
            )

            logger.info(f"Connecting to MongoDB database '{db_name}'...")
            client = self._client_factory(uri, serverSelectionTimeoutMS=timeout_ms)
            try:
                hello = await client.admin.command("hello")
            except PyMongoError as e:
                client.close()
                logger.error(f"MongoDB connection failed: {e}")
                raise DatabaseConnectionError(f"Could not connect to MongoDB: {e}") from e

            # Multi-document transactions need a replica set or a mongos router
            self.supports_transactions = bool(hello.get("setName")) or (
                hello.get("msg") == "isdbgrid"
            )
            self._client = client
            self._db = client[db_name]
            logger.info(
                f"Connected to MongoDB database '{db_name}' "
                f"(transactions {'enabled' if self.supports_transactions else 'unavailable'})"
            )
            return self._db

    async def get_collection(self, name: str):
        """Return a handle scoped to the named collection."""
        db = await self.connect()
        return db[name]

    def close(self) -> None:
        """Close the client. The next `connect()` opens a fresh one."""
        if self._client is not None:
            self._client.close()
            logger.info("MongoDB connection closed")
        self._client = None
        self._db = None
        self.supports_transactions = False
