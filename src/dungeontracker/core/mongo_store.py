"""MongoStore — KeyValueStore backed by MongoDB.

One collection per store name; each key is a document
``{"_id": key, "value": ...}`` written with a full ``replace_one`` upsert.
Connects and pings on construction. If the connection fails the store
disables itself: reads return defaults, writes return False.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pymongo import MongoClient
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from dungeontracker.core.store import _MISSING, KeyValueStore

logger = logging.getLogger(__name__)


class MongoStore(KeyValueStore):
    """MongoDB persistence backend."""

    def __init__(
        self,
        uri: str,
        db_name: str,
        *,
        debounce_s: float = 3.0,
    ) -> None:
        super().__init__(debounce_s=debounce_s)
        self._uri = uri
        self._db_name = db_name
        self._disabled = False
        self._closed = False
        self._client = None
        self._db = None

        try:
            self._client = MongoClient(uri, serverSelectionTimeoutMS=5000)
            self._client.admin.command("ping")
        except (ConnectionFailure, ServerSelectionTimeoutError, PyMongoError) as exc:
            logger.warning("MongoDB connection failed, persistence disabled: %s", exc)
            self._disabled = True
            return
        except Exception as exc:
            logger.warning("Unexpected error connecting to MongoDB: %s", exc)
            self._disabled = True
            return

        self._db = self._client[db_name]

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @property
    def available(self) -> bool:
        return not self._disabled and not self._closed

    def _read(self, key: str, store: str) -> Any:
        try:
            doc = self._db[store].find_one({"_id": key})
        except PyMongoError as exc:
            logger.warning("Failed to read %s/%s: %s", store, key, exc)
            return _MISSING
        if doc is None:
            return _MISSING
        return doc.get("value")

    def _write(self, key: str, value: Any, store: str) -> bool:
        try:
            self._db[store].replace_one(
                {"_id": key},
                {
                    "_id": key,
                    "value": value,
                    "_updated_at": datetime.now(timezone.utc),
                },
                upsert=True,
            )
        except PyMongoError as exc:
            logger.warning("Failed to write %s/%s: %s", store, key, exc)
            return False
        return True

    def _remove(self, key: str, store: str) -> bool:
        try:
            self._db[store].delete_one({"_id": key})
        except PyMongoError as exc:
            logger.warning("Failed to delete %s/%s: %s", store, key, exc)
            return False
        return True

    def _keys(self, store: str) -> list[str]:
        try:
            return [doc["_id"] for doc in self._db[store].find({}, {"_id": 1})]
        except PyMongoError as exc:
            logger.warning("Failed to list keys in %s: %s", store, exc)
            return []

    def close(self) -> None:
        """Flush pending writes and close the client."""
        if self._closed:
            return
        if not self._disabled:
            self.flush_all()
        else:
            self.cleanup_pending_writes()
        self._closed = True
        if self._client:
            self._client.close()
