"""MongoDocumentStore — DocumentStore backed by MongoDB through motor.

A collection path ``a/b/c`` lives in the physical collection ``a``; each
document carries ``_path`` (the full collection path) and ``_key``, and its
``_id`` is ``"a/b/c/<key>"`` so keys stay unique per path.
"""

import logging
import re
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

from pymongo.errors import PyMongoError

from facility_ingest.errors import StoreError
from facility_ingest.storage import paths
from facility_ingest.storage.document_store import Change, DocumentStore, Snapshot

logger = logging.getLogger(__name__)

INTERNAL_FIELDS = ("_id", "_path", "_key")

WATCHED_OPERATIONS = ["insert", "update", "replace"]


def physical_name(collection: str) -> str:
    return collection.split("/", 1)[0]


def document_id(collection: str, key: str) -> str:
    return f"{collection}/{key}"


def strip_internal(document: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in document.items() if k not in INTERNAL_FIELDS}


class MongoDocumentStore(DocumentStore):
    """Path-addressed document store on a motor database handle."""

    def __init__(self, db):
        self.db = db

    def _coll(self, collection: str):
        return self.db[physical_name(collection)]

    async def ensure_indexes(self, log_ttl_days: Optional[int] = None) -> None:
        """Create path indexes and, when retention is configured, the log TTL index."""
        try:
            for name in (
                paths.SENSORS,
                paths.SENSOR_LOGS,
                paths.REMINDERS,
                paths.DEVICE_CONFIGS,
                paths.BUILDINGS,
                paths.LOCATIONS,
                paths.USAGE_METRICS,
            ):
                await self.db[name].create_index([("_path", 1)])
            await self.db[paths.DEVICE_CONFIGS].create_index([("_path", 1), ("mac_address", 1)])
            if log_ttl_days:
                await self.db[paths.SENSOR_LOGS].create_index(
                    "expire_at", expireAfterSeconds=0
                )
            logger.info("MongoDB indexes ensured")
        except PyMongoError as exc:
            raise StoreError(f"ensure_indexes failed: {exc}") from exc

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        try:
            doc = await self._coll(collection).find_one({"_id": document_id(collection, key)})
        except PyMongoError as exc:
            raise StoreError(f"get {collection}/{key} failed: {exc}") from exc
        return strip_internal(doc) if doc else None

    async def merge(self, collection: str, key: str, fields: Dict[str, Any]) -> None:
        update = {"$set": {**fields, "_path": collection, "_key": key}}
        try:
            await self._coll(collection).update_one(
                {"_id": document_id(collection, key)}, update, upsert=True
            )
        except PyMongoError as exc:
            raise StoreError(f"merge {collection}/{key} failed: {exc}") from exc

    async def delete(self, collection: str, key: str) -> None:
        try:
            await self._coll(collection).delete_one({"_id": document_id(collection, key)})
        except PyMongoError as exc:
            raise StoreError(f"delete {collection}/{key} failed: {exc}") from exc

    async def query(self, collection: str, **equals: Any) -> List[Snapshot]:
        try:
            cursor = self._coll(collection).find({"_path": collection, **equals})
            docs = await cursor.to_list(length=None)
        except PyMongoError as exc:
            raise StoreError(f"query {collection} {equals} failed: {exc}") from exc
        return [Snapshot(collection, doc["_key"], strip_internal(doc)) for doc in docs]

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        key = uuid.uuid4().hex
        document = {**data, "_id": document_id(collection, key), "_path": collection, "_key": key}
        try:
            await self._coll(collection).insert_one(document)
        except PyMongoError as exc:
            raise StoreError(f"add to {collection} failed: {exc}") from exc
        return key

    async def increment(self, collection: str, key: str, deltas: Dict[str, int]) -> None:
        # Single-document $inc with upsert is atomic in MongoDB
        try:
            await self._coll(collection).update_one(
                {"_id": document_id(collection, key)},
                {"$inc": deltas, "$setOnInsert": {"_path": collection, "_key": key}},
                upsert=True,
            )
        except PyMongoError as exc:
            raise StoreError(f"increment {collection}/{key} failed: {exc}") from exc

    async def watch(self, collection_prefix: str) -> AsyncIterator[Change]:
        pipeline = [
            {
                "$match": {
                    "operationType": {"$in": WATCHED_OPERATIONS},
                    "fullDocument._path": {"$regex": f"^{re.escape(collection_prefix)}"},
                }
            }
        ]
        try:
            async with self._coll(collection_prefix).watch(
                pipeline, full_document="updateLookup"
            ) as stream:
                async for event in stream:
                    doc = event.get("fullDocument") or {}
                    yield Change(
                        kind=event["operationType"],
                        collection=doc.get("_path", ""),
                        key=doc.get("_key", ""),
                        data=strip_internal(doc),
                    )
        except PyMongoError as exc:
            raise StoreError(f"change stream on {collection_prefix} failed: {exc}") from exc
