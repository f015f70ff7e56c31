from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any


class OwnedRecordStore(ABC):
    """CRUD over records that belong to exactly one user.

    Every lookup is scoped by ``user_id``; a record owned by someone else
    behaves exactly like a missing one.
    """

    @abstractmethod
    def create(self, user_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def get_for_user(self, user_id: str, record_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def update_for_user(
        self,
        user_id: str,
        record_id: str,
        updates: Mapping[str, Any],
    ) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def delete_for_user(self, user_id: str, record_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def delete_all_for_user(self, user_id: str) -> int:
        raise NotImplementedError


class InMemoryOwnedRecordStore(OwnedRecordStore):
    def __init__(self) -> None:
        self._next_id = 1
        self._records: list[dict[str, Any]] = []

    def create(self, user_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        now = datetime.now(UTC)
        record = {
            **dict(fields),
            "_id": f"memory-{self._next_id}",
            "user_id": user_id,
            "created_at": now,
            "updated_at": now,
        }
        self._next_id += 1
        self._records.append(record)
        return dict(record)

    def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        return [dict(record) for record in reversed(self._records) if record["user_id"] == user_id]

    def get_for_user(self, user_id: str, record_id: str) -> dict[str, Any] | None:
        record = self._find(user_id, record_id)
        return dict(record) if record else None

    def update_for_user(
        self,
        user_id: str,
        record_id: str,
        updates: Mapping[str, Any],
    ) -> dict[str, Any] | None:
        record = self._find(user_id, record_id)
        if not record:
            return None
        record.update(dict(updates))
        record["updated_at"] = datetime.now(UTC)
        return dict(record)

    def delete_for_user(self, user_id: str, record_id: str) -> bool:
        record = self._find(user_id, record_id)
        if not record:
            return False
        self._records.remove(record)
        return True

    def delete_all_for_user(self, user_id: str) -> int:
        kept = [record for record in self._records if record["user_id"] != user_id]
        deleted = len(self._records) - len(kept)
        self._records = kept
        return deleted

    def _find(self, user_id: str, record_id: str) -> dict[str, Any] | None:
        for record in self._records:
            if record["_id"] == record_id and record["user_id"] == user_id:
                return record
        return None


class MongoOwnedRecordStore(OwnedRecordStore):
    def __init__(
        self,
        uri: str,
        db_name: str,
        collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import DESCENDING, MongoClient

        self._desc = DESCENDING
        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
            tz_aware=True,
        )
        self._collection = self._client[db_name][collection_name]
        self._collection.create_index([("user_id", 1), ("created_at", self._desc)])

    def create(self, user_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        now = datetime.now(UTC)
        payload = {**dict(fields), "user_id": user_id, "created_at": now, "updated_at": now}
        insert_result = self._collection.insert_one(payload)
        return _serialize_record({**payload, "_id": insert_result.inserted_id})

    def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        cursor = self._collection.find({"user_id": user_id}).sort("created_at", self._desc)
        return [_serialize_record(record) for record in cursor]

    def get_for_user(self, user_id: str, record_id: str) -> dict[str, Any] | None:
        query = _owned_query(user_id, record_id)
        if query is None:
            return None
        record = self._collection.find_one(query)
        return _serialize_record(record) if record else None

    def update_for_user(
        self,
        user_id: str,
        record_id: str,
        updates: Mapping[str, Any],
    ) -> dict[str, Any] | None:
        from pymongo import ReturnDocument

        query = _owned_query(user_id, record_id)
        if query is None:
            return None
        record = self._collection.find_one_and_update(
            query,
            {"$set": {**dict(updates), "updated_at": datetime.now(UTC)}},
            return_document=ReturnDocument.AFTER,
        )
        return _serialize_record(record) if record else None

    def delete_for_user(self, user_id: str, record_id: str) -> bool:
        query = _owned_query(user_id, record_id)
        if query is None:
            return False
        return self._collection.delete_one(query).deleted_count > 0

    def delete_all_for_user(self, user_id: str) -> int:
        return self._collection.delete_many({"user_id": user_id}).deleted_count


def _owned_query(user_id: str, record_id: str) -> dict[str, Any] | None:
    from bson import ObjectId
    from bson.errors import InvalidId

    try:
        object_id = ObjectId(record_id)
    except (InvalidId, TypeError):
        return None
    return {"_id": object_id, "user_id": user_id}


def _serialize_record(record: Mapping[str, Any]) -> dict[str, Any]:
    serialized = dict(record)
    serialized["_id"] = str(record.get("_id", ""))
    return serialized


def create_owned_record_store(
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
) -> OwnedRecordStore:
    return _create_owned_record_store_cached(
        store_name=store_name,
        mongodb_uri=mongodb_uri,
        mongodb_db_name=mongodb_db_name,
        mongodb_collection_name=mongodb_collection_name,
        mongodb_connect_timeout_ms=mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_owned_record_store_cached(
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
) -> OwnedRecordStore:
    if store_name == "mongodb":
        return MongoOwnedRecordStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_collection_name,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )
    return InMemoryOwnedRecordStore()


def clear_owned_record_store_cache() -> None:
    _create_owned_record_store_cached.cache_clear()
