from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from milo.core.config import Settings

_RESET_TOKEN_CLEARED = {
    "reset_password_token_hash": None,
    "reset_password_expires_at": None,
}


class UserStore(ABC):
    @abstractmethod
    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def create_user(
        self,
        *,
        email: str,
        full_name: str,
        password_hash: str | None,
        role: str = "user",
        google_avatar: str | None = None,
    ) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def update_user(self, user_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def delete_user(self, user_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def get_user_by_reset_token_hash(self, token_hash: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def save_reset_password_token(
        self,
        user_id: str,
        *,
        token_hash: str,
        expires_at: datetime,
    ) -> None:
        self.update_user(
            user_id,
            {
                "reset_password_token_hash": token_hash,
                "reset_password_expires_at": expires_at,
            },
        )

    def clear_reset_password_token(self, user_id: str) -> None:
        self.update_user(user_id, _RESET_TOKEN_CLEARED)

    def find_user_by_valid_reset_token(
        self,
        token_hash: str,
        *,
        now: datetime | None = None,
    ) -> dict[str, Any] | None:
        user = self.get_user_by_reset_token_hash(token_hash)
        if not user:
            return None
        expires_at = user.get("reset_password_expires_at")
        if not isinstance(expires_at, datetime):
            return None
        if _as_utc(expires_at) <= (now or datetime.now(UTC)):
            return None
        return user

    def update_password(self, user_id: str, password_hash: str) -> dict[str, Any] | None:
        return self.update_user(user_id, {"password_hash": password_hash, **_RESET_TOKEN_CLEARED})

    def update_google_calendar_tokens(
        self,
        user_id: str,
        *,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime | None,
    ) -> dict[str, Any] | None:
        updates: dict[str, Any] = {
            "google_calendar_access_token": access_token,
            "google_calendar_token_expires_at": expires_at,
            "google_connected": True,
        }
        if refresh_token:
            updates["google_calendar_refresh_token"] = refresh_token
        return self.update_user(user_id, updates)

    def disconnect_google_calendar(self, user_id: str) -> dict[str, Any] | None:
        return self.update_user(
            user_id,
            {
                "google_calendar_access_token": None,
                "google_calendar_refresh_token": None,
                "google_calendar_token_expires_at": None,
                "google_connected": False,
            },
        )


class InMemoryUserStore(UserStore):
    def __init__(self) -> None:
        self._next_id = 1
        self._users_by_id: dict[str, dict[str, Any]] = {}
        self._user_id_by_email: dict[str, str] = {}

    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        user = self._users_by_id.get(user_id)
        if not user:
            return None
        return dict(user)

    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        user_id = self._user_id_by_email.get(_normalize_email(email))
        if not user_id:
            return None
        return self.get_user_by_id(user_id)

    def create_user(
        self,
        *,
        email: str,
        full_name: str,
        password_hash: str | None,
        role: str = "user",
        google_avatar: str | None = None,
    ) -> dict[str, Any]:
        normalized_email = _normalize_email(email)
        if normalized_email in self._user_id_by_email:
            raise ValueError("email_already_exists")

        user_id = str(self._next_id)
        self._next_id += 1
        user = {"_id": user_id, **_new_user_document(
            email=normalized_email,
            full_name=full_name,
            password_hash=password_hash,
            role=role,
            google_avatar=google_avatar,
        )}
        self._users_by_id[user_id] = user
        self._user_id_by_email[normalized_email] = user_id
        return dict(user)

    def update_user(self, user_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        user = self._users_by_id.get(user_id)
        if not user:
            return None
        user.update(dict(updates))
        user["updated_at"] = datetime.now(UTC)
        return dict(user)

    def delete_user(self, user_id: str) -> bool:
        user = self._users_by_id.pop(user_id, None)
        if not user:
            return False
        self._user_id_by_email.pop(user["email"], None)
        return True

    def get_user_by_reset_token_hash(self, token_hash: str) -> dict[str, Any] | None:
        for user in self._users_by_id.values():
            if token_hash and user.get("reset_password_token_hash") == token_hash:
                return dict(user)
        return None


class MongoUserStore(UserStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        users_collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
            tz_aware=True,
        )
        self._users = self._client[db_name][users_collection_name]
        self._users.create_index("email", unique=True)
        self._users.create_index("reset_password_token_hash", sparse=True)

    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        object_id = _to_object_id(user_id)
        if object_id is None:
            return None
        return _serialize_user_record(self._users.find_one({"_id": object_id}))

    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        record = self._users.find_one({"email": _normalize_email(email)})
        return _serialize_user_record(record)

    def create_user(
        self,
        *,
        email: str,
        full_name: str,
        password_hash: str | None,
        role: str = "user",
        google_avatar: str | None = None,
    ) -> dict[str, Any]:
        from pymongo.errors import DuplicateKeyError

        payload = _new_user_document(
            email=_normalize_email(email),
            full_name=full_name,
            password_hash=password_hash,
            role=role,
            google_avatar=google_avatar,
        )
        try:
            insert_result = self._users.insert_one(payload)
        except DuplicateKeyError as exc:
            raise ValueError("email_already_exists") from exc
        serialized = _serialize_user_record(self._users.find_one({"_id": insert_result.inserted_id}))
        if not serialized:
            raise RuntimeError("Unable to read created user.")
        return serialized

    def update_user(self, user_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        from pymongo import ReturnDocument

        object_id = _to_object_id(user_id)
        if object_id is None:
            return None
        record = self._users.find_one_and_update(
            {"_id": object_id},
            {"$set": {**dict(updates), "updated_at": datetime.now(UTC)}},
            return_document=ReturnDocument.AFTER,
        )
        return _serialize_user_record(record)

    def delete_user(self, user_id: str) -> bool:
        object_id = _to_object_id(user_id)
        if object_id is None:
            return False
        return self._users.delete_one({"_id": object_id}).deleted_count > 0

    def get_user_by_reset_token_hash(self, token_hash: str) -> dict[str, Any] | None:
        if not token_hash:
            return None
        record = self._users.find_one({"reset_password_token_hash": token_hash})
        return _serialize_user_record(record)


def _new_user_document(
    *,
    email: str,
    full_name: str,
    password_hash: str | None,
    role: str,
    google_avatar: str | None,
) -> dict[str, Any]:
    now = datetime.now(UTC)
    return {
        "email": email,
        "full_name": full_name.strip(),
        "password_hash": password_hash,
        "role": role.strip().lower(),
        "google_avatar": google_avatar,
        "avatar": None,
        "google_connected": False,
        "google_calendar_access_token": None,
        "google_calendar_refresh_token": None,
        "google_calendar_token_expires_at": None,
        "reset_password_token_hash": None,
        "reset_password_expires_at": None,
        "created_at": now,
        "updated_at": now,
    }


def _to_object_id(raw_id: str):
    from bson import ObjectId
    from bson.errors import InvalidId

    try:
        return ObjectId(raw_id)
    except (InvalidId, TypeError):
        return None


def _serialize_user_record(record: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if not record:
        return None
    serialized = dict(record)
    serialized["_id"] = str(record.get("_id", ""))
    return serialized


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def create_user_store(settings: Settings) -> UserStore:
    return _create_user_store_cached(
        user_data_store=settings.user_data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_users_collection=settings.mongodb_users_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_user_store_cached(
    *,
    user_data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_users_collection: str,
    mongodb_connect_timeout_ms: int,
) -> UserStore:
    if user_data_store == "mongodb":
        return MongoUserStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            users_collection_name=mongodb_users_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )
    return InMemoryUserStore()


def clear_user_store_cache() -> None:
    _create_user_store_cached.cache_clear()
