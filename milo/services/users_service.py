from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, status

from milo.core.config import Settings, get_settings
from milo.schemas.auth import CurrentUserResponse
from milo.schemas.user import (
    DeleteAccountResponse,
    UpdateAvatarRequest,
    UpdateProfileRequest,
    UserProfileResponse,
)
from milo.services.auth_service import to_current_user_response, validate_new_password
from milo.services.owned_record_store import OwnedRecordStore, create_owned_record_store
from milo.services.security_utils import hash_password
from milo.services.user_store import UserStore, create_user_store

logger = logging.getLogger(__name__)

ACCOUNT_DELETED_MESSAGE = "Cuenta eliminada correctamente"


class UsersService:
    """Profile changes and account removal for the signed-in user."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        user_store: UserStore | None = None,
        notes_store: OwnedRecordStore | None = None,
        tasks_store: OwnedRecordStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.user_store = user_store or create_user_store(self.settings)
        self.notes_store = notes_store or self._owned_store(self.settings.mongodb_notes_collection)
        self.tasks_store = tasks_store or self._owned_store(self.settings.mongodb_tasks_collection)

    def update_profile(
        self,
        current_user: CurrentUserResponse,
        payload: UpdateProfileRequest,
    ) -> UserProfileResponse:
        updates: dict[str, Any] = {}
        if payload.full_name is not None:
            updates["full_name"] = payload.full_name.strip()
        if payload.password is not None:
            validate_new_password(payload.password)
            updates["password_hash"] = hash_password(payload.password)
        return self._apply(current_user, updates)

    def update_avatar(
        self,
        current_user: CurrentUserResponse,
        payload: UpdateAvatarRequest,
    ) -> UserProfileResponse:
        avatar = (payload.avatar or "").strip() or None
        return self._apply(current_user, {"avatar": avatar})

    def delete_account(self, current_user: CurrentUserResponse) -> DeleteAccountResponse:
        if not self.user_store.get_user_by_id(current_user.id):
            raise _user_not_found()
        deleted_notes = self.notes_store.delete_all_for_user(current_user.id)
        deleted_tasks = self.tasks_store.delete_all_for_user(current_user.id)
        self.user_store.delete_user(current_user.id)
        logger.info(
            "Deleted user id=%s notes=%s tasks=%s",
            current_user.id,
            deleted_notes,
            deleted_tasks,
        )
        return DeleteAccountResponse(message=ACCOUNT_DELETED_MESSAGE)

    def _apply(self, current_user: CurrentUserResponse, updates: dict[str, Any]) -> UserProfileResponse:
        if updates:
            user_record = self.user_store.update_user(current_user.id, updates)
        else:
            user_record = self.user_store.get_user_by_id(current_user.id)
        if not user_record:
            raise _user_not_found()
        return UserProfileResponse(user=to_current_user_response(user_record))

    def _owned_store(self, collection_name: str) -> OwnedRecordStore:
        return create_owned_record_store(
            store_name=self.settings.user_data_store,
            mongodb_uri=self.settings.mongodb_uri,
            mongodb_db_name=self.settings.mongodb_db_name,
            mongodb_collection_name=collection_name,
            mongodb_connect_timeout_ms=self.settings.mongodb_connect_timeout_ms,
        )


def _user_not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Usuario no encontrado",
    )
