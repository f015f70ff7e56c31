from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status

from milo.core.config import Settings, get_settings
from milo.schemas.auth import CurrentUserResponse
from milo.schemas.note import NoteCreateRequest, NoteResponse, NoteUpdateRequest
from milo.services.owned_record_store import OwnedRecordStore, create_owned_record_store


class NotesService:
    def __init__(
        self,
        settings: Settings | None = None,
        store: OwnedRecordStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or create_owned_record_store(
            store_name=self.settings.user_data_store,
            mongodb_uri=self.settings.mongodb_uri,
            mongodb_db_name=self.settings.mongodb_db_name,
            mongodb_collection_name=self.settings.mongodb_notes_collection,
            mongodb_connect_timeout_ms=self.settings.mongodb_connect_timeout_ms,
        )

    def list_notes(self, current_user: CurrentUserResponse) -> list[NoteResponse]:
        return [_to_note_response(record) for record in self.store.list_for_user(current_user.id)]

    def get_note(self, current_user: CurrentUserResponse, note_id: str) -> NoteResponse:
        record = self.store.get_for_user(current_user.id, note_id)
        if not record:
            raise _note_not_found()
        return _to_note_response(record)

    def create_note(
        self,
        current_user: CurrentUserResponse,
        payload: NoteCreateRequest,
    ) -> NoteResponse:
        record = self.store.create(
            current_user.id,
            {"title": payload.title.strip(), "content": payload.content},
        )
        return _to_note_response(record)

    def update_note(
        self,
        current_user: CurrentUserResponse,
        note_id: str,
        payload: NoteUpdateRequest,
    ) -> NoteResponse:
        updates = payload.model_dump(exclude_none=True)
        if "title" in updates:
            updates["title"] = updates["title"].strip()
        record = self.store.update_for_user(current_user.id, note_id, updates)
        if not record:
            raise _note_not_found()
        return _to_note_response(record)

    def delete_note(self, current_user: CurrentUserResponse, note_id: str) -> None:
        if not self.store.delete_for_user(current_user.id, note_id):
            raise _note_not_found()


def _to_note_response(record: dict[str, Any]) -> NoteResponse:
    return NoteResponse(
        id=str(record["_id"]),
        title=str(record.get("title", "")),
        content=str(record.get("content") or ""),
        created_at=record["created_at"],
        updated_at=record["updated_at"],
    )


def _note_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Nota no encontrada")
