from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status

from milo.core.config import Settings, get_settings
from milo.schemas.auth import CurrentUserResponse
from milo.schemas.task import TaskCreateRequest, TaskResponse, TaskUpdateRequest
from milo.services.owned_record_store import OwnedRecordStore, create_owned_record_store


class TasksService:
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
            mongodb_collection_name=self.settings.mongodb_tasks_collection,
            mongodb_connect_timeout_ms=self.settings.mongodb_connect_timeout_ms,
        )

    def list_tasks(self, current_user: CurrentUserResponse) -> list[TaskResponse]:
        return [_to_task_response(record) for record in self.store.list_for_user(current_user.id)]

    def get_task(self, current_user: CurrentUserResponse, task_id: str) -> TaskResponse:
        record = self.store.get_for_user(current_user.id, task_id)
        if not record:
            raise _task_not_found(task_id)
        return _to_task_response(record)

    def create_task(
        self,
        current_user: CurrentUserResponse,
        payload: TaskCreateRequest,
    ) -> TaskResponse:
        record = self.store.create(
            current_user.id,
            {
                "title": payload.title.strip(),
                "description": payload.description,
                "completed": payload.completed,
            },
        )
        return _to_task_response(record)

    def update_task(
        self,
        current_user: CurrentUserResponse,
        task_id: str,
        payload: TaskUpdateRequest,
    ) -> TaskResponse:
        updates = payload.model_dump(exclude_unset=True)
        if updates.get("title") is None:
            updates.pop("title", None)
        else:
            updates["title"] = updates["title"].strip()
        if updates.get("completed") is None:
            updates.pop("completed", None)
        record = self.store.update_for_user(current_user.id, task_id, updates)
        if not record:
            raise _task_not_found(task_id)
        return _to_task_response(record)

    def delete_task(self, current_user: CurrentUserResponse, task_id: str) -> None:
        if not self.store.delete_for_user(current_user.id, task_id):
            raise _task_not_found(task_id)


def _to_task_response(record: dict[str, Any]) -> TaskResponse:
    return TaskResponse(
        id=str(record["_id"]),
        title=str(record.get("title", "")),
        description=record.get("description"),
        completed=bool(record.get("completed")),
        created_at=record["created_at"],
        updated_at=record["updated_at"],
    )


def _task_not_found(task_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Tarea con ID {task_id} no encontrada",
    )
